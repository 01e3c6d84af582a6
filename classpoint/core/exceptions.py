from typing import List, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotFoundError(ServiceError):
    """Missing student, reward or class."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ValidationError(ServiceError):
    """Rejected input. Raised before anything is written."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class InsufficientBalanceError(ServiceError):
    def __init__(self, student_id, balance: int, cost: int) -> None:
        super().__init__(
            f"Student {student_id} has {balance} points, reward costs {cost}",
            status.HTTP_409_CONFLICT,
        )
        self.student_id = student_id
        self.balance = balance
        self.cost = cost


class PersistenceError(ServiceError):
    """Storage failure. The original exception is chained as __cause__."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)


class ImportPartialError(ServiceError):
    """Bulk import where at least one class group failed; earlier groups stay committed."""

    def __init__(self, succeeded: List[dict], failed: List[dict], message: Optional[str] = None) -> None:
        failed_names = ", ".join(str(f["group"]) for f in failed)
        super().__init__(
            message or f"Import failed for group(s): {failed_names}",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        self.succeeded = succeeded
        self.failed = failed

    def to_detail(self) -> dict:
        return {"message": self.message, "succeeded": self.succeeded, "failed": self.failed}
