"""
Level thresholds store.

One versioned settings row (key "level_thresholds") in app_settings. The store
is created at startup, kept on app.state and handed to the ledger explicitly.
Writes are compare-and-swap on the row version; readers call refresh(), which
reloads only when another process has bumped the version.
"""

from fastapi import Request
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.core.app_logger import get_logger
from classpoint.core.config import settings
from classpoint.core.exceptions import PersistenceError, ValidationError
from classpoint.core.models import AppSetting

from .schemas import LevelThresholds, ThresholdUpdate

SETTINGS_KEY = "level_thresholds"

logger = get_logger("levels")


def default_thresholds() -> LevelThresholds:
    return LevelThresholds(
        hat=0,
        nay_mam=settings.level_nay_mam,
        cay_con=settings.level_cay_con,
        cay_to=settings.level_cay_to,
    )


def autocorrect(candidate: LevelThresholds) -> LevelThresholds:
    """
    Push each bound above the previous one instead of rejecting the edit:
    nay_mam >= 1, cay_con > nay_mam, cay_to > cay_con.
    """
    nay_mam = max(1, candidate.nay_mam)
    cay_con = candidate.cay_con if candidate.cay_con > nay_mam else nay_mam + 1
    cay_to = candidate.cay_to if candidate.cay_to > cay_con else cay_con + 1
    return LevelThresholds(hat=candidate.hat, nay_mam=nay_mam, cay_con=cay_con, cay_to=cay_to)


def validate_ordering(thresholds: LevelThresholds) -> LevelThresholds:
    """Require 0 = hat < nay_mam < cay_con < cay_to."""
    if thresholds.hat != 0:
        raise ValidationError("Level 'hat' threshold is fixed at 0")
    if not (thresholds.hat < thresholds.nay_mam < thresholds.cay_con < thresholds.cay_to):
        raise ValidationError(
            "Level thresholds must be strictly increasing: "
            f"0 < {thresholds.nay_mam} < {thresholds.cay_con} < {thresholds.cay_to} does not hold"
        )
    return thresholds


class ThresholdStore:
    def __init__(self, defaults: LevelThresholds | None = None) -> None:
        self._defaults = validate_ordering(defaults or default_thresholds())
        self._thresholds = self._defaults
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    def get(self) -> LevelThresholds:
        return self._thresholds

    async def _get_row(self, db: AsyncSession) -> AppSetting | None:
        result = await db.execute(select(AppSetting).where(AppSetting.key == SETTINGS_KEY))
        return result.scalar_one_or_none()

    async def load(self, db: AsyncSession) -> LevelThresholds:
        try:
            row = await self._get_row(db)
        except SQLAlchemyError as e:
            raise PersistenceError("Could not load level thresholds") from e
        if row is None:
            self._thresholds, self._version = self._defaults, 0
            return self._thresholds
        stored = LevelThresholds(**{**row.value, "hat": 0})
        self._thresholds = autocorrect(stored)
        self._version = row.version
        logger.info("Loaded level thresholds v%s: %s", self._version, self._thresholds.model_dump())
        return self._thresholds

    async def refresh(self, db: AsyncSession) -> LevelThresholds:
        """Reload only if the persisted version differs from the cached one."""
        try:
            result = await db.execute(select(AppSetting.version).where(AppSetting.key == SETTINGS_KEY))
            version = result.scalar_one_or_none() or 0
        except SQLAlchemyError as e:
            raise PersistenceError("Could not read level thresholds version") from e
        if version != self._version:
            return await self.load(db)
        return self._thresholds

    async def set(self, db: AsyncSession, candidate: ThresholdUpdate) -> LevelThresholds:
        if candidate.hat not in (None, 0):
            raise ValidationError("Level 'hat' threshold is fixed at 0")

        current = await self.refresh(db)
        merged = current.model_copy(update=candidate.model_dump(exclude_none=True, exclude={"hat"}))
        corrected = validate_ordering(autocorrect(merged))

        prev_version = self._version
        try:
            if prev_version == 0:
                db.add(AppSetting(key=SETTINGS_KEY, value=corrected.model_dump(), version=1))
            else:
                result = await db.execute(
                    update(AppSetting)
                    .where(AppSetting.key == SETTINGS_KEY, AppSetting.version == prev_version)
                    .values(value=corrected.model_dump(), version=prev_version + 1)
                )
                if result.rowcount != 1:
                    await db.rollback()
                    raise PersistenceError("Level thresholds were changed by another session; reload and retry")
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError("Could not save level thresholds") from e

        self._thresholds = corrected
        self._version = prev_version + 1
        logger.info("Saved level thresholds v%s: %s", self._version, corrected.model_dump())
        return corrected


def get_threshold_store(request: Request) -> ThresholdStore:
    return request.app.state.threshold_store
