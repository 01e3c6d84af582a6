from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.api.v1.classes import service as class_service
from classpoint.api.v1.ledger import service as ledger_service
from classpoint.api.v1.ledger.schemas import ImportResult
from classpoint.core.enums import StudentSort
from classpoint.core.exceptions import ImportPartialError, ServiceError
from classpoint.db.session import get_db

from . import service

router = APIRouter(prefix="/api/v1/spreadsheets", tags=["spreadsheets"])


def _xlsx_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=service.XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/import", response_model=ImportResult, status_code=status.HTTP_201_CREATED)
async def import_students_excel(
    file: UploadFile = File(..., description="Excel with a name column (Tên / Họ và tên / Name), optional STT and Lớp"),
    default_class_id: Optional[UUID] = Form(None, description="Class for rows without a Lớp value"),
    db: AsyncSession = Depends(get_db),
) -> ImportResult:
    if not file.filename or not file.filename.lower().endswith(".xlsx"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be an Excel file (.xlsx)")
    try:
        rows = service.parse_students_workbook(await file.read())
        if not rows:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Excel file has no student rows")
        return await ledger_service.import_students(db, rows, default_class_id)
    except ImportPartialError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/classes/{class_id}/students")
async def export_students(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Response:
    try:
        await class_service.require_class(db, class_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    students = await ledger_service.list_students(db, class_id, StudentSort.ORDER)
    return _xlsx_response(
        service.build_students_workbook(students),
        service.export_filename("danh-sach-hoc-sinh"),
    )


@router.get("/classes/{class_id}/leaderboard")
async def export_leaderboard(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Response:
    try:
        await class_service.require_class(db, class_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    entries = await ledger_service.leaderboard(db, class_id)
    return _xlsx_response(
        service.build_leaderboard_workbook(entries),
        service.export_filename("bang-xep-hang"),
    )
