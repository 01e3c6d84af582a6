"""
Excel adapter: turns an uploaded sheet into import rows and renders class
lists / leaderboards back to .xlsx. No ledger rules live here.
"""

import io
from datetime import date
from typing import Iterable, List, Optional

from openpyxl import Workbook, load_workbook

from classpoint.api.v1.ledger.schemas import ImportRow, LeaderboardEntry, StudentResponse
from classpoint.core.enums import LEVEL_DISPLAY, Level
from classpoint.core.exceptions import ValidationError

EXCEL_MAX_ROWS = 1000
NAME_MAX_LENGTH = 255
CLASS_NAME_MAX_LENGTH = 100

# First matching column wins, per row.
NAME_HEADERS = ("Tên", "Họ và tên", "Name", "Tên học sinh")
ORDER_HEADERS = ("STT", "Số thứ tự")
CLASS_HEADERS = ("Lớp", "Tên lớp", "Class")

STUDENTS_SHEET_NAME = "Danh sách học sinh"
LEADERBOARD_SHEET_NAME = "Bảng xếp hạng"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _norm(s) -> str:
    return str(s).strip().lower() if s is not None else ""


def _cell_str(row: tuple, col: Optional[int]) -> str:
    if col is None or col >= len(row) or row[col] is None:
        return ""
    val = row[col]
    if isinstance(val, float) and val.is_integer():
        val = int(val)
    return str(val).strip()


def _to_int(value: str) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def parse_students_workbook(content: bytes) -> List[ImportRow]:
    """
    Read the first sheet. Row 1 holds headers. Rows without a name are skipped;
    a missing or non-numeric STT falls back to the row's position.
    """
    if not content:
        raise ValidationError("File is empty")
    try:
        wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ValidationError(f"Invalid Excel file: {e}") from e

    try:
        ws = wb.worksheets[0] if wb.worksheets else None
        if ws is None:
            raise ValidationError("Excel file has no sheet")
        rows_iter = ws.iter_rows(values_only=True)
        header_row = next(rows_iter, None)
        if not header_row:
            raise ValidationError("Excel file has no header row")

        headers = [_norm(c) for c in header_row]

        def _columns(candidates: Iterable[str]) -> List[int]:
            return [headers.index(_norm(c)) for c in candidates if _norm(c) in headers]

        name_cols = _columns(NAME_HEADERS)
        order_cols = _columns(ORDER_HEADERS)
        class_cols = _columns(CLASS_HEADERS)
        if not name_cols:
            raise ValidationError(f"Missing a name column ({', '.join(NAME_HEADERS)}). Found: {list(header_row)}")

        items: List[ImportRow] = []
        position = 0
        for row_num, row in enumerate(rows_iter, start=2):
            if not row or all(c is None or (isinstance(c, str) and not c.strip()) for c in row):
                continue
            position += 1
            if position > EXCEL_MAX_ROWS:
                raise ValidationError(f"Maximum {EXCEL_MAX_ROWS} data rows allowed")
            name = next((v for v in (_cell_str(row, c) for c in name_cols) if v), "")
            if not name:
                continue
            order = next((n for n in (_to_int(_cell_str(row, c)) for c in order_cols) if n is not None), None)
            class_name = next((v for v in (_cell_str(row, c) for c in class_cols) if v), None)
            if len(name) > NAME_MAX_LENGTH:
                raise ValidationError(f"Row {row_num}: name is longer than {NAME_MAX_LENGTH} characters")
            if class_name and len(class_name) > CLASS_NAME_MAX_LENGTH:
                raise ValidationError(f"Row {row_num}: class name is longer than {CLASS_NAME_MAX_LENGTH} characters")
            if order is None:
                order = position
            items.append(ImportRow(name=name, order_number=order, class_name=class_name))
        return items
    finally:
        wb.close()


def _save(wb: Workbook) -> bytes:
    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


def build_students_workbook(students: List[StudentResponse]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = STUDENTS_SHEET_NAME
    ws.append(["Tên", "Số thứ tự", "Điểm hiện tại", "Cấp độ"])
    for s in students:
        ws.append([s.name, s.order_number, s.total_points, Level(s.level).value])
    return _save(wb)


def build_leaderboard_workbook(entries: List[LeaderboardEntry]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = LEADERBOARD_SHEET_NAME
    ws.append(["Hạng", "Tên học sinh", "Điểm", "Cấp độ"])
    for e in entries:
        ws.append([e.rank, e.student.name, e.student.total_points, LEVEL_DISPLAY[Level(e.student.level)]["name"]])
    return _save(wb)


def export_filename(prefix: str, today: Optional[date] = None) -> str:
    return f"{prefix}-{(today or date.today()).isoformat()}.xlsx"
