"""Excel import parsing and export rendering."""

import io
import uuid
from datetime import date, datetime

import pytest
from openpyxl import Workbook, load_workbook

from classpoint.api.v1.ledger.schemas import LeaderboardEntry, StudentResponse
from classpoint.api.v1.spreadsheets.service import (
    build_leaderboard_workbook,
    build_students_workbook,
    export_filename,
    parse_students_workbook,
)
from classpoint.core.enums import Level
from classpoint.core.exceptions import ValidationError


def _xlsx(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


def _student(name: str, points: int, order_number: int = 1, level: Level = Level.HAT) -> StudentResponse:
    now = datetime(2024, 3, 4, 8, 0)
    return StudentResponse(
        id=uuid.uuid4(),
        class_id=uuid.uuid4(),
        name=name,
        order_number=order_number,
        avatar=None,
        total_points=points,
        level=level,
        created_at=now,
        updated_at=now,
    )


def test_parse_reads_name_order_and_class() -> None:
    content = _xlsx([
        ["STT", "Họ và tên", "Lớp"],
        [1, "Nguyễn An", "10A"],
        [2.0, "  Trần Bình ", None],
    ])

    rows = parse_students_workbook(content)

    assert [(r.name, r.order_number, r.class_name) for r in rows] == [
        ("Nguyễn An", 1, "10A"),
        ("Trần Bình", 2, None),
    ]


def test_parse_headers_are_case_insensitive_and_order_falls_back_to_position() -> None:
    content = _xlsx([
        ["name", "class"],
        ["An", "9B"],
        [None, None],
        ["", "9B"],
        ["Bình", None],
    ])

    rows = parse_students_workbook(content)

    # Blank rows are not counted; nameless rows are skipped but keep their position
    assert [(r.name, r.order_number, r.class_name) for r in rows] == [("An", 1, "9B"), ("Bình", 3, None)]


def test_parse_requires_a_name_column() -> None:
    with pytest.raises(ValidationError):
        parse_students_workbook(_xlsx([["STT", "Điểm"], [1, 10]]))


@pytest.mark.parametrize("content", [b"", b"not an excel file"])
def test_parse_rejects_empty_or_garbage(content: bytes) -> None:
    with pytest.raises(ValidationError):
        parse_students_workbook(content)


def test_students_workbook_lists_every_student() -> None:
    content = build_students_workbook([_student("An", 12, 1), _student("Bình", 60, 2, Level.NAY_MAM)])

    ws = load_workbook(io.BytesIO(content)).active
    values = list(ws.iter_rows(values_only=True))
    assert values[0] == ("Tên", "Số thứ tự", "Điểm hiện tại", "Cấp độ")
    assert values[1:] == [("An", 1, 12, "hat"), ("Bình", 2, 60, "nay_mam")]


def test_leaderboard_workbook_uses_display_names() -> None:
    entries = [
        LeaderboardEntry(rank=1, student=_student("Bình", 210, level=Level.CAY_TO)),
        LeaderboardEntry(rank=2, student=_student("An", 5)),
    ]

    ws = load_workbook(io.BytesIO(build_leaderboard_workbook(entries))).active
    values = list(ws.iter_rows(values_only=True))
    assert values[0] == ("Hạng", "Tên học sinh", "Điểm", "Cấp độ")
    assert values[1] == (1, "Bình", 210, "Cây to")
    assert values[2] == (2, "An", 5, "Hạt")


def test_export_filename() -> None:
    assert export_filename("bang-xep-hang", date(2024, 3, 4)) == "bang-xep-hang-2024-03-04.xlsx"


def test_parse_keeps_an_explicit_zero_stt() -> None:
    rows = parse_students_workbook(_xlsx([["STT", "Tên"], [0, "An"], [None, "Bình"]]))
    assert [(r.name, r.order_number) for r in rows] == [("An", 0), ("Bình", 2)]


@pytest.mark.parametrize("stt", ["inf", "1e400", "-inf", "nan", "abc"])
def test_parse_unusable_stt_falls_back_to_position(stt: str) -> None:
    rows = parse_students_workbook(_xlsx([["STT", "Tên"], [stt, "An"]]))
    assert [(r.name, r.order_number) for r in rows] == [("An", 1)]


def test_parse_rejects_overlong_name_with_row_number() -> None:
    content = _xlsx([["Tên", "Lớp"], ["An", "9B"], ["x" * 300, "9B"]])
    with pytest.raises(ValidationError) as exc:
        parse_students_workbook(content)
    assert "Row 3" in exc.value.message


def test_parse_rejects_overlong_class_name() -> None:
    with pytest.raises(ValidationError) as exc:
        parse_students_workbook(_xlsx([["Tên", "Lớp"], ["An", "L" * 101]]))
    assert "Row 2" in exc.value.message
