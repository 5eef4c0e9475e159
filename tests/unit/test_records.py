import pytest

from core.exceptions import RecordMappingError
from extraction.catalog import DEFAULT_MARKERS
from extraction.records import RecordMapper
from models.base import ChangeOperation, CursorType
from schemas.catalog import QueryTemplate


@pytest.fixture
def template():
    markers = dict(DEFAULT_MARKERS)
    markers["x"] = ChangeOperation.DELETE
    return QueryTemplate(
        name="lecturers",
        sql="SELECT 1",
        parameters=["watermark"],
        defaults={},
        output={"course_id": "course_id", "user_id": "lecturer_id"},
        row_id_column="id",
        operation_column="state",
        cursor_column="seq",
        cursor_type=CursorType.INTEGER,
        initial_watermark=0,
        operation_markers=markers,
    )


def _row(**overrides):
    row = {"id": 7, "state": "I", "seq": 3, "course_id": "C-1", "user_id": "U-9"}
    row.update(overrides)
    return row


def test_map_row(template):
    record = RecordMapper(template).map_row(_row())

    assert record.query_name == "lecturers"
    assert record.source_row_id == "7"
    assert record.operation == ChangeOperation.INSERT.value
    assert record.fields == {"course_id": "C-1", "lecturer_id": "U-9"}
    assert record.cursor == 3


@pytest.mark.parametrize("marker, operation", [
    ("u", ChangeOperation.UPDATE),
    (" Delete ", ChangeOperation.DELETE),
    (2, ChangeOperation.UPDATE),
    ("X", ChangeOperation.DELETE),
    (b"a", ChangeOperation.INSERT),
])
def test_map_row_translates_markers(template, marker, operation):
    record = RecordMapper(template).map_row(_row(state=marker))
    assert record.operation == operation.value


def test_map_row_unknown_marker(template):
    with pytest.raises(RecordMappingError) as exc_info:
        RecordMapper(template).map_row(_row(state="?"))
    assert exc_info.value.context["value"] == "?"


@pytest.mark.parametrize("row_id", [None, ""])
def test_map_row_requires_row_id(template, row_id):
    with pytest.raises(RecordMappingError):
        RecordMapper(template).map_row(_row(id=row_id))


def test_map_row_rejects_bad_cursor(template):
    with pytest.raises(RecordMappingError):
        RecordMapper(template).map_row(_row(seq="yesterday"))


def test_map_row_rejects_null_cursor(template):
    with pytest.raises(RecordMappingError) as exc_info:
        RecordMapper(template).map_row(_row(seq=None))
    assert exc_info.value.context["column"] == "seq"


def test_map_page_keeps_latest_duplicate(template):
    rows = [
        _row(id=1, seq=1, state="i"),
        _row(id=2, seq=2),
        _row(id=1, seq=3, state="u", course_id="C-2"),
    ]
    records = RecordMapper(template).map_page(rows)

    assert [r.source_row_id for r in records] == ["2", "1"]
    assert records[1].operation == ChangeOperation.UPDATE.value
    assert records[1].fields["course_id"] == "C-2"
