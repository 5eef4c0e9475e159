"""
Map source rows to normalized change records
"""

from typing import Any, Dict, Iterable, List, Mapping
import logging

from core.exceptions import RecordMappingError
from extraction.catalog import normalize_marker
from extraction.watermarks import coerce_cursor
from schemas.catalog import QueryTemplate
from schemas.records import ExtractedRecord

logger = logging.getLogger(__name__)


class RecordMapper:
    """
    Convert result rows of one template into ExtractedRecords.

    Handles:
    - Row id stringification
    - Change-marker to ChangeOperation translation
    - Column -> field renaming
    - Cursor coercion to the template's cursor type
    """

    def __init__(self, template: QueryTemplate):
        self.template = template

    def map_row(self, row: Mapping[str, Any]) -> ExtractedRecord:
        """
        Raises:
            RecordMappingError: null row id or cursor, unknown change marker, bad cursor
        """
        template = self.template

        row_id = row[template.row_id_column]
        if row_id is None or str(row_id) == "":
            raise RecordMappingError(
                f"Null row id in {template.name}",
                context={"query_name": template.name, "column": template.row_id_column}
            )
        if isinstance(row_id, bytes):
            row_id = row_id.decode("utf-8")

        marker = row[template.operation_column]
        operation = template.operation_markers.get(normalize_marker(marker)) if marker is not None else None
        if operation is None:
            raise RecordMappingError(
                f"Unknown change marker in {template.name}",
                context={
                    "query_name": template.name,
                    "column": template.operation_column,
                    "value": marker,
                    "source_row_id": row_id,
                }
            )

        raw_cursor = row[template.cursor_column]
        if raw_cursor is None:
            raise RecordMappingError(
                f"Null cursor in {template.name}",
                context={"query_name": template.name, "column": template.cursor_column, "source_row_id": row_id}
            )
        try:
            cursor = coerce_cursor(raw_cursor, template.cursor_type)
        except (TypeError, ValueError) as e:
            raise RecordMappingError(
                f"Cursor value does not fit {template.cursor_type.value} in {template.name}",
                context={
                    "query_name": template.name,
                    "column": template.cursor_column,
                    "value": raw_cursor,
                },
                original_exception=e
            )

        fields = {field: row[column] for column, field in template.output.items()}

        return ExtractedRecord(
            query_name=template.name,
            source_row_id=str(row_id),
            operation=operation,
            fields=fields,
            cursor=cursor,
        )

    def collect(self, page: Dict[str, ExtractedRecord], row: Mapping[str, Any]) -> ExtractedRecord:
        """
        Map one row into a page keyed by source_row_id.

        Rows arrive in cursor order, so the last occurrence of a repeated
        id is the newest version of that row and replaces the earlier one.
        """
        record = self.map_row(row)
        if record.source_row_id in page:
            logger.warning(
                f"Duplicate row id {record.source_row_id} in one page of {self.template.name}; keeping latest"
            )
            del page[record.source_row_id]
        page[record.source_row_id] = record
        return record

    def map_page(self, rows: Iterable[Mapping[str, Any]]) -> List[ExtractedRecord]:
        """Map a page of rows, keeping one record per source_row_id"""
        page: Dict[str, ExtractedRecord] = {}
        for row in rows:
            self.collect(page, row)
        return list(page.values())
