"""
Named-query catalog.

Turns static QueryDefinitions into validated, immutable QueryTemplates.
Validation runs once at startup and is all-or-nothing: a single bad
definition raises and no catalog is produced.

Checks, in order:
    1. Unique names across all definitions
    2. Placeholders in the SQL match the declared parameters exactly
    3. Every non-watermark parameter has a default value
    4. Output destinations are unique, markers name a known operation,
       the initial watermark fits the cursor type, the schedule parses
    5. A dry-run against the source accepts the statement and returns
       every referenced column
"""

from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Tuple
import logging
import re

from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from core.exceptions import (
    DuplicateNameError,
    MalformedTemplateError,
    NotFoundError,
    SchemaValidationError,
    SourceConnectionError,
)
from extraction.watermarks import initial_value
from models.base import ChangeOperation
from schemas.catalog import QueryDefinition, QueryTemplate

logger = logging.getLogger(__name__)

# Same pattern SQLAlchemy's text() uses to find bind parameters
PLACEHOLDER_PATTERN = re.compile(r"(?<![:\w\\]):(\w+)(?!:)", re.UNICODE)

WATERMARK_PARAM = "watermark"
RESERVED_PARAMS = ("page_size", "page_cursor", "page_row_id")

DEFAULT_MARKERS: Dict[str, ChangeOperation] = {
    "i": ChangeOperation.INSERT,
    "a": ChangeOperation.INSERT,
    "c": ChangeOperation.INSERT,
    "1": ChangeOperation.INSERT,
    "add": ChangeOperation.INSERT,
    "create": ChangeOperation.INSERT,
    "insert": ChangeOperation.INSERT,
    "u": ChangeOperation.UPDATE,
    "m": ChangeOperation.UPDATE,
    "2": ChangeOperation.UPDATE,
    "modify": ChangeOperation.UPDATE,
    "update": ChangeOperation.UPDATE,
    "d": ChangeOperation.DELETE,
    "3": ChangeOperation.DELETE,
    "del": ChangeOperation.DELETE,
    "remove": ChangeOperation.DELETE,
    "delete": ChangeOperation.DELETE,
}


def find_placeholders(sql: str) -> List[str]:
    """Named bind placeholders in order of first appearance"""
    seen = []
    for name in PLACEHOLDER_PATTERN.findall(sql):
        if name not in seen:
            seen.append(name)
    return seen


def normalize_marker(value: Any) -> str:
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    return str(value).strip().lower()


class Catalog:
    """
    Immutable set of validated query templates.

    Built once by Catalog.load and passed by reference to the executor
    and scheduler; lookup() is the only read path they use.
    """

    def __init__(self, templates: Mapping[str, QueryTemplate]):
        self._templates = MappingProxyType(dict(templates))

    @classmethod
    async def load(
        cls,
        definitions: Iterable[QueryDefinition],
        source_engine: AsyncEngine
    ) -> "Catalog":
        """
        Validate every definition and build the catalog.

        Raises:
            DuplicateNameError: two definitions share a name
            MalformedTemplateError: declarations are inconsistent
            SchemaValidationError: the source rejects a statement or lacks a column
            SourceConnectionError: the source cannot be reached for validation
        """
        definitions = list(definitions)

        names = set()
        for definition in definitions:
            if definition.name in names:
                raise DuplicateNameError(
                    f"Duplicate query name: {definition.name}",
                    context={"query_name": definition.name}
                )
            names.add(definition.name)

        checked = [cls._check_definition(d) for d in definitions]

        templates: Dict[str, QueryTemplate] = {}
        if checked:
            try:
                conn = await source_engine.connect()
            except (SQLAlchemyError, OSError) as e:
                raise SourceConnectionError(
                    "Cannot connect to source database for catalog validation",
                    context={"templates": len(checked)},
                    original_exception=e
                )
            try:
                for definition, markers, initial in checked:
                    columns = await cls._dry_run(conn, definition, initial)
                    templates[definition.name] = cls._build_template(
                        definition, markers, initial, columns
                    )
            finally:
                await conn.close()

        logger.info(f"Catalog validated: {len(templates)} templates ({', '.join(templates)})")
        return cls(templates)

    @staticmethod
    def _check_definition(
        definition: QueryDefinition
    ) -> Tuple[QueryDefinition, Dict[str, ChangeOperation], Any]:
        """Static checks that need no database"""
        name = definition.name
        placeholders = find_placeholders(definition.sql)
        declared = list(definition.parameters)

        undeclared = [p for p in placeholders if p not in declared]
        unused = [p for p in declared if p not in placeholders]
        if undeclared or unused:
            raise MalformedTemplateError(
                f"Placeholders and declared parameters disagree in {name}",
                context={"query_name": name, "undeclared": undeclared, "unused": unused}
            )

        reserved = [p for p in declared if p in RESERVED_PARAMS]
        if reserved:
            raise MalformedTemplateError(
                f"Template {name} uses parameters reserved for paging",
                context={"query_name": name, "reserved": reserved}
            )

        no_default = [
            p for p in declared
            if p != WATERMARK_PARAM and p not in definition.defaults
        ]
        if no_default:
            raise MalformedTemplateError(
                f"Parameters without a value in {name}",
                context={"query_name": name, "parameters": no_default}
            )

        destinations = list(definition.output.values())
        duplicated = sorted({f for f in destinations if destinations.count(f) > 1})
        if duplicated:
            raise MalformedTemplateError(
                f"Output fields are not unique in {name}",
                context={"query_name": name, "duplicated_fields": duplicated}
            )

        markers = dict(DEFAULT_MARKERS)
        for code, operation in definition.operation_markers.items():
            try:
                markers[normalize_marker(code)] = ChangeOperation(str(operation).strip().lower())
            except ValueError as e:
                raise MalformedTemplateError(
                    f"Unknown change operation '{operation}' in {name}",
                    context={"query_name": name, "marker": code},
                    original_exception=e
                )

        try:
            initial = initial_value(definition.cursor_type, definition.initial_watermark)
        except (TypeError, ValueError) as e:
            raise MalformedTemplateError(
                f"Initial watermark does not fit cursor type in {name}",
                context={
                    "query_name": name,
                    "cursor_type": definition.cursor_type.value,
                    "initial_watermark": definition.initial_watermark,
                },
                original_exception=e
            )

        if definition.schedule:
            try:
                CronTrigger.from_crontab(definition.schedule)
            except ValueError as e:
                raise MalformedTemplateError(
                    f"Invalid schedule in {name}",
                    context={"query_name": name, "schedule": definition.schedule},
                    original_exception=e
                )

        return definition, markers, initial

    @staticmethod
    async def _dry_run(
        conn: AsyncConnection,
        definition: QueryDefinition,
        initial: Any
    ) -> List[str]:
        """Prepare the statement against the source without fetching rows"""
        params = dict(definition.defaults)
        if WATERMARK_PARAM in definition.parameters:
            params[WATERMARK_PARAM] = initial

        probe = text(f"SELECT * FROM ({definition.sql}) AS _probe WHERE 1 = 0")
        try:
            result = await conn.execute(probe, params)
            columns = list(result.keys())
            result.close()
        except SQLAlchemyError as e:
            raise SchemaValidationError(
                f"Source rejected template {definition.name}",
                context={"query_name": definition.name},
                original_exception=e
            )

        referenced = [definition.row_id_column, definition.operation_column, definition.cursor_column]
        referenced.extend(definition.output)
        missing = [c for c in referenced if c not in columns]
        if missing:
            raise SchemaValidationError(
                f"Template {definition.name} references unknown columns",
                context={"query_name": definition.name, "missing_columns": missing}
            )

        logger.debug(f"Dry-run ok for {definition.name}: {columns}")
        return columns

    @staticmethod
    def _build_template(
        definition: QueryDefinition,
        markers: Dict[str, ChangeOperation],
        initial: Any,
        columns: List[str]
    ) -> QueryTemplate:
        output = dict(definition.output) or {
            c: c for c in columns if c != definition.operation_column
        }
        return QueryTemplate(
            name=definition.name,
            sql=definition.sql,
            parameters=list(definition.parameters),
            defaults=dict(definition.defaults),
            output=output,
            row_id_column=definition.row_id_column,
            operation_column=definition.operation_column,
            cursor_column=definition.cursor_column,
            cursor_type=definition.cursor_type,
            initial_watermark=initial,
            operation_markers=markers,
            schedule=definition.schedule,
            description=definition.description,
        )

    def lookup(self, name: str) -> QueryTemplate:
        """
        Raises:
            NotFoundError: no template with this name
        """
        try:
            return self._templates[name]
        except KeyError:
            raise NotFoundError(
                f"Unknown query: {name}",
                context={"query_name": name}
            )

    def names(self) -> List[str]:
        return list(self._templates)

    def __contains__(self, name: object) -> bool:
        return name in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self) -> Iterator[QueryTemplate]:
        return iter(self._templates.values())
