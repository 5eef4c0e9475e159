"""
Load query definitions from annotated .sql files.

Each file starts with a block of ``-- key: value`` comment lines followed
by the SQL body::

    -- name: lecturers
    -- Lecturer course records changed since the last run
    -- params: watermark
    -- row_id: id
    -- operation: operation
    -- cursor: updated_seq:integer
    -- output: training_id, course_id, user_id=lecturer_id
    -- markers: N=insert, M=update, X=delete
    -- schedule: */15 * * * *
    SELECT ...

``output``, ``markers`` and ``default`` may be repeated; their entries
accumulate. Comment lines without a recognised key become the
description.
"""

from pathlib import Path
from typing import Dict, List, Any, Tuple
import logging
import re

from core.exceptions import MalformedTemplateError
from schemas.catalog import QueryDefinition

logger = logging.getLogger(__name__)

_DIRECTIVE = re.compile(r"^--\s*([A-Za-z_]+)\s*:\s*(.*)$")

_KNOWN_KEYS = {
    "name", "params", "row_id", "operation", "cursor", "initial",
    "output", "markers", "default", "schedule",
}


def _split_pairs(value: str) -> List[Tuple[str, str]]:
    """Split 'a=b, c' into [('a', 'b'), ('c', 'c')]"""
    pairs = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" in item:
            left, right = item.split("=", 1)
            pairs.append((left.strip(), right.strip()))
        else:
            pairs.append((item, item))
    return pairs


def parse_definition(text: str, source: str = "<string>") -> QueryDefinition:
    """
    Parse one annotated SQL document into a QueryDefinition.

    Raises:
        MalformedTemplateError: header is missing required keys or the
            body is empty
    """
    header: Dict[str, Any] = {
        "output": {},
        "operation_markers": {},
        "defaults": {},
    }
    description_lines: List[str] = []
    lines = text.splitlines()
    body_start = len(lines)

    for index, raw_line in enumerate(lines):
        line = raw_line.strip()
        if not line:
            continue
        if not line.startswith("--"):
            body_start = index
            break

        match = _DIRECTIVE.match(line)
        key = match.group(1).lower() if match else None
        if key not in _KNOWN_KEYS:
            comment = line.lstrip("-").strip()
            if comment:
                description_lines.append(comment)
            continue

        value = match.group(2).strip()
        if key == "name":
            header["name"] = value
        elif key == "params":
            header["parameters"] = value
        elif key == "row_id":
            header["row_id_column"] = value
        elif key == "operation":
            header["operation_column"] = value
        elif key == "cursor":
            column, _, cursor_type = value.partition(":")
            header["cursor_column"] = column.strip()
            if cursor_type.strip():
                header["cursor_type"] = cursor_type.strip().lower()
        elif key == "initial":
            header["initial_watermark"] = value
        elif key == "output":
            header["output"].update(_split_pairs(value))
        elif key == "markers":
            header["operation_markers"].update(_split_pairs(value))
        elif key == "default":
            header["defaults"].update(_split_pairs(value))
        elif key == "schedule":
            header["schedule"] = value

    sql = "\n".join(lines[body_start:]).strip().rstrip(";").strip()

    missing = [k for k in ("name", "cursor_column") if not header.get(k)]
    if missing or not sql:
        raise MalformedTemplateError(
            f"Definition {source} is incomplete",
            context={
                "source": source,
                "missing_keys": missing,
                "empty_body": not sql,
            }
        )

    if description_lines:
        header["description"] = " ".join(description_lines)

    try:
        return QueryDefinition(sql=sql, **header)
    except ValueError as e:
        raise MalformedTemplateError(
            f"Definition {source} failed validation",
            context={"source": source, "query_name": header.get("name")},
            original_exception=e
        )


def load_definitions(directory: str) -> List[QueryDefinition]:
    """
    Read every *.sql file in a directory, sorted by file name.

    Raises:
        MalformedTemplateError: a file cannot be parsed
        FileNotFoundError: the directory does not exist
    """
    path = Path(directory)
    if not path.is_dir():
        raise FileNotFoundError(f"Query directory not found: {directory}")

    definitions = []
    for sql_file in sorted(path.glob("*.sql")):
        definitions.append(
            parse_definition(sql_file.read_text(encoding="utf-8"), source=str(sql_file))
        )

    logger.info(f"Loaded {len(definitions)} query definitions from {directory}")
    return definitions
