from datetime import datetime, timezone
from sqlalchemy import JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# ENUMS
# ============================================================================

class ChangeOperation(str, enum.Enum):
    """Change-operation indicator carried by every extracted record"""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class RunStatus(str, enum.Enum):
    """Extraction run outcome"""
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class CursorType(str, enum.Enum):
    """Ordering used to compare watermark values"""
    INTEGER = "integer"
    STRING = "string"
    TIMESTAMP = "timestamp"
