"""
Durable per-query watermark store.

Values are stored as text alongside their cursor type and decoded back
to int / str / datetime before comparison, so ordering always matches
the source column's native ordering.
"""

from typing import Any, Optional
from datetime import datetime, timezone
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from core.exceptions import (
    StaleWatermarkError,
    WatermarkError,
    WatermarkTypeError,
)
from models.base import CursorType, utcnow
from models.watermark import QueryWatermark
from schemas.records import Watermark

logger = logging.getLogger(__name__)

INITIAL_VALUES = {
    CursorType.INTEGER: 0,
    CursorType.STRING: "",
    CursorType.TIMESTAMP: datetime(1970, 1, 1),
}


def coerce_cursor(value: Any, cursor_type: CursorType) -> Any:
    """
    Convert a raw cursor value to the Python type used for comparison.

    Raises:
        ValueError / TypeError: value does not fit the cursor type
    """
    cursor_type = CursorType(cursor_type)
    if value is None:
        return None
    if cursor_type == CursorType.INTEGER:
        if isinstance(value, bool):
            raise TypeError("Boolean is not an integer cursor")
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"Non-integral integer cursor: {value}")
        return int(value)
    if cursor_type == CursorType.TIMESTAMP:
        if not isinstance(value, datetime):
            value = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        # compare as naive UTC
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def encode_cursor(value: Any, cursor_type: CursorType) -> str:
    value = coerce_cursor(value, cursor_type)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def decode_cursor(text: str, cursor_type: CursorType) -> Any:
    return coerce_cursor(text, cursor_type)


def initial_value(cursor_type: CursorType, override: Any = None) -> Any:
    """Minimum watermark for a cursor type; a first run is a full scan"""
    if override is not None:
        return coerce_cursor(override, cursor_type)
    return INITIAL_VALUES[CursorType(cursor_type)]


class WatermarkStore:
    """
    Persist the last extracted cursor value per named query.

    Responsibilities:
    - Return an initial watermark for queries never run before
    - Refuse commits that would move a watermark backwards
    - Commit atomically (row lock + upsert in one transaction)
    """

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def get(
        self,
        query_name: str,
        cursor_type: CursorType = CursorType.INTEGER,
        initial: Any = None
    ) -> Watermark:
        """Current watermark, or the initial value if none recorded"""
        async with self.session_maker() as session:
            result = await session.execute(
                select(QueryWatermark).where(QueryWatermark.query_name == query_name)
            )
            row: Optional[QueryWatermark] = result.scalar_one_or_none()

        if row is None:
            return Watermark(
                query_name=query_name,
                value=initial_value(cursor_type, initial),
                is_initial=True
            )

        if row.cursor_type != CursorType(cursor_type).value:
            raise WatermarkTypeError(
                f"Stored watermark for {query_name} is {row.cursor_type}, expected {CursorType(cursor_type).value}",
                context={"query_name": query_name, "stored_type": row.cursor_type}
            )

        return Watermark(
            query_name=query_name,
            value=decode_cursor(row.cursor_value, row.cursor_type),
            last_success_at=row.last_success_at
        )

    async def commit(
        self,
        query_name: str,
        new_value: Any,
        cursor_type: CursorType = CursorType.INTEGER
    ) -> Watermark:
        """
        Advance the watermark for a query.

        Raises:
            StaleWatermarkError: new_value is below the stored value
            WatermarkTypeError: stored value uses a different cursor type
            WatermarkError: new_value cannot be encoded for cursor_type
        """
        cursor_type = CursorType(cursor_type)
        try:
            new_value = coerce_cursor(new_value, cursor_type)
        except (TypeError, ValueError) as e:
            raise WatermarkError(
                f"Cannot encode watermark for {query_name}",
                context={"query_name": query_name, "new_value": new_value, "cursor_type": cursor_type.value},
                original_exception=e
            )
        if new_value is None:
            raise WatermarkError(
                f"Refusing to commit a null watermark for {query_name}",
                context={"query_name": query_name}
            )

        now = utcnow()
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    select(QueryWatermark)
                    .where(QueryWatermark.query_name == query_name)
                    .with_for_update()
                )
                row: Optional[QueryWatermark] = result.scalar_one_or_none()

                if row is None:
                    row = QueryWatermark(
                        query_name=query_name,
                        cursor_type=cursor_type.value,
                        cursor_value=encode_cursor(new_value, cursor_type),
                        last_success_at=now,
                        total_commits=1,
                    )
                    session.add(row)
                else:
                    if row.cursor_type != cursor_type.value:
                        raise WatermarkTypeError(
                            f"Stored watermark for {query_name} is {row.cursor_type}, got {cursor_type.value}",
                            context={"query_name": query_name, "stored_type": row.cursor_type}
                        )

                    stored = decode_cursor(row.cursor_value, row.cursor_type)
                    if new_value < stored:
                        raise StaleWatermarkError(
                            f"Watermark for {query_name} would regress",
                            context={
                                "query_name": query_name,
                                "stored_value": stored,
                                "new_value": new_value,
                            }
                        )

                    row.cursor_value = encode_cursor(new_value, cursor_type)
                    row.last_success_at = now
                    row.total_commits += 1
                    row.updated_at = now

        logger.info(f"Committed watermark for {query_name}: {new_value}")
        return Watermark(query_name=query_name, value=new_value, last_success_at=now)
