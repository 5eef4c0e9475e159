"""
Extraction run tracking
"""

from typing import Any, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging
import uuid

from models.base import RunStatus, utcnow
from models.extraction_run import ExtractionRun

logger = logging.getLogger(__name__)


class RunRecorder:
    """
    Persist ExtractionRun rows.

    Runs are written when they start and again when they finish, so an
    in-flight or crashed run is still visible as RUNNING.
    """

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def start(self, query_name: str, watermark_before: Optional[str] = None) -> ExtractionRun:
        """Create run record"""
        run = ExtractionRun(
            run_id=uuid.uuid4(),
            query_name=query_name,
            status=RunStatus.RUNNING,
            started_at=utcnow(),
            rows_read=0,
            rows_emitted=0,
            pages_delivered=0,
            watermark_before=watermark_before,
        )
        async with self.session_maker() as session:
            session.add(run)
            await session.commit()
            await session.refresh(run)
        return run

    async def complete(
        self,
        run: ExtractionRun,
        status: RunStatus,
        watermark_after: Optional[str] = None,
        error_message: Optional[str] = None,
        error_details: Optional[Dict[str, Any]] = None
    ) -> ExtractionRun:
        """Finalize run with statistics"""
        run.status = status
        run.completed_at = utcnow()
        run.duration_seconds = (run.completed_at - run.started_at).total_seconds()
        run.watermark_after = watermark_after
        run.error_message = error_message
        run.error_details = error_details

        async with self.session_maker() as session:
            await session.merge(run)
            await session.commit()
        return run

    async def recent(self, query_name: Optional[str] = None, limit: int = 10) -> List[ExtractionRun]:
        """Most recent runs first"""
        stmt = select(ExtractionRun).order_by(ExtractionRun.started_at.desc(), ExtractionRun.id.desc())
        if query_name:
            stmt = stmt.where(ExtractionRun.query_name == query_name)
        async with self.session_maker() as session:
            result = await session.execute(stmt.limit(limit))
            return list(result.scalars().all())

    async def get(self, run_id: uuid.UUID) -> Optional[ExtractionRun]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(ExtractionRun).where(ExtractionRun.run_id == run_id)
            )
            return result.scalar_one_or_none()
