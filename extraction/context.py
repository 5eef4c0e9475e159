"""
Application context: build and own every long-lived component.

start() is all-or-nothing. If the catalog fails to validate, the
error propagates, the scheduler never gets a catalog and every trigger
is refused with CatalogNotReadyError.
"""

from typing import Iterable, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from core.config import settings
from core.database import create_session_maker, create_source_engine, create_state_engine
from extraction.catalog import Catalog
from extraction.definitions import load_definitions
from extraction.executor import ExtractionExecutor
from extraction.runs import RunRecorder
from extraction.scheduler import ExtractionScheduler
from extraction.sink import HttpSink, LoggingSink, RecordSink, SinkAdapter
from extraction.watermarks import WatermarkStore
from models.base import Base
from schemas.catalog import QueryDefinition

logger = logging.getLogger(__name__)


class ExtractionContext:
    """
    Wires engines, catalog, watermark store, sink, executor and scheduler.

    Everything is injectable for tests; anything left out is built from
    settings.
    """

    def __init__(
        self,
        source_engine: Optional[AsyncEngine] = None,
        state_engine: Optional[AsyncEngine] = None,
        sink: Optional[RecordSink] = None,
        definitions: Optional[Iterable[QueryDefinition]] = None,
        page_size: int = None,
        scheduler_enabled: bool = None
    ):
        self.source_engine = source_engine or create_source_engine()
        self.state_engine = state_engine or create_state_engine()
        self.session_maker = create_session_maker(self.state_engine)

        if sink is None:
            sink = HttpSink(settings.SINK_URL) if settings.SINK_URL else LoggingSink()
        self.sink = SinkAdapter(sink)

        self._definitions = list(definitions) if definitions is not None else None
        self.page_size = page_size or settings.PAGE_SIZE

        self.watermarks = WatermarkStore(self.session_maker)
        self.runs = RunRecorder(self.session_maker)
        self.scheduler = ExtractionScheduler(enabled=scheduler_enabled)
        self.catalog: Optional[Catalog] = None
        self.executor: Optional[ExtractionExecutor] = None

    @property
    def ready(self) -> bool:
        return self.catalog is not None

    async def start(self, create_state_tables: bool = False, start_scheduler: bool = True):
        """
        Validate the catalog and start serving.

        Raises:
            CatalogError: a template failed validation
            SourceConnectionError: the source is unreachable
        """
        if create_state_tables:
            async with self.state_engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        definitions = self._definitions
        if definitions is None:
            definitions = load_definitions(settings.QUERY_DIR)

        catalog = await Catalog.load(definitions, self.source_engine)
        executor = ExtractionExecutor(
            catalog=catalog,
            source_engine=self.source_engine,
            watermarks=self.watermarks,
            sink=self.sink,
            runs=self.runs,
            page_size=self.page_size,
        )

        self.catalog = catalog
        self.executor = executor
        self.scheduler.bind(catalog, executor)

        if start_scheduler:
            self.scheduler.start()

        logger.info(f"Extraction service ready with {len(catalog)} queries")

    async def stop(self):
        """Cancel in-flight runs and release every resource"""
        await self.scheduler.shutdown()
        await self.sink.close()
        await self.source_engine.dispose()
        await self.state_engine.dispose()
        logger.info("Extraction service stopped")
