"""
Pytest configuration and fixtures
"""

import asyncio
from typing import AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from core.database import create_session_maker, create_source_engine, create_state_engine
from extraction.context import ExtractionContext
from extraction.runs import RunRecorder
from extraction.sink import RecordSink
from extraction.watermarks import WatermarkStore
from models.base import Base
from schemas.catalog import QueryDefinition
from schemas.records import ExtractedRecord, SinkAck

# Source rows: cursor values 1, 2, 5, 5, 9
SOURCE_ROWS = [
    {"id": 1, "operation": "i", "seq": 1, "name": "alpha", "city": "Chengdu"},
    {"id": 2, "operation": "u", "seq": 2, "name": "beta", "city": "Mianyang"},
    {"id": 3, "operation": "i", "seq": 5, "name": "gamma", "city": "Leshan"},
    {"id": 4, "operation": "u", "seq": 5, "name": "delta", "city": "Yibin"},
    {"id": 5, "operation": "d", "seq": 9, "name": "epsilon", "city": "Deyang"},
]

CHANGES_SQL = "SELECT id, operation, seq, name, city FROM changes WHERE seq > :watermark"


async def insert_source_rows(engine: AsyncEngine, rows: List[Dict]):
    async with engine.begin() as conn:
        await conn.execute(
            text(
                "INSERT INTO changes (id, operation, seq, name, city) "
                "VALUES (:id, :operation, :seq, :name, :city)"
            ),
            rows,
        )


@pytest_asyncio.fixture(scope="function")
async def source_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Source database with a populated changes table"""
    engine = create_source_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'source.db'}",
        pool_size=2,
        pool_timeout=5,
    )
    async with engine.begin() as conn:
        await conn.execute(text(
            "CREATE TABLE changes ("
            "id INTEGER PRIMARY KEY, operation VARCHAR(10), seq INTEGER, "
            "name VARCHAR(100), city VARCHAR(100))"
        ))
    await insert_source_rows(engine, SOURCE_ROWS)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def state_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """State database with watermark and run tables created"""
    engine = create_state_engine(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(state_engine) -> async_sessionmaker:
    return create_session_maker(state_engine)


@pytest.fixture
def watermark_store(session_maker) -> WatermarkStore:
    return WatermarkStore(session_maker)


@pytest.fixture
def run_recorder(session_maker) -> RunRecorder:
    return RunRecorder(session_maker)


class MemorySink(RecordSink):
    """
    In-memory sink keyed by (query_name, source_row_id).

    fail_on_call makes the Nth ingest call raise; block_on_call makes the
    Nth and later ingest calls wait on release so tests can hold a run in
    flight. on_call runs before each ingest is recorded.
    """

    def __init__(self, fail_on_call: int = None, block_on_call: int = None):
        self.calls: List[Tuple[str, List[ExtractedRecord]]] = []
        self.records: Dict[Tuple[str, str], ExtractedRecord] = {}
        self.fail_on_call = fail_on_call
        self.block_on_call = block_on_call
        self.on_call: Optional[Callable[[int], Awaitable[None]]] = None
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def ingest(self, query_name: str, batch: Sequence[ExtractedRecord]) -> SinkAck:
        call_number = len(self.calls) + 1

        if self.block_on_call is not None and call_number >= self.block_on_call:
            self.entered.set()
            await self.release.wait()

        if self.fail_on_call is not None and call_number == self.fail_on_call:
            self.fail_on_call = None
            raise RuntimeError("Simulated sink outage")

        if self.on_call is not None:
            await self.on_call(call_number)

        self.calls.append((query_name, list(batch)))
        for record in batch:
            self.records[(query_name, record.source_row_id)] = record
        return SinkAck(accepted=len(batch))

    @property
    def delivered_ids(self) -> List[List[str]]:
        return [[r.source_row_id for r in batch] for _, batch in self.calls]


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()


def _make_definition(**overrides) -> QueryDefinition:
    values = {
        "name": "changes",
        "sql": CHANGES_SQL,
        "parameters": ["watermark"],
        "row_id_column": "id",
        "operation_column": "operation",
        "cursor_column": "seq",
        "cursor_type": "integer",
    }
    values.update(overrides)
    return QueryDefinition(**values)


@pytest.fixture
def changes_definition() -> QueryDefinition:
    return _make_definition()


@pytest_asyncio.fixture(scope="function")
async def extraction_context(source_engine, state_engine, memory_sink, changes_definition):
    """Started context over the sample source, page size 2, timers off"""
    context = ExtractionContext(
        source_engine=source_engine,
        state_engine=state_engine,
        sink=memory_sink,
        definitions=[changes_definition],
        page_size=2,
        scheduler_enabled=False,
    )
    await context.start(start_scheduler=False)

    yield context

    await context.stop()


@pytest.fixture
def make_definition():
    """Factory for QueryDefinitions over the changes table"""
    return _make_definition


@pytest.fixture
def add_source_rows(source_engine):
    """Insert extra rows into the changes table"""
    async def add(rows: List[Dict]):
        await insert_source_rows(source_engine, rows)
    return add
