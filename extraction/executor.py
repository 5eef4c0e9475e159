# ============================================================================
# File: extraction/executor.py
# Description: Runs one named query from its watermark to the end of its window
# ============================================================================
"""
Extraction Executor - reads, maps, delivers and commits one named query.

Run lifecycle:
1. Resolve template via the catalog (NotFoundError propagates)
2. Record run start and read the current watermark
3. Check out one pooled source connection for the whole run
4. Page through the template by (cursor, row_id) keyset, streaming each page
5. Deliver each non-empty page through the sink adapter
6. After each acknowledgement, advance a provisional maximum cursor
7. Stop on the first short page; incremental templates commit the provisional watermark

Commits are per run: a failure anywhere before step 7 leaves the
watermark untouched and the whole window is re-read on the next trigger.
"""

from typing import Any, Dict, Optional
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
import asyncio
import logging

from core.config import settings
from core.exceptions import (
    ExtractionServiceError,
    SourceConnectionError,
    WatermarkError,
)
from extraction.catalog import Catalog, WATERMARK_PARAM
from extraction.records import RecordMapper
from extraction.runs import RunRecorder
from extraction.sink import SinkAdapter
from extraction.watermarks import WatermarkStore, encode_cursor
from models.base import RunStatus
from models.extraction_run import ExtractionRun
from schemas.catalog import QueryTemplate
from schemas.records import ExtractedRecord

logger = logging.getLogger(__name__)


def build_page_statement(template: QueryTemplate, engine: AsyncEngine, after_key: bool = False):
    """
    Wrap a template in a keyset-paged outer select.

    The first page has no lower bound. Later pages start strictly after
    the (cursor, row_id) key of the last row read, so rows that move or
    disappear between pages never shift the window.
    """
    quote = engine.dialect.identifier_preparer.quote
    cursor = quote(template.cursor_column)
    row_id = quote(template.row_id_column)
    single_key = template.cursor_column == template.row_id_column

    where = ""
    if after_key:
        if single_key:
            where = f"WHERE {cursor} > :page_cursor "
        else:
            where = (
                f"WHERE ({cursor} > :page_cursor "
                f"OR ({cursor} = :page_cursor AND {row_id} > :page_row_id)) "
            )

    order_by = cursor if single_key else f"{cursor}, {row_id}"
    return text(
        f"SELECT * FROM ({template.sql}) AS _page "
        f"{where}"
        f"ORDER BY {order_by} "
        f"LIMIT :page_size"
    )


class ExtractionExecutor:
    """
    Run named queries against the source and deliver their records.

    Responsibilities:
    - Bind watermark and paging parameters
    - Stream rows page by page, never the whole result set
    - Control watermark advancement (only after every page is acknowledged)
    - Record accurate run metrics and contain per-run failures
    """

    def __init__(
        self,
        catalog: Catalog,
        source_engine: AsyncEngine,
        watermarks: WatermarkStore,
        sink: SinkAdapter,
        runs: RunRecorder,
        page_size: int = None
    ):
        self.catalog = catalog
        self.source_engine = source_engine
        self.watermarks = watermarks
        self.sink = sink
        self.runs = runs
        self.page_size = page_size or settings.PAGE_SIZE

    async def run(self, query_name: str) -> ExtractionRun:
        """
        Run one named query to the end of its current window.

        Per-run failures are contained: they are logged, stored on the
        returned run and never raised. Cancellation is recorded and
        re-raised.

        Raises:
            NotFoundError: query_name is not in the catalog
            asyncio.CancelledError: the run was cancelled
        """
        template = self.catalog.lookup(query_name)
        run = await self.runs.start(query_name)
        committed_after = None

        try:
            watermark = await self.watermarks.get(
                query_name, template.cursor_type, template.initial_watermark
            )
            run.watermark_before = encode_cursor(watermark.value, template.cursor_type)

            logger.info(
                f"Starting extraction for {query_name} "
                f"(watermark: {run.watermark_before}, page_size: {self.page_size})"
            )

            provisional = await self._extract(template, watermark.value, run)

            # Full-scan templates re-read everything, so they never hold a watermark
            watermark_after = run.watermark_before
            if template.incremental and provisional is not None:
                committed = await self.watermarks.commit(query_name, provisional, template.cursor_type)
                committed_after = encode_cursor(committed.value, template.cursor_type)
                watermark_after = committed_after

            await self.runs.complete(run, RunStatus.SUCCESS, watermark_after=watermark_after)

            logger.info(
                f"Extraction completed for {query_name}: "
                f"Read={run.rows_read}, Emitted={run.rows_emitted}, "
                f"Pages={run.pages_delivered}, Watermark={watermark_after}"
            )
            return run

        except asyncio.CancelledError:
            logger.warning(f"Extraction for {query_name} cancelled; watermark not advanced")
            await asyncio.shield(
                self._fail(run, "cancelled", None, force_failed=True, watermark_after=committed_after)
            )
            raise

        except ExtractionServiceError as e:
            logger.error(
                f"Extraction failed for {query_name}: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            await self._fail(
                run,
                e.message,
                e.to_dict(),
                force_failed=isinstance(e, WatermarkError),
                watermark_after=committed_after
            )
            return run

        except Exception as e:
            logger.exception(f"Unexpected error extracting {query_name}")
            await self._fail(
                run,
                str(e),
                {"error_type": type(e).__name__, "message": str(e)},
                watermark_after=committed_after
            )
            return run

    async def _fail(
        self,
        run: ExtractionRun,
        message: str,
        details: Optional[Dict[str, Any]],
        force_failed: bool = False,
        watermark_after: Optional[str] = None
    ):
        # Delivered pages make the run partial. watermark_after is only set
        # when the commit landed before the failure.
        if run.pages_delivered > 0 and not force_failed:
            status = RunStatus.PARTIAL
        else:
            status = RunStatus.FAILED
        await self.runs.complete(
            run,
            status,
            watermark_after=watermark_after if watermark_after is not None else run.watermark_before,
            error_message=message,
            error_details=details
        )

    async def _extract(self, template: QueryTemplate, watermark: Any, run: ExtractionRun) -> Any:
        """
        Page through the template and deliver every page.

        Returns:
            Highest acknowledged cursor, or None when no rows were read
        """
        try:
            conn = await self.source_engine.connect()
        except PoolTimeoutError as e:
            raise SourceConnectionError(
                f"Timed out waiting for a source connection for {template.name}",
                context={"query_name": template.name, "pool_status": self.source_engine.pool.status()},
                original_exception=e
            )
        except (SQLAlchemyError, OSError) as e:
            raise SourceConnectionError(
                f"Cannot connect to source for {template.name}",
                context={"query_name": template.name},
                original_exception=e
            )

        try:
            first_page = build_page_statement(template, self.source_engine)
            next_page = build_page_statement(template, self.source_engine, after_key=True)
            mapper = RecordMapper(template)
            params = dict(template.defaults)
            params["page_size"] = self.page_size
            if template.incremental:
                params[WATERMARK_PARAM] = watermark

            provisional = None
            statement = first_page
            while True:
                page, raw_rows, last_key = await self._read_page(conn, statement, params, mapper, template)
                run.rows_read += raw_rows

                if page:
                    records = list(page.values())
                    await self.sink.deliver(template.name, records)
                    run.pages_delivered += 1
                    run.rows_emitted += len(records)

                    page_max = max(r.cursor for r in records)
                    if provisional is None or page_max > provisional:
                        provisional = page_max

                    logger.debug(
                        f"[{template.name}] page ending at {last_key}: "
                        f"{raw_rows} rows, {len(records)} records delivered"
                    )

                if raw_rows < self.page_size:
                    break

                statement = next_page
                params["page_cursor"], params["page_row_id"] = last_key

            return provisional
        finally:
            await conn.close()

    async def _read_page(
        self,
        conn: AsyncConnection,
        statement,
        params: Dict[str, Any],
        mapper: RecordMapper,
        template: QueryTemplate
    ):
        """
        Stream one page, mapping rows as they arrive.

        Returns the mapped page, the raw row count and the raw
        (cursor, row_id) of the last row, which is where the next page starts.
        """
        page: Dict[str, ExtractedRecord] = {}
        raw_rows = 0
        last_key = None
        try:
            result = await conn.stream(statement, params)
            async for row in result:
                raw_rows += 1
                mapper.collect(page, row._mapping)
                last_key = (row._mapping[template.cursor_column], row._mapping[template.row_id_column])
        except SQLAlchemyError as e:
            raise SourceConnectionError(
                f"Source query failed for {template.name}",
                context={"query_name": template.name, "page_after": repr(params.get("page_cursor"))},
                original_exception=e
            )
        return page, raw_rows, last_key
