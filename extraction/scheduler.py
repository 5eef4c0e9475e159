"""
Scheduler / dispatcher for extraction runs.

trigger() is the single entry point for both timers and on-demand
requests. It guarantees at most one in-flight run per query name;
runs for different names execute concurrently.
"""

from typing import Dict, List, Optional
import asyncio
import enum
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.config import settings
from core.exceptions import CatalogNotReadyError, NotFoundError
from extraction.catalog import Catalog
from extraction.executor import ExtractionExecutor

logger = logging.getLogger(__name__)


class TriggerResult(str, enum.Enum):
    ACCEPTED = "accepted"
    ALREADY_RUNNING = "already_running"


class ExtractionScheduler:
    """
    Dispatch extraction runs with per-name mutual exclusion.

    The in-flight task map is the exclusion token: it is checked and set
    without an intervening await, so concurrent trigger() calls for the
    same name cannot both dispatch.
    """

    def __init__(
        self,
        catalog: Optional[Catalog] = None,
        executor: Optional[ExtractionExecutor] = None,
        default_schedule: Optional[str] = None,
        enabled: bool = None
    ):
        self.catalog = catalog
        self.executor = executor
        self.default_schedule = default_schedule if default_schedule is not None else settings.DEFAULT_SCHEDULE
        self.enabled = settings.SCHEDULER_ENABLED if enabled is None else enabled
        self.scheduler = AsyncIOScheduler()
        self._in_flight: Dict[str, asyncio.Task] = {}

    def bind(self, catalog: Catalog, executor: ExtractionExecutor):
        """Attach the validated catalog; triggers are refused until then"""
        self.catalog = catalog
        self.executor = executor

    @property
    def ready(self) -> bool:
        return self.catalog is not None and self.executor is not None

    def trigger(self, query_name: str) -> TriggerResult:
        """
        Enqueue a run unless one is already in flight for this name.

        Raises:
            CatalogNotReadyError: catalog has not been validated yet
            NotFoundError: query_name is not in the catalog
        """
        if not self.ready:
            raise CatalogNotReadyError(
                "Catalog not yet validated",
                context={"query_name": query_name}
            )
        if query_name not in self.catalog:
            raise NotFoundError(
                f"Unknown query: {query_name}",
                context={"query_name": query_name}
            )

        if query_name in self._in_flight:
            logger.info(f"Run for {query_name} already in flight; trigger ignored")
            return TriggerResult.ALREADY_RUNNING

        task = asyncio.create_task(self._run(query_name), name=f"extract:{query_name}")
        self._in_flight[query_name] = task
        task.add_done_callback(lambda t, name=query_name: self._release(name, t))
        logger.info(f"Run for {query_name} accepted")
        return TriggerResult.ACCEPTED

    def _release(self, query_name: str, task: asyncio.Task):
        if self._in_flight.get(query_name) is task:
            del self._in_flight[query_name]

    async def _run(self, query_name: str):
        try:
            run = await self.executor.run(query_name)
            logger.info(f"Run {run.run_id} for {query_name} finished: {run.status.value}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # The executor contains run failures; this is the state store itself failing
            logger.error(f"Run for {query_name} could not be recorded: {e}")

    def is_running(self, query_name: str) -> bool:
        return query_name in self._in_flight

    def in_flight(self) -> List[str]:
        return sorted(self._in_flight)

    async def wait_idle(self):
        """Wait until every in-flight run has finished"""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    async def _on_timer(self, query_name: str):
        try:
            self.trigger(query_name)
        except (CatalogNotReadyError, NotFoundError) as e:
            logger.warning(f"Scheduled trigger skipped: {e.message}")

    def start(self):
        """Register a cron job per scheduled template and start the timer"""
        if not self.ready:
            raise CatalogNotReadyError("Cannot start scheduler before the catalog is validated")

        if not self.enabled:
            logger.info("Extraction scheduler disabled; runs are on-demand only")
            return

        jobs = 0
        for template in self.catalog:
            schedule = template.schedule or self.default_schedule
            if not schedule:
                continue
            self.scheduler.add_job(
                self._on_timer,
                trigger=CronTrigger.from_crontab(schedule),
                args=[template.name],
                id=f"extract:{template.name}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            jobs += 1

        self.scheduler.start()
        logger.info(f"Extraction scheduler started with {jobs} scheduled queries")

    async def shutdown(self):
        """Stop the timer, cancel in-flight runs and wait for them"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} in-flight runs")
        logger.info("Extraction scheduler stopped")
