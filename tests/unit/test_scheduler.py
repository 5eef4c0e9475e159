import asyncio
from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock

from core.exceptions import CatalogNotReadyError, NotFoundError
from extraction.scheduler import ExtractionScheduler, TriggerResult
from models.base import RunStatus


def _catalog(*names, schedule=None):
    templates = [SimpleNamespace(name=n, schedule=schedule) for n in names]
    catalog = MagicMock()
    catalog.__contains__.side_effect = lambda name: name in names
    catalog.__iter__.return_value = templates
    return catalog


def _blocking_executor():
    """Executor whose runs wait until release is set"""
    release = asyncio.Event()
    started = []

    async def run(query_name):
        started.append(query_name)
        await release.wait()
        return MagicMock(run_id="r-1", status=RunStatus.SUCCESS)

    executor = MagicMock()
    executor.run = AsyncMock(side_effect=run)
    return executor, release, started


@pytest.mark.asyncio
async def test_trigger_before_catalog_is_ready():
    scheduler = ExtractionScheduler(enabled=False)

    with pytest.raises(CatalogNotReadyError):
        scheduler.trigger("lecturers")


@pytest.mark.asyncio
async def test_trigger_unknown_query():
    executor, _, _ = _blocking_executor()
    scheduler = ExtractionScheduler(_catalog("lecturers"), executor, enabled=False)

    with pytest.raises(NotFoundError):
        scheduler.trigger("nope")


@pytest.mark.asyncio
async def test_second_trigger_is_a_noop_while_running():
    executor, release, started = _blocking_executor()
    scheduler = ExtractionScheduler(_catalog("lecturers"), executor, enabled=False)

    assert scheduler.trigger("lecturers") == TriggerResult.ACCEPTED
    assert scheduler.trigger("lecturers") == TriggerResult.ALREADY_RUNNING
    assert scheduler.is_running("lecturers")

    release.set()
    await scheduler.wait_idle()

    assert started == ["lecturers"]
    assert not scheduler.is_running("lecturers")
    assert scheduler.trigger("lecturers") == TriggerResult.ACCEPTED
    await scheduler.wait_idle()
    assert started == ["lecturers", "lecturers"]


@pytest.mark.asyncio
async def test_different_queries_run_concurrently():
    executor, release, started = _blocking_executor()
    scheduler = ExtractionScheduler(_catalog("lecturers", "trainings"), executor, enabled=False)

    scheduler.trigger("lecturers")
    scheduler.trigger("trainings")
    await asyncio.sleep(0)

    assert scheduler.in_flight() == ["lecturers", "trainings"]
    assert sorted(started) == ["lecturers", "trainings"]

    release.set()
    await scheduler.wait_idle()
    assert scheduler.in_flight() == []


@pytest.mark.asyncio
async def test_executor_failure_releases_the_name():
    executor = MagicMock()
    executor.run = AsyncMock(side_effect=RuntimeError("state database down"))
    scheduler = ExtractionScheduler(_catalog("lecturers"), executor, enabled=False)

    scheduler.trigger("lecturers")
    await scheduler.wait_idle()

    assert not scheduler.is_running("lecturers")


@pytest.mark.asyncio
async def test_shutdown_cancels_in_flight_runs():
    executor, _, started = _blocking_executor()
    scheduler = ExtractionScheduler(_catalog("lecturers"), executor, enabled=False)

    scheduler.trigger("lecturers")
    await asyncio.sleep(0)
    await scheduler.shutdown()

    assert started == ["lecturers"]
    assert scheduler.in_flight() == []


@pytest.mark.asyncio
async def test_start_registers_cron_jobs():
    executor, _, _ = _blocking_executor()
    scheduler = ExtractionScheduler(
        _catalog("lecturers", "trainings", schedule=None),
        executor,
        default_schedule="*/5 * * * *",
        enabled=True,
    )

    scheduler.start()
    try:
        job_ids = sorted(job.id for job in scheduler.scheduler.get_jobs())
        assert job_ids == ["extract:lecturers", "extract:trainings"]
    finally:
        await scheduler.shutdown()


@pytest.mark.asyncio
async def test_timer_skips_unknown_query():
    executor, _, _ = _blocking_executor()
    scheduler = ExtractionScheduler(_catalog("lecturers"), executor, enabled=False)

    await scheduler._on_timer("removed")

    assert scheduler.in_flight() == []
