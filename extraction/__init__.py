"""
Named-query catalog and incremental extraction engine.

Modules:
    definitions: Load annotated .sql files into QueryDefinitions
    catalog: Validate definitions against the source into an immutable Catalog
    watermarks: Durable per-query watermark store with monotonic commits
    records: Map source rows to ExtractedRecords
    sink: Sink adapter, HTTP sink and logging sink
    runs: ExtractionRun persistence
    executor: Page, stream, deliver and commit one named query
    scheduler: Per-name exclusive dispatch and cron timers
    context: Wire everything together for the API and scripts

Architecture:
    Catalog -> Scheduler.trigger(Q) -> Executor.run(Q)
        -> WatermarkStore.get(Q) -> source pages -> SinkAdapter.deliver
        -> WatermarkStore.commit(Q)

    Watermarks only move after the sink has acknowledged every page of a
    run, so delivery is at-least-once and the sink must tolerate
    duplicates keyed by source_row_id.

Usage:
    from extraction.context import ExtractionContext

    context = ExtractionContext()
    await context.start()
    context.scheduler.trigger("lecturers")
"""

__all__ = [
    "Catalog",
    "WatermarkStore",
    "RecordMapper",
    "SinkAdapter",
    "HttpSink",
    "RunRecorder",
    "ExtractionExecutor",
    "ExtractionScheduler",
    "ExtractionContext",
]
