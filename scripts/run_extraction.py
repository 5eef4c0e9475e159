"""
Script to run extraction once for named queries (or the whole catalog)
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.exceptions import ExtractionServiceError
from core.logging import setup_logging
from extraction.context import ExtractionContext
from models.base import RunStatus

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run named-query extraction once")
    parser.add_argument("queries", nargs="*", help="Query names to run (default: all)")
    parser.add_argument("--page-size", type=int, default=None, help="Override PAGE_SIZE")
    parser.add_argument("--create-tables", action="store_true", help="Create state tables first")
    return parser.parse_args(argv)


async def run_extraction(args) -> int:
    """Run each query sequentially; returns the number of runs that did not succeed"""
    context = ExtractionContext(page_size=args.page_size, scheduler_enabled=False)

    try:
        await context.start(create_state_tables=args.create_tables, start_scheduler=False)
    except ExtractionServiceError as e:
        logger.error(f"Catalog validation failed: {e}")
        await context.stop()
        return 1

    names = args.queries or context.catalog.names()
    failures = 0

    try:
        for name in names:
            try:
                logger.info(f"Running extraction for query: {name}")
                run = await context.executor.run(name)
                logger.info(
                    f"Extraction {run.status.value} for {name}: "
                    f"Read={run.rows_read}, Emitted={run.rows_emitted}, "
                    f"Pages={run.pages_delivered}, Watermark={run.watermark_after}"
                )
                if run.status != RunStatus.SUCCESS:
                    failures += 1
            except ExtractionServiceError as e:
                logger.error(f"Extraction failed for {name}: {e.message}")
                failures += 1

        logger.info("All extraction jobs completed")
    finally:
        await context.stop()

    return failures


if __name__ == "__main__":
    setup_logging()
    failed = asyncio.run(run_extraction(parse_args()))
    sys.exit(1 if failed else 0)
