"""
Health check endpoint with database and extraction status
"""

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from schemas.api import HealthCheckResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


async def _ping(engine: AsyncEngine, label: str) -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"{label} database connection failed: {str(e)}")
        return False


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request):
    """
    Health check endpoint.

    Returns:
    - Catalog readiness
    - Source and state database connectivity
    - In-flight runs and the latest run status per query
    """
    context = getattr(request.app.state, "context", None)
    if context is None:
        return HealthCheckResponse(catalog_ready=False, source_connected=False, state_connected=False)

    source_connected = await _ping(context.source_engine, "Source")
    state_connected = await _ping(context.state_engine, "State")

    last_runs = {}
    if state_connected:
        try:
            for run in await context.runs.recent(limit=100):
                last_runs.setdefault(run.query_name, run.status.value)
        except Exception as e:
            logger.error(f"Failed to fetch extraction runs: {str(e)}")

    # Status is derived by the validator in HealthCheckResponse
    return HealthCheckResponse(
        catalog_ready=context.ready,
        source_connected=source_connected,
        state_connected=state_connected,
        total_queries=len(context.catalog) if context.ready else 0,
        in_flight=context.scheduler.in_flight(),
        last_runs=last_runs,
    )
