"""
Extraction run history
"""

from fastapi import APIRouter, Depends, Query, Request
from typing import Optional
from api.dependencies import get_context
from core.exceptions import NotFoundError
from extraction.context import ExtractionContext
from schemas.api import ApiResponse, RunSummary
import logging
import uuid

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/runs", tags=["Runs"])


@router.get("", response_model=ApiResponse)
async def list_runs(
    request: Request,
    query_name: Optional[str] = Query(None, description="Filter by query name"),
    limit: int = Query(20, ge=1, le=200, description="Maximum runs to return"),
    context: ExtractionContext = Depends(get_context)
):
    """Most recent extraction runs, newest first"""
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")
    logger.info(f"[{request_id}] GET /runs - query_name={query_name}, limit={limit}")

    runs = await context.runs.recent(query_name=query_name, limit=limit)
    return ApiResponse.ok([RunSummary.from_orm(r) for r in runs])


@router.get("/{run_id}", response_model=ApiResponse)
async def get_run(
    run_id: uuid.UUID,
    request: Request,
    context: ExtractionContext = Depends(get_context)
):
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")
    logger.info(f"[{request_id}] GET /runs/{run_id}")

    run = await context.runs.get(run_id)
    if run is None:
        raise NotFoundError(f"Unknown run: {run_id}", context={"run_id": str(run_id)})
    return ApiResponse.ok(RunSummary.from_orm(run))
