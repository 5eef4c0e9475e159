"""
Catalog listing, per-query status and the trigger endpoint
"""

from fastapi import APIRouter, Depends, Query, Request, Response, status
from api.dependencies import get_context, get_ready_context
from extraction.context import ExtractionContext
from extraction.scheduler import TriggerResult
from extraction.watermarks import encode_cursor
from schemas.api import ApiResponse, QueryStatus, QuerySummary, RunSummary, TriggerResponse
from schemas.catalog import QueryTemplate
import logging
import uuid

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/queries", tags=["Queries"])


def _summary(template: QueryTemplate, context: ExtractionContext) -> QuerySummary:
    return QuerySummary(
        name=template.name,
        description=template.description,
        parameters=template.parameters,
        fields=list(template.output.values()),
        cursor_column=template.cursor_column,
        cursor_type=template.cursor_type,
        incremental=template.incremental,
        schedule=template.schedule or context.scheduler.default_schedule,
        running=context.scheduler.is_running(template.name),
    )


@router.get("", response_model=ApiResponse)
async def list_queries(context: ExtractionContext = Depends(get_ready_context)):
    """List every validated query in the catalog"""
    return ApiResponse.ok([_summary(t, context) for t in context.catalog])


@router.get("/{query_name}", response_model=ApiResponse)
async def get_query_status(
    query_name: str,
    limit: int = Query(10, ge=1, le=100, description="Number of recent runs to return"),
    context: ExtractionContext = Depends(get_ready_context)
):
    """
    Watermark and recent run history for one query.

    Trigger outcomes are read here, not from the trigger response.
    """
    template = context.catalog.lookup(query_name)
    watermark = await context.watermarks.get(
        query_name, template.cursor_type, template.initial_watermark
    )
    runs = await context.runs.recent(query_name=query_name, limit=limit)

    return ApiResponse.ok(QueryStatus(
        query=_summary(template, context),
        watermark=encode_cursor(watermark.value, template.cursor_type),
        watermark_is_initial=watermark.is_initial,
        last_success_at=watermark.last_success_at,
        running=context.scheduler.is_running(query_name),
        recent_runs=[RunSummary.from_orm(r) for r in runs],
    ))


@router.post("/{query_name}/runs", response_model=ApiResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_run(
    query_name: str,
    request: Request,
    response: Response,
    context: ExtractionContext = Depends(get_context)
):
    """
    Trigger a run.

    - 202: run enqueued
    - 200: a run for this query is already in flight (no-op)
    - 404: unknown query
    - 503: catalog not validated
    """
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")
    result = context.scheduler.trigger(query_name)

    if result == TriggerResult.ALREADY_RUNNING:
        response.status_code = status.HTTP_200_OK

    logger.info(f"[{request_id}] POST /queries/{query_name}/runs -> {result.value}")
    return ApiResponse.ok(TriggerResponse(
        query_name=query_name,
        result=result.value,
        status_url=f"/queries/{query_name}",
    ))
