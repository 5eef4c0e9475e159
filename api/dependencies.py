"""
FastAPI dependencies
"""

from fastapi import Request
from core.exceptions import CatalogNotReadyError
from extraction.context import ExtractionContext


def get_context(request: Request) -> ExtractionContext:
    """Application context created at startup"""
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise CatalogNotReadyError("Extraction service is starting")
    return context


def get_ready_context(request: Request) -> ExtractionContext:
    """Application context whose catalog has been validated"""
    context = get_context(request)
    if not context.ready:
        raise CatalogNotReadyError("Catalog not yet validated")
    return context
