"""
FastAPI application initialization
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from api.routes import health, queries, runs
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.exceptions import CatalogNotReadyError, ExtractionServiceError, NotFoundError
from core.logging import setup_logging
from extraction.context import ExtractionContext
from schemas.api import ApiResponse
import logging

setup_logging()
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Query Extraction Service API",
    description="Named-query catalog with incremental, watermark-driven extraction",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(queries.router)
app.include_router(runs.router)


def _error_response(status_code: int, exc: ExtractionServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse.error(exc.message).dict()
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(CatalogNotReadyError)
async def not_ready_handler(request: Request, exc: CatalogNotReadyError):
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc)


@app.exception_handler(ExtractionServiceError)
async def service_error_handler(request: Request, exc: ExtractionServiceError):
    logger.error(f"Request failed: {exc}", extra={"error_context": exc.to_dict()})
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


@app.on_event("startup")
async def startup_event():
    """Validate the catalog; the service does not serve if any template is invalid"""
    logger.info("Starting Query Extraction Service API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Query directory: {settings.QUERY_DIR}")

    if getattr(app.state, "context", None) is not None:
        logger.info("Using pre-configured extraction context")
        return

    context = ExtractionContext()
    app.state.context = context
    try:
        await context.start()
    except ExtractionServiceError as e:
        logger.error(f"Catalog validation failed: {e}", extra={"error_context": e.to_dict()})
        await context.stop()
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Query Extraction Service API")
    context = getattr(app.state, "context", None)
    if context is not None:
        await context.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Query Extraction Service API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "queries": "/queries",
            "trigger": "/queries/{name}/runs",
            "runs": "/runs"
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT)
