"""
Core utilities and configuration for the extraction service.

Modules:
    config: Application configuration and environment variable management
    database: Source pool, state engine and session factories
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import create_source_engine, create_state_engine
    from core.exceptions import CatalogError, SinkError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "create_source_engine",
    "create_state_engine",
    "create_session_maker",
    "setup_logging",
    # Exceptions
    "ExtractionServiceError",
    "RetryableError",
    "NonRetryableError",
    "CatalogError",
    "DuplicateNameError",
    "MalformedTemplateError",
    "SchemaValidationError",
    "NotFoundError",
    "CatalogNotReadyError",
    "WatermarkError",
    "StaleWatermarkError",
    "WatermarkTypeError",
    "SourceConnectionError",
    "RecordMappingError",
    "SinkError",
]
