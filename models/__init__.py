"""
SQLAlchemy ORM models for the state database.

The state database is owned by this service; the source database is
external and never written to, so it has no models here.

Models:
    base: Base declarative class and shared enums (ChangeOperation, RunStatus, CursorType)
    watermark: Per-query extraction watermark
    extraction_run: Extraction run tracking and metrics

Usage:
    from models.watermark import QueryWatermark
    from models.extraction_run import ExtractionRun
    from models.base import RunStatus
"""

__all__ = [
    "Base",
    "ChangeOperation",
    "RunStatus",
    "CursorType",
    "QueryWatermark",
    "ExtractionRun",
]
