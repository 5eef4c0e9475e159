"""
Pydantic schemas for data validation and serialization.

Schemas:
    catalog: QueryDefinition (input) and QueryTemplate (validated, frozen)
    records: ExtractedRecord, SinkBatch, SinkAck and Watermark
    api: API response envelopes and payloads

Usage:
    from schemas.catalog import QueryDefinition
    from schemas.records import ExtractedRecord, SinkAck
    from schemas.api import ApiResponse, RunSummary
"""

__all__ = [
    "QueryDefinition",
    "QueryTemplate",
    "ExtractedRecord",
    "SinkBatch",
    "SinkAck",
    "Watermark",
    "ApiResponse",
    "TriggerResponse",
    "QuerySummary",
    "QueryStatus",
    "RunSummary",
    "HealthCheckResponse",
]
