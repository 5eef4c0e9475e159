"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any, Generic, TypeVar
from datetime import datetime
from models.base import RunStatus, CursorType, utcnow

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Envelope for every endpoint"""
    success: bool
    data: Optional[T] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "ApiResponse":
        return cls(success=True, data=data, message=message)

    @classmethod
    def error(cls, message: str) -> "ApiResponse":
        return cls(success=False, data=None, message=message)


# ============================================================================
# Trigger Schemas
# ============================================================================

class TriggerResponse(BaseModel):
    """Outcome of a trigger call; the run itself finishes asynchronously"""
    query_name: str
    result: str = Field(..., description="accepted or already_running")
    status_url: str


# ============================================================================
# Catalog / Status Schemas
# ============================================================================

class QuerySummary(BaseModel):
    """Catalog entry as exposed over the API"""
    name: str
    description: Optional[str] = None
    parameters: List[str]
    fields: List[str]
    cursor_column: str
    cursor_type: CursorType
    incremental: bool
    schedule: Optional[str] = None
    running: bool = False

    class Config:
        use_enum_values = True


class RunSummary(BaseModel):
    """Recent extraction run"""
    run_id: str
    query_name: str
    status: RunStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    rows_read: int = 0
    rows_emitted: int = 0
    pages_delivered: int = 0
    watermark_before: Optional[str] = None
    watermark_after: Optional[str] = None
    error_message: Optional[str] = None

    @validator("run_id", pre=True)
    def stringify_run_id(cls, v):
        return str(v)

    class Config:
        from_attributes = True
        use_enum_values = True


class QueryStatus(BaseModel):
    """Watermark and recent history of one named query"""
    query: QuerySummary
    watermark: Optional[Any] = None
    watermark_is_initial: bool = False
    last_success_at: Optional[datetime] = None
    running: bool = False
    recent_runs: List[RunSummary] = Field(default_factory=list)


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    timestamp: datetime = Field(default_factory=utcnow)
    catalog_ready: bool
    source_connected: bool
    state_connected: bool
    total_queries: int = 0
    in_flight: List[str] = Field(default_factory=list)
    last_runs: Dict[str, str] = Field(default_factory=dict)

    # Declared last so the validator sees every other field
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("catalog_ready", False) or not values.get("state_connected", False):
            return "unhealthy"
        if not values.get("source_connected", False):
            return "degraded"

        last_runs = values.get("last_runs") or {}
        if any(s == RunStatus.FAILED.value for s in last_runs.values()):
            return "degraded"
        return "healthy"
