"""
Pydantic schemas for extracted records, sink acknowledgements and watermarks
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import ChangeOperation


class ExtractedRecord(BaseModel):
    """
    One normalized change record.

    Identity is (query_name, source_row_id). Never persisted here;
    ownership passes to the sink on delivery.
    """

    query_name: str
    source_row_id: str = Field(..., min_length=1)
    operation: ChangeOperation
    fields: Dict[str, Any] = Field(default_factory=dict)
    cursor: Any = None

    class Config:
        use_enum_values = True


class SinkBatch(BaseModel):
    """Wire payload posted to the downstream consumer"""
    query_name: str
    records: List[ExtractedRecord]


class SinkAck(BaseModel):
    """Acknowledgement that the sink durably accepted a batch"""
    accepted: int = Field(..., ge=0)


class Watermark(BaseModel):
    """Current extraction position of one named query"""
    query_name: str
    value: Any
    last_success_at: Optional[datetime] = None
    is_initial: bool = False
