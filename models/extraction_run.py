from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Float, Integer, Text, Index, Uuid
import uuid
from models.base import Base, JSONType, RunStatus, utcnow


class ExtractionRun(Base):
    """
    One execution of a named query.

    Purpose:
    - Status surface for asynchronous trigger outcomes
    - Audit trail of watermark movement
    - Error tracking and debugging
    """
    __tablename__ = "extraction_runs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(Uuid, default=uuid.uuid4, unique=True, nullable=False, index=True)

    query_name = Column(String(200), nullable=False, index=True)

    status = Column(Enum(RunStatus), default=RunStatus.RUNNING, nullable=False, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    rows_read = Column(Integer, default=0, nullable=False)
    rows_emitted = Column(Integer, default=0, nullable=False)
    pages_delivered = Column(Integer, default=0, nullable=False)

    # Watermark movement
    watermark_before = Column(Text, nullable=True)
    watermark_after = Column(Text, nullable=True)

    # Error tracking
    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)

    __table_args__ = (
        Index("idx_extraction_run_query_started", "query_name", "started_at"),
        Index("idx_extraction_run_status", "status", "started_at"),
    )
