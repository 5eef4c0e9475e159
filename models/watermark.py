from sqlalchemy import Column, Integer, String, DateTime, Text, Index, BigInteger
from models.base import Base, utcnow


class QueryWatermark(Base):
    """
    Last successfully extracted cursor value per named query.

    Design:
    - One row per query name
    - cursor_value holds the encoded watermark; cursor_type says how to
      decode and compare it (integer, string, timestamp)
    - Only WatermarkStore.commit writes here
    """
    __tablename__ = "query_watermarks"

    id = Column(Integer, primary_key=True, autoincrement=True)

    query_name = Column(String(200), nullable=False)

    cursor_type = Column(String(20), nullable=False)
    cursor_value = Column(Text, nullable=False)

    last_success_at = Column(DateTime, nullable=True)
    total_commits = Column(BigInteger, default=0, nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_watermark_query_name", "query_name", unique=True),
    )
