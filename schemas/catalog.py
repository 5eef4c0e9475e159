"""
Pydantic schemas for query definitions and validated templates
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from models.base import ChangeOperation, CursorType


class QueryDefinition(BaseModel):
    """
    Static, unvalidated definition of a named query.

    Produced by the definition-file loader (or written inline) and turned
    into a QueryTemplate by Catalog.load once it binds to the source.
    """

    name: str = Field(..., min_length=1, max_length=200)
    sql: str = Field(..., min_length=1)
    parameters: List[str] = Field(default_factory=list)
    defaults: Dict[str, Any] = Field(default_factory=dict)

    # Column -> field; empty means every result column except the operation column
    output: Dict[str, str] = Field(default_factory=dict)

    row_id_column: str = "id"
    operation_column: str = "operation"
    cursor_column: str
    cursor_type: CursorType = CursorType.INTEGER
    initial_watermark: Optional[Any] = None

    operation_markers: Dict[str, str] = Field(default_factory=dict)

    schedule: Optional[str] = None
    description: Optional[str] = None

    @validator("name")
    def clean_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Query name cannot be empty after stripping")
        return v

    @validator("parameters", pre=True)
    def clean_parameters(cls, v):
        """Accept a comma-separated string as well as a list"""
        if v is None:
            return []
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return [str(p).strip() for p in v if str(p).strip()]


class QueryTemplate(BaseModel):
    """
    Validated, immutable named query.

    Only Catalog.load builds these; every referenced column is known to
    exist in the source and every placeholder has a declared parameter.
    """

    name: str
    sql: str
    parameters: List[str]
    defaults: Dict[str, Any]
    output: Dict[str, str]

    row_id_column: str
    operation_column: str
    cursor_column: str
    cursor_type: CursorType
    initial_watermark: Any

    operation_markers: Dict[str, ChangeOperation]

    schedule: Optional[str] = None
    description: Optional[str] = None

    @property
    def incremental(self) -> bool:
        """Full-scan templates have no watermark placeholder"""
        return "watermark" in self.parameters

    class Config:
        frozen = True
