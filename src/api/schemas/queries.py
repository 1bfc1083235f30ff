"""
Query operation schemas.

Request/response models for the /query and /schema endpoints.
"""

from typing import Any, List, Optional
from pydantic import BaseModel, Field


class QueryCreateRequest(BaseModel):
    """Request to submit a new query."""

    query: str = Field(..., min_length=1, description="SQL text to execute", json_schema_extra={"examples": ["SELECT * FROM events LIMIT 10"]})
    name: Optional[str] = Field(default=None, max_length=255, description="Display name (defaults to the query id)")
    database: Optional[str] = Field(default=None, description="Target database (defaults to the configured database)")


class QueryValidateRequest(BaseModel):
    """Request to validate a query with EXPLAIN."""

    query: str = Field(..., min_length=1, description="SQL text to validate")
    database: Optional[str] = None


class QueryCreateResponse(BaseModel):
    """Response from query submission."""

    id: str
    name: str
    status: str
    submitted_at: str


class QueryStatusResponse(BaseModel):
    """Full status view of one query."""

    id: str
    name: str
    status: str
    query: str
    database: Optional[str] = None
    execution_handle: str
    submitted_at: str
    updated_at: str
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    result_received_at: Optional[str] = None
    error_message: Optional[str] = None


class QueryListResponse(BaseModel):
    """Response from query list endpoint."""

    queries: List[QueryStatusResponse] = Field(default=[])
    total: int


class QueryResultsResponse(BaseModel):
    """Stored results of a SUCCEEDED query."""

    id: str
    status: str
    result_received_at: Optional[str] = None
    results: dict[str, Any]


class QueryRefreshResponse(BaseModel):
    id: str
    status: str
    submitted_at: str
    updated_at: str


class QueryCancelResponse(BaseModel):
    id: str
    status: str
    cancelled_at: Optional[str] = None


class QueryDeleteResponse(BaseModel):
    id: str
    deleted: bool = True


class QueryValidateResponse(BaseModel):
    valid: bool
    execution_handle: Optional[str] = None
    error: Optional[str] = None


class ColumnSchemaResponse(BaseModel):
    name: str
    type: str


class TableSchemaResponse(BaseModel):
    name: str
    columns: List[ColumnSchemaResponse] = Field(default=[])


class DatabaseSchemaResponse(BaseModel):
    """Tables and columns of the configured database."""

    catalog: str
    database: str
    tables: List[TableSchemaResponse] = Field(default=[])


class QueryStatsResponse(BaseModel):
    """Tracker status: job counts per status plus loop and lock state."""

    counts: dict[str, int] = Field(..., description="Number of queries per status")
    reconciler_running: bool = Field(..., description="Whether the reconciliation loop is running")
    locked_jobs: int = Field(default=0, description="Queries with an operation holding or awaiting their lock")
