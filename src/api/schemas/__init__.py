"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .queries import (
    QueryCreateRequest,
    QueryCreateResponse,
    QueryStatusResponse,
    QueryListResponse,
    QueryResultsResponse,
    QueryRefreshResponse,
    QueryCancelResponse,
    QueryDeleteResponse,
    QueryValidateRequest,
    QueryValidateResponse,
    QueryStatsResponse,
    DatabaseSchemaResponse,
)

__all__ = [
    "QueryCreateRequest",
    "QueryCreateResponse",
    "QueryStatusResponse",
    "QueryListResponse",
    "QueryResultsResponse",
    "QueryRefreshResponse",
    "QueryCancelResponse",
    "QueryDeleteResponse",
    "QueryValidateRequest",
    "QueryValidateResponse",
    "QueryStatsResponse",
    "DatabaseSchemaResponse",
]
