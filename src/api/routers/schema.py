"""
Schema router.

- GET /schema - List tables and columns of the configured database
"""

from fastapi import APIRouter, Depends, HTTPException

from ..schemas.queries import (
    ColumnSchemaResponse,
    DatabaseSchemaResponse,
    TableSchemaResponse,
)
from .._service_state import get_query_service
from src.tracker.errors import BackendError
from src.tracker.service import QueryService

router = APIRouter()


@router.get("", response_model=DatabaseSchemaResponse)
async def get_schema(service: QueryService = Depends(get_query_service)):
    """List the configured database's tables, sorted by name."""
    try:
        schema = await service.get_schema()
    except BackendError as e:
        raise HTTPException(
            status_code=502,
            detail={"error": "SCHEMA_LOOKUP_FAILED", "message": str(e)},
        )

    return DatabaseSchemaResponse(
        catalog=schema.catalog,
        database=schema.database,
        tables=[
            TableSchemaResponse(
                name=table.name,
                columns=[ColumnSchemaResponse(**column) for column in table.columns],
            )
            for table in schema.tables
        ],
    )
