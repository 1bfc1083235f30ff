"""
Queries router for tracked query management.

- POST /query - Submit a query
- GET /query - List queries (newest first)
- POST /query/validate - Validate a query with EXPLAIN (not persisted)
- GET /query/stats - Query counts per status and reconciliation loop state
- GET /query/{query_id}/status - Get query status
- GET /query/{query_id}/results - Get stored results (SUCCEEDED only)
- POST /query/{query_id}/refresh - Re-run a finished query
- POST /query/{query_id}/cancel - Cancel a running query
- DELETE /query/{query_id} - Delete a query and its results
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from ..schemas.queries import (
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
)
from .._service_state import get_query_service
from src.tracker.errors import (
    BackendError,
    InvalidStateError,
    JobNotFoundError,
    TrackerError,
)
from src.tracker.service import QueryService

router = APIRouter()

# InvalidStateError code -> API error code
_INVALID_STATE_ERRORS = {
    InvalidStateError.RUNNING: "QUERY_RUNNING",
    InvalidStateError.ALREADY_CANCELLED: "QUERY_ALREADY_CANCELLED",
    InvalidStateError.ALREADY_COMPLETED: "QUERY_ALREADY_COMPLETED",
    InvalidStateError.CANCELLED: "QUERY_CANCELLED",
    InvalidStateError.RESULTS_NOT_AVAILABLE: "RESULTS_NOT_AVAILABLE",
}


def _http_error(e: TrackerError, fallback_code: str) -> HTTPException:
    """Map a tracker error onto an HTTPException."""
    if isinstance(e, JobNotFoundError):
        return HTTPException(
            status_code=404,
            detail={"error": "QUERY_NOT_FOUND", "message": str(e), "id": e.job_id},
        )
    if isinstance(e, InvalidStateError):
        return HTTPException(
            status_code=409,
            detail={
                "error": _INVALID_STATE_ERRORS.get(e.code, e.code),
                "message": str(e),
                "id": e.job_id,
                "status": e.status,
            },
        )
    # Backend failures are upstream errors; storage and anything else are ours
    status_code = 502 if isinstance(e, BackendError) else 500
    return HTTPException(status_code=status_code, detail={"error": fallback_code, "message": str(e)})


def _job_to_response(job) -> QueryStatusResponse:
    """Convert a QueryJob entity to API response."""
    return QueryStatusResponse(
        id=job.id,
        name=job.display_name,
        status=job.status.value,
        query=job.query_text,
        database=job.target_database,
        execution_handle=job.execution_handle,
        submitted_at=job.submitted_at,
        updated_at=job.updated_at,
        completed_at=job.completed_at,
        cancelled_at=job.cancelled_at,
        result_received_at=job.result_received_at,
        error_message=job.error_message,
    )


@router.post("", response_model=QueryCreateResponse, status_code=202)
async def create_query(
    request: QueryCreateRequest,
    service: QueryService = Depends(get_query_service),
):
    """
    Submit a query for asynchronous execution.

    The query starts RUNNING; the reconciliation loop downloads results once
    the backend reports success.
    """
    try:
        job = await service.submit(request.query, display_name=request.name, database=request.database)
    except TrackerError as e:
        raise _http_error(e, "CREATE_FAILED")

    return QueryCreateResponse(
        id=job.id,
        name=job.display_name,
        status=job.status.value,
        submitted_at=job.submitted_at,
    )


@router.get("", response_model=QueryListResponse)
async def list_queries(
    limit: int = Query(default=50, ge=1, le=500, description="Maximum queries to return"),
    service: QueryService = Depends(get_query_service),
):
    """List tracked queries, newest first."""
    try:
        jobs = service.list_all(limit=limit)
    except TrackerError as e:
        raise _http_error(e, "LIST_FAILED")

    return QueryListResponse(queries=[_job_to_response(job) for job in jobs], total=len(jobs))


@router.post("/validate", response_model=QueryValidateResponse)
async def validate_query(
    request: QueryValidateRequest,
    service: QueryService = Depends(get_query_service),
):
    """
    Validate a query by running EXPLAIN on the backend.

    Validation attempts are not stored as tracked queries.
    """
    try:
        result = await service.validate(request.query, database=request.database)
    except TrackerError as e:
        raise _http_error(e, "VALIDATION_FAILED")

    return QueryValidateResponse(
        valid=result.valid,
        execution_handle=result.execution_handle,
        error=result.error,
    )


@router.get("/stats", response_model=QueryStatsResponse)
async def get_query_stats(service: QueryService = Depends(get_query_service)):
    """Get query counts per status and whether the reconciliation loop is running."""
    try:
        stats = service.get_stats()
    except TrackerError as e:
        raise _http_error(e, "STATS_FAILED")

    return QueryStatsResponse(**stats)


@router.get("/{query_id}/status", response_model=QueryStatusResponse)
async def get_query_status(
    query_id: str,
    service: QueryService = Depends(get_query_service),
):
    """Get the current status of a query."""
    try:
        job = service.get(query_id)
    except TrackerError as e:
        raise _http_error(e, "STATUS_LOOKUP_FAILED")

    return _job_to_response(job)


@router.get("/{query_id}/results", response_model=QueryResultsResponse)
async def get_query_results(
    query_id: str,
    service: QueryService = Depends(get_query_service),
):
    """Get the downloaded results of a SUCCEEDED query."""
    try:
        job, payload = service.get_results(query_id)
    except TrackerError as e:
        raise _http_error(e, "RESULTS_RETRIEVAL_FAILED")

    return QueryResultsResponse(
        id=job.id,
        status=job.status.value,
        result_received_at=job.result_received_at,
        results=payload,
    )


@router.post("/{query_id}/refresh", response_model=QueryRefreshResponse, status_code=202)
async def refresh_query(
    query_id: str,
    service: QueryService = Depends(get_query_service),
):
    """Re-run a finished query. Rejected while the query is RUNNING."""
    try:
        job = await service.refresh(query_id)
    except TrackerError as e:
        raise _http_error(e, "REFRESH_FAILED")

    return QueryRefreshResponse(
        id=job.id,
        status=job.status.value,
        submitted_at=job.submitted_at,
        updated_at=job.updated_at,
    )


@router.post("/{query_id}/cancel", response_model=QueryCancelResponse, status_code=202)
async def cancel_query(
    query_id: str,
    service: QueryService = Depends(get_query_service),
):
    """Cancel a RUNNING query."""
    try:
        job = await service.cancel(query_id)
    except TrackerError as e:
        raise _http_error(e, "CANCEL_FAILED")

    return QueryCancelResponse(id=job.id, status=job.status.value, cancelled_at=job.cancelled_at)


@router.delete("/{query_id}", response_model=QueryDeleteResponse)
async def delete_query(
    query_id: str,
    service: QueryService = Depends(get_query_service),
):
    """Delete a query, its stored results, and (best-effort) its execution."""
    try:
        deleted_id = await service.delete(query_id)
    except TrackerError as e:
        raise _http_error(e, "DELETE_FAILED")

    return QueryDeleteResponse(id=deleted_id)
