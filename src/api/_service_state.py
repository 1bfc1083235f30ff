"""
Query service state management for API integration.

Provides access to the QueryService instance owned by the application.
Initialized during FastAPI lifespan; routers receive it through the
get_query_service dependency so tests can override it.

Usage:
    from ._service_state import get_query_service, init_query_service

    # In lifespan:
    service = init_query_service(settings)
    service.start()

    # In routers:
    service: QueryService = Depends(get_query_service)
"""

from typing import Optional

from src.infra.config import Settings
from src.tracker.backend import ExecutionBackend
from src.tracker.service import QueryService


# Service instance owned by the running application
_query_service: Optional[QueryService] = None


def init_query_service(
    settings: Settings,
    backend: Optional[ExecutionBackend] = None,
) -> QueryService:
    """
    Initialize the query service.

    Called during FastAPI lifespan startup. Does NOT start the
    reconciliation loop; the caller starts it once the event loop runs.

    Args:
        settings: Resolved settings
        backend: Optional execution backend (Athena when None)

    Returns:
        Initialized QueryService
    """
    global _query_service

    if _query_service is not None:
        return _query_service

    _query_service = QueryService.create(settings, backend=backend)
    return _query_service


def get_query_service() -> QueryService:
    """
    Get the query service.

    Raises:
        RuntimeError: If query service not initialized
    """
    if _query_service is None:
        raise RuntimeError(
            "Query service not initialized. "
            "Ensure init_query_service() is called during startup."
        )

    return _query_service


async def shutdown_query_service() -> None:
    """
    Shutdown the query service.

    Called during FastAPI lifespan shutdown.
    Stops the reconciliation loop if running.
    """
    global _query_service

    if _query_service is not None:
        if _query_service.is_running:
            await _query_service.stop()

        _query_service = None
