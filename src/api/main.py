"""
FastAPI application entry point.

Tracks long-running Athena queries. Submissions return immediately; a
background reconciliation loop polls the backend and downloads results
once a query succeeds.
"""

import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI

from src import __version__
from src.infra.config import load_settings
from .routers import queries, schema
from ._service_state import init_query_service, shutdown_query_service

logger = logging.getLogger("query_tracker")

# Optional JSON config file consumed by the lifespan (set by main.py --config)
CONFIG_PATH_ENV = "QUERY_TRACKER_CONFIG"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown of resources:
    - Query service (repository, result store, Athena backend)
    - Reconciliation loop
    """
    # Startup
    settings = load_settings(os.getenv(CONFIG_PATH_ENV) or None)
    service = init_query_service(settings)
    service.start()
    logger.info(f"[API] Query tracker started (poll interval: {settings.poll_interval}s)")

    yield

    # Shutdown - stop the reconciliation loop
    await shutdown_query_service()
    logger.info("[API] Query tracker stopped")

# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "queries",
        "description": "Tracked query lifecycle - submit, inspect, refresh, cancel, delete, and fetch results",
    },
    {
        "name": "schema",
        "description": "Tables and columns of the configured Athena database",
    },
]

app = FastAPI(
    title="Athena Query Tracker",
    lifespan=lifespan,
    description="""
## Athena Query Tracker

Submit SQL to Athena and track each query to completion.

### Lifecycle
- `POST /query` records the query as **RUNNING** and returns immediately
- The reconciliation loop polls Athena and moves the query to
  **SUCCEEDED**, **FAILED** or **CANCELLED**
- Results of a SUCCEEDED query are downloaded once and served from local storage

### Usage
```bash
# Start server
python main.py --port 3000

# Submit a query
curl -X POST http://localhost:3000/query \\
  -H "Content-Type: application/json" \\
  -d '{"query": "SELECT 1", "name": "smoke"}'
```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


app.include_router(queries.router, prefix="/query", tags=["queries"])
app.include_router(schema.router, prefix="/schema", tags=["schema"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=3000)
