"""
Configuration for the query tracker.

Settings are resolved in order (later wins):
1. Built-in defaults
2. Environment variables (a .env file is loaded by the entry point)
3. Optional JSON config file (--config)
4. Explicit overrides such as --port

Environment Variables:
- AWS_REGION: Region of the Athena client
- ATHENA_DATABASE: Default database for submissions and schema listing
- ATHENA_CATALOG: Data catalog (default: AwsDataCatalog)
- ATHENA_OUTPUT_LOCATION: S3 URI for Athena result files
- ATHENA_WORKGROUP: Athena workgroup
- QUERY_DB_PATH: SQLite job database (default: data/queries.sqlite)
- RESULTS_DIR: Downloaded result directory (default: data/results)
- POLL_INTERVAL_SECONDS: Reconciliation interval (default: 3.0)
- HOST / PORT: HTTP bind address (default: 127.0.0.1:3000)
- LOG_LEVEL / LOG_DIR: Logging (default: INFO, logs)

JSON config file layout:
    {
      "aws": {"region": ..., "database": ..., "catalog": ...,
              "outputLocation": ..., "workGroup": ...},
      "server": {"port": 3000, "host": ..., "resultsDir": ...,
                 "pollIntervalMs": 3000},
      "storage": {"dbPath": ...}
    }
"""

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("query_tracker")


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Config] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Config] Invalid number for {key}: {val}, using default: {default}")
    return default


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings."""

    aws_region: Optional[str] = None
    athena_database: Optional[str] = None
    athena_catalog: str = "AwsDataCatalog"
    athena_output_location: Optional[str] = None
    athena_workgroup: Optional[str] = None
    db_path: str = "data/queries.sqlite"
    results_dir: str = "data/results"
    poll_interval: float = 3.0
    validation_timeout: float = 15.0
    validation_poll_interval: float = 0.75
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"
    log_dir: str = "logs"


def settings_from_env() -> Settings:
    """Build settings from defaults and environment variables."""
    defaults = Settings()
    return Settings(
        aws_region=os.getenv("AWS_REGION", defaults.aws_region),
        athena_database=os.getenv("ATHENA_DATABASE", defaults.athena_database),
        athena_catalog=os.getenv("ATHENA_CATALOG", defaults.athena_catalog),
        athena_output_location=os.getenv("ATHENA_OUTPUT_LOCATION", defaults.athena_output_location),
        athena_workgroup=os.getenv("ATHENA_WORKGROUP", defaults.athena_workgroup),
        db_path=os.getenv("QUERY_DB_PATH", defaults.db_path),
        results_dir=os.getenv("RESULTS_DIR", defaults.results_dir),
        poll_interval=_get_env_float("POLL_INTERVAL_SECONDS", defaults.poll_interval),
        validation_timeout=_get_env_float("VALIDATION_TIMEOUT_SECONDS", defaults.validation_timeout),
        validation_poll_interval=defaults.validation_poll_interval,
        host=os.getenv("HOST", defaults.host),
        port=_get_env_int("PORT", defaults.port),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        log_dir=os.getenv("LOG_DIR", defaults.log_dir),
    )


def _apply_config_file(settings: Settings, data: dict[str, Any]) -> Settings:
    aws = data.get("aws") or {}
    server = data.get("server") or {}
    storage = data.get("storage") or {}

    overrides: dict[str, Any] = {}
    for key, field_name in (
        ("region", "aws_region"),
        ("database", "athena_database"),
        ("catalog", "athena_catalog"),
        ("outputLocation", "athena_output_location"),
        ("workGroup", "athena_workgroup"),
    ):
        if aws.get(key):
            overrides[field_name] = aws[key]

    if server.get("host"):
        overrides["host"] = server["host"]
    if server.get("port") is not None:
        overrides["port"] = int(server["port"])
    if server.get("resultsDir"):
        overrides["results_dir"] = server["resultsDir"]
    if server.get("pollIntervalMs") is not None:
        overrides["poll_interval"] = float(server["pollIntervalMs"]) / 1000.0
    if storage.get("dbPath"):
        overrides["db_path"] = storage["dbPath"]

    return replace(settings, **overrides)


def load_settings(config_path: Optional[str | Path] = None, port: Optional[int] = None) -> Settings:
    """
    Resolve settings from environment, config file and overrides.

    Args:
        config_path: Optional JSON config file
        port: Explicit port override (e.g. from --port)

    Raises:
        FileNotFoundError: config_path does not exist
        ValueError: config file is not valid JSON
    """
    settings = settings_from_env()

    if config_path is not None:
        path = Path(config_path).resolve()
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file {path}: {e}") from e
        settings = _apply_config_file(settings, data)
        logger.info(f"[Config] Loaded config file: {path}")

    if port is not None:
        settings = replace(settings, port=port)

    return settings
