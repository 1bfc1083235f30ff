"""
AWS Athena execution backend.

Wraps the blocking boto3 Athena client. Every call runs on the default
thread-pool executor so the event loop stays free while Athena answers.

Configuration comes from Settings:
- aws_region, athena_database, athena_catalog
- athena_output_location (S3 URI for Athena's own result files)
- athena_workgroup
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .entities import (
    DatabaseSchema,
    ExecutionState,
    ExecutionStatus,
    ResultSet,
    SubmissionResult,
    TableSchema,
    now_iso,
)
from .errors import BackendError


logger = logging.getLogger("query_tracker")

DEFAULT_CATALOG = "AwsDataCatalog"
RESULTS_PAGE_SIZE = 1000
SCHEMA_PAGE_SIZE = 50


class AthenaBackend:
    """ExecutionBackend implementation backed by AWS Athena."""

    def __init__(
        self,
        region: Optional[str] = None,
        database: Optional[str] = None,
        output_location: Optional[str] = None,
        workgroup: Optional[str] = None,
        catalog: Optional[str] = None,
        client: Any = None,
    ):
        """
        Initialize the backend.

        Args:
            region: AWS region for the Athena client
            database: Default database for submissions and schema listing
            output_location: S3 location where Athena writes result files
            workgroup: Athena workgroup
            catalog: Data catalog name (default: AwsDataCatalog)
            client: Pre-built Athena client (tests); built from region if None
        """
        self.database = database
        self.output_location = output_location
        self.workgroup = workgroup
        self.catalog = catalog or DEFAULT_CATALOG
        self.client = client or boto3.client("athena", region_name=region)

    @classmethod
    def from_settings(cls, settings) -> "AthenaBackend":
        return cls(
            region=settings.aws_region,
            database=settings.athena_database,
            output_location=settings.athena_output_location,
            workgroup=settings.athena_workgroup,
            catalog=settings.athena_catalog,
        )

    async def _call(self, operation: str, fn: Callable[..., dict], **kwargs) -> dict:
        """Run one blocking client call in the executor, mapping AWS errors."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, **kwargs))
        except (ClientError, BotoCoreError) as e:
            raise BackendError(operation, str(e)) from e

    # =========================================================================
    # Execution
    # =========================================================================

    async def submit(
        self,
        query_text: str,
        database: Optional[str] = None,
    ) -> SubmissionResult:
        """Start a query execution in the target (or default) database."""
        resolved = database or self.database
        request: dict[str, Any] = {"QueryString": query_text}
        if resolved:
            request["QueryExecutionContext"] = {"Database": resolved}
        if self.output_location:
            request["ResultConfiguration"] = {"OutputLocation": self.output_location}
        if self.workgroup:
            request["WorkGroup"] = self.workgroup

        response = await self._call(
            "submit", self.client.start_query_execution, **request
        )
        handle = response.get("QueryExecutionId")
        if not handle:
            raise BackendError("submit", "no QueryExecutionId in response")

        return SubmissionResult(execution_handle=handle, resolved_database=resolved)

    async def get_execution_state(self, execution_handle: str) -> ExecutionStatus:
        response = await self._call(
            "get_execution_state",
            self.client.get_query_execution,
            QueryExecutionId=execution_handle,
        )
        status = (response.get("QueryExecution") or {}).get("Status") or {}
        return ExecutionStatus(
            state=ExecutionState.parse(status.get("State")),
            reason=status.get("StateChangeReason"),
        )

    async def cancel(self, execution_handle: str) -> None:
        await self._call(
            "cancel",
            self.client.stop_query_execution,
            QueryExecutionId=execution_handle,
        )

    async def download_results(self, execution_handle: str) -> ResultSet:
        """
        Page through GetQueryResults and assemble one result set.

        Column names come from the first page's metadata. Cells are kept as
        Athena's VarCharValue strings (None for NULL).
        """
        columns: list[str] = []
        rows: list[list[Optional[str]]] = []
        next_token: Optional[str] = None

        while True:
            request: dict[str, Any] = {
                "QueryExecutionId": execution_handle,
                "MaxResults": RESULTS_PAGE_SIZE,
            }
            if next_token:
                request["NextToken"] = next_token

            response = await self._call(
                "download_results", self.client.get_query_results, **request
            )
            result_set = response.get("ResultSet") or {}

            if not columns:
                column_info = (result_set.get("ResultSetMetadata") or {}).get("ColumnInfo") or []
                columns = [column["Name"] for column in column_info]

            for row in result_set.get("Rows") or []:
                rows.append([cell.get("VarCharValue") for cell in row.get("Data") or []])

            next_token = response.get("NextToken")
            if not next_token:
                break

        return ResultSet(columns=columns, rows=rows, fetched_at=now_iso())

    # =========================================================================
    # Schema Discovery
    # =========================================================================

    async def list_table_schema(self) -> DatabaseSchema:
        """List every table of the default database, sorted by name."""
        logger.info(
            f"[Athena] Listing table schema (catalog={self.catalog}, database={self.database})"
        )

        tables: list[TableSchema] = []
        next_token: Optional[str] = None
        page_count = 0

        try:
            while True:
                request: dict[str, Any] = {
                    "CatalogName": self.catalog,
                    "DatabaseName": self.database,
                    "MaxResults": SCHEMA_PAGE_SIZE,
                }
                if next_token:
                    request["NextToken"] = next_token

                response = await self._call(
                    "list_table_schema", self.client.list_table_metadata, **request
                )
                page_count += 1

                for table in response.get("TableMetadataList") or []:
                    tables.append(
                        TableSchema(
                            name=table["Name"],
                            columns=[
                                {"name": column["Name"], "type": column.get("Type") or "unknown"}
                                for column in table.get("Columns") or []
                            ],
                        )
                    )

                next_token = response.get("NextToken")
                if not next_token:
                    break
        except BackendError as e:
            logger.error(
                f"[Athena] Schema listing failed after {page_count} pages "
                f"(catalog={self.catalog}, database={self.database}): {e}"
            )
            raise

        tables.sort(key=lambda t: t.name)
        logger.info(
            f"[Athena] Schema listing completed: {len(tables)} tables in {page_count} pages"
        )
        return DatabaseSchema(catalog=self.catalog, database=self.database or "", tables=tables)
