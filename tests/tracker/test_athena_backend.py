"""
Tests for AthenaBackend against a mocked boto3 client.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from src.tracker import BackendError, ExecutionState
from src.tracker.athena import RESULTS_PAGE_SIZE, AthenaBackend


def _client_error(code="InvalidRequestException", message="line 1:1: mismatched input", op="StartQueryExecution"):
    return ClientError({"Error": {"Code": code, "Message": message}}, op)


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def athena(client) -> AthenaBackend:
    return AthenaBackend(
        database="analytics",
        output_location="s3://query-results/athena/",
        workgroup="primary",
        client=client,
    )


class TestSubmit:

    @pytest.mark.asyncio
    async def test_submit_builds_request(self, athena: AthenaBackend, client):
        client.start_query_execution.return_value = {"QueryExecutionId": "qe-1"}

        submission = await athena.submit("SELECT 1")

        assert submission.execution_handle == "qe-1"
        assert submission.resolved_database == "analytics"
        client.start_query_execution.assert_called_once_with(
            QueryString="SELECT 1",
            QueryExecutionContext={"Database": "analytics"},
            ResultConfiguration={"OutputLocation": "s3://query-results/athena/"},
            WorkGroup="primary",
        )

    @pytest.mark.asyncio
    async def test_submit_with_explicit_database(self, athena: AthenaBackend, client):
        client.start_query_execution.return_value = {"QueryExecutionId": "qe-2"}

        submission = await athena.submit("SELECT 1", database="sales")

        assert submission.resolved_database == "sales"
        _, kwargs = client.start_query_execution.call_args
        assert kwargs["QueryExecutionContext"] == {"Database": "sales"}

    @pytest.mark.asyncio
    async def test_client_error_becomes_backend_error(self, athena: AthenaBackend, client):
        client.start_query_execution.side_effect = _client_error()

        with pytest.raises(BackendError) as exc_info:
            await athena.submit("SELEC 1")

        assert exc_info.value.operation == "submit"
        assert "mismatched input" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_error_becomes_backend_error(self, athena: AthenaBackend, client):
        client.start_query_execution.side_effect = EndpointConnectionError(endpoint_url="https://athena")

        with pytest.raises(BackendError):
            await athena.submit("SELECT 1")

    @pytest.mark.asyncio
    async def test_missing_execution_id(self, athena: AthenaBackend, client):
        client.start_query_execution.return_value = {}

        with pytest.raises(BackendError):
            await athena.submit("SELECT 1")


class TestExecutionState:

    @pytest.mark.asyncio
    async def test_reads_state_and_reason(self, athena: AthenaBackend, client):
        client.get_query_execution.return_value = {
            "QueryExecution": {"Status": {"State": "FAILED", "StateChangeReason": "TABLE_NOT_FOUND"}}
        }

        status = await athena.get_execution_state("qe-1")

        assert status.state == ExecutionState.FAILED
        assert status.reason == "TABLE_NOT_FOUND"
        client.get_query_execution.assert_called_once_with(QueryExecutionId="qe-1")

    @pytest.mark.asyncio
    async def test_missing_status_is_unknown(self, athena: AthenaBackend, client):
        client.get_query_execution.return_value = {"QueryExecution": {}}

        status = await athena.get_execution_state("qe-1")

        assert status.state == ExecutionState.UNKNOWN

    @pytest.mark.asyncio
    async def test_cancel(self, athena: AthenaBackend, client):
        await athena.cancel("qe-1")
        client.stop_query_execution.assert_called_once_with(QueryExecutionId="qe-1")


class TestDownload:

    @pytest.mark.asyncio
    async def test_pages_are_concatenated(self, athena: AthenaBackend, client):
        client.get_query_results.side_effect = [
            {
                "ResultSet": {
                    "ResultSetMetadata": {"ColumnInfo": [{"Name": "id"}, {"Name": "city"}]},
                    "Rows": [{"Data": [{"VarCharValue": "1"}, {"VarCharValue": "Seoul"}]}],
                },
                "NextToken": "page-2",
            },
            {
                "ResultSet": {
                    "ResultSetMetadata": {"ColumnInfo": [{"Name": "ignored"}]},
                    "Rows": [{"Data": [{"VarCharValue": "2"}, {}]}],
                },
            },
        ]

        result_set = await athena.download_results("qe-1")

        assert result_set.columns == ["id", "city"]
        assert result_set.rows == [["1", "Seoul"], ["2", None]]
        first_call, second_call = client.get_query_results.call_args_list
        assert first_call.kwargs == {"QueryExecutionId": "qe-1", "MaxResults": RESULTS_PAGE_SIZE}
        assert second_call.kwargs["NextToken"] == "page-2"

    @pytest.mark.asyncio
    async def test_failure_mid_download(self, athena: AthenaBackend, client):
        client.get_query_results.side_effect = [
            {"ResultSet": {"Rows": []}, "NextToken": "page-2"},
            _client_error(code="InternalServerException", op="GetQueryResults"),
        ]

        with pytest.raises(BackendError) as exc_info:
            await athena.download_results("qe-1")
        assert exc_info.value.operation == "download_results"


class TestSchema:

    @pytest.mark.asyncio
    async def test_tables_sorted_across_pages(self, athena: AthenaBackend, client):
        client.list_table_metadata.side_effect = [
            {
                "TableMetadataList": [
                    {"Name": "users", "Columns": [{"Name": "email", "Type": "string"}]},
                ],
                "NextToken": "t2",
            },
            {
                "TableMetadataList": [
                    {"Name": "events", "Columns": [{"Name": "id"}]},
                ],
            },
        ]

        schema = await athena.list_table_schema()

        assert schema.catalog == "AwsDataCatalog"
        assert schema.database == "analytics"
        assert [table.name for table in schema.tables] == ["events", "users"]
        assert schema.tables[0].columns == [{"name": "id", "type": "unknown"}]
        assert client.list_table_metadata.call_args_list[1].kwargs["NextToken"] == "t2"
