"""Tests for the Azure DevOps client."""

import base64
import json
import re

import httpx
import pytest
from pytest_httpx import HTTPXMock

from pipelinesync.devops import DevOpsClient
from pipelinesync.exceptions import DevOpsApiError

BUILDS_URL = re.compile(r"https://dev\.azure\.com/testorg/TestProject/_apis/build/builds\?.*")
WIQL_URL = re.compile(r"https://dev\.azure\.com/testorg/TestProject/_apis/wit/wiql\?.*")

SAMPLE_BUILDS_RESPONSE = {
    "count": 2,
    "value": [
        {
            "id": 1002,
            "buildNumber": "20240115.2",
            "status": "completed",
            "result": "failed",
            "sourceBranch": "refs/heads/main",
            "queueTime": "2024-01-15T10:00:00.1234567Z",
            "startTime": "2024-01-15T10:01:00Z",
            "finishTime": "2024-01-15T10:30:00Z",
            "definition": {"id": 55, "name": "Edge CI"},
            "_links": {"web": {"href": "https://dev.azure.com/testorg/build/1002"}},
        },
        {
            "id": 1001,
            "buildNumber": "20240115.1",
            "status": "inProgress",
            "sourceBranch": "refs/heads/main",
            "definition": {"id": 55, "name": "Edge CI"},
        },
    ],
}


@pytest.fixture
async def client() -> DevOpsClient:
    """Create a test DevOps client."""
    client = DevOpsClient("testorg", "TestProject", "test-pat")
    yield client
    await client.close()


class TestDevOpsClient:
    """Tests for DevOpsClient."""

    async def test_list_builds(self, client: DevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=BUILDS_URL, json=SAMPLE_BUILDS_RESPONSE)

        builds = await client.list_builds("main", definitions=[55, 56], top=5)

        assert [b.build_id for b in builds] == [1002, 1001]
        first = builds[0]
        assert first.build_number == "20240115.2"
        assert first.definition_id == 55
        assert first.definition_name == "Edge CI"
        assert first.result == "failed"
        assert first.branch == "main"
        assert first.queue_time is not None
        assert first.queue_time.microsecond == 123456
        assert first.web_url == "https://dev.azure.com/testorg/build/1002"
        assert builds[1].result is None
        assert builds[1].finish_time is None

        params = httpx_mock.get_request().url.params
        assert params["branchName"] == "refs/heads/main"
        assert params["definitions"] == "55,56"
        assert params["$top"] == "5"
        assert params["api-version"] == "6.0"

    async def test_list_builds_full_ref_kept(
        self, client: DevOpsClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=BUILDS_URL, json={"count": 0, "value": []})

        assert await client.list_builds("refs/pull/12/merge") == []
        params = httpx_mock.get_request().url.params
        assert params["branchName"] == "refs/pull/12/merge"
        assert "definitions" not in params

    async def test_basic_auth_with_pat(self, client: DevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=BUILDS_URL, json={"value": []})

        await client.list_builds("main")

        expected = base64.b64encode(b":test-pat").decode()
        assert httpx_mock.get_request().headers["Authorization"] == f"Basic {expected}"

    async def test_count_work_items(self, client: DevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=WIQL_URL,
            method="POST",
            json={"workItems": [{"id": 1}, {"id": 2}, {"id": 3}]},
        )

        count = await client.count_work_items("SELECT [System.Id] FROM WorkItems")

        assert count == 3
        body = json.loads(httpx_mock.get_request().content)
        assert body == {"query": "SELECT [System.Id] FROM WorkItems"}

    async def test_http_error(self, client: DevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=BUILDS_URL, status_code=401)

        with pytest.raises(DevOpsApiError) as exc_info:
            await client.list_builds("main")

        assert exc_info.value.details["status_code"] == 401

    async def test_network_error(self, client: DevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        with pytest.raises(DevOpsApiError, match="request failed"):
            await client.count_work_items("SELECT 1")

    async def test_sign_in_page_is_error(
        self, client: DevOpsClient, httpx_mock: HTTPXMock
    ) -> None:
        """An expired PAT yields a 203 HTML page instead of JSON."""
        httpx_mock.add_response(url=BUILDS_URL, status_code=203, text="<html>Sign in</html>")

        with pytest.raises(DevOpsApiError, match="non-JSON"):
            await client.list_builds("main")

    async def test_malformed_build_payload(
        self, client: DevOpsClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=BUILDS_URL, json={"value": [{"buildNumber": "x"}]})

        with pytest.raises(DevOpsApiError, match="Malformed"):
            await client.list_builds("main")

    async def test_close(self, client: DevOpsClient) -> None:
        _ = client._get_client()
        assert client._client is not None

        await client.close()
        assert client._client is None
