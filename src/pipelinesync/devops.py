"""Azure DevOps REST client.

Covers the two calls the batch updater needs: listing recent builds for a
branch and counting work items that match a WIQL query. Authentication is
HTTP basic with an empty user name and a personal access token.

Example:
    client = DevOpsClient("msazure", "One", pat)
    builds = await client.list_builds("main", definitions=[123], top=10)
    count = await client.count_work_items(query.to_wiql("One"))
    await client.close()
"""

from __future__ import annotations

import re
from typing import Any

import httpx
from pydantic import ValidationError

from pipelinesync.constants import (
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEVOPS_API_VERSION,
    DEVOPS_BASE_URL,
)
from pipelinesync.exceptions import DevOpsApiError
from pipelinesync.logging import get_logger
from pipelinesync.models import BuildRecord

logger = get_logger(__name__)

_EXTRA_FRACTION_PATTERN = re.compile(r"(\.\d{6})\d+")


def _branch_ref(branch: str) -> str:
    if branch.startswith("refs/"):
        return branch
    return f"refs/heads/{branch}"


def _timestamp(value: str | None) -> str | None:
    # The service emits seven fractional digits; keep microseconds only
    if not value:
        return None
    return _EXTRA_FRACTION_PATTERN.sub(r"\1", value)


def _parse_build(data: dict[str, Any]) -> BuildRecord:
    definition = data.get("definition") or {}
    links = data.get("_links") or {}
    return BuildRecord(
        build_id=data["id"],
        build_number=data.get("buildNumber", ""),
        definition_id=definition.get("id", 0),
        definition_name=definition.get("name", ""),
        source_branch=data.get("sourceBranch", ""),
        status=data.get("status", ""),
        result=data.get("result"),
        queue_time=_timestamp(data.get("queueTime")),
        start_time=_timestamp(data.get("startTime")),
        finish_time=_timestamp(data.get("finishTime")),
        web_url=(links.get("web") or {}).get("href", ""),
    )


class DevOpsClient:
    """Client for one Azure DevOps organization/project."""

    def __init__(
        self,
        organization: str,
        project: str,
        pat: str,
        base_url: str = DEVOPS_BASE_URL,
    ) -> None:
        """Initialize the client.

        Args:
            organization: Azure DevOps organization name.
            project: Team project name.
            pat: Personal access token.
            base_url: Service root, overridable for on-premises servers.
        """
        self._organization = organization
        self._project = project
        self._pat = pat
        self._base_url = base_url.rstrip("/")
        self._client: httpx.AsyncClient | None = None

    @property
    def project(self) -> str:
        return self._project

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self._base_url}/{self._organization}/{self._project}",
                auth=("", self._pat),
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
                timeout=DEFAULT_HTTP_TIMEOUT_SECONDS,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        client = self._get_client()
        params = {"api-version": DEVOPS_API_VERSION, **kwargs.pop("params", {})}

        try:
            response = await client.request(method, path, params=params, **kwargs)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise DevOpsApiError(
                "Azure DevOps API error",
                {"status_code": e.response.status_code, "path": path},
            ) from e
        except httpx.HTTPError as e:
            raise DevOpsApiError(
                "Azure DevOps request failed",
                {"path": path, "error": str(e)},
            ) from e
        except ValueError as e:
            # 203 sign-in pages come back as HTML
            raise DevOpsApiError(
                "Azure DevOps returned a non-JSON response",
                {"path": path, "status_code": response.status_code},
            ) from e

        if not isinstance(data, dict):
            raise DevOpsApiError("Unexpected response shape", {"path": path})
        return data

    async def list_builds(
        self,
        branch: str,
        definitions: list[int] | None = None,
        top: int = 10,
    ) -> list[BuildRecord]:
        """List the most recent builds of a branch, newest first.

        Args:
            branch: Branch name or full ref.
            definitions: Restrict to these definition ids; all if empty.
            top: Maximum number of builds.

        Returns:
            Build records.

        Raises:
            DevOpsApiError: On HTTP, transport, or payload errors.
        """
        params: dict[str, Any] = {
            "branchName": _branch_ref(branch),
            "$top": top,
            "queryOrder": "queueTimeDescending",
        }
        if definitions:
            params["definitions"] = ",".join(str(d) for d in definitions)

        data = await self._request("GET", "/_apis/build/builds", params=params)

        try:
            builds = [_parse_build(item) for item in data.get("value", [])]
        except (KeyError, ValidationError) as e:
            raise DevOpsApiError(
                "Malformed build payload",
                {"branch": branch, "error": str(e)},
            ) from e

        logger.debug(
            "Listed builds",
            extra={"branch": branch, "count": len(builds), "project": self._project},
        )
        return builds

    async def count_work_items(self, wiql: str) -> int:
        """Run a WIQL query and return the number of matching work items.

        Raises:
            DevOpsApiError: On HTTP or transport errors.
        """
        data = await self._request("POST", "/_apis/wit/wiql", json={"query": wiql})
        return len(data.get("workItems", []))
