"""Batch update: fetch builds, evaluate bug queries, persist both.

The sync orchestrator only knows the BatchUpdater protocol. BuildBatchUpdate
is the implementation used by the command-line agent.

Example:
    updater = BuildBatchUpdate(settings.devops)
    summary = await updater.update(configuration, bug_queries)
    await updater.close()
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

import aiosqlite

from pipelinesync.devops import DevOpsClient
from pipelinesync.exceptions import DevOpsApiError, UpdateFailureError
from pipelinesync.logging import get_logger
from pipelinesync.models import BugQueryResult, UpdateSummary
from pipelinesync.storage import SyncStorage, database_path

if TYPE_CHECKING:
    from pipelinesync.config import DevOpsSettings
    from pipelinesync.models import BugQuery, RunConfiguration

logger = get_logger(__name__)


class BatchUpdater(Protocol):
    """One full synchronization pass, invoked once per loop iteration."""

    async def update(
        self,
        configuration: RunConfiguration,
        bug_queries: frozenset[BugQuery],
    ) -> UpdateSummary: ...

    async def close(self) -> None: ...


class BuildBatchUpdate:
    """Syncs recent builds and bug query counts into SQLite.

    Clients and the database connection are created on the first update
    from the credentials in the run configuration, then reused.
    """

    def __init__(
        self,
        settings: DevOpsSettings,
        storage_factory: Callable[[str], SyncStorage] = SyncStorage,
    ) -> None:
        """Initialize the updater.

        Args:
            settings: Azure DevOps organizations, projects, and definitions.
            storage_factory: Builds the storage from a database path.
        """
        self._settings = settings
        self._storage_factory = storage_factory
        self._build_client: DevOpsClient | None = None
        self._bug_client: DevOpsClient | None = None
        self._storage: SyncStorage | None = None

    async def _connect(
        self, configuration: RunConfiguration
    ) -> tuple[DevOpsClient, DevOpsClient, SyncStorage]:
        credentials = configuration.credentials
        if self._build_client is None:
            self._build_client = DevOpsClient(
                self._settings.build_organization,
                self._settings.build_project,
                credentials.tracking_service_pat,
            )
        if self._bug_client is None:
            self._bug_client = DevOpsClient(
                self._settings.bug_organization,
                self._settings.bug_project,
                credentials.project_pat,
            )
        if self._storage is None:
            storage = self._storage_factory(database_path(credentials.db_connection_string))
            await storage.initialize()
            self._storage = storage
        return self._build_client, self._bug_client, self._storage

    async def _sync_builds(
        self, client: DevOpsClient, branches: frozenset[str], storage: SyncStorage
    ) -> int:
        updated = 0
        for branch in sorted(branches):
            builds = await client.list_builds(
                branch,
                definitions=self._settings.definitions,
                top=self._settings.builds_per_branch,
            )
            updated += await storage.upsert_builds(builds)
        return updated

    async def _evaluate_queries(
        self, client: DevOpsClient, bug_queries: frozenset[BugQuery], storage: SyncStorage
    ) -> int:
        results: list[BugQueryResult] = []
        for query in sorted(bug_queries, key=lambda q: q.query_id):
            count = await client.count_work_items(query.to_wiql(client.project))
            results.append(
                BugQueryResult(query=query, bug_count=count, evaluated_at=datetime.now(UTC))
            )
        return await storage.store_bug_query_results(results)

    async def update(
        self,
        configuration: RunConfiguration,
        bug_queries: frozenset[BugQuery],
    ) -> UpdateSummary:
        """Run one synchronization pass.

        Raises:
            UpdateFailureError: If Azure DevOps or the database fails. Work
                already committed in this pass is kept.
        """
        start_time = time.monotonic()

        try:
            build_client, bug_client, storage = await self._connect(configuration)
            builds_updated = await self._sync_builds(
                build_client, configuration.branches, storage
            )
            queries_evaluated = await self._evaluate_queries(bug_client, bug_queries, storage)
        except DevOpsApiError as e:
            raise UpdateFailureError("Azure DevOps request failed", e.details) from e
        except (aiosqlite.Error, OSError) as e:
            raise UpdateFailureError("Database write failed", {"error": str(e)}) from e
        except ValueError as e:
            raise UpdateFailureError("Invalid database connection string") from e

        summary = UpdateSummary(
            builds_updated=builds_updated,
            queries_evaluated=queries_evaluated,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        logger.info(
            "Batch update completed",
            extra={
                "builds_updated": summary.builds_updated,
                "queries_evaluated": summary.queries_evaluated,
                "duration_ms": summary.duration_ms,
            },
        )
        return summary

    async def close(self) -> None:
        """Close clients and the database connection."""
        for client in (self._build_client, self._bug_client):
            if client is not None:
                await client.close()
        self._build_client = None
        self._bug_client = None

        if self._storage is not None:
            await self._storage.close()
            self._storage = None
