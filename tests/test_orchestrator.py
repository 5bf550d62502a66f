"""Tests for the sync orchestrator."""

import asyncio
import time
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from pipelinesync.config import RetrySettings
from pipelinesync.exceptions import UpdateFailureError
from pipelinesync.models import (
    BugQuery,
    BugState,
    Credentials,
    RunConfiguration,
    UpdateSummary,
)
from pipelinesync.orchestrator import OrchestratorState, SyncOrchestrator, wait_for_cancel

LONG_WAIT = timedelta(hours=1)


@pytest.fixture
def configuration() -> RunConfiguration:
    """Create test run configuration."""
    return RunConfiguration(
        branches=frozenset({"main", "release/1.0"}),
        wait_period=timedelta(minutes=1),
        credentials=Credentials(
            tracking_service_pat="tracking-pat",
            project_pat="project-pat",
            db_connection_string="dashboard.db",
        ),
    )


@pytest.fixture
def bug_queries() -> frozenset[BugQuery]:
    """Create a single-query set."""
    return frozenset({BugQuery(area_path="One", priority=1, state=BugState.ACTIVE)})


@pytest.fixture
def updater() -> AsyncMock:
    """Create mock batch updater."""
    updater = AsyncMock()
    updater.update = AsyncMock(return_value=UpdateSummary())
    return updater


@pytest.fixture
def orchestrator(
    configuration: RunConfiguration, bug_queries: frozenset[BugQuery], updater: AsyncMock
) -> SyncOrchestrator:
    """Create test orchestrator."""
    return SyncOrchestrator(configuration, bug_queries, updater)


def cancel_after(cancel_event: asyncio.Event, calls: int) -> object:
    """Build an update side effect that sets the event on the given call."""
    counter = {"n": 0}

    def side_effect(*args: object) -> UpdateSummary:
        counter["n"] += 1
        if counter["n"] >= calls:
            cancel_event.set()
        return UpdateSummary()

    return side_effect


class TestWaitForCancel:
    """Tests for wait_for_cancel."""

    async def test_already_set(self) -> None:
        event = asyncio.Event()
        event.set()
        assert await wait_for_cancel(event, LONG_WAIT) is True

    async def test_period_elapses(self) -> None:
        event = asyncio.Event()
        assert await wait_for_cancel(event, timedelta(milliseconds=10)) is False

    async def test_zero_period(self) -> None:
        assert await wait_for_cancel(asyncio.Event(), timedelta(0)) is False

    async def test_set_during_wait_returns_early(self) -> None:
        event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, event.set)

        start = time.monotonic()
        assert await wait_for_cancel(event, LONG_WAIT) is True
        assert time.monotonic() - start < 5


class TestSyncOrchestrator:
    """Tests for SyncOrchestrator."""

    def test_initial_state(self, orchestrator: SyncOrchestrator) -> None:
        assert orchestrator.state is OrchestratorState.IDLE
        assert orchestrator.iterations == 0

    async def test_cancel_before_first_iteration(
        self, orchestrator: SyncOrchestrator, updater: AsyncMock
    ) -> None:
        """A pre-set signal allows one update and no wait."""
        cancel = asyncio.Event()
        cancel.set()

        await asyncio.wait_for(orchestrator.run(LONG_WAIT, cancel), timeout=5)

        assert updater.update.await_count == 1
        assert orchestrator.iterations == 1
        assert orchestrator.state is OrchestratorState.STOPPED

    async def test_passes_configuration_and_queries(
        self,
        orchestrator: SyncOrchestrator,
        updater: AsyncMock,
        configuration: RunConfiguration,
        bug_queries: frozenset[BugQuery],
    ) -> None:
        cancel = asyncio.Event()
        updater.update.side_effect = cancel_after(cancel, 2)

        await asyncio.wait_for(orchestrator.run(timedelta(0), cancel), timeout=5)

        for call in updater.update.await_args_list:
            assert call.args == (configuration, bug_queries)

    async def test_runs_repeatedly_until_cancelled(
        self, orchestrator: SyncOrchestrator, updater: AsyncMock
    ) -> None:
        """Iterations repeat after each wait until the signal is raised."""
        cancel = asyncio.Event()
        updater.update.side_effect = cancel_after(cancel, 3)

        await asyncio.wait_for(orchestrator.run(timedelta(milliseconds=10), cancel), timeout=5)

        assert updater.update.await_count == 3
        assert orchestrator.iterations == 3
        assert orchestrator.state is OrchestratorState.STOPPED

    async def test_cancel_during_wait_ends_early(
        self, orchestrator: SyncOrchestrator, updater: AsyncMock
    ) -> None:
        """Cancelling mid-wait does not wait out the full period."""
        cancel = asyncio.Event()
        first_update = asyncio.Event()
        updater.update.side_effect = lambda *args: first_update.set() or UpdateSummary()

        task = asyncio.create_task(orchestrator.run(LONG_WAIT, cancel))
        await asyncio.wait_for(first_update.wait(), timeout=5)
        await asyncio.sleep(0.01)
        assert orchestrator.state is OrchestratorState.RUNNING

        cancel.set()
        await asyncio.wait_for(task, timeout=1)

        assert updater.update.await_count == 1
        assert orchestrator.state is OrchestratorState.STOPPED

    async def test_stop_method(self, orchestrator: SyncOrchestrator, updater: AsyncMock) -> None:
        first_update = asyncio.Event()
        updater.update.side_effect = lambda *args: first_update.set() or UpdateSummary()

        task = asyncio.create_task(orchestrator.run(LONG_WAIT, asyncio.Event()))
        await asyncio.wait_for(first_update.wait(), timeout=5)

        orchestrator.stop()
        await asyncio.wait_for(task, timeout=1)

        assert orchestrator.state is OrchestratorState.STOPPED

    def test_stop_without_run_is_noop(self, orchestrator: SyncOrchestrator) -> None:
        orchestrator.stop()
        assert orchestrator.state is OrchestratorState.IDLE

    async def test_no_overlapping_updates(
        self, orchestrator: SyncOrchestrator, updater: AsyncMock
    ) -> None:
        """Only one update is outstanding at any time."""
        cancel = asyncio.Event()
        active = {"now": 0, "max": 0, "calls": 0}

        async def slow_update(*args: object) -> UpdateSummary:
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
            await asyncio.sleep(0.01)
            active["now"] -= 1
            active["calls"] += 1
            if active["calls"] == 3:
                cancel.set()
            return UpdateSummary()

        updater.update.side_effect = slow_update

        await asyncio.wait_for(orchestrator.run(timedelta(0), cancel), timeout=5)

        assert active["max"] == 1

    async def test_update_failure_propagates(
        self, orchestrator: SyncOrchestrator, updater: AsyncMock
    ) -> None:
        """With the default policy the first failure ends the run."""
        updater.update.side_effect = UpdateFailureError("Azure DevOps request failed")

        with pytest.raises(UpdateFailureError):
            await orchestrator.run(LONG_WAIT, asyncio.Event())

        assert updater.update.await_count == 1
        assert orchestrator.iterations == 0
        assert orchestrator.state is OrchestratorState.STOPPED

    async def test_retry_then_succeed(
        self,
        configuration: RunConfiguration,
        bug_queries: frozenset[BugQuery],
        updater: AsyncMock,
    ) -> None:
        cancel = asyncio.Event()
        failure = UpdateFailureError("transient")

        def side_effect(*args: object) -> UpdateSummary:
            if updater.update.await_count < 3:
                raise failure
            cancel.set()
            return UpdateSummary()

        updater.update.side_effect = side_effect
        orchestrator = SyncOrchestrator(
            configuration,
            bug_queries,
            updater,
            RetrySettings(max_attempts=3, delay_seconds=0),
        )

        await asyncio.wait_for(orchestrator.run(LONG_WAIT, cancel), timeout=5)

        assert updater.update.await_count == 3
        assert orchestrator.iterations == 1

    async def test_retry_exhausted(
        self,
        configuration: RunConfiguration,
        bug_queries: frozenset[BugQuery],
        updater: AsyncMock,
    ) -> None:
        updater.update.side_effect = UpdateFailureError("still failing")
        orchestrator = SyncOrchestrator(
            configuration,
            bug_queries,
            updater,
            RetrySettings(max_attempts=2, delay_seconds=0),
        )

        with pytest.raises(UpdateFailureError):
            await asyncio.wait_for(orchestrator.run(LONG_WAIT, asyncio.Event()), timeout=5)

        assert updater.update.await_count == 2
        assert orchestrator.state is OrchestratorState.STOPPED

    async def test_unexpected_errors_not_retried(
        self,
        configuration: RunConfiguration,
        bug_queries: frozenset[BugQuery],
        updater: AsyncMock,
    ) -> None:
        updater.update.side_effect = RuntimeError("bug in updater")
        orchestrator = SyncOrchestrator(
            configuration,
            bug_queries,
            updater,
            RetrySettings(max_attempts=5, delay_seconds=0),
        )

        with pytest.raises(RuntimeError):
            await orchestrator.run(LONG_WAIT, asyncio.Event())

        assert updater.update.await_count == 1

    async def test_cancel_interrupts_retry_delay(
        self,
        configuration: RunConfiguration,
        bug_queries: frozenset[BugQuery],
        updater: AsyncMock,
    ) -> None:
        cancel = asyncio.Event()

        def side_effect(*args: object) -> UpdateSummary:
            cancel.set()
            raise UpdateFailureError("failing")

        updater.update.side_effect = side_effect
        orchestrator = SyncOrchestrator(
            configuration,
            bug_queries,
            updater,
            RetrySettings(max_attempts=2, delay_seconds=3600),
        )

        await asyncio.wait_for(orchestrator.run(LONG_WAIT, cancel), timeout=1)

        assert updater.update.await_count == 1
        assert orchestrator.iterations == 0
        assert orchestrator.state is OrchestratorState.STOPPED
