"""Sync orchestrator: the periodic batch update loop.

Runs the batch updater, then waits for the configured period, forever,
until the cancel event is set. Cancellation is checked after every update
and observed during every wait, so a stop request never waits out a full
period.

Example:
    orchestrator = SyncOrchestrator(configuration, generate_bug_queries(), updater)
    cancel = asyncio.Event()
    loop.add_signal_handler(signal.SIGTERM, cancel.set)
    await orchestrator.run(configuration.wait_period, cancel)
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from pipelinesync.config import RetrySettings
from pipelinesync.exceptions import PipelineSyncError
from pipelinesync.logging import LogContext, get_logger
from pipelinesync.utils import format_timespan

if TYPE_CHECKING:
    from pipelinesync.models import BugQuery, RunConfiguration, UpdateSummary
    from pipelinesync.updater import BatchUpdater

logger = get_logger(__name__)


class OrchestratorState(str, Enum):
    """Lifecycle of a SyncOrchestrator."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


async def wait_for_cancel(cancel_event: asyncio.Event, period: timedelta) -> bool:
    """Suspend for up to `period`, returning early if the event is set.

    Returns:
        True if cancellation ended the wait, False if the period elapsed.
    """
    if cancel_event.is_set():
        return True

    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=period.total_seconds())
    except TimeoutError:
        return False
    return True


class SyncOrchestrator:
    """Owns the run loop for one process.

    The run configuration and bug queries are fixed at construction and
    passed unchanged to every update. Only one update is outstanding at a
    time.
    """

    def __init__(
        self,
        configuration: RunConfiguration,
        bug_queries: frozenset[BugQuery],
        updater: BatchUpdater,
        retry: RetrySettings | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            configuration: Validated run configuration.
            bug_queries: Queries handed to the updater on every iteration.
            updater: The batch update collaborator.
            retry: Retry policy for a failing update. Defaults to a single
                attempt, so the first failure ends the run.
        """
        self._configuration = configuration
        self._bug_queries = bug_queries
        self._updater = updater
        self._retry = retry or RetrySettings()

        self._state = OrchestratorState.IDLE
        self._iterations = 0
        self._cancel_event: asyncio.Event | None = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def iterations(self) -> int:
        """Number of completed update invocations."""
        return self._iterations

    async def _update_with_retry(self, cancel_event: asyncio.Event) -> UpdateSummary | None:
        """Invoke the updater, retrying per policy.

        Returns:
            The summary, or None if cancellation interrupted a retry delay.
        """
        attempt = 1
        while True:
            try:
                return await self._updater.update(self._configuration, self._bug_queries)
            except PipelineSyncError as e:
                if attempt >= self._retry.max_attempts:
                    raise
                logger.warning(
                    "Batch update failed, retrying",
                    extra={
                        "attempt": attempt,
                        "max_attempts": self._retry.max_attempts,
                        "error": str(e),
                    },
                )

            delay = timedelta(seconds=self._retry.delay_seconds)
            if await wait_for_cancel(cancel_event, delay):
                return None
            attempt += 1

    async def run(self, wait_period: timedelta, cancel_event: asyncio.Event) -> None:
        """Run batch updates every `wait_period` until `cancel_event` is set.

        Returns only on cancellation. Errors from the updater propagate
        once the retry policy is exhausted.

        Args:
            wait_period: Pause between the end of one update and the start
                of the next.
            cancel_event: Cooperative stop signal.
        """
        self._cancel_event = cancel_event
        self._state = OrchestratorState.RUNNING

        logger.info(
            "Starting sync loop",
            extra={
                "branches": ",".join(sorted(self._configuration.branches)),
                "bug_queries": len(self._bug_queries),
                "wait_period": format_timespan(wait_period),
            },
        )

        try:
            while True:
                with LogContext(iteration=self._iterations + 1):
                    logger.debug("Running batch update")
                    summary = await self._update_with_retry(cancel_event)
                if summary is not None:
                    self._iterations += 1

                if cancel_event.is_set():
                    break

                logger.debug(
                    "Waiting for next update",
                    extra={"wait_period": format_timespan(wait_period)},
                )
                if await wait_for_cancel(cancel_event, wait_period):
                    break
        finally:
            self._state = OrchestratorState.STOPPED
            self._cancel_event = None

        logger.info("Sync loop stopped", extra={"iterations": self._iterations})

    def stop(self) -> None:
        """Signal an active run to stop.

        An update in flight completes first; a wait in progress ends at once.
        """
        if self._cancel_event is not None:
            logger.info("Stopping sync loop")
            self._cancel_event.set()
