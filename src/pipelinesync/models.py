"""Pydantic models for pipelinesync.

This module contains the data models passed between the input resolver,
the sync orchestrator, and the batch updater. All models use Pydantic
BaseModel with Field() descriptions for documentation and validation.

Models are organized by domain:
- Run models (Credentials, DevOpsAccessSetting, RunConfiguration)
- Bug query models (BugState, BugQuery, BugQueryResult)
- Build models (BuildRecord)
- Result models (UpdateSummary)

All datetime fields use timezone-aware UTC datetimes.
"""

from __future__ import annotations

from datetime import datetime, timedelta  # noqa: TC003 - Required at runtime for Pydantic
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# RUN MODELS
# =============================================================================


class DevOpsAccessSetting(BaseModel):
    """Personal access tokens for the two Azure DevOps endpoints."""

    model_config = ConfigDict(frozen=True)

    tracking_service_pat: str = Field(
        ..., min_length=1, repr=False, description="PAT for the build tracking service"
    )
    project_pat: str = Field(
        ..., min_length=1, repr=False, description="PAT for the project holding bugs"
    )


class Credentials(BaseModel):
    """The three secret-backed values the sync agent needs.

    Values are excluded from repr so they never show up in logs or
    tracebacks.
    """

    model_config = ConfigDict(frozen=True)

    tracking_service_pat: str = Field(
        ..., min_length=1, repr=False, description="PAT for the build tracking service"
    )
    project_pat: str = Field(
        ..., min_length=1, repr=False, description="PAT for the project holding bugs"
    )
    db_connection_string: str = Field(
        ..., min_length=1, repr=False, description="Destination database location"
    )

    @property
    def access_setting(self) -> DevOpsAccessSetting:
        """The DevOps PAT pair, without the database connection string."""
        return DevOpsAccessSetting(
            tracking_service_pat=self.tracking_service_pat,
            project_pat=self.project_pat,
        )


class RunConfiguration(BaseModel):
    """Validated inputs for the sync loop. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    branches: frozenset[str] = Field(..., description="Branch names to sync")
    wait_period: timedelta = Field(..., description="Pause between batch updates")
    credentials: Credentials = Field(..., description="Secret-backed credentials")

    @field_validator("branches")
    @classmethod
    def _branches_not_empty(cls, value: frozenset[str]) -> frozenset[str]:
        if not value:
            raise ValueError("at least one branch is required")
        if any(not branch for branch in value):
            raise ValueError("branch names must not be empty")
        return value

    @field_validator("wait_period")
    @classmethod
    def _wait_period_not_negative(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("wait period must not be negative")
        return value


# =============================================================================
# BUG QUERY MODELS
# =============================================================================


class BugState(str, Enum):
    """Groups of work-item states a bug query matches."""

    ACTIVE = "active"
    IN_PROGRESS = "in_progress"

    @property
    def work_item_states(self) -> tuple[str, ...]:
        """Azure Boards state names covered by this group."""
        if self is BugState.ACTIVE:
            return ("New", "Active")
        return ("Committed", "In Progress")


def _wiql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class BugQuery(BaseModel):
    """A failure condition evaluated against the bug tracker.

    Frozen and hashable: two queries with the same fields are the same
    query, so a set of them collapses duplicates.
    """

    model_config = ConfigDict(frozen=True)

    area_path: str = Field(..., min_length=1, description="Area path the bugs live under")
    priority: int = Field(..., ge=0, le=4, description="Bug priority")
    state: BugState = Field(..., description="State group to match")

    @property
    def query_id(self) -> str:
        """Stable identifier used as the storage key."""
        return f"{self.area_path}|P{self.priority}|{self.state.value}"

    @property
    def title(self) -> str:
        """Short human-readable label."""
        area = self.area_path.rsplit("\\", 1)[-1]
        return f"{area} P{self.priority} {self.state.value.replace('_', ' ')} bugs"

    def to_wiql(self, project: str) -> str:
        """Render the query as WIQL for the given team project."""
        states = ", ".join(_wiql_literal(s) for s in self.state.work_item_states)
        return (
            "SELECT [System.Id] FROM WorkItems"
            f" WHERE [System.TeamProject] = {_wiql_literal(project)}"
            " AND [System.WorkItemType] = 'Bug'"
            f" AND [System.AreaPath] UNDER {_wiql_literal(self.area_path)}"
            f" AND [Microsoft.VSTS.Common.Priority] = {self.priority}"
            f" AND [System.State] IN ({states})"
        )


class BugQueryResult(BaseModel):
    """Outcome of evaluating one bug query."""

    query: BugQuery = Field(..., description="The evaluated query")
    bug_count: int = Field(..., ge=0, description="Number of matching work items")
    evaluated_at: datetime = Field(..., description="When the query ran (UTC)")


# =============================================================================
# BUILD MODELS
# =============================================================================


class BuildRecord(BaseModel):
    """One build as reported by the build service."""

    build_id: int = Field(..., description="Build id")
    build_number: str = Field(..., description="Build number, e.g. '20240115.3'")
    definition_id: int = Field(..., description="Build definition (pipeline) id")
    definition_name: str = Field(default="", description="Build definition name")
    source_branch: str = Field(..., description="Full ref, e.g. 'refs/heads/main'")
    status: str = Field(..., description="Build status, e.g. 'completed'")
    result: str | None = Field(default=None, description="Build result once completed")
    queue_time: datetime | None = Field(default=None, description="When queued (UTC)")
    start_time: datetime | None = Field(default=None, description="When started (UTC)")
    finish_time: datetime | None = Field(default=None, description="When finished (UTC)")
    web_url: str = Field(default="", description="Link to the build results page")

    @property
    def branch(self) -> str:
        """Branch name without the 'refs/heads/' prefix."""
        return self.source_branch.removeprefix("refs/heads/")


# =============================================================================
# RESULT MODELS
# =============================================================================


class UpdateSummary(BaseModel):
    """What one batch update did."""

    builds_updated: int = Field(default=0, ge=0, description="Build records upserted")
    queries_evaluated: int = Field(default=0, ge=0, description="Bug queries evaluated")
    duration_ms: int = Field(default=0, ge=0, description="Wall time of the update (ms)")
