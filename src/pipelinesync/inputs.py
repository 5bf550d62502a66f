"""Command-line input resolution.

Turns the raw positional arguments into a RunConfiguration: validates the
branch list and wait period, then reads the three credentials from the
secret provider. Invalid arguments raise InvalidInputError before any
secret is requested; the command-line entry point owns the process exit.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from pipelinesync.exceptions import InvalidInputError
from pipelinesync.models import Credentials, RunConfiguration
from pipelinesync.utils import parse_duration

if TYPE_CHECKING:
    from pipelinesync.config import SecretNames
    from pipelinesync.vault import SecretProvider

USAGE = """\
*** This service will ingest build data and upload it to the database used by the test dashboard. It will also evaluate bug queries against the bug tracker.
Authenticates with the database and Azure DevOps using secrets from key vault.
pipelinesync <branches> <wait-period>
Usage:
 branches: comma delimited names of branches
 wait-period: time between db updates (e.g. 00:01:00)"""


@dataclass(frozen=True)
class ParsedArguments:
    """Positional arguments after validation."""

    branches: frozenset[str]
    wait_period: timedelta


def parse_branches(text: str) -> frozenset[str]:
    """Split a comma-separated branch list into a set of names.

    Entries are not trimmed. Duplicates collapse.

    Raises:
        InvalidInputError: If the list or any entry in it is empty.
    """
    if not text:
        raise InvalidInputError("Branch list is empty")

    branches = text.split(",")
    if any(not branch for branch in branches):
        raise InvalidInputError("Branch list contains an empty entry", {"branches": text})

    return frozenset(branches)


def parse_arguments(args: Sequence[str]) -> ParsedArguments:
    """Validate the positional arguments.

    Args:
        args: Arguments after the program name.

    Returns:
        The parsed branch set and wait period.

    Raises:
        InvalidInputError: If there are not exactly two arguments or either
            one is malformed.
    """
    if len(args) != 2:
        raise InvalidInputError(
            "Expected exactly two arguments",
            {"received": len(args)},
        )

    branches = parse_branches(args[0])

    try:
        wait_period = parse_duration(args[1])
    except ValueError as e:
        raise InvalidInputError("Invalid wait period", {"wait_period": args[1]}) from e

    return ParsedArguments(branches=branches, wait_period=wait_period)


async def resolve_credentials(
    secret_provider: SecretProvider,
    secret_names: SecretNames,
) -> Credentials:
    """Resolve the three credentials, one after another.

    A failure on any of them propagates immediately; later secrets are not
    requested.
    """
    tracking_service_pat = await secret_provider.resolve(secret_names.tracking_service_pat)
    project_pat = await secret_provider.resolve(secret_names.project_pat)
    db_connection_string = await secret_provider.resolve(secret_names.db_connection_string)

    return Credentials(
        tracking_service_pat=tracking_service_pat,
        project_pat=project_pat,
        db_connection_string=db_connection_string,
    )


async def resolve_run_configuration(
    args: Sequence[str],
    secret_provider: SecretProvider,
    secret_names: SecretNames,
) -> RunConfiguration:
    """Build the RunConfiguration from arguments and vault secrets.

    Raises:
        InvalidInputError: If the arguments are malformed. No secret has
            been requested when this is raised.
        SecretUnavailableError: If any secret cannot be resolved.
    """
    parsed = parse_arguments(args)
    credentials = await resolve_credentials(secret_provider, secret_names)

    return RunConfiguration(
        branches=parsed.branches,
        wait_period=parsed.wait_period,
        credentials=credentials,
    )
