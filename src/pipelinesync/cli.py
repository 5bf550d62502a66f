"""CLI entry point for pipelinesync.

Usage:
    pipelinesync <branches> <wait-period>

Validates the arguments, reads credentials from Key Vault, and runs the
sync loop until SIGINT or SIGTERM. This is the only module that exits the
process.

Example:
    pipelinesync main,release/1.0 00:01:00
    pipelinesync --once main 00:00:00
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path

import click

from pipelinesync import __version__
from pipelinesync.config import SyncSettings, load_settings
from pipelinesync.constants import EXIT_FAILURE, EXIT_INVALID_INPUT
from pipelinesync.exceptions import ConfigError, InvalidInputError, SecretUnavailableError
from pipelinesync.inputs import USAGE, parse_arguments, resolve_run_configuration
from pipelinesync.logging import setup_logging
from pipelinesync.orchestrator import SyncOrchestrator
from pipelinesync.queries import generate_bug_queries
from pipelinesync.updater import BuildBatchUpdate
from pipelinesync.utils import format_timespan
from pipelinesync.vault import KeyVaultSecretProvider, ManagedIdentityTokenProvider


def _success(msg: str) -> str:
    """Format success message with green checkmark."""
    return click.style("✓", fg="green") + " " + msg


def _error(msg: str) -> str:
    """Format error message with red X."""
    return click.style("✗", fg="red") + " " + msg


def _info(msg: str) -> str:
    """Format info message with blue arrow."""
    return click.style("→", fg="blue") + " " + msg


async def run_agent(args: Sequence[str], settings: SyncSettings, *, once: bool = False) -> int:
    """Resolve credentials and run the sync loop.

    Args:
        args: The two positional arguments.
        settings: Loaded settings.
        once: Stop after the first batch update.

    Returns:
        Number of completed batch updates.
    """
    tokens = ManagedIdentityTokenProvider()
    secrets = KeyVaultSecretProvider(settings.vault.url, tokens)
    try:
        configuration = await resolve_run_configuration(
            args, secrets, settings.vault.secret_names
        )
    finally:
        await secrets.close()
        await tokens.close()

    wait_text = format_timespan(configuration.wait_period)
    click.echo(_info(f"Wait period before next update=[{wait_text}]"))
    click.echo(_info(f"Branches: {', '.join(sorted(configuration.branches))}"))

    bug_queries = generate_bug_queries()
    updater = BuildBatchUpdate(settings.devops)
    orchestrator = SyncOrchestrator(configuration, bug_queries, updater, settings.retry)

    cancel_event = asyncio.Event()
    if once:
        cancel_event.set()
    else:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, cancel_event.set)

    try:
        if not once:
            click.echo(_success("Agent started. Press Ctrl+C to stop."))
        await orchestrator.run(configuration.wait_period, cancel_event)
    finally:
        await updater.close()

    return orchestrator.iterations


@click.command(context_settings={"ignore_unknown_options": True})
@click.version_option(version=__version__, prog_name="pipelinesync")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Settings file (default: .pipelinesync.yaml in this or a parent directory)",
)
@click.option("--once", is_flag=True, help="Run a single batch update, then exit")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs and tracebacks")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def cli(config_path: Path | None, once: bool, verbose: bool, args: tuple[str, ...]) -> None:
    """Sync build data into the test dashboard database.

    ARGS are BRANCHES (comma delimited) and WAIT_PERIOD (e.g. 00:01:00).
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO)

    try:
        parse_arguments(args)
    except InvalidInputError:
        click.echo(USAGE)
        sys.exit(EXIT_INVALID_INPUT)

    try:
        settings = load_settings(config_path)
    except ConfigError as e:
        click.echo(_error(f"Invalid configuration: {e}"), err=True)
        sys.exit(EXIT_FAILURE)

    try:
        iterations = asyncio.run(run_agent(args, settings, once=once))
    except SecretUnavailableError as e:
        if verbose:
            import traceback

            click.echo(traceback.format_exc(), err=True)
        click.echo(_error(f"Could not read secret from key vault: {e}"), err=True)
        sys.exit(EXIT_FAILURE)
    except Exception as e:
        if verbose:
            import traceback

            click.echo(traceback.format_exc(), err=True)
        click.echo(_error(f"Agent error: {e}"), err=True)
        sys.exit(EXIT_FAILURE)

    click.echo()
    click.echo(_success(f"Agent stopped after {iterations} update(s)."))


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
