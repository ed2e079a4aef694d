#!/usr/bin/env python3
# PATH: run_load.py
"""
run_load.py - CLI entrypoint for an RPC polling campaign.

Configuration comes from the environment (and .env); see config/__init__.py.

Usage:
    SUPPORTED_CHAIN_IDS=1,56 RPC_BASE_HOST=http://127.0.0.1:3001 python run_load.py
    HIGH_LOAD=1 ATTEMPT_DELAY_MS=100 python run_load.py
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import click

from chains.endpoints import EndpointResolver
from chains.providers import BlockNumberClient
from config import LOG_LEVELS, Settings, load_settings
from core.constants import SERVICE_NAME, VERSION
from core.exceptions import ConfigurationError
from core.logging import get_logger, set_global_context, setup_logging
from core.models import CampaignSummary
from polling.driver import run_campaign

logger = get_logger("rpcpoll.cli")


async def run_from_settings(
    settings: Settings,
    client: Optional[BlockNumberClient] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> CampaignSummary:
    """
    Run one campaign described by settings.

    Opens (and closes) a BlockNumberClient unless one is supplied.
    """
    resolver = EndpointResolver.from_settings(settings)
    owns_client = client is None
    if client is None:
        client = BlockNumberClient(timeout_seconds=settings.timeout_seconds)

    try:
        return await run_campaign(
            settings.chain_ids,
            settings.attempt_count,
            settings.repetitions,
            settings.mode,
            resolver=resolver,
            fetch=client.get_latest_block_number,
            delay_seconds=settings.delay_seconds,
            max_concurrency=settings.max_concurrency,
            cancel_event=cancel_event,
        )
    finally:
        if owns_client:
            await client.close()


async def _main(settings: Settings) -> CampaignSummary:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _request_stop, stop, signum)
        except NotImplementedError:
            # Windows event loops
            pass
    return await run_from_settings(settings, cancel_event=stop)


def _request_stop(stop: asyncio.Event, signum: int) -> None:
    logger.info("Shutdown requested", extra={"context": {"signal": signum}})
    stop.set()


@click.command()
@click.option(
    "--config",
    "config_path",
    default=None,
    envvar="HARNESS_CONFIG",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML settings file (environment variables take precedence)",
)
@click.option(
    "--log-level",
    "-l",
    default=None,
    type=click.Choice(LOG_LEVELS),
    help="Log level (default: LOG_LEVEL or INFO)",
)
@click.option(
    "--json-logs/--no-json-logs",
    default=None,
    help="Use JSON log format (default: LOG_JSON or off)",
)
def main(
    config_path: Optional[str],
    log_level: Optional[str],
    json_logs: Optional[bool],
) -> None:
    """
    Poll gateway chain endpoints for their latest block number.
    """
    try:
        settings = load_settings(config_path=Path(config_path) if config_path else None)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(2)

    if log_level:
        settings.log_level = log_level
    if json_logs is not None:
        settings.log_json = json_logs

    setup_logging(level=settings.log_level, json_output=settings.log_json)
    set_global_context(service=SERVICE_NAME, version=VERSION)

    logger.info("Starting RPC polling campaign", extra={"context": settings.to_dict()})

    summary = asyncio.run(_main(settings))

    click.echo("\n" + "=" * 60)
    click.echo("CAMPAIGN SUMMARY")
    click.echo("=" * 60)
    click.echo(f"Chains: {', '.join(settings.chain_ids) or '(none)'}")
    click.echo(f"Runs: {len(summary.runs)} ({summary.skipped_runs} skipped)")
    click.echo(f"Attempts: {summary.total_attempts}")
    click.echo(f"Successes: {summary.total_successes}")
    click.echo(f"Failures: {summary.total_failures}")
    click.echo("=" * 60)


if __name__ == "__main__":
    main()
