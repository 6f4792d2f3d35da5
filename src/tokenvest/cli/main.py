"""
Main CLI entry point for tokenvest.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from tokenvest.blockchain.claim_engine import ClaimEngine
from tokenvest.blockchain.vesting_ledger import VestingLedger
from tokenvest.cli.vesting_commands import _cli_fail, claim, console, program, schedule, treasury
from tokenvest.core.account_store import AccountStore
from tokenvest.core.config import load_settings
from tokenvest.core.logging_config import setup_logging
from tokenvest.core.vesting_exceptions import VestingError

logger = logging.getLogger(__name__)


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="TOKENVEST_DATA_DIR",
    help="Directory holding the account store (defaults to ~/.tokenvest).",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, exists=True, path_type=Path),
    help="YAML file overriding environment configuration.",
)
@click.option("--json-output", is_flag=True, help="Output raw JSON")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Console log level (defaults to the configured log_level).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    data_dir: Optional[Path],
    config_file: Optional[Path],
    json_output: bool,
    log_level: Optional[str],
):
    """
    tokenvest - company token vesting with cliff + linear release.
    """
    ctx.ensure_object(dict)
    try:
        settings = load_settings(config_file=config_file)
    except VestingError as exc:
        _cli_fail(exc)
        return

    setup_logging(
        name="tokenvest",
        level=log_level or settings.log_level,
        environment=settings.network.value,
        enable_file=False,
    )

    resolved_dir = (data_dir or Path(settings.data_dir)).expanduser()
    try:
        store = AccountStore(str(resolved_dir))
    except (VestingError, OSError) as exc:
        _cli_fail(exc)
        return
    ledger = VestingLedger(store=store, settings=settings)
    logger.debug("CLI using data dir %s", resolved_dir, extra={"event": "cli.data_dir"})

    ctx.obj["settings"] = settings
    ctx.obj["ledger"] = ledger
    ctx.obj["engine"] = ClaimEngine(ledger)
    ctx.obj["json_output"] = json_output


cli.add_command(program)
cli.add_command(treasury)
cli.add_command(schedule)
cli.add_command(claim)


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
