"""
tokenvest CLI commands - programs, treasuries, schedules and claims.

All commands operate on the local account store in --data-dir. Timestamps
are Unix seconds; --at overrides the wall clock for claims and status.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import asdict
from typing import Any

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tokenvest.blockchain.claim_engine import compute_claimable, compute_vested, vesting_state
from tokenvest.core.vesting_exceptions import VestingError, get_error_context

logger = logging.getLogger(__name__)
console = Console()


def _cli_fail(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging/exit codes."""
    logger.error("CLI error: %s", exc, extra={"event": "cli.error", **get_error_context(exc)})
    console.print(f"[bold red]Error:[/] {type(exc).__name__}: {exc}", highlight=False)
    sys.exit(exit_code)


def _emit(ctx: click.Context, payload: dict[str, Any], title: str) -> None:
    """Render a flat payload as JSON or as a rich key/value panel."""
    if ctx.obj.get("json_output"):
        click.echo(json.dumps(payload, indent=2))
        return

    table = Table(show_header=False, box=box.ROUNDED)
    for key, value in payload.items():
        table.add_row(f"[bold cyan]{key}", str(value))
    console.print(Panel(table, title=f"[bold green]{title}", border_style="green"))


def _now(ctx: click.Context, at: int | None) -> int:
    return at if at is not None else ctx.obj["engine"].clock.now()


# ============================================================================
# Programs
# ============================================================================


@click.group()
def program():
    """Company vesting programs."""
    pass


@program.command("create")
@click.option("--owner", required=True, help="Sponsor identity")
@click.option("--asset", "asset_kind", required=True, help="Token being vested")
@click.option("--name", required=True, help="Company name (derivation seed)")
@click.pass_context
def program_create(ctx: click.Context, owner: str, asset_kind: str, name: str):
    """
    Create a company program and its empty treasury.

    Example:
        tokenvest program create --owner sponsor --asset ACME --name acme
    """
    ledger = ctx.obj["ledger"]
    try:
        created = ledger.create_company_program(owner, asset_kind, name)
        payload = {"program_id": ledger.program_id_for(name), **asdict(created)}
    except (VestingError, ValueError) as exc:
        _cli_fail(exc)
        return
    _emit(ctx, payload, "Program Created")


@program.command("show")
@click.argument("name")
@click.pass_context
def program_show(ctx: click.Context, name: str):
    """Show a program, its treasury balance and schedule count."""
    ledger = ctx.obj["ledger"]
    try:
        program_id = ledger.program_id_for(name)
        found = ledger.get_program(program_id)
        payload = {
            "program_id": program_id,
            **asdict(found),
            "treasury_balance": ledger.treasury.get_balance(found.treasury_id),
            "schedules": len(ledger.list_schedules(program_id)),
        }
    except (VestingError, ValueError) as exc:
        _cli_fail(exc)
        return
    _emit(ctx, payload, f"Program {name}")


# ============================================================================
# Treasury
# ============================================================================


@click.group()
def treasury():
    """Program treasury funding and balances."""
    pass


@treasury.command("deposit")
@click.argument("name")
@click.argument("amount", type=click.IntRange(min=1))
@click.pass_context
def treasury_deposit(ctx: click.Context, name: str, amount: int):
    """Deposit AMOUNT tokens into the treasury of program NAME."""
    ledger = ctx.obj["ledger"]
    try:
        found = ledger.get_program(ledger.program_id_for(name))
        balance = ledger.treasury.deposit(found.treasury_id, amount)
    except (VestingError, ValueError) as exc:
        _cli_fail(exc)
        return
    _emit(ctx, {"treasury_id": found.treasury_id, "deposited": amount, "balance": balance}, "Treasury Deposit")


@treasury.command("balance")
@click.argument("name")
@click.pass_context
def treasury_balance(ctx: click.Context, name: str):
    """Show the treasury balance of program NAME."""
    ledger = ctx.obj["ledger"]
    try:
        found = ledger.get_program(ledger.program_id_for(name))
        balance = ledger.treasury.get_balance(found.treasury_id)
    except (VestingError, ValueError) as exc:
        _cli_fail(exc)
        return
    _emit(
        ctx,
        {"treasury_id": found.treasury_id, "asset_kind": found.asset_kind, "balance": balance},
        "Treasury Balance",
    )


# ============================================================================
# Schedules
# ============================================================================


@click.group()
def schedule():
    """Employee vesting schedules."""
    pass


@schedule.command("create")
@click.option("--owner", required=True, help="Program owner identity")
@click.option("--program", "program_name", required=True, help="Company program name")
@click.option("--beneficiary", required=True, help="Employee identity")
@click.option("--start", "start_time", required=True, type=int, help="Vesting start (Unix seconds)")
@click.option("--cliff", "cliff_time", required=True, type=int, help="Cliff (Unix seconds)")
@click.option("--end", "end_time", required=True, type=int, help="Vesting end (Unix seconds)")
@click.option("--amount", "total_amount", required=True, type=int, help="Total units to vest")
@click.pass_context
def schedule_create(
    ctx: click.Context,
    owner: str,
    program_name: str,
    beneficiary: str,
    start_time: int,
    cliff_time: int,
    end_time: int,
    total_amount: int,
):
    """
    Create a cliff + linear schedule for one beneficiary.

    Example:
        tokenvest schedule create --owner sponsor --program acme \\
            --beneficiary alice --start 0 --cliff 100 --end 1000 --amount 1000
    """
    ledger = ctx.obj["ledger"]
    try:
        program_id = ledger.program_id_for(program_name)
        created = ledger.create_employee_schedule(
            owner, beneficiary, program_id, start_time, end_time, total_amount, cliff_time
        )
        payload = {"schedule_id": ledger.schedule_id_for(beneficiary, program_id), **asdict(created)}
    except (VestingError, ValueError) as exc:
        _cli_fail(exc)
        return
    _emit(ctx, payload, "Schedule Created")


@schedule.command("show")
@click.option("--program", "program_name", required=True, help="Company program name")
@click.option("--beneficiary", required=True, help="Employee identity")
@click.option("--at", type=int, default=None, help="Evaluate at this Unix timestamp")
@click.pass_context
def schedule_show(ctx: click.Context, program_name: str, beneficiary: str, at: int | None):
    """Show vested and claimable amounts for a schedule."""
    ledger = ctx.obj["ledger"]
    try:
        program_id = ledger.program_id_for(program_name)
        schedule_id = ledger.schedule_id_for(beneficiary, program_id)
        found = ledger.get_schedule(schedule_id)
        now = _now(ctx, at)
        payload = {
            "schedule_id": schedule_id,
            **asdict(found),
            "now": now,
            "state": vesting_state(found, now).value,
            "vested": compute_vested(found, now),
            "claimable": compute_claimable(found, now),
        }
    except (VestingError, ValueError) as exc:
        _cli_fail(exc)
        return
    _emit(ctx, payload, f"Schedule for {beneficiary}")


# ============================================================================
# Claims
# ============================================================================


@click.command("claim")
@click.option("--program", "program_name", required=True, help="Company program name")
@click.option("--beneficiary", required=True, help="Claiming employee identity")
@click.option("--at", type=int, default=None, help="Claim at this Unix timestamp")
@click.pass_context
def claim(ctx: click.Context, program_name: str, beneficiary: str, at: int | None):
    """Withdraw everything vested so far into the beneficiary's account."""
    ledger = ctx.obj["ledger"]
    engine = ctx.obj["engine"]
    try:
        program_id = ledger.program_id_for(program_name)
        receipt = engine.claim_for(beneficiary, program_id, now=_now(ctx, at))
    except (VestingError, ValueError) as exc:
        _cli_fail(exc)
        return
    _emit(ctx, asdict(receipt), "Claim Settled")
