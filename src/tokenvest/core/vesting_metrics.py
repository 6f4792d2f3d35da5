"""
Vesting instrumentation for tokenvest.

Provides Prometheus metrics for program/schedule creation, claim outcomes,
paid-out amounts and treasury balances, with helper functions that are safe
to call from the claim path.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

programs_created_counter = Counter(
    "tokenvest_programs_created_total", "Total company vesting programs created"
)

schedules_created_counter = Counter(
    "tokenvest_schedules_created_total",
    "Total employee vesting schedules created",
    ["asset_kind"],
)

claim_counter = Counter(
    "tokenvest_claims_total",
    "Claim attempts by outcome",
    ["outcome"],
)

claimed_amount_counter = Counter(
    "tokenvest_claimed_amount_total",
    "Total units paid out to beneficiaries",
    ["asset_kind"],
)

treasury_balance_gauge = Gauge(
    "tokenvest_treasury_balance",
    "Current balance of a program treasury",
    ["address", "asset_kind"],
)

CLAIM_OUTCOMES = ("success", "not_yet", "nothing", "unauthorized", "transfer_failed", "conflict")


def record_program_created() -> None:
    programs_created_counter.inc()


def record_schedule_created(asset_kind: str) -> None:
    schedules_created_counter.labels(asset_kind=asset_kind).inc()


def record_claim_outcome(outcome: str) -> None:
    """Count a claim attempt; unknown outcomes are ignored."""
    if outcome not in CLAIM_OUTCOMES:
        return
    claim_counter.labels(outcome=outcome).inc()


def record_claimed_amount(asset_kind: str, amount: int) -> None:
    """Increment the paid-out counter for the specified asset."""
    if amount <= 0:
        return

    claimed_amount_counter.labels(asset_kind=asset_kind).inc(amount)


def update_treasury_balance(address: str, asset_kind: str, balance: int) -> None:
    if not address:
        return

    treasury_balance_gauge.labels(address=address, asset_kind=asset_kind).set(balance)
