"""
tokenvest Blockchain Module

Vesting state machine:
- VestingLedger for company programs and employee schedules
- ClaimEngine for vested/claimable computation and payouts
"""

from tokenvest.blockchain.claim_engine import (
    ClaimEngine,
    ClaimReceipt,
    VestingState,
    compute_claimable,
    compute_vested,
    vesting_state,
)
from tokenvest.blockchain.vesting_ledger import CompanyProgram, EmployeeSchedule, VestingLedger

__all__ = [
    "ClaimEngine",
    "ClaimReceipt",
    "CompanyProgram",
    "EmployeeSchedule",
    "VestingLedger",
    "VestingState",
    "compute_claimable",
    "compute_vested",
    "vesting_state",
]
