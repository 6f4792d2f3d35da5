"""
tokenvest - Company Token Vesting Ledger

Sponsors fund a program treasury and grant employees cliff + linear vesting
schedules; employees claim what has vested.

Main Components:
- Addressing: deterministic, off-curve derived identities for every account
- Vesting Ledger: company programs and employee schedules
- Claim Engine: vested/claimable math and atomic payouts
- Treasury: token accounts and authority-gated transfers
"""

__version__ = "0.1.0"
__author__ = "tokenvest Development Team"

__all__ = []
