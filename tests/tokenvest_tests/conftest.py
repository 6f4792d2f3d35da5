import pytest

from tokenvest.blockchain.claim_engine import ClaimEngine
from tokenvest.blockchain.vesting_ledger import VestingLedger
from tokenvest.core.account_store import AccountStore
from tokenvest.core.clock import ManualClock
from tokenvest.core.config import Settings, reset_settings

SPONSOR = "sponsor"
ASSET = "ACME"
COMPANY = "acme"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep ambient TOKENVEST_* variables from leaking into tests."""
    import os

    for key in list(os.environ):
        if key.startswith("TOKENVEST_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def store():
    return AccountStore()


@pytest.fixture
def ledger(store, settings):
    return VestingLedger(store=store, settings=settings)


@pytest.fixture
def clock():
    return ManualClock(0)


@pytest.fixture
def engine(ledger, clock):
    return ClaimEngine(ledger, clock=clock)


@pytest.fixture
def program_id(ledger):
    """Company program 'acme' with 1000 units deposited in its treasury."""
    program = ledger.create_company_program(SPONSOR, ASSET, COMPANY)
    ledger.treasury.deposit(program.treasury_id, 1000)
    return ledger.program_id_for(COMPANY)


@pytest.fixture
def schedule_id(ledger, program_id):
    """alice: start=0, cliff=100, end=1000, total=1000."""
    ledger.create_employee_schedule(
        SPONSOR, "alice", program_id, start_time=0, end_time=1000, total_amount=1000, cliff_time=100
    )
    return ledger.schedule_id_for("alice", program_id)
