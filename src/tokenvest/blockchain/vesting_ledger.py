from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from tokenvest.core.account_store import AccountStore
from tokenvest.core.address_derivation import (
    MAX_SEED_BYTES,
    program_address,
    schedule_address,
    seed_length,
    treasury_address,
)
from tokenvest.core.config import Settings, get_settings
from tokenvest.core.vesting_exceptions import (
    AddressDerivationError,
    DuplicateAccountError,
    DuplicateProgramError,
    DuplicateScheduleError,
    InvalidProgramError,
    InvalidScheduleError,
    RecordNotFoundError,
    StorageError,
    UnauthorizedError,
)
from tokenvest.core.vesting_metrics import record_program_created, record_schedule_created
from tokenvest.treasury.token_treasury import AuthorityToken, TokenTreasury, TransferService, mint_authority

logger = logging.getLogger(__name__)

PROGRAM_KIND = "company_program"
SCHEDULE_KIND = "employee_schedule"


@dataclass(frozen=True)
class CompanyProgram:
    owner: str
    asset_kind: str
    treasury_id: str
    name: str

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "CompanyProgram":
        return cls(
            owner=data["owner"],
            asset_kind=data["asset_kind"],
            treasury_id=data["treasury_id"],
            name=data["name"],
        )


@dataclass(frozen=True)
class EmployeeSchedule:
    beneficiary: str
    company_program_id: str
    start_time: int
    end_time: int
    cliff_time: int
    total_amount: int
    total_withdrawn: int = 0

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "EmployeeSchedule":
        return cls(
            beneficiary=data["beneficiary"],
            company_program_id=data["company_program_id"],
            start_time=int(data["start_time"]),
            end_time=int(data["end_time"]),
            cliff_time=int(data["cliff_time"]),
            total_amount=int(data["total_amount"]),
            total_withdrawn=int(data["total_withdrawn"]),
        )

    def with_withdrawn(self, total_withdrawn: int) -> "EmployeeSchedule":
        return replace(self, total_withdrawn=total_withdrawn)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_schedule_terms(start_time: Any, end_time: Any, cliff_time: Any, total_amount: Any) -> None:
    """
    Raise InvalidScheduleError unless start <= cliff <= end, end > start and
    total_amount is a non-negative integer.
    """
    for label, value in (
        ("start_time", start_time),
        ("end_time", end_time),
        ("cliff_time", cliff_time),
        ("total_amount", total_amount),
    ):
        if not _is_int(value):
            raise InvalidScheduleError(
                f"{label} must be an integer, got {type(value).__name__}",
                details={"field": label},
            )
    if total_amount < 0:
        raise InvalidScheduleError("Total amount cannot be negative.", details={"total_amount": total_amount})
    if end_time <= start_time:
        raise InvalidScheduleError(
            "End time must be after start time.",
            details={"start_time": start_time, "end_time": end_time},
        )
    if not start_time <= cliff_time <= end_time:
        raise InvalidScheduleError(
            "Cliff time must fall between start time and end time.",
            details={"start_time": start_time, "cliff_time": cliff_time, "end_time": end_time},
        )


class VestingLedger:
    """
    Company programs and employee schedules, stored at derived addresses.

    The ledger is the only place that knows how to turn a program's seeds
    into its authority token, so every payout from a treasury is gated by
    the program rather than by the sponsor's own key.
    """

    def __init__(
        self,
        store: AccountStore | None = None,
        treasury: TransferService | None = None,
        settings: Settings | None = None,
    ):
        self.store = store if store is not None else AccountStore()
        self.settings = settings if settings is not None else get_settings()
        self.treasury = treasury if treasury is not None else TokenTreasury(self.store, self.settings)
        self._derive_kwargs = {
            "program_id": self.settings.program_id,
            "prefix": self.settings.address_prefix,
        }
        logger.info(
            "VestingLedger initialized on %s",
            self.settings.network.value,
            extra={"event": "ledger.initialized"},
        )

    # ------------------------------------------------------------------
    # Addressing
    # ------------------------------------------------------------------

    def _validate_name(self, name: Any) -> None:
        if not isinstance(name, str) or not name.strip():
            raise InvalidProgramError("Company name cannot be empty.")
        size = len(name.encode("utf-8"))
        if size > self.settings.max_name_bytes:
            raise InvalidProgramError(
                f"Company name is {size} bytes; maximum is {self.settings.max_name_bytes}.",
                details={"name_bytes": size},
            )

    def program_id_for(self, name: str) -> str:
        self._validate_name(name)
        return program_address(name, **self._derive_kwargs).address

    def treasury_id_for(self, name: str) -> str:
        self._validate_name(name)
        return treasury_address(name, **self._derive_kwargs).address

    def schedule_id_for(self, beneficiary: str, company_program_id: str) -> str:
        try:
            return schedule_address(beneficiary, company_program_id, **self._derive_kwargs).address
        except AddressDerivationError as exc:
            raise InvalidScheduleError(str(exc), details=exc.details) from exc

    def authority_for(self, program_id: str) -> AuthorityToken:
        """Mint the treasury authority for an existing program."""
        self.get_program(program_id)
        return mint_authority(program_id)

    # ------------------------------------------------------------------
    # Company programs
    # ------------------------------------------------------------------

    def create_company_program(self, owner: str, asset_kind: str, name: str) -> CompanyProgram:
        """
        Create a company program and its empty treasury.

        Args:
            owner: Sponsoring identity; the only one allowed to add schedules
            asset_kind: Identity of the vested token
            name: Company name, used as the derivation seed

        Returns:
            The stored CompanyProgram

        Raises:
            InvalidProgramError: Empty owner/asset or bad name
            DuplicateProgramError: Program or treasury address already taken
            StorageError: The program record could not be persisted; the
                treasury account opened for it is closed again
        """
        if not isinstance(owner, str) or not owner:
            raise InvalidProgramError("Owner cannot be empty.")
        if not isinstance(asset_kind, str) or not asset_kind:
            raise InvalidProgramError("Asset kind cannot be empty.")
        # Asset kind seeds every beneficiary destination address
        asset_bytes = seed_length(asset_kind)
        if asset_bytes > MAX_SEED_BYTES:
            raise InvalidProgramError(
                f"Asset kind is {asset_bytes} bytes; maximum is {MAX_SEED_BYTES}.",
                details={"asset_kind_bytes": asset_bytes},
            )
        program_id = self.program_id_for(name)
        treasury_id = self.treasury_id_for(name)

        program = CompanyProgram(owner=owner, asset_kind=asset_kind, treasury_id=treasury_id, name=name)

        with self.store.lock:
            for address in (program_id, treasury_id):
                if self.store.exists(address):
                    raise DuplicateProgramError(
                        f"Company program {name!r} already exists.", address=address
                    )
            try:
                self.treasury.open_holding_account(treasury_id, program_id, asset_kind)
            except DuplicateAccountError as exc:
                raise DuplicateProgramError(
                    f"Company program {name!r} already exists.", address=exc.address
                ) from exc
            try:
                self.store.create(program_id, PROGRAM_KIND, program.to_record())
            except (DuplicateAccountError, StorageError) as exc:
                self.treasury.close_holding_account(treasury_id)
                logger.error(
                    "Program record for %s not written; treasury %s closed",
                    name,
                    treasury_id,
                    extra={"event": "ledger.program_create_failed", "error": type(exc).__name__},
                )
                if isinstance(exc, DuplicateAccountError):
                    raise DuplicateProgramError(
                        f"Company program {name!r} already exists.", address=exc.address
                    ) from exc
                raise

        record_program_created()
        logger.info(
            "Company program %s created for %s",
            program_id,
            owner,
            extra={"event": "ledger.program_created", "program_id": program_id, "treasury_id": treasury_id},
        )
        return program

    def get_program(self, program_id: str) -> CompanyProgram:
        account = self.store.read(program_id)
        if account.kind != PROGRAM_KIND:
            raise RecordNotFoundError(f"No company program at {program_id}", address=program_id)
        return CompanyProgram.from_record(account.data)

    def list_programs(self) -> List[Tuple[str, CompanyProgram]]:
        return [
            (account.address, CompanyProgram.from_record(account.data))
            for account in self.store.items(PROGRAM_KIND)
        ]

    # ------------------------------------------------------------------
    # Employee schedules
    # ------------------------------------------------------------------

    def create_employee_schedule(
        self,
        owner: str,
        beneficiary: str,
        company_program_id: str,
        start_time: int,
        end_time: int,
        total_amount: int,
        cliff_time: int,
    ) -> EmployeeSchedule:
        """
        Creates a new vesting schedule for one beneficiary under a program.

        Raises:
            RecordNotFoundError: If the program does not exist
            UnauthorizedError: If owner is not the program owner
            InvalidScheduleError: Bad timestamps, amount or beneficiary
            DuplicateScheduleError: Beneficiary already has a schedule here
        """
        program = self.get_program(company_program_id)
        if owner != program.owner:
            raise UnauthorizedError(
                "Only the program owner can create schedules.",
                details={"program_id": company_program_id},
            )
        if not isinstance(beneficiary, str) or not beneficiary:
            raise InvalidScheduleError("Beneficiary cannot be empty.")
        validate_schedule_terms(start_time, end_time, cliff_time, total_amount)

        schedule_id = self.schedule_id_for(beneficiary, company_program_id)
        schedule = EmployeeSchedule(
            beneficiary=beneficiary,
            company_program_id=company_program_id,
            start_time=start_time,
            end_time=end_time,
            cliff_time=cliff_time,
            total_amount=total_amount,
            total_withdrawn=0,
        )
        try:
            self.store.create(schedule_id, SCHEDULE_KIND, schedule.to_record())
        except DuplicateAccountError as exc:
            raise DuplicateScheduleError(
                f"Beneficiary {beneficiary} already has a schedule under this program.",
                address=schedule_id,
            ) from exc

        record_schedule_created(program.asset_kind)
        logger.info(
            "Vesting schedule %s created for %s",
            schedule_id,
            beneficiary,
            extra={"event": "ledger.schedule_created", "schedule_id": schedule_id, "total_amount": total_amount},
        )
        return schedule

    def read_schedule(self, schedule_id: str) -> Tuple[EmployeeSchedule, int]:
        """Schedule snapshot plus the store version it was read at."""
        account = self.store.read(schedule_id)
        if account.kind != SCHEDULE_KIND:
            raise RecordNotFoundError(f"No employee schedule at {schedule_id}", address=schedule_id)
        return EmployeeSchedule.from_record(account.data), account.version

    def get_schedule(self, schedule_id: str) -> EmployeeSchedule:
        return self.read_schedule(schedule_id)[0]

    def find_schedule(self, beneficiary: str, company_program_id: str) -> Optional[EmployeeSchedule]:
        schedule_id = self.schedule_id_for(beneficiary, company_program_id)
        try:
            return self.get_schedule(schedule_id)
        except RecordNotFoundError:
            return None

    def list_schedules(self, company_program_id: str) -> List[Tuple[str, EmployeeSchedule]]:
        schedules = []
        for account in self.store.items(SCHEDULE_KIND):
            schedule = EmployeeSchedule.from_record(account.data)
            if schedule.company_program_id == company_program_id:
                schedules.append((account.address, schedule))
        return schedules

    def write_schedule(self, schedule_id: str, expected_version: int, schedule: EmployeeSchedule) -> int:
        """
        Compare-and-swap a schedule's withdrawn total.

        Returns:
            The new store version

        Raises:
            ConcurrentModificationError: If the schedule changed since expected_version
        """
        if not 0 <= schedule.total_withdrawn <= schedule.total_amount:
            raise InvalidScheduleError(
                "Withdrawn total must stay within [0, total_amount].",
                details={"total_withdrawn": schedule.total_withdrawn, "total_amount": schedule.total_amount},
            )
        return self.store.write_if_unchanged(schedule_id, expected_version, schedule.to_record()).version
