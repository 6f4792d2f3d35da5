from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List

from tokenvest.blockchain.vesting_ledger import EmployeeSchedule, VestingLedger
from tokenvest.core.clock import ClockLike, as_clock
from tokenvest.core.vesting_exceptions import (
    ClaimNotAvailableYetError,
    ConcurrentModificationError,
    NothingToClaimError,
    StorageError,
    TransferFailedError,
    UnauthorizedError,
)
from tokenvest.core.vesting_metrics import record_claim_outcome, record_claimed_amount

logger = logging.getLogger(__name__)

MAX_COMMIT_ATTEMPTS = 2


class VestingState(Enum):
    LOCKED = "locked"
    VESTING = "vesting"
    FULLY_VESTED = "fully_vested"
    EXHAUSTED = "exhausted"


def saturating_sub(a: int, b: int) -> int:
    return a - b if a > b else 0


def compute_vested(schedule: EmployeeSchedule, now: int) -> int:
    """
    Units vested at `now`: zero before the cliff, everything from end_time on,
    and floor(total * elapsed / duration) in between.
    """
    if now < schedule.cliff_time:
        return 0
    if now >= schedule.end_time:
        return schedule.total_amount

    elapsed = saturating_sub(now, schedule.start_time)
    duration = saturating_sub(schedule.end_time, schedule.start_time)
    vested = schedule.total_amount * elapsed // duration
    return min(vested, schedule.total_amount)


def compute_claimable(schedule: EmployeeSchedule, now: int) -> int:
    return saturating_sub(compute_vested(schedule, now), schedule.total_withdrawn)


def vesting_state(schedule: EmployeeSchedule, now: int) -> VestingState:
    """Derive the schedule's lifecycle state; never stored."""
    if now < schedule.cliff_time:
        return VestingState.LOCKED
    if schedule.total_withdrawn >= schedule.total_amount:
        return VestingState.EXHAUSTED
    if now >= schedule.end_time:
        return VestingState.FULLY_VESTED
    return VestingState.VESTING


@dataclass(frozen=True)
class ClaimReceipt:
    schedule_id: str
    beneficiary: str
    destination_id: str
    amount: int
    total_withdrawn: int
    claimed_at: int


class _KeyedLocks:
    """One lock per key, dropped again when nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class ClaimEngine:
    def __init__(self, ledger: VestingLedger, clock: ClockLike | None = None):
        self.ledger = ledger
        self.treasury = ledger.treasury
        self.clock = as_clock(clock)
        self._schedule_locks = _KeyedLocks()

    def _resolve_now(self, now: int | None) -> int:
        timestamp = self.clock.now() if now is None else now
        try:
            return int(timestamp)
        except (TypeError, ValueError) as exc:
            raise ValueError("now must be an integer timestamp") from exc

    def get_vested(self, schedule_id: str, now: int | None = None) -> int:
        return compute_vested(self.ledger.get_schedule(schedule_id), self._resolve_now(now))

    def get_claimable(self, schedule_id: str, now: int | None = None) -> int:
        return compute_claimable(self.ledger.get_schedule(schedule_id), self._resolve_now(now))

    def get_state(self, schedule_id: str, now: int | None = None) -> VestingState:
        return vesting_state(self.ledger.get_schedule(schedule_id), self._resolve_now(now))

    def claim_for(self, beneficiary: str, company_program_id: str, now: int | None = None) -> ClaimReceipt:
        """Claim against the schedule derived from (beneficiary, company_program_id)."""
        schedule_id = self.ledger.schedule_id_for(beneficiary, company_program_id)
        return self.claim(beneficiary, schedule_id, now)

    def claim(self, beneficiary: str, schedule_id: str, now: int | None = None) -> ClaimReceipt:
        """
        Pay out everything vested but not yet withdrawn.

        The claimable amount is reserved on the schedule with a compare-and-swap
        before any funds move; if the transfer fails the reservation is rolled
        back, so the schedule and the treasury always change together.

        Args:
            beneficiary: Caller identity; must match the schedule's beneficiary
            schedule_id: Derived schedule address
            now: Claim timestamp; defaults to the engine's clock

        Returns:
            ClaimReceipt with the amount paid and the new withdrawn total

        Raises:
            RecordNotFoundError: Unknown schedule
            UnauthorizedError: Caller is not the beneficiary
            ClaimNotAvailableYetError: Before the cliff
            NothingToClaimError: Nothing vested beyond what was withdrawn
            ConcurrentModificationError: Schedule kept changing under the claim
            TransferFailedError: Treasury refused or failed the transfer
        """
        now = self._resolve_now(now)

        with self._schedule_locks.hold(schedule_id):
            for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
                schedule, version = self.ledger.read_schedule(schedule_id)
                self._check_claim(beneficiary, schedule_id, schedule, now)
                program = self.ledger.get_program(schedule.company_program_id)

                claimable = compute_claimable(schedule, now)
                if claimable == 0:
                    record_claim_outcome("nothing")
                    logger.warning(
                        "No tokens available to claim for schedule %s",
                        schedule_id,
                        extra={"event": "claim.nothing", "schedule_id": schedule_id, "now": now},
                    )
                    raise NothingToClaimError(
                        "Nothing to claim.",
                        details={"schedule_id": schedule_id, "total_withdrawn": schedule.total_withdrawn},
                    )

                reserved = schedule.with_withdrawn(schedule.total_withdrawn + claimable)
                try:
                    self.ledger.write_schedule(schedule_id, version, reserved)
                except ConcurrentModificationError:
                    if attempt < MAX_COMMIT_ATTEMPTS:
                        logger.info(
                            "Schedule %s changed during claim; recomputing",
                            schedule_id,
                            extra={"event": "claim.retry", "schedule_id": schedule_id},
                        )
                        continue
                    record_claim_outcome("conflict")
                    raise
                break

            authority = self.ledger.authority_for(schedule.company_program_id)
            try:
                destination_id = self.treasury.create_destination_if_absent(beneficiary, program.asset_kind)
                self.treasury.transfer(program.treasury_id, destination_id, claimable, authority)
            except TransferFailedError as exc:
                self._roll_back(schedule_id, claimable, exc)
                raise
            except Exception as exc:
                self._roll_back(schedule_id, claimable, exc)
                raise TransferFailedError(
                    f"Transfer for schedule {schedule_id} failed: {exc}",
                    details={"schedule_id": schedule_id, "amount": claimable},
                ) from exc

        record_claim_outcome("success")
        record_claimed_amount(program.asset_kind, claimable)
        logger.info(
            "Claimed %d tokens for schedule %s",
            claimable,
            schedule_id,
            extra={
                "event": "claim.settled",
                "schedule_id": schedule_id,
                "amount": claimable,
                "total_withdrawn": reserved.total_withdrawn,
            },
        )
        return ClaimReceipt(
            schedule_id=schedule_id,
            beneficiary=beneficiary,
            destination_id=destination_id,
            amount=claimable,
            total_withdrawn=reserved.total_withdrawn,
            claimed_at=now,
        )

    def _check_claim(self, beneficiary: str, schedule_id: str, schedule: EmployeeSchedule, now: int) -> None:
        if beneficiary != schedule.beneficiary:
            record_claim_outcome("unauthorized")
            logger.warning(
                "Rejected claim on %s by non-beneficiary",
                schedule_id,
                extra={"event": "claim.unauthorized", "schedule_id": schedule_id},
            )
            raise UnauthorizedError(
                "Only the schedule beneficiary can claim.",
                details={"schedule_id": schedule_id},
            )
        if now < schedule.cliff_time:
            record_claim_outcome("not_yet")
            logger.warning(
                "Claim on %s before cliff (%d < %d)",
                schedule_id,
                now,
                schedule.cliff_time,
                extra={"event": "claim.before_cliff", "schedule_id": schedule_id},
            )
            raise ClaimNotAvailableYetError(
                f"Claim not available until {schedule.cliff_time}.",
                cliff_time=schedule.cliff_time,
                details={"schedule_id": schedule_id, "now": now},
            )

    def _roll_back(self, schedule_id: str, claimable: int, cause: Exception) -> None:
        """
        Return a reserved amount to the schedule after a failed transfer.

        Other claimers may have moved the schedule since the reservation, so
        the amount is subtracted from the latest withdrawn total rather than
        restoring the snapshot taken before the claim.
        """
        record_claim_outcome("transfer_failed")
        logger.error(
            "Transfer for schedule %s failed (%s); releasing reservation",
            schedule_id,
            type(cause).__name__,
            extra={"event": "claim.transfer_failed", "schedule_id": schedule_id, "error": str(cause)},
        )
        while True:
            try:
                current, version = self.ledger.read_schedule(schedule_id)
                released = current.with_withdrawn(saturating_sub(current.total_withdrawn, claimable))
                self.ledger.write_schedule(schedule_id, version, released)
                return
            except ConcurrentModificationError:
                logger.info(
                    "Schedule %s changed while releasing reservation; retrying",
                    schedule_id,
                    extra={"event": "claim.rollback_retry", "schedule_id": schedule_id},
                )
            except StorageError as exc:
                logger.critical(
                    "Could not release reservation on schedule %s",
                    schedule_id,
                    extra={
                        "event": "claim.rollback_failed",
                        "schedule_id": schedule_id,
                        "amount": claimable,
                    },
                )
                raise exc from cause
