from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from tokenvest.core.account_store import AccountStore
from tokenvest.core.address_derivation import destination_address
from tokenvest.core.config import Settings, get_settings
from tokenvest.core.vesting_exceptions import (
    DuplicateAccountError,
    InsufficientFundsError,
    RecordNotFoundError,
    StorageError,
    TransferFailedError,
    UnauthorizedError,
)
from tokenvest.core.vesting_metrics import update_treasury_balance

logger = logging.getLogger(__name__)

TOKEN_ACCOUNT_KIND = "token_account"

_MINT_KEY = object()


class AuthorityToken:
    """
    Opaque capability to move funds out of accounts owned by a program identity.

    Only the vesting ledger mints these; there is no way to build one from a
    signature or a raw address string.
    """

    __slots__ = ("_program_id",)

    def __init__(self, program_id: str, _key: object = None) -> None:
        if _key is not _MINT_KEY:
            raise UnauthorizedError("Authority tokens can only be minted by the vesting ledger")
        self._program_id = program_id

    @property
    def program_id(self) -> str:
        return self._program_id

    def __repr__(self) -> str:
        return f"AuthorityToken(program_id={self._program_id[:12]}...)"


def mint_authority(program_id: str) -> AuthorityToken:
    return AuthorityToken(program_id, _MINT_KEY)


@dataclass(frozen=True)
class TransferResult:
    from_id: str
    to_id: str
    amount: int
    source_balance: int
    destination_balance: int
    executed_at: int


@runtime_checkable
class TransferService(Protocol):
    """Value-transfer collaborator consumed by the vesting ledger and claim engine."""

    def open_holding_account(self, account_id: str, authority: str, asset_kind: str) -> None:
        ...

    def close_holding_account(self, account_id: str) -> None:
        ...

    def create_destination_if_absent(self, owner: str, asset_kind: str) -> str:
        ...

    def transfer(
        self, from_id: str, to_id: str, amount: int, authority: AuthorityToken
    ) -> TransferResult:
        ...

    def get_balance(self, account_id: str) -> int:
        ...


class TokenTreasury:
    def __init__(self, store: AccountStore, settings: Settings | None = None):
        """
        Token account ledger backing program treasuries and beneficiary wallets.

        Args:
            store: Account store shared with the vesting ledger; token accounts
                live beside program and schedule records under their own kind.
        """
        self.store = store
        self.settings = settings if settings is not None else get_settings()
        self.executed_transfers: List[TransferResult] = []

    def _read_token_account(self, account_id: str):
        account = self.store.read(account_id)
        if account.kind != TOKEN_ACCOUNT_KIND:
            raise TransferFailedError(
                f"Account {account_id} is not a token account",
                details={"account_id": account_id, "kind": account.kind},
            )
        return account

    def _publish_balance(self, account_id: str, data: Dict[str, Any]) -> None:
        update_treasury_balance(account_id, data["asset_kind"], data["balance"])

    def open_holding_account(self, account_id: str, authority: str, asset_kind: str) -> None:
        """
        Open an empty account controlled by a program identity.

        Raises:
            DuplicateAccountError: If the address is already taken
        """
        data = {"owner": authority, "asset_kind": asset_kind, "balance": 0}
        self.store.create(account_id, TOKEN_ACCOUNT_KIND, data)
        self._publish_balance(account_id, data)
        logger.info(
            "Opened holding account %s for %s",
            account_id,
            asset_kind,
            extra={"event": "treasury.opened", "account_id": account_id},
        )

    def close_holding_account(self, account_id: str) -> None:
        """
        Remove an empty holding account.

        Raises:
            TransferFailedError: If the account still holds funds
        """
        with self.store.lock:
            account = self._read_token_account(account_id)
            if account.data["balance"] != 0:
                raise TransferFailedError(
                    f"Account {account_id} still holds {account.data['balance']}",
                    details={"account_id": account_id},
                )
            self.store.delete(account_id, account.version)
        logger.info(
            "Closed holding account %s",
            account_id,
            extra={"event": "treasury.closed", "account_id": account_id},
        )

    def create_destination_if_absent(self, owner: str, asset_kind: str) -> str:
        """Return the owner's destination account for asset_kind, creating it if needed."""
        destination_id = destination_address(
            owner,
            asset_kind,
            program_id=self.settings.program_id,
            prefix=self.settings.address_prefix,
        ).address
        with self.store.lock:
            existing = self.store.get(destination_id)
            if existing is not None:
                return destination_id
            try:
                self.store.create(
                    destination_id,
                    TOKEN_ACCOUNT_KIND,
                    {"owner": owner, "asset_kind": asset_kind, "balance": 0},
                )
            except DuplicateAccountError:
                return destination_id
        logger.debug(
            "Created destination account %s for %s",
            destination_id,
            owner,
            extra={"event": "treasury.destination_created"},
        )
        return destination_id

    def deposit(self, account_id: str, amount: int) -> int:
        """
        Credit tokens to an account (sponsor funding).

        Returns:
            The new balance
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError("Deposit amount must be a positive integer.")

        with self.store.lock:
            account = self._read_token_account(account_id)
            data = dict(account.data)
            data["balance"] = data["balance"] + amount
            self.store.write_if_unchanged(account_id, account.version, data)

        self._publish_balance(account_id, data)
        logger.info(
            "Deposited %d into %s. New balance: %d",
            amount,
            account_id,
            data["balance"],
            extra={"event": "treasury.deposit", "account_id": account_id, "amount": amount},
        )
        return data["balance"]

    def get_balance(self, account_id: str) -> int:
        return int(self._read_token_account(account_id).data["balance"])

    def get_account(self, account_id: str) -> Dict[str, Any]:
        return dict(self._read_token_account(account_id).data)

    def transfer(
        self, from_id: str, to_id: str, amount: int, authority: AuthorityToken
    ) -> TransferResult:
        """
        Move amount from one token account to another as a single unit.

        Args:
            from_id: Source account (must be owned by authority's program)
            to_id: Destination account
            amount: Positive integer amount
            authority: Capability minted by the vesting ledger

        Raises:
            TransferFailedError: On any rejection; no balance changes
            InsufficientFundsError: If the source balance is too low
        """
        if not isinstance(authority, AuthorityToken):
            raise TransferFailedError("Transfers require a ledger-minted authority token")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise TransferFailedError(f"Transfer amount must be a positive integer, got {amount!r}")
        if from_id == to_id:
            raise TransferFailedError("Source and destination must differ")

        with self.store.lock:
            try:
                source = self._read_token_account(from_id)
                destination = self._read_token_account(to_id)
            except RecordNotFoundError as exc:
                raise TransferFailedError(str(exc), details={"address": exc.address}) from exc

            if source.data["owner"] != authority.program_id:
                raise TransferFailedError(
                    f"Authority does not control {from_id}",
                    details={"from_id": from_id},
                )
            if source.data["asset_kind"] != destination.data["asset_kind"]:
                raise TransferFailedError(
                    "Asset kind mismatch between source and destination",
                    details={
                        "source_asset": source.data["asset_kind"],
                        "destination_asset": destination.data["asset_kind"],
                    },
                )
            if source.data["balance"] < amount:
                raise InsufficientFundsError(
                    f"Insufficient balance ({source.data['balance']}) in {from_id} "
                    f"for transfer amount ({amount}).",
                    details={"balance": source.data["balance"], "amount": amount},
                )

            new_source = dict(source.data, balance=source.data["balance"] - amount)
            new_destination = dict(destination.data, balance=destination.data["balance"] + amount)

            try:
                debited = self.store.write_if_unchanged(from_id, source.version, new_source)
            except StorageError as exc:
                raise TransferFailedError(f"Could not debit {from_id}: {exc}") from exc
            try:
                self.store.write_if_unchanged(to_id, destination.version, new_destination)
            except StorageError as exc:
                self.store.write_if_unchanged(from_id, debited.version, dict(source.data))
                raise TransferFailedError(f"Could not credit {to_id}: {exc}") from exc

            result = TransferResult(
                from_id=from_id,
                to_id=to_id,
                amount=amount,
                source_balance=new_source["balance"],
                destination_balance=new_destination["balance"],
                executed_at=int(time.time()),
            )
            self.executed_transfers.append(result)

        self._publish_balance(from_id, new_source)
        logger.info(
            "Transferred %d from %s to %s. Source balance: %d",
            amount,
            from_id,
            to_id,
            new_source["balance"],
            extra={"event": "treasury.transfer", "amount": amount},
        )
        return result

    def get_executed_transfers(self, limit: int = 100) -> List[TransferResult]:
        """Get recently executed transfers."""
        with self.store.lock:
            return self.executed_transfers[-limit:]

    def find_account(self, owner: str, asset_kind: str) -> Optional[str]:
        destination_id = destination_address(
            owner,
            asset_kind,
            program_id=self.settings.program_id,
            prefix=self.settings.address_prefix,
        ).address
        return destination_id if self.store.exists(destination_id) else None
