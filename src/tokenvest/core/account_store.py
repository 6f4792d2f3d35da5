"""
tokenvest - Durable Account Store

Keyed by derived addresses. Each entry carries the account kind, the record
fields and a version counter used for optimistic-concurrency writes. The
version belongs to the store entry, never to the record itself.

State lives in memory and, when a data directory is given, is mirrored to a
JSON file that is replaced atomically on every mutation. Several processes
may share one data directory: every operation runs under an exclusive lock
on a sidecar lock file and re-reads the JSON file first, so compare-and-swap
writes are checked against the latest persisted versions.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from threading import RLock
from typing import IO, Any, Dict, Iterator, Optional

from tokenvest.core.vesting_exceptions import (
    ConcurrentModificationError,
    CorruptedDataError,
    DuplicateAccountError,
    RecordNotFoundError,
    StorageError,
)

if os.name == "nt":
    import msvcrt
else:
    import fcntl

logger = logging.getLogger(__name__)

ACCOUNTS_FILE = "accounts.json"
LOCK_FILE = "accounts.json.lock"


@dataclass(frozen=True)
class StoredAccount:
    address: str
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)
    version: int = 0


def _lock_handle(handle: IO[str]) -> None:
    if os.name == "nt":
        handle.seek(0)
        while True:
            try:
                msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
                return
            except OSError:
                # LK_LOCK gives up after ~10s of contention; keep waiting
                continue
    fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _unlock_handle(handle: IO[str]) -> None:
    if os.name == "nt":
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
        return
    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class _StoreLock:
    """
    Re-entrant in-process lock that also holds the data directory's file
    lock while taken. The outermost acquisition reloads persisted state.
    """

    def __init__(self, store: "AccountStore") -> None:
        self._store = store
        self._lock = RLock()
        self._depth = 0

    def __enter__(self) -> "_StoreLock":
        self._lock.acquire()
        self._depth += 1
        if self._depth == 1:
            try:
                self._store._acquire_file_lock()
            except BaseException:
                self._depth -= 1
                self._lock.release()
                raise
        return self

    def __exit__(self, *exc_info: Any) -> bool:
        try:
            if self._depth == 1:
                self._store._release_file_lock()
        finally:
            self._depth -= 1
            self._lock.release()
        return False


class AccountStore:
    """
    In-memory account map with optional JSON persistence.

    ``lock`` is re-entrant and may be held by callers that need several
    reads and writes to apply as one unit, across threads and across
    processes sharing the data directory.
    """

    def __init__(self, data_dir: Optional[str] = None) -> None:
        self._accounts: Dict[str, Dict[str, Any]] = {}
        self.lock = _StoreLock(self)
        self.data_dir = data_dir
        self.accounts_file: Optional[str] = None
        self.lock_file: Optional[str] = None
        self._lock_handle: Optional[IO[str]] = None

        if data_dir is not None:
            os.makedirs(data_dir, exist_ok=True)
            self.accounts_file = os.path.join(data_dir, ACCOUNTS_FILE)
            self.lock_file = os.path.join(data_dir, LOCK_FILE)
            with self.lock:
                logger.debug(
                    "Opened account store at %s with %d accounts",
                    data_dir,
                    len(self._accounts),
                    extra={"event": "store.opened", "count": len(self._accounts)},
                )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _acquire_file_lock(self) -> None:
        if not self.lock_file:
            return
        try:
            handle = open(self.lock_file, "a+", encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Cannot open lock file {self.lock_file}: {e}") from e
        try:
            _lock_handle(handle)
            self._load()
        except BaseException:
            handle.close()
            raise
        self._lock_handle = handle

    def _release_file_lock(self) -> None:
        handle, self._lock_handle = self._lock_handle, None
        if handle is None:
            return
        try:
            _unlock_handle(handle)
        finally:
            handle.close()

    def _load(self) -> None:
        """Load accounts from file"""
        if not self.accounts_file or not os.path.exists(self.accounts_file):
            return
        try:
            with open(self.accounts_file, "r", encoding="utf-8") as f:
                payload = json.load(f)
            accounts = payload["accounts"]
            if not isinstance(accounts, dict):
                raise TypeError("accounts must be a mapping")
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise CorruptedDataError(
                f"Account file {self.accounts_file} is unreadable: {e}",
                details={"path": self.accounts_file},
            ) from e
        self._accounts = accounts

    def _save(self) -> None:
        """Write all accounts to a temp file and swap it into place."""
        if not self.accounts_file:
            return
        fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=".accounts-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"accounts": self._accounts}, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.accounts_file)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error(
                "Failed to save accounts to %s: %s",
                self.accounts_file,
                type(e).__name__,
                extra={"event": "store.save_failed", "error": str(e)},
            )
            raise StorageError(f"Failed to persist accounts: {e}") from e

    @staticmethod
    def _snapshot(address: str, entry: Dict[str, Any]) -> StoredAccount:
        return StoredAccount(
            address=address,
            kind=entry["kind"],
            data=dict(entry["data"]),
            version=entry["version"],
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def exists(self, address: str) -> bool:
        with self.lock:
            return address in self._accounts

    def get(self, address: str) -> Optional[StoredAccount]:
        with self.lock:
            entry = self._accounts.get(address)
            return self._snapshot(address, entry) if entry is not None else None

    def read(self, address: str) -> StoredAccount:
        """
        Read an account snapshot.

        Raises:
            RecordNotFoundError: If nothing is stored at address
        """
        account = self.get(address)
        if account is None:
            raise RecordNotFoundError(f"No account at {address}", address=address)
        return account

    def items(self, kind: Optional[str] = None) -> Iterator[StoredAccount]:
        """Snapshot iterator over stored accounts, optionally filtered by kind."""
        with self.lock:
            snapshots = [
                self._snapshot(address, entry)
                for address, entry in self._accounts.items()
                if kind is None or entry["kind"] == kind
            ]
        return iter(snapshots)

    def __len__(self) -> int:
        with self.lock:
            return len(self._accounts)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, address: str, kind: str, data: Dict[str, Any]) -> StoredAccount:
        """
        Create a new account at version 1.

        Raises:
            DuplicateAccountError: If an account already exists at address
        """
        with self.lock:
            if address in self._accounts:
                raise DuplicateAccountError(f"Account already exists at {address}", address=address)
            self._accounts[address] = {"kind": kind, "data": dict(data), "version": 1}
            try:
                self._save()
            except StorageError:
                del self._accounts[address]
                raise
            return self._snapshot(address, self._accounts[address])

    def _check_version(self, address: str, expected_version: int) -> Dict[str, Any]:
        entry = self._accounts.get(address)
        if entry is None:
            raise RecordNotFoundError(f"No account at {address}", address=address)
        if entry["version"] != expected_version:
            raise ConcurrentModificationError(
                f"Account {address} changed since it was read",
                details={
                    "address": address,
                    "expected_version": expected_version,
                    "actual_version": entry["version"],
                },
            )
        return entry

    def write_if_unchanged(
        self, address: str, expected_version: int, data: Dict[str, Any]
    ) -> StoredAccount:
        """
        Compare-and-swap write.

        Args:
            address: Account to update
            expected_version: Version observed when the caller read the account
            data: Replacement record fields

        Returns:
            The updated snapshot with its new version

        Raises:
            RecordNotFoundError: If the account does not exist
            ConcurrentModificationError: If the version moved since the read
        """
        with self.lock:
            entry = self._check_version(address, expected_version)
            previous = dict(entry)
            self._accounts[address] = {
                "kind": entry["kind"],
                "data": dict(data),
                "version": expected_version + 1,
            }
            try:
                self._save()
            except StorageError:
                self._accounts[address] = previous
                raise
            return self._snapshot(address, self._accounts[address])

    def delete(self, address: str, expected_version: int) -> None:
        """
        Remove an account if it is still at expected_version.

        Raises:
            RecordNotFoundError: If the account does not exist
            ConcurrentModificationError: If the version moved since the read
        """
        with self.lock:
            entry = self._check_version(address, expected_version)
            del self._accounts[address]
            try:
                self._save()
            except StorageError:
                self._accounts[address] = entry
                raise
