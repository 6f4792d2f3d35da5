"""
Vesting-specific exception hierarchy for tokenvest.

Every failure the ledger, claim engine or treasury can raise is a typed
subclass of VestingError, so callers can tell "not yet" from "nothing left"
from "not allowed" without parsing messages.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class VestingError(Exception):
    """Base exception for all vesting-related errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried later
    """

    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Validation Errors ====================


class ValidationError(VestingError):
    """Raised when input to a ledger operation fails validation."""
    pass


class InvalidScheduleError(ValidationError):
    """Raised for bad timestamp ordering, non-integer values or a negative amount."""
    pass


class InvalidProgramError(ValidationError):
    """Raised when a company program name, owner or asset kind is unusable."""
    pass


class AddressDerivationError(ValidationError):
    """Raised when seeds cannot be turned into an off-curve derived address."""
    pass


# ==================== Creation Conflicts ====================


class DuplicateAccountError(VestingError):
    """Raised when an account already exists at a derived address."""

    def __init__(self, message: str, address: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.address = address


class DuplicateProgramError(DuplicateAccountError):
    """Raised when a company program (or its treasury) already exists for a name."""
    pass


class DuplicateScheduleError(DuplicateAccountError):
    """Raised when a beneficiary already has a schedule under the same program."""
    pass


# ==================== Authorization Errors ====================


class AuthorizationError(VestingError):
    """Raised when the caller identity does not match the required authority."""
    pass


class UnauthorizedError(AuthorizationError):
    """Raised when the caller is not the program owner or the schedule beneficiary."""
    pass


# ==================== Claim Errors ====================


class ClaimError(VestingError):
    """Raised when a claim cannot pay out right now."""
    recoverable = True  # Retry once more time has elapsed


class ClaimNotAvailableYetError(ClaimError):
    """Raised when a claim is attempted before the cliff."""

    def __init__(self, message: str, cliff_time: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.cliff_time = cliff_time


class NothingToClaimError(ClaimError):
    """Raised when the claimable amount is zero."""
    pass


# ==================== Transfer Errors ====================


class TransferError(VestingError):
    """Raised when the treasury service cannot move funds."""
    pass


class TransferFailedError(TransferError):
    """Raised when a treasury transfer is rejected or fails mid-way."""
    pass


class InsufficientFundsError(TransferFailedError):
    """Raised when the source account balance is below the transfer amount."""
    pass


# ==================== Storage Errors ====================


class StorageError(VestingError):
    """Raised when account store operations fail."""
    pass


class RecordNotFoundError(StorageError):
    """Raised when no account exists at the requested address."""

    def __init__(self, message: str, address: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.address = address


class ConcurrentModificationError(StorageError):
    """Raised when a compare-and-swap write observes a changed version."""
    recoverable = True


class CorruptedDataError(StorageError):
    """Raised when the persisted account file cannot be decoded."""
    recoverable = False


# ==================== Configuration Errors ====================


class ConfigurationError(VestingError):
    """Raised when tokenvest configuration is missing or invalid."""
    recoverable = False


# ==================== Utility Functions ====================


def is_recoverable_error(exc: Exception) -> bool:
    """Check if an exception represents a recoverable error.

    Args:
        exc: The exception to check

    Returns:
        True if the operation can be retried later
    """
    if isinstance(exc, VestingError):
        return exc.recoverable

    recoverable_types = (
        ConnectionError,
        TimeoutError,
        OSError,
    )
    return isinstance(exc, recoverable_types)


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, VestingError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    if isinstance(exc, (DuplicateAccountError, RecordNotFoundError)) and exc.address:
        context["address"] = exc.address

    if isinstance(exc, ClaimNotAvailableYetError) and exc.cliff_time is not None:
        context["cliff_time"] = exc.cliff_time

    return context
