"""
Deterministic address derivation for vesting accounts.

Company programs, treasuries, employee schedules and beneficiary destination
accounts never get freely chosen identifiers. Each one lives at an address
derived from seed data:

    digest = sha256(tag(s0) || len(s0) || s0 || ... || bump || program_id || MARKER)

Each seed component is framed with a type tag (raw bytes or UTF-8 text) and
its length, so two different seed lists never hash the same input. Addresses
used as seeds are passed as their raw bytes by the helpers below; text is
never reinterpreted as an address.

The bump is searched downward from 255 until the digest is NOT a valid Ed25519
point. An off-curve address has no private key, so no external signature can
ever claim authority over it; only the ledger that knows the seeds can act for
it.

Address format:
- Mainnet: VST + 64 lowercase hex characters
- Testnet: TVST + 64 lowercase hex characters
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from functools import lru_cache
from typing import Sequence, Union

from tokenvest.core.config import get_settings
from tokenvest.core.vesting_exceptions import AddressDerivationError

ADDRESS_BYTES = 32
MAX_SEEDS = 16
MAX_SEED_BYTES = 64
PDA_MARKER = b"ProgramDerivedAddress"
ADDRESS_PREFIXES = ("TVST", "VST")

PROGRAM_TAG = "vesting_program"
TREASURY_TAG = "vesting_treasury"
SCHEDULE_TAG = "vesting_schedule"
DESTINATION_TAG = "destination"

SEED_TAG_BYTES = 0x00
SEED_TAG_TEXT = 0x01

# Ed25519 curve parameters (RFC 8032)
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P

Seed = Union[str, bytes]


@dataclass(frozen=True)
class DerivedAddress:
    address: str
    bump: int
    raw: bytes

    def __str__(self) -> str:
        return self.address


def is_on_curve(point: bytes) -> bool:
    """
    Check whether 32 bytes decompress to a point on the Ed25519 curve.

    Decompression solves x^2 = (y^2 - 1) / (d*y^2 + 1) mod p; the point exists
    iff the right-hand side is zero or a quadratic residue.
    """
    if len(point) != ADDRESS_BYTES:
        return False
    y = int.from_bytes(point, "little") & ((1 << 255) - 1)
    y %= _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    x2 = u * pow(v, _P - 2, _P) % _P
    if x2 == 0:
        return True
    return pow(x2, (_P - 1) // 2, _P) == 1


def is_valid_address(value: object) -> bool:
    """True if value is a rendered address (known prefix + 64 hex chars)."""
    if not isinstance(value, str):
        return False
    for prefix in ADDRESS_PREFIXES:
        if value.startswith(prefix):
            hex_part = value[len(prefix):]
            if len(hex_part) != ADDRESS_BYTES * 2:
                return False
            try:
                bytes.fromhex(hex_part)
            except ValueError:
                return False
            return True
    return False


def address_to_bytes(address: str, prefix: str | None = None) -> bytes:
    """
    Strip the network prefix and return the raw 32 bytes.

    When prefix is given the address must carry exactly that prefix, so a
    mainnet rendering is never accepted where a testnet one is expected.
    """
    if not is_valid_address(address):
        raise AddressDerivationError(f"Invalid address: {address!r}")
    prefixes = (prefix,) if prefix is not None else ADDRESS_PREFIXES
    for candidate in prefixes:
        if address.startswith(candidate):
            return bytes.fromhex(address[len(candidate):])
    raise AddressDerivationError(
        f"Address {address[:8]}... does not use the {prefix!r} prefix",
        details={"expected_prefix": prefix},
    )


def render_address(raw: bytes, prefix: str | None = None) -> str:
    if prefix is None:
        prefix = get_settings().address_prefix
    return f"{prefix}{raw.hex()}"


def seed_length(seed: Seed) -> int:
    """Payload size of a seed component in bytes."""
    if isinstance(seed, bytes):
        return len(seed)
    if isinstance(seed, str):
        return len(seed.encode("utf-8"))
    raise AddressDerivationError(f"Seed must be str or bytes, got {type(seed).__name__}")


def encode_seed(seed: Seed) -> bytes:
    """Framed encoding of one seed component: type tag, length, payload."""
    if isinstance(seed, bytes):
        tag, payload = SEED_TAG_BYTES, seed
    elif isinstance(seed, str):
        tag, payload = SEED_TAG_TEXT, seed.encode("utf-8")
    else:
        raise AddressDerivationError(f"Seed must be str or bytes, got {type(seed).__name__}")
    if len(payload) > MAX_SEED_BYTES:
        raise AddressDerivationError(
            f"Seed component is {len(payload)} bytes; maximum is {MAX_SEED_BYTES}",
            details={"seed_length": len(payload)},
        )
    return bytes([tag, len(payload)]) + payload


def _encode_seeds(seeds: Sequence[Seed]) -> bytes:
    if not seeds:
        raise AddressDerivationError("At least one seed is required")
    if len(seeds) > MAX_SEEDS:
        raise AddressDerivationError(f"Too many seeds ({len(seeds)} > {MAX_SEEDS})")
    return b"".join(encode_seed(seed) for seed in seeds)


def _hash_candidate(seed_bytes: bytes, bump: int, program_id: bytes) -> bytes:
    return hashlib.sha256(seed_bytes + bytes([bump]) + program_id + PDA_MARKER).digest()


@lru_cache(maxsize=4096)
def _find_bump(seed_bytes: bytes, program_id: bytes) -> tuple[bytes, int]:
    for bump in range(255, -1, -1):
        candidate = _hash_candidate(seed_bytes, bump, program_id)
        if not is_on_curve(candidate):
            return candidate, bump
    raise AddressDerivationError("Unable to find an off-curve bump for seeds")


def derive_address(
    seeds: Sequence[Seed],
    program_id: bytes | None = None,
    prefix: str | None = None,
) -> DerivedAddress:
    """
    Derive the canonical (highest-bump) off-curve address for seeds.

    Args:
        seeds: Ordered seed components (str or bytes)
        program_id: 32-byte derivation domain; defaults to the configured program
        prefix: Address prefix; defaults to the configured network's prefix

    Returns:
        DerivedAddress with the rendered address and the bump that produced it

    Raises:
        AddressDerivationError: If seeds are empty, too many, or too long
    """
    if program_id is None:
        program_id = get_settings().program_id
    raw, bump = _find_bump(_encode_seeds(seeds), bytes(program_id))
    return DerivedAddress(address=render_address(raw, prefix), bump=bump, raw=raw)


def create_address_with_bump(
    seeds: Sequence[Seed],
    bump: int,
    program_id: bytes | None = None,
    prefix: str | None = None,
) -> DerivedAddress:
    """Re-derive an address from a known bump; the result must be off-curve."""
    if not 0 <= bump <= 255:
        raise AddressDerivationError(f"Bump must be in 0..255, got {bump}")
    if program_id is None:
        program_id = get_settings().program_id
    raw = _hash_candidate(_encode_seeds(seeds), bump, bytes(program_id))
    if is_on_curve(raw):
        raise AddressDerivationError(
            "Seeds and bump produce an on-curve address", details={"bump": bump}
        )
    return DerivedAddress(address=render_address(raw, prefix), bump=bump, raw=raw)


def program_address(name: str, **kwargs) -> DerivedAddress:
    return derive_address([name, PROGRAM_TAG], **kwargs)


def treasury_address(name: str, **kwargs) -> DerivedAddress:
    return derive_address([name, TREASURY_TAG], **kwargs)


def schedule_address(beneficiary: str, company_program_id: str, **kwargs) -> DerivedAddress:
    prefix = kwargs.get("prefix")
    if prefix is None:
        prefix = get_settings().address_prefix
    program_raw = address_to_bytes(company_program_id, prefix=prefix)
    return derive_address([beneficiary, program_raw, SCHEDULE_TAG], **kwargs)


def destination_address(owner: str, asset_kind: str, **kwargs) -> DerivedAddress:
    return derive_address([owner, asset_kind, DESTINATION_TAG], **kwargs)
