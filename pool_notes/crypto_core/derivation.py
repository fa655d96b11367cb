# crypto_core/derivation.py
"""
Deterministic note secrets.

Every note a user can own is addressed by (pool, deposit_index, change_index).
Its nullifier and secret are a keyed PRF of the account key over that context,
reduced into the BN254 scalar field, so the wallet can re-derive every
candidate from the account key alone and needs no server-side state.
"""
from __future__ import annotations

import hashlib
from typing import Tuple, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

# BN254 scalar field (same as SNARK_SCALAR_FIELD on-chain)
SNARK_SCALAR_FIELD = 21888242871839275222246405745257275088548364400416034343698204186575808495617

TAG_DEPOSIT_NULLIFIER = b"pool-notes:DepositNullifierV1"
TAG_DEPOSIT_SECRET = b"pool-notes:DepositSecretV1"
TAG_CHANGE_NULLIFIER = b"pool-notes:ChangeNullifierV1"
TAG_CHANGE_SECRET = b"pool-notes:ChangeSecretV1"

TAG_PRECOMMITMENT = b"pool-notes:PrecommitmentV1"
TAG_NULLIFIER_HASH = b"pool-notes:NullifierHashV1"

SecretPair = Tuple[int, int]


# ---------- field helpers ----------
def mod_field(x: int) -> int:
    return x % SNARK_SCALAR_FIELD


def field_from_bytes(data: bytes) -> int:
    return mod_field(int.from_bytes(data, "big"))


def field_to_bytes(x: int) -> bytes:
    return mod_field(x).to_bytes(32, "big")


def parse_account_key(value: Union[str, int]) -> int:
    """
    Accept an account key as int, hex ("0x...") or decimal string.

    Raises:
        ValueError: empty or malformed input, or a key that reduces to zero
    """
    if isinstance(value, int):
        key = mod_field(value)
    else:
        s = value.strip()
        if not s:
            raise ValueError("Account key is empty")
        key = mod_field(int(s, 16) if s.lower().startswith("0x") else int(s, 10))
    if key == 0:
        raise ValueError("Account key reduces to zero in the scalar field")
    return key


def normalize_pool(pool: str) -> str:
    """Pool identifiers are compared case-insensitively (hex addresses)."""
    return pool.strip().lower()


def _context(pool: str, deposit_index: int, change_index: int, tag: bytes) -> bytes:
    if deposit_index < 0 or change_index < 0:
        raise ValueError(f"Negative note index: deposit={deposit_index} change={change_index}")
    return (
        normalize_pool(pool).encode()
        + b"|"
        + deposit_index.to_bytes(8, "big")
        + change_index.to_bytes(8, "big")
        + hashlib.sha256(tag).digest()
    )


def _prf(account_key: int, context: bytes, tag: bytes) -> int:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=hashlib.sha256(tag).digest(),
        info=context,
    )
    return field_from_bytes(hkdf.derive(field_to_bytes(account_key)))


def hash_fields(tag: bytes, *values: int) -> int:
    h = hashlib.sha256(tag)
    for v in values:
        h.update(field_to_bytes(v))
    return field_from_bytes(h.digest())


# ---------- public API ----------
def derive_deposit_nullifier(account_key: int, pool: str, deposit_index: int) -> int:
    return _prf(account_key, _context(pool, deposit_index, 0, TAG_DEPOSIT_NULLIFIER), TAG_DEPOSIT_NULLIFIER)


def derive_deposit_secret(account_key: int, pool: str, deposit_index: int) -> int:
    return _prf(account_key, _context(pool, deposit_index, 0, TAG_DEPOSIT_SECRET), TAG_DEPOSIT_SECRET)


def derive_change_nullifier(account_key: int, pool: str, deposit_index: int, change_index: int) -> int:
    return _prf(
        account_key,
        _context(pool, deposit_index, change_index, TAG_CHANGE_NULLIFIER),
        TAG_CHANGE_NULLIFIER,
    )


def derive_change_secret(account_key: int, pool: str, deposit_index: int, change_index: int) -> int:
    return _prf(
        account_key,
        _context(pool, deposit_index, change_index, TAG_CHANGE_SECRET),
        TAG_CHANGE_SECRET,
    )


def hash_to_precommitment(nullifier: int, secret: int) -> int:
    return hash_fields(TAG_PRECOMMITMENT, nullifier, secret)


def hash_nullifier(nullifier: int) -> int:
    return hash_fields(TAG_NULLIFIER_HASH, nullifier)


class KeyedSecretDeriver:
    """
    Default ``SecretDeriver``: keyed HKDF-SHA256 PRF plus SHA-256 field hashes.

    Stateless; one instance can serve any number of accounts and pools.
    """

    def derive_deposit_secret_pair(self, account_key: int, pool: str, deposit_index: int) -> SecretPair:
        return (
            derive_deposit_nullifier(account_key, pool, deposit_index),
            derive_deposit_secret(account_key, pool, deposit_index),
        )

    def derive_change_secret_pair(
        self, account_key: int, pool: str, deposit_index: int, change_index: int
    ) -> SecretPair:
        if change_index < 1:
            raise ValueError("Change notes start at change_index 1")
        return (
            derive_change_nullifier(account_key, pool, deposit_index, change_index),
            derive_change_secret(account_key, pool, deposit_index, change_index),
        )

    def hash_to_precommitment(self, nullifier: int, secret: int) -> int:
        return hash_to_precommitment(nullifier, secret)

    def hash_nullifier(self, nullifier: int) -> int:
        return hash_nullifier(nullifier)


__all__ = [
    "SNARK_SCALAR_FIELD",
    "KeyedSecretDeriver",
    "SecretPair",
    "derive_change_nullifier",
    "derive_change_secret",
    "derive_deposit_nullifier",
    "derive_deposit_secret",
    "field_from_bytes",
    "hash_fields",
    "hash_nullifier",
    "hash_to_precommitment",
    "mod_field",
    "normalize_pool",
    "parse_account_key",
]
