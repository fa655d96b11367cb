# crypto_core/commitments.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pool_notes.crypto_core.derivation import KeyedSecretDeriver, hash_fields, normalize_pool
from pool_notes.discovery.contracts import SecretDeriver
from pool_notes.discovery.models import Note

TAG_COMMITMENT = b"pool-notes:CommitmentV1"

_default_deriver = KeyedSecretDeriver()


@dataclass(frozen=True)
class DepositCommitment:
    """Data the depositor publishes for a fresh deposit (change_index is always 0)."""

    pool: str
    deposit_index: int
    precommitment: int
    change_index: int = 0


def label_to_field(label: Optional[str]) -> int:
    if label is None or not str(label).strip():
        raise ValueError("Note has no label; the commitment cannot be computed")
    return int(str(label).strip(), 0)


def make_commitment(amount: int, label: int, precommitment: int) -> int:
    return hash_fields(TAG_COMMITMENT, amount, label, precommitment)


def note_secret_pair(account_key: int, note: Note, deriver: Optional[SecretDeriver] = None):
    d = deriver or _default_deriver
    if note.is_deposit:
        return d.derive_deposit_secret_pair(account_key, note.pool, note.deposit_index)
    return d.derive_change_secret_pair(account_key, note.pool, note.deposit_index, note.change_index)


def note_commitment(account_key: int, note: Note, deriver: Optional[SecretDeriver] = None) -> int:
    """
    Full commitment of a note: binds its value and label to the precommitment
    of its (deposit_index, change_index) secrets.
    """
    d = deriver or _default_deriver
    nullifier, secret = note_secret_pair(account_key, note, d)
    return make_commitment(note.amount, label_to_field(note.label), d.hash_to_precommitment(nullifier, secret))


def deposit_commitment(
    account_key: int,
    pool: str,
    deposit_index: int,
    deriver: Optional[SecretDeriver] = None,
) -> DepositCommitment:
    d = deriver or _default_deriver
    nullifier, secret = d.derive_deposit_secret_pair(account_key, pool, deposit_index)
    return DepositCommitment(
        pool=normalize_pool(pool),
        deposit_index=deposit_index,
        precommitment=d.hash_to_precommitment(nullifier, secret),
    )
