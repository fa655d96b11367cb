"""
Note chain extension: follow the spend relation (tail nullifier -> spend
record) through a batch of feed records as far as the batch allows.

Pure over its inputs. Chains are immutable, so the caller gets a new chain
back and must replace its own reference.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from pool_notes.discovery.contracts import SecretDeriver
from pool_notes.discovery.errors import DerivationInvariantError
from pool_notes.discovery.models import Note, NoteChain
from pool_notes.indexer.schemas import ActivityRecord


@dataclass(frozen=True)
class ChainExtension:
    chain: NoteChain
    appended: int = 0
    terminated: bool = False  # tail consumed by a spend that produced no successor

    @property
    def changed(self) -> bool:
        return self.appended > 0 or self.terminated


def tail_nullifier_hash(chain: NoteChain, account_key: int, deriver: SecretDeriver) -> int:
    tail = chain.tail
    if tail.is_deposit:
        nullifier, _ = deriver.derive_deposit_secret_pair(account_key, tail.pool, tail.deposit_index)
    else:
        nullifier, _ = deriver.derive_change_secret_pair(
            account_key, tail.pool, tail.deposit_index, tail.change_index
        )
    return deriver.hash_nullifier(nullifier)


def find_spend(records: Iterable[ActivityRecord], nullifier_hash: int) -> Optional[ActivityRecord]:
    for record in records:
        if record.kind.is_spend and record.spent_nullifier == nullifier_hash:
            return record
    return None


def extend_chain(
    chain: NoteChain,
    records: Sequence[ActivityRecord],
    *,
    account_key: int,
    deriver: SecretDeriver,
) -> ChainExtension:
    """
    Advance ``chain`` through every spend of its tail found in ``records``.

    Args:
        chain: Chain whose tail may be unspent; non-live chains come back unchanged
        records: Any subset of one feed page, in feed order
        account_key: Account key the chain's secrets derive from
        deriver: Secret derivation primitives

    Returns:
        ChainExtension with the new chain and the number of notes appended

    Raises:
        DerivationInvariantError: a spend withdraws more than the note holds
    """
    records = tuple(records)
    appended = 0

    while chain.is_live:
        spend = find_spend(records, tail_nullifier_hash(chain, account_key, deriver))
        if spend is None:
            break

        tail = chain.tail
        spent_tail = tail.mark_spent(spend.transaction_hash or spend.id)

        if not spend.has_successor:
            return ChainExtension(chain.with_tail(spent_tail), appended, terminated=True)

        remaining = tail.amount - spend.amount
        if remaining < 0:
            raise DerivationInvariantError(
                f"Spend {spend.transaction_hash or spend.id} withdraws {spend.amount} from "
                f"note {tail.deposit_index}/{tail.change_index} holding {tail.amount}"
            )

        change = Note(
            pool=tail.pool,
            deposit_index=tail.deposit_index,
            change_index=tail.change_index + 1,
            amount=remaining,
            transaction_hash=spend.transaction_hash,
            block_number=spend.block_number,
            timestamp=spend.timestamp,
            status="unspent" if remaining > 0 else "spent",
            label=tail.label,
        )
        chain = NoteChain(notes=chain.notes[:-1] + (spent_tail, change))
        appended += 1

    return ChainExtension(chain, appended)


def new_chain_from_deposit(
    record: ActivityRecord,
    *,
    pool: str,
    deposit_index: int,
) -> NoteChain:
    return NoteChain(
        notes=(
            Note(
                pool=pool,
                deposit_index=deposit_index,
                change_index=0,
                amount=record.amount,
                transaction_hash=record.transaction_hash,
                block_number=record.block_number,
                timestamp=record.timestamp,
                status="unspent" if record.amount > 0 else "spent",
                label=record.label,
            ),
        )
    )
