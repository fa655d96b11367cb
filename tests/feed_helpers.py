"""Builders for synthetic pool activity and scripted collaborators."""
from __future__ import annotations

import itertools
from typing import Dict, List, Optional, Sequence, Set, Tuple

from pool_notes.crypto_core.derivation import KeyedSecretDeriver
from pool_notes.database.note_cache import MemoryNoteCache
from pool_notes.indexer.schemas import ActivityKind, ActivityPage, ActivityRecord

ACCOUNT_KEY = 0x5EED_0F_A11CE
OTHER_KEY = 0xB0B
POOL = "0xabc0000000000000000000000000000000000001"
PUBLIC_KEY = "alice-public"
LABEL = "0x2a"

DERIVER = KeyedSecretDeriver()

_ids = itertools.count()


def precommitment_for(deposit_index: int, key: int = ACCOUNT_KEY, pool: str = POOL) -> int:
    nullifier, secret = DERIVER.derive_deposit_secret_pair(key, pool, deposit_index)
    return DERIVER.hash_to_precommitment(nullifier, secret)


def nullifier_hash_for(deposit_index: int, change_index: int = 0, key: int = ACCOUNT_KEY, pool: str = POOL) -> int:
    if change_index == 0:
        nullifier, _ = DERIVER.derive_deposit_secret_pair(key, pool, deposit_index)
    else:
        nullifier, _ = DERIVER.derive_change_secret_pair(key, pool, deposit_index, change_index)
    return DERIVER.hash_nullifier(nullifier)


def deposit(deposit_index: int, amount: int, *, key: int = ACCOUNT_KEY, label: str = LABEL, tx: Optional[str] = None) -> ActivityRecord:
    n = next(_ids)
    return ActivityRecord(
        id=f"act-{n}",
        kind=ActivityKind.DEPOSIT,
        pool_id=POOL,
        amount=amount,
        label=label,
        precommitment=precommitment_for(deposit_index, key),
        block_number=n,
        timestamp=1_700_000_000 + n,
        transaction_hash=tx or f"0xdep{deposit_index}-{n}",
    )


def withdrawal(deposit_index: int, change_index: int, amount: int, *, key: int = ACCOUNT_KEY,
               successor: bool = True, tx: Optional[str] = None) -> ActivityRecord:
    n = next(_ids)
    return ActivityRecord(
        id=f"act-{n}",
        kind=ActivityKind.WITHDRAWAL,
        pool_id=POOL,
        amount=amount,
        spent_nullifier=nullifier_hash_for(deposit_index, change_index, key),
        new_commitment=(0xC0FFEE + n) if successor else None,
        block_number=n,
        timestamp=1_700_000_000 + n,
        transaction_hash=tx or f"0xwd{deposit_index}.{change_index}-{n}",
    )


def ragequit(deposit_index: int, change_index: int, amount: int, *, key: int = ACCOUNT_KEY) -> ActivityRecord:
    n = next(_ids)
    return ActivityRecord(
        id=f"act-{n}",
        kind=ActivityKind.RAGEQUIT,
        pool_id=POOL,
        amount=amount,
        spent_nullifier=nullifier_hash_for(deposit_index, change_index, key),
        block_number=n,
        timestamp=1_700_000_000 + n,
        transaction_hash=f"0xrq{deposit_index}.{change_index}-{n}",
    )


def noise(count: int = 1) -> List[ActivityRecord]:
    """Deposits and spends by someone else."""
    out: List[ActivityRecord] = []
    for i in range(count):
        out.append(deposit(i, 10_000 + i, key=OTHER_KEY))
        out.append(withdrawal(i, 0, 5_000, key=OTHER_KEY))
    return out


class ScriptedFeed:
    """
    Activity feed over a fixed list of pages. Cursor ``"c<n>"`` means "after
    page n"; reading past the last page returns an empty final page.
    """

    def __init__(self, pages: Sequence[Sequence[ActivityRecord]] = ((),)):
        self.pages: List[Tuple[ActivityRecord, ...]] = [tuple(p) for p in pages]
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.fail_pages: Set[int] = set()

    def append_page(self, records: Sequence[ActivityRecord]) -> None:
        self.pages.append(tuple(records))

    async def fetch_activity_page(self, pool: str, cursor: Optional[str] = None) -> ActivityPage:
        self.calls.append((pool, cursor))
        index = 0 if cursor is None else int(cursor[1:])
        if index in self.fail_pages:
            self.fail_pages.discard(index)
            raise ConnectionError(f"indexer unavailable at page {index}")
        if index >= len(self.pages):
            return ActivityPage(records=(), next_cursor=cursor, has_more=False)
        return ActivityPage(
            records=self.pages[index],
            next_cursor=f"c{index + 1}",
            has_more=index + 1 < len(self.pages),
        )


class FlakyCache(MemoryNoteCache):
    """Memory cache whose n-th put (1-based) raises."""

    def __init__(self, fail_on_put: int):
        super().__init__()
        self.fail_on_put = fail_on_put
        self.put_attempts = 0

    async def put(self, identity, pool, chains, cursor):
        self.put_attempts += 1
        if self.put_attempts == self.fail_on_put:
            raise OSError("disk full")
        await super().put(identity, pool, chains, cursor)


def chain_summary(result) -> Dict[int, List[Tuple[int, int, str]]]:
    return {
        c.deposit_index: [(n.change_index, n.amount, n.status) for n in c.notes]
        for c in result.chains
    }
