"""
Collaborator contracts consumed by the discovery engine.

The feed contract has no method taking a precommitment or nullifier: the
engine can only ask for "everything, paged", which keeps the indexer blind to
which records belong to the user.
"""
from __future__ import annotations

from typing import Iterable, Optional, Protocol, Tuple

from pool_notes.discovery.models import CachedNotes, NoteChain
from pool_notes.indexer.schemas import ActivityPage


class SecretDeriver(Protocol):
    def derive_deposit_secret_pair(self, account_key: int, pool: str, deposit_index: int) -> Tuple[int, int]:
        ...

    def derive_change_secret_pair(
        self, account_key: int, pool: str, deposit_index: int, change_index: int
    ) -> Tuple[int, int]:
        ...

    def hash_to_precommitment(self, nullifier: int, secret: int) -> int:
        ...

    def hash_nullifier(self, nullifier: int) -> int:
        ...


class ActivityFeed(Protocol):
    async def fetch_activity_page(self, pool: str, cursor: Optional[str] = None) -> ActivityPage:
        ...


class NoteCache(Protocol):
    async def get(self, identity: str, pool: str) -> Optional[CachedNotes]:
        ...

    async def put(self, identity: str, pool: str, chains: Iterable[NoteChain], cursor: Optional[str]) -> None:
        ...
