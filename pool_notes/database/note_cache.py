"""
Persistent note cache.

Rows are keyed by hashes of the identity and pool; the payload (chains, last
used index, resume cursor, sync time) is a JSON document encrypted under a
key scoped to that row. Nothing in the table reveals which deposits a user
owns without the master key.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncEngine

from pool_notes.api.logging_config import get_logger
from pool_notes.crypto_core.derivation import normalize_pool
from pool_notes.crypto_core.field_encryption import FieldEncryption, hash_pubkey
from pool_notes.database.config import init_database, make_session_factory
from pool_notes.database.models import EncryptedNoteCache
from pool_notes.discovery.models import CachedNotes, NoteChain, last_used_index_of

logger = get_logger("database.note_cache")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _snapshot(chains: Iterable[NoteChain], cursor: Optional[str]) -> CachedNotes:
    ordered = tuple(sorted(chains, key=lambda c: c.deposit_index))
    return CachedNotes(
        chains=ordered,
        last_used_index=last_used_index_of(ordered),
        cursor=cursor,
        sync_time=_utcnow(),
    )


def _row_id(identity: str, pool: str) -> Tuple[str, str, str]:
    identity_hash = hash_pubkey(identity)
    pool_hash = hash_pubkey(normalize_pool(pool))
    return f"{identity_hash}_{pool_hash}", identity_hash, pool_hash


class SqlNoteCache:
    def __init__(self, engine: AsyncEngine, encryptor: FieldEncryption):
        self.engine = engine
        self.encryptor = encryptor
        self._sessions = make_session_factory(engine)

    async def init(self) -> None:
        await init_database(self.engine)

    async def get(self, identity: str, pool: str) -> Optional[CachedNotes]:
        """
        Raises:
            nacl.exceptions.CryptoError: payload was written under another key or altered
            pydantic.ValidationError: decrypted payload is not a valid snapshot
        """
        row_id, _, _ = _row_id(identity, pool)
        async with self._sessions() as session:
            row = await session.get(EncryptedNoteCache, row_id)
            if row is None:
                return None
            blob = bytes(row.payload)
        return CachedNotes.model_validate_json(self.encryptor.decrypt(blob, row_id))

    async def put(self, identity: str, pool: str, chains: Iterable[NoteChain], cursor: Optional[str]) -> None:
        row_id, identity_hash, pool_hash = _row_id(identity, pool)
        snapshot = _snapshot(chains, cursor)
        payload = self.encryptor.encrypt(snapshot.model_dump_json().encode(), row_id)

        async with self._sessions() as session:
            async with session.begin():
                row = await session.get(EncryptedNoteCache, row_id)
                if row is None:
                    session.add(
                        EncryptedNoteCache(
                            id=row_id,
                            identity_hash=identity_hash,
                            pool_hash=pool_hash,
                            payload=payload,
                            updated_at=_utcnow(),
                        )
                    )
                else:
                    row.payload = payload
                    row.updated_at = _utcnow()
        logger.debug(f"Cached {len(snapshot.chains)} chains, cursor={cursor!r}")

    async def next_deposit_index(self, identity: str, pool: str) -> int:
        cached = await self.get(identity, pool)
        return cached.next_deposit_index if cached else 0

    async def clear(self, identity: str, pool: str) -> bool:
        row_id, _, _ = _row_id(identity, pool)
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(delete(EncryptedNoteCache).where(EncryptedNoteCache.id == row_id))
        removed = (result.rowcount or 0) > 0
        if removed:
            logger.info("Cleared cached notes for one identity/pool")
        return removed


class MemoryNoteCache:
    """Process-local cache with the same interface, for tests and throwaway scans."""

    def __init__(self) -> None:
        self._entries: Dict[Tuple[str, str], CachedNotes] = {}
        self.writes = 0

    @staticmethod
    def _key(identity: str, pool: str) -> Tuple[str, str]:
        return identity.strip(), normalize_pool(pool)

    async def init(self) -> None:
        return None

    async def get(self, identity: str, pool: str) -> Optional[CachedNotes]:
        return self._entries.get(self._key(identity, pool))

    async def put(self, identity: str, pool: str, chains: Iterable[NoteChain], cursor: Optional[str]) -> None:
        self._entries[self._key(identity, pool)] = _snapshot(chains, cursor)
        self.writes += 1

    async def next_deposit_index(self, identity: str, pool: str) -> int:
        cached = await self.get(identity, pool)
        return cached.next_deposit_index if cached else 0

    async def clear(self, identity: str, pool: str) -> bool:
        return self._entries.pop(self._key(identity, pool), None) is not None
