"""
Privacy-preserving note discovery.

The engine reads the *whole* pool activity feed page by page and recognises
the user's records locally, by re-deriving candidate precommitments and
nullifier hashes from the account key. The indexer only ever sees
"give me the next page after cursor X".

Per page:
  1. extend every live chain (unspent tail, positive balance) with the page
  2. probe deposit indices from last_used_index + 1 until one is missing from
     the page; a missing index is retried on the next page
  3. persist chains + the page's end cursor (every page boundary is a safe
     resume point)
  4. emit progress
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Set, Tuple

from nacl.exceptions import CryptoError
from pydantic import ValidationError

from pool_notes import config
from pool_notes.api.logging_config import get_logger
from pool_notes.crypto_core.derivation import KeyedSecretDeriver, normalize_pool
from pool_notes.discovery.chain_builder import extend_chain, new_chain_from_deposit
from pool_notes.discovery.contracts import ActivityFeed, NoteCache, SecretDeriver
from pool_notes.discovery.errors import CacheError, ChainIntegrityError, DiscoveryError, FeedFetchError
from pool_notes.discovery.models import (
    DiscoveryProgress,
    DiscoveryResult,
    NoteChain,
    RunState,
    last_used_index_of,
)
from pool_notes.discovery.progress import ProgressStream
from pool_notes.indexer.schemas import ActivityKind, ActivityPage, ActivityRecord

logger = get_logger("discovery")


@dataclass(frozen=True)
class DiscoveryIdentity:
    """Who is scanning: ``public_key`` scopes the cache, ``account_key`` derives secrets."""

    public_key: str
    account_key: int = field(repr=False)


@dataclass(frozen=True)
class _Snapshot:
    chains: Tuple[NoteChain, ...]
    last_used_index: int
    matched: int
    cursor: Optional[str]


class NoteDiscovery:
    """
    Discovery engine bound to its collaborators. Stateless between runs: all
    per-run state lives on the ``DiscoveryRun`` returned by ``new_run``.
    """

    def __init__(
        self,
        feed: ActivityFeed,
        cache: NoteCache,
        deriver: Optional[SecretDeriver] = None,
        *,
        gap_lookahead: int = config.DISCOVERY_GAP_LOOKAHEAD,
    ):
        if gap_lookahead < 0:
            raise ValueError("gap_lookahead must be >= 0")
        self.feed = feed
        self.cache = cache
        self.deriver = deriver or KeyedSecretDeriver()
        self.gap_lookahead = gap_lookahead

    def new_run(
        self,
        identity: DiscoveryIdentity,
        pool: str,
        cancellation: Optional[asyncio.Event] = None,
        progress: Optional[ProgressStream] = None,
    ) -> "DiscoveryRun":
        return DiscoveryRun(self, identity, pool, cancellation, progress)

    async def discover(
        self,
        identity: DiscoveryIdentity,
        pool: str,
        cancellation: Optional[asyncio.Event] = None,
        progress: Optional[ProgressStream] = None,
    ) -> DiscoveryResult:
        """
        Run discovery to completion (or cancellation) for one (identity, pool).

        Returns:
            DiscoveryResult with state COMPLETED or CANCELLED

        Raises:
            FeedFetchError: the feed failed; a retry resumes from the last persisted page
            CacheError: loading or persisting state failed
            DerivationInvariantError: feed data contradicts derived secrets (not retryable)
        """
        return await self.new_run(identity, pool, cancellation, progress).execute()


class DiscoveryRun:
    def __init__(
        self,
        engine: NoteDiscovery,
        identity: DiscoveryIdentity,
        pool: str,
        cancellation: Optional[asyncio.Event],
        progress: Optional[ProgressStream],
    ):
        self.engine = engine
        self.identity = identity
        self.pool = normalize_pool(pool)
        self.cancellation = cancellation or asyncio.Event()
        self.progress = progress or ProgressStream()

        self.state = RunState.IDLE
        self.result: Optional[DiscoveryResult] = None
        self.error: Optional[BaseException] = None

        self._chains: Dict[int, NoteChain] = {}
        self._live: Dict[int, int] = {}  # deposit_index -> remaining balance
        self._last_used_index = -1
        self._cursor: Optional[str] = None
        self._matched = 0
        self._counters = DiscoveryProgress()
        self._committed = _Snapshot((), -1, 0, None)

    # ---------- lifecycle ----------
    async def execute(self) -> DiscoveryResult:
        if self.state != RunState.IDLE:
            raise RuntimeError("A discovery run executes only once")
        self.state = RunState.RUNNING
        logger.info(f"Discovery started for pool {self.pool}")

        try:
            await self._load()
            if self._cancelled():
                return self._finish(RunState.CANCELLED)

            while True:
                if self._cancelled():
                    return self._finish(RunState.CANCELLED)

                page = await self._fetch_page()
                self._extend_live(page.records)
                if not self._scan_candidates(page.records):
                    return self._finish(RunState.CANCELLED)

                end_cursor = page.next_cursor or self._cursor
                if page.has_more and end_cursor == self._cursor:
                    raise FeedFetchError(f"Feed reported more pages without advancing past cursor {self._cursor!r}")

                await self._persist(end_cursor)
                self._commit(end_cursor)
                self._emit(cursor=end_cursor)

                if not page.has_more:
                    break

            return self._finish(RunState.COMPLETED)

        except DiscoveryError as e:
            self._fail(e)
            logger.error(f"Discovery failed for pool {self.pool}: {e}")
            raise
        except Exception as e:
            self._fail(e)
            logger.error(f"Discovery crashed for pool {self.pool}: {e}", exc_info=True)
            raise
        finally:
            # Only the cache scope outlives the run; drop the account key
            self.identity = DiscoveryIdentity(public_key=self.identity.public_key, account_key=0)
            self.progress.close()

    def _cancelled(self) -> bool:
        return self.cancellation.is_set()

    def _fail(self, error: BaseException) -> None:
        self.state = RunState.FAILED
        self.error = error

    def _finish(self, state: RunState) -> DiscoveryResult:
        snap = self._committed
        self.state = state
        self.result = DiscoveryResult(
            chains=snap.chains,
            last_used_index=snap.last_used_index,
            new_notes_found=snap.matched,
            cursor=snap.cursor,
            state=state,
        )
        if state == RunState.COMPLETED:
            self._emit(complete=True, cursor=snap.cursor)
            logger.info(
                f"Discovery done for pool {self.pool}: {len(snap.chains)} chains, "
                f"+{snap.matched} deposits matched, last_used_index={snap.last_used_index}"
            )
        else:
            logger.info(f"Discovery cancelled for pool {self.pool} at cursor {snap.cursor!r}")
        return self.result

    # ---------- state ----------
    async def _load(self) -> None:
        try:
            cached = await self.engine.cache.get(self.identity.public_key, self.pool)
        except (CryptoError, ValidationError) as e:
            # Same bytes, same key: a retry cannot succeed
            raise ChainIntegrityError(f"Cached notes are unreadable: {e}") from e
        except Exception as e:
            raise CacheError(f"Failed to load cached notes: {e}") from e

        if cached is not None:
            for chain in cached.chains:
                chain.check_integrity()
                if chain.deposit_index in self._chains:
                    raise ChainIntegrityError(f"Duplicate cached chain for deposit index {chain.deposit_index}")
                self._chains[chain.deposit_index] = chain
                if chain.is_live:
                    self._live[chain.deposit_index] = chain.remaining
            self._last_used_index = max(cached.last_used_index, last_used_index_of(cached.chains))
            self._cursor = cached.cursor
            logger.info(
                f"Resuming from cache: {len(self._chains)} chains ({len(self._live)} live), "
                f"last_used_index={self._last_used_index}"
            )

        self._commit(self._cursor)

    def _sorted_chains(self) -> Tuple[NoteChain, ...]:
        return tuple(self._chains[i] for i in sorted(self._chains))

    def _commit(self, cursor: Optional[str]) -> None:
        self._cursor = cursor
        self._committed = _Snapshot(self._sorted_chains(), self._last_used_index, self._matched, cursor)

    async def _persist(self, cursor: Optional[str]) -> None:
        try:
            await self.engine.cache.put(self.identity.public_key, self.pool, self._sorted_chains(), cursor)
        except Exception as e:
            raise CacheError(f"Failed to persist page ending at cursor {cursor!r}: {e}") from e

    # ---------- progress ----------
    def _bump(self, **deltas: int) -> None:
        update = {k: getattr(self._counters, k) + v for k, v in deltas.items()}
        self._counters = self._counters.model_copy(update=update)

    def _emit(self, **fields) -> None:
        if fields:
            self._counters = self._counters.model_copy(update=fields)
        self.progress.emit(self._counters)

    # ---------- page processing ----------
    async def _fetch_page(self) -> ActivityPage:
        try:
            page = await self.engine.feed.fetch_activity_page(self.pool, self._cursor)
        except Exception as e:
            raise FeedFetchError(f"Failed to fetch activity page after cursor {self._cursor!r}: {e}") from e

        self._bump(pages_processed=1, records_seen=len(page.records))
        self._counters = self._counters.model_copy(update={"page_record_count": len(page.records)})
        return page

    def _extend_live(self, records: Sequence[ActivityRecord]) -> None:
        if not self._live:
            return
        appended = 0
        for deposit_index in list(self._live):
            ext = extend_chain(
                self._chains[deposit_index],
                records,
                account_key=self.identity.account_key,
                deriver=self.engine.deriver,
            )
            if not ext.changed:
                continue
            self._chains[deposit_index] = ext.chain
            appended += ext.appended
            if ext.chain.is_live:
                self._live[deposit_index] = ext.chain.remaining
            else:
                del self._live[deposit_index]
                logger.info(f"Chain {deposit_index} fully spent")
        self._bump(notes_appended=appended)
        self._emit()

    def _precommitment(self, deposit_index: int) -> int:
        deriver = self.engine.deriver
        nullifier, secret = deriver.derive_deposit_secret_pair(self.identity.account_key, self.pool, deposit_index)
        return deriver.hash_to_precommitment(nullifier, secret)

    @staticmethod
    def _find_deposit(records: Sequence[ActivityRecord], precommitment: int, consumed: Set[int]) -> Optional[int]:
        for pos, record in enumerate(records):
            if pos in consumed:
                continue
            if record.kind == ActivityKind.DEPOSIT and record.precommitment == precommitment:
                return pos
        return None

    def _probe(self, records: Sequence[ActivityRecord], start: int, consumed: Set[int]) -> Optional[Tuple[int, int]]:
        for offset in range(self.engine.gap_lookahead + 1):
            candidate = start + offset
            self._bump(deposits_checked=1)
            position = self._find_deposit(records, self._precommitment(candidate), consumed)
            if position is not None:
                if offset:
                    logger.warning(f"Deposit index {candidate} matched after skipping {offset} unused index(es)")
                return candidate, position
        return None

    def _scan_candidates(self, records: Sequence[ActivityRecord]) -> bool:
        """Match new deposits on this page. Returns False if cancelled mid-scan."""
        consumed: Set[int] = set()
        next_index = self._last_used_index + 1

        while True:
            if self._cancelled():
                return False

            match = self._probe(records, next_index, consumed)
            if match is None:
                return True

            deposit_index, position = match
            consumed.add(position)
            chain = new_chain_from_deposit(records[position], pool=self.pool, deposit_index=deposit_index)
            # A same-page spend of this deposit can only come after it
            ext = extend_chain(
                chain,
                records[position + 1:],
                account_key=self.identity.account_key,
                deriver=self.engine.deriver,
            )
            self._chains[deposit_index] = ext.chain
            if ext.chain.is_live:
                self._live[deposit_index] = ext.chain.remaining

            self._last_used_index = deposit_index
            self._matched += 1
            self._bump(deposits_matched=1, notes_appended=ext.appended)
            self._emit()
            logger.info(f"Matched deposit index {deposit_index} ({len(ext.chain.notes)} notes)")

            next_index = deposit_index + 1
