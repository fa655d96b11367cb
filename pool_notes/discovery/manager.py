from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from pool_notes.api.logging_config import get_logger
from pool_notes.crypto_core.derivation import normalize_pool
from pool_notes.discovery.models import DiscoveryProgress, DiscoveryResult, RunState
from pool_notes.discovery.orchestrator import DiscoveryIdentity, DiscoveryRun, NoteDiscovery
from pool_notes.discovery.progress import ProgressStream

logger = get_logger("discovery.manager")

ScopeKey = Tuple[str, str]


def scope_key(public_key: str, pool: str) -> ScopeKey:
    return public_key.strip(), normalize_pool(pool)


@dataclass
class ActiveRun:
    run: DiscoveryRun
    task: "asyncio.Task[DiscoveryResult]"
    cancellation: asyncio.Event

    @property
    def state(self) -> RunState:
        return self.run.state

    @property
    def progress(self) -> ProgressStream:
        return self.run.progress

    @property
    def latest_progress(self) -> Optional[DiscoveryProgress]:
        return self.run.progress.latest

    @property
    def result(self) -> Optional[DiscoveryResult]:
        return self.run.result

    @property
    def error(self) -> Optional[BaseException]:
        return self.run.error


class DiscoveryManager:
    """
    Keeps at most one active run per (identity, pool).

    Starting a run for a scope that already has one cancels the prior run and
    waits for it to stop before the new one begins, so two live-deposit sets
    never race on the same cache entry. Different scopes run concurrently.
    """

    def __init__(self, engine: NoteDiscovery):
        self.engine = engine
        self._runs: Dict[ScopeKey, ActiveRun] = {}
        self._locks: Dict[ScopeKey, asyncio.Lock] = {}
        self._starting: Dict[ScopeKey, int] = {}  # start() calls holding or awaiting the lock

    def get(self, public_key: str, pool: str) -> Optional[ActiveRun]:
        return self._runs.get(scope_key(public_key, pool))

    async def start(self, identity: DiscoveryIdentity, pool: str) -> ActiveRun:
        key = scope_key(identity.public_key, pool)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._starting[key] = self._starting.get(key, 0) + 1
        try:
            async with lock:
                prior = self._runs.get(key)
                if prior is not None and not prior.task.done():
                    logger.info(f"Cancelling previous discovery run for pool {key[1]}")
                    prior.cancellation.set()
                    await asyncio.gather(prior.task, return_exceptions=True)

                cancellation = asyncio.Event()
                run = self.engine.new_run(identity, pool, cancellation, ProgressStream())
                task = asyncio.create_task(run.execute())
                task.add_done_callback(_consume_task_error)
                active = ActiveRun(run=run, task=task, cancellation=cancellation)
                self._runs[key] = active
                return active
        finally:
            self._starting[key] -= 1
            if not self._starting[key]:
                del self._starting[key]
                del self._locks[key]

    async def cancel(self, public_key: str, pool: str) -> bool:
        """Request cancellation and wait for the run to stop. Returns False if nothing was running."""
        active = self.get(public_key, pool)
        if active is None or active.task.done():
            return False
        active.cancellation.set()
        await asyncio.gather(active.task, return_exceptions=True)
        return True

    async def wait(self, public_key: str, pool: str) -> Optional[DiscoveryResult]:
        """Await the scope's current run; re-raises its failure."""
        active = self.get(public_key, pool)
        if active is None:
            return None
        return await active.task

    async def shutdown(self) -> None:
        pending = [a for a in self._runs.values() if not a.task.done()]
        for a in pending:
            a.cancellation.set()
        if pending:
            await asyncio.gather(*(a.task for a in pending), return_exceptions=True)


def _consume_task_error(task: "asyncio.Task[DiscoveryResult]") -> None:
    # Failures are kept on the run object; avoid "exception was never retrieved" noise
    if not task.cancelled():
        task.exception()
