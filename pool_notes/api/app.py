# pool_notes/api/app.py
"""
Local discovery service.

Runs on the user's machine: the account key travels only over the local
loopback to this process, is used for derivation and is never persisted.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncEngine

from pool_notes.api import health_checks as hc
from pool_notes.api.logging_config import get_logger, setup_logging
from pool_notes.api.schemas_api import (
    CancelRes,
    ChainInfo,
    DepositCommitmentReq,
    DepositCommitmentRes,
    DiscoverReq,
    IdentityReq,
    ListNotesRes,
    NoteInfo,
    RunStatusRes,
)
from pool_notes.crypto_core.commitments import deposit_commitment
from pool_notes.crypto_core.derivation import normalize_pool, parse_account_key
from pool_notes.database import config as db_config
from pool_notes.database.note_cache import SqlNoteCache
from pool_notes.discovery.errors import DiscoveryError
from pool_notes.discovery.manager import ActiveRun, DiscoveryManager
from pool_notes.discovery.models import RunState
from pool_notes.discovery.orchestrator import DiscoveryIdentity, NoteDiscovery
from pool_notes.indexer.client import IndexerClient

logger = get_logger("api")


def _account_key(req: IdentityReq) -> int:
    try:
        return parse_account_key(req.account_key)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid account key: {e}")


def _discovery_http_error(e: DiscoveryError) -> HTTPException:
    # Upstream/cache trouble is retryable (502); contradictory data is not (500)
    return HTTPException(status_code=502 if e.retryable else 500, detail=f"{e.__class__.__name__}: {e}")


def _run_status(pool: str, active: ActiveRun) -> RunStatusRes:
    res = RunStatusRes(pool=normalize_pool(pool), state=active.state, progress=active.latest_progress)
    if active.result is not None:
        res.new_notes_found = active.result.new_notes_found
        res.last_used_index = active.result.last_used_index
    if active.state == RunState.FAILED and active.error is not None:
        res.error = str(active.error)
        res.retryable = isinstance(active.error, DiscoveryError) and active.error.retryable
    return res


def create_app(
    manager: Optional[DiscoveryManager] = None,
    cache=None,
    indexer: Optional[IndexerClient] = None,
    engine: Optional[AsyncEngine] = None,
) -> FastAPI:
    """
    Build the service. Collaborators left as None are created from the
    environment at startup (SQLite cache under DATA_DIR, indexer at
    INDEXER_URL) and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging()
        owned_indexer = owned_engine = None

        st_cache = cache if cache is not None else (manager.engine.cache if manager is not None else None)
        st_engine = engine
        if st_cache is None:
            st_engine = owned_engine = db_config.create_engine()
            st_cache = SqlNoteCache(st_engine, db_config.get_encryptor())
        await st_cache.init()

        st_indexer = indexer
        if st_indexer is None and manager is None:
            st_indexer = owned_indexer = IndexerClient()

        st_manager = manager or DiscoveryManager(NoteDiscovery(feed=st_indexer, cache=st_cache))

        app.state.cache = st_cache
        app.state.engine = st_engine
        app.state.indexer = st_indexer
        app.state.manager = st_manager
        logger.info(f"Discovery service ready (indexer={getattr(st_indexer, 'endpoint', None)})")
        try:
            yield
        finally:
            await st_manager.shutdown()
            if owned_indexer is not None:
                await owned_indexer.aclose()
            if owned_engine is not None:
                await owned_engine.dispose()
            logger.info("Discovery service stopped")

    app = FastAPI(title="Pool Notes Discovery API", version="0.1.0", lifespan=lifespan)

    # =========================
    # Health
    # =========================

    @app.get("/health", tags=["Health"])
    async def health():
        return await hc.comprehensive_health_check(app.state.engine, app.state.indexer)

    @app.get("/health/live", tags=["Health"])
    async def health_live():
        return {"alive": await hc.liveness_check()}

    @app.get("/health/ready", tags=["Health"])
    async def health_ready(response: Response):
        ready = await hc.readiness_check(app.state.engine, app.state.indexer)
        if not ready:
            response.status_code = 503
        return {"ready": ready}

    # =========================
    # Discovery runs
    # =========================

    @app.post("/discover", response_model=RunStatusRes, tags=["Discovery"])
    async def discover(req: DiscoverReq, wait: bool = Query(False, description="Block until the run finishes.")):
        identity = DiscoveryIdentity(public_key=req.public_key, account_key=_account_key(req))
        mgr: DiscoveryManager = app.state.manager
        active = await mgr.start(identity, req.pool)
        if wait:
            try:
                await active.task
            except DiscoveryError as e:
                raise _discovery_http_error(e)
        return _run_status(req.pool, active)

    @app.get("/discover/{pool}/{public_key}", response_model=RunStatusRes, tags=["Discovery"])
    async def discover_status(pool: str, public_key: str):
        active = app.state.manager.get(public_key, pool)
        if active is None:
            raise HTTPException(status_code=404, detail="No discovery run for this identity and pool")
        return _run_status(pool, active)

    @app.delete("/discover/{pool}/{public_key}", response_model=CancelRes, tags=["Discovery"])
    async def discover_cancel(pool: str, public_key: str):
        return CancelRes(cancelled=await app.state.manager.cancel(public_key, pool))

    # =========================
    # Cached notes
    # =========================

    @app.get("/notes/{pool}/{public_key}", response_model=ListNotesRes, tags=["Notes"])
    async def list_notes(pool: str, public_key: str):
        try:
            cached = await app.state.cache.get(public_key, pool)
        except Exception as e:
            logger.error(f"Failed to read note cache: {e}")
            raise HTTPException(status_code=500, detail="Note cache is unreadable")

        chains = cached.chains if cached else ()
        return ListNotesRes(
            pool=normalize_pool(pool),
            chains=[ChainInfo.from_chain(c) for c in chains],
            unspent_notes=[NoteInfo.from_note(c.tail) for c in chains if c.is_live],
            total_balance=str(sum(c.remaining for c in chains)),
            last_used_index=cached.last_used_index if cached else -1,
            cursor=cached.cursor if cached else None,
            sync_time=cached.sync_time.isoformat() if cached and cached.sync_time else None,
        )

    @app.post("/deposit/commitment", response_model=DepositCommitmentRes, tags=["Notes"])
    async def next_deposit_commitment(req: DepositCommitmentReq):
        account_key = _account_key(req)
        try:
            index = await app.state.cache.next_deposit_index(req.public_key, req.pool)
        except Exception as e:
            logger.error(f"Failed to read note cache: {e}")
            raise HTTPException(status_code=500, detail="Note cache is unreadable")

        deriver = app.state.manager.engine.deriver
        dc = deposit_commitment(account_key, req.pool, index, deriver)
        return DepositCommitmentRes(
            pool=dc.pool,
            deposit_index=dc.deposit_index,
            change_index=dc.change_index,
            precommitment=hex(dc.precommitment),
        )

    return app


app = create_app()
