import asyncio

from feed_helpers import ACCOUNT_KEY, POOL, PUBLIC_KEY, ScriptedFeed, deposit
from pool_notes.database.note_cache import MemoryNoteCache
from pool_notes.discovery.manager import DiscoveryManager
from pool_notes.discovery.models import RunState
from pool_notes.discovery.orchestrator import DiscoveryIdentity, NoteDiscovery
from pool_notes.discovery.progress import ProgressStream


class GatedFeed(ScriptedFeed):
    """Blocks every fetch until ``gate`` is set."""

    def __init__(self, pages):
        super().__init__(pages)
        self.gate = asyncio.Event()

    async def fetch_activity_page(self, pool, cursor=None):
        await self.gate.wait()
        return await super().fetch_activity_page(pool, cursor)


IDENTITY = DiscoveryIdentity(public_key=PUBLIC_KEY, account_key=ACCOUNT_KEY)


def test_new_run_cancels_previous_run_for_same_scope():
    async def scenario():
        feed = GatedFeed([[deposit(0, 10)], [deposit(1, 20)]])
        manager = DiscoveryManager(NoteDiscovery(feed, MemoryNoteCache()))

        first = await manager.start(IDENTITY, POOL)
        await asyncio.sleep(0)

        start_second = asyncio.create_task(manager.start(IDENTITY, POOL))
        await asyncio.sleep(0)
        feed.gate.set()
        second = await start_second
        result = await manager.wait(PUBLIC_KEY, POOL)
        return first, second, result, manager

    first, second, result, manager = asyncio.run(scenario())
    assert first.state == RunState.CANCELLED
    assert second.state == RunState.COMPLETED
    assert manager.get(PUBLIC_KEY, POOL) is second
    assert result.last_used_index == 1


def test_distinct_scopes_run_independently():
    async def scenario():
        feed = ScriptedFeed([[deposit(0, 10)]])
        manager = DiscoveryManager(NoteDiscovery(feed, MemoryNoteCache()))
        a = await manager.start(IDENTITY, POOL)
        b = await manager.start(DiscoveryIdentity(public_key="bob", account_key=0xB0B), POOL)
        await asyncio.gather(a.task, b.task)
        return a, b

    a, b = asyncio.run(scenario())
    assert a.state == b.state == RunState.COMPLETED
    assert a is not b
    assert len(a.result.chains) == 1
    assert b.result.chains == ()


def test_cancel_reports_whether_a_run_was_active():
    async def scenario():
        feed = GatedFeed([[deposit(0, 10)]])
        manager = DiscoveryManager(NoteDiscovery(feed, MemoryNoteCache()))
        nothing = await manager.cancel(PUBLIC_KEY, POOL)
        active = await manager.start(IDENTITY, POOL)
        await asyncio.sleep(0)
        cancelling = asyncio.create_task(manager.cancel(PUBLIC_KEY, POOL))
        await asyncio.sleep(0)
        feed.gate.set()
        return nothing, await cancelling, active

    nothing, cancelled, active = asyncio.run(scenario())
    assert nothing is False
    assert cancelled is True
    assert active.state == RunState.CANCELLED
    assert active.result.chains == ()


def test_failed_run_keeps_error():
    async def scenario():
        feed = ScriptedFeed([[deposit(0, 10)]])
        feed.fail_pages = {0}
        manager = DiscoveryManager(NoteDiscovery(feed, MemoryNoteCache()))
        active = await manager.start(IDENTITY, POOL)
        await asyncio.gather(active.task, return_exceptions=True)
        return active

    active = asyncio.run(scenario())
    assert active.state == RunState.FAILED
    assert active.error is not None and active.error.retryable


def test_progress_subscription_sees_every_snapshot():
    async def scenario():
        stream = ProgressStream()
        sub = stream.subscribe()
        engine = NoteDiscovery(ScriptedFeed([[deposit(0, 1)], [deposit(1, 2)]]), MemoryNoteCache())
        collected = []

        async def consume():
            async for p in sub:
                collected.append(p)

        consumer = asyncio.create_task(consume())
        await engine.discover(IDENTITY, POOL, progress=stream)
        await consumer
        return stream, collected

    stream, collected = asyncio.run(scenario())
    assert collected[-1] == stream.latest
    assert collected[-1].complete
    assert [p.pages_processed for p in collected] == sorted(p.pages_processed for p in collected)


def test_late_subscriber_gets_latest_then_ends():
    async def scenario():
        stream = ProgressStream()
        await NoteDiscovery(ScriptedFeed(), MemoryNoteCache()).discover(IDENTITY, POOL, progress=stream)
        return [p async for p in stream.subscribe()]

    items = asyncio.run(scenario())
    assert len(items) == 1 and items[0].complete


def test_broken_listener_does_not_abort_run():
    def boom(_):
        raise ValueError("listener bug")

    async def scenario():
        stream = ProgressStream()
        stream.add_listener(boom)
        return await NoteDiscovery(ScriptedFeed([[deposit(0, 1)]]), MemoryNoteCache()).discover(
            IDENTITY, POOL, progress=stream
        )

    assert asyncio.run(scenario()).state == RunState.COMPLETED


def test_finished_run_keeps_status_but_not_account_key():
    async def scenario():
        feed = ScriptedFeed([[deposit(0, 10)]])
        manager = DiscoveryManager(NoteDiscovery(feed, MemoryNoteCache()))
        await manager.start(IDENTITY, POOL)
        await manager.start(IDENTITY, POOL)
        await manager.wait(PUBLIC_KEY, POOL)
        return manager

    manager = asyncio.run(scenario())
    active = manager.get(PUBLIC_KEY, POOL)
    assert active.state == RunState.COMPLETED
    assert active.run.identity.public_key == PUBLIC_KEY
    assert active.run.identity.account_key != ACCOUNT_KEY
    assert manager._locks == {}
    assert manager._starting == {}
