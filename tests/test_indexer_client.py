import asyncio
import json

import httpx
import pytest

from feed_helpers import POOL, precommitment_for
from pool_notes.indexer.client import IndexerClient, IndexerError
from pool_notes.indexer.schemas import ActivityKind


def _page(items, has_next, end_cursor):
    return {
        "data": {
            "activitys": {
                "items": items,
                "pageInfo": {"hasNextPage": has_next, "hasPreviousPage": False, "startCursor": None, "endCursor": end_cursor},
            }
        }
    }


def _client(handler, **kwargs):
    kwargs.setdefault("min_interval", 0)
    kwargs.setdefault("backoff_base", 0)
    return IndexerClient("http://indexer.test/graphql", transport=httpx.MockTransport(handler), **kwargs)


def _fetch(client, cursor=None):
    async def go():
        async with client:
            return await client.fetch_activity_page(POOL.upper(), cursor)

    return asyncio.run(go())


def test_parses_page_and_sends_only_pool_and_cursor():
    seen = []
    pre = precommitment_for(0)

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=_page(
            [
                {"id": "1", "type": "DEPOSIT", "poolId": POOL, "amount": "1000000", "label": "0x2a",
                 "precommitmentHash": str(pre), "blockNumber": "12", "timestamp": "1700000000",
                 "transactionHash": "0xaa"},
                {"id": "2", "type": "WITHDRAWAL", "amount": "400000", "spentNullifier": "0x1f",
                 "newCommitment": "0x99", "transactionHash": "0xbb"},
                {"id": "3", "type": "MIGRATION"},
            ],
            True,
            "cur-2",
        ))

    page = _fetch(_client(handler, page_size=25), cursor="cur-1")

    assert seen[0]["variables"] == {"poolId": POOL, "limit": 25, "after": "cur-1"}
    assert page.next_cursor == "cur-2" and page.has_more
    dep, wd, other = page.records
    assert dep.kind == ActivityKind.DEPOSIT and dep.precommitment == pre and dep.amount == 1_000_000
    assert wd.spent_nullifier == 0x1F and wd.has_successor
    assert other.kind == ActivityKind.OTHER


def test_retries_on_server_errors():
    attempts = []

    def handler(request):
        attempts.append(1)
        if len(attempts) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=_page([], False, None))

    page = _fetch(_client(handler, max_retries=3))
    assert len(attempts) == 3
    assert page.records == () and not page.has_more


def test_gives_up_after_max_retries():
    def handler(request):
        raise httpx.ConnectError("refused")

    with pytest.raises(IndexerError):
        _fetch(_client(handler, max_retries=2))


def test_graphql_errors_are_not_retried():
    attempts = []

    def handler(request):
        attempts.append(1)
        return httpx.Response(200, json={"errors": [{"message": "bad query"}]})

    with pytest.raises(IndexerError, match="bad query"):
        _fetch(_client(handler))
    assert len(attempts) == 1


def test_missing_feed_field_is_an_error():
    with pytest.raises(IndexerError):
        _fetch(_client(lambda request: httpx.Response(200, json={"data": {}})))


def test_health_check_reads_meta():
    def handler(request):
        return httpx.Response(200, json={"data": {"_meta": {"status": "ready"}}})

    async def go():
        async with _client(handler) as client:
            return await client.health_check()

    assert asyncio.run(go()) == {"status": "ready"}
