import asyncio

import httpx
import pytest

from league_ledger.client import SleeperClient
from league_ledger.errors import ExternalApiError


def make_client(handler, attempts=3):
    return SleeperClient(retry_attempts=attempts, retry_backoff=0.0, transport=httpx.MockTransport(handler))


def test_retries_server_errors_then_succeeds():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if len(calls) < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"league_id": "1", "season": "2023"})

    async def scenario():
        async with make_client(handler) as client:
            return await client.get_league("1")

    assert asyncio.run(scenario())["season"] == "2023"
    assert calls == ["/v1/league/1"] * 3


def test_gives_up_after_attempts():
    def handler(request):
        return httpx.Response(429, text="slow down")

    async def scenario():
        async with make_client(handler, attempts=2) as client:
            await client.get_league_rosters("1")

    with pytest.raises(ExternalApiError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.status_code == 429


def test_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(400, text="bad")

    async def scenario():
        async with make_client(handler) as client:
            await client.get_league_users("1")

    with pytest.raises(ExternalApiError):
        asyncio.run(scenario())
    assert len(calls) == 1


def test_timeouts_are_retried_and_reported():
    calls = []

    def handler(request):
        calls.append(1)
        raise httpx.ReadTimeout("timed out", request=request)

    async def scenario():
        async with make_client(handler, attempts=3) as client:
            await client.get_league_matchups("1", 1)

    with pytest.raises(ExternalApiError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.status_code is None
    assert len(calls) == 3


def test_transactions_404_means_none():
    def handler(request):
        return httpx.Response(404, text="nope")

    async def scenario():
        async with make_client(handler) as client:
            return await client.get_league_transactions("1", 0)

    assert asyncio.run(scenario()) == []


def test_null_body_becomes_empty_list():
    def handler(request):
        return httpx.Response(200, content=b"null", headers={"content-type": "application/json"})

    async def scenario():
        async with make_client(handler) as client:
            return await client.get_league_drafts("1"), await client.get_league("1")

    drafts, league = asyncio.run(scenario())
    assert drafts == []
    assert league is None
