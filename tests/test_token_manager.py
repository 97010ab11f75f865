"""Tests for token validity, two-tier refresh and single-flight coalescing."""

import asyncio
import json

import httpx
import pytest

from exceptions import RefreshExhausted
from oauth.token_manager import TokenManager
from providers import ServerProvider
from tests.conftest import ACME_TOKEN_URL, make_provider, make_tokens

MINUTE_MS = 60 * 1000


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request URL in order"""

    def __init__(self, handler):
        self.requests = []

        async def record(request: httpx.Request):
            self.requests.append(str(request.url))
            result = handler(request)
            if asyncio.iscoroutine(result):
                result = await result
            return result

        super().__init__(record)


def token_response(access_token="access-new", **extra):
    return httpx.Response(200, json={"access_token": access_token, "expires_in": 3600, **extra})


def make_manager(registry, token_storage, transport, relay_token=None):
    return TokenManager(
        registry,
        token_storage,
        relay_token_getter=(lambda: relay_token) if relay_token else None,
        transport=transport,
    )


class TestGetValidAccessToken:
    @pytest.mark.asyncio
    async def test_token_outside_buffer_is_returned_without_refresh(self, registry, token_storage, acme):
        transport = RecordingTransport(lambda request: token_response())
        manager = make_manager(registry, token_storage, transport)
        tokens = token_storage.save_tokens(make_tokens(expires_in_ms=6 * MINUTE_MS))

        assert await manager.get_valid_access_token(tokens) == "access-old"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_token_inside_buffer_is_refreshed_and_persisted(self, registry, token_storage, acme):
        transport = RecordingTransport(lambda request: token_response())
        manager = make_manager(registry, token_storage, transport)
        tokens = token_storage.save_tokens(make_tokens(expires_in_ms=4 * MINUTE_MS, user={"email": "a@b.c"}))

        assert await manager.get_valid_access_token(tokens) == "access-new"
        assert transport.requests == [ACME_TOKEN_URL]

        stored = token_storage.load_tokens("acme")
        assert stored.access_token == "access-new"
        assert stored.refresh_token == "refresh-old"
        assert stored.user == {"email": "a@b.c"}
        assert stored.stored_at == tokens.stored_at

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_is_forgotten(self, registry, token_storage, acme):
        transport = RecordingTransport(lambda request: token_response())
        manager = make_manager(registry, token_storage, transport)
        tokens = token_storage.save_tokens(make_tokens(expires_in_ms=-1000, refresh_token=None))

        assert await manager.get_valid_access_token(tokens) is None
        assert token_storage.load_tokens("acme") is None
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_exhausted_refresh_forgets_record(self, registry, token_storage, acme):
        transport = RecordingTransport(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
        manager = make_manager(registry, token_storage, transport)
        tokens = token_storage.save_tokens(make_tokens(expires_in_ms=-1000))

        assert await manager.get_valid_access_token(tokens) is None
        assert token_storage.load_tokens("acme") is None

    @pytest.mark.asyncio
    async def test_malformed_responses_fall_through_to_next_server(self, registry, token_storage, acme):
        for server_id in ("s1", "s2"):
            registry.add_server_provider(ServerProvider(id=server_id, name=server_id, url=f"https://{server_id}.test"))

        def handler(request):
            if request.url.host == "auth.acme.test":
                return httpx.Response(200, json=["not", "a", "dict"])
            if request.url.host == "s1.test":
                return httpx.Response(200, json={"success": True, "access_token": None})
            return httpx.Response(200, json={"success": True, "access_token": "fresh"})

        transport = RecordingTransport(handler)
        manager = make_manager(registry, token_storage, transport)
        tokens = token_storage.save_tokens(make_tokens(expires_in_ms=-1000))

        assert await manager.get_valid_access_token(tokens) == "fresh"
        assert len(transport.requests) == 3

    @pytest.mark.asyncio
    async def test_malformed_direct_response_without_servers_is_none(self, registry, token_storage, acme):
        transport = RecordingTransport(lambda request: httpx.Response(200, json=["not", "a", "dict"]))
        manager = make_manager(registry, token_storage, transport)
        tokens = token_storage.save_tokens(make_tokens(expires_in_ms=-1000))

        assert await manager.get_valid_access_token(tokens) is None

    @pytest.mark.asyncio
    async def test_get_valid_provider_token_unknown(self, registry, token_storage):
        manager = make_manager(registry, token_storage, RecordingTransport(lambda request: token_response()))
        assert await manager.get_valid_provider_token("acme") is None


class TestRefreshOrder:
    @pytest.mark.asyncio
    async def test_direct_then_servers_in_order_stopping_at_first_success(self, registry, token_storage, acme):
        for server_id in ("one", "two", "three"):
            registry.add_server_provider(ServerProvider(id=server_id, name=server_id, url=f"https://{server_id}.test"))

        def handler(request):
            if request.url.host == "auth.acme.test":
                return httpx.Response(400, text="invalid_client")
            if request.url.host == "one.test":
                return httpx.Response(500, text="down")
            return httpx.Response(200, json={"success": True, "access_token": f"via-{request.url.host}"})

        transport = RecordingTransport(handler)
        manager = make_manager(registry, token_storage, transport, relay_token="relay")

        tokens = await manager.refresh("acme", "refresh-old")
        assert tokens.access_token == "via-two.test"
        assert transport.requests == [
            ACME_TOKEN_URL,
            "https://one.test/api/oauth/refresh/acme",
            "https://two.test/api/oauth/refresh/acme",
        ]

    @pytest.mark.asyncio
    async def test_direct_skipped_without_client_id(self, registry, token_storage):
        registry.upsert(make_provider(client_id=""))
        registry.add_server_provider(ServerProvider(id="one", name="One", url="https://one.test"))
        transport = RecordingTransport(lambda request: httpx.Response(200, json={"success": True, "access_token": "x"}))
        manager = make_manager(registry, token_storage, transport)

        await manager.refresh("acme", "refresh-old")
        assert transport.requests == ["https://one.test/api/oauth/refresh/acme"]

    @pytest.mark.asyncio
    async def test_server_refresh_sends_relay_token(self, registry, token_storage):
        registry.add_server_provider(ServerProvider(id="one", name="One", url="https://one.test"))
        seen = {}

        def handler(request):
            seen["authorization"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "access_token": "x"})

        manager = make_manager(registry, token_storage, RecordingTransport(handler), relay_token="relay")
        await manager.refresh("unlisted", "r1")
        assert seen["authorization"] == "Bearer relay"
        assert seen["body"]["refresh_token"] == "r1"

    @pytest.mark.asyncio
    async def test_all_paths_failing_raises(self, registry, token_storage, acme):
        registry.add_server_provider(ServerProvider(id="one", name="One", url="https://one.test"))
        transport = RecordingTransport(lambda request: httpx.Response(503))
        manager = make_manager(registry, token_storage, transport)

        with pytest.raises(RefreshExhausted) as exc_info:
            await manager.refresh("acme", "refresh-old")
        assert exc_info.value.provider_id == "acme"
        assert len(transport.requests) == 2


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_request(self, registry, token_storage, acme):
        async def slow(request):
            await asyncio.sleep(0.05)
            return token_response()

        transport = RecordingTransport(slow)
        manager = make_manager(registry, token_storage, transport)
        tokens = token_storage.save_tokens(make_tokens(expires_in_ms=-1000))

        results = await asyncio.gather(*(manager.get_valid_access_token(tokens) for _ in range(5)))
        assert results == ["access-new"] * 5
        assert transport.requests == [ACME_TOKEN_URL]
        assert manager._in_flight == {}

    @pytest.mark.asyncio
    async def test_failure_is_shared_and_next_call_retries(self, registry, token_storage, acme):
        calls = {"count": 0}

        async def fail_then_succeed(request):
            calls["count"] += 1
            await asyncio.sleep(0.01)
            if calls["count"] == 1:
                return httpx.Response(400)
            return token_response()

        manager = make_manager(registry, token_storage, RecordingTransport(fail_then_succeed))
        outcomes = await asyncio.gather(
            manager.refresh("acme", "r"), manager.refresh("acme", "r"), return_exceptions=True
        )
        assert all(isinstance(outcome, RefreshExhausted) for outcome in outcomes)
        assert calls["count"] == 1

        tokens = await manager.refresh("acme", "r")
        assert tokens.access_token == "access-new"

    @pytest.mark.asyncio
    async def test_different_providers_refresh_independently(self, registry, token_storage, acme):
        registry.upsert(make_provider(id="other", name="Other"))

        async def slow(request):
            await asyncio.sleep(0.01)
            return token_response()

        transport = RecordingTransport(slow)
        manager = make_manager(registry, token_storage, transport)
        await asyncio.gather(manager.refresh("acme", "a"), manager.refresh("other", "b"))
        assert len(transport.requests) == 2


class TestStartupRefresh:
    @pytest.mark.asyncio
    async def test_refreshes_only_expiring_tokens(self, registry, token_storage, acme):
        registry.upsert(make_provider(id="fresh", name="Fresh"))
        token_storage.save_tokens(make_tokens("acme", expires_in_ms=-1000))
        token_storage.save_tokens(make_tokens("fresh", expires_in_ms=60 * MINUTE_MS))

        transport = RecordingTransport(lambda request: token_response())
        manager = make_manager(registry, token_storage, transport)

        assert await manager.refresh_expired_on_startup() == ["acme"]
        assert transport.requests == [ACME_TOKEN_URL]
        assert token_storage.load_tokens("fresh").access_token == "access-old"
