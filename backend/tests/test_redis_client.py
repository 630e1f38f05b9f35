import asyncio
import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

import redis_client
from redis_client import RedisClient, rate_limit


@pytest.fixture
def cache():
    """Клиент с подменённым соединением вместо настоящего Redis."""
    client = RedisClient()
    client.client = MagicMock()
    return client


def test_disabled_client_degrades_gracefully():
    client = RedisClient()

    assert client.client is None
    assert client.is_available() is False
    assert client.get_cached_order("order-1") is None
    assert client.cache_order("order-1", {"id": "order-1"}) is False
    assert client.check_rate_limit("rate_limit:test", 5, 60) == (True, 5)
    assert client.get_cache_info() == {"status": "unavailable"}


def test_cache_order_uses_ttl(cache):
    assert cache.cache_order("order-1", {"id": "order-1", "orderNumber": 7}) is True

    key, ttl, body = cache.client.setex.call_args[0]
    assert key == "order:order-1"
    assert ttl == 180
    assert json.loads(body) == {"id": "order-1", "orderNumber": 7}


def test_get_cached_order(cache):
    cache.client.get.return_value = json.dumps({"id": "order-1"})

    assert cache.get_cached_order("order-1") == {"id": "order-1"}
    cache.client.get.assert_called_once_with("order:order-1")


def test_invalidate_order_cache(cache):
    assert cache.invalidate_order_cache("order-1") is True
    cache.client.delete.assert_called_once_with("order:order-1")


def test_rate_limit_first_request_sets_window(cache):
    cache.client.incr.return_value = 1

    assert cache.check_rate_limit("rate_limit:chat", 10, 60) == (True, 9)
    cache.client.expire.assert_called_once_with("rate_limit:chat", 60)


def test_rate_limit_exceeded(cache):
    cache.client.incr.return_value = 11

    assert cache.check_rate_limit("rate_limit:chat", 10, 60) == (False, 0)
    cache.client.expire.assert_not_called()


def test_clear_all_cache_removes_only_own_keys(cache):
    cache.client.keys.side_effect = lambda pattern: [pattern.replace("*", "1")]

    assert cache.clear_all_cache() is True
    cache.client.delete.assert_any_call("order:1")
    cache.client.delete.assert_any_call("rate_limit:1")


def test_rate_limit_decorator_blocks_when_exceeded(monkeypatch):
    monkeypatch.setattr(redis_client.redis_client, "check_rate_limit", lambda key, max_requests, window: (False, 0))

    @rate_limit(max_requests=1, window=30)
    async def endpoint(request):
        return {"ok": True}

    request = SimpleNamespace(client=SimpleNamespace(host="10.0.0.1"))
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(endpoint(request=request))
    assert exc_info.value.status_code == 429


def test_rate_limit_decorator_keys_by_client_host(monkeypatch):
    seen = []

    def check(key, max_requests, window):
        seen.append(key)
        return True, max_requests - 1

    monkeypatch.setattr(redis_client.redis_client, "check_rate_limit", check)

    @rate_limit(max_requests=5, window=30, key_prefix="chat")
    async def endpoint(request):
        return {"ok": True}

    request = SimpleNamespace(client=SimpleNamespace(host="10.0.0.1"))
    assert asyncio.run(endpoint(request=request)) == {"ok": True}
    assert seen == ["chat:endpoint:10.0.0.1"]
