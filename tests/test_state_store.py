"""
Unit tests for the ephemeral state store engines.

Tests:
- TTL expiry
- Atomic increment semantics (init, TTL preservation, non-integer values)
- Expire refresh and remaining TTL
- Sweeping of expired entries
- Redis engine mapping over a mocked client
"""

import threading
from unittest.mock import MagicMock

import pytest
import redis

from app.core.state_store import RedisStateStore


class TestInMemoryStateStore:
    def test_missing_key_reads_as_none(self, store):
        assert store.get("nothing") is None
        assert store.ttl("nothing") is None

    def test_set_get_and_expiry(self, store, clock):
        store.set("otp:a@example.com", "1234", 300)
        assert store.get("otp:a@example.com") == "1234"

        clock.advance(299)
        assert store.get("otp:a@example.com") == "1234"

        clock.advance(1)
        assert store.get("otp:a@example.com") is None

    def test_delete_is_idempotent(self, store):
        store.set("k", "v", 10)
        store.delete("k")
        store.delete("k")
        assert store.get("k") is None

    def test_incr_initializes_missing_key_to_one(self, store):
        assert store.incr("counter") == 1
        assert store.incr("counter") == 2
        assert store.get("counter") == "2"
        # no TTL until one is set
        assert store.ttl("counter") is None

    def test_incr_keeps_existing_ttl(self, store, clock):
        store.set("counter", "1", 60)
        clock.advance(20)
        assert store.incr("counter") == 2
        assert store.ttl("counter") == 40

    def test_incr_on_non_integer_raises(self, store):
        store.set("flag", "true", 60)
        with pytest.raises(ValueError):
            store.incr("flag")

    def test_expire_refreshes_ttl(self, store, clock):
        store.incr("counter")
        assert store.expire("counter", 600) is True
        clock.advance(300)
        assert store.ttl("counter") == 300
        assert store.expire("counter", 600) is True
        assert store.ttl("counter") == 600

    def test_expire_on_missing_key_returns_false(self, store):
        assert store.expire("missing", 60) is False
        assert store.get("missing") is None

    def test_expired_counter_restarts_at_one(self, store, clock):
        store.incr("counter")
        store.expire("counter", 10)
        clock.advance(10)
        assert store.incr("counter") == 1

    def test_concurrent_increments_are_not_lost(self, store):
        def bump():
            for _ in range(200):
                store.incr("shared")

        threads = [threading.Thread(target=bump) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get("shared") == "1000"

    def test_ping(self, store):
        assert store.ping() is True

    def test_expired_keys_are_swept_on_write(self, store, clock):
        for i in range(1000):
            store.set(f"login_attempts:user{i}@example.com", "1", 900)
        assert len(store) == 1000

        clock.advance(10_000)
        store.set("otp:fresh@example.com", "4321", 300)

        assert len(store) == 1
        assert store.get("otp:fresh@example.com") == "4321"

    def test_sweep_keeps_live_and_persistent_keys(self, store, clock):
        store.set("short", "v", 10)
        store.set("long", "v", 1000)
        store.incr("no-ttl")

        clock.advance(120)
        store.set("trigger", "v", 10)

        assert len(store) == 3
        assert store.get("short") is None
        assert store.get("long") == "v"
        assert store.get("no-ttl") == "1"


@pytest.fixture
def redis_client():
    return MagicMock(spec=redis.Redis)


@pytest.fixture
def redis_store(redis_client):
    return RedisStateStore(redis_client)


class TestRedisStateStore:
    def test_get_returns_decoded_value_or_none(self, redis_store, redis_client):
        redis_client.get.return_value = "1234"
        assert redis_store.get("otp:a@example.com") == "1234"
        redis_client.get.assert_called_with("otp:a@example.com")

        redis_client.get.return_value = None
        assert redis_store.get("otp:a@example.com") is None

    def test_set_uses_expiry_seconds(self, redis_store, redis_client):
        redis_store.set("otp_cooldown:a@example.com", "true", 60)
        redis_client.set.assert_called_once_with("otp_cooldown:a@example.com", "true", ex=60)

    def test_delete(self, redis_store, redis_client):
        redis_store.delete("pending:a@example.com")
        redis_client.delete.assert_called_once_with("pending:a@example.com")

    def test_incr_returns_int(self, redis_store, redis_client):
        redis_client.incr.return_value = 3
        count = redis_store.incr("login_attempts:a@example.com")

        assert count == 3
        assert isinstance(count, int)

    def test_expire_reports_whether_key_existed(self, redis_store, redis_client):
        redis_client.expire.return_value = 1
        assert redis_store.expire("k", 600) is True
        redis_client.expire.assert_called_with("k", 600)

        redis_client.expire.return_value = 0
        assert redis_store.expire("k", 600) is False

    @pytest.mark.parametrize("raw, expected", [(42, 42), (-1, None), (-2, None), (None, None)])
    def test_ttl_maps_missing_and_persistent_to_none(self, redis_store, redis_client, raw, expected):
        redis_client.ttl.return_value = raw
        assert redis_store.ttl("k") == expected

    def test_ping(self, redis_store, redis_client):
        redis_client.ping.return_value = True
        assert redis_store.ping() is True

    def test_connection_errors_propagate(self, redis_store, redis_client):
        redis_client.get.side_effect = redis.ConnectionError("down")
        with pytest.raises(redis.ConnectionError):
            redis_store.get("login_attempts:a@example.com")

    def test_from_url_decodes_responses(self, monkeypatch):
        calls = {}

        def fake_from_url(url, **kwargs):
            calls["url"] = url
            calls.update(kwargs)
            return MagicMock(spec=redis.Redis)

        monkeypatch.setattr(redis.Redis, "from_url", fake_from_url)
        RedisStateStore.from_url("redis://localhost:6379/0", socket_timeout=2.0)

        assert calls["url"] == "redis://localhost:6379/0"
        assert calls["decode_responses"] is True
        assert calls["socket_timeout"] == 2.0
