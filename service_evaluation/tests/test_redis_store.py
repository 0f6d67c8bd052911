"""
Unit tests for the Redis-backed flag store.
"""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import ExternalServiceError
from service_evaluation.app.store.codec import decode_flag
from service_evaluation.app.store.redis_store import RedisFlagStore


def pubsub_with(messages=(), error=None):
    """Mock PubSub whose listen() yields messages, then fails or blocks."""
    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.aclose = AsyncMock()

    async def listen():
        for message in messages:
            yield message
        if error:
            raise error
        await asyncio.Event().wait()

    pubsub.listen = listen
    return pubsub


@pytest.fixture
def flag_payload():
    """Published flag JSON."""
    return json.dumps({
        "id": "flag-1",
        "key": "new-checkout",
        "tenantId": "acme",
        "enabled": True,
        "currentVersionId": "v1",
        "versions": [{"id": "v1", "version": 1, "targetingRules": [{"id": "everyone"}]}],
    })


class TestRedisFlagStore:
    """Test cases for RedisFlagStore."""

    @pytest.fixture
    def mock_redis(self):
        """Mock Redis client."""
        client = AsyncMock()
        client.ping.return_value = True
        client.pubsub = MagicMock(return_value=pubsub_with())
        return client

    @pytest.fixture
    def store(self, mock_redis):
        """Create RedisFlagStore with a mocked client."""
        store = RedisFlagStore("redis://localhost:6379/0", cache_ttl_seconds=300)
        store.redis = mock_redis
        return store

    @pytest.mark.asyncio
    async def test_start_connects(self, mock_redis):
        store = RedisFlagStore("redis://localhost:6379/0")

        with patch("service_evaluation.app.store.redis_store.redis.from_url", return_value=mock_redis):
            await store.start()

        mock_redis.ping.assert_awaited_once()
        await asyncio.sleep(0.01)
        mock_redis.pubsub.return_value.subscribe.assert_awaited_once_with("flag-changes")
        await store.stop()

    @pytest.mark.asyncio
    async def test_start_failure(self, mock_redis):
        mock_redis.ping.side_effect = ConnectionError("refused")
        store = RedisFlagStore("redis://localhost:6379/0")

        with patch("service_evaluation.app.store.redis_store.redis.from_url", return_value=mock_redis):
            with pytest.raises(ExternalServiceError):
                await store.start()

    @pytest.mark.asyncio
    async def test_start_without_change_listener(self, mock_redis):
        store = RedisFlagStore("redis://localhost:6379/0", listen_for_changes=False)

        with patch("service_evaluation.app.store.redis_store.redis.from_url", return_value=mock_redis):
            await store.start()

        mock_redis.pubsub.assert_not_called()
        await store.stop()
        mock_redis.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_flag(self, store, mock_redis, flag_payload):
        mock_redis.get.return_value = flag_payload

        flag = await store.get_flag("acme", "new-checkout")

        assert flag.key == "new-checkout"
        mock_redis.get.assert_awaited_once_with("flag:acme:new-checkout")

    @pytest.mark.asyncio
    async def test_get_flag_uses_local_cache(self, store, mock_redis, flag_payload):
        mock_redis.get.return_value = flag_payload

        first = await store.get_flag("acme", "new-checkout")
        second = await store.get_flag("acme", "new-checkout")

        assert first is second
        assert mock_redis.get.await_count == 1
        stats = await store.get_stats()
        assert stats["cache_hits"] == 1
        assert stats["cached_flags"] == 1

    @pytest.mark.asyncio
    async def test_cache_disabled(self, mock_redis, flag_payload):
        store = RedisFlagStore("redis://localhost:6379/0", cache_ttl_seconds=0)
        store.redis = mock_redis
        mock_redis.get.return_value = flag_payload

        await store.get_flag("acme", "new-checkout")
        await store.get_flag("acme", "new-checkout")

        assert mock_redis.get.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate(self, store, mock_redis, flag_payload):
        mock_redis.get.return_value = flag_payload
        await store.get_flag("acme", "new-checkout")

        assert await store.invalidate("acme", "new-checkout") is True
        assert await store.invalidate("acme", "new-checkout") is False

        await store.get_flag("acme", "new-checkout")
        assert mock_redis.get.await_count == 2

    @pytest.mark.asyncio
    async def test_missing_flag(self, store, mock_redis):
        mock_redis.get.return_value = None

        assert await store.get_flag("acme", "unknown") is None

    @pytest.mark.asyncio
    async def test_undecodable_flag_is_not_found(self, store, mock_redis):
        mock_redis.get.return_value = '{"key": "new-checkout"}'
        store.metrics = MagicMock()

        assert await store.get_flag("acme", "new-checkout") is None
        store.metrics.record_store_load.assert_called_once_with("redis", "error")

    @pytest.mark.asyncio
    async def test_flag_under_wrong_key_is_not_found(self, store, mock_redis, flag_payload):
        mock_redis.get.return_value = flag_payload

        assert await store.get_flag("globex", "new-checkout") is None

    @pytest.mark.asyncio
    async def test_redis_error_without_cache(self, store, mock_redis):
        mock_redis.get.side_effect = ConnectionError("down")

        with pytest.raises(ExternalServiceError) as exc_info:
            await store.get_flag("acme", "new-checkout")

        assert exc_info.value.http_status == 502

    @pytest.mark.asyncio
    async def test_redis_error_serves_stale_definition(self, store, mock_redis, flag_payload):
        mock_redis.get.return_value = flag_payload
        cached = await store.get_flag("acme", "new-checkout")
        expires_at, flag = store._cache[("acme", "new-checkout")]
        store._cache[("acme", "new-checkout")] = (0, flag)
        mock_redis.get.side_effect = ConnectionError("down")

        assert await store.get_flag("acme", "new-checkout") is cached

    @pytest.mark.asyncio
    async def test_publish_flag(self, store, mock_redis, flag_payload):
        flag = decode_flag(flag_payload)

        await store.publish_flag(flag)

        key, payload = mock_redis.set.await_args.args
        assert key == "flag:acme:new-checkout"
        assert decode_flag(payload) == flag
        mock_redis.publish.assert_awaited_once_with(
            "flag-changes",
            json.dumps({"tenant_id": "acme", "key": "new-checkout"})
        )

    @pytest.mark.asyncio
    async def test_health_check(self, store, mock_redis):
        assert await store.health_check() is True

        mock_redis.ping.side_effect = ConnectionError("down")
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_stop(self, store, mock_redis):
        await store.stop()

        mock_redis.aclose.assert_awaited_once()
        assert store.redis is None

    @pytest.mark.asyncio
    async def test_stop_cancels_change_listener(self, store, mock_redis):
        pubsub = mock_redis.pubsub.return_value
        store._listener_task = asyncio.create_task(store._listen_for_changes())
        await asyncio.sleep(0.01)
        task = store._listener_task

        await store.stop()

        assert task.cancelled()
        pubsub.aclose.assert_awaited_once()


class TestFlagChangeNotifications:
    """Cross-instance invalidation over the flag-changes channel."""

    @pytest.fixture
    def mock_redis(self, flag_payload):
        def payload_for(redis_key):
            _, tenant_id, key = redis_key.split(":")
            document = json.loads(flag_payload)
            document.update(tenantId=tenant_id, key=key)
            return json.dumps(document)

        client = AsyncMock()
        client.ping.return_value = True
        client.get.side_effect = payload_for
        client.pubsub = MagicMock(return_value=pubsub_with())
        return client

    @pytest.fixture
    def store(self, mock_redis):
        store = RedisFlagStore("redis://localhost:6379/0", cache_ttl_seconds=300)
        store.redis = mock_redis
        store.RESUBSCRIBE_DELAY_SECONDS = 0
        return store

    @staticmethod
    async def wait_for(condition):
        for _ in range(100):
            if condition():
                return
            await asyncio.sleep(0.01)

    @pytest.mark.asyncio
    async def test_change_message_invalidates_cache(self, store, mock_redis):
        await store.get_flag("acme", "new-checkout")
        await store.get_flag("acme", "other-flag")
        mock_redis.pubsub.return_value = pubsub_with([
            {"type": "subscribe", "channel": "flag-changes", "data": 1},
            {"type": "message", "channel": "flag-changes",
             "data": json.dumps({"tenant_id": "acme", "key": "new-checkout"})},
        ])

        store._listener_task = asyncio.create_task(store._listen_for_changes())
        try:
            await self.wait_for(lambda: ("acme", "new-checkout") not in store._cache)

            assert ("acme", "new-checkout") not in store._cache
            assert ("acme", "other-flag") in store._cache
        finally:
            await store.stop()

    @pytest.mark.asyncio
    async def test_next_read_after_change_goes_to_redis(self, store, mock_redis):
        await store.get_flag("acme", "new-checkout")

        await store._handle_change(json.dumps({"tenant_id": "acme", "key": "new-checkout"}))
        await store.get_flag("acme", "new-checkout")

        assert mock_redis.get.await_count == 2

    @pytest.mark.asyncio
    async def test_malformed_change_message_is_ignored(self, store):
        await store.get_flag("acme", "new-checkout")

        await store._handle_change("not json")
        await store._handle_change(json.dumps({"tenant_id": "acme"}))
        await store._handle_change(None)

        assert ("acme", "new-checkout") in store._cache

    @pytest.mark.asyncio
    async def test_lost_subscription_drops_cache_and_resubscribes(self, store, mock_redis):
        await store.get_flag("acme", "new-checkout")
        first = pubsub_with(error=ConnectionError("connection lost"))
        second = pubsub_with()
        mock_redis.pubsub = MagicMock(side_effect=[first, second])

        store._listener_task = asyncio.create_task(store._listen_for_changes())
        try:
            await self.wait_for(lambda: second.subscribe.await_count == 1)

            second.subscribe.assert_awaited_once_with("flag-changes")
            first.aclose.assert_awaited_once()
            assert store._cache == {}
            assert not store._listener_task.done()
        finally:
            await store.stop()

    @pytest.mark.asyncio
    async def test_invalidate_all(self, store):
        await store.get_flag("acme", "new-checkout")
        await store.get_flag("acme", "other-flag")

        assert store.invalidate_all() == 2
        assert store.invalidate_all() == 0
