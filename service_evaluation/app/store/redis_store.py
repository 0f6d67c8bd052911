"""
Redis-backed flag store.

Flag documents are published by the management side under
``flag:{tenant_id}:{key}`` as JSON, and every publish is announced on the
``flag-changes`` channel. Decoded snapshots are kept in a local TTL cache so
the hot evaluation path rarely touches Redis; change messages drop the
cached copy on every instance.
"""

import asyncio
import json
import time
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as redis

from shared.errors import ExternalServiceError, FlagDefinitionError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..engine.models import FeatureFlag
from .codec import decode_flag, encode_flag

FlagKey = Tuple[str, str]


class RedisFlagStore:
    """Flag provider reading published definitions from Redis."""

    source_name = "redis"
    FLAG_PREFIX = "flag:"
    CHANGES_CHANNEL = "flag-changes"
    RESUBSCRIBE_DELAY_SECONDS = 1.0

    def __init__(
        self,
        redis_url: str,
        cache_ttl_seconds: float = 300,
        metrics: Optional[MetricsCollector] = None,
        listen_for_changes: bool = True
    ):
        self.redis_url = redis_url
        self.cache_ttl_seconds = cache_ttl_seconds
        self.metrics = metrics
        self.listen_for_changes = listen_for_changes
        self.logger = get_logger("evaluation.store.redis")
        self.redis: Optional[redis.Redis] = None
        self._listener_task: Optional[asyncio.Task] = None

        # (tenant_id, key) -> (expires_at, flag)
        self._cache: Dict[FlagKey, Tuple[float, FeatureFlag]] = {}
        self._hits = 0
        self._misses = 0

    async def start(self):
        """Connect to Redis and subscribe to flag changes."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            await self.redis.ping()

            self.logger.info("Redis flag store started")

        except Exception as e:
            self.logger.error("Failed to start Redis flag store", error=str(e))
            raise ExternalServiceError("redis", str(e))

        if self.listen_for_changes:
            self._listener_task = asyncio.create_task(self._listen_for_changes())

    async def stop(self):
        """Stop the change listener and close the Redis connection."""
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None

        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis flag store stopped")

    async def _listen_for_changes(self):
        while True:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(self.CHANGES_CHANNEL)
                self.logger.info("Subscribed to flag changes", channel=self.CHANGES_CHANNEL)
                async for message in pubsub.listen():
                    if message.get("type") == "message":
                        await self._handle_change(message.get("data"))
                self.logger.warning("Flag change subscription closed; resubscribing")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Flag change subscription failed; resubscribing", error=str(e))
            finally:
                await pubsub.aclose()

            # Changes published while disconnected are lost.
            self.invalidate_all()
            await asyncio.sleep(self.RESUBSCRIBE_DELAY_SECONDS)

    async def _handle_change(self, data: Any):
        try:
            change = json.loads(data)
            tenant_id, key = change["tenant_id"], change["key"]
        except (TypeError, ValueError, KeyError) as e:
            self.logger.warning("Ignoring malformed flag change message", data=data, error=str(e))
            return
        await self.invalidate(tenant_id, key)

    async def get_flag(self, tenant_id: str, key: str) -> Optional[FeatureFlag]:
        """Get a flag, from the local cache while its entry is fresh."""
        cache_key = (tenant_id, key)
        cached = self._cache.get(cache_key)
        if cached and cached[0] > time.monotonic():
            self._hits += 1
            return cached[1]
        self._misses += 1

        try:
            payload = await self.redis.get(self._flag_key(tenant_id, key))
        except Exception as e:
            if cached:
                self.logger.warning(
                    "Redis unavailable; serving stale flag definition",
                    tenant_id=tenant_id,
                    flag_key=key,
                    error=str(e)
                )
                return cached[1]
            self.logger.error("Error reading flag from Redis", tenant_id=tenant_id, flag_key=key, error=str(e))
            raise ExternalServiceError("redis", str(e))

        if not payload:
            self._cache.pop(cache_key, None)
            return None

        try:
            flag = decode_flag(payload)
        except FlagDefinitionError as e:
            self.logger.error(
                "Undecodable flag definition in Redis",
                tenant_id=tenant_id,
                flag_key=key,
                details=e.details
            )
            self._record_load("error")
            self._cache.pop(cache_key, None)
            return None

        if (flag.tenant_id, flag.key) != cache_key:
            self.logger.error(
                "Flag definition stored under the wrong key",
                tenant_id=tenant_id,
                flag_key=key,
                stored_tenant_id=flag.tenant_id,
                stored_flag_key=flag.key
            )
            self._record_load("error")
            return None

        if self.cache_ttl_seconds > 0:
            self._cache[cache_key] = (time.monotonic() + self.cache_ttl_seconds, flag)
        self._record_load("ok")
        return flag

    async def publish_flag(self, flag: FeatureFlag) -> bool:
        """Write a flag definition and announce the change."""
        await self.redis.set(self._flag_key(flag.tenant_id, flag.key), json.dumps(encode_flag(flag)))
        await self.invalidate(flag.tenant_id, flag.key)
        await self.redis.publish(
            self.CHANGES_CHANNEL,
            json.dumps({"tenant_id": flag.tenant_id, "key": flag.key})
        )
        self.logger.info("Published flag definition", tenant_id=flag.tenant_id, flag_key=flag.key)
        return True

    async def invalidate(self, tenant_id: str, key: str) -> bool:
        """Drop one cached definition; the next read goes to Redis."""
        removed = self._cache.pop((tenant_id, key), None) is not None
        if removed:
            self.logger.info("Invalidated cached flag", tenant_id=tenant_id, flag_key=key)
        return removed

    def invalidate_all(self) -> int:
        """Drop every cached definition."""
        count = len(self._cache)
        self._cache = {}
        if count:
            self.logger.info("Invalidated all cached flags", count=count)
        return count

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False

    async def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "source": self.source_name,
            "cached_flags": len(self._cache),
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "cache_hits": self._hits,
            "cache_misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
        }

    def _flag_key(self, tenant_id: str, key: str) -> str:
        return f"{self.FLAG_PREFIX}{tenant_id}:{key}"

    def _record_load(self, status: str):
        if self.metrics:
            self.metrics.record_store_load(self.source_name, status)
