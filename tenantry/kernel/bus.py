# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Invalidation Bus — Redis Pub/Sub channel for cache invalidation hints.

Events go to the tenant channel (tenantry:events:tenant:{id}) and/or the
principal channel (tenantry:events:principal:{id}) they concern. Mutation
paths always invalidate synchronously first; the bus only tells other
processes to drop what they may still hold.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Coroutine, Iterable, List, Optional

import redis.asyncio as aioredis

from tenantry.kernel.namespace import (
    DIRECTORY_SIGNALS,
    DirectoryKey,
    all_channels_pattern,
    principal_channel,
    tenant_channel,
)
from tenantry.memory.cache import ScopedCache
from tenantry.memory.membership import invalidate_principal_access
from tenantry.protocols import events
from tenantry.protocols.schema import InvalidationEvent

logger = logging.getLogger("tenantry.bus")

EventHandler = Callable[[InvalidationEvent], Coroutine[Any, Any, None]]


def channels_for(event: InvalidationEvent) -> List[str]:
    channels = []
    if event.tenant_id:
        channels.append(tenant_channel(event.tenant_id))
    if event.principal_id:
        channels.append(principal_channel(event.principal_id))
    return channels


class InvalidationBus:
    """
    Publisher/subscriber for InvalidationEvent hints.

    Unlike a per-tenant bus, one instance serves every tenant; the
    channel is derived from the event itself.
    """

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis
        self._subscribers: List[asyncio.Task] = []
        self._pubsubs: List[aioredis.client.PubSub] = []

    # ── Publish ─────────────────────────────────────────────────

    async def publish(self, event: InvalidationEvent) -> int:
        """
        Publish to every channel the event concerns.

        Returns the total number of receivers.
        """
        channels = channels_for(event)
        if not channels:
            raise ValueError("InvalidationEvent needs a tenant_id or principal_id")
        payload = event.to_json()
        count = 0
        for channel in channels:
            count += await self._redis.publish(channel, payload)
        logger.debug(
            "Published %s to %s (%d receivers)",
            event.type, ",".join(channels), count,
            extra={"tenant_id": event.tenant_id, "principal_id": event.principal_id},
        )
        return count

    # ── Subscribe ───────────────────────────────────────────────

    async def _open(self, tenant_ids: Iterable[str], principal_ids: Iterable[str]) -> aioredis.client.PubSub:
        channels = [tenant_channel(t) for t in tenant_ids] + [principal_channel(p) for p in principal_ids]
        pubsub = self._redis.pubsub()
        if channels:
            await pubsub.subscribe(*channels)
        else:
            await pubsub.psubscribe(all_channels_pattern())
        self._pubsubs.append(pubsub)
        return pubsub

    async def subscribe(
        self,
        handler: EventHandler,
        tenant_ids: Iterable[str] = (),
        principal_ids: Iterable[str] = (),
        event_filter: Optional[str] = None,
    ) -> aioredis.client.PubSub:
        """
        Subscribe and dispatch events to handler in a background task.

        With no tenant or principal ids, every invalidation channel is
        pattern-subscribed.
        """
        pubsub = await self._open(tenant_ids, principal_ids)

        async def _listener():
            async for message in pubsub.listen():
                if message["type"] not in ("message", "pmessage"):
                    continue
                try:
                    event = InvalidationEvent.from_json(message["data"])
                    if event_filter and event.type != event_filter:
                        continue
                    await handler(event)
                except Exception as exc:
                    logger.error("Bus handler error: %s", exc)

        task = asyncio.create_task(_listener())
        self._subscribers.append(task)
        return pubsub

    async def listen(
        self,
        tenant_ids: Iterable[str] = (),
        principal_ids: Iterable[str] = (),
    ) -> AsyncIterator[InvalidationEvent]:
        """Async generator over received events."""
        pubsub = await self._open(tenant_ids, principal_ids)
        async for message in pubsub.listen():
            if message["type"] not in ("message", "pmessage"):
                continue
            try:
                yield InvalidationEvent.from_json(message["data"])
            except ValueError as exc:
                logger.error("Bus listen parse error: %s", exc)

    # ── Cleanup ─────────────────────────────────────────────────

    async def close(self) -> None:
        """Unsubscribe and cancel all listener tasks."""
        for task in self._subscribers:
            task.cancel()
        self._subscribers.clear()
        for pubsub in self._pubsubs:
            await pubsub.unsubscribe()
            await pubsub.punsubscribe()
            await pubsub.aclose()
        self._pubsubs.clear()


class InvalidationListener:
    """
    Applies received hints to the local view of the cache.

    Every application is idempotent, so duplicate or replayed events are
    harmless.
    """

    def __init__(self, cache: ScopedCache) -> None:
        self._cache = cache
        self.applied = 0

    async def __call__(self, event: InvalidationEvent) -> None:
        await self.apply(event)

    async def apply(self, event: InvalidationEvent) -> int:
        """Returns the number of cache entries removed."""
        removed = 0
        if event.type in (events.TENANT_UPDATED, events.CUSTOM_DOMAIN_CHANGED):
            removed += await self._forget_tenant_record(event)
        elif event.type in (events.MEMBERSHIP_CHANGED, events.ROLE_CHANGED, events.PRINCIPAL_STATUS_CHANGED):
            if event.principal_id:
                removed += await invalidate_principal_access(
                    self._cache, event.principal_id, event.tenant_id,
                )
        elif event.type == events.RESOURCE_CHANGED and event.tenant_id:
            if event.resources:
                for resource in event.resources:
                    removed += await self._cache.invalidate_resource(event.tenant_id, resource)
            else:
                removed += await self._cache.invalidate_tenant(event.tenant_id)
        else:
            logger.debug("Ignoring %s", event.type)
            return 0

        self.applied += 1
        logger.info(
            "Applied %s hint (%d entries removed)", event.type, removed,
            extra={"tenant_id": event.tenant_id, "principal_id": event.principal_id},
        )
        return removed

    async def _forget_tenant_record(self, event: InvalidationEvent) -> int:
        if not event.tenant_id:
            return 0
        removed = 0
        for resource in ["company", "company-features", *event.resources]:
            removed += await self._cache.invalidate_resource(event.tenant_id, resource)
        keys = [DirectoryKey("id", event.tenant_id)]
        keys.extend(
            DirectoryKey(signal, literal)
            for signal, literal in event.identifiers.items()
            if signal in DIRECTORY_SIGNALS and literal
        )
        removed += await self._cache.delete(*keys)
        return removed
