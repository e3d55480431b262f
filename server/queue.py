"""Reliable crawl job queue on Redis.

Messages move from ``<name>:pending`` to ``<name>:processing`` when received
and stay there until acknowledged. The ``<name>:inflight`` sorted set holds
each delivery's visibility deadline; ``requeue_expired`` returns overdue
deliveries to pending, which gives at-least-once delivery. A per-resource
lease key keeps two workers from crawling the same resource at once.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.settings import QueueConfig
from indexer.models import CrawlJob, SiteCrawlError, utcnow

logger = logging.getLogger(__name__)


class QueueError(SiteCrawlError):
    """Raised when the queue backend rejects an operation."""


@dataclass
class QueueMessage:
    """One delivery of a queued job.

    ``receipt`` is the raw envelope as stored in the processing list; it is
    the handle needed to acknowledge this delivery.
    """
    id: str
    body: Any
    receipt: str
    attempts: int = 0
    group: Optional[str] = None


class RedisJobQueue:
    """Crawl job queue with visibility timeouts and a dead-letter list."""

    def __init__(self, client, config: Optional[QueueConfig] = None,
                 clock: Callable[[], float] = time.time,
                 poll_interval: float = 1.0,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.client = client
        self.config = config or QueueConfig()
        self._clock = clock
        self._poll_interval = poll_interval
        self._sleep = sleep

        name = self.config.queue_name
        self.pending_key = f"{name}:pending"
        self.processing_key = f"{name}:processing"
        self.inflight_key = f"{name}:inflight"
        self.dead_key = f"{name}:dead"
        self.lease_prefix = f"{name}:lease"

    @classmethod
    def from_config(cls, config: QueueConfig) -> 'RedisJobQueue':
        client = aioredis.from_url(config.redis_url, decode_responses=True)
        return cls(client, config)

    async def close(self):
        await self.client.aclose()

    def _lease_key(self, group: str) -> str:
        return f"{self.lease_prefix}:{group}"

    async def enqueue(self, job: CrawlJob) -> str:
        """Push a job and return its message id."""
        message_id = uuid.uuid4().hex
        envelope = {
            "id": message_id,
            "body": job.to_message(),
            "group": job.website_resource_id,
            "enqueued_at": utcnow().isoformat(),
            "attempts": 0,
        }
        try:
            await self.client.lpush(self.pending_key, json.dumps(envelope))
        except RedisError as e:
            raise QueueError(f"Failed to enqueue job for {job.website_resource_id}: {e}") from e
        logger.debug(f"Enqueued message {message_id} for resource {job.website_resource_id}")
        return message_id

    @staticmethod
    def _decode(raw: str) -> Dict[str, Any]:
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError):
            return {"body": raw}
        if not isinstance(envelope, dict):
            return {"body": envelope}
        return envelope

    async def _release_lease(self, group: Optional[str], message_id: Optional[str]):
        if not group:
            return
        key = self._lease_key(group)
        if await self.client.get(key) == message_id:
            await self.client.delete(key)

    async def _claim(self, raw: str) -> Optional[QueueMessage]:
        """Take the group lease for a message already moved to processing."""
        envelope = self._decode(raw)
        message_id = envelope.get("id") or uuid.uuid4().hex
        group = envelope.get("group")

        if group:
            acquired = await self.client.set(
                self._lease_key(group), message_id,
                nx=True, ex=self.config.group_lease_seconds,
            )
            if not acquired:
                # Another worker owns this resource; send the message to the back.
                await self.client.lrem(self.processing_key, 1, raw)
                await self.client.lpush(self.pending_key, raw)
                return None

        deadline = self._clock() + self.config.visibility_timeout
        await self.client.zadd(self.inflight_key, {raw: deadline})
        return QueueMessage(
            id=message_id,
            body=envelope.get("body"),
            receipt=raw,
            attempts=int(envelope.get("attempts", 0)),
            group=group,
        )

    async def receive(self, max_messages: int = 1, wait_seconds: float = 0) -> List[QueueMessage]:
        """Deliver up to ``max_messages``, polling for at most ``wait_seconds``."""
        messages: List[QueueMessage] = []
        deferred = set()
        deadline = self._clock() + wait_seconds

        try:
            while len(messages) < max_messages:
                raw = await self.client.lmove(self.pending_key, self.processing_key, "RIGHT", "LEFT")
                if raw is None:
                    if messages or self._clock() >= deadline:
                        break
                    await self._sleep(self._poll_interval)
                    continue

                if raw in deferred:
                    # Cycled through every deliverable message; put it back and wait
                    # for a lease to free up.
                    await self.client.lrem(self.processing_key, 1, raw)
                    await self.client.rpush(self.pending_key, raw)
                    if messages or self._clock() >= deadline:
                        break
                    deferred.clear()
                    await self._sleep(self._poll_interval)
                    continue

                message = await self._claim(raw)
                if message is None:
                    deferred.add(raw)
                    continue
                messages.append(message)
        except RedisError as e:
            raise QueueError(f"Failed to receive messages: {e}") from e

        return messages

    async def acknowledge(self, message: QueueMessage):
        """Delete a delivered message so it is never redelivered."""
        try:
            removed = await self.client.lrem(self.processing_key, 1, message.receipt)
            await self.client.zrem(self.inflight_key, message.receipt)
            await self._release_lease(message.group, message.id)
        except RedisError as e:
            raise QueueError(f"Failed to acknowledge message {message.id}: {e}") from e
        if not removed:
            logger.debug(f"Message {message.id} was already acknowledged or requeued")

    async def dead_letter(self, message: QueueMessage, reason: str):
        """Park a message that can never be processed, then remove it from processing."""
        record = {
            "id": message.id,
            "body": message.body,
            "attempts": message.attempts,
            "reason": reason,
            "dead_lettered_at": utcnow().isoformat(),
        }
        try:
            await self.client.rpush(self.dead_key, json.dumps(record, default=str))
        except RedisError as e:
            raise QueueError(f"Failed to dead-letter message {message.id}: {e}") from e
        logger.warning(f"Dead-lettered message {message.id}: {reason}")
        await self.acknowledge(message)

    async def requeue_expired(self, now: Optional[float] = None) -> int:
        """Return deliveries past their visibility deadline to pending.

        Messages that have been delivered ``max_receives`` times go to the
        dead-letter list instead.
        """
        now = self._clock() if now is None else now
        requeued = 0
        try:
            expired = await self.client.zrangebyscore(self.inflight_key, "-inf", now)
            for raw in expired:
                if not await self.client.zrem(self.inflight_key, raw):
                    continue
                await self.client.lrem(self.processing_key, 1, raw)

                envelope = self._decode(raw)
                await self._release_lease(envelope.get("group"), envelope.get("id"))
                envelope["attempts"] = int(envelope.get("attempts", 0)) + 1

                if envelope["attempts"] >= self.config.max_receives:
                    envelope["reason"] = "max receives exceeded"
                    envelope["dead_lettered_at"] = utcnow().isoformat()
                    await self.client.rpush(self.dead_key, json.dumps(envelope, default=str))
                    logger.warning(f"Message {envelope.get('id')} exceeded {self.config.max_receives} receives")
                    continue

                # Right end of pending is the next to be delivered.
                await self.client.rpush(self.pending_key, json.dumps(envelope, default=str))
                requeued += 1
        except RedisError as e:
            raise QueueError(f"Failed to requeue expired messages: {e}") from e

        if requeued:
            logger.info(f"Requeued {requeued} expired messages")
        return requeued

    async def stats(self) -> Dict[str, int]:
        try:
            return {
                "pending": await self.client.llen(self.pending_key),
                "processing": await self.client.llen(self.processing_key),
                "dead": await self.client.llen(self.dead_key),
            }
        except RedisError as e:
            raise QueueError(f"Failed to read queue stats: {e}") from e
