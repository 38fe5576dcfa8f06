# backend/app/services/notifier.py
"""
"Job changed" signals for push-based observers.

A signal carries no state, only the fact that a job was written. Observers
react by re-reading the store, so a lost or duplicated signal costs at most
one extra (or one delayed) fetch, never a wrong view.
"""
from __future__ import annotations

from collections import defaultdict
from functools import lru_cache
from typing import Protocol
from uuid import UUID
import logging
import threading

import redis

from ..core.config import get_settings

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "generation-jobs"


def channel_for(job_id: UUID | str) -> str:
    return f"{CHANNEL_PREFIX}:{job_id}"


class Subscription(Protocol):
    def wait(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; True if a signal arrived."""

    def close(self) -> None:
        ...


class ProgressNotifier(Protocol):
    def publish(self, job_id: UUID) -> None:
        ...

    def subscribe(self, job_id: UUID) -> Subscription:
        ...


# ---------------------------------------------------------------------------
# Redis pub/sub
# ---------------------------------------------------------------------------

class RedisSubscription:
    def __init__(self, client: redis.Redis, channel: str) -> None:
        self._client = client
        self._pubsub = client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(channel)
        self._closed = False

    def wait(self, timeout: float) -> bool:
        if self._closed:
            return False
        try:
            msg = self._pubsub.get_message(timeout=timeout)
        except redis.RedisError as e:
            # Caller keeps polling the store; treat as "nothing arrived"
            logger.warning("Progress subscription read failed: %s", e)
            return False
        if msg is None:
            return False
        # Drain anything else already buffered so one fetch covers a burst
        while True:
            try:
                if self._pubsub.get_message(timeout=0) is None:
                    break
            except redis.RedisError:
                break
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._pubsub.close()
        finally:
            self._client.close()


class RedisNotifier:
    def __init__(self, url: str | None = None) -> None:
        self.url = url or get_settings().REDIS_URL

    def _client(self) -> redis.Redis:
        return redis.from_url(
            self.url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )

    def publish(self, job_id: UUID) -> None:
        client = self._client()
        try:
            client.publish(channel_for(job_id), "changed")
        except redis.RedisError as e:
            logger.warning(
                "Failed to publish job progress signal: %s",
                e,
                extra={"job_id": str(job_id)},
            )
        finally:
            client.close()

    def subscribe(self, job_id: UUID) -> RedisSubscription:
        # Without a read timeout, get_message(timeout=...) governs blocking
        client = redis.from_url(self.url, decode_responses=True, socket_connect_timeout=5)
        return RedisSubscription(client, channel_for(job_id))


# ---------------------------------------------------------------------------
# In-process (single API + thread dispatcher, and tests)
# ---------------------------------------------------------------------------

class InMemorySubscription:
    def __init__(self, owner: "InMemoryNotifier", job_id: str) -> None:
        self._owner = owner
        self._job_id = job_id
        self._event = threading.Event()
        self._closed = False

    def signal(self) -> None:
        self._event.set()

    def wait(self, timeout: float) -> bool:
        if self._closed:
            return False
        if self._event.wait(timeout):
            self._event.clear()
            return True
        return False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._owner._remove(self._job_id, self)
        # Release a waiter blocked in wait(); it sees _closed on its next call
        self._event.set()


class InMemoryNotifier:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: dict[str, set[InMemorySubscription]] = defaultdict(set)

    def publish(self, job_id: UUID) -> None:
        with self._lock:
            subs = list(self._subs.get(str(job_id), ()))
        for sub in subs:
            sub.signal()

    def subscribe(self, job_id: UUID) -> InMemorySubscription:
        sub = InMemorySubscription(self, str(job_id))
        with self._lock:
            self._subs[str(job_id)].add(sub)
        return sub

    def subscriber_count(self, job_id: UUID) -> int:
        with self._lock:
            return len(self._subs.get(str(job_id), ()))

    def _remove(self, job_id: str, sub: InMemorySubscription) -> None:
        with self._lock:
            subs = self._subs.get(job_id)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                del self._subs[job_id]


@lru_cache(maxsize=1)
def get_notifier() -> ProgressNotifier:
    settings = get_settings()
    if settings.PROGRESS_NOTIFIER == "memory":
        return InMemoryNotifier()
    return RedisNotifier(settings.REDIS_URL)
