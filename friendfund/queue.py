"""
Queue abstraction for screenshot verification jobs.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

from friendfund.errors import UpstreamDegraded

logger = logging.getLogger(__name__)


@dataclass
class VerificationJob:
    contribution_id: str
    screenshot_path: str
    mime_type: str = "image/png"

    def dumps(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def loads(cls, raw: str | bytes) -> "VerificationJob":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return cls(**json.loads(raw))


class VerificationQueue(Protocol):
    """Minimal queue interface for dispatching verification jobs to workers."""

    def enqueue(self, job: VerificationJob) -> None:
        ...

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[VerificationJob]:
        ...


@dataclass
class InMemoryVerificationQueue:
    """Simple FIFO queue for testing/dev."""

    items: list[VerificationJob] = field(default_factory=list)

    def enqueue(self, job: VerificationJob) -> None:
        self.items.append(job)

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[VerificationJob]:
        if not self.items:
            return None
        return self.items.pop(0)


@dataclass
class RedisVerificationQueue:
    """Redis-backed queue using list push/pop operations."""

    url: str
    queue_key: str = "friendfund:verifications"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def enqueue(self, job: VerificationJob) -> None:
        try:
            self.client.rpush(self.queue_key, job.dumps())
        except redis_exceptions.RedisError as exc:
            raise UpstreamDegraded(f"Verification queue unavailable: {exc}") from exc

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[VerificationJob]:
        try:
            if block:
                result = self.client.blpop(self.queue_key, timeout=timeout or 0)
                if result is None:
                    return None
                _, raw = result
            else:
                raw = self.client.lpop(self.queue_key)
                if raw is None:
                    return None
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect and report an empty poll.
            logger.warning("Redis connection reset; reconnecting")
            self.client = redis.Redis.from_url(self.url)
            return None
        return VerificationJob.loads(raw)
