"""Redis-backed priority + delay queue for deadline jobs.

Same interface as ``PriorityDelayQueue`` but survives process restarts, so a
payment deadline scheduled before a deploy still fires afterwards.

Data structures in Redis:
 1. List   ``<ready_key>``            serialized jobs ready to run
 2. ZSet   ``<scheduled_key>``        score = ready_at epoch, member = serialized job
 3. Hash   ``<scheduled_key>:live``   job key -> serialized member of the live job

Enqueueing a keyed job removes the previous member for that key from the list
and the sorted set. When Redis is unreachable every call degrades to the
in-memory fallback queue; the worker's DB re-check keeps late or duplicate
jobs harmless either way.
"""
from __future__ import annotations

import json
import time
import threading
from typing import Any, Optional

import redis

from campaign_ledger.config import QUEUE_SETTINGS
from campaign_ledger.jobs.deadline_job import PaymentDeadlineJob
from campaign_ledger.jobs.queue import PriorityDelayQueue, QueueItem, job_key
from campaign_ledger.utils import get_logger

logger = get_logger(__name__)

JOB_TYPES: dict[str, type] = {
    "PaymentDeadlineJob": PaymentDeadlineJob,
}


def _decode(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def _as_int(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(_decode(value))
    except (ValueError, TypeError) as e:
        logger.warning("Unexpected integer reply from Redis", value_type=type(value).__name__, error=str(e))
        return 0


class RedisQueue:
    def __init__(self) -> None:
        self._redis_url: str = str(QUEUE_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
        self._ready_key: str = str(QUEUE_SETTINGS.get("redis_ready_key", "campaign_ledger:ready_queue"))
        self._scheduled_key: str = str(QUEUE_SETTINGS.get("redis_scheduled_key", "campaign_ledger:scheduled_jobs"))
        self._live_key: str = f"{self._scheduled_key}:live"
        self._health_check_timeout = float(QUEUE_SETTINGS.get("redis_health_check_timeout", 2.0))  # type: ignore[arg-type]
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]
        priorities_cfg = QUEUE_SETTINGS.get("priorities", {})  # type: ignore[assignment]
        self._priority_map: dict[str, int] = priorities_cfg if isinstance(priorities_cfg, dict) else {"normal": 5}

        self._fallback_queue = PriorityDelayQueue()
        self._redis_client: Optional[redis.Redis] = None
        self._lock = threading.RLock()
        self._is_redis_active = False
        self._shutdown = False
        self._init_redis_client()

    def _init_redis_client(self) -> None:
        try:
            self._redis_client = redis.from_url(self._redis_url, socket_connect_timeout=self._health_check_timeout)
            self._redis_client.ping()
            self._is_redis_active = True
            logger.info("Connected to Redis", url=self._redis_url)
        except (redis.RedisError, ConnectionError) as e:
            self._is_redis_active = False
            self._redis_client = None
            logger.warning("Failed to connect to Redis, using in-memory fallback queue", error=str(e))

    def health_check(self) -> bool:
        with self._lock:
            if self._redis_client is None:
                self._init_redis_client()
                return self._is_redis_active
            try:
                self._redis_client.ping()
                if not self._is_redis_active:
                    logger.info("Redis connection restored")
                self._is_redis_active = True
            except (redis.RedisError, ConnectionError) as e:
                if self._is_redis_active:
                    logger.warning("Redis connection lost, using in-memory fallback queue", error=str(e))
                self._is_redis_active = False
            return self._is_redis_active

    # ----------------------------- serialization ----------------------------- #
    def _serialize(self, item: QueueItem) -> str:
        job = item.job
        if type(job).__name__ not in JOB_TYPES:
            raise TypeError(f"Unsupported job type for Redis queue: {type(job).__name__}")
        payload = {
            "job_type": type(job).__name__,
            "job": {name: getattr(job, name) for name in job.__slots__},
            "priority_label": item.priority_label,
            "priority_value": item.priority_value,
            "enqueued_at": item.enqueued_at,
            "ready_at": item.ready_at,
            "seq": item.seq,
        }
        return json.dumps(payload, sort_keys=True)

    def _deserialize(self, raw: Any) -> Any:
        data = json.loads(_decode(raw))
        job_cls = JOB_TYPES.get(data.get("job_type", ""))
        if job_cls is None:
            logger.warning("Unknown job type encountered", job_type=data.get("job_type"))
            return None
        return job_cls(**data.get("job", {}))

    # ----------------------------- internal helpers ----------------------------- #
    def _drop_live(self, key: str) -> bool:
        assert self._redis_client is not None
        previous = self._redis_client.hget(self._live_key, key)
        if previous is None:
            return False
        member = _decode(previous)
        self._redis_client.zrem(self._scheduled_key, member)
        self._redis_client.lrem(self._ready_key, 0, member)
        self._redis_client.hdel(self._live_key, key)
        return True

    def _promote_scheduled(self) -> None:
        assert self._redis_client is not None
        due = self._redis_client.zrangebyscore(self._scheduled_key, 0, time.time()) or []
        for member in due:
            job_str = _decode(member)
            self._redis_client.lpush(self._ready_key, job_str)
            self._redis_client.zrem(self._scheduled_key, job_str)
        if due:
            logger.debug("Promoted scheduled jobs to ready queue", count=len(due))

    def _pop_ready(self, block: bool, timeout: Optional[float]) -> Any:
        assert self._redis_client is not None
        if block:
            reply = self._redis_client.blpop([self._ready_key], timeout=max(1, int(timeout)) if timeout else 0)
            if not reply:
                return None
            raw = reply[1]
        else:
            raw = self._redis_client.lpop(self._ready_key)
            if raw is None:
                return None
        job = self._deserialize(raw)
        key = job_key(job) if job is not None else None
        if key is not None:
            live = self._redis_client.hget(self._live_key, key)
            if live is not None and _decode(live) == _decode(raw):
                self._redis_client.hdel(self._live_key, key)
        return job

    # ----------------------------- public API ----------------------------- #
    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> QueueItem:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Queue shutdown")
            if priority not in self._priority_map:
                raise ValueError(f"Unknown priority '{priority}'")
            if not self.health_check() or self._redis_client is None:
                return self._fallback_queue.enqueue(job, priority=priority, delay_seconds=delay_seconds)

            now_ts = time.time()
            ready_at_ts = now_ts + max(0.0, delay_seconds)
            item = QueueItem(
                job=job,
                priority_label=priority,
                priority_value=self._priority_map[priority],
                enqueued_at=now_ts,
                ready_at=ready_at_ts,
                seq=int(now_ts * 1000),
                key=job_key(job),
            )
            try:
                member = self._serialize(item)
                if item.key is not None:
                    self._drop_live(item.key)
                    self._redis_client.hset(self._live_key, item.key, member)
                if ready_at_ts <= now_ts:
                    self._redis_client.lpush(self._ready_key, member)
                else:
                    self._redis_client.zadd(self._scheduled_key, {member: ready_at_ts})
                depth = self.depth()
                if depth >= self._warn_depth:
                    logger.warning("Queue depth warning", depth=depth)
                return item
            except redis.RedisError as e:
                logger.error("Redis error during enqueue", error=str(e))
                self._is_redis_active = False
                return self._fallback_queue.enqueue(job, priority=priority, delay_seconds=delay_seconds)

    def cancel(self, key: str) -> bool:
        with self._lock:
            cancelled = self._fallback_queue.cancel(key)
            if not self.health_check() or self._redis_client is None:
                return cancelled
            try:
                return self._drop_live(key) or cancelled
            except redis.RedisError as e:
                logger.error("Redis error during cancel", key=key, error=str(e))
                self._is_redis_active = False
                return cancelled

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        with self._lock:
            if self._shutdown and self.depth() == 0:
                return None
            if not self.health_check() or self._redis_client is None:
                return self._fallback_queue.dequeue(block=block, timeout=timeout)
            # Jobs enqueued while Redis was down still need to run
            fallback_job = self._fallback_queue.dequeue(block=False)
            if fallback_job is not None:
                return fallback_job
            try:
                self._promote_scheduled()
                return self._pop_ready(block, timeout)
            except redis.RedisError as e:
                logger.error("Redis error during dequeue", error=str(e))
                self._is_redis_active = False
                return self._fallback_queue.dequeue(block=block, timeout=timeout)

    def shutdown(self) -> None:
        with self._lock:
            self._shutdown = True
            self._fallback_queue.shutdown()

    def purge(self) -> None:
        """Remove all queued jobs (testing)."""
        with self._lock:
            self._fallback_queue.purge()
            if not self.health_check() or self._redis_client is None:
                return
            try:
                self._redis_client.delete(self._ready_key)
                self._redis_client.delete(self._scheduled_key)
                self._redis_client.delete(self._live_key)
            except redis.RedisError as e:
                logger.error("Error purging Redis queue", error=str(e))
                self._is_redis_active = False

    def _counts(self) -> tuple[int, int]:
        assert self._redis_client is not None
        return _as_int(self._redis_client.llen(self._ready_key)), _as_int(self._redis_client.zcard(self._scheduled_key))

    def depth(self) -> int:
        with self._lock:
            if not self.health_check() or self._redis_client is None:
                return self._fallback_queue.depth()
            try:
                ready, scheduled = self._counts()
                return ready + scheduled + self._fallback_queue.depth()
            except redis.RedisError as e:
                logger.error("Error getting queue depth", error=str(e))
                self._is_redis_active = False
                return self._fallback_queue.depth()

    def __len__(self) -> int:
        return self.depth()

    def snapshot(self) -> dict:
        with self._lock:
            if not self.health_check() or self._redis_client is None:
                snapshot = self._fallback_queue.snapshot()
                snapshot["redis_active"] = False
                return snapshot
            try:
                ready, scheduled = self._counts()
                return {
                    "depth": ready + scheduled,
                    "ready": ready,
                    "scheduled": scheduled,
                    "shutdown": self._shutdown,
                    "redis_active": True,
                    "redis_url": self._redis_url,
                }
            except redis.RedisError as e:
                logger.error("Error getting queue snapshot", error=str(e))
                self._is_redis_active = False
                snapshot = self._fallback_queue.snapshot()
                snapshot["redis_active"] = False
                return snapshot


__all__ = ["RedisQueue", "JOB_TYPES"]
