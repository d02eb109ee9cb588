"""In-memory priority + delay queue for deferred lifecycle jobs.

Used for payment-deadline timers (and any other delayed job) when Redis is not
configured or unreachable. Lost on restart; ``Campaign.payment_deadline`` is
the durable record and ``recover_deadlines`` re-enqueues it at startup.

Layout:
 1. ready_heap:     (priority, seq, item)
 2. scheduled_heap: (ready_at_ts, priority, seq, item)

Keyed jobs: a job exposing ``key()`` replaces any earlier job with the same
key. The earlier item stays in its heap but is skipped when popped, so
"starting a new deadline cancels the previous one" costs O(1). ``cancel(key)``
drops the live job for a key the same way.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
import threading
import time
import heapq

from campaign_ledger.config import QUEUE_SETTINGS
from campaign_ledger.utils import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class QueueItem:
    job: Any
    priority_label: str
    priority_value: int
    enqueued_at: float
    ready_at: float
    seq: int
    key: Optional[str] = None


def job_key(job: Any) -> Optional[str]:
    key_fn = getattr(job, "key", None)
    return key_fn() if callable(key_fn) else None


class PriorityDelayQueue:
    def __init__(self) -> None:
        priorities_cfg = QUEUE_SETTINGS.get("priorities", {})  # type: ignore[assignment]
        self._priority_map: dict[str, int] = priorities_cfg if isinstance(priorities_cfg, dict) else {"normal": 5}
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]
        self._max_in_memory = int(QUEUE_SETTINGS.get("max_in_memory", 5000))  # type: ignore[arg-type]
        self._lock = threading.RLock()
        self._cv = threading.Condition(self._lock)
        self._ready_heap: list[tuple[int, int, QueueItem]] = []
        self._scheduled_heap: list[tuple[float, int, int, QueueItem]] = []
        # key -> seq of the live item for that key
        self._live: dict[str, int] = {}
        self._seq_counter = 0
        self._shutdown = False

    # ----------------------------- internal helpers ----------------------------- #
    def _next_seq(self) -> int:
        self._seq_counter += 1
        return self._seq_counter

    def _is_stale(self, item: QueueItem) -> bool:
        return item.key is not None and self._live.get(item.key) != item.seq

    def _promote_scheduled(self) -> None:
        now_ts = time.time()
        while self._scheduled_heap and self._scheduled_heap[0][0] <= now_ts:
            _, priority_value, seq, item = heapq.heappop(self._scheduled_heap)
            if self._is_stale(item):
                continue
            heapq.heappush(self._ready_heap, (priority_value, seq, item))

    def _wait_for_next(self, timeout: Optional[float]) -> None:
        if self._ready_heap:
            return
        if not self._scheduled_heap:
            self._cv.wait(timeout=timeout)
            return
        wait_time = max(0.0, self._scheduled_heap[0][0] - time.time())
        if timeout is not None:
            wait_time = min(wait_time, timeout)
        if wait_time > 0:
            self._cv.wait(timeout=wait_time)

    # ----------------------------- public API ----------------------------- #
    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> QueueItem:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Queue shutdown")
            if self.depth() >= self._max_in_memory:
                raise OverflowError("Queue capacity exceeded")
            if priority not in self._priority_map:
                raise ValueError(f"Unknown priority '{priority}'")
            now_ts = time.time()
            ready_at_ts = now_ts + max(0.0, delay_seconds)
            item = QueueItem(
                job=job,
                priority_label=priority,
                priority_value=self._priority_map[priority],
                enqueued_at=now_ts,
                ready_at=ready_at_ts,
                seq=self._next_seq(),
                key=job_key(job),
            )
            if item.key is not None:
                self._live[item.key] = item.seq
            if ready_at_ts <= now_ts:
                heapq.heappush(self._ready_heap, (item.priority_value, item.seq, item))
            else:
                heapq.heappush(self._scheduled_heap, (ready_at_ts, item.priority_value, item.seq, item))
            depth = self.depth()
            if depth >= self._warn_depth:
                logger.warning("Queue depth warning", depth=depth)
            self._cv.notify()
            return item

    def cancel(self, key: str) -> bool:
        """Invalidate the live job for ``key``. Returns True if one was live."""
        with self._lock:
            return self._live.pop(key, None) is not None

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        """Pop next ready job. Returns None if non-blocking and empty or timeout occurs."""
        end_time = None if timeout is None else time.time() + timeout
        with self._lock:
            while True:
                if self._shutdown and not self._ready_heap and not self._scheduled_heap:
                    return None
                self._promote_scheduled()
                while self._ready_heap:
                    _, _, item = heapq.heappop(self._ready_heap)
                    if self._is_stale(item):
                        continue
                    if item.key is not None:
                        self._live.pop(item.key, None)
                    return item.job
                if not block:
                    return None
                remaining = None if end_time is None else max(0.0, end_time - time.time())
                if remaining == 0:
                    return None
                self._wait_for_next(remaining)

    def shutdown(self) -> None:
        with self._lock:
            self._shutdown = True
            self._cv.notify_all()

    def purge(self) -> None:
        """Drop every queued job (test isolation)."""
        with self._lock:
            self._ready_heap.clear()
            self._scheduled_heap.clear()
            self._live.clear()
            self._cv.notify_all()

    # ----------------------------- inspection ----------------------------- #
    def depth(self) -> int:
        """Queued items, including superseded ones not yet popped."""
        return len(self._ready_heap) + len(self._scheduled_heap)

    def __len__(self) -> int:  # pragma: no cover
        return self.depth()

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "depth": self.depth(),
                "ready": len(self._ready_heap),
                "scheduled": len(self._scheduled_heap),
                "live_keys": len(self._live),
                "shutdown": self._shutdown,
            }


__all__ = ["PriorityDelayQueue", "QueueItem", "job_key"]
