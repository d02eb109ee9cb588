"""Background worker firing payment deadlines and running the lifecycle sweep."""
from __future__ import annotations

import threading
import time
from typing import Any, Optional, Protocol, Union

from sqlalchemy.orm import Session

from campaign_ledger import database
from campaign_ledger.config import PAYMENT_SETTINGS, QUEUE_SETTINGS
from campaign_ledger.jobs.deadline_job import PaymentDeadlineJob
from campaign_ledger.jobs.queue import PriorityDelayQueue
from campaign_ledger.jobs.redis_queue import RedisQueue
from campaign_ledger.services.campaign_lifecycle import expire_payment_deadline, sweep
from campaign_ledger.utils import get_logger

logger = get_logger(__name__)

# Recent job failures (inspected by tests and /health/detailed)
LAST_EXCEPTIONS: list[dict] = []
_MAX_EXCEPTIONS = 50


class QueueProtocol(Protocol):
    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> Any: ...
    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any: ...
    def cancel(self, key: str) -> bool: ...
    def shutdown(self) -> None: ...
    def snapshot(self) -> dict: ...


def _record_failure(kind: str, error: Exception, **context: Any) -> None:
    LAST_EXCEPTIONS.append({"kind": kind, "error": str(error), "type": type(error).__name__, **context})
    del LAST_EXCEPTIONS[:-_MAX_EXCEPTIONS]


class DeadlineWorker:
    def __init__(
        self,
        queue: QueueProtocol,
        *,
        poll_timeout: float = 1.0,
        sweep_interval: Optional[float] = None,
    ):
        self.queue = queue
        self.poll_timeout = poll_timeout
        self.sweep_interval = float(sweep_interval if sweep_interval is not None else PAYMENT_SETTINGS["sweep_interval_seconds"])
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._last_sweep = 0.0

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="deadline-worker", daemon=True)
        self._thread.start()
        logger.info("Deadline worker started", sweep_interval=self.sweep_interval)

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Signal the loop and wait for the thread. Returns True once it has exited."""
        self._stop_event.set()
        logger.info("Deadline worker stop requested")
        if self._thread is None:
            return True
        if self._thread is not threading.current_thread():
            self._thread.join(timeout if timeout is not None else self.poll_timeout * 5)
        stopped = not self._thread.is_alive()
        if not stopped:
            logger.warning("Deadline worker did not exit in time")
        return stopped

    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                if self.sweep_interval > 0 and time.time() - self._last_sweep >= self.sweep_interval:
                    self.run_sweep()
                job = self.queue.dequeue(timeout=self.poll_timeout)
                if job is None:
                    continue
                if not isinstance(job, PaymentDeadlineJob):
                    logger.warning("Skipping unknown job type", job_type=type(job).__name__)
                    continue
                self.process(job)
            except Exception as e:  # pragma: no cover
                logger.error("Worker loop error", error=str(e), exc_info=True)
                time.sleep(1)

    def process(self, job: PaymentDeadlineJob) -> bool:
        logger.info("Processing payment deadline", campaign_id=job.campaign_id)
        session: Session = database.SessionLocal()
        try:
            return expire_payment_deadline(session, job.campaign_id, expected_deadline_ts=job.deadline_ts)
        except Exception as e:
            logger.error("Payment deadline job failed", campaign_id=job.campaign_id, error=str(e), exc_info=True)
            _record_failure("deadline", e, campaign_id=job.campaign_id)
            return False
        finally:
            session.close()

    def run_sweep(self) -> None:
        self._last_sweep = time.time()
        session: Session = database.SessionLocal()
        try:
            sweep(session)
        except Exception as e:
            logger.error("Lifecycle sweep failed", error=str(e), exc_info=True)
            _record_failure("sweep", e)
        finally:
            session.close()


def create_queue() -> Union[PriorityDelayQueue, RedisQueue]:
    """Redis-backed queue when enabled and reachable, else in-memory."""
    if QUEUE_SETTINGS.get("use_redis", False):
        redis_queue = RedisQueue()
        if redis_queue.health_check():
            logger.info("Using Redis-backed deadline queue")
            return redis_queue
        logger.warning("Redis queue enabled but Redis is unreachable; using in-memory queue")
    logger.info("Using in-memory deadline queue")
    return PriorityDelayQueue()


__all__ = ["DeadlineWorker", "LAST_EXCEPTIONS", "QueueProtocol", "create_queue"]
