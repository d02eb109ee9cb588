"""Tests for the Redis-backed deadline queue.

Two modes:
1. Mock Redis (default) - a dict-backed client patched over ``redis.from_url``
2. Real Redis - set USE_REAL_REDIS=true with a server on localhost:6379

    export USE_REAL_REDIS=true
    pytest tests/test_redis_queue.py
"""
import os
import time
from unittest.mock import MagicMock, patch
import pytest
import redis
from campaign_ledger.config import QUEUE_SETTINGS
from campaign_ledger.jobs.deadline_job import PaymentDeadlineJob
from campaign_ledger.jobs.queue import PriorityDelayQueue
from campaign_ledger.jobs.redis_queue import RedisQueue
from campaign_ledger.jobs.worker_deadlines import create_queue

USE_REAL_REDIS = os.environ.get("USE_REAL_REDIS", "").lower() in ("true", "1", "yes")

READY_KEY = str(QUEUE_SETTINGS["redis_ready_key"])
SCHEDULED_KEY = str(QUEUE_SETTINGS["redis_scheduled_key"])
LIVE_KEY = f"{SCHEDULED_KEY}:live"


@pytest.fixture
def mock_redis():
    """Dict-backed stand-in for the handful of Redis commands the queue uses."""
    if USE_REAL_REDIS:
        yield None
        return
    with patch("redis.from_url") as mock_from_url:
        mock_client = MagicMock()
        mock_client.ping.return_value = True

        ready: list = []
        scheduled: dict = {}
        live: dict = {}

        def mock_lpush(key, value):
            ready.insert(0, value)
            return len(ready)

        def mock_lpop(key):
            return ready.pop(0) if ready else None

        def mock_blpop(keys, timeout=0):
            if ready:
                return [keys[0], ready.pop(0)]
            return None

        def mock_lrem(key, count, value):
            removed = ready.count(value)
            ready[:] = [v for v in ready if v != value]
            return removed

        def mock_zadd(key, mapping):
            scheduled.update(mapping)
            return len(mapping)

        def mock_zrem(key, value):
            return 1 if scheduled.pop(value, None) is not None else 0

        def mock_zrangebyscore(key, min_score, max_score):
            return [member for member, score in sorted(scheduled.items(), key=lambda kv: kv[1]) if min_score <= score <= max_score]

        def mock_hget(key, field):
            return live.get(field)

        def mock_hset(key, field, value):
            live[field] = value
            return 1

        def mock_hdel(key, field):
            return 1 if live.pop(field, None) is not None else 0

        def mock_delete(key):
            {READY_KEY: ready, SCHEDULED_KEY: scheduled, LIVE_KEY: live}[key].clear()
            return 1

        mock_client.lpush.side_effect = mock_lpush
        mock_client.lpop.side_effect = mock_lpop
        mock_client.blpop.side_effect = mock_blpop
        mock_client.lrem.side_effect = mock_lrem
        mock_client.zadd.side_effect = mock_zadd
        mock_client.zrem.side_effect = mock_zrem
        mock_client.zrangebyscore.side_effect = mock_zrangebyscore
        mock_client.hget.side_effect = mock_hget
        mock_client.hset.side_effect = mock_hset
        mock_client.hdel.side_effect = mock_hdel
        mock_client.delete.side_effect = mock_delete
        mock_client.llen.side_effect = lambda key: len(ready)
        mock_client.zcard.side_effect = lambda key: len(scheduled)

        mock_from_url.return_value = mock_client
        yield mock_client


@pytest.fixture
def mock_redis_unavailable():
    with patch("redis.from_url") as mock_from_url:
        mock_from_url.side_effect = redis.RedisError("Connection refused")
        yield mock_from_url


@pytest.fixture
def redis_queue(mock_redis):
    queue = RedisQueue()
    queue.purge()
    yield queue
    queue.purge()


def test_enqueue_and_dequeue(redis_queue):
    job = PaymentDeadlineJob(campaign_id=1, deadline_ts=1700000000.5)
    item = redis_queue.enqueue(job, priority="high")
    assert item.key == "deadline:1"
    assert redis_queue.depth() == 1

    result = redis_queue.dequeue(block=False)
    assert isinstance(result, PaymentDeadlineJob)
    assert result.campaign_id == 1
    assert result.deadline_ts == 1700000000.5
    assert redis_queue.depth() == 0


def test_delayed_job_promoted_when_due(redis_queue):
    redis_queue.enqueue(PaymentDeadlineJob(campaign_id=2, deadline_ts=0), priority="high", delay_seconds=0.3)

    snapshot = redis_queue.snapshot()
    assert snapshot["scheduled"] == 1
    assert snapshot["ready"] == 0
    assert redis_queue.dequeue(block=False) is None

    time.sleep(0.5)
    result = redis_queue.dequeue(block=False)
    assert isinstance(result, PaymentDeadlineJob)
    assert result.campaign_id == 2


def test_new_deadline_replaces_previous(redis_queue):
    redis_queue.enqueue(PaymentDeadlineJob(campaign_id=3, deadline_ts=100.0), priority="high", delay_seconds=60)
    redis_queue.enqueue(PaymentDeadlineJob(campaign_id=3, deadline_ts=200.0), priority="high")

    snapshot = redis_queue.snapshot()
    assert snapshot["scheduled"] == 0
    assert snapshot["ready"] == 1
    assert redis_queue.dequeue(block=False).deadline_ts == 200.0


def test_cancel_removes_scheduled_deadline(redis_queue):
    job = PaymentDeadlineJob(campaign_id=4, deadline_ts=0)
    redis_queue.enqueue(job, priority="high", delay_seconds=60)

    assert redis_queue.cancel(job.key()) is True
    assert redis_queue.snapshot()["scheduled"] == 0
    assert redis_queue.cancel(job.key()) is False


def test_snapshot(redis_queue):
    snapshot = redis_queue.snapshot()
    assert snapshot["depth"] == 0
    assert snapshot["redis_active"] is True

    redis_queue.enqueue(PaymentDeadlineJob(campaign_id=5, deadline_ts=0), priority="high")
    redis_queue.enqueue(PaymentDeadlineJob(campaign_id=6, deadline_ts=0), priority="high", delay_seconds=10)
    snapshot = redis_queue.snapshot()
    assert snapshot["depth"] == 2
    assert snapshot["ready"] == 1
    assert snapshot["scheduled"] == 1

    with patch.object(redis_queue, "health_check", return_value=False):
        assert redis_queue.snapshot()["redis_active"] is False


def test_fallback_when_redis_unavailable(mock_redis_unavailable):
    queue = RedisQueue()
    assert not queue._is_redis_active

    queue.enqueue(PaymentDeadlineJob(campaign_id=7, deadline_ts=0), priority="high")
    assert queue.depth() == 1
    result = queue.dequeue(block=False)
    assert isinstance(result, PaymentDeadlineJob)
    assert result.campaign_id == 7


def test_create_queue_prefers_redis(mock_redis):
    original = QUEUE_SETTINGS.get("use_redis", False)
    QUEUE_SETTINGS["use_redis"] = True
    try:
        queue = create_queue()
        assert isinstance(queue, RedisQueue)
        queue.purge()
    finally:
        QUEUE_SETTINGS["use_redis"] = original


def test_create_queue_falls_back_to_memory(mock_redis_unavailable):
    original = QUEUE_SETTINGS.get("use_redis", False)
    QUEUE_SETTINGS["use_redis"] = True
    try:
        assert isinstance(create_queue(), PriorityDelayQueue)
    finally:
        QUEUE_SETTINGS["use_redis"] = original
