import time
import pytest
from campaign_ledger.jobs.deadline_job import PaymentDeadlineJob
from campaign_ledger.jobs.queue import PriorityDelayQueue


def test_priority_queue_ordering():
    q = PriorityDelayQueue()
    job_low = PaymentDeadlineJob(campaign_id=1, deadline_ts=0, priority="low")
    job_high = PaymentDeadlineJob(campaign_id=2, deadline_ts=0, priority="high")
    job_normal = PaymentDeadlineJob(campaign_id=3, deadline_ts=0, priority="normal")
    q.enqueue(job_low, priority="low")
    q.enqueue(job_high, priority="high")
    q.enqueue(job_normal, priority="normal")
    snap = q.snapshot()
    assert snap.get("ready") == 3
    assert snap.get("depth") == 3
    # Lower numeric priority comes out first
    assert [q.dequeue(block=False).campaign_id for _ in range(3)] == [2, 3, 1]
    assert q.dequeue(block=False) is None


def test_delayed_job_waits_until_ready():
    q = PriorityDelayQueue()
    q.enqueue(PaymentDeadlineJob(campaign_id=4, deadline_ts=0), priority="high", delay_seconds=0.2)
    assert q.snapshot()["scheduled"] == 1
    assert q.dequeue(block=False) is None
    job = q.dequeue(timeout=2.0)
    assert job is not None and job.campaign_id == 4


def test_same_key_replaces_previous_deadline():
    q = PriorityDelayQueue()
    q.enqueue(PaymentDeadlineJob(campaign_id=5, deadline_ts=100.0), priority="high", delay_seconds=0.05)
    q.enqueue(PaymentDeadlineJob(campaign_id=5, deadline_ts=200.0), priority="high")
    time.sleep(0.1)

    job = q.dequeue(block=False)
    assert job.deadline_ts == 200.0
    # Superseded item is skipped when its time comes
    assert q.dequeue(block=False) is None


def test_cancel_drops_live_job():
    q = PriorityDelayQueue()
    job = PaymentDeadlineJob(campaign_id=6, deadline_ts=0)
    q.enqueue(job, priority="high", delay_seconds=0.05)

    assert q.cancel(job.key()) is True
    assert q.cancel(job.key()) is False
    time.sleep(0.1)
    assert q.dequeue(block=False) is None


def test_shutdown_rejects_new_jobs():
    q = PriorityDelayQueue()
    q.shutdown()
    with pytest.raises(RuntimeError):
        q.enqueue(PaymentDeadlineJob(campaign_id=7, deadline_ts=0), priority="high")
    assert q.dequeue(block=False) is None
