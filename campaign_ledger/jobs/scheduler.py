"""Process-wide handle on the deadline queue.

The lifespan attaches the queue once at startup; services schedule and cancel
payment deadlines through the functions below without importing ``main``.
With no queue attached (CLI scripts, some tests) scheduling is skipped and
the periodic sweep picks overdue campaigns up from the database instead.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from campaign_ledger.jobs.deadline_job import PaymentDeadlineJob
from campaign_ledger.models.db import Campaign
from campaign_ledger.models.db.enums import CampaignStatus
from campaign_ledger.utils import get_logger
from campaign_ledger.utils.time import to_epoch, utc_now

logger = get_logger(__name__)

_queue: Optional[Any] = None


def attach_queue(queue: Any) -> None:
    global _queue
    _queue = queue


def detach_queue() -> None:
    global _queue
    _queue = None


def get_queue() -> Optional[Any]:
    return _queue


def schedule_payment_deadline(campaign_id: int, deadline: datetime) -> bool:
    """Enqueue (or replace) the deadline job for a campaign."""
    if _queue is None:
        logger.debug("No deadline queue attached; relying on sweep", campaign_id=campaign_id)
        return False
    deadline_ts = to_epoch(deadline)
    delay = max(0.0, deadline_ts - utc_now().timestamp())
    job = PaymentDeadlineJob(campaign_id=campaign_id, deadline_ts=deadline_ts)
    try:
        _queue.enqueue(job, priority=job.priority, delay_seconds=delay)
    except (RuntimeError, OverflowError) as e:
        # The sweep still cancels the campaign once the stored deadline passes
        logger.error("Failed to enqueue payment deadline", campaign_id=campaign_id, error=str(e))
        return False
    logger.info("Payment deadline scheduled", campaign_id=campaign_id, delay_seconds=round(delay, 3))
    return True


def cancel_payment_deadline(campaign_id: int) -> bool:
    if _queue is None:
        return False
    cancelled = bool(_queue.cancel(PaymentDeadlineJob(campaign_id=campaign_id, deadline_ts=0).key()))
    if cancelled:
        logger.info("Payment deadline cancelled", campaign_id=campaign_id)
    return cancelled


def recover_deadlines(session: Session) -> int:
    """Re-enqueue every outstanding ``pending_payment`` deadline (startup)."""
    rows = (
        session.query(Campaign.id, Campaign.payment_deadline)
        .filter(Campaign.status == CampaignStatus.PENDING_PAYMENT, Campaign.payment_deadline.isnot(None))
        .all()
    )
    recovered = 0
    for campaign_id, deadline in rows:
        if schedule_payment_deadline(campaign_id, deadline):
            recovered += 1
    logger.info("Payment deadlines recovered", count=recovered, outstanding=len(rows))
    return recovered


__all__ = [
    "attach_queue",
    "detach_queue",
    "get_queue",
    "schedule_payment_deadline",
    "cancel_payment_deadline",
    "recover_deadlines",
]
