from datetime import timedelta
from decimal import Decimal
import pytest
from campaign_ledger.exceptions import Forbidden, InvalidTransition, ValidationError
from campaign_ledger.models.db import Campaign, Notification
from campaign_ledger.models.db.enums import CampaignStatus, CampaignSubStatus
from campaign_ledger.services import campaign_lifecycle as lifecycle
from campaign_ledger.jobs import scheduler
from campaign_ledger.utils import utc_now, ensure_utc


def _deadline_key(campaign_id):
    return f"deadline:{campaign_id}"


def _reviewed(campaign_factory, sponsor, **extra):
    return campaign_factory(sponsor, status=CampaignStatus.ADMIN_REVIEW, **extra)


def test_create_and_submit_for_review(db_session, sponsor, user_factory):
    campaign = lifecycle.create_campaign(
        db_session, sponsor, title="  Back to school  ", price_per_post="75000", influencer_count=4,
    )
    assert campaign.status == CampaignStatus.DRAFT
    assert campaign.title == "Back to school"

    with pytest.raises(Forbidden):
        lifecycle.submit_for_review(db_session, campaign.id, user_factory())

    submitted = lifecycle.submit_for_review(db_session, campaign.id, sponsor)
    assert submitted.status == CampaignStatus.ADMIN_REVIEW
    with pytest.raises(InvalidTransition):
        lifecycle.submit_for_review(db_session, campaign.id, sponsor)


def test_create_validates_input(db_session, sponsor):
    now = utc_now()
    with pytest.raises(ValidationError):
        lifecycle.create_campaign(db_session, sponsor, title="   ")
    with pytest.raises(ValidationError):
        lifecycle.create_campaign(db_session, sponsor, title="Bad count", influencer_count=0)
    with pytest.raises(ValidationError):
        lifecycle.create_campaign(
            db_session, sponsor, title="Out of order",
            registration_deadline=now + timedelta(days=5), submission_deadline=now + timedelta(days=1),
        )
    created = lifecycle.create_campaign(db_session, sponsor, title="Straight to review", submit=True)
    assert created.status == CampaignStatus.ADMIN_REVIEW


def test_approve_starts_payment_deadline(db_session, campaign_factory, sponsor, admin, deadline_queue):
    campaign = _reviewed(campaign_factory, sponsor)
    before = utc_now()

    approved = lifecycle.approve_campaign(db_session, campaign.id, admin)

    assert approved.status == CampaignStatus.PENDING_PAYMENT
    assert approved.reviewed_by == admin.id
    deadline = ensure_utc(approved.payment_deadline)
    assert deadline >= before + timedelta(seconds=3599)
    assert _deadline_key(campaign.id) in deadline_queue._live

    with pytest.raises(InvalidTransition):
        lifecycle.approve_campaign(db_session, campaign.id, admin)


def test_reject_requires_reason(db_session, campaign_factory, sponsor, admin):
    campaign = _reviewed(campaign_factory, sponsor)
    with pytest.raises(ValidationError):
        lifecycle.reject_campaign(db_session, campaign.id, admin, " ")

    rejected = lifecycle.reject_campaign(db_session, campaign.id, admin, "Brief is incomplete")
    assert rejected.status == CampaignStatus.CANCELLED
    assert rejected.cancellation_reason == "Brief is incomplete"


def test_confirm_payment_activates_and_cancels_timer(db_session, campaign_factory, sponsor, admin, deadline_queue):
    campaign = _reviewed(campaign_factory, sponsor)
    lifecycle.approve_campaign(db_session, campaign.id, admin)

    active = lifecycle.confirm_payment(db_session, campaign.id, actor=sponsor)

    assert active.status == CampaignStatus.ACTIVE
    assert active.sub_status == CampaignSubStatus.REGISTRATION_OPEN
    # 100,000 x 2 participants + 5,000 admin fee
    assert active.funded_amount == Decimal("205000")
    assert active.payment_deadline is None
    assert _deadline_key(campaign.id) not in deadline_queue._live

    with pytest.raises(InvalidTransition):
        lifecycle.confirm_payment(db_session, campaign.id)


def test_confirm_requires_owner(db_session, campaign_factory, sponsor, admin, user_factory):
    campaign = _reviewed(campaign_factory, sponsor)
    lifecycle.approve_campaign(db_session, campaign.id, admin)
    with pytest.raises(Forbidden):
        lifecycle.confirm_payment(db_session, campaign.id, actor=user_factory())


def test_deadline_after_payment_is_a_noop(db_session, campaign_factory, sponsor, admin):
    campaign = _reviewed(campaign_factory, sponsor)
    lifecycle.approve_campaign(db_session, campaign.id, admin)
    lifecycle.confirm_payment(db_session, campaign.id)

    fired = lifecycle.expire_payment_deadline(db_session, campaign.id, now=utc_now() + timedelta(hours=2))

    assert fired is False
    db_session.expire_all()
    assert db_session.get(Campaign, campaign.id).status == CampaignStatus.ACTIVE


def test_payment_after_deadline_is_rejected(db_session, campaign_factory, sponsor, admin):
    campaign = _reviewed(campaign_factory, sponsor)
    approved = lifecycle.approve_campaign(db_session, campaign.id, admin)
    fire_at = ensure_utc(approved.payment_deadline) + timedelta(seconds=1)

    assert lifecycle.expire_payment_deadline(db_session, campaign.id, now=fire_at) is True

    db_session.expire_all()
    cancelled = db_session.get(Campaign, campaign.id)
    assert cancelled.status == CampaignStatus.CANCELLED
    assert cancelled.cancellation_reason == lifecycle.DEADLINE_EXCEEDED_REASON
    with pytest.raises(InvalidTransition):
        lifecycle.confirm_payment(db_session, campaign.id)
    # Second fire finds nothing to do
    assert lifecycle.expire_payment_deadline(db_session, campaign.id, now=fire_at) is False


def test_deadline_not_reached_or_stale_job(db_session, campaign_factory, sponsor, admin):
    campaign = _reviewed(campaign_factory, sponsor)
    lifecycle.approve_campaign(db_session, campaign.id, admin)

    assert lifecycle.expire_payment_deadline(db_session, campaign.id) is False
    stale = lifecycle.expire_payment_deadline(
        db_session, campaign.id, expected_deadline_ts=1.0, now=utc_now() + timedelta(hours=2),
    )
    assert stale is False
    db_session.expire_all()
    assert db_session.get(Campaign, campaign.id).status == CampaignStatus.PENDING_PAYMENT


def test_worker_job_cancels_overdue_campaign(db_session, campaign_factory, sponsor, deadline_queue):
    from campaign_ledger.jobs.deadline_job import PaymentDeadlineJob
    from campaign_ledger.jobs.worker_deadlines import DeadlineWorker

    deadline = utc_now() - timedelta(seconds=5)
    campaign = campaign_factory(sponsor, status=CampaignStatus.PENDING_PAYMENT, payment_deadline=deadline)
    worker = DeadlineWorker(deadline_queue, sweep_interval=0)

    assert worker.process(PaymentDeadlineJob(campaign_id=campaign.id, deadline_ts=deadline.timestamp())) is True
    db_session.expire_all()
    assert db_session.get(Campaign, campaign.id).status == CampaignStatus.CANCELLED


def test_operator_cancels_pending_payment(db_session, campaign_factory, sponsor, admin, deadline_queue):
    campaign = _reviewed(campaign_factory, sponsor)
    lifecycle.approve_campaign(db_session, campaign.id, admin)

    cancelled = lifecycle.cancel_pending_payment(db_session, campaign.id, admin)

    assert cancelled.status == CampaignStatus.CANCELLED
    assert cancelled.cancellation_reason == lifecycle.OPERATOR_CANCEL_REASON
    assert _deadline_key(campaign.id) not in deadline_queue._live


def test_sweep_expires_overdue_campaigns(db_session, campaign_factory, sponsor):
    overdue = campaign_factory(
        sponsor, status=CampaignStatus.PENDING_PAYMENT, payment_deadline=utc_now() - timedelta(minutes=1),
    )
    waiting = campaign_factory(
        sponsor, status=CampaignStatus.PENDING_PAYMENT, payment_deadline=utc_now() + timedelta(hours=1),
    )

    result = lifecycle.sweep(db_session)

    assert overdue.id in result.expired
    assert waiting.id not in result.expired
    db_session.expire_all()
    assert db_session.get(Campaign, waiting.id).status == CampaignStatus.PENDING_PAYMENT


def test_payment_status_view(db_session, campaign_factory, sponsor, user_factory):
    open_campaign = campaign_factory(
        sponsor, status=CampaignStatus.PENDING_PAYMENT, payment_deadline=utc_now() + timedelta(minutes=30),
    )
    view = lifecycle.payment_status(db_session, open_campaign.id, sponsor)
    assert view.can_pay
    assert view.total == Decimal("205000")
    assert 0 < view.seconds_remaining <= 1800

    expired = campaign_factory(
        sponsor, status=CampaignStatus.PENDING_PAYMENT, payment_deadline=utc_now() - timedelta(minutes=1),
    )
    view = lifecycle.payment_status(db_session, expired.id, sponsor)
    assert not view.can_pay
    assert view.seconds_remaining == 0

    with pytest.raises(Forbidden):
        lifecycle.payment_status(db_session, open_campaign.id, user_factory())


def test_next_sub_status_follows_calendar():
    now = utc_now()
    campaign = Campaign(
        title="Calendar",
        registration_deadline=now + timedelta(days=1),
        submission_deadline=now + timedelta(days=3),
        start_date=now + timedelta(days=5),
        end_date=now + timedelta(days=7),
    )
    assert lifecycle.next_sub_status(campaign, now) == CampaignSubStatus.REGISTRATION_OPEN

    campaign.sub_status = CampaignSubStatus.REGISTRATION_OPEN
    assert lifecycle.next_sub_status(campaign, now + timedelta(days=2)) == CampaignSubStatus.STUDENT_SELECTION

    campaign.sub_status = CampaignSubStatus.STUDENT_SELECTION
    assert lifecycle.next_sub_status(campaign, now + timedelta(days=4)) == CampaignSubStatus.CONTENT_SUBMISSION

    campaign.sub_status = CampaignSubStatus.CONTENT_SUBMISSION
    assert lifecycle.next_sub_status(campaign, now + timedelta(days=6)) == CampaignSubStatus.POSTING

    campaign.sub_status = CampaignSubStatus.POSTING
    assert lifecycle.next_sub_status(campaign, now + timedelta(days=6)) is None
    assert lifecycle.next_sub_status(campaign, now + timedelta(days=8)) == CampaignSubStatus.PAYOUT_SUCCESS

    # Manual override is never pulled back by an earlier milestone
    campaign.sub_status = CampaignSubStatus.VIOLATION_REPORTED
    assert lifecycle.next_sub_status(campaign, now + timedelta(days=2)) is None


def test_evaluate_is_idempotent(db_session, campaign_factory, sponsor):
    campaign = campaign_factory(
        sponsor,
        sub_status=CampaignSubStatus.REGISTRATION_OPEN,
        registration_deadline=utc_now() - timedelta(hours=1),
        submission_deadline=utc_now() + timedelta(days=2),
    )
    assert lifecycle.evaluate_sub_status(db_session, campaign.id) == CampaignSubStatus.STUDENT_SELECTION
    assert lifecycle.evaluate_sub_status(db_session, campaign.id) is None
    db_session.expire_all()
    assert db_session.get(Campaign, campaign.id).sub_status == CampaignSubStatus.STUDENT_SELECTION


def test_set_sub_status_and_complete(db_session, campaign_factory, sponsor, admin):
    campaign = campaign_factory(sponsor)
    with pytest.raises(ValidationError):
        lifecycle.set_sub_status(db_session, campaign.id, "not-a-status", admin)

    updated = lifecycle.set_sub_status(db_session, campaign.id, "violation_reported", admin)
    assert updated.sub_status == CampaignSubStatus.VIOLATION_REPORTED

    completed = lifecycle.mark_completed(db_session, campaign.id, admin)
    assert completed.status == CampaignStatus.COMPLETED
    with pytest.raises(InvalidTransition):
        lifecycle.mark_completed(db_session, campaign.id, admin)
    with pytest.raises(InvalidTransition):
        lifecycle.set_sub_status(db_session, campaign.id, CampaignSubStatus.POSTING, admin)


def test_recover_deadlines_requeues_outstanding(db_session, campaign_factory, sponsor, deadline_queue):
    campaign = campaign_factory(
        sponsor, status=CampaignStatus.PENDING_PAYMENT, payment_deadline=utc_now() + timedelta(minutes=10),
    )
    deadline_queue.purge()

    recovered = scheduler.recover_deadlines(db_session)

    assert recovered >= 1
    assert _deadline_key(campaign.id) in deadline_queue._live


def _campaign_notes(db_session, campaign_id, title):
    return db_session.query(Notification).filter(
        Notification.reference_type == "campaign",
        Notification.reference_id == campaign_id,
        Notification.title == title,
    ).all()


def test_completion_notifies_sponsor_and_participants(db_session, campaign_factory, participation_factory, sponsor, admin):
    campaign = campaign_factory(sponsor)
    accepted = participation_factory(campaign)
    pending = participation_factory(campaign, accepted=False, approved=False)

    lifecycle.mark_completed(db_session, campaign.id, admin)

    recipients = {n.user_id for n in _campaign_notes(db_session, campaign.id, "Campaign completed")}
    assert recipients == {sponsor.id, accepted.user_id}
    assert pending.user_id not in recipients


def test_sub_status_changes_are_announced_once(db_session, campaign_factory, participation_factory, sponsor, admin):
    campaign = campaign_factory(
        sponsor,
        sub_status=CampaignSubStatus.REGISTRATION_OPEN,
        registration_deadline=utc_now() - timedelta(hours=1),
        submission_deadline=utc_now() + timedelta(days=2),
    )
    participation = participation_factory(campaign)

    lifecycle.evaluate_sub_status(db_session, campaign.id)
    lifecycle.evaluate_sub_status(db_session, campaign.id)
    notes = _campaign_notes(db_session, campaign.id, "Campaign phase changed")
    assert sorted(n.user_id for n in notes) == sorted([sponsor.id, participation.user_id])
    assert all("student selection" in n.message for n in notes)

    lifecycle.set_sub_status(db_session, campaign.id, "content_submission", admin)
    assert len(_campaign_notes(db_session, campaign.id, "Campaign phase changed")) == 4


def test_worker_stop_joins_thread():
    from campaign_ledger.jobs.queue import PriorityDelayQueue
    from campaign_ledger.jobs.worker_deadlines import DeadlineWorker

    worker = DeadlineWorker(PriorityDelayQueue(), poll_timeout=0.05, sweep_interval=0)
    worker.start()
    assert worker.is_alive()

    assert worker.stop(timeout=2.0) is True
    assert not worker.is_alive()
