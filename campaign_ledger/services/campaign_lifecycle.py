"""Campaign payment lifecycle.

Status machine::

    draft -> admin_review -> pending_payment -> active -> completed
                 |                 |             |
                 v                 v             +--(all paid, distribution)--> paid
             cancelled         cancelled

Every status change is a compare-and-set UPDATE
(``... WHERE id = :id AND status IN (:sources)``); a zero rowcount means the
campaign moved under us and the call fails with ``InvalidTransition`` without
writing anything. This is what makes the payment-deadline race safe: whichever
of ``confirm_payment`` / ``expire_payment_deadline`` / ``cancel_pending_payment``
commits first wins, the others find the status already changed.

The payment deadline lives on ``Campaign.payment_deadline``. The queue job only
triggers ``expire_payment_deadline``, which re-reads the row and acts only if the
campaign is still ``pending_payment`` and the stored deadline is the one the
job was scheduled for and has passed.

While ``active`` the ``sub_status`` follows the calendar milestones
(``evaluate_sub_status``); evaluation is idempotent.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from campaign_ledger.config import PAYMENT_SETTINGS
from campaign_ledger.database import atomic
from campaign_ledger.exceptions import (
    CampaignNotFound,
    Forbidden,
    InvalidTransition,
    NoPriceConfigured,
    ValidationError,
)
from campaign_ledger.jobs import scheduler
from campaign_ledger.models.db import Campaign, User
from campaign_ledger.models.db.enums import CampaignStatus, CampaignSubStatus, UserRole
from campaign_ledger.services import notifications
from campaign_ledger.services.ledger import to_money
from campaign_ledger.utils import ensure_utc, get_logger, log_business_event, utc_now
from campaign_ledger.utils.time import to_epoch

logger = get_logger(__name__)

DEADLINE_EXCEEDED_REASON = "payment deadline exceeded"
OPERATOR_CANCEL_REASON = "Cancelled by operator"


def _get(session: Session, campaign_id: int) -> Campaign:
    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id=campaign_id)
    return campaign


def _ensure_owner_or_admin(campaign: Campaign, actor: User) -> None:
    if actor.role != UserRole.ADMIN and campaign.user_id != actor.id:
        raise Forbidden("Only the campaign owner can do this", campaign_id=campaign.id)


def _transition(
    session: Session,
    campaign_id: int,
    sources: Iterable[CampaignStatus],
    target: CampaignStatus,
    message: str,
    **values: Any,
) -> Campaign:
    """Compare-and-set status change inside the caller's transaction."""
    sources = tuple(sources)
    stmt = (
        update(Campaign)
        .where(Campaign.id == campaign_id, Campaign.status.in_(sources))
        .values(status=target, updated_at=utc_now(), **values)
    )
    result = session.execute(stmt, execution_options={"synchronize_session": False})
    if result.rowcount == 0:
        campaign = _get(session, campaign_id)
        raise InvalidTransition(
            message,
            campaign_id=campaign_id,
            status=campaign.status.value,
            target=target.value,
        )
    campaign = session.get(Campaign, campaign_id, populate_existing=True)
    logger.info(
        "Campaign status changed",
        campaign_id=campaign_id,
        from_status=[s.value for s in sources],
        to_status=target.value,
    )
    return campaign  # type: ignore[return-value]


def _optional_money(value: Any, field_name: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return to_money(value)
    except ValidationError as e:
        raise ValidationError(f"{field_name}: {e.message}", field=field_name)

# ------------------------------- creation ------------------------------- #

def create_campaign(
    session: Session,
    sponsor: User,
    *,
    title: str,
    description: Optional[str] = None,
    price_per_post: Any = None,
    influencer_count: Optional[int] = None,
    campaign_price: Any = None,
    registration_deadline: Optional[datetime] = None,
    submission_deadline: Optional[datetime] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    submit: bool = False,
) -> Campaign:
    if not title or not title.strip():
        raise ValidationError("title is required", field="title")
    if influencer_count is not None and influencer_count < 1:
        raise ValidationError("influencer_count must be at least 1", field="influencer_count")
    milestones = [ensure_utc(d) for d in (registration_deadline, submission_deadline, start_date, end_date)]
    present = [d for d in milestones if d is not None]
    if present != sorted(present):
        raise ValidationError("Milestones must be in order: registration, submission, start, end")

    with atomic(session):
        campaign = Campaign(
            title=title.strip(),
            description=description,
            user_id=sponsor.id,
            status=CampaignStatus.ADMIN_REVIEW if submit else CampaignStatus.DRAFT,
            price_per_post=_optional_money(price_per_post, "price_per_post"),
            influencer_count=influencer_count,
            campaign_price=_optional_money(campaign_price, "campaign_price"),
            registration_deadline=milestones[0],
            submission_deadline=milestones[1],
            start_date=milestones[2],
            end_date=milestones[3],
        )
        session.add(campaign)
        session.flush()
        admin_ids = notifications.operator_ids(session) if submit else []

    log_business_event(
        event_type="campaign_created",
        details={"campaign_id": campaign.id, "status": campaign.status.value},
        user_id=sponsor.id,
    )
    if submit:
        notifications.campaign_submitted(campaign.id, campaign.title, admin_ids)
    return campaign


def submit_for_review(session: Session, campaign_id: int, actor: User) -> Campaign:
    _ensure_owner_or_admin(_get(session, campaign_id), actor)
    with atomic(session):
        campaign = _transition(
            session, campaign_id, [CampaignStatus.DRAFT], CampaignStatus.ADMIN_REVIEW,
            "Only draft campaigns can be submitted for review",
        )
        admin_ids = notifications.operator_ids(session)
    log_business_event(event_type="campaign_submitted", details={"campaign_id": campaign_id}, user_id=actor.id)
    notifications.campaign_submitted(campaign.id, campaign.title, admin_ids)
    return campaign

# ---------------------------- operator review ---------------------------- #

def approve_campaign(session: Session, campaign_id: int, operator: User) -> Campaign:
    """admin_review -> pending_payment; starts the payment deadline."""
    deadline_seconds = int(PAYMENT_SETTINGS["deadline_seconds"])
    now = utc_now()
    deadline = now + timedelta(seconds=deadline_seconds)
    with atomic(session):
        campaign = _transition(
            session, campaign_id, [CampaignStatus.ADMIN_REVIEW], CampaignStatus.PENDING_PAYMENT,
            "Only campaigns under admin review can be approved",
            reviewed_by=operator.id,
            reviewed_at=now,
            payment_deadline=deadline,
            cancellation_reason=None,
        )

    scheduler.schedule_payment_deadline(campaign_id, deadline)
    log_business_event(
        event_type="campaign_approved",
        details={"campaign_id": campaign_id, "payment_deadline": deadline},
        user_id=operator.id,
    )
    notifications.campaign_approved(campaign.id, campaign.title, campaign.user_id, deadline_seconds)
    return campaign


def reject_campaign(session: Session, campaign_id: int, operator: User, reason: Optional[str]) -> Campaign:
    if not reason or not reason.strip():
        raise ValidationError("Rejection reason is required", field="reason")
    with atomic(session):
        campaign = _transition(
            session, campaign_id, [CampaignStatus.ADMIN_REVIEW], CampaignStatus.CANCELLED,
            "Only campaigns under admin review can be rejected",
            reviewed_by=operator.id,
            reviewed_at=utc_now(),
            cancellation_reason=reason.strip(),
        )
    log_business_event(
        event_type="campaign_rejected",
        details={"campaign_id": campaign_id, "reason": reason.strip()},
        user_id=operator.id,
    )
    notifications.campaign_rejected(campaign.id, campaign.title, campaign.user_id, reason.strip())
    return campaign

# ------------------------------- payment ------------------------------- #

@dataclass(slots=True)
class PaymentQuote:
    subtotal: Decimal
    admin_fee: Decimal
    total: Decimal


def expected_amount(campaign: Campaign) -> PaymentQuote:
    """``campaign_price`` or ``price_per_post * influencer_count``, plus the admin fee."""
    admin_fee = Decimal(PAYMENT_SETTINGS["admin_fee"])
    if campaign.campaign_price is not None and Decimal(campaign.campaign_price) > 0:
        subtotal = Decimal(campaign.campaign_price)
    elif campaign.price_per_post is not None and campaign.influencer_count:
        subtotal = Decimal(campaign.price_per_post) * int(campaign.influencer_count)
    else:
        raise NoPriceConfigured(campaign_id=campaign.id)
    if subtotal <= 0:
        raise NoPriceConfigured(campaign_id=campaign.id)
    return PaymentQuote(subtotal=subtotal, admin_fee=admin_fee, total=subtotal + admin_fee)


def confirm_payment(
    session: Session,
    campaign_id: int,
    *,
    actor: Optional[User] = None,
    settled_amount: Any = None,
) -> Campaign:
    """pending_payment -> active. Wins over a deadline firing at the same moment.

    ``settled_amount`` is the amount a gateway reported as settled. User-driven
    confirmation always funds the server-side ``expected_amount`` total.
    """
    campaign = _get(session, campaign_id)
    if actor is not None:
        _ensure_owner_or_admin(campaign, actor)
        settled_amount = None
    funded = to_money(settled_amount) if settled_amount is not None else expected_amount(campaign).total
    now = utc_now()
    with atomic(session):
        campaign = _transition(
            session, campaign_id, [CampaignStatus.PENDING_PAYMENT], CampaignStatus.ACTIVE,
            "Campaign is not awaiting payment",
            sub_status=CampaignSubStatus.REGISTRATION_OPEN,
            funded_amount=funded,
            paid_at=now,
            payment_deadline=None,
        )
        admin_ids = notifications.operator_ids(session)

    scheduler.cancel_payment_deadline(campaign_id)
    log_business_event(
        event_type="campaign_payment_confirmed",
        details={"campaign_id": campaign_id, "funded_amount": funded},
        user_id=actor.id if actor else None,
    )
    notifications.campaign_payment_succeeded(campaign.id, campaign.title, campaign.user_id, admin_ids, funded)
    return campaign


def _cancel_pending(session: Session, campaign_id: int, reason: str, operator_id: Optional[int]) -> Campaign:
    with atomic(session):
        campaign = _transition(
            session, campaign_id, [CampaignStatus.PENDING_PAYMENT], CampaignStatus.CANCELLED,
            "Only campaigns awaiting payment can be cancelled",
            cancellation_reason=reason,
            payment_deadline=None,
        )
        admin_ids = notifications.operator_ids(session)
    scheduler.cancel_payment_deadline(campaign_id)
    log_business_event(
        event_type="campaign_cancelled",
        details={"campaign_id": campaign_id, "reason": reason},
        user_id=operator_id,
    )
    notifications.campaign_cancelled(campaign.id, campaign.title, campaign.user_id, admin_ids, reason)
    return campaign


def cancel_pending_payment(session: Session, campaign_id: int, operator: User, reason: Optional[str] = None) -> Campaign:
    return _cancel_pending(session, campaign_id, (reason or "").strip() or OPERATOR_CANCEL_REASON, operator.id)


def expire_payment_deadline(
    session: Session,
    campaign_id: int,
    *,
    expected_deadline_ts: Optional[float] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Timer fire. Returns True only if this call cancelled the campaign."""
    now = ensure_utc(now) or utc_now()
    campaign = session.get(Campaign, campaign_id, populate_existing=True)
    if campaign is None:
        logger.warning("Deadline fired for unknown campaign", campaign_id=campaign_id)
        return False
    if campaign.status != CampaignStatus.PENDING_PAYMENT or campaign.payment_deadline is None:
        logger.info("Deadline fired but campaign no longer awaiting payment", campaign_id=campaign_id, status=campaign.status.value)
        return False
    deadline = ensure_utc(campaign.payment_deadline)
    if expected_deadline_ts is not None and abs(to_epoch(deadline) - expected_deadline_ts) > 1.0:  # type: ignore[arg-type]
        logger.info("Stale deadline job ignored", campaign_id=campaign_id)
        return False
    if deadline > now:  # type: ignore[operator]
        return False
    try:
        _cancel_pending(session, campaign_id, DEADLINE_EXCEEDED_REASON, None)
    except InvalidTransition:
        # Payment confirmed between our read and the write
        logger.info("Deadline lost race to status change", campaign_id=campaign_id)
        return False
    logger.warning("Campaign cancelled: payment deadline exceeded", campaign_id=campaign_id)
    return True


@dataclass(slots=True)
class PaymentStatusView:
    campaign_id: int
    status: CampaignStatus
    sub_status: Optional[CampaignSubStatus]
    price_per_post: Optional[Decimal]
    influencer_count: Optional[int]
    subtotal: Optional[Decimal]
    admin_fee: Decimal
    total: Optional[Decimal]
    funded_amount: Optional[Decimal]
    payment_deadline: Optional[datetime]
    seconds_remaining: Optional[int]
    can_pay: bool
    cancellation_reason: Optional[str]


def payment_status(session: Session, campaign_id: int, viewer: User) -> PaymentStatusView:
    campaign = _get(session, campaign_id)
    _ensure_owner_or_admin(campaign, viewer)
    try:
        quote: Optional[PaymentQuote] = expected_amount(campaign)
    except NoPriceConfigured:
        quote = None
    deadline = ensure_utc(campaign.payment_deadline)
    remaining = None
    if deadline is not None:
        remaining = max(0, int((deadline - utc_now()).total_seconds()))
    can_pay = (
        campaign.status == CampaignStatus.PENDING_PAYMENT
        and quote is not None
        and (remaining is None or remaining > 0)
    )
    return PaymentStatusView(
        campaign_id=campaign.id,
        status=campaign.status,
        sub_status=campaign.sub_status,
        price_per_post=campaign.price_per_post,
        influencer_count=campaign.influencer_count,
        subtotal=quote.subtotal if quote else None,
        admin_fee=Decimal(PAYMENT_SETTINGS["admin_fee"]),
        total=quote.total if quote else None,
        funded_amount=campaign.funded_amount,
        payment_deadline=deadline,
        seconds_remaining=remaining,
        can_pay=can_pay,
        cancellation_reason=campaign.cancellation_reason,
    )

# ------------------------------ sub-status ------------------------------ #

def parse_sub_status(value: Any) -> CampaignSubStatus:
    if isinstance(value, CampaignSubStatus):
        return value
    try:
        return CampaignSubStatus(str(value))
    except ValueError:
        allowed = ", ".join(s.value for s in CampaignSubStatus)
        raise ValidationError(f"Invalid sub_status '{value}'. Allowed: {allowed}", field="sub_status")


def set_sub_status(session: Session, campaign_id: int, sub_status: Any, operator: User) -> Campaign:
    target = parse_sub_status(sub_status)
    with atomic(session):
        campaign = _get(session, campaign_id)
        if campaign.status != CampaignStatus.ACTIVE:
            raise InvalidTransition(
                "Sub-status can only change while the campaign is active",
                campaign_id=campaign_id,
                status=campaign.status.value,
            )
        previous = campaign.sub_status
        campaign.sub_status = target
        recipients = [campaign.user_id, *notifications.participant_ids(session, campaign_id)]
    log_business_event(
        event_type="campaign_sub_status_set",
        details={"campaign_id": campaign_id, "from": previous, "to": target},
        user_id=operator.id,
    )
    if previous != target:
        notifications.campaign_sub_status_changed(campaign_id, campaign.title, recipients, target.value)
    return campaign


def next_sub_status(campaign: Campaign, now: datetime) -> Optional[CampaignSubStatus]:
    """Sub-status the calendar calls for, or None when no milestone applies."""
    current = campaign.sub_status
    registration = ensure_utc(campaign.registration_deadline)
    submission = ensure_utc(campaign.submission_deadline)
    start = ensure_utc(campaign.start_date)
    end = ensure_utc(campaign.end_date)

    if end is not None and now >= end:
        return CampaignSubStatus.PAYOUT_SUCCESS if current != CampaignSubStatus.PAYOUT_SUCCESS else None
    if start is not None and now >= start:
        if current in (CampaignSubStatus.CONTENT_SUBMISSION, CampaignSubStatus.CONTENT_REVISION):
            return CampaignSubStatus.POSTING
        return None
    if submission is not None and now >= submission:
        if current in (CampaignSubStatus.STUDENT_SELECTION, CampaignSubStatus.STUDENT_CONFIRMATION):
            return CampaignSubStatus.CONTENT_SUBMISSION
        return None
    if registration is not None and now >= registration:
        if current == CampaignSubStatus.REGISTRATION_OPEN:
            return CampaignSubStatus.STUDENT_SELECTION
        return None
    if registration is not None and current is None:
        return CampaignSubStatus.REGISTRATION_OPEN
    return None


def evaluate_sub_status(session: Session, campaign_id: int, now: Optional[datetime] = None) -> Optional[CampaignSubStatus]:
    """Apply the calendar to an active campaign. Returns the new sub-status if it changed."""
    now = ensure_utc(now) or utc_now()
    with atomic(session):
        campaign = _get(session, campaign_id)
        if campaign.status != CampaignStatus.ACTIVE:
            return None
        target = next_sub_status(campaign, now)
        if target is None or target == campaign.sub_status:
            return None
        previous = campaign.sub_status
        campaign.sub_status = target
        title = campaign.title
        recipients = [campaign.user_id, *notifications.participant_ids(session, campaign_id)]
    logger.info(
        "Campaign sub-status advanced",
        campaign_id=campaign_id,
        from_sub_status=previous,
        to_sub_status=target,
    )
    notifications.campaign_sub_status_changed(campaign_id, title, recipients, target.value)
    return target


def mark_completed(session: Session, campaign_id: int, operator: User) -> Campaign:
    with atomic(session):
        campaign = _transition(
            session, campaign_id, [CampaignStatus.ACTIVE], CampaignStatus.COMPLETED,
            "Only active campaigns can be completed",
        )
        recipients = notifications.participant_ids(session, campaign_id)
    log_business_event(event_type="campaign_completed", details={"campaign_id": campaign_id}, user_id=operator.id)
    notifications.campaign_completed(campaign.id, campaign.title, campaign.user_id, recipients)
    return campaign

# -------------------------------- sweep -------------------------------- #

@dataclass(slots=True)
class SweepResult:
    expired: List[int] = field(default_factory=list)
    advanced: Dict[int, CampaignSubStatus] = field(default_factory=dict)


def sweep(session: Session, now: Optional[datetime] = None) -> SweepResult:
    """Cancel overdue unpaid campaigns and advance active sub-statuses."""
    now = ensure_utc(now) or utc_now()
    result = SweepResult()
    overdue = [
        row[0]
        for row in session.query(Campaign.id)
        .filter(
            Campaign.status == CampaignStatus.PENDING_PAYMENT,
            Campaign.payment_deadline.isnot(None),
            Campaign.payment_deadline <= now,
        )
        .all()
    ]
    for campaign_id in overdue:
        if expire_payment_deadline(session, campaign_id, now=now):
            result.expired.append(campaign_id)

    active = [row[0] for row in session.query(Campaign.id).filter(Campaign.status == CampaignStatus.ACTIVE).all()]
    for campaign_id in active:
        changed = evaluate_sub_status(session, campaign_id, now=now)
        if changed is not None:
            result.advanced[campaign_id] = changed

    if result.expired or result.advanced:
        logger.info("Lifecycle sweep applied changes", expired=result.expired, advanced=len(result.advanced))
    return result


__all__ = [
    "DEADLINE_EXCEEDED_REASON",
    "OPERATOR_CANCEL_REASON",
    "create_campaign",
    "submit_for_review",
    "approve_campaign",
    "reject_campaign",
    "PaymentQuote",
    "expected_amount",
    "confirm_payment",
    "cancel_pending_payment",
    "expire_payment_deadline",
    "PaymentStatusView",
    "payment_status",
    "parse_sub_status",
    "set_sub_status",
    "next_sub_status",
    "evaluate_sub_status",
    "mark_completed",
    "SweepResult",
    "sweep",
]
