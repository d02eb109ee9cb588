"""Payment distribution engine.

Entry points
------------
* ``pay_participant``   one participation, explicit amount.
* ``pay_all_accepted``  every eligible participation at the campaign's ``price_per_post``.
* ``pay_custom``        explicit (participation, amount, description) list.
* ``settle_campaign``   re-run the "everyone paid? refund what is left" check.

Every payout is its own transaction: ledger credit, participation marked paid
and the settlement check commit together or not at all. Batches process items
sequentially; a failed item is reported in the result list and never rolls back
items that already succeeded.

Settlement derives the refund from the ledger each time
(``funded - distributed - already_refunded``), so running it again without a new
payout cannot refund twice.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from campaign_ledger.database import atomic
from campaign_ledger.exceptions import (
    CampaignNotFound,
    InvalidAmount,
    InvalidTransition,
    LedgerServiceError,
    NoPriceConfigured,
    ParticipationAlreadyPaid,
    ParticipationNotFound,
    ValidationError,
)
from campaign_ledger.models.db import Campaign, LedgerEntry, Participation, Payment, WorkSubmission
from campaign_ledger.models.db.enums import (
    ApplicationStatus,
    CampaignStatus,
    CampaignSubStatus,
    DeliverableStatus,
    EntryCategory,
    EntryDirection,
    ParticipationPaymentStatus,
    PaymentStatus,
    ReferenceType,
)
from campaign_ledger.services import notifications
from campaign_ledger.services.ledger import Reference, credit, to_money
from campaign_ledger.utils import get_logger, log_business_event, utc_now

logger = get_logger(__name__)

PAYABLE_CAMPAIGN_STATUSES = frozenset({CampaignStatus.ACTIVE, CampaignStatus.COMPLETED})

ZERO = Decimal("0.00")


@dataclass(slots=True)
class SettlementResult:
    campaign_id: int
    settled: bool
    status: CampaignStatus
    eligible_count: int
    paid_count: int
    funded_amount: Decimal
    distributed_amount: Decimal
    refunded_amount: Decimal
    refund_amount: Decimal = ZERO
    refund_entry_id: Optional[int] = None
    status_changed: bool = False


@dataclass(slots=True)
class PayoutResult:
    participation_id: Any
    success: bool
    amount: Optional[Decimal] = None
    user_id: Optional[int] = None
    entry_id: Optional[int] = None
    balance_after: Optional[Decimal] = None
    error: Optional[str] = None
    code: Optional[str] = None
    settlement: Optional[SettlementResult] = None


@dataclass(slots=True)
class BatchPayoutResult:
    campaign_id: Optional[int]
    results: List[PayoutResult] = field(default_factory=list)
    skipped_count: int = 0
    settlement: Optional[SettlementResult] = None

    @property
    def paid_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def total_paid(self) -> Decimal:
        return sum((r.amount for r in self.results if r.success and r.amount is not None), ZERO)


@dataclass(slots=True)
class CustomPayment:
    participation_id: int
    amount: Decimal
    description: Optional[str] = None


@dataclass(slots=True)
class CampaignPaymentSummary:
    campaign_id: int
    title: str
    status: CampaignStatus
    price_per_post: Optional[Decimal]
    influencer_count: Optional[int]
    eligible_count: int
    paid_count: int
    unpaid_participation_ids: List[int]
    funded_amount: Decimal
    distributed_amount: Decimal
    refunded_amount: Decimal

    @property
    def remaining_amount(self) -> Decimal:
        return self.funded_amount - self.distributed_amount - self.refunded_amount


def _money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(ZERO)

# ------------------------------ budget reads ------------------------------ #

def _eligible_query(session: Session, campaign_id: int):
    """Accepted participations with at least one approved deliverable."""
    approved = select(WorkSubmission.participation_id).where(WorkSubmission.status == DeliverableStatus.APPROVED)
    return session.query(Participation).filter(
        Participation.campaign_id == campaign_id,
        Participation.application_status == ApplicationStatus.ACCEPTED,
        Participation.id.in_(approved),
    )


def funded_amount(session: Session, campaign: Campaign) -> Decimal:
    """Successful gateway payments for the campaign, else the recorded funded_amount."""
    total = (
        session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.campaign_id == campaign.id, Payment.status == PaymentStatus.SUCCESS)
        .scalar()
    )
    total = _money(total)
    if total > 0:
        return total
    return _money(campaign.funded_amount)


def distributed_amount(session: Session, campaign_id: int) -> Decimal:
    participation_ids = select(Participation.id).where(Participation.campaign_id == campaign_id)
    total = (
        session.query(func.coalesce(func.sum(LedgerEntry.amount), 0))
        .filter(
            LedgerEntry.category == EntryCategory.CAMPAIGN_PAYMENT,
            LedgerEntry.direction == EntryDirection.CREDIT,
            LedgerEntry.reference_type == ReferenceType.PARTICIPATION,
            LedgerEntry.reference_id.in_(participation_ids),
        )
        .scalar()
    )
    return _money(total)


def refunded_amount(session: Session, campaign_id: int) -> Decimal:
    total = (
        session.query(func.coalesce(func.sum(LedgerEntry.amount), 0))
        .filter(
            LedgerEntry.category == EntryCategory.REFUND,
            LedgerEntry.reference_type == ReferenceType.CAMPAIGN,
            LedgerEntry.reference_id == campaign_id,
        )
        .scalar()
    )
    return _money(total)

# ------------------------------- settlement ------------------------------- #

def _settle_locked(session: Session, campaign_id: int) -> SettlementResult:
    """Settlement check inside the caller's transaction (campaign row locked)."""
    campaign = (
        session.query(Campaign)
        .filter(Campaign.id == campaign_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if campaign is None:
        raise CampaignNotFound(campaign_id=campaign_id)

    eligible = _eligible_query(session, campaign_id)
    eligible_count = eligible.count()
    paid_count = eligible.filter(Participation.payment_status == ParticipationPaymentStatus.PAID).count()
    funded = funded_amount(session, campaign)
    distributed = distributed_amount(session, campaign_id)
    refunded = refunded_amount(session, campaign_id)

    result = SettlementResult(
        campaign_id=campaign_id,
        settled=False,
        status=campaign.status,
        eligible_count=eligible_count,
        paid_count=paid_count,
        funded_amount=funded,
        distributed_amount=distributed,
        refunded_amount=refunded,
    )
    if eligible_count == 0 or paid_count < eligible_count:
        return result

    if campaign.status != CampaignStatus.PAID:
        campaign.status = CampaignStatus.PAID
        campaign.sub_status = CampaignSubStatus.PAYOUT_SUCCESS
        result.status_changed = True
    result.settled = True
    result.status = campaign.status

    remaining = funded - distributed - refunded
    if remaining > 0:
        entry = credit(
            session,
            campaign.user_id,
            remaining,
            EntryCategory.REFUND,
            Reference.campaign(campaign_id),
            description=f"Refund of remaining budget for campaign: {campaign.title}",
        )
        result.refund_amount = remaining
        result.refund_entry_id = entry.id
        result.refunded_amount = refunded + remaining
    elif remaining < 0:
        logger.warning(
            "Campaign distributed more than it was funded",
            campaign_id=campaign_id,
            funded=funded,
            distributed=distributed,
        )
    return result


def _after_settlement(session: Session, settlement: Optional[SettlementResult]) -> None:
    if settlement is None or not settlement.settled:
        return
    log_business_event(
        event_type="campaign_settled",
        details={
            "campaign_id": settlement.campaign_id,
            "funded": settlement.funded_amount,
            "distributed": settlement.distributed_amount,
            "refund": settlement.refund_amount,
        },
    )
    campaign = session.get(Campaign, settlement.campaign_id)
    if campaign is None:
        return
    if settlement.status_changed:
        notifications.campaign_paid(campaign.id, campaign.title, campaign.user_id, notifications.operator_ids(session))
    if settlement.refund_amount > 0:
        notifications.campaign_refund_issued(campaign.user_id, campaign.id, campaign.title, settlement.refund_amount)


def settle_campaign(session: Session, campaign_id: int) -> SettlementResult:
    with atomic(session):
        settlement = _settle_locked(session, campaign_id)
    _after_settlement(session, settlement)
    return settlement

# -------------------------------- payouts -------------------------------- #

def pay_participant(
    session: Session,
    participation_id: int,
    amount: Any,
    description: Optional[str] = None,
) -> PayoutResult:
    """Credit one participant and mark the participation paid.

    Raises:
        InvalidAmount: amount <= 0
        ParticipationNotFound: unknown participation id
        ParticipationAlreadyPaid: participation was paid before
        InvalidTransition: campaign is not active/completed
        AccountNotFound: participant account does not resolve
    """
    value = to_money(amount)
    with atomic(session):
        participation = (
            session.query(Participation)
            .filter(Participation.id == participation_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if participation is None:
            raise ParticipationNotFound(participation_id=participation_id)
        if participation.payment_status == ParticipationPaymentStatus.PAID:
            raise ParticipationAlreadyPaid(participation_id=participation_id)
        campaign = participation.campaign
        if campaign.status not in PAYABLE_CAMPAIGN_STATUSES:
            raise InvalidTransition(
                f"Campaign is not payable in status '{campaign.status.value}'",
                campaign_id=campaign.id,
                status=campaign.status.value,
            )
        campaign_id = campaign.id
        title = campaign.title
        user_id = participation.user_id

        entry = credit(
            session,
            user_id,
            value,
            EntryCategory.CAMPAIGN_PAYMENT,
            Reference.participation(participation_id),
            description=description or f"Payment for campaign: {title}",
        )
        participation.payment_status = ParticipationPaymentStatus.PAID
        participation.paid_at = utc_now()
        # autoflush is off; the paid count below must see this row
        session.flush()
        settlement = _settle_locked(session, campaign_id)
        result = PayoutResult(
            participation_id=participation_id,
            success=True,
            amount=value,
            user_id=user_id,
            entry_id=entry.id,
            balance_after=Decimal(entry.balance_after),
            settlement=settlement,
        )

    logger.info("Participant paid", participation_id=participation_id, user_id=user_id, amount=value)
    log_business_event(
        event_type="participant_paid",
        details={"participation_id": participation_id, "campaign_id": campaign_id, "amount": value, "entry_id": result.entry_id},
        user_id=user_id,
    )
    notifications.payout_received(user_id, campaign_id, title, value)
    _after_settlement(session, settlement)
    return result


def _pay_isolated(session: Session, participation_id: Any, amount: Decimal, description: Optional[str] = None) -> PayoutResult:
    try:
        return pay_participant(session, participation_id, amount, description)
    except LedgerServiceError as e:
        logger.warning(
            "Payout item failed",
            participation_id=participation_id,
            error=e.message,
            code=e.code,
        )
        return PayoutResult(participation_id=participation_id, success=False, amount=amount, error=e.message, code=e.code)
    except Exception as e:
        logger.error("Payout item failed unexpectedly", participation_id=participation_id, error=str(e), exc_info=True)
        return PayoutResult(participation_id=participation_id, success=False, amount=amount, error=str(e), code="internal_error")


def pay_all_accepted(session: Session, campaign_id: int) -> BatchPayoutResult:
    """Pay every eligible, still-unpaid participation ``price_per_post``."""
    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id=campaign_id)
    try:
        price = to_money(campaign.price_per_post)
    except InvalidAmount:
        raise NoPriceConfigured(campaign_id=campaign_id)

    rows = _eligible_query(session, campaign_id).order_by(Participation.id).all()
    pending_ids = [p.id for p in rows if p.payment_status != ParticipationPaymentStatus.PAID]
    batch = BatchPayoutResult(campaign_id=campaign_id, skipped_count=len(rows) - len(pending_ids))

    for participation_id in pending_ids:
        result = _pay_isolated(session, participation_id, price)
        batch.results.append(result)
        if result.settlement is not None:
            batch.settlement = result.settlement

    logger.info(
        "Pay-all finished",
        campaign_id=campaign_id,
        paid=batch.paid_count,
        failed=batch.failed_count,
        skipped=batch.skipped_count,
    )
    return batch


def _coerce_custom(items: Iterable[Any]) -> List[CustomPayment]:
    parsed: List[CustomPayment] = []
    for index, item in enumerate(items):
        get = item.get if isinstance(item, Mapping) else (lambda key, _item=item: getattr(_item, key, None))
        participation_id = get("participation_id")
        if participation_id is None:
            raise ValidationError("participation_id is required", index=index)
        try:
            amount = to_money(get("amount"))
        except InvalidAmount:
            raise InvalidAmount(f"Invalid amount for item {index}: amounts must be greater than 0", index=index)
        parsed.append(CustomPayment(participation_id=participation_id, amount=amount, description=get("description")))
    if not parsed:
        raise ValidationError("payments list must not be empty")
    return parsed


def pay_custom(session: Session, payments: Iterable[Any]) -> BatchPayoutResult:
    """Pay an explicit list; every amount is validated before any money moves."""
    items = _coerce_custom(payments)
    batch = BatchPayoutResult(campaign_id=None)
    campaign_ids = set()
    for item in items:
        result = _pay_isolated(session, item.participation_id, item.amount, item.description)
        batch.results.append(result)
        if result.settlement is not None:
            campaign_ids.add(result.settlement.campaign_id)
            batch.settlement = result.settlement
    if len(campaign_ids) == 1:
        batch.campaign_id = campaign_ids.pop()
    logger.info("Custom payout finished", items=len(items), paid=batch.paid_count, failed=batch.failed_count)
    return batch


def campaign_payment_summary(session: Session, campaign_id: int) -> CampaignPaymentSummary:
    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id=campaign_id)
    eligible = _eligible_query(session, campaign_id).order_by(Participation.id).all()
    paid = [p for p in eligible if p.payment_status == ParticipationPaymentStatus.PAID]
    return CampaignPaymentSummary(
        campaign_id=campaign.id,
        title=campaign.title,
        status=campaign.status,
        price_per_post=campaign.price_per_post,
        influencer_count=campaign.influencer_count,
        eligible_count=len(eligible),
        paid_count=len(paid),
        unpaid_participation_ids=[p.id for p in eligible if p.payment_status != ParticipationPaymentStatus.PAID],
        funded_amount=funded_amount(session, campaign),
        distributed_amount=distributed_amount(session, campaign_id),
        refunded_amount=refunded_amount(session, campaign_id),
    )


__all__ = [
    "SettlementResult",
    "PayoutResult",
    "BatchPayoutResult",
    "CustomPayment",
    "CampaignPaymentSummary",
    "funded_amount",
    "distributed_amount",
    "refunded_amount",
    "settle_campaign",
    "pay_participant",
    "pay_all_accepted",
    "pay_custom",
    "campaign_payment_summary",
]
