"""
Campaign payout endpoints: pay participants and settle the campaign budget.

Batch endpoints always answer 200 with per-item results; one failing
participant never blocks the others.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
import time
from campaign_ledger.api.deps import get_db, get_current_user, require_admin, internal_error
from campaign_ledger.exceptions import CampaignNotFound, Forbidden, LedgerServiceError
from campaign_ledger.models.db import Campaign, User
from campaign_ledger.models.db.enums import UserRole
from campaign_ledger.models.schemas.base import ResponseBase
from campaign_ledger.models.schemas.distribution import (
    PayStudentRequest,
    PayAllRequest,
    PayCustomRequest,
    SettleRequest,
    SettlementRead,
    PayoutItemRead,
    BatchPayoutRead,
    CampaignPaymentSummaryRead,
)
from campaign_ledger.services import distribution
from campaign_ledger.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)


def _batch_data(batch: distribution.BatchPayoutResult) -> dict:
    return BatchPayoutRead.model_validate(batch).model_dump(mode="json")


@router.post(
    "/pay-student",
    response_model=ResponseBase,
    summary="Pay one participant",
    description="Credit a participant's balance for a campaign and mark the participation paid"
)
async def pay_student(
    payload: PayStudentRequest,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "Participant payout started",
        participation_id=payload.participation_id,
        amount=payload.amount,
        admin_id=admin.id,
        request_id=request_id
    )

    try:
        result = distribution.pay_participant(
            db, payload.participation_id, payload.amount, payload.description
        )

        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="pay_student",
            duration_ms=duration_ms,
            additional_data={"participation_id": payload.participation_id}
        )

        data = {"payout": PayoutItemRead.model_validate(result).model_dump(mode="json")}
        if result.settlement is not None:
            data["settlement"] = SettlementRead.model_validate(result.settlement).model_dump(mode="json")
        return ResponseBase(message="Participant paid", data=data)

    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Participant payout", e, request_id, participation_id=payload.participation_id)


@router.post(
    "/pay-all",
    response_model=ResponseBase,
    summary="Pay every eligible participant",
    description="Pay price_per_post to each accepted participant with approved work that is still unpaid"
)
async def pay_all(
    payload: PayAllRequest,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info("Pay-all started", campaign_id=payload.campaign_id, admin_id=admin.id, request_id=request_id)

    try:
        batch = distribution.pay_all_accepted(db, payload.campaign_id)

        log_business_event(
            event_type="campaign_pay_all",
            details={
                "campaign_id": payload.campaign_id,
                "paid": batch.paid_count,
                "failed": batch.failed_count,
                "skipped": batch.skipped_count,
                "total_paid": batch.total_paid,
            },
            user_id=admin.id,
            request_id=request_id
        )
        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="pay_all",
            duration_ms=duration_ms,
            additional_data={"campaign_id": payload.campaign_id, "items": len(batch.results)}
        )

        return ResponseBase(
            message=f"Paid {batch.paid_count} participant(s), {batch.failed_count} failed",
            data=_batch_data(batch)
        )

    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Pay-all", e, request_id, campaign_id=payload.campaign_id)


@router.post(
    "/pay-custom",
    response_model=ResponseBase,
    summary="Pay an explicit list of participants",
    description="Every amount is validated before any money moves"
)
async def pay_custom(
    payload: PayCustomRequest,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info("Custom payout started", items=len(payload.payments), admin_id=admin.id, request_id=request_id)

    try:
        batch = distribution.pay_custom(db, payload.payments)

        log_business_event(
            event_type="campaign_pay_custom",
            details={
                "items": len(payload.payments),
                "paid": batch.paid_count,
                "failed": batch.failed_count,
                "total_paid": batch.total_paid,
            },
            user_id=admin.id,
            request_id=request_id
        )
        duration_ms = (time.time() - start_time) * 1000
        log_performance(operation="pay_custom", duration_ms=duration_ms, additional_data={"items": len(batch.results)})

        return ResponseBase(
            message=f"Paid {batch.paid_count} participant(s), {batch.failed_count} failed",
            data=_batch_data(batch)
        )

    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Custom payout", e, request_id)


@router.post(
    "/settle",
    response_model=ResponseBase,
    summary="Settle a campaign",
    description="Mark the campaign paid and refund the unspent budget once every eligible participant is paid"
)
async def settle(
    payload: SettleRequest,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        result = distribution.settle_campaign(db, payload.campaign_id)
        return ResponseBase(
            message="Campaign settled" if result.settled else "Campaign not ready for settlement",
            data=SettlementRead.model_validate(result).model_dump(mode="json")
        )
    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Campaign settlement", e, request_id, campaign_id=payload.campaign_id)


@router.get(
    "/summary/{campaign_id}",
    response_model=ResponseBase,
    summary="Campaign payment summary",
    description="Funded, distributed and refunded amounts plus unpaid eligible participations"
)
async def payment_summary(
    campaign_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id=campaign_id)
    if current_user.role != UserRole.ADMIN and campaign.user_id != current_user.id:
        raise Forbidden("Access denied", campaign_id=campaign_id)
    summary = distribution.campaign_payment_summary(db, campaign_id)
    return ResponseBase(data=CampaignPaymentSummaryRead.model_validate(summary).model_dump(mode="json"))
