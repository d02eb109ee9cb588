"""
Campaign lifecycle endpoints with comprehensive logging.

Covers sponsor creation and submission, operator review, the payment window,
sub-status management and the participation / deliverable workflow that feeds
payout eligibility.
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
import time
from campaign_ledger.api.deps import (
    get_db, get_current_user, require_admin, require_role, get_pagination_params, internal_error
)
from campaign_ledger.exceptions import CampaignNotFound, Forbidden, LedgerServiceError
from campaign_ledger.models.db import Campaign, User
from campaign_ledger.models.db.enums import ApplicationStatus, CampaignStatus, UserRole
from campaign_ledger.models.schemas.base import ResponseBase
from campaign_ledger.models.schemas.campaigns import (
    CampaignCreate,
    CampaignRead,
    CampaignReject,
    CampaignCancel,
    SubStatusUpdate,
    PaymentStatusRead,
    ParticipationCreate,
    ParticipationRead,
    ApplicationDecision,
    WorkSubmissionCreate,
    WorkSubmissionRead,
    DeliverableReview,
)
from campaign_ledger.services import campaign_lifecycle, participations
from campaign_ledger.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


def _campaign_data(campaign: Campaign) -> dict:
    return {"campaign": CampaignRead.model_validate(campaign).model_dump(mode="json")}


@router.post(
    "/",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Create new campaign",
    description="Create a campaign as a draft, or send it straight to admin review with submit=true"
)
async def create_campaign(
    campaign_data: CampaignCreate,
    request: Request,
    sponsor: User = Depends(require_role(UserRole.SPONSOR, UserRole.ADMIN)),
    db: Session = Depends(get_db)
) -> ResponseBase:
    """Create a new campaign owned by the caller."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "Campaign creation started",
        title=campaign_data.title,
        sponsor_id=sponsor.id,
        submit=campaign_data.submit,
        request_id=request_id
    )

    try:
        campaign = campaign_lifecycle.create_campaign(db, sponsor, **campaign_data.model_dump())

        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="create_campaign",
            duration_ms=duration_ms,
            additional_data={"campaign_id": campaign.id}
        )

        logger.info(
            "Campaign created successfully",
            campaign_id=campaign.id,
            status=campaign.status,
            duration_ms=duration_ms,
            request_id=request_id
        )
        return ResponseBase(message="Campaign created", data=_campaign_data(campaign))

    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Campaign creation", e, request_id, title=campaign_data.title)


@router.get(
    "/",
    response_model=ResponseBase,
    summary="List campaigns",
    description="Operators see every campaign; sponsors see their own"
)
async def list_campaigns(
    request: Request,
    status_filter: Optional[CampaignStatus] = Query(None, alias="status"),
    pagination: dict = Depends(get_pagination_params),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        query = db.query(Campaign)
        if current_user.role != UserRole.ADMIN:
            query = query.filter(Campaign.user_id == current_user.id)
        if status_filter is not None:
            query = query.filter(Campaign.status == status_filter)
        campaigns = query.order_by(Campaign.id.desc()).offset(pagination["offset"]).limit(pagination["limit"]).all()
        return ResponseBase(data={
            "campaigns": [CampaignRead.model_validate(c).model_dump(mode="json") for c in campaigns],
            "count": len(campaigns),
        })
    except Exception as e:
        raise internal_error("Campaign listing", e, request_id)


@router.get(
    "/{campaign_id}",
    response_model=ResponseBase,
    summary="Get campaign"
)
async def get_campaign(
    campaign_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id=campaign_id)
    # Participants may look up campaigns they can apply to
    if current_user.role == UserRole.SPONSOR and campaign.user_id != current_user.id:
        raise Forbidden("Access denied", campaign_id=campaign_id)
    return ResponseBase(data=_campaign_data(campaign))


@router.post(
    "/{campaign_id}/submit",
    response_model=ResponseBase,
    summary="Submit a draft for admin review"
)
async def submit_campaign(
    campaign_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    campaign = campaign_lifecycle.submit_for_review(db, campaign_id, current_user)
    return ResponseBase(message="Campaign submitted for review", data=_campaign_data(campaign))


@router.put(
    "/{campaign_id}/approve",
    response_model=ResponseBase,
    summary="Approve a campaign",
    description="Moves the campaign to pending_payment and starts the payment deadline"
)
async def approve_campaign(
    campaign_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info("Campaign approval started", campaign_id=campaign_id, admin_id=admin.id, request_id=request_id)
    try:
        campaign = campaign_lifecycle.approve_campaign(db, campaign_id, admin)
        return ResponseBase(message="Campaign approved; awaiting payment", data=_campaign_data(campaign))
    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Campaign approval", e, request_id, campaign_id=campaign_id)


@router.put(
    "/{campaign_id}/reject",
    response_model=ResponseBase,
    summary="Reject a campaign under review"
)
async def reject_campaign(
    campaign_id: int,
    payload: CampaignReject,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info("Campaign rejection started", campaign_id=campaign_id, admin_id=admin.id, request_id=request_id)
    try:
        campaign = campaign_lifecycle.reject_campaign(db, campaign_id, admin, payload.reason)
        return ResponseBase(message="Campaign rejected", data=_campaign_data(campaign))
    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Campaign rejection", e, request_id, campaign_id=campaign_id)


@router.post(
    "/{campaign_id}/pay",
    response_model=ResponseBase,
    summary="Confirm campaign payment",
    description="Simulated payment confirmation for the expected total; activates a campaign awaiting payment"
)
async def pay_campaign(
    campaign_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info("Campaign payment confirmation started", campaign_id=campaign_id, user_id=current_user.id, request_id=request_id)
    try:
        campaign = campaign_lifecycle.confirm_payment(db, campaign_id, actor=current_user)
        return ResponseBase(message="Payment confirmed; campaign is active", data=_campaign_data(campaign))
    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Campaign payment confirmation", e, request_id, campaign_id=campaign_id)


@router.put(
    "/{campaign_id}/cancel-payment",
    response_model=ResponseBase,
    summary="Cancel a campaign awaiting payment"
)
async def cancel_payment(
    campaign_id: int,
    request: Request,
    payload: Optional[CampaignCancel] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        campaign = campaign_lifecycle.cancel_pending_payment(
            db, campaign_id, admin, reason=payload.reason if payload else None
        )
        return ResponseBase(message="Campaign cancelled", data=_campaign_data(campaign))
    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Campaign cancellation", e, request_id, campaign_id=campaign_id)


@router.get(
    "/{campaign_id}/payment-status",
    response_model=ResponseBase,
    summary="Payment window status",
    description="Expected amount, deadline and seconds remaining for a campaign"
)
async def get_payment_status(
    campaign_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    view = campaign_lifecycle.payment_status(db, campaign_id, current_user)
    return ResponseBase(data=PaymentStatusRead.model_validate(view).model_dump(mode="json"))


@router.put(
    "/{campaign_id}/sub-status",
    response_model=ResponseBase,
    summary="Set the sub-status of an active campaign"
)
async def update_sub_status(
    campaign_id: int,
    payload: SubStatusUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    campaign = campaign_lifecycle.set_sub_status(db, campaign_id, payload.sub_status, admin)
    return ResponseBase(message="Sub-status updated", data=_campaign_data(campaign))


@router.post(
    "/{campaign_id}/evaluate",
    response_model=ResponseBase,
    summary="Advance the sub-status from the milestone calendar"
)
async def evaluate_sub_status(
    campaign_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    changed = campaign_lifecycle.evaluate_sub_status(db, campaign_id)
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id=campaign_id)
    data = _campaign_data(campaign)
    data["changed"] = changed is not None
    return ResponseBase(message="Sub-status advanced" if changed else "No change", data=data)


@router.put(
    "/{campaign_id}/complete",
    response_model=ResponseBase,
    summary="Mark an active campaign completed"
)
async def complete_campaign(
    campaign_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    campaign = campaign_lifecycle.mark_completed(db, campaign_id, admin)
    return ResponseBase(message="Campaign completed", data=_campaign_data(campaign))

# ----------------------------- participations ----------------------------- #

@router.post(
    "/{campaign_id}/participations",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Apply to a campaign"
)
async def apply_to_campaign(
    campaign_id: int,
    payload: Optional[ParticipationCreate] = None,
    participant: User = Depends(require_role(UserRole.PARTICIPANT)),
    db: Session = Depends(get_db)
) -> ResponseBase:
    participation = participations.apply_to_campaign(
        db, campaign_id, participant, payload.notes if payload else None
    )
    return ResponseBase(
        message="Application submitted",
        data={"participation": ParticipationRead.model_validate(participation).model_dump(mode="json")}
    )


@router.get(
    "/{campaign_id}/participations",
    response_model=ResponseBase,
    summary="List campaign participations"
)
async def list_campaign_participations(
    campaign_id: int,
    application_status: Optional[ApplicationStatus] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id=campaign_id)
    if current_user.role != UserRole.ADMIN and campaign.user_id != current_user.id:
        raise Forbidden("Access denied", campaign_id=campaign_id)
    rows = participations.list_participations(db, campaign_id, application_status)
    return ResponseBase(data={
        "participations": [ParticipationRead.model_validate(p).model_dump(mode="json") for p in rows],
        "count": len(rows),
    })


@router.put(
    "/participations/{participation_id}/status",
    response_model=ResponseBase,
    summary="Accept or reject an application"
)
async def decide_application(
    participation_id: int,
    payload: ApplicationDecision,
    current_user: User = Depends(require_role(UserRole.SPONSOR, UserRole.ADMIN)),
    db: Session = Depends(get_db)
) -> ResponseBase:
    participation = participations.set_application_status(
        db, participation_id, payload.application_status, current_user
    )
    return ResponseBase(
        message=f"Application {participation.application_status.value}",
        data={"participation": ParticipationRead.model_validate(participation).model_dump(mode="json")}
    )


@router.post(
    "/participations/{participation_id}/submissions",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Submit work for an accepted participation"
)
async def submit_work(
    participation_id: int,
    payload: WorkSubmissionCreate,
    participant: User = Depends(require_role(UserRole.PARTICIPANT)),
    db: Session = Depends(get_db)
) -> ResponseBase:
    submission = participations.submit_work(db, participation_id, participant, payload.content_url)
    return ResponseBase(
        message="Work submitted",
        data={"submission": WorkSubmissionRead.model_validate(submission).model_dump(mode="json")}
    )


@router.put(
    "/submissions/{submission_id}/review",
    response_model=ResponseBase,
    summary="Review a deliverable",
    description="Approved deliverables make an accepted participation eligible for payout"
)
async def review_submission(
    submission_id: int,
    payload: DeliverableReview,
    current_user: User = Depends(require_role(UserRole.SPONSOR, UserRole.ADMIN)),
    db: Session = Depends(get_db)
) -> ResponseBase:
    submission = participations.review_work_submission(
        db, submission_id, payload.status, current_user, payload.notes
    )
    return ResponseBase(
        message=f"Deliverable {submission.status.value}",
        data={"submission": WorkSubmissionRead.model_validate(submission).model_dump(mode="json")}
    )
