"""Participation and deliverable workflow feeding payout eligibility.

A participation is payable once its ``application_status`` is ``accepted``
and at least one of its work submissions is ``approved``.
"""
from __future__ import annotations

from typing import Any, List, Optional

from sqlalchemy.orm import Session

from campaign_ledger.database import atomic
from campaign_ledger.exceptions import (
    CampaignNotFound,
    Forbidden,
    InvalidTransition,
    NotFound,
    ParticipationNotFound,
    ValidationError,
)
from campaign_ledger.models.db import Campaign, Participation, User, WorkSubmission
from campaign_ledger.models.db.enums import (
    ApplicationStatus,
    CampaignStatus,
    DeliverableStatus,
    UserRole,
)
from campaign_ledger.utils import get_logger, log_business_event, utc_now

logger = get_logger(__name__)

REVIEWABLE_DELIVERABLE_STATES = frozenset({
    DeliverableStatus.APPROVED,
    DeliverableStatus.REJECTED,
    DeliverableStatus.REVISION_REQUESTED,
    DeliverableStatus.UNDER_REVIEW,
})


def _participation(session: Session, participation_id: int) -> Participation:
    participation = session.get(Participation, participation_id)
    if participation is None:
        raise ParticipationNotFound(participation_id=participation_id)
    return participation


def _ensure_campaign_manager(campaign: Campaign, actor: User) -> None:
    if actor.role != UserRole.ADMIN and campaign.user_id != actor.id:
        raise Forbidden("Only the campaign owner or an operator can do this", campaign_id=campaign.id)


def apply_to_campaign(session: Session, campaign_id: int, participant: User, notes: Optional[str] = None) -> Participation:
    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id=campaign_id)
    if campaign.status != CampaignStatus.ACTIVE:
        raise InvalidTransition("Campaign is not open for applications", campaign_id=campaign_id, status=campaign.status.value)
    existing = (
        session.query(Participation)
        .filter(Participation.campaign_id == campaign_id, Participation.user_id == participant.id)
        .one_or_none()
    )
    if existing is not None:
        raise InvalidTransition("Already applied to this campaign", participation_id=existing.id)
    with atomic(session):
        participation = Participation(
            campaign_id=campaign_id,
            user_id=participant.id,
            application_status=ApplicationStatus.PENDING,
            application_notes=notes,
        )
        session.add(participation)
    log_business_event(
        event_type="participation_applied",
        details={"campaign_id": campaign_id, "participation_id": participation.id},
        user_id=participant.id,
    )
    return participation


def set_application_status(session: Session, participation_id: int, status: Any, actor: User) -> Participation:
    try:
        target = ApplicationStatus(status) if not isinstance(status, ApplicationStatus) else status
    except ValueError:
        raise ValidationError(f"Invalid application_status '{status}'", field="application_status")
    if target not in (ApplicationStatus.ACCEPTED, ApplicationStatus.REJECTED):
        raise ValidationError("Applications can only be accepted or rejected", field="application_status")

    with atomic(session):
        participation = _participation(session, participation_id)
        _ensure_campaign_manager(participation.campaign, actor)
        if participation.application_status != ApplicationStatus.PENDING:
            raise InvalidTransition(
                "Only pending applications can be decided",
                participation_id=participation_id,
                status=participation.application_status.value,
            )
        participation.application_status = target
        if target == ApplicationStatus.ACCEPTED:
            participation.accepted_at = utc_now()
        else:
            participation.rejected_at = utc_now()
    log_business_event(
        event_type="participation_decided",
        details={"participation_id": participation_id, "application_status": target},
        user_id=actor.id,
    )
    return participation


def submit_work(session: Session, participation_id: int, participant: User, content_url: Optional[str]) -> WorkSubmission:
    if not content_url or not content_url.strip():
        raise ValidationError("content_url is required", field="content_url")
    with atomic(session):
        participation = _participation(session, participation_id)
        if participation.user_id != participant.id:
            raise Forbidden("Not your participation", participation_id=participation_id)
        if participation.application_status != ApplicationStatus.ACCEPTED:
            raise InvalidTransition("Only accepted participants can submit work", participation_id=participation_id)
        submission = WorkSubmission(
            participation_id=participation_id,
            content_url=content_url.strip(),
            status=DeliverableStatus.PENDING,
        )
        session.add(submission)
    return submission


def review_work_submission(
    session: Session,
    submission_id: int,
    status: Any,
    actor: User,
    notes: Optional[str] = None,
) -> WorkSubmission:
    try:
        target = DeliverableStatus(status) if not isinstance(status, DeliverableStatus) else status
    except ValueError:
        raise ValidationError(f"Invalid deliverable status '{status}'", field="status")
    if target not in REVIEWABLE_DELIVERABLE_STATES:
        raise ValidationError("Deliverables can only move to under_review, approved, rejected or revision_requested")

    with atomic(session):
        submission = session.get(WorkSubmission, submission_id)
        if submission is None:
            raise NotFound("Work submission not found", submission_id=submission_id)
        _ensure_campaign_manager(submission.participation.campaign, actor)
        if submission.status == DeliverableStatus.APPROVED:
            raise InvalidTransition("Approved deliverables cannot be reviewed again", submission_id=submission_id)
        submission.status = target
        submission.review_notes = notes
        submission.reviewed_by = actor.id
        submission.reviewed_at = utc_now()
    log_business_event(
        event_type="deliverable_reviewed",
        details={"submission_id": submission_id, "status": target},
        user_id=actor.id,
    )
    return submission


def list_participations(session: Session, campaign_id: int, status: Optional[ApplicationStatus] = None) -> List[Participation]:
    query = session.query(Participation).filter(Participation.campaign_id == campaign_id)
    if status is not None:
        query = query.filter(Participation.application_status == status)
    return query.order_by(Participation.id).all()


__all__ = [
    "apply_to_campaign",
    "set_application_status",
    "submit_work",
    "review_work_submission",
    "list_participations",
]
