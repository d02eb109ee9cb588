"""
Pydantic schemas for the campaign lifecycle, participations and deliverables.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import (
    ApplicationStatus,
    CampaignStatus,
    CampaignSubStatus,
    DeliverableStatus,
    ParticipationPaymentStatus,
)


class CampaignCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    description: Optional[str] = Field(None, max_length=5000)
    price_per_post: Optional[Decimal] = None
    influencer_count: Optional[int] = Field(None, ge=1)
    campaign_price: Optional[Decimal] = None
    registration_deadline: Optional[datetime] = None
    submission_deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    submit: bool = Field(False, description="Send straight to admin review instead of saving a draft")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "title": "Back to School Promo",
            "price_per_post": "100000",
            "influencer_count": 2,
            "registration_deadline": "2025-07-01T00:00:00Z",
            "submission_deadline": "2025-07-10T00:00:00Z",
            "start_date": "2025-07-15T00:00:00Z",
            "end_date": "2025-07-31T00:00:00Z",
            "submit": True
        }
    })


class CampaignRead(BaseModel):
    id: int
    title: str
    description: Optional[str]
    user_id: int
    status: CampaignStatus
    sub_status: Optional[CampaignSubStatus]
    cancellation_reason: Optional[str]
    price_per_post: Optional[Decimal]
    influencer_count: Optional[int]
    campaign_price: Optional[Decimal]
    funded_amount: Optional[Decimal]
    paid_at: Optional[datetime]
    reviewed_by: Optional[int]
    reviewed_at: Optional[datetime]
    payment_deadline: Optional[datetime]
    registration_deadline: Optional[datetime]
    submission_deadline: Optional[datetime]
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CampaignReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class CampaignCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class SubStatusUpdate(BaseModel):
    sub_status: str = Field(min_length=1)


class PaymentStatusRead(BaseModel):
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

    model_config = ConfigDict(from_attributes=True)


class ParticipationCreate(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class ParticipationRead(BaseModel):
    id: int
    campaign_id: int
    user_id: int
    application_status: ApplicationStatus
    payment_status: ParticipationPaymentStatus
    application_notes: Optional[str]
    applied_at: Optional[datetime] = None
    accepted_at: Optional[datetime]
    rejected_at: Optional[datetime]
    paid_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class ApplicationDecision(BaseModel):
    application_status: str = Field(description="accepted or rejected")


class WorkSubmissionCreate(BaseModel):
    content_url: Optional[str] = Field(None, max_length=1000)


class WorkSubmissionRead(BaseModel):
    id: int
    participation_id: int
    content_url: Optional[str]
    status: DeliverableStatus
    review_notes: Optional[str]
    reviewed_by: Optional[int]
    reviewed_at: Optional[datetime]
    submitted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DeliverableReview(BaseModel):
    status: str = Field(description="under_review, approved, rejected or revision_requested")
    notes: Optional[str] = Field(None, max_length=2000)
