"""
Pydantic schemas for campaign payouts.
"""
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import CampaignStatus


class PayStudentRequest(BaseModel):
    participation_id: int = Field(gt=0)
    amount: Decimal
    description: Optional[str] = Field(None, max_length=500)


class PayAllRequest(BaseModel):
    campaign_id: int = Field(gt=0)


class CustomPaymentItem(BaseModel):
    participation_id: int = Field(gt=0)
    amount: Decimal
    description: Optional[str] = Field(None, max_length=500)


class PayCustomRequest(BaseModel):
    payments: List[CustomPaymentItem]

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "payments": [
                {"participation_id": 4, "amount": "150000", "description": "Two posts"},
                {"participation_id": 5, "amount": "75000"}
            ]
        }
    })


class SettleRequest(BaseModel):
    campaign_id: int = Field(gt=0)


class SettlementRead(BaseModel):
    campaign_id: int
    settled: bool
    status: CampaignStatus
    eligible_count: int
    paid_count: int
    funded_amount: Decimal
    distributed_amount: Decimal
    refunded_amount: Decimal
    refund_amount: Decimal
    refund_entry_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class PayoutItemRead(BaseModel):
    participation_id: int
    success: bool
    amount: Optional[Decimal] = None
    user_id: Optional[int] = None
    entry_id: Optional[int] = None
    balance_after: Optional[Decimal] = None
    error: Optional[str] = None
    code: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class BatchPayoutRead(BaseModel):
    campaign_id: Optional[int]
    paid_count: int
    failed_count: int
    skipped_count: int
    total_paid: Decimal
    results: List[PayoutItemRead]
    settlement: Optional[SettlementRead] = None

    model_config = ConfigDict(from_attributes=True)


class CampaignPaymentSummaryRead(BaseModel):
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
    remaining_amount: Decimal

    model_config = ConfigDict(from_attributes=True)
