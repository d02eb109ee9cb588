"""
Pydantic schemas for gateway funding payments.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import PaymentStatus


class FundingCreate(BaseModel):
    campaign_id: int = Field(gt=0)


class PaymentRead(BaseModel):
    id: int
    order_id: str
    campaign_id: int
    user_id: Optional[int]
    amount: Decimal
    status: PaymentStatus
    gateway_status: Optional[str]
    payment_type: Optional[str]
    transaction_time: Optional[datetime]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CheckoutRead(BaseModel):
    order_id: str
    token: str
    redirect_url: str
    payment: PaymentRead


class GatewayNotification(BaseModel):
    """Webhook body; unknown gateway fields are kept for the raw payload."""
    order_id: str
    status_code: str
    gross_amount: str
    signature_key: str
    transaction_status: Optional[str] = None
    payment_type: Optional[str] = None
    transaction_time: Optional[str] = None
    fraud_status: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
