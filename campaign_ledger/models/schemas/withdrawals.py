"""
Pydantic schemas for the withdrawal workflow.

Bank fields are optional at the schema level so missing values reach the
service and fail with a 400 ``validation_error`` like every other rule.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import WithdrawalStatus


class WithdrawalRequest(BaseModel):
    amount: Decimal
    bank_name: Optional[str] = Field(None, max_length=100)
    account_number: Optional[str] = Field(None, max_length=50)
    account_holder_name: Optional[str] = Field(None, max_length=100)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": "500000",
            "bank_name": "BCA",
            "account_number": "1234567890",
            "account_holder_name": "Siti Rahma"
        }
    })


class WithdrawalRead(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    bank_name: str
    account_number: str
    account_holder_name: str
    status: WithdrawalStatus
    request_date: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    reviewed_date: Optional[datetime] = None
    review_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    transfer_proof: Optional[str] = None
    completed_date: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WithdrawalApprove(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)


class WithdrawalReject(BaseModel):
    rejection_reason: Optional[str] = Field(None, max_length=1000)


class WithdrawalComplete(BaseModel):
    transfer_proof: Optional[str] = Field(None, max_length=500, description="Link to the proof-of-transfer document")
    notes: Optional[str] = Field(None, max_length=1000)
