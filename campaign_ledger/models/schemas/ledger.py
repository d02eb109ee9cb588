"""
Pydantic schemas for ledger entries (transactions) and balances.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import EntryCategory, EntryDirection, ReferenceType


class LedgerEntryRead(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    direction: EntryDirection
    category: EntryCategory
    reference_type: ReferenceType
    reference_id: Optional[int]
    description: Optional[str]
    balance_before: Decimal
    balance_after: Decimal
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BalanceRead(BaseModel):
    user_id: int
    balance: Decimal
    ledger_total: Decimal
    entry_count: int
    consistent: bool

    model_config = ConfigDict(from_attributes=True)


class AdjustmentCreate(BaseModel):
    user_id: int = Field(gt=0)
    amount: Decimal
    direction: EntryDirection
    category: EntryCategory = EntryCategory.ADJUSTMENT
    description: str = Field(min_length=1, max_length=500)
    campaign_id: Optional[int] = Field(None, gt=0, description="Optional campaign the adjustment relates to")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "user_id": 12,
            "amount": "25000",
            "direction": "credit",
            "category": "bonus",
            "description": "Top performer bonus"
        }
    })
