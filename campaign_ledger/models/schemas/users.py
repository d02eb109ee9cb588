"""
Pydantic schemas for user accounts.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, EmailStr, ConfigDict
from ..db.enums import UserRole


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    role: UserRole = UserRole.PARTICIPANT

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Siti Rahma",
            "email": "siti@example.com",
            "role": "PARTICIPANT"
        }
    })


class UserRead(BaseModel):
    id: int
    name: str
    email: str
    is_active: bool
    role: UserRole
    balance: Decimal
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserCreated(UserRead):
    """Returned once at creation; the only time the API key is shown."""
    api_key: str
