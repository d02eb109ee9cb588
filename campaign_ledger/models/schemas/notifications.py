"""
Pydantic schemas for in-app notifications.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict
from ..db.enums import NotificationType


class NotificationRead(BaseModel):
    id: int
    user_id: int
    title: str
    message: str
    type: NotificationType
    reference_type: Optional[str]
    reference_id: Optional[int]
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
