from __future__ import annotations
"""SQLAlchemy model for sponsor campaigns."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, Numeric, Enum, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
    from .participations import Participation
    from .payments import Payment
from sqlalchemy.sql import func
from campaign_ledger.database import Base
from .enums import CampaignStatus, CampaignSubStatus

class Campaign(Base):
    __tablename__ = "campaigns"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status: Mapped[CampaignStatus] = mapped_column(Enum(CampaignStatus), default=CampaignStatus.DRAFT, index=True)
    sub_status: Mapped[CampaignSubStatus | None] = mapped_column(Enum(CampaignSubStatus), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Budget
    price_per_post: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    influencer_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    campaign_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    funded_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Operator review & payment deadline (durable; the worker re-reads it)
    reviewed_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    # Calendar milestones driving sub_status
    registration_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submission_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    # Relationships
    sponsor: Mapped["User"] = relationship("User", back_populates="campaigns", foreign_keys=[user_id])
    participations: Mapped[list["Participation"]] = relationship("Participation", back_populates="campaign")
    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="campaign")
