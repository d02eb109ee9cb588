from __future__ import annotations
"""SQLAlchemy models for campaign participations and their deliverables."""
from datetime import datetime
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, Enum, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .campaigns import Campaign
    from .users import User
from sqlalchemy.sql import func
from campaign_ledger.database import Base
from .enums import ApplicationStatus, ParticipationPaymentStatus, DeliverableStatus

class Participation(Base):
    __tablename__ = "campaign_users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    application_status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus), default=ApplicationStatus.PENDING, index=True
    )
    payment_status: Mapped[ParticipationPaymentStatus] = mapped_column(
        Enum(ParticipationPaymentStatus), default=ParticipationPaymentStatus.UNPAID, index=True
    )
    application_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    campaign: Mapped["Campaign"] = relationship("Campaign", back_populates="participations")
    user: Mapped["User | None"] = relationship("User", back_populates="participations")
    submissions: Mapped[list["WorkSubmission"]] = relationship("WorkSubmission", back_populates="participation")

    # One row per (campaign, participant)
    __table_args__ = (
        UniqueConstraint("campaign_id", "user_id", name="unique_participant_per_campaign"),
    )


class WorkSubmission(Base):
    """Deliverable for a participation; a payout requires an approved one."""
    __tablename__ = "work_submissions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    participation_id: Mapped[int] = mapped_column(Integer, ForeignKey("campaign_users.id"), nullable=False, index=True)
    content_url: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[DeliverableStatus] = mapped_column(Enum(DeliverableStatus), default=DeliverableStatus.PENDING, index=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    participation: Mapped["Participation"] = relationship("Participation", back_populates="submissions")
