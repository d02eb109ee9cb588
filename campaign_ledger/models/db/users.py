from __future__ import annotations
"""SQLAlchemy model for users (participants, sponsors and operators).

``balance`` is owned by the ledger: only ``services.ledger.apply_entry`` writes it.
"""
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Boolean, Numeric, Enum, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .campaigns import Campaign
    from .participations import Participation
    from .ledger_entries import LedgerEntry
    from .withdrawals import Withdrawal
from sqlalchemy.sql import func
from campaign_ledger.database import Base
from .enums import UserRole

class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    api_key: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.PARTICIPANT, index=True)

    balance: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    campaigns: Mapped[list["Campaign"]] = relationship(
        "Campaign", back_populates="sponsor", foreign_keys="Campaign.user_id"
    )
    participations: Mapped[list["Participation"]] = relationship("Participation", back_populates="user")
    ledger_entries: Mapped[list["LedgerEntry"]] = relationship("LedgerEntry", back_populates="user")
    withdrawals: Mapped[list["Withdrawal"]] = relationship(
        "Withdrawal", back_populates="user", foreign_keys="Withdrawal.user_id"
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="user_balance_non_negative"),
    )
