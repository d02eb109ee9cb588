"""Central Enum definitions for core domain states.

These replace scattered string literals to ensure consistency across
DB models, schemas, and business logic.
"""
from __future__ import annotations
import enum


class UserRole(str, enum.Enum):
    PARTICIPANT = "PARTICIPANT"
    SPONSOR = "SPONSOR"
    ADMIN = "ADMIN"

# ------------------------- Campaign lifecycle ------------------------- #

class CampaignStatus(str, enum.Enum):
    DRAFT = "draft"
    ADMIN_REVIEW = "admin_review"
    PENDING_PAYMENT = "pending_payment"
    CANCELLED = "cancelled"
    ACTIVE = "active"
    COMPLETED = "completed"
    PAID = "paid"


TERMINAL_CAMPAIGN_STATUSES = frozenset({
    CampaignStatus.CANCELLED,
    CampaignStatus.COMPLETED,
    CampaignStatus.PAID,
})


class CampaignSubStatus(str, enum.Enum):
    REGISTRATION_OPEN = "registration_open"
    STUDENT_SELECTION = "student_selection"
    STUDENT_CONFIRMATION = "student_confirmation"
    CONTENT_SUBMISSION = "content_submission"
    CONTENT_REVISION = "content_revision"
    VIOLATION_REPORTED = "violation_reported"
    VIOLATION_CONFIRMED = "violation_confirmed"
    POSTING = "posting"
    PAYOUT_SUCCESS = "payout_success"


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    PAID = "paid"


class ParticipationPaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class DeliverableStatus(str, enum.Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"

# ------------------------------- Ledger ------------------------------- #

class EntryDirection(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class EntryCategory(str, enum.Enum):
    CAMPAIGN_PAYMENT = "campaign_payment"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"
    BONUS = "bonus"
    PENALTY = "penalty"
    ADJUSTMENT = "adjustment"


class ReferenceType(str, enum.Enum):
    PARTICIPATION = "participation"
    WITHDRAWAL = "withdrawal"
    CAMPAIGN = "campaign"
    PAYMENT = "payment"
    MANUAL = "manual"


# Which business object each category may point at.
CATEGORY_REFERENCE_KINDS: dict[EntryCategory, frozenset[ReferenceType]] = {
    EntryCategory.CAMPAIGN_PAYMENT: frozenset({ReferenceType.PARTICIPATION}),
    EntryCategory.WITHDRAWAL: frozenset({ReferenceType.WITHDRAWAL}),
    EntryCategory.REFUND: frozenset({ReferenceType.WITHDRAWAL, ReferenceType.CAMPAIGN}),
    EntryCategory.BONUS: frozenset({ReferenceType.PARTICIPATION, ReferenceType.CAMPAIGN, ReferenceType.MANUAL}),
    EntryCategory.PENALTY: frozenset({ReferenceType.PARTICIPATION, ReferenceType.CAMPAIGN, ReferenceType.MANUAL}),
    EntryCategory.ADJUSTMENT: frozenset({ReferenceType.PARTICIPATION, ReferenceType.CAMPAIGN, ReferenceType.MANUAL}),
}

# ----------------------------- Withdrawals ---------------------------- #

class WithdrawalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"

# --------------------------- Gateway payments -------------------------- #

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class NotificationType(str, enum.Enum):
    CAMPAIGN = "campaign"
    PAYMENT = "payment"
    WITHDRAWAL = "withdrawal"


__all__ = [
    "UserRole",
    "CampaignStatus",
    "TERMINAL_CAMPAIGN_STATUSES",
    "CampaignSubStatus",
    "ApplicationStatus",
    "ParticipationPaymentStatus",
    "DeliverableStatus",
    "EntryDirection",
    "EntryCategory",
    "ReferenceType",
    "CATEGORY_REFERENCE_KINDS",
    "WithdrawalStatus",
    "PaymentStatus",
    "NotificationType",
]
