from .base import ResponseBase, ErrorResponse
from .users import UserCreate, UserRead, UserCreated
from .ledger import LedgerEntryRead, BalanceRead, AdjustmentCreate
from .withdrawals import (
    WithdrawalRequest,
    WithdrawalRead,
    WithdrawalApprove,
    WithdrawalReject,
    WithdrawalComplete,
)
from .distribution import (
    PayStudentRequest,
    PayAllRequest,
    CustomPaymentItem,
    PayCustomRequest,
    SettleRequest,
    SettlementRead,
    PayoutItemRead,
    BatchPayoutRead,
    CampaignPaymentSummaryRead,
)
from .campaigns import (
    CampaignCreate,
    CampaignRead,
    CampaignReject,
    CampaignCancel,
    SubStatusUpdate,
    PaymentStatusRead,
    ParticipationCreate,
    ParticipationRead,
    ApplicationDecision,
    WorkSubmissionCreate,
    WorkSubmissionRead,
    DeliverableReview,
)
from .payments import FundingCreate, PaymentRead, CheckoutRead, GatewayNotification
from .notifications import NotificationRead

__all__ = [
    # Base
    "ResponseBase",
    "ErrorResponse",

    # Users
    "UserCreate",
    "UserRead",
    "UserCreated",

    # Ledger
    "LedgerEntryRead",
    "BalanceRead",
    "AdjustmentCreate",

    # Withdrawals
    "WithdrawalRequest",
    "WithdrawalRead",
    "WithdrawalApprove",
    "WithdrawalReject",
    "WithdrawalComplete",

    # Distribution
    "PayStudentRequest",
    "PayAllRequest",
    "CustomPaymentItem",
    "PayCustomRequest",
    "SettleRequest",
    "SettlementRead",
    "PayoutItemRead",
    "BatchPayoutRead",
    "CampaignPaymentSummaryRead",

    # Campaigns
    "CampaignCreate",
    "CampaignRead",
    "CampaignReject",
    "CampaignCancel",
    "SubStatusUpdate",
    "PaymentStatusRead",
    "ParticipationCreate",
    "ParticipationRead",
    "ApplicationDecision",
    "WorkSubmissionCreate",
    "WorkSubmissionRead",
    "DeliverableReview",

    # Payments
    "FundingCreate",
    "PaymentRead",
    "CheckoutRead",
    "GatewayNotification",

    # Notifications
    "NotificationRead",
]
