from .users import User
from .campaigns import Campaign
from .participations import Participation, WorkSubmission
from .ledger_entries import LedgerEntry
from .withdrawals import Withdrawal
from .payments import Payment
from .notifications import Notification

__all__ = [
    "User",
    "Campaign",
    "Participation",
    "WorkSubmission",
    "LedgerEntry",
    "Withdrawal",
    "Payment",
    "Notification",
]
