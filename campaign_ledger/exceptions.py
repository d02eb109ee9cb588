"""Typed errors raised by the money-movement services.

Each error carries the HTTP status it maps to at the API boundary and a stable
machine-readable ``code``. Services raise these at the point of detection; the
exception handler in ``main`` turns them into JSON responses.
"""
from __future__ import annotations


class LedgerServiceError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.__class__.__doc__ or self.code
        self.context = context
        super().__init__(self.message)


class ValidationError(LedgerServiceError):
    """Invalid input"""
    status_code = 400
    code = "validation_error"


class InvalidAmount(ValidationError):
    """Amount must be greater than 0"""
    code = "invalid_amount"


class NoPriceConfigured(ValidationError):
    """Campaign has no valid price configured"""
    code = "no_price_configured"


class NotFound(LedgerServiceError):
    """Resource not found"""
    status_code = 404
    code = "not_found"


class AccountNotFound(NotFound):
    """User not found"""
    code = "account_not_found"


class CampaignNotFound(NotFound):
    """Campaign not found"""
    code = "campaign_not_found"


class ParticipationNotFound(NotFound):
    """Campaign user record not found"""
    code = "participation_not_found"


class WithdrawalNotFound(NotFound):
    """Withdrawal not found"""
    code = "withdrawal_not_found"


class PaymentNotFound(NotFound):
    """Payment not found"""
    code = "payment_not_found"


class InvalidTransition(LedgerServiceError):
    """Operation not allowed in the current status"""
    status_code = 409
    code = "invalid_transition"


class ParticipationAlreadyPaid(InvalidTransition):
    """Participation has already been paid"""
    code = "participation_already_paid"


class InsufficientFunds(LedgerServiceError):
    """Insufficient balance"""
    status_code = 409
    code = "insufficient_funds"


class Unauthorized(LedgerServiceError):
    """Authentication required"""
    status_code = 401
    code = "unauthorized"


class Forbidden(LedgerServiceError):
    """Access denied"""
    status_code = 403
    code = "forbidden"


class UpstreamGatewayError(LedgerServiceError):
    """Payment gateway request failed"""
    status_code = 502
    code = "upstream_gateway_error"


class InternalError(LedgerServiceError):
    """Internal server error"""


__all__ = [
    "LedgerServiceError",
    "ValidationError",
    "InvalidAmount",
    "NoPriceConfigured",
    "NotFound",
    "AccountNotFound",
    "CampaignNotFound",
    "ParticipationNotFound",
    "WithdrawalNotFound",
    "PaymentNotFound",
    "InvalidTransition",
    "ParticipationAlreadyPaid",
    "InsufficientFunds",
    "Unauthorized",
    "Forbidden",
    "UpstreamGatewayError",
    "InternalError",
]
