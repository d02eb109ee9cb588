"""Withdrawal workflow.

State machine::

    pending --approve--> approved --complete--> completed
    pending --complete------------------------> completed
    pending --reject---> rejected   (refund credit)
    pending --cancel---> (row deleted, refund credit)

Funds leave the balance at *request* time (category ``withdrawal``), so a
pending request cannot be double-spent. Reject and owner-cancel both post a
compensating ``refund`` credit referencing the withdrawal; approve and complete
have no balance effect.

Each transition locks the withdrawal row and re-checks its status inside the
same transaction as the ledger write.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from campaign_ledger.database import atomic
from campaign_ledger.exceptions import (
    Forbidden,
    InsufficientFunds,
    InvalidTransition,
    ValidationError,
    WithdrawalNotFound,
)
from campaign_ledger.models.db import User, Withdrawal
from campaign_ledger.models.db.enums import EntryCategory, UserRole, WithdrawalStatus
from campaign_ledger.services import notifications
from campaign_ledger.services.ledger import Reference, credit, debit, get_balance, to_money
from campaign_ledger.utils import get_logger, log_business_event, utc_now

logger = get_logger(__name__)


def _required(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    return str(value).strip()


def _locked(session: Session, withdrawal_id: int) -> Withdrawal:
    withdrawal = (
        session.query(Withdrawal)
        .filter(Withdrawal.id == withdrawal_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if withdrawal is None:
        raise WithdrawalNotFound(withdrawal_id=withdrawal_id)
    return withdrawal


def request_withdrawal(
    session: Session,
    user: User,
    *,
    amount: Any,
    bank_name: Optional[str],
    account_number: Optional[str],
    account_holder_name: Optional[str],
) -> Tuple[Withdrawal, Decimal]:
    """Reserve ``amount`` from the user's balance and open a pending withdrawal.

    Returns the withdrawal and the balance after the debit.
    """
    value = to_money(amount)
    bank = _required(bank_name, "bank_name")
    number = _required(account_number, "account_number")
    holder = _required(account_holder_name, "account_holder_name")

    # Fast path for the common rejection; the guarded UPDATE in the ledger is
    # what actually serializes concurrent requests.
    if get_balance(session, user.id) < value:
        raise InsufficientFunds("Insufficient balance", user_id=user.id, amount=str(value))

    with atomic(session):
        withdrawal = Withdrawal(
            user_id=user.id,
            amount=value,
            bank_name=bank,
            account_number=number,
            account_holder_name=holder,
            status=WithdrawalStatus.PENDING,
        )
        session.add(withdrawal)
        session.flush()
        entry = debit(
            session,
            user.id,
            value,
            EntryCategory.WITHDRAWAL,
            Reference.withdrawal(withdrawal.id),
            description=f"Withdrawal request to {bank} - {number}",
        )
        new_balance = Decimal(entry.balance_after)
        admin_ids = notifications.operator_ids(session)

    logger.info("Withdrawal requested", withdrawal_id=withdrawal.id, user_id=user.id, amount=value)
    log_business_event(
        event_type="withdrawal_requested",
        details={"withdrawal_id": withdrawal.id, "amount": value, "balance_after": new_balance},
        user_id=user.id,
    )
    notifications.withdrawal_requested(user.id, user.name, admin_ids, withdrawal.id, value)
    return withdrawal, new_balance


def approve_withdrawal(session: Session, withdrawal_id: int, operator: User, notes: Optional[str] = None) -> Withdrawal:
    with atomic(session):
        withdrawal = _locked(session, withdrawal_id)
        if withdrawal.status != WithdrawalStatus.PENDING:
            raise InvalidTransition(
                "Only pending withdrawals can be approved",
                withdrawal_id=withdrawal_id,
                status=withdrawal.status.value,
            )
        withdrawal.status = WithdrawalStatus.APPROVED
        withdrawal.reviewed_by = operator.id
        withdrawal.reviewed_date = utc_now()
        if notes:
            withdrawal.review_notes = notes

    log_business_event(
        event_type="withdrawal_approved",
        details={"withdrawal_id": withdrawal.id, "amount": withdrawal.amount},
        user_id=operator.id,
    )
    notifications.withdrawal_approved(withdrawal.user_id, withdrawal.id, withdrawal.amount)
    return withdrawal


def complete_withdrawal(
    session: Session,
    withdrawal_id: int,
    operator: User,
    transfer_proof: Optional[str],
    notes: Optional[str] = None,
) -> Withdrawal:
    proof = _required(transfer_proof, "transfer_proof")
    with atomic(session):
        withdrawal = _locked(session, withdrawal_id)
        if withdrawal.status not in (WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED):
            raise InvalidTransition(
                "Only pending or approved withdrawals can be completed",
                withdrawal_id=withdrawal_id,
                status=withdrawal.status.value,
            )
        now = utc_now()
        withdrawal.status = WithdrawalStatus.COMPLETED
        withdrawal.transfer_proof = proof
        withdrawal.completed_date = now
        withdrawal.reviewed_by = operator.id
        if withdrawal.reviewed_date is None:
            withdrawal.reviewed_date = now
        if notes:
            withdrawal.review_notes = notes

    log_business_event(
        event_type="withdrawal_completed",
        details={"withdrawal_id": withdrawal.id, "amount": withdrawal.amount, "transfer_proof": proof},
        user_id=operator.id,
    )
    notifications.withdrawal_completed(withdrawal.user_id, withdrawal.id, withdrawal.amount, proof)
    return withdrawal


def reject_withdrawal(session: Session, withdrawal_id: int, operator: User, reason: Optional[str]) -> Withdrawal:
    rejection_reason = _required(reason, "rejection_reason")
    with atomic(session):
        withdrawal = _locked(session, withdrawal_id)
        if withdrawal.status != WithdrawalStatus.PENDING:
            raise InvalidTransition(
                "Only pending withdrawals can be rejected",
                withdrawal_id=withdrawal_id,
                status=withdrawal.status.value,
            )
        credit(
            session,
            withdrawal.user_id,
            withdrawal.amount,
            EntryCategory.REFUND,
            Reference.withdrawal(withdrawal.id),
            description=f"Withdrawal rejected: {rejection_reason}",
        )
        withdrawal.status = WithdrawalStatus.REJECTED
        withdrawal.rejection_reason = rejection_reason
        withdrawal.reviewed_by = operator.id
        withdrawal.reviewed_date = utc_now()

    logger.info("Withdrawal rejected", withdrawal_id=withdrawal.id, amount=withdrawal.amount)
    log_business_event(
        event_type="withdrawal_rejected",
        details={"withdrawal_id": withdrawal.id, "amount": withdrawal.amount, "reason": rejection_reason},
        user_id=operator.id,
    )
    notifications.withdrawal_rejected(withdrawal.user_id, withdrawal.id, withdrawal.amount, rejection_reason)
    return withdrawal


def cancel_withdrawal(session: Session, withdrawal_id: int, owner: User) -> Decimal:
    """Owner withdraws a pending request. Returns the refunded amount."""
    with atomic(session):
        withdrawal = _locked(session, withdrawal_id)
        if withdrawal.user_id != owner.id:
            raise Forbidden("Only the owner can cancel this withdrawal", withdrawal_id=withdrawal_id)
        if withdrawal.status != WithdrawalStatus.PENDING:
            raise InvalidTransition(
                "Only pending withdrawals can be cancelled",
                withdrawal_id=withdrawal_id,
                status=withdrawal.status.value,
            )
        amount = Decimal(withdrawal.amount)
        credit(
            session,
            owner.id,
            amount,
            EntryCategory.REFUND,
            Reference.withdrawal(withdrawal.id),
            description="Withdrawal cancelled by owner",
        )
        session.delete(withdrawal)

    log_business_event(
        event_type="withdrawal_cancelled",
        details={"withdrawal_id": withdrawal_id, "amount": amount},
        user_id=owner.id,
    )
    notifications.withdrawal_cancelled(owner.id, withdrawal_id, amount)
    return amount


def get_withdrawal(session: Session, withdrawal_id: int, viewer: User) -> Withdrawal:
    withdrawal = session.get(Withdrawal, withdrawal_id)
    if withdrawal is None:
        raise WithdrawalNotFound(withdrawal_id=withdrawal_id)
    if viewer.role != UserRole.ADMIN and withdrawal.user_id != viewer.id:
        raise Forbidden("Access denied")
    return withdrawal


def list_my_withdrawals(session: Session, user_id: int) -> List[Withdrawal]:
    return (
        session.query(Withdrawal)
        .filter(Withdrawal.user_id == user_id)
        .order_by(Withdrawal.request_date.desc(), Withdrawal.id.desc())
        .all()
    )


def list_all_withdrawals(session: Session, status: Optional[WithdrawalStatus] = None, limit: int = 100, offset: int = 0) -> List[Withdrawal]:
    query = session.query(Withdrawal)
    if status is not None:
        query = query.filter(Withdrawal.status == status)
    return query.order_by(Withdrawal.request_date.desc(), Withdrawal.id.desc()).offset(offset).limit(limit).all()


__all__ = [
    "request_withdrawal",
    "approve_withdrawal",
    "complete_withdrawal",
    "reject_withdrawal",
    "cancel_withdrawal",
    "get_withdrawal",
    "list_my_withdrawals",
    "list_all_withdrawals",
]
