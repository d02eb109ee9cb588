"""Ledger primitive: the only code path that mutates ``User.balance``.

``apply_entry`` performs one guarded balance UPDATE and appends exactly one
``LedgerEntry`` describing the delta. It never commits; callers wrap it in
``database.atomic`` together with their own state change (participation
marked paid, withdrawal created/rejected, ...) so the whole unit either lands
or leaves no trace.

Concurrency: the funds check is part of the UPDATE's WHERE clause
(``balance >= amount``), so the check and the write are a single statement that
holds the row lock until the surrounding transaction ends. Two debits racing on
the same account cannot both pass the check.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from campaign_ledger.config import PAYMENT_SETTINGS
from campaign_ledger.database import atomic
from campaign_ledger.exceptions import (
    AccountNotFound,
    InsufficientFunds,
    InvalidAmount,
    NotFound,
    Forbidden,
    ValidationError,
)
from campaign_ledger.models.db import User, LedgerEntry
from campaign_ledger.models.db.enums import (
    CATEGORY_REFERENCE_KINDS,
    EntryCategory,
    EntryDirection,
    ReferenceType,
    UserRole,
)
from campaign_ledger.utils import get_logger, log_business_event

logger = get_logger(__name__)


def to_money(value: Any) -> Decimal:
    """Coerce to a 2-decimal ``Decimal``; raise InvalidAmount for junk or <= 0."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise InvalidAmount(f"Invalid amount: {value!r}")
    amount = amount.quantize(PAYMENT_SETTINGS["currency_quantum"], rounding=ROUND_HALF_UP)  # type: ignore[arg-type]
    if amount <= 0:
        raise InvalidAmount("Amount must be greater than 0")
    return amount


@dataclass(frozen=True, slots=True)
class Reference:
    """Business object that caused a ledger entry."""
    kind: ReferenceType
    id: Optional[int] = None

    @classmethod
    def participation(cls, participation_id: int) -> "Reference":
        return cls(ReferenceType.PARTICIPATION, participation_id)

    @classmethod
    def withdrawal(cls, withdrawal_id: int) -> "Reference":
        return cls(ReferenceType.WITHDRAWAL, withdrawal_id)

    @classmethod
    def campaign(cls, campaign_id: int) -> "Reference":
        return cls(ReferenceType.CAMPAIGN, campaign_id)

    @classmethod
    def manual(cls) -> "Reference":
        return cls(ReferenceType.MANUAL, None)

    def check_allowed_for(self, category: EntryCategory) -> None:
        allowed = CATEGORY_REFERENCE_KINDS[category]
        if self.kind not in allowed:
            raise ValidationError(
                f"Category '{category.value}' cannot reference '{self.kind.value}'",
                category=category.value,
                reference_type=self.kind.value,
            )
        if self.kind != ReferenceType.MANUAL and self.id is None:
            raise ValidationError(f"Reference '{self.kind.value}' requires an id")


def apply_entry(
    session: Session,
    *,
    user_id: int,
    amount: Any,
    direction: EntryDirection,
    category: EntryCategory,
    reference: Reference,
    description: Optional[str] = None,
) -> LedgerEntry:
    """Mutate one account's balance and append the entry explaining it.

    Raises:
        InvalidAmount: amount <= 0 or not a number
        AccountNotFound: user_id does not resolve
        InsufficientFunds: debit larger than the current balance
    """
    value = to_money(amount)
    reference.check_allowed_for(category)

    stmt = update(User).where(User.id == user_id)
    if direction == EntryDirection.DEBIT:
        stmt = stmt.where(User.balance >= value).values(balance=User.balance - value)
    else:
        stmt = stmt.values(balance=User.balance + value)
    result = session.execute(stmt, execution_options={"synchronize_session": False})

    if result.rowcount == 0:
        if session.get(User, user_id) is None:
            raise AccountNotFound(f"User {user_id} not found", user_id=user_id)
        logger.warning(
            "Debit rejected: insufficient balance",
            user_id=user_id,
            amount=value,
            category=category.value,
        )
        raise InsufficientFunds("Insufficient balance", user_id=user_id, amount=str(value))

    # Re-read the row we just wrote so the identity map is not stale.
    user = session.get(User, user_id, populate_existing=True)
    balance_after = Decimal(user.balance)  # type: ignore[union-attr]
    balance_before = balance_after - value if direction == EntryDirection.CREDIT else balance_after + value

    entry = LedgerEntry(
        user_id=user_id,
        amount=value,
        direction=direction,
        category=category,
        reference_type=reference.kind,
        reference_id=reference.id,
        description=description,
        balance_before=balance_before,
        balance_after=balance_after,
    )
    session.add(entry)
    session.flush()

    logger.debug(
        "Ledger entry staged",
        entry_id=entry.id,
        user_id=user_id,
        direction=direction.value,
        category=category.value,
        amount=value,
        balance_before=balance_before,
        balance_after=balance_after,
    )
    return entry


def credit(session: Session, user_id: int, amount: Any, category: EntryCategory, reference: Reference, description: Optional[str] = None) -> LedgerEntry:
    return apply_entry(session, user_id=user_id, amount=amount, direction=EntryDirection.CREDIT,
                       category=category, reference=reference, description=description)


def debit(session: Session, user_id: int, amount: Any, category: EntryCategory, reference: Reference, description: Optional[str] = None) -> LedgerEntry:
    return apply_entry(session, user_id=user_id, amount=amount, direction=EntryDirection.DEBIT,
                       category=category, reference=reference, description=description)

# ------------------------------ read side ------------------------------ #

def get_balance(session: Session, user_id: int) -> Decimal:
    user = session.get(User, user_id)
    if user is None:
        raise AccountNotFound(f"User {user_id} not found", user_id=user_id)
    return Decimal(user.balance or 0)


def list_entries(
    session: Session,
    user_id: Optional[int] = None,
    *,
    direction: Optional[EntryDirection] = None,
    category: Optional[EntryCategory] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[LedgerEntry]:
    """Entries newest first; ``user_id=None`` lists every account (operators)."""
    query = session.query(LedgerEntry)
    if user_id is not None:
        query = query.filter(LedgerEntry.user_id == user_id)
    if direction is not None:
        query = query.filter(LedgerEntry.direction == direction)
    if category is not None:
        query = query.filter(LedgerEntry.category == category)
    return query.order_by(LedgerEntry.id.desc()).offset(offset).limit(limit).all()


def list_all_entries(
    session: Session,
    *,
    user_id: Optional[int] = None,
    direction: Optional[EntryDirection] = None,
    category: Optional[EntryCategory] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[LedgerEntry]:
    return list_entries(session, user_id, direction=direction, category=category, limit=limit, offset=offset)


def get_entry(session: Session, entry_id: int, viewer: User) -> LedgerEntry:
    entry = session.get(LedgerEntry, entry_id)
    if entry is None:
        raise NotFound("Transaction not found", entry_id=entry_id)
    if viewer.role != UserRole.ADMIN and entry.user_id != viewer.id:
        raise Forbidden("Access denied")
    return entry


@dataclass(slots=True)
class AccountVerification:
    user_id: int
    balance: Decimal
    ledger_total: Decimal
    entry_count: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_total


def verify_account(session: Session, user_id: int) -> AccountVerification:
    """Compare the stored balance with sum(credits) - sum(debits)."""
    balance = get_balance(session, user_id)
    entries = session.query(LedgerEntry).filter(LedgerEntry.user_id == user_id).all()
    total = sum((Decimal(e.signed_amount) for e in entries), Decimal("0"))
    return AccountVerification(user_id=user_id, balance=balance, ledger_total=total, entry_count=len(entries))


def post_adjustment(
    session: Session,
    *,
    operator: User,
    user_id: int,
    amount: Any,
    direction: EntryDirection,
    category: EntryCategory,
    description: str,
    reference: Optional[Reference] = None,
) -> LedgerEntry:
    """Operator-initiated bonus / penalty / adjustment entry."""
    if category not in {EntryCategory.BONUS, EntryCategory.PENALTY, EntryCategory.ADJUSTMENT}:
        raise ValidationError("Only bonus, penalty or adjustment entries can be posted manually")
    if not description or not description.strip():
        raise ValidationError("description is required")
    with atomic(session):
        entry = apply_entry(
            session,
            user_id=user_id,
            amount=amount,
            direction=direction,
            category=category,
            reference=reference or Reference.manual(),
            description=description.strip(),
        )
    log_business_event(
        event_type="ledger_adjustment_posted",
        details={
            "entry_id": entry.id,
            "target_user_id": user_id,
            "amount": entry.amount,
            "direction": direction.value,
            "category": category.value,
        },
        user_id=operator.id,
    )
    return entry


__all__ = [
    "to_money",
    "Reference",
    "apply_entry",
    "credit",
    "debit",
    "get_balance",
    "list_entries",
    "list_all_entries",
    "get_entry",
    "AccountVerification",
    "verify_account",
    "post_adjustment",
]
