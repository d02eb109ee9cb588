"""Notification dispatcher.

Fan-out of lifecycle and ledger events to affected users as in-app
notification rows. Dispatch happens *after* the business transaction has
committed and uses its own session, so a notification failure can never roll
back a financial transition. Failures are caught and logged here and are never
raised to the caller.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from sqlalchemy.orm import Session

from campaign_ledger import database
from campaign_ledger.models.db import Notification, Participation, User
from campaign_ledger.models.db.enums import ApplicationStatus, NotificationType, UserRole
from campaign_ledger.utils import get_logger

logger = get_logger(__name__)


def format_rupiah(amount: Decimal | float | int) -> str:
    """Rp 1.250.000 style (dot thousands separator, no decimals)."""
    return "Rp " + f"{int(Decimal(amount)):,}".replace(",", ".")


class NotificationDispatcher:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory

    def _open_session(self) -> Session:
        # Resolved lazily so tests can rebind database.SessionLocal.
        factory = self._session_factory or database.SessionLocal
        return factory()

    def notify(
        self,
        user_ids: int | Iterable[int],
        *,
        title: str,
        message: str,
        type: NotificationType,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
    ) -> int:
        """Create one notification per recipient. Returns rows written (0 on failure)."""
        recipients = [user_ids] if isinstance(user_ids, int) else [uid for uid in user_ids if uid is not None]
        if not recipients:
            return 0
        session: Session | None = None
        try:
            session = self._open_session()
            session.add_all([
                Notification(
                    user_id=uid,
                    title=title,
                    message=message,
                    type=type,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    is_read=False,
                )
                for uid in recipients
            ])
            session.commit()
            logger.debug("Notifications created", count=len(recipients), type=type.value, title=title)
            return len(recipients)
        except Exception as e:
            logger.error(
                "Notification dispatch failed",
                error=str(e),
                recipients=recipients,
                title=title,
                exc_info=True,
            )
            if session is not None:
                session.rollback()
            return 0
        finally:
            if session is not None:
                session.close()


dispatcher = NotificationDispatcher()


def notify(user_ids: int | Iterable[int], **kwargs) -> int:
    return dispatcher.notify(user_ids, **kwargs)


def operator_ids(session: Session) -> List[int]:
    rows = session.query(User.id).filter(User.role == UserRole.ADMIN, User.is_active == True).all()  # noqa: E712
    return [row[0] for row in rows]


def participant_ids(session: Session, campaign_id: int) -> List[int]:
    """Users whose application to the campaign was accepted."""
    rows = (
        session.query(Participation.user_id)
        .filter(Participation.campaign_id == campaign_id, Participation.application_status == ApplicationStatus.ACCEPTED)
        .all()
    )
    return [row[0] for row in rows]

# ------------------------------ templates ------------------------------ #

def campaign_submitted(campaign_id: int, title: str, admin_ids: List[int]) -> None:
    notify(admin_ids, title="New campaign awaiting review",
           message=f'A sponsor submitted the campaign "{title}". Please review it.',
           type=NotificationType.CAMPAIGN, reference_type="campaign", reference_id=campaign_id)


def campaign_approved(campaign_id: int, title: str, sponsor_id: int, deadline_seconds: int) -> None:
    minutes = max(1, deadline_seconds // 60)
    notify(sponsor_id, title="Campaign approved, please complete payment",
           message=f'Campaign "{title}" was approved. Complete the payment within {minutes} minute(s) or it will be cancelled.',
           type=NotificationType.CAMPAIGN, reference_type="campaign", reference_id=campaign_id)


def campaign_rejected(campaign_id: int, title: str, sponsor_id: int, reason: str) -> None:
    notify(sponsor_id, title="Campaign rejected",
           message=f'Campaign "{title}" was rejected. Reason: {reason}',
           type=NotificationType.CAMPAIGN, reference_type="campaign", reference_id=campaign_id)


def campaign_cancelled(campaign_id: int, title: str, sponsor_id: int, admin_ids: List[int], reason: str) -> None:
    notify([sponsor_id, *admin_ids], title="Campaign cancelled",
           message=f'Campaign "{title}" was cancelled. Reason: {reason}',
           type=NotificationType.CAMPAIGN, reference_type="campaign", reference_id=campaign_id)


def campaign_payment_succeeded(campaign_id: int, title: str, sponsor_id: int, admin_ids: List[int], amount: Decimal) -> None:
    notify([sponsor_id, *admin_ids], title="Campaign payment received",
           message=f'Payment of {format_rupiah(amount)} for "{title}" was received. The campaign is now open for registration.',
           type=NotificationType.PAYMENT, reference_type="campaign", reference_id=campaign_id)


def payout_received(participant_id: int, campaign_id: int, title: str, amount: Decimal) -> None:
    notify(participant_id, title="Campaign payment received",
           message=f"You received {format_rupiah(amount)} for completing campaign: {title}",
           type=NotificationType.PAYMENT, reference_type="campaign", reference_id=campaign_id)


def campaign_refund_issued(sponsor_id: int, campaign_id: int, title: str, amount: Decimal) -> None:
    notify(sponsor_id, title="Remaining campaign budget refunded",
           message=f'All participants of "{title}" have been paid. {format_rupiah(amount)} of unused budget was returned to your balance.',
           type=NotificationType.PAYMENT, reference_type="campaign", reference_id=campaign_id)


def campaign_paid(campaign_id: int, title: str, sponsor_id: int, admin_ids: List[int]) -> None:
    notify([sponsor_id, *admin_ids], title="All participants paid",
           message=f'Every participant of "{title}" has been paid. The campaign is closed.',
           type=NotificationType.PAYMENT, reference_type="campaign", reference_id=campaign_id)


def campaign_completed(campaign_id: int, title: str, sponsor_id: int, participant_ids: List[int]) -> None:
    notify([sponsor_id, *participant_ids], title="Campaign completed",
           message=f'Campaign "{title}" has been completed. Payouts will follow.',
           type=NotificationType.CAMPAIGN, reference_type="campaign", reference_id=campaign_id)


def campaign_sub_status_changed(campaign_id: int, title: str, recipient_ids: List[int], sub_status: str) -> None:
    phase = sub_status.replace("_", " ")
    notify(recipient_ids, title="Campaign phase changed",
           message=f'Campaign "{title}" moved to the {phase} phase.',
           type=NotificationType.CAMPAIGN, reference_type="campaign", reference_id=campaign_id)


def withdrawal_requested(owner_id: int, owner_name: str, admin_ids: List[int], withdrawal_id: int, amount: Decimal) -> None:
    notify(owner_id, title="Withdrawal request sent",
           message=f"Your withdrawal request of {format_rupiah(amount)} was sent and is awaiting review.",
           type=NotificationType.WITHDRAWAL, reference_type="withdrawal", reference_id=withdrawal_id)
    notify(admin_ids, title="New withdrawal request",
           message=f"{owner_name} requested a withdrawal of {format_rupiah(amount)}.",
           type=NotificationType.WITHDRAWAL, reference_type="withdrawal", reference_id=withdrawal_id)


def withdrawal_approved(owner_id: int, withdrawal_id: int, amount: Decimal) -> None:
    notify(owner_id, title="Withdrawal approved",
           message=f"Your withdrawal of {format_rupiah(amount)} was approved and will be transferred soon.",
           type=NotificationType.WITHDRAWAL, reference_type="withdrawal", reference_id=withdrawal_id)


def withdrawal_completed(owner_id: int, withdrawal_id: int, amount: Decimal, proof: str) -> None:
    notify(owner_id, title="Withdrawal completed",
           message=f"Your withdrawal of {format_rupiah(amount)} has been transferred. Proof of transfer: {proof}",
           type=NotificationType.WITHDRAWAL, reference_type="withdrawal", reference_id=withdrawal_id)


def withdrawal_rejected(owner_id: int, withdrawal_id: int, amount: Decimal, reason: str) -> None:
    notify(owner_id, title="Withdrawal rejected, balance returned",
           message=f"Your withdrawal of {format_rupiah(amount)} was rejected. Reason: {reason}",
           type=NotificationType.WITHDRAWAL, reference_type="withdrawal", reference_id=withdrawal_id)


def withdrawal_cancelled(owner_id: int, withdrawal_id: int, amount: Decimal) -> None:
    notify(owner_id, title="Withdrawal cancelled",
           message=f"You cancelled a withdrawal of {format_rupiah(amount)}. The amount is back in your balance.",
           type=NotificationType.WITHDRAWAL, reference_type="withdrawal", reference_id=withdrawal_id)

# ------------------------------ read side ------------------------------ #

def list_for_user(session: Session, user_id: int, *, unread_only: bool = False, limit: int = 100) -> List[Notification]:
    query = session.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read == False)  # noqa: E712
    return query.order_by(Notification.id.desc()).limit(limit).all()


def mark_read(session: Session, notification_id: int, user_id: int) -> Optional[Notification]:
    row = session.query(Notification).filter(Notification.id == notification_id, Notification.user_id == user_id).one_or_none()
    if row is None:
        return None
    row.is_read = True
    session.commit()
    return row


def mark_all_read(session: Session, user_id: int) -> int:
    updated = (
        session.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    session.commit()
    return int(updated)
