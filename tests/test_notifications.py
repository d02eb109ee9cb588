from decimal import Decimal
from campaign_ledger.models.db import Notification
from campaign_ledger.models.db.enums import NotificationType
from campaign_ledger.services import notifications
from campaign_ledger.services.notifications import NotificationDispatcher, format_rupiah


def test_format_rupiah():
    assert format_rupiah(Decimal("1250000")) == "Rp 1.250.000"
    assert format_rupiah(500) == "Rp 500"
    assert format_rupiah(Decimal("20000.75")) == "Rp 20.000"


def test_notify_writes_one_row_per_recipient(db_session, user_factory):
    first, second = user_factory(), user_factory()

    written = notifications.notify(
        [first.id, None, second.id], title="Hello", message="Welcome aboard",
        type=NotificationType.CAMPAIGN, reference_type="campaign", reference_id=7,
    )

    assert written == 2
    rows = db_session.query(Notification).filter(Notification.user_id.in_([first.id, second.id])).all()
    assert {r.user_id for r in rows} == {first.id, second.id}
    assert all(not r.is_read for r in rows)
    assert notifications.notify([], title="x", message="y", type=NotificationType.CAMPAIGN) == 0


def test_dispatch_failure_is_swallowed():
    def broken_session():
        raise RuntimeError("database unavailable")

    dispatcher = NotificationDispatcher(session_factory=broken_session)
    assert dispatcher.notify(1, title="t", message="m", type=NotificationType.PAYMENT) == 0


def test_read_side(db_session, user_factory):
    user = user_factory()
    other = user_factory()
    for i in range(3):
        notifications.notify(user.id, title=f"n{i}", message="m", type=NotificationType.WITHDRAWAL)

    rows = notifications.list_for_user(db_session, user.id)
    assert [r.title for r in rows] == ["n2", "n1", "n0"]

    assert notifications.mark_read(db_session, rows[0].id, other.id) is None
    marked = notifications.mark_read(db_session, rows[0].id, user.id)
    assert marked is not None and marked.is_read

    unread = notifications.list_for_user(db_session, user.id, unread_only=True)
    assert len(unread) == 2
    assert notifications.mark_all_read(db_session, user.id) == 2
    assert notifications.list_for_user(db_session, user.id, unread_only=True) == []
