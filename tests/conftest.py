import os
import secrets
import sys
from decimal import Decimal
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'campaign_ledger' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from campaign_ledger.main import app  # type: ignore
from campaign_ledger.database import Base  # type: ignore
from campaign_ledger.api import deps  # type: ignore
"""Pytest fixtures and factories.

Important: SQLAlchemy relationship configuration requires all model modules to be imported
before Base.metadata.create_all(), otherwise back_populates targets might not exist yet.
"""
from campaign_ledger.models.db import (  # noqa: E402
    Campaign, Participation, User, WorkSubmission,
)
from campaign_ledger.models.db.enums import (  # noqa: E402
    ApplicationStatus, CampaignStatus, DeliverableStatus, EntryCategory, UserRole,
)
from campaign_ledger.integrations.gateway import CheckoutSession, GatewayStatus, compute_signature  # noqa: E402
from campaign_ledger.jobs import scheduler  # noqa: E402
from campaign_ledger.jobs.queue import PriorityDelayQueue  # noqa: E402
from campaign_ledger.jobs.worker_deadlines import DeadlineWorker  # noqa: E402
from campaign_ledger.services import ledger  # noqa: E402
from campaign_ledger.utils import utc_now  # noqa: E402

# File-based SQLite so the worker thread, the notification dispatcher and the
# request sessions all see the same data.
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_ledger.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Worker, dispatcher and get_db all resolve database.SessionLocal at call time.
import campaign_ledger.database as _ledger_database  # noqa: E402
_ledger_database.SessionLocal = TestingSessionLocal  # type: ignore

TEST_SERVER_KEY = "SB-Mid-server-test-key"


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    try:
        os.remove("test_ledger.db")
    except OSError:
        pass


@pytest.fixture(scope="session", autouse=True)
def deadline_queue(create_test_db):
    """Queue + worker the lifespan would normally start (tests bypass lifespan).

    The periodic sweep is disabled so it never races assertions; tests call
    ``sweep`` directly.
    """
    queue = PriorityDelayQueue()
    app.state.deadline_queue = queue  # type: ignore[attr-defined]
    scheduler.attach_queue(queue)
    worker = DeadlineWorker(queue, poll_timeout=0.1, sweep_interval=0)
    worker.start()
    yield queue
    worker.stop()
    queue.shutdown()
    scheduler.detach_queue()


@pytest.fixture(autouse=True)
def _isolate_queue(deadline_queue):
    deadline_queue.purge()
    yield
    deadline_queue.purge()


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


class FakeGateway:
    """In-process stand-in for the hosted checkout."""

    def __init__(self, server_key: str = TEST_SERVER_KEY):
        self.server_key = server_key
        self.created: list[str] = []
        self.statuses: dict[str, dict] = {}
        self.unreachable = False

    async def create_transaction(self, order_id, amount, item, customer):
        self.created.append(order_id)
        return CheckoutSession(order_id=order_id, token=f"tok-{order_id}", redirect_url=f"https://pay.test/{order_id}")

    async def get_status(self, order_id):
        from campaign_ledger.exceptions import UpstreamGatewayError
        if self.unreachable:
            raise UpstreamGatewayError("Payment gateway request timed out", retryable=True)
        return GatewayStatus.from_payload({"order_id": order_id, **self.statuses.get(order_id, {"transaction_status": "pending"})})

    def verify_notification(self, payload):
        expected = compute_signature(
            str(payload.get("order_id", "")),
            str(payload.get("status_code", "")),
            str(payload.get("gross_amount", "")),
            self.server_key,
        )
        return payload.get("signature_key") == expected


@pytest.fixture()
def fake_gateway():
    gateway = FakeGateway()
    app.dependency_overrides[deps.get_gateway] = lambda: gateway
    yield gateway
    app.dependency_overrides.pop(deps.get_gateway, None)


app.dependency_overrides[deps.get_db] = _override_get_db


@pytest.fixture()
def client():
    return TestClient(app)

# ---------- Data factory helpers ----------

@pytest.fixture()
def user_factory(db_session):
    def _create(role: UserRole = UserRole.PARTICIPANT, *, balance=None, name: str | None = None):
        suffix = secrets.token_hex(4)
        user = User(
            name=name or f"{role.value.title()} {suffix}",
            email=f"{role.value.lower()}_{suffix}@example.com",
            api_key=f"key_{secrets.token_hex(12)}",
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        if balance:
            # Seed through the ledger so balance and entries agree
            with _ledger_database.atomic(db_session):
                ledger.credit(db_session, user.id, balance, EntryCategory.ADJUSTMENT,
                              ledger.Reference.manual(), description="Test seed")
            db_session.refresh(user)
        return user
    return _create


@pytest.fixture()
def admin(user_factory):
    return user_factory(UserRole.ADMIN)


@pytest.fixture()
def sponsor(user_factory):
    return user_factory(UserRole.SPONSOR)


@pytest.fixture()
def campaign_factory(db_session):
    def _create(
        sponsor: User,
        *,
        status: CampaignStatus = CampaignStatus.ACTIVE,
        price_per_post=Decimal("100000"),
        influencer_count: int | None = 2,
        funded_amount=None,
        payment_deadline=None,
        **extra,
    ):
        campaign = Campaign(
            title=f"Campaign {secrets.token_hex(3)}",
            user_id=sponsor.id,
            status=status,
            price_per_post=price_per_post,
            influencer_count=influencer_count,
            funded_amount=funded_amount,
            payment_deadline=payment_deadline,
            paid_at=utc_now() if funded_amount is not None else None,
            **extra,
        )
        db_session.add(campaign)
        db_session.commit()
        db_session.refresh(campaign)
        return campaign
    return _create


@pytest.fixture()
def participation_factory(db_session, user_factory):
    def _create(
        campaign: Campaign,
        participant: User | None = None,
        *,
        accepted: bool = True,
        approved: bool = True,
    ):
        participant = participant or user_factory(UserRole.PARTICIPANT)
        participation = Participation(
            campaign_id=campaign.id,
            user_id=participant.id,
            application_status=ApplicationStatus.ACCEPTED if accepted else ApplicationStatus.PENDING,
            accepted_at=utc_now() if accepted else None,
        )
        db_session.add(participation)
        db_session.flush()
        if approved:
            db_session.add(WorkSubmission(
                participation_id=participation.id,
                content_url=f"https://social.example/p/{secrets.token_hex(4)}",
                status=DeliverableStatus.APPROVED,
            ))
        db_session.commit()
        db_session.refresh(participation)
        return participation
    return _create


@pytest.fixture()
def funded_campaign(campaign_factory, participation_factory, sponsor):
    """Active campaign funded with 220,000 and two eligible participants."""
    campaign = campaign_factory(sponsor, funded_amount=Decimal("220000"))
    first = participation_factory(campaign)
    second = participation_factory(campaign)
    return campaign, [first, second]


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {user.api_key}"}


def signed_notification(order_id: str, transaction_status: str, gross_amount: str, status_code: str = "200", **extra) -> dict:
    payload = {
        "order_id": order_id,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "transaction_status": transaction_status,
        **extra,
    }
    payload["signature_key"] = compute_signature(order_id, status_code, gross_amount, TEST_SERVER_KEY)
    return payload
