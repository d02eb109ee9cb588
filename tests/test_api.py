from datetime import timedelta
from decimal import Decimal
import secrets
from conftest import auth, signed_notification
from campaign_ledger.models.db import Campaign, Withdrawal
from campaign_ledger.models.db.enums import CampaignStatus, UserRole, WithdrawalStatus
from campaign_ledger.utils import utc_now

API = "/api/v1"
BANK = {"bank_name": "Mandiri", "account_number": "9876543210", "account_holder_name": "Budi Santoso"}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["queue_backend"] == "memory"


def test_user_registration_and_auth(client):
    email = f"new_{secrets.token_hex(4)}@example.com"
    resp = client.post(f"{API}/users/", json={"name": "Dewi", "email": email, "role": "SPONSOR"})
    assert resp.status_code == 201, resp.text
    created = resp.json()["data"]["user"]
    assert created["role"] == "SPONSOR"
    assert len(created["api_key"]) == 32

    me = client.get(f"{API}/users/me", headers={"Authorization": f"Bearer {created['api_key']}"})
    assert me.status_code == 200
    assert me.json()["data"]["user"]["email"] == email
    assert "api_key" not in me.json()["data"]["user"]

    dup = client.post(f"{API}/users/", json={"name": "Dewi", "email": email})
    assert dup.status_code == 409

    operator = client.post(f"{API}/users/", json={"name": "Op", "email": f"op_{email}", "role": "ADMIN"})
    assert operator.status_code == 403


def test_missing_or_bad_credentials(client):
    assert client.get(f"{API}/users/me").status_code in (401, 403)
    resp = client.get(f"{API}/users/me", headers={"Authorization": "Bearer not-a-key"})
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_admin_only_routes(client, user_factory, admin):
    participant = user_factory()
    assert client.get(f"{API}/users/", headers=auth(participant)).status_code == 403
    resp = client.get(f"{API}/users/", params={"role": "ADMIN"}, headers=auth(admin))
    assert resp.status_code == 200
    assert all(u["role"] == "ADMIN" for u in resp.json()["data"]["users"])


def test_withdrawal_flow_over_http(client, db_session, user_factory, admin):
    participant = user_factory(balance=Decimal("1000000"))

    resp = client.post(f"{API}/withdrawals/request", json={"amount": "500000", **BANK}, headers=auth(participant))
    assert resp.status_code == 201, resp.text
    data = resp.json()["data"]
    withdrawal_id = data["withdrawal"]["id"]
    assert Decimal(data["new_balance"]) == Decimal("500000")

    too_much = client.post(f"{API}/withdrawals/request", json={"amount": "600000", **BANK}, headers=auth(participant))
    assert too_much.status_code == 409
    assert too_much.json()["code"] == "insufficient_funds"

    missing_bank = client.post(f"{API}/withdrawals/request", json={"amount": "1000"}, headers=auth(participant))
    assert missing_bank.status_code == 400
    assert missing_bank.json()["code"] == "validation_error"

    no_reason = client.put(f"{API}/withdrawals/{withdrawal_id}/reject", json={}, headers=auth(admin))
    assert no_reason.status_code == 400

    assert client.put(
        f"{API}/withdrawals/{withdrawal_id}/reject", json={"rejection_reason": "duplicate request"}, headers=auth(participant),
    ).status_code == 403

    rejected = client.put(
        f"{API}/withdrawals/{withdrawal_id}/reject", json={"rejection_reason": "duplicate request"}, headers=auth(admin),
    )
    assert rejected.status_code == 200
    assert rejected.json()["data"]["withdrawal"]["status"] == "rejected"

    again = client.put(f"{API}/withdrawals/{withdrawal_id}/approve", headers=auth(admin))
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_transition"

    balance = client.get(f"{API}/transactions/balance", headers=auth(participant)).json()["data"]
    assert Decimal(balance["balance"]) == Decimal("1000000")
    assert balance["consistent"] is True


def test_withdrawal_cancel_and_listing(client, db_session, user_factory, admin):
    participant = user_factory(balance=Decimal("200000"))
    first = client.post(f"{API}/withdrawals/request", json={"amount": "50000", **BANK}, headers=auth(participant))
    second = client.post(f"{API}/withdrawals/request", json={"amount": "70000", **BANK}, headers=auth(participant))
    first_id = first.json()["data"]["withdrawal"]["id"]
    second_id = second.json()["data"]["withdrawal"]["id"]

    cancelled = client.delete(f"{API}/withdrawals/{first_id}/cancel", headers=auth(participant))
    assert cancelled.status_code == 200
    assert Decimal(cancelled.json()["data"]["refunded_amount"]) == Decimal("50000")
    db_session.expire_all()
    assert db_session.get(Withdrawal, first_id) is None

    completed = client.put(
        f"{API}/withdrawals/{second_id}/complete",
        json={"transfer_proof": "https://files.example/proof-2.pdf"},
        headers=auth(admin),
    )
    assert completed.status_code == 200
    assert completed.json()["data"]["withdrawal"]["status"] == WithdrawalStatus.COMPLETED.value

    mine = client.get(f"{API}/withdrawals/mine", headers=auth(participant)).json()["data"]
    assert [w["id"] for w in mine["withdrawals"]] == [second_id]
    assert client.get(f"{API}/withdrawals/", headers=auth(participant)).status_code == 403
    listed = client.get(f"{API}/withdrawals/", params={"status": "completed", "limit": 500}, headers=auth(admin))
    assert second_id in [w["id"] for w in listed.json()["data"]["withdrawals"]]
    assert client.get(f"{API}/withdrawals/", params={"limit": 0}, headers=auth(admin)).status_code == 400


def test_pay_all_endpoint_settles_campaign(client, db_session, funded_campaign, sponsor, admin):
    campaign, participations = funded_campaign

    assert client.post(f"{API}/campaign-payments/pay-all", json={"campaign_id": campaign.id}, headers=auth(sponsor)).status_code == 403

    resp = client.post(f"{API}/campaign-payments/pay-all", json={"campaign_id": campaign.id}, headers=auth(admin))
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["paid_count"] == 2
    assert data["settlement"]["settled"] is True
    assert Decimal(data["settlement"]["refund_amount"]) == Decimal("20000")

    summary = client.get(f"{API}/campaign-payments/summary/{campaign.id}", headers=auth(sponsor)).json()["data"]
    assert summary["status"] == "paid"
    assert Decimal(summary["remaining_amount"]) == Decimal("0")

    second = client.post(
        f"{API}/campaign-payments/pay-student",
        json={"participation_id": participations[0].id, "amount": "100000"},
        headers=auth(admin),
    )
    assert second.status_code == 409
    assert second.json()["code"] == "participation_already_paid"

    sponsor_balance = client.get(f"{API}/transactions/balance", headers=auth(sponsor)).json()["data"]
    assert Decimal(sponsor_balance["balance"]) == Decimal("20000")


def test_pay_custom_reports_failures(client, funded_campaign, admin):
    campaign, participations = funded_campaign
    resp = client.post(
        f"{API}/campaign-payments/pay-custom",
        json={"payments": [
            {"participation_id": participations[0].id, "amount": "110000"},
            {"participation_id": 999999, "amount": "10000"},
        ]},
        headers=auth(admin),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Paid 1 participant(s), 1 failed"
    failed = [r for r in body["data"]["results"] if not r["success"]]
    assert failed[0]["code"] == "participation_not_found"

    bad = client.post(
        f"{API}/campaign-payments/pay-custom",
        json={"payments": [{"participation_id": participations[1].id, "amount": "0"}]},
        headers=auth(admin),
    )
    assert bad.status_code == 400
    assert bad.json()["code"] == "invalid_amount"


def test_campaign_lifecycle_over_http(client, db_session, sponsor, admin, user_factory):
    resp = client.post(
        f"{API}/campaigns/",
        json={"title": "Ramadan Promo", "price_per_post": "100000", "influencer_count": 1, "submit": True},
        headers=auth(sponsor),
    )
    assert resp.status_code == 201, resp.text
    campaign_id = resp.json()["data"]["campaign"]["id"]
    assert resp.json()["data"]["campaign"]["status"] == "admin_review"

    assert client.put(f"{API}/campaigns/{campaign_id}/approve", headers=auth(sponsor)).status_code == 403
    approved = client.put(f"{API}/campaigns/{campaign_id}/approve", headers=auth(admin))
    assert approved.status_code == 200
    assert approved.json()["data"]["campaign"]["status"] == "pending_payment"

    status = client.get(f"{API}/campaigns/{campaign_id}/payment-status", headers=auth(sponsor)).json()["data"]
    assert status["can_pay"] is True
    assert Decimal(status["total"]) == Decimal("105000")

    assert client.get(f"{API}/campaigns/{campaign_id}", headers=auth(user_factory(UserRole.SPONSOR))).status_code == 403

    paid = client.post(f"{API}/campaigns/{campaign_id}/pay", headers=auth(sponsor))
    assert paid.status_code == 200
    assert paid.json()["data"]["campaign"]["status"] == "active"
    assert paid.json()["data"]["campaign"]["sub_status"] == "registration_open"

    participant = user_factory()
    applied = client.post(f"{API}/campaigns/{campaign_id}/participations", json={}, headers=auth(participant))
    assert applied.status_code == 201
    participation_id = applied.json()["data"]["participation"]["id"]

    decided = client.put(
        f"{API}/campaigns/participations/{participation_id}/status",
        json={"application_status": "accepted"}, headers=auth(sponsor),
    )
    assert decided.status_code == 200
    submitted = client.post(
        f"{API}/campaigns/participations/{participation_id}/submissions",
        json={"content_url": "https://social.example/p/ramadan"}, headers=auth(participant),
    )
    assert submitted.status_code == 201
    reviewed = client.put(
        f"{API}/campaigns/submissions/{submitted.json()['data']['submission']['id']}/review",
        json={"status": "approved"}, headers=auth(sponsor),
    )
    assert reviewed.status_code == 200

    settled = client.post(f"{API}/campaign-payments/pay-all", json={"campaign_id": campaign_id}, headers=auth(admin))
    assert settled.json()["data"]["settlement"]["settled"] is True
    # 105,000 funded (price + admin fee), 100,000 paid out
    assert Decimal(settled.json()["data"]["settlement"]["refund_amount"]) == Decimal("5000")


def test_campaign_reject_needs_reason(client, campaign_factory, sponsor, admin):
    campaign = campaign_factory(sponsor, status=CampaignStatus.ADMIN_REVIEW)
    resp = client.put(f"{API}/campaigns/{campaign.id}/reject", json={"reason": ""}, headers=auth(admin))
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


def test_gateway_webhook_and_return(client, db_session, campaign_factory, sponsor, fake_gateway):
    campaign = campaign_factory(
        sponsor, status=CampaignStatus.PENDING_PAYMENT, payment_deadline=utc_now() + timedelta(hours=1),
    )
    created = client.post(f"{API}/payments/create", json={"campaign_id": campaign.id}, headers=auth(sponsor))
    assert created.status_code == 201, created.text
    order_id = created.json()["data"]["order_id"]
    assert created.json()["data"]["redirect_url"] == f"https://pay.test/{order_id}"

    forged = signed_notification(order_id, "settlement", "205000.00")
    forged["signature_key"] = "f" * 128
    rejected = client.post(f"{API}/payments/notification", json=forged)
    assert rejected.status_code == 403
    assert rejected.json()["code"] == "forbidden"

    ok = client.post(f"{API}/payments/notification", json=signed_notification(order_id, "settlement", "205000.00"))
    assert ok.status_code == 200
    assert ok.json()["data"]["status"] == "success"
    db_session.expire_all()
    assert db_session.get(Campaign, campaign.id).status == CampaignStatus.ACTIVE

    fake_gateway.statuses[order_id] = {"transaction_status": "expire"}
    back = client.get(f"{API}/payments/return", params={"order_id": order_id}, follow_redirects=False)
    assert back.status_code == 303
    assert "/payment/success?" in back.headers["location"]

    unknown = client.get(f"{API}/payments/return", params={"order_id": "nope"}, follow_redirects=False)
    assert "/payment/failed?" in unknown.headers["location"]

    mine = client.get(f"{API}/payments/order/{order_id}", headers=auth(sponsor))
    assert mine.json()["data"]["payment"]["status"] == "success"


def test_adjustments_and_transaction_history(client, user_factory, admin):
    participant = user_factory()
    posted = client.post(
        f"{API}/transactions/adjustments",
        json={"user_id": participant.id, "amount": "25000", "direction": "credit", "category": "bonus",
              "description": "Top performer"},
        headers=auth(admin),
    )
    assert posted.status_code == 201, posted.text
    assert posted.json()["data"]["transaction"]["reference_type"] == "manual"

    penalty = client.post(
        f"{API}/transactions/adjustments",
        json={"user_id": participant.id, "amount": "30000", "direction": "debit", "category": "penalty",
              "description": "Late post"},
        headers=auth(admin),
    )
    assert penalty.status_code == 409

    history = client.get(f"{API}/transactions/mine", headers=auth(participant)).json()["data"]
    assert history["count"] == 1
    assert client.get(f"{API}/transactions/balance", params={"user_id": admin.id}, headers=auth(participant)).status_code == 403


def test_notifications_endpoints(client, user_factory):
    from campaign_ledger.models.db.enums import NotificationType
    from campaign_ledger.services import notifications

    user = user_factory()
    notifications.notify(user.id, title="Hi", message="First", type=NotificationType.CAMPAIGN)
    notifications.notify(user.id, title="Hi again", message="Second", type=NotificationType.CAMPAIGN)

    listed = client.get(f"{API}/notifications/mine", headers=auth(user)).json()["data"]
    assert listed["unread"] == 2
    first_id = listed["notifications"][0]["id"]

    assert client.put(f"{API}/notifications/{first_id}/read", headers=auth(user)).status_code == 200
    assert client.put(f"{API}/notifications/999999/read", headers=auth(user)).status_code == 404
    remaining = client.put(f"{API}/notifications/read-all", headers=auth(user)).json()["data"]
    assert remaining["updated"] == 1


def test_request_validation_error_shape(client, admin):
    resp = client.post(f"{API}/campaign-payments/pay-all", json={"campaign_id": "abc"}, headers=auth(admin))
    assert resp.status_code == 422
    assert resp.json()["code"] == "request_validation_error"


def test_typed_errors_reach_client_with_code_and_message(client, user_factory):
    participant = user_factory()

    resp = client.post(
        f"{API}/withdrawals/request", json={"amount": "500000", **BANK},
        headers={**auth(participant), "X-Request-ID": "req-insufficient"},
    )

    assert resp.status_code == 409
    body = resp.json()
    assert body["success"] is False
    assert body["code"] == "insufficient_funds"
    assert body["message"] == "Insufficient balance"
    assert body["request_id"] == "req-insufficient"

    missing = client.get(f"{API}/withdrawals/999999", headers=auth(participant))
    assert missing.status_code == 404
    assert missing.json()["code"] == "withdrawal_not_found"


def test_simulated_payment_funds_expected_total_only(client, db_session, campaign_factory, sponsor):
    campaign = campaign_factory(sponsor, status=CampaignStatus.PENDING_PAYMENT, influencer_count=1,
                                payment_deadline=utc_now() + timedelta(minutes=30))

    paid = client.post(f"{API}/campaigns/{campaign.id}/pay", json={"amount": "10000000"}, headers=auth(sponsor))

    assert paid.status_code == 200, paid.text
    assert Decimal(paid.json()["data"]["campaign"]["funded_amount"]) == Decimal("105000")
    db_session.expire_all()
    assert db_session.get(Campaign, campaign.id).funded_amount == Decimal("105000")
