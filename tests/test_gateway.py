import asyncio
import hashlib
from decimal import Decimal
import pytest
from campaign_ledger.exceptions import UpstreamGatewayError
from campaign_ledger.integrations.gateway import (
    GatewayStatus, MidtransGateway, compute_signature, gross_amount_str, normalize_status,
)
from campaign_ledger.models.db.enums import PaymentStatus


@pytest.mark.parametrize("transaction_status,fraud_status,expected", [
    ("settlement", None, PaymentStatus.SUCCESS),
    ("capture", "accept", PaymentStatus.SUCCESS),
    ("capture", None, PaymentStatus.SUCCESS),
    ("capture", "challenge", PaymentStatus.PENDING),
    ("pending", None, PaymentStatus.PENDING),
    ("deny", None, PaymentStatus.FAILED),
    ("expire", None, PaymentStatus.FAILED),
    ("cancel", None, PaymentStatus.FAILED),
    ("failure", None, PaymentStatus.FAILED),
    (None, None, PaymentStatus.PENDING),
    ("SETTLEMENT", None, PaymentStatus.SUCCESS),
])
def test_normalize_status(transaction_status, fraud_status, expected):
    assert normalize_status(transaction_status, fraud_status) == expected


def test_signature_is_sha512_of_fields():
    expected = hashlib.sha512(b"ORDER-1200205000.00server-key").hexdigest()
    assert compute_signature("ORDER-1", "200", "205000.00", "server-key") == expected
    assert gross_amount_str(Decimal("205000")) == "205000.00"
    assert gross_amount_str(1500) == "1500.00"


def test_verify_notification():
    gateway = MidtransGateway(server_key="server-key")
    payload = {"order_id": "ORDER-1", "status_code": "200", "gross_amount": "205000.00"}
    payload["signature_key"] = compute_signature("ORDER-1", "200", "205000.00", "server-key")

    assert gateway.verify_notification(payload)
    assert not gateway.verify_notification({**payload, "gross_amount": "1.00"})
    assert not gateway.verify_notification({**payload, "signature_key": ""})
    assert not MidtransGateway(server_key="").verify_notification(payload)


def test_gateway_status_from_payload():
    status = GatewayStatus.from_payload({
        "order_id": "ORDER-9",
        "transaction_status": "capture",
        "fraud_status": "accept",
        "status_code": 200,
        "gross_amount": 50000,
        "payment_type": "credit_card",
    })
    assert status.status_code == "200"
    assert status.gross_amount == "50000"
    assert status.normalized == PaymentStatus.SUCCESS
    assert status.raw["payment_type"] == "credit_card"


def test_unconfigured_gateway_refuses_requests():
    gateway = MidtransGateway(server_key="")
    with pytest.raises(UpstreamGatewayError):
        asyncio.run(gateway.get_status("ORDER-1"))


def test_sandbox_and_production_urls():
    assert "sandbox" in MidtransGateway(server_key="k", is_production=False).snap_url
    assert "sandbox" not in MidtransGateway(server_key="k", is_production=True).core_url
