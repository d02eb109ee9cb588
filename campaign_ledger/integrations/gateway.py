"""
External payment gateway client (Midtrans Snap + Core API).

Only the funding service talks to this module. It never touches balances:
its job is to open a hosted checkout, report a transaction's state and
authenticate webhook payloads.
"""
from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import aiohttp

from campaign_ledger.config import BACKOFF_POLICY, GATEWAY_SETTINGS
from campaign_ledger.exceptions import UpstreamGatewayError
from campaign_ledger.models.db.enums import PaymentStatus
from campaign_ledger.utils import get_logger
from campaign_ledger.utils.backoff import compute_backoff_seconds

logger = get_logger(__name__)

SUCCESS_STATES = frozenset({"settlement", "capture"})
FAILED_STATES = frozenset({"deny", "cancel", "expire", "failure"})


def normalize_status(transaction_status: Optional[str], fraud_status: Optional[str] = None) -> PaymentStatus:
    """Map a gateway transaction state onto PaymentStatus."""
    state = (transaction_status or "").lower()
    if state == "capture" and fraud_status and fraud_status.lower() != "accept":
        return PaymentStatus.PENDING
    if state in SUCCESS_STATES:
        return PaymentStatus.SUCCESS
    if state in FAILED_STATES:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def gross_amount_str(amount: Decimal | int | str) -> str:
    """Gateway amounts are whole currency units rendered with two decimals."""
    return f"{Decimal(str(amount)).quantize(Decimal('0.01'))}"


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    raw = f"{order_id}{status_code}{gross_amount}{server_key}".encode("utf-8")
    return hashlib.sha512(raw).hexdigest()


@dataclass(slots=True)
class CheckoutSession:
    order_id: str
    token: str
    redirect_url: str


@dataclass(slots=True)
class GatewayStatus:
    order_id: str
    transaction_status: Optional[str]
    status_code: Optional[str] = None
    gross_amount: Optional[str] = None
    payment_type: Optional[str] = None
    transaction_time: Optional[str] = None
    fraud_status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def normalized(self) -> PaymentStatus:
        return normalize_status(self.transaction_status, self.fraud_status)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "GatewayStatus":
        return cls(
            order_id=str(payload.get("order_id", "")),
            transaction_status=payload.get("transaction_status"),
            status_code=str(payload["status_code"]) if payload.get("status_code") is not None else None,
            gross_amount=str(payload["gross_amount"]) if payload.get("gross_amount") is not None else None,
            payment_type=payload.get("payment_type"),
            transaction_time=payload.get("transaction_time"),
            fraud_status=payload.get("fraud_status"),
            raw=dict(payload),
        )


class GatewayClient(Protocol):
    async def create_transaction(
        self,
        order_id: str,
        amount: Decimal,
        item: Dict[str, Any],
        customer: Dict[str, Any],
    ) -> CheckoutSession: ...

    async def get_status(self, order_id: str) -> GatewayStatus: ...

    def verify_notification(self, payload: Dict[str, Any]) -> bool: ...


class MidtransGateway:
    """Midtrans client over aiohttp. Settings default to ``GATEWAY_SETTINGS``."""

    def __init__(
        self,
        server_key: Optional[str] = None,
        *,
        is_production: Optional[bool] = None,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.server_key = server_key if server_key is not None else str(GATEWAY_SETTINGS["server_key"] or "")
        production = bool(GATEWAY_SETTINGS["is_production"]) if is_production is None else is_production
        self.snap_url = str(GATEWAY_SETTINGS["snap_production_url" if production else "snap_sandbox_url"])
        self.core_url = str(GATEWAY_SETTINGS["core_production_url" if production else "core_sandbox_url"])
        self.timeout = aiohttp.ClientTimeout(total=float(timeout_seconds or GATEWAY_SETTINGS["timeout_seconds"]))  # type: ignore[arg-type]
        self.max_attempts = int(max_attempts or GATEWAY_SETTINGS["status_max_attempts"] or BACKOFF_POLICY["max_attempts"])  # type: ignore[arg-type]

    def _headers(self) -> Dict[str, str]:
        token = base64.b64encode(f"{self.server_key}:".encode("utf-8")).decode("ascii")
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Basic {token}",
        }

    async def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.server_key:
            raise UpstreamGatewayError("Payment gateway is not configured")
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, json=payload, headers=self._headers()) as response:
                    body = await response.json(content_type=None)
                    if response.status >= 400:
                        logger.error("Gateway request failed", url=url, status_code=response.status, body=body)
                        raise UpstreamGatewayError(
                            f"Payment gateway returned HTTP {response.status}",
                            http_status=response.status,
                            retryable=response.status >= 500,
                        )
                    return body or {}
        except asyncio.TimeoutError:
            logger.error("Gateway request timed out", url=url)
            raise UpstreamGatewayError("Payment gateway request timed out", retryable=True)
        except aiohttp.ClientError as e:
            logger.error("Gateway client error", url=url, error=str(e))
            raise UpstreamGatewayError(f"Payment gateway client error: {e}", retryable=True)

    async def create_transaction(
        self,
        order_id: str,
        amount: Decimal,
        item: Dict[str, Any],
        customer: Dict[str, Any],
    ) -> CheckoutSession:
        payload = {
            "transaction_details": {"order_id": order_id, "gross_amount": int(Decimal(amount))},
            "item_details": [item],
            "customer_details": customer,
        }
        body = await self._request("POST", self.snap_url, payload)
        if not body.get("token") or not body.get("redirect_url"):
            raise UpstreamGatewayError("Payment gateway returned no checkout token", order_id=order_id)
        logger.info("Gateway checkout created", order_id=order_id, amount=amount)
        return CheckoutSession(order_id=order_id, token=body["token"], redirect_url=body["redirect_url"])

    async def get_status(self, order_id: str) -> GatewayStatus:
        """Status re-query with exponential backoff on transient failures."""
        url = f"{self.core_url}/{order_id}/status"
        attempt = 0
        while True:
            attempt += 1
            try:
                body = await self._request("GET", url)
                return GatewayStatus.from_payload({"order_id": order_id, **body})
            except UpstreamGatewayError as e:
                if not e.context.get("retryable") or attempt >= self.max_attempts:
                    raise
                delay = compute_backoff_seconds(attempt)
                logger.warning("Gateway status query retrying", order_id=order_id, attempt=attempt, delay_seconds=round(delay, 2))
                await asyncio.sleep(delay)

    def verify_notification(self, payload: Dict[str, Any]) -> bool:
        signature = payload.get("signature_key")
        if not signature or not self.server_key:
            return False
        expected = compute_signature(
            str(payload.get("order_id", "")),
            str(payload.get("status_code", "")),
            str(payload.get("gross_amount", "")),
            self.server_key,
        )
        return hmac.compare_digest(expected, str(signature))


__all__ = [
    "normalize_status",
    "gross_amount_str",
    "compute_signature",
    "CheckoutSession",
    "GatewayStatus",
    "GatewayClient",
    "MidtransGateway",
]
