"""Sponsor funding through the external gateway.

A ``Payment`` row is created when the sponsor opens a checkout and is only
updated from gateway information: webhook notifications and the browser-return
status re-query. A payment reaching ``success`` confirms the campaign (if it is
still awaiting payment), which is the only link between this module and the
lifecycle.
"""
from __future__ import annotations

import secrets
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from campaign_ledger.config import FRONTEND_SETTINGS
from campaign_ledger.database import atomic
from campaign_ledger.exceptions import (
    CampaignNotFound,
    Forbidden,
    InvalidTransition,
    PaymentNotFound,
    UpstreamGatewayError,
)
from campaign_ledger.integrations.gateway import CheckoutSession, GatewayClient, GatewayStatus
from campaign_ledger.models.db import Campaign, Payment, User
from campaign_ledger.models.db.enums import CampaignStatus, PaymentStatus, UserRole
from campaign_ledger.services import campaign_lifecycle
from campaign_ledger.utils import ensure_utc, get_logger, log_business_event, utc_now

logger = get_logger(__name__)


def new_order_id(campaign_id: int) -> str:
    return f"CAMPAIGN-{campaign_id}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def _parse_transaction_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError:
        logger.warning("Unparseable gateway transaction_time", value=value)
        return None


async def create_funding_payment(
    session: Session,
    campaign_id: int,
    sponsor: User,
    gateway: GatewayClient,
) -> Tuple[Payment, CheckoutSession]:
    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id=campaign_id)
    if sponsor.role != UserRole.ADMIN and campaign.user_id != sponsor.id:
        raise Forbidden("Only the campaign owner can pay for it", campaign_id=campaign_id)
    if campaign.status != CampaignStatus.PENDING_PAYMENT:
        raise InvalidTransition("Campaign is not awaiting payment", campaign_id=campaign_id, status=campaign.status.value)
    deadline = ensure_utc(campaign.payment_deadline)
    if deadline is not None and deadline <= utc_now():
        raise InvalidTransition("Payment deadline has passed", campaign_id=campaign_id)

    quote = campaign_lifecycle.expected_amount(campaign)
    order_id = new_order_id(campaign_id)
    checkout = await gateway.create_transaction(
        order_id,
        quote.total,
        item={"id": f"CAMPAIGN-{campaign_id}", "price": int(quote.total), "quantity": 1, "name": campaign.title[:50]},
        customer={"first_name": sponsor.name, "email": sponsor.email},
    )

    with atomic(session):
        payment = Payment(
            order_id=order_id,
            campaign_id=campaign_id,
            user_id=sponsor.id,
            amount=quote.total,
            status=PaymentStatus.PENDING,
            raw_response={"token": checkout.token, "redirect_url": checkout.redirect_url},
        )
        session.add(payment)

    log_business_event(
        event_type="funding_payment_created",
        details={"campaign_id": campaign_id, "order_id": order_id, "amount": quote.total},
        user_id=sponsor.id,
    )
    return payment, checkout


def apply_gateway_status(session: Session, status: GatewayStatus) -> Payment:
    """Record what the gateway reports; confirm the campaign on first success."""
    normalized = status.normalized
    with atomic(session):
        payment = (
            session.query(Payment)
            .filter(Payment.order_id == status.order_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if payment is None:
            raise PaymentNotFound(order_id=status.order_id)
        previous = payment.status
        if previous == PaymentStatus.SUCCESS and normalized != PaymentStatus.SUCCESS:
            # Late or out-of-order callback; a settled payment never regresses
            logger.warning(
                "Ignoring gateway status regression",
                order_id=status.order_id,
                reported=status.transaction_status,
            )
        else:
            payment.status = normalized
        payment.gateway_status = status.transaction_status
        payment.payment_type = status.payment_type or payment.payment_type
        payment.transaction_time = _parse_transaction_time(status.transaction_time) or payment.transaction_time
        payment.raw_response = status.raw or payment.raw_response
        campaign_id = payment.campaign_id
        amount = payment.amount

    logger.info(
        "Gateway status applied",
        order_id=status.order_id,
        previous=previous,
        status=payment.status,
        gateway_status=status.transaction_status,
    )
    if payment.status == PaymentStatus.SUCCESS and previous != PaymentStatus.SUCCESS:
        try:
            campaign_lifecycle.confirm_payment(session, campaign_id, settled_amount=amount)
        except InvalidTransition as e:
            logger.error(
                "Payment settled for a campaign that is no longer awaiting payment",
                order_id=status.order_id,
                campaign_id=campaign_id,
                status=e.context.get("status"),
            )
    return payment


async def handle_notification(session: Session, payload: Dict[str, Any], gateway: GatewayClient) -> Payment:
    """Webhook entry point; the signature must verify before anything is read."""
    if not gateway.verify_notification(payload):
        logger.warning("Rejected gateway notification with invalid signature", order_id=payload.get("order_id"))
        raise Forbidden("Invalid notification signature")
    return apply_gateway_status(session, GatewayStatus.from_payload(payload))


def build_redirect_url(order_id: str, status: PaymentStatus) -> str:
    path_key = {
        PaymentStatus.SUCCESS: "success_path",
        PaymentStatus.FAILED: "failure_path",
    }.get(status, "pending_path")
    query = urlencode({"order_id": order_id, "status": status.value})
    return f"{FRONTEND_SETTINGS['base_url'].rstrip('/')}{FRONTEND_SETTINGS[path_key]}?{query}"


async def handle_return(session: Session, order_id: str, gateway: GatewayClient) -> Tuple[PaymentStatus, str]:
    """Browser return: re-query the gateway, fall back to pending when it is unreachable."""
    payment = session.query(Payment).filter(Payment.order_id == order_id).one_or_none()
    if payment is None:
        logger.warning("Return for unknown order", order_id=order_id)
        return PaymentStatus.FAILED, build_redirect_url(order_id, PaymentStatus.FAILED)
    try:
        reported = await gateway.get_status(order_id)
        status = apply_gateway_status(session, reported).status
    except UpstreamGatewayError as e:
        logger.warning("Gateway status unavailable on return", order_id=order_id, error=e.message)
        status = PaymentStatus.PENDING
    return status, build_redirect_url(order_id, status)


def list_payments(session: Session, *, campaign_id: Optional[int] = None, user_id: Optional[int] = None) -> List[Payment]:
    query = session.query(Payment)
    if campaign_id is not None:
        query = query.filter(Payment.campaign_id == campaign_id)
    if user_id is not None:
        query = query.filter(Payment.user_id == user_id)
    return query.order_by(Payment.id.desc()).all()


def get_payment(session: Session, viewer: User, *, payment_id: Optional[int] = None, order_id: Optional[str] = None) -> Payment:
    query = session.query(Payment)
    if payment_id is not None:
        payment = query.filter(Payment.id == payment_id).one_or_none()
    else:
        payment = query.filter(Payment.order_id == order_id).one_or_none()
    if payment is None:
        raise PaymentNotFound(payment_id=payment_id, order_id=order_id)
    if viewer.role != UserRole.ADMIN and payment.user_id != viewer.id:
        raise Forbidden("Access denied")
    return payment


__all__ = [
    "new_order_id",
    "create_funding_payment",
    "apply_gateway_status",
    "handle_notification",
    "build_redirect_url",
    "handle_return",
    "list_payments",
    "get_payment",
]
