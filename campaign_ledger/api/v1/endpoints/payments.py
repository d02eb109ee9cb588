"""
Gateway funding endpoints: open a checkout, receive webhooks, handle the browser return.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
import time
from campaign_ledger.api.deps import get_db, get_current_user, get_gateway, internal_error
from campaign_ledger.exceptions import CampaignNotFound, Forbidden, LedgerServiceError
from campaign_ledger.integrations.gateway import GatewayClient
from campaign_ledger.models.db import Campaign, User
from campaign_ledger.models.db.enums import UserRole
from campaign_ledger.models.schemas.base import ResponseBase
from campaign_ledger.models.schemas.payments import FundingCreate, PaymentRead, CheckoutRead, GatewayNotification
from campaign_ledger.services import funding
from campaign_ledger.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/create",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Open a gateway checkout for a campaign",
    description="Returns the hosted checkout token and redirect URL for the expected campaign total"
)
async def create_payment(
    payload: FundingCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    gateway: GatewayClient = Depends(get_gateway),
    db: Session = Depends(get_db)
) -> ResponseBase:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "Funding payment creation started",
        campaign_id=payload.campaign_id,
        user_id=current_user.id,
        request_id=request_id
    )

    try:
        payment, checkout = await funding.create_funding_payment(db, payload.campaign_id, current_user, gateway)

        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="create_funding_payment",
            duration_ms=duration_ms,
            additional_data={"order_id": payment.order_id}
        )

        body = CheckoutRead(
            order_id=checkout.order_id,
            token=checkout.token,
            redirect_url=checkout.redirect_url,
            payment=PaymentRead.model_validate(payment),
        )
        return ResponseBase(message="Checkout created", data=body.model_dump(mode="json"))

    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Funding payment creation", e, request_id, campaign_id=payload.campaign_id)


@router.post(
    "/notification",
    response_model=ResponseBase,
    summary="Gateway webhook",
    description="Signed transaction status notification from the payment gateway"
)
async def payment_notification(
    payload: GatewayNotification,
    request: Request,
    gateway: GatewayClient = Depends(get_gateway),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info(
        "Gateway notification received",
        order_id=payload.order_id,
        transaction_status=payload.transaction_status,
        request_id=request_id
    )
    try:
        payment = await funding.handle_notification(db, payload.payload(), gateway)
        return ResponseBase(
            message="Notification processed",
            data={"order_id": payment.order_id, "status": payment.status.value}
        )
    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Gateway notification", e, request_id, order_id=payload.order_id)


@router.get(
    "/return",
    summary="Browser return from the hosted checkout",
    description="Re-queries the gateway and redirects to the frontend result page"
)
async def payment_return(
    order_id: str = Query(..., min_length=1),
    gateway: GatewayClient = Depends(get_gateway),
    db: Session = Depends(get_db)
) -> RedirectResponse:
    payment_status, url = await funding.handle_return(db, order_id, gateway)
    logger.info("Payment return handled", order_id=order_id, status=payment_status)
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


@router.get(
    "/campaign/{campaign_id}",
    response_model=ResponseBase,
    summary="List payments for a campaign"
)
async def list_campaign_payments(
    campaign_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id=campaign_id)
    if current_user.role != UserRole.ADMIN and campaign.user_id != current_user.id:
        raise Forbidden("Access denied", campaign_id=campaign_id)
    rows = funding.list_payments(db, campaign_id=campaign_id)
    return ResponseBase(data={
        "payments": [PaymentRead.model_validate(p).model_dump(mode="json") for p in rows],
        "count": len(rows),
    })


@router.get(
    "/order/{order_id}",
    response_model=ResponseBase,
    summary="Get a payment by gateway order id"
)
async def get_payment_by_order(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    payment = funding.get_payment(db, current_user, order_id=order_id)
    return ResponseBase(data={"payment": PaymentRead.model_validate(payment).model_dump(mode="json")})


@router.get(
    "/{payment_id}",
    response_model=ResponseBase,
    summary="Get a payment"
)
async def get_payment(
    payment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    payment = funding.get_payment(db, current_user, payment_id=payment_id)
    return ResponseBase(data={"payment": PaymentRead.model_validate(payment).model_dump(mode="json")})
