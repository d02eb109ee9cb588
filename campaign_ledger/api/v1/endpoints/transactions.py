"""
Ledger read endpoints and operator adjustments.
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
from campaign_ledger.api.deps import get_db, get_current_user, require_admin, get_pagination_params, internal_error
from campaign_ledger.exceptions import LedgerServiceError
from campaign_ledger.models.db import User
from campaign_ledger.models.db.enums import EntryCategory, EntryDirection, UserRole
from campaign_ledger.models.schemas.base import ResponseBase
from campaign_ledger.models.schemas.ledger import LedgerEntryRead, BalanceRead, AdjustmentCreate
from campaign_ledger.services import ledger
from campaign_ledger.services.ledger import Reference
from campaign_ledger.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


def _entries_data(entries) -> dict:
    return {
        "transactions": [LedgerEntryRead.model_validate(e).model_dump(mode="json") for e in entries],
        "count": len(entries),
    }


@router.get(
    "/mine",
    response_model=ResponseBase,
    summary="My ledger entries",
    description="Newest first, optionally filtered by direction or category"
)
async def list_my_transactions(
    direction: Optional[EntryDirection] = Query(None),
    category: Optional[EntryCategory] = Query(None),
    pagination: dict = Depends(get_pagination_params),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    entries = ledger.list_entries(db, current_user.id, direction=direction, category=category, **pagination)
    return ResponseBase(data=_entries_data(entries))


@router.get(
    "/",
    response_model=ResponseBase,
    summary="All ledger entries (operators)"
)
async def list_all_transactions(
    user_id: Optional[int] = Query(None, gt=0),
    direction: Optional[EntryDirection] = Query(None),
    category: Optional[EntryCategory] = Query(None),
    pagination: dict = Depends(get_pagination_params),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    entries = ledger.list_all_entries(
        db, user_id=user_id, direction=direction, category=category, **pagination
    )
    return ResponseBase(data=_entries_data(entries))


@router.get(
    "/balance",
    response_model=ResponseBase,
    summary="Current balance",
    description="Stored balance alongside the ledger-derived total; operators may pass user_id"
)
async def get_balance(
    user_id: Optional[int] = Query(None, gt=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    target = user_id or current_user.id
    if target != current_user.id and current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    verification = ledger.verify_account(db, target)
    if not verification.consistent:
        logger.error(
            "Balance does not match ledger",
            user_id=target,
            balance=verification.balance,
            ledger_total=verification.ledger_total
        )
    return ResponseBase(data=BalanceRead.model_validate(verification).model_dump(mode="json"))


@router.post(
    "/adjustments",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Post a bonus, penalty or adjustment",
    description="Operator-initiated ledger entry; debits never take a balance below zero"
)
async def post_adjustment(
    payload: AdjustmentCreate,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info(
        "Ledger adjustment started",
        target_user_id=payload.user_id,
        direction=payload.direction,
        category=payload.category,
        admin_id=admin.id,
        request_id=request_id
    )
    try:
        entry = ledger.post_adjustment(
            db,
            operator=admin,
            user_id=payload.user_id,
            amount=payload.amount,
            direction=payload.direction,
            category=payload.category,
            description=payload.description,
            reference=Reference.campaign(payload.campaign_id) if payload.campaign_id else None,
        )
        return ResponseBase(
            message="Adjustment posted",
            data={"transaction": LedgerEntryRead.model_validate(entry).model_dump(mode="json")}
        )
    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Ledger adjustment", e, request_id, target_user_id=payload.user_id)


@router.get(
    "/{entry_id}",
    response_model=ResponseBase,
    summary="Get a ledger entry"
)
async def get_transaction(
    entry_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    entry = ledger.get_entry(db, entry_id, current_user)
    return ResponseBase(data={"transaction": LedgerEntryRead.model_validate(entry).model_dump(mode="json")})
