"""
Withdrawal endpoints: participants reserve funds, operators settle or refund them.
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
import time
from campaign_ledger.api.deps import get_db, get_current_user, require_admin, get_pagination_params, internal_error
from campaign_ledger.exceptions import LedgerServiceError
from campaign_ledger.models.db import User
from campaign_ledger.models.db.enums import WithdrawalStatus
from campaign_ledger.models.schemas.base import ResponseBase
from campaign_ledger.models.schemas.withdrawals import (
    WithdrawalRequest, WithdrawalRead, WithdrawalApprove, WithdrawalReject, WithdrawalComplete
)
from campaign_ledger.services import withdrawals as withdrawal_service
from campaign_ledger.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/request",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Request a withdrawal",
    description="Reserve the amount from the caller's balance and open a pending withdrawal"
)
async def request_withdrawal(
    payload: WithdrawalRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "Withdrawal request started",
        user_id=current_user.id,
        amount=payload.amount,
        request_id=request_id
    )

    try:
        withdrawal, new_balance = withdrawal_service.request_withdrawal(
            db,
            current_user,
            amount=payload.amount,
            bank_name=payload.bank_name,
            account_number=payload.account_number,
            account_holder_name=payload.account_holder_name,
        )

        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="request_withdrawal",
            duration_ms=duration_ms,
            additional_data={"withdrawal_id": withdrawal.id}
        )

        return ResponseBase(
            message="Withdrawal request submitted",
            data={
                "withdrawal": WithdrawalRead.model_validate(withdrawal).model_dump(mode="json"),
                "new_balance": str(new_balance),
            }
        )

    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Withdrawal request", e, request_id, user_id=current_user.id)


@router.get(
    "/mine",
    response_model=ResponseBase,
    summary="List my withdrawals"
)
async def list_my_withdrawals(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        rows = withdrawal_service.list_my_withdrawals(db, current_user.id)
        return ResponseBase(data={
            "withdrawals": [WithdrawalRead.model_validate(w).model_dump(mode="json") for w in rows],
            "count": len(rows),
        })
    except Exception as e:
        raise internal_error("Withdrawal listing", e, request_id, user_id=current_user.id)


@router.get(
    "/",
    response_model=ResponseBase,
    summary="List all withdrawals",
    description="Operator view with optional status filter"
)
async def list_all_withdrawals(
    request: Request,
    status_filter: Optional[WithdrawalStatus] = Query(None, alias="status"),
    pagination: dict = Depends(get_pagination_params),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        rows = withdrawal_service.list_all_withdrawals(db, status=status_filter, **pagination)
        return ResponseBase(data={
            "withdrawals": [WithdrawalRead.model_validate(w).model_dump(mode="json") for w in rows],
            "count": len(rows),
            "status": status_filter.value if status_filter else None,
        })
    except Exception as e:
        raise internal_error("Withdrawal listing", e, request_id, admin_id=admin.id)


@router.get(
    "/{withdrawal_id}",
    response_model=ResponseBase,
    summary="Get a withdrawal"
)
async def get_withdrawal(
    withdrawal_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    withdrawal = withdrawal_service.get_withdrawal(db, withdrawal_id, current_user)
    return ResponseBase(data={"withdrawal": WithdrawalRead.model_validate(withdrawal).model_dump(mode="json")})


@router.put(
    "/{withdrawal_id}/approve",
    response_model=ResponseBase,
    summary="Approve a pending withdrawal"
)
async def approve_withdrawal(
    withdrawal_id: int,
    request: Request,
    payload: Optional[WithdrawalApprove] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info("Withdrawal approval started", withdrawal_id=withdrawal_id, admin_id=admin.id, request_id=request_id)
    try:
        withdrawal = withdrawal_service.approve_withdrawal(
            db, withdrawal_id, admin, notes=payload.notes if payload else None
        )
        return ResponseBase(
            message="Withdrawal approved",
            data={"withdrawal": WithdrawalRead.model_validate(withdrawal).model_dump(mode="json")}
        )
    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Withdrawal approval", e, request_id, withdrawal_id=withdrawal_id)


@router.put(
    "/{withdrawal_id}/reject",
    response_model=ResponseBase,
    summary="Reject a pending withdrawal",
    description="Credits the reserved amount back to the requester"
)
async def reject_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalReject,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info("Withdrawal rejection started", withdrawal_id=withdrawal_id, admin_id=admin.id, request_id=request_id)
    try:
        withdrawal = withdrawal_service.reject_withdrawal(db, withdrawal_id, admin, payload.rejection_reason)
        return ResponseBase(
            message="Withdrawal rejected and amount refunded",
            data={"withdrawal": WithdrawalRead.model_validate(withdrawal).model_dump(mode="json")}
        )
    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Withdrawal rejection", e, request_id, withdrawal_id=withdrawal_id)


@router.put(
    "/{withdrawal_id}/complete",
    response_model=ResponseBase,
    summary="Mark a withdrawal as transferred"
)
async def complete_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalComplete,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info("Withdrawal completion started", withdrawal_id=withdrawal_id, admin_id=admin.id, request_id=request_id)
    try:
        withdrawal = withdrawal_service.complete_withdrawal(
            db, withdrawal_id, admin, payload.transfer_proof, notes=payload.notes
        )
        return ResponseBase(
            message="Withdrawal completed",
            data={"withdrawal": WithdrawalRead.model_validate(withdrawal).model_dump(mode="json")}
        )
    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Withdrawal completion", e, request_id, withdrawal_id=withdrawal_id)


@router.delete(
    "/{withdrawal_id}/cancel",
    response_model=ResponseBase,
    summary="Cancel my pending withdrawal"
)
async def cancel_withdrawal(
    withdrawal_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        refunded = withdrawal_service.cancel_withdrawal(db, withdrawal_id, current_user)
        return ResponseBase(
            message="Withdrawal cancelled",
            data={"withdrawal_id": withdrawal_id, "refunded_amount": str(refunded)}
        )
    except (HTTPException, LedgerServiceError):
        raise
    except Exception as e:
        raise internal_error("Withdrawal cancellation", e, request_id, withdrawal_id=withdrawal_id)
