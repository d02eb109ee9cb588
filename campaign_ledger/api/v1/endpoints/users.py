"""
User account endpoints.
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import secrets
import string
import time
from campaign_ledger.api.deps import get_db, get_current_user, require_admin, get_pagination_params, internal_error
from campaign_ledger.models.db import User
from campaign_ledger.models.db.enums import UserRole
from campaign_ledger.models.schemas.base import ResponseBase
from campaign_ledger.models.schemas.users import UserCreate, UserRead, UserCreated
from campaign_ledger.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)


def generate_api_key() -> str:
    """Generate a secure API key."""
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(32))


@router.post(
    "/",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Create new user",
    description="Register a participant or sponsor account; the API key is only returned here"
)
async def create_user(
    user_data: UserCreate,
    request: Request,
    db: Session = Depends(get_db)
) -> ResponseBase:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "User creation started",
        user_email=user_data.email,
        user_role=user_data.role.value,
        request_id=request_id
    )

    try:
        if user_data.role == UserRole.ADMIN:
            logger.warning("User creation refused: operator accounts are provisioned", request_id=request_id)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Operator accounts cannot be self-registered"
            )

        existing_email = db.query(User).filter(User.email == user_data.email).first()
        if existing_email:
            logger.warning(
                "User creation failed: duplicate email",
                email=user_data.email,
                existing_user_id=existing_email.id,
                request_id=request_id
            )
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"User with email '{user_data.email}' already exists"
            )

        new_user = User(
            name=user_data.name,
            email=user_data.email,
            api_key=generate_api_key(),
            role=user_data.role,
        )
        db.add(new_user)
        db.commit()
        db.refresh(new_user)

        log_business_event(
            event_type="user_created",
            details={"user_role": new_user.role.value, "api_key_generated": True},
            user_id=new_user.id,
            request_id=request_id
        )
        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="create_user",
            duration_ms=duration_ms,
            additional_data={"user_id": new_user.id, "role": new_user.role.value}
        )

        return ResponseBase(
            message="User created",
            data={"user": UserCreated.model_validate(new_user).model_dump(mode="json")}
        )

    except HTTPException:
        raise
    except IntegrityError as e:
        db.rollback()
        logger.error(
            "User creation failed: database integrity error",
            error=str(e),
            user_email=user_data.email,
            request_id=request_id
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User with this email already exists"
        )
    except Exception as e:
        raise internal_error("User creation", e, request_id, user_email=user_data.email)


@router.get(
    "/me",
    response_model=ResponseBase,
    summary="Current user"
)
async def get_me(current_user: User = Depends(get_current_user)) -> ResponseBase:
    return ResponseBase(data={"user": UserRead.model_validate(current_user).model_dump(mode="json")})


@router.get(
    "/",
    response_model=ResponseBase,
    summary="List users",
    description="Get list of users with optional role filtering (admin only)"
)
async def list_users(
    role: Optional[UserRole] = Query(None, description="Filter by user role"),
    pagination: dict = Depends(get_pagination_params),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    users = query.order_by(User.id).offset(pagination["offset"]).limit(pagination["limit"]).all()
    return ResponseBase(data={
        "users": [UserRead.model_validate(u).model_dump(mode="json") for u in users],
        "count": len(users),
    })
