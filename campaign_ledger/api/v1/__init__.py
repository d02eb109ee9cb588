"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import campaign_payments, campaigns, notifications, payments, transactions, users, withdrawals

api_router = APIRouter()

api_router.include_router(
    users.router,
    prefix="/users",
    tags=["users"]
)

api_router.include_router(
    campaigns.router,
    prefix="/campaigns",
    tags=["campaigns"]
)

api_router.include_router(
    campaign_payments.router,
    prefix="/campaign-payments",
    tags=["campaign-payments"]
)

api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["payments"]
)

api_router.include_router(
    withdrawals.router,
    prefix="/withdrawals",
    tags=["withdrawals"]
)

api_router.include_router(
    transactions.router,
    prefix="/transactions",
    tags=["transactions"]
)

api_router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["notifications"]
)
