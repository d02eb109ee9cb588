"""Core application configuration & tunable money-movement rules.

Every rule that may evolve (payment deadline, admin fee, gateway endpoints,
queue backends, retry/backoff thresholds) is centralized here so it can be
adjusted without diving into service logic. Values come from environment
variables where a deployment needs to override them; the dicts are mutable so
tests can monkeypatch individual keys.
"""
from __future__ import annotations

import os
from decimal import Decimal


def _env_bool(name: str, default: str = "false") -> bool:
	return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


APP_ENV: str = os.getenv("APP_ENV", "production")

# Default remains the lightweight local sqlite DB used in development.
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./campaign_ledger.db")

# ------------------------------ Campaign payment -------------------------- #
PAYMENT_SETTINGS: dict[str, int | float | Decimal] = {
	# Grace period between operator approval and automatic cancellation.
	"deadline_seconds": int(os.getenv("PAYMENT_DEADLINE_SECONDS", "3600")),
	# Flat platform fee added on top of price_per_post * influencer_count.
	"admin_fee": Decimal(os.getenv("PAYMENT_ADMIN_FEE", "5000")),
	# How often the deadline worker sweeps for overdue / stale campaigns.
	"sweep_interval_seconds": float(os.getenv("PAYMENT_SWEEP_INTERVAL_SECONDS", "30")),
	# Monetary precision (2 decimal places, matches Numeric(14, 2)).
	"currency_quantum": Decimal("0.01"),
}

# --------------------------------- Gateway -------------------------------- #
GATEWAY_SETTINGS: dict[str, str | bool | float | int | None] = {
	"server_key": os.getenv("MIDTRANS_SERVER_KEY") or "",
	"client_key": os.getenv("MIDTRANS_CLIENT_KEY") or "",
	"is_production": _env_bool("MIDTRANS_IS_PRODUCTION"),
	"snap_sandbox_url": "https://app.sandbox.midtrans.com/snap/v1/transactions",
	"snap_production_url": "https://app.midtrans.com/snap/v1/transactions",
	"core_sandbox_url": "https://api.sandbox.midtrans.com/v2",
	"core_production_url": "https://api.midtrans.com/v2",
	"timeout_seconds": float(os.getenv("MIDTRANS_TIMEOUT_SECONDS", "15")),
	# Status re-queries (browser return) retry transient failures.
	"status_max_attempts": int(os.getenv("MIDTRANS_STATUS_MAX_ATTEMPTS", "3")),
}

# Browser-return redirects land on the frontend with order_id & status.
FRONTEND_SETTINGS: dict[str, str] = {
	"base_url": os.getenv("FRONTEND_URL", "http://localhost:5173"),
	"success_path": "/payment/success",
	"failure_path": "/payment/failed",
	"pending_path": "/payment/pending",
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float] = {
	"base_seconds": 1,
	"factor": 2,          # Exponential factor
	"max_seconds": 30,
	"max_attempts": 3,
	"jitter_pct": 0.10,   # +/-10% jitter
}

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, dict[str, int] | int | float | str | bool] = {
	"priorities": {  # Lower number = higher priority
		"high": 0,
		"normal": 5,
		"low": 10,
	},
	"warn_depth": 1000,
	"max_in_memory": 5000,
	# Durable deadlines survive restarts when Redis is enabled; recovery from
	# Campaign.payment_deadline covers the in-memory case.
	"use_redis": _env_bool("USE_REDIS_QUEUE"),
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"redis_ready_key": "campaign_ledger:ready_queue",
	"redis_scheduled_key": "campaign_ledger:scheduled_jobs",
	"redis_health_check_timeout": 2.0,
}

__all__ = [
	"APP_ENV",
	"DATABASE_URL",
	"PAYMENT_SETTINGS",
	"GATEWAY_SETTINGS",
	"FRONTEND_SETTINGS",
	"BACKOFF_POLICY",
	"QUEUE_SETTINGS",
]
