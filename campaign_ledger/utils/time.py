"""Time utilities (UTC now, naive/aware normalization, epoch conversion)."""
from __future__ import annotations
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch(value: datetime) -> float:
    return ensure_utc(value).timestamp()  # type: ignore[union-attr]


__all__ = ["utc_now", "ensure_utc", "to_epoch"]
