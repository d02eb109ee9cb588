"""Payment-deadline job payload."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(slots=True)
class PaymentDeadlineJob:
    campaign_id: int
    deadline_ts: float  # epoch seconds; must match Campaign.payment_deadline when fired
    priority: str = "high"
    correlation_id: Optional[str] = None

    def key(self) -> str:
        # One live deadline per campaign
        return f"deadline:{self.campaign_id}"


__all__ = ["PaymentDeadlineJob"]
