from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from tiergate.tiers import Limit, Tier, serialize_limits


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    PAUSED = "paused"


@dataclass(frozen=True)
class MembershipRecord:
    user_id: int
    tier: Tier
    status: MembershipStatus = MembershipStatus.ACTIVE
    custom_limits: Mapping[str, Limit] = field(default_factory=dict)
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    provider_customer_ref: Optional[str] = None
    provider_subscription_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == MembershipStatus.ACTIVE

    def is_expired_at(self, now: datetime) -> bool:
        return self.expires_at is not None and as_utc(self.expires_at) < as_utc(now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "tier": self.tier.value,
            "status": self.status.value,
            "custom_limits": serialize_limits(self.custom_limits),
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "provider_customer_ref": self.provider_customer_ref,
            "provider_subscription_ref": self.provider_subscription_ref,
        }


@dataclass(frozen=True)
class UsageKey:
    user_id: int
    resource_type: str
    period_key: str


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
