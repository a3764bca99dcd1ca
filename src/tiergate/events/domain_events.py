"""
Domain Event Definitions.
These events are published after registry and membership state changes.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import uuid

from pydantic import BaseModel, Field


class DomainEvent(BaseModel):
    """Base class for all domain events."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ModuleRegisteredEvent(DomainEvent):
    event_type: str = "module.registered"
    module_id: str
    version: str
    source: Optional[str] = None


class MembershipCreatedEvent(DomainEvent):
    event_type: str = "membership.created"
    user_id: int
    tier: str


class MembershipChangedEvent(DomainEvent):
    event_type: str = "membership.changed"
    user_id: int
    old_tier: Optional[str] = None  # None when the record was just provisioned
    new_tier: str


class MembershipExpiredEvent(DomainEvent):
    event_type: str = "membership.expired"
    user_id: int
    tier: str
    expired_at: Optional[datetime] = None


class UsageRecordedEvent(DomainEvent):
    event_type: str = "usage.recorded"
    user_id: int
    resource_type: str
    period_key: str
    amount: int
    total: int
