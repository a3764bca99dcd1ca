from tiergate.events.domain_events import (
    DomainEvent,
    MembershipChangedEvent,
    MembershipCreatedEvent,
    MembershipExpiredEvent,
    ModuleRegisteredEvent,
    UsageRecordedEvent,
)
from tiergate.events.event_bus import EventBus, event_bus

__all__ = [
    "DomainEvent",
    "EventBus",
    "MembershipChangedEvent",
    "MembershipCreatedEvent",
    "MembershipExpiredEvent",
    "ModuleRegisteredEvent",
    "UsageRecordedEvent",
    "event_bus",
]
