from tiergate.membership.audit import AuditSink, LoggingAuditSink, NullAuditSink
from tiergate.membership.engine import EntitlementEngine, UsageDecision
from tiergate.membership.records import (
    MembershipRecord,
    MembershipStatus,
    UsageKey,
    as_utc,
)
from tiergate.membership.sql_store import SqlMembershipStore
from tiergate.membership.store import InMemoryMembershipStore, MembershipStore
from tiergate.membership.usage import (
    UsageMeter,
    UsageSource,
    period_bounds,
    period_key,
    previous_period,
)

__all__ = [
    "AuditSink",
    "EntitlementEngine",
    "InMemoryMembershipStore",
    "LoggingAuditSink",
    "MembershipRecord",
    "MembershipStatus",
    "MembershipStore",
    "NullAuditSink",
    "SqlMembershipStore",
    "UsageDecision",
    "UsageKey",
    "UsageMeter",
    "UsageSource",
    "as_utc",
    "period_bounds",
    "period_key",
    "previous_period",
]
