"""
Entitlement Engine - tier resolution, module access and monthly usage limits.

One engine serves one unit of work (a request, a CLI command). Its membership
cache lives as long as the engine and is only invalidated by the engine's own
mutations or clear_cache(); it is never shared between engines.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Union

from tiergate.events import (
    EventBus,
    MembershipChangedEvent,
    MembershipCreatedEvent,
    MembershipExpiredEvent,
    UsageRecordedEvent,
    event_bus as default_event_bus,
)
from tiergate.exceptions import (
    AccessDeniedError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from tiergate.membership.audit import AuditSink, NullAuditSink
from tiergate.membership.records import MembershipRecord, MembershipStatus
from tiergate.membership.store import MembershipStore
from tiergate.membership.usage import Clock, UsageMeter, UsageSource, period_key, utcnow
from tiergate.tiers import (
    UNLIMITED,
    Limit,
    ResourceType,
    Tier,
    TierPolicy,
    TierPolicyTable,
    Unlimited,
    parse_limits,
)

if TYPE_CHECKING:
    from tiergate.module_registry import ModuleRegistry

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class UsageDecision:
    resource: str
    used: int
    limit: int
    requested: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "resource": self.resource,
            "used": self.used,
            "limit": self.limit,
            "requested": self.requested,
            "remaining": max(self.limit - self.used, 0),
        }


class EntitlementEngine:
    def __init__(
        self,
        store: MembershipStore,
        policy: Optional[TierPolicyTable] = None,
        registry: Optional["ModuleRegistry"] = None,
        *,
        audit: Optional[AuditSink] = None,
        event_bus: Optional[EventBus] = None,
        usage_sources: Optional[Mapping[str, UsageSource]] = None,
        default_tier: Union[Tier, str] = Tier.FREE,
        counter_fallback: bool = False,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.policy = policy or TierPolicyTable.default()
        self.registry = registry
        self.audit = audit or NullAuditSink()
        self.event_bus = event_bus or default_event_bus
        self.default_tier = Tier.parse(default_tier)
        self.counter_fallback = counter_fallback
        self._clock = clock or utcnow
        self.meter = UsageMeter(store, clock=self._clock)
        self._usage_sources: Dict[str, UsageSource] = dict(usage_sources or {})
        # user_id -> active record, or None when the user has none
        self._cache: Dict[int, Optional[MembershipRecord]] = {}

    # -- membership --------------------------------------------------------

    def get_membership(self, user_id: int) -> Optional[MembershipRecord]:
        """Active membership for the user, or None."""
        cached = self._cache.get(user_id, _MISSING)
        if cached is not _MISSING:
            return cached  # type: ignore[return-value]

        record = self.store.get_membership(user_id)
        active = record if record is not None and record.is_active else None
        self._cache[user_id] = active
        return active

    def get_tier(self, user_id: int) -> Tier:
        membership = self.get_membership(user_id)
        if membership is None:
            return self.default_tier
        return membership.tier

    def get_policy(self, user_id: int) -> TierPolicy:
        return self.policy.get(self.get_tier(user_id))

    def update_tier(
        self,
        user_id: int,
        new_tier: Union[Tier, str],
        *,
        expires_at: Optional[datetime] = None,
        custom_limits: Optional[Mapping[str, Any]] = None,
        provider_customer_ref: Optional[str] = None,
        provider_subscription_ref: Optional[str] = None,
    ) -> MembershipRecord:
        """
        Sets the user's tier, creating an active membership when there is none.

        An existing record keeps its status; reactivating an expired or
        cancelled membership is done through store.transition_status().

        Raises:
            InvalidTierError: new_tier is not a known tier. The store is not touched.
            ValidationError: custom_limits holds an invalid limit value.
        """
        tier = Tier.parse(new_tier)
        limits = parse_limits(custom_limits) if custom_limits is not None else None
        now = self._clock()

        existing = self.store.get_membership(user_id)
        if existing is None:
            record = MembershipRecord(
                user_id=user_id,
                tier=tier,
                status=MembershipStatus.ACTIVE,
                custom_limits=limits or {},
                starts_at=now,
                expires_at=expires_at,
                provider_customer_ref=provider_customer_ref,
                provider_subscription_ref=provider_subscription_ref,
                created_at=now,
                updated_at=now,
            )
        else:
            changes: Dict[str, Any] = {"tier": tier, "updated_at": now}
            if expires_at is not None:
                changes["expires_at"] = expires_at
            if limits is not None:
                changes["custom_limits"] = limits
            if provider_customer_ref is not None:
                changes["provider_customer_ref"] = provider_customer_ref
            if provider_subscription_ref is not None:
                changes["provider_subscription_ref"] = provider_subscription_ref
            record = replace(existing, **changes)

        stored = self.store.upsert_membership(record)
        self.clear_cache(user_id)

        old_tier = existing.tier.value if existing is not None else None
        if existing is None:
            self.audit.append(
                "membership_created", "membership", user_id, {"tier": tier.value}
            )
            logger.info(f"Created {tier.value} membership for user {user_id}")
        else:
            self.audit.append(
                "tier_updated",
                "membership",
                user_id,
                {"old_tier": old_tier, "new_tier": tier.value},
            )
            logger.info(f"Updated tier for user {user_id}: {old_tier} -> {tier.value}")

        self.event_bus.publish(
            MembershipChangedEvent(user_id=user_id, old_tier=old_tier, new_tier=tier.value)
        )
        if existing is None:
            self.event_bus.publish(MembershipCreatedEvent(user_id=user_id, tier=tier.value))
        return stored

    def provision_default(self, user_id: int) -> MembershipRecord:
        """Creates the default-tier membership at signup; no-op when a record exists."""
        existing = self.store.get_membership(user_id)
        if existing is not None:
            return existing
        return self.update_tier(user_id, self.default_tier)

    def sweep_expirations(self, now: Optional[datetime] = None) -> int:
        """
        Moves active memberships whose expires_at is before now to expired.
        Returns the number of memberships this call expired.
        """
        now = now or self._clock()
        expired = 0
        for record in self.store.list_expired_active(now):
            # Another sweeper may have won the race; only count our transitions
            if not self.store.transition_status(
                record.user_id, MembershipStatus.ACTIVE, MembershipStatus.EXPIRED, at=now
            ):
                continue
            expired += 1
            self.clear_cache(record.user_id)
            self.audit.append(
                "membership_expired",
                "membership",
                record.user_id,
                {
                    "tier": record.tier.value,
                    "expires_at": record.expires_at.isoformat() if record.expires_at else None,
                },
            )
            self.event_bus.publish(
                MembershipExpiredEvent(
                    user_id=record.user_id,
                    tier=record.tier.value,
                    expired_at=record.expires_at,
                )
            )
        if expired:
            logger.info(f"Expired {expired} memberships")
        return expired

    def clear_cache(self, user_id: Optional[int] = None) -> None:
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)

    # -- modules -----------------------------------------------------------

    def can_access_module(self, module_id: str, user_id: int) -> bool:
        if self.registry is None or module_id not in self.registry:
            return False
        return self.get_policy(user_id).allows_module(module_id)

    def submit_entry(self, module_id: str, user_id: int, data: Mapping[str, Any]) -> int:
        """
        Validates and stores a module entry for the user.
        Each entry counts against the user's monthly episodes limit.
        """
        if self.registry is None:
            raise NotFoundError("Module", module_id)
        entry = self.registry.get(module_id)
        if not entry.enabled:
            raise AccessDeniedError(module_id, user_id, "module is disabled")
        if not self.can_access_module(module_id, user_id):
            raise AccessDeniedError(module_id, user_id, f"tier {self.get_tier(user_id).value}")

        self.require_usage(ResourceType.EPISODES.value, user_id)

        validate = getattr(entry.instance, "validate_data", None)
        cleaned = validate(data) if callable(validate) else dict(data)

        now = self._clock()
        entry_id = self.store.add_entry(user_id, module_id, cleaned, created_at=now)
        total = self.current_usage(ResourceType.EPISODES.value, user_id)
        self.event_bus.publish(
            UsageRecordedEvent(
                user_id=user_id,
                resource_type=ResourceType.EPISODES.value,
                period_key=period_key(now),
                amount=1,
                total=total,
            )
        )
        logger.debug(f"Stored entry {entry_id} for module {module_id}, user {user_id}")
        return entry_id

    # -- usage -------------------------------------------------------------

    def register_usage_source(self, resource_type: str, source: UsageSource) -> None:
        self._usage_sources[resource_type] = source

    def get_limit(self, resource_type: str, user_id: int) -> Optional[Limit]:
        """
        Custom limit from the active membership first, then the tier's limit.
        None means the resource is not limited.
        """
        membership = self.get_membership(user_id)
        if membership is not None and resource_type in membership.custom_limits:
            return membership.custom_limits[resource_type]
        return self.get_policy(user_id).limit_for(resource_type)

    def check_usage_limit(self, resource_type: str, user_id: int) -> bool:
        limit = self.get_limit(resource_type, user_id)
        if limit is None or isinstance(limit, Unlimited):
            return True
        return self.current_usage(resource_type, user_id) < limit

    def remaining(self, resource_type: str, user_id: int) -> Union[int, Unlimited]:
        limit = self.get_limit(resource_type, user_id)
        if limit is None or isinstance(limit, Unlimited):
            return UNLIMITED
        return max(limit - self.current_usage(resource_type, user_id), 0)

    def require_usage(self, resource_type: str, user_id: int, requested: int = 1) -> None:
        limit = self.get_limit(resource_type, user_id)
        if limit is None or isinstance(limit, Unlimited):
            return
        used = self.current_usage(resource_type, user_id)
        if used < limit:
            return
        decision = UsageDecision(
            resource=resource_type, used=used, limit=limit, requested=requested
        )
        raise QuotaExceededError(self._error_payload(user_id, decision))

    def current_usage(self, resource_type: str, user_id: int) -> int:
        if resource_type == ResourceType.EPISODES.value:
            start, end = self.meter.bounds()
            return self.store.count_entries(user_id, start, end)
        if resource_type == ResourceType.AI_ANALYSES.value:
            return self.meter.get(resource_type, user_id)

        source = self._usage_sources.get(resource_type)
        if source is not None:
            start, end = self.meter.bounds()
            return int(source(user_id, start, end))
        if self.counter_fallback:
            return self.meter.get(resource_type, user_id)
        return 0

    def record_usage(self, resource_type: str, user_id: int, amount: int = 1) -> int:
        """
        Adds amount to the user's counter for the current month. Not gated by
        the limit; call check_usage_limit() first or use record_usage_if_allowed().

        The counter is written for every resource type, but only counter-backed
        types read it back: episodes are counted from stored entries, and a
        registered usage source (or a disabled counter fallback) takes
        precedence for other types, so such writes never move the limit check.
        """
        self._check_amount(amount)
        if not self._is_counter_backed(resource_type):
            logger.debug(
                f"Recording {resource_type} usage for user {user_id} in the counter; "
                "limit checks for this type do not read it"
            )
        total = self.meter.increment(resource_type, user_id, amount)
        self._publish_usage(resource_type, user_id, amount, total)
        return total

    def record_usage_if_allowed(self, resource_type: str, user_id: int, amount: int = 1) -> int:
        """
        Atomic check-and-increment for counter-backed resource types.

        Raises:
            QuotaExceededError: the increment would pass the limit.
            ValidationError: the resource type is not backed by the counter.
        """
        self._check_amount(amount)
        if not self._is_counter_backed(resource_type):
            raise ValidationError(
                f"Usage of {resource_type} is not counter based", field="resource_type"
            )

        limit = self.get_limit(resource_type, user_id)
        if limit is None or isinstance(limit, Unlimited):
            return self.record_usage(resource_type, user_id, amount)

        total = self.meter.increment_if_below(resource_type, user_id, amount, limit)
        if total is None:
            decision = UsageDecision(
                resource=resource_type,
                used=self.meter.get(resource_type, user_id),
                limit=limit,
                requested=amount,
            )
            raise QuotaExceededError(self._error_payload(user_id, decision))
        self._publish_usage(resource_type, user_id, amount, total)
        return total

    def usage_summary(self, user_id: int) -> Dict[str, Dict[str, Any]]:
        """Limit, usage and remaining for every resource the user's tier or custom limits name."""
        membership = self.get_membership(user_id)
        resources = list(self.get_policy(user_id).resource_limits)
        if membership is not None:
            resources.extend(r for r in membership.custom_limits if r not in resources)

        summary: Dict[str, Dict[str, Any]] = {}
        for resource in resources:
            limit = self.get_limit(resource, user_id)
            remaining = self.remaining(resource, user_id)
            summary[resource] = {
                "used": self.current_usage(resource, user_id),
                "limit": "unlimited" if isinstance(limit, Unlimited) else limit,
                "remaining": "unlimited" if isinstance(remaining, Unlimited) else remaining,
            }
        return summary

    def _is_counter_backed(self, resource_type: str) -> bool:
        if resource_type == ResourceType.EPISODES.value:
            return False
        if resource_type == ResourceType.AI_ANALYSES.value:
            return True
        return resource_type not in self._usage_sources and self.counter_fallback

    def _publish_usage(self, resource_type: str, user_id: int, amount: int, total: int) -> None:
        self.event_bus.publish(
            UsageRecordedEvent(
                user_id=user_id,
                resource_type=resource_type,
                period_key=period_key(self._clock()),
                amount=amount,
                total=total,
            )
        )

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError(
                f"Usage amount must be a non-negative integer: {amount!r}", field="amount"
            )

    @staticmethod
    def _error_payload(user_id: int, decision: UsageDecision) -> Dict[str, object]:
        return {"user_id": user_id, "resources": [decision.to_dict()]}
