from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, List, Optional

from tiergate.config import Settings, get_settings
from tiergate.events import EventBus, event_bus as default_event_bus
from tiergate.membership import (
    AuditSink,
    EntitlementEngine,
    LoggingAuditSink,
    MembershipStore,
    NullAuditSink,
    SqlMembershipStore,
)
from tiergate.module_registry import (
    DirectorySource,
    EntryPointSource,
    ModuleRegistry,
    ModuleSource,
    PackageSource,
)
from tiergate.tiers import Tier, TierPolicyTable

logger = logging.getLogger(__name__)


def _parse_csv(value: str) -> list[str]:
    return [p.strip() for p in (value or "").split(",") if p.strip()]


def build_sources(settings: Settings) -> List[ModuleSource]:
    """Directories first (core before site overrides), then packages, then entry points."""
    sources: List[ModuleSource] = [DirectorySource(Path(p)) for p in _parse_csv(settings.MODULE_DIRS)]
    sources.extend(PackageSource(pkg) for pkg in _parse_csv(settings.MODULE_PACKAGES))
    if settings.MODULE_ENTRY_POINT_GROUP:
        sources.append(EntryPointSource(settings.MODULE_ENTRY_POINT_GROUP))
    return sources


def build_registry(
    settings: Optional[Settings] = None,
    *,
    event_bus: Optional[EventBus] = None,
) -> ModuleRegistry:
    settings = settings or get_settings()
    registry = ModuleRegistry(build_sources(settings), event_bus=event_bus)

    if not settings.MODULES_AUTOLOAD:
        return registry

    registry.discover()
    for module_id in _parse_csv(settings.MODULES_DISABLED):
        if module_id not in registry:
            logger.warning(f"Cannot disable unknown module: {module_id}")
            continue
        registry.set_enabled(module_id, False)

    errors = registry.get_errors()
    if errors:
        logger.warning(f"Module discovery reported {len(errors)} errors")
    return registry


def load_policy(settings: Optional[Settings] = None) -> TierPolicyTable:
    settings = settings or get_settings()
    if settings.TIER_POLICY_FILE:
        return TierPolicyTable.from_file(settings.TIER_POLICY_FILE)
    return TierPolicyTable.default()


class Runtime:
    """
    Process-wide pieces (registry, policy, audit sink, event bus) built once;
    engines are cheap and built per unit of work.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        policy: TierPolicyTable,
        *,
        settings: Optional[Settings] = None,
        audit: Optional[AuditSink] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry
        self.policy = policy
        self.audit = audit or (
            LoggingAuditSink() if self.settings.AUDIT_ENABLED else NullAuditSink()
        )
        self.event_bus = event_bus or default_event_bus

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Runtime":
        settings = settings or get_settings()
        return cls(
            build_registry(settings),
            load_policy(settings),
            settings=settings,
        )

    def engine(self, store: MembershipStore) -> EntitlementEngine:
        return EntitlementEngine(
            store,
            self.policy,
            self.registry,
            audit=self.audit,
            event_bus=self.event_bus,
            default_tier=Tier.parse(self.settings.DEFAULT_TIER),
            counter_fallback=self.settings.USAGE_COUNTER_FALLBACK,
        )

    @contextmanager
    def session_engine(self) -> Generator[EntitlementEngine, None, None]:
        """Engine over a SQL session that commits on success and rolls back on error."""
        from tiergate.database import get_db_session

        with get_db_session() as session:
            yield self.engine(SqlMembershipStore(session))
