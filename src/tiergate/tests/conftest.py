from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from tiergate.events import DomainEvent, EventBus
from tiergate.membership import EntitlementEngine, InMemoryMembershipStore
from tiergate.module_registry import FeatureModule, ModuleRegistry
from tiergate.tiers import TierPolicyTable

REPO_ROOT = Path(__file__).resolve().parents[3]
SAMPLE_MODULES_DIR = REPO_ROOT / "modules"


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingAudit:
    def __init__(self):
        self.entries = []

    def append(self, action, target_type, target_id, details=None):
        self.entries.append((action, target_type, target_id, details or {}))

    def actions(self):
        return [entry[0] for entry in self.entries]


def make_module(module_id: str, **attrs) -> FeatureModule:
    attrs.setdefault("name", module_id.replace("-", " ").title())
    attrs.setdefault("description", f"{module_id} module")
    attrs.setdefault("version", "1.0.0")
    cls = type("TestModule", (FeatureModule,), {"id": module_id, **attrs})
    return cls()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def bus():
    bus = EventBus()
    bus.events = []
    bus.subscribe(DomainEvent, bus.events.append)
    return bus


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def store():
    return InMemoryMembershipStore()


@pytest.fixture
def registry(bus):
    registry = ModuleRegistry(event_bus=bus)
    for module_id in ("overthinking-logger", "mood-tracker", "sleep-tracker", "insights"):
        registry.register_module(make_module(module_id), source="test")
    return registry


@pytest.fixture
def engine(store, registry, audit, bus, clock):
    return EntitlementEngine(
        store,
        TierPolicyTable.default(),
        registry,
        audit=audit,
        event_bus=bus,
        clock=clock,
    )


@pytest.fixture
def module_factory():
    return make_module


@pytest.fixture
def sample_modules_dir():
    return SAMPLE_MODULES_DIR
