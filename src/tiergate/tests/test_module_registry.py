from __future__ import annotations

import sys
import textwrap
from pathlib import Path

import pytest

from tiergate.events import ModuleRegisteredEvent
from tiergate.exceptions import DuplicateIdError, ModuleValidationError, NotFoundError
from tiergate.module_registry import (
    DirectorySource,
    ModuleDescriptor,
    ModuleRegistry,
    ModuleSource,
)
from tiergate.tiers import Tier


def _descriptor(**overrides) -> ModuleDescriptor:
    data = {
        "id": "mood-tracker",
        "name": "Mood Tracker",
        "description": "Track mood",
        "version": "1.0.0",
        "data_schema": {},
    }
    data.update(overrides)
    return ModuleDescriptor(**data)


def _write(path, body: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(body), encoding="utf-8")


_GOOD_MODULE = """
from tiergate.module_registry import FeatureModule


class {cls}(FeatureModule):
    id = "{module_id}"
    name = "{cls}"
    description = "test module"
    version = "{version}"


def create_module():
    return {cls}()
"""


def test_register_then_get(bus):
    registry = ModuleRegistry(event_bus=bus)

    entry = registry.register(_descriptor(), source="manual")

    assert registry.get("mood-tracker") is entry
    assert "mood-tracker" in registry
    assert len(registry) == 1
    assert [e.module_id for e in bus.events if isinstance(e, ModuleRegisteredEvent)] == [
        "mood-tracker"
    ]


def test_get_unknown_module_raises_not_found(bus):
    registry = ModuleRegistry(event_bus=bus)

    with pytest.raises(NotFoundError):
        registry.get("nope")
    assert registry.find("nope") is None


def test_duplicate_id_is_rejected_and_first_wins(bus):
    registry = ModuleRegistry(event_bus=bus)
    first = registry.register(_descriptor(version="1.0.0"))

    with pytest.raises(DuplicateIdError):
        registry.register(_descriptor(version="2.0.0"))

    assert registry.get("mood-tracker") is first
    assert registry.get("mood-tracker").descriptor.version == "1.0.0"
    assert len(registry.get_errors()) == 1
    assert "already registered" in registry.get_errors()[0]


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"name": ""}, "name"),
        ({"version": "   "}, "version"),
        ({"id": ""}, "id"),
        ({"id": "Mood Tracker"}, "id"),
        ({"id": "mood.tracker"}, "id"),
        ({"data_schema": ["mood"]}, "data_schema"),
    ],
)
def test_validate_rejects_bad_descriptors(bus, overrides, field):
    registry = ModuleRegistry(event_bus=bus)

    with pytest.raises(ModuleValidationError) as exc_info:
        registry.register(_descriptor(**overrides))

    assert exc_info.value.field == field
    assert len(registry) == 0
    assert len(registry.get_errors()) == 1


def test_validate_reports_missing_field_before_bad_id(bus):
    registry = ModuleRegistry(event_bus=bus)

    with pytest.raises(ModuleValidationError) as exc_info:
        registry.validate(_descriptor(id="Bad Id", description=""))

    assert exc_info.value.field == "description"
    assert str(exc_info.value) == "Module is missing required property: description"


def test_descriptor_from_mapping_rejects_unknown_min_tier():
    with pytest.raises(ModuleValidationError):
        ModuleDescriptor.from_mapping(
            {"id": "x", "name": "x", "description": "x", "version": "1", "min_tier": "diamond"}
        )


def test_descriptor_from_mapping_keeps_missing_schema_missing():
    descriptor = ModuleDescriptor.from_mapping(
        {"id": "no-schema", "name": "x", "description": "y", "version": "1"}
    )

    assert descriptor.data_schema is None
    with pytest.raises(ModuleValidationError) as exc_info:
        ModuleRegistry().register(descriptor, object())
    assert exc_info.value.field == "data_schema"


def test_discover_rejects_mapping_descriptor_without_schema(tmp_path, bus):
    _write(
        tmp_path / "plain.py",
        """
        class Plain:
            def __init__(self, module_id, **extra):
                self.module_id = module_id
                self.extra = extra

            def describe(self):
                data = {"id": self.module_id, "name": "Plain", "description": "d", "version": "1"}
                data.update(self.extra)
                return data


        MODULES = [Plain("no-schema"), Plain("with-schema", schema={"note": {"type": "str"}})]
        """,
    )

    registry = ModuleRegistry([DirectorySource(tmp_path)], event_bus=bus)
    registry.discover()

    assert registry.ids() == ["with-schema"]
    errors = registry.get_errors()
    assert len(errors) == 1
    assert "no-schema" in errors[0] and "data schema" in errors[0]


def test_discover_directory_collects_good_and_bad_candidates(tmp_path, bus):
    _write(tmp_path / "alpha.py", _GOOD_MODULE.format(cls="Alpha", module_id="alpha", version="1.0"))
    _write(
        tmp_path / "beta" / "main.py",
        _GOOD_MODULE.format(cls="Beta", module_id="beta", version="1.0"),
    )
    _write(tmp_path / "broken.py", "raise RuntimeError('boom')\n")
    _write(tmp_path / "no_factory.py", "VALUE = 1\n")
    _write(
        tmp_path / "bad_id.py",
        _GOOD_MODULE.format(cls="BadId", module_id="Bad Id", version="1.0"),
    )
    _write(tmp_path / "_private.py", "raise RuntimeError('never imported')\n")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    registry = ModuleRegistry([DirectorySource(tmp_path)], event_bus=bus)
    registry.discover()

    assert sorted(registry.ids()) == ["alpha", "beta"]
    errors = registry.get_errors()
    assert len(errors) == 3
    assert any("broken.py" in e and "boom" in e for e in errors)
    assert any("no_factory.py" in e and "create_module" in e for e in errors)
    assert any("invalid characters" in e for e in errors)


def test_discover_first_source_wins_on_duplicate_ids(tmp_path, bus):
    core = tmp_path / "core"
    site = tmp_path / "site"
    _write(core / "alpha.py", _GOOD_MODULE.format(cls="Alpha", module_id="alpha", version="1.0"))
    _write(site / "alpha.py", _GOOD_MODULE.format(cls="Alpha", module_id="alpha", version="9.9"))

    registry = ModuleRegistry([DirectorySource(core), DirectorySource(site)], event_bus=bus)
    registry.discover()

    assert registry.get("alpha").descriptor.version == "1.0"
    assert len(registry.get_errors()) == 1


def test_same_directory_name_in_two_sources_keeps_both_imports(tmp_path, bus):
    core = tmp_path / "core"
    site = tmp_path / "site"
    _write(
        core / "journal" / "main.py",
        _GOOD_MODULE.format(cls="Journal", module_id="journal", version="1.0"),
    )
    _write(
        site / "journal" / "main.py",
        _GOOD_MODULE.format(cls="Journal", module_id="journal-site", version="2.0"),
    )

    registry = ModuleRegistry([DirectorySource(core), DirectorySource(site)], event_bus=bus)
    registry.discover()

    core_module = type(registry.get("journal").instance).__module__
    site_module = type(registry.get("journal-site").instance).__module__
    assert core_module != site_module
    assert Path(sys.modules[core_module].__file__).parent.parent == core
    assert Path(sys.modules[site_module].__file__).parent.parent == site


def test_discover_missing_directory_is_empty(tmp_path, bus):
    registry = ModuleRegistry([DirectorySource(tmp_path / "absent")], event_bus=bus)
    registry.discover()

    assert len(registry) == 0
    assert registry.get_errors() == []


def test_discover_modules_sequence_convention(tmp_path, bus):
    _write(
        tmp_path / "pack.py",
        """
        from tiergate.module_registry import FeatureModule


        class One(FeatureModule):
            id = "one"
            name = "One"
            description = "first"


        class Two(FeatureModule):
            id = "two"
            name = "Two"
            description = "second"


        MODULES = [One, Two()]
        """,
    )

    registry = ModuleRegistry([DirectorySource(tmp_path)], event_bus=bus)
    registry.discover()

    assert sorted(registry.ids()) == ["one", "two"]


def test_source_listing_failure_is_recorded(bus):
    class BrokenSource(ModuleSource):
        label = "broken-source"

        def candidates(self):
            raise OSError("unreadable")

    registry = ModuleRegistry([BrokenSource()], event_bus=bus)
    registry.discover()

    assert registry.get_errors() == ["Failed to list modules in broken-source: unreadable"]


def test_source_provider_contributes_sources(tmp_path, bus):
    _write(tmp_path / "gamma.py", _GOOD_MODULE.format(cls="Gamma", module_id="gamma", version="1"))

    registry = ModuleRegistry(event_bus=bus)
    registry.add_source_provider(lambda: [DirectorySource(tmp_path)])
    registry.discover()

    assert registry.ids() == ["gamma"]


def test_discover_shipped_sample_modules(sample_modules_dir, bus):
    registry = ModuleRegistry([DirectorySource(sample_modules_dir)], event_bus=bus)
    registry.discover()

    assert registry.get_errors() == []
    assert sorted(registry.ids()) == ["mood-tracker", "overthinking-logger", "sleep-tracker"]
    assert registry.get("sleep-tracker").descriptor.min_tier is Tier.BRONZE


def test_set_enabled_filters_list_enabled(registry):
    registry.set_enabled("insights", False)

    enabled = [entry.id for entry in registry.list_enabled()]
    assert "insights" not in enabled
    assert registry.get("insights").enabled is False

    registry.set_enabled("insights", True)
    assert "insights" in [entry.id for entry in registry.list_enabled()]


def test_set_enabled_unknown_module(registry):
    with pytest.raises(NotFoundError):
        registry.set_enabled("ghost", False)


def test_list_for_user_uses_entitlements(registry, engine):
    registry.set_enabled("mood-tracker", False)

    ids = [entry.id for entry in registry.list_for_user(7, engine)]

    assert ids == ["overthinking-logger"]


def test_get_stats(registry):
    registry.set_enabled("insights", False)

    stats = registry.get_stats()

    assert stats["total"] == 4
    assert stats["enabled"] == 3
    assert stats["disabled"] == 1
    assert stats["by_min_tier"] == {"free": 4}
    assert stats["errors"] == 0
