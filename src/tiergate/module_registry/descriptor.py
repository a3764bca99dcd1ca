"""
Module Descriptor - feature module identity and contract
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from tiergate.exceptions import InvalidTierError, ModuleValidationError
from tiergate.tiers import Tier

MODULE_ID_PATTERN = re.compile(r"^[a-z0-9_-]+$")
REQUIRED_FIELDS = ("id", "name", "description", "version")


@dataclass
class ModuleDescriptor:
    """Identity and data contract of a feature module."""

    id: str
    name: str
    description: str
    version: str
    data_schema: Any
    min_tier: Tier = Tier.FREE
    enabled: bool = True

    icon: str = ""
    capabilities: List[str] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ModuleDescriptor":
        raw_tier = data.get("min_tier") or Tier.FREE
        try:
            min_tier = Tier.parse(raw_tier)
        except InvalidTierError:
            raise ModuleValidationError(
                f"Module declares unknown min_tier {raw_tier!r}",
                field="min_tier",
                module_id=data.get("id"),
            ) from None
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "",
            description=data.get("description") or "",
            version=data.get("version") or "",
            min_tier=min_tier,
            data_schema=data.get("data_schema", data.get("schema")),
            enabled=bool(data.get("enabled", True)),
            icon=data.get("icon", ""),
            capabilities=list(data.get("capabilities", [])),
            settings=dict(data.get("settings", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "min_tier": self.min_tier.value,
            "enabled": self.enabled,
            "icon": self.icon,
            "capabilities": list(self.capabilities),
            "data_schema": dict(self.data_schema) if isinstance(self.data_schema, Mapping) else None,
        }


def validate_descriptor(descriptor: ModuleDescriptor) -> None:
    """
    Structural contract check. Stops at the first failing rule:
    required fields, then id pattern, then data_schema shape.
    """
    for prop in REQUIRED_FIELDS:
        value = getattr(descriptor, prop, None)
        if not isinstance(value, str) or not value.strip():
            raise ModuleValidationError(
                f"Module is missing required property: {prop}",
                field=prop,
                module_id=descriptor.id if isinstance(descriptor.id, str) else None,
            )

    if not MODULE_ID_PATTERN.match(descriptor.id):
        raise ModuleValidationError(
            f"Module ID {descriptor.id} contains invalid characters. "
            "Use only lowercase letters, numbers, hyphens, and underscores.",
            field="id",
            module_id=descriptor.id,
        )

    if not isinstance(descriptor.data_schema, Mapping):
        raise ModuleValidationError(
            f"Module {descriptor.id} must provide a mapping as its data schema",
            field="data_schema",
            module_id=descriptor.id,
        )


@dataclass
class RegisteredModule:
    """A validated descriptor together with the live module instance."""

    descriptor: ModuleDescriptor
    instance: Any = None
    source: Optional[str] = None
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def enabled(self) -> bool:
        return self.descriptor.enabled

    def to_dict(self) -> Dict[str, Any]:
        data = self.descriptor.to_dict()
        data["source"] = self.source
        data["registered_at"] = self.registered_at.isoformat()
        return data
