"""
Tier Policy Table
Per-tier resource limits and allowed-module sets.

The table is built once per process (built-in defaults, a mapping, or a
YAML/JSON file) and handed to the entitlement engine as a read-only value.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Union

import yaml

from tiergate.exceptions import ConfigurationError, InvalidTierError, ValidationError

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    """Subscription tiers, lowest first."""

    FREE = "free"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Union["Tier", str]) -> "Tier":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidTierError(value) from None

    @property
    def rank(self) -> int:
        return list(Tier).index(self)


class ResourceType(str, Enum):
    """Resource types with a built-in usage source."""

    EPISODES = "episodes"
    AI_ANALYSES = "ai_analyses"


class Unlimited(Enum):
    UNLIMITED = "unlimited"

    def __repr__(self) -> str:
        return "UNLIMITED"


class AllModules(Enum):
    ALL = "all"

    def __repr__(self) -> str:
        return "ALL"


UNLIMITED = Unlimited.UNLIMITED
ALL = AllModules.ALL

Limit = Union[int, Unlimited]
ModuleSet = Union[FrozenSet[str], AllModules]


def parse_limit(value: Any, *, field_name: str = "limit") -> Limit:
    if value is UNLIMITED:
        return UNLIMITED
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw == UNLIMITED.value:
            return UNLIMITED
        if raw.isdigit():
            return int(raw)
        raise ValidationError(f"Invalid limit value: {value!r}", field=field_name)
    # bool is an int subclass; True/False are never meaningful limits
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Invalid limit value: {value!r}", field=field_name)
    if value < 0:
        raise ValidationError(f"Limit must be non-negative: {value}", field=field_name)
    return value


def parse_limits(data: Optional[Mapping[str, Any]]) -> Dict[str, Limit]:
    if not data:
        return {}
    if not isinstance(data, Mapping):
        raise ValidationError("Limits must be a mapping", field="limits")
    return {str(key): parse_limit(value, field_name=str(key)) for key, value in data.items()}


def serialize_limit(limit: Limit) -> Union[int, str]:
    return UNLIMITED.value if limit is UNLIMITED else int(limit)


def serialize_limits(limits: Mapping[str, Limit]) -> Dict[str, Union[int, str]]:
    return {key: serialize_limit(value) for key, value in limits.items()}


def parse_module_set(value: Any) -> ModuleSet:
    if value is ALL:
        return ALL
    if isinstance(value, str):
        if value.strip().lower() == ALL.value:
            return ALL
        return frozenset([value])
    if value is None:
        return frozenset()
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(str(v) for v in value)
    raise ValidationError(f"Invalid module set: {value!r}", field="modules")


_POLICY_KEYS = frozenset(["limits", "modules"])


@dataclass(frozen=True)
class TierPolicy:
    tier: Tier
    resource_limits: Mapping[str, Limit] = field(default_factory=dict)
    allowed_modules: ModuleSet = frozenset()

    def limit_for(self, resource_type: str) -> Optional[Limit]:
        return self.resource_limits.get(resource_type)

    def allows_module(self, module_id: str) -> bool:
        if self.allowed_modules is ALL:
            return True
        return module_id in self.allowed_modules

    @classmethod
    def from_mapping(cls, tier: Union[Tier, str], data: Mapping[str, Any]) -> "TierPolicy":
        if not isinstance(data, Mapping):
            raise ValidationError(f"Policy must be a mapping, got {data!r}", field="policy")
        unknown = sorted(str(key) for key in data if key not in _POLICY_KEYS)
        if unknown:
            raise ValidationError(
                f"Unknown policy keys {unknown}; expected {sorted(_POLICY_KEYS)}",
                field=unknown[0],
            )
        return cls(
            tier=Tier.parse(tier),
            resource_limits=parse_limits(data.get("limits")),
            allowed_modules=parse_module_set(data.get("modules")),
        )

    def to_dict(self) -> Dict[str, Any]:
        modules: Any
        if self.allowed_modules is ALL:
            modules = ALL.value
        else:
            modules = sorted(self.allowed_modules)
        return {
            "tier": self.tier.value,
            "limits": serialize_limits(self.resource_limits),
            "modules": modules,
        }


DEFAULT_TIER_POLICIES: Dict[str, Dict[str, Any]] = {
    "free": {
        "limits": {"episodes": 50, "ai_analyses": 5},
        "modules": ["overthinking-logger", "mood-tracker"],
    },
    "bronze": {
        "limits": {"episodes": 150, "ai_analyses": 20},
        "modules": ["overthinking-logger", "mood-tracker", "sleep-tracker"],
    },
    "silver": {
        "limits": {"episodes": 500, "ai_analyses": 50},
        "modules": ["overthinking-logger", "mood-tracker", "sleep-tracker"],
    },
    "gold": {
        "limits": {"episodes": "unlimited", "ai_analyses": 200},
        "modules": "all",
    },
    "platinum": {
        "limits": {"episodes": "unlimited", "ai_analyses": "unlimited"},
        "modules": "all",
    },
    # per-user custom_limits carry the numbers for this tier
    "custom": {
        "limits": {},
        "modules": "all",
    },
}


class TierPolicyTable:
    """Read-only mapping of tier -> policy."""

    def __init__(
        self,
        policies: Mapping[Tier, TierPolicy],
        *,
        fallback_tier: Tier = Tier.FREE,
    ) -> None:
        self._policies: Dict[Tier, TierPolicy] = dict(policies)
        self._fallback_tier = fallback_tier

    def get(self, tier: Union[Tier, str]) -> TierPolicy:
        resolved = Tier.parse(tier)
        policy = self._policies.get(resolved)
        if policy is not None:
            return policy
        # Unconfigured tiers fall back to the base tier's policy
        fallback = self._policies.get(self._fallback_tier)
        if fallback is None:
            return TierPolicy(tier=resolved)
        return fallback

    def __contains__(self, tier: object) -> bool:
        try:
            return Tier.parse(tier) in self._policies  # type: ignore[arg-type]
        except InvalidTierError:
            return False

    def tiers(self) -> list[Tier]:
        return [t for t in Tier if t in self._policies]

    def to_dict(self) -> Dict[str, Any]:
        return {tier.value: self._policies[tier].to_dict() for tier in self.tiers()}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TierPolicyTable":
        if not isinstance(data, Mapping):
            raise ConfigurationError("Tier policy must be a mapping of tier -> policy")
        policies: Dict[Tier, TierPolicy] = {}
        for raw_tier, raw_policy in data.items():
            try:
                tier = Tier.parse(raw_tier)
                policies[tier] = TierPolicy.from_mapping(tier, raw_policy or {})
            except (InvalidTierError, ValidationError) as exc:
                raise ConfigurationError(
                    f"Invalid policy for tier {raw_tier}: {exc.message}",
                    config_key=str(raw_tier),
                ) from exc
        return cls(policies)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "TierPolicyTable":
        policy_path = Path(path)
        if not policy_path.exists():
            raise ConfigurationError(
                f"Tier policy file not found: {policy_path}", config_key="TIER_POLICY_FILE"
            )
        try:
            with open(policy_path, "r", encoding="utf-8") as f:
                if policy_path.suffix in [".yaml", ".yml"]:
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise ConfigurationError(
                f"Failed to read tier policy file {policy_path}: {exc}",
                config_key="TIER_POLICY_FILE",
            ) from exc

        # Allow the table to sit under a top-level "tiers" key
        if isinstance(data, Mapping) and "tiers" in data:
            data = data["tiers"]
        logger.info(f"Loaded tier policy from {policy_path}")
        return cls.from_mapping(data or {})

    @classmethod
    def default(cls) -> "TierPolicyTable":
        return cls.from_mapping(DEFAULT_TIER_POLICIES)
