from __future__ import annotations

from .policy import (
    ALL,
    UNLIMITED,
    AllModules,
    Limit,
    ResourceType,
    Tier,
    TierPolicy,
    TierPolicyTable,
    Unlimited,
    parse_limit,
    parse_limits,
    serialize_limits,
)

__all__ = [
    "ALL",
    "UNLIMITED",
    "AllModules",
    "Limit",
    "ResourceType",
    "Tier",
    "TierPolicy",
    "TierPolicyTable",
    "Unlimited",
    "parse_limit",
    "parse_limits",
    "serialize_limits",
]
