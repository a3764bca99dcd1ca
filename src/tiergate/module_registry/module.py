"""
Feature Module base class.

Module files expose an explicit factory; the registry never derives class
names from file names:

    class MoodTracker(FeatureModule):
        id = "mood-tracker"
        ...

    def create_module():
        return MoodTracker()
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Sequence

from tiergate.exceptions import ValidationError
from tiergate.module_registry.descriptor import ModuleDescriptor
from tiergate.tiers import Tier

_TYPES = {
    "str": str,
    "int": int,
    "float": (int, float),
    "bool": bool,
    "list": list,
    "dict": dict,
}


class FeatureModule:
    id: str = ""
    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    min_tier: Tier = Tier.FREE
    icon: str = ""
    capabilities: Sequence[str] = ()
    settings: Mapping[str, Any] = {}

    def get_schema(self) -> Mapping[str, Mapping[str, Any]]:
        return {}

    def describe(self) -> ModuleDescriptor:
        return ModuleDescriptor(
            id=self.id,
            name=self.name,
            description=self.description,
            version=self.version,
            min_tier=Tier.parse(self.min_tier),
            data_schema=self.get_schema(),
            icon=self.icon,
            capabilities=list(self.capabilities),
            settings=dict(self.settings),
        )

    def validate_data(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Applies the module's schema to an input payload.

        Rules per field: required, type, min, max, max_length, choices,
        default. Unknown fields are dropped. Raises ValidationError on the
        first failing field.
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Payload must be a mapping")

        cleaned: Dict[str, Any] = {}
        for field_name, rule in self.get_schema().items():
            if field_name not in data or data[field_name] in (None, ""):
                if rule.get("required"):
                    raise ValidationError(f"{field_name} is required", field=field_name)
                if "default" in rule:
                    cleaned[field_name] = rule["default"]
                continue

            value = data[field_name]
            type_name = rule.get("type")
            if type_name:
                expected = _TYPES.get(type_name)
                if expected is None:
                    raise ValidationError(
                        f"Unknown type {type_name!r} in schema", field=field_name
                    )
                # bool passes isinstance(int); keep numbers and flags apart
                if isinstance(value, bool) and type_name in {"int", "float"}:
                    raise ValidationError(f"{field_name} must be {type_name}", field=field_name)
                if not isinstance(value, expected):
                    raise ValidationError(f"{field_name} must be {type_name}", field=field_name)

            if ("min" in rule or "max" in rule) and (
                isinstance(value, bool) or not isinstance(value, (int, float))
            ):
                raise ValidationError(f"{field_name} must be a number", field=field_name)
            if "min" in rule and value < rule["min"]:
                raise ValidationError(
                    f"{field_name} must be at least {rule['min']}", field=field_name
                )
            if "max" in rule and value > rule["max"]:
                raise ValidationError(
                    f"{field_name} must be at most {rule['max']}", field=field_name
                )
            if "max_length" in rule and not isinstance(value, (str, list, tuple, dict)):
                raise ValidationError(f"{field_name} must have a length", field=field_name)
            if "max_length" in rule and len(value) > rule["max_length"]:
                raise ValidationError(
                    f"{field_name} must be at most {rule['max_length']} characters",
                    field=field_name,
                )
            if "choices" in rule and value not in rule["choices"]:
                raise ValidationError(
                    f"{field_name} must be one of {list(rule['choices'])}", field=field_name
                )
            cleaned[field_name] = value
        return cleaned
