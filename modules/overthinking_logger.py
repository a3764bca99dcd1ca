from tiergate.module_registry import FeatureModule


class OverthinkingLogger(FeatureModule):
    id = "overthinking-logger"
    name = "Overthinking Logger"
    description = "Capture recurring thoughts and how intense they felt"
    version = "1.0.0"
    icon = "cloud"
    capabilities = ("entries",)

    def get_schema(self):
        return {
            "thought": {"type": "str", "required": True, "max_length": 1000},
            "intensity": {"type": "int", "min": 1, "max": 10, "default": 5},
            "category": {
                "type": "str",
                "choices": ["work", "relationships", "health", "money", "other"],
                "default": "other",
            },
        }


MODULES = [OverthinkingLogger]
