from tiergate.module_registry import FeatureModule


class MoodTracker(FeatureModule):
    id = "mood-tracker"
    name = "Mood Tracker"
    description = "Log how you feel through the day"
    version = "1.2.0"
    min_tier = "free"
    icon = "smile"
    capabilities = ("entries", "charts")

    def get_schema(self):
        return {
            "mood": {"type": "int", "required": True, "min": 1, "max": 10},
            "note": {"type": "str", "max_length": 500},
            "tags": {"type": "list", "default": []},
        }


def create_module():
    return MoodTracker()
