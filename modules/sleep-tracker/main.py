from tiergate.module_registry import FeatureModule


class SleepTracker(FeatureModule):
    id = "sleep-tracker"
    name = "Sleep Tracker"
    description = "Track sleep duration and quality"
    version = "0.9.1"
    min_tier = "bronze"
    icon = "moon"
    capabilities = ("entries", "charts")

    def get_schema(self):
        return {
            "hours": {"type": "float", "required": True, "min": 0, "max": 24},
            "quality": {"type": "str", "choices": ["poor", "fair", "good", "great"]},
            "woke_up_at_night": {"type": "bool", "default": False},
        }


def create_module():
    return SleepTracker()
