from __future__ import annotations

import pytest

from tiergate.exceptions import ValidationError
from tiergate.module_registry import FeatureModule
from tiergate.tiers import Tier


class JournalModule(FeatureModule):
    id = "journal"
    name = "Journal"
    description = "Free-form journal entries"
    version = "2.0.0"
    min_tier = Tier.SILVER
    capabilities = ("entries",)

    def get_schema(self):
        return {
            "title": {"type": "str", "required": True, "max_length": 10},
            "score": {"type": "int", "min": 0, "max": 5},
            "weight": {"type": "float"},
            "mood": {"type": "str", "choices": ["low", "ok", "high"], "default": "ok"},
            "private": {"type": "bool", "default": False},
        }


@pytest.fixture
def journal():
    return JournalModule()


def test_describe_builds_descriptor(journal):
    descriptor = journal.describe()

    assert descriptor.id == "journal"
    assert descriptor.min_tier is Tier.SILVER
    assert descriptor.capabilities == ["entries"]
    assert set(descriptor.data_schema) == {"title", "score", "weight", "mood", "private"}
    assert descriptor.to_dict()["min_tier"] == "silver"


def test_validate_applies_defaults_and_drops_unknown_fields(journal):
    cleaned = journal.validate_data({"title": "Monday", "score": 3, "extra": "x"})

    assert cleaned == {"title": "Monday", "score": 3, "mood": "ok", "private": False}


def test_float_field_accepts_int(journal):
    assert journal.validate_data({"title": "t", "weight": 2})["weight"] == 2


@pytest.mark.parametrize(
    "payload, field",
    [
        ({}, "title"),
        ({"title": ""}, "title"),
        ({"title": "way too long title"}, "title"),
        ({"title": "t", "score": 9}, "score"),
        ({"title": "t", "score": -1}, "score"),
        ({"title": "t", "score": "3"}, "score"),
        ({"title": "t", "score": True}, "score"),
        ({"title": "t", "mood": "meh"}, "mood"),
        ({"title": "t", "private": "yes"}, "private"),
    ],
)
def test_validate_rejects_first_bad_field(journal, payload, field):
    with pytest.raises(ValidationError) as exc_info:
        journal.validate_data(payload)

    assert exc_info.value.field == field
    assert exc_info.value.to_dict()["code"] == "VALIDATION_ERROR"


def test_validate_rejects_non_mapping(journal):
    with pytest.raises(ValidationError):
        journal.validate_data(["title"])


class LooseModule(FeatureModule):
    id = "loose"
    name = "Loose"
    description = "Fields without declared types"
    version = "1.0.0"

    def get_schema(self):
        return {
            "level": {"min": 1, "max": 3},
            "label": {"max_length": 4},
        }


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"level": "high"}, "level"),
        ({"level": [2]}, "level"),
        ({"level": True}, "level"),
        ({"label": 12345}, "label"),
    ],
)
def test_range_and_length_rules_reject_wrong_kinds(payload, field):
    with pytest.raises(ValidationError) as exc_info:
        LooseModule().validate_data(payload)

    assert exc_info.value.field == field


def test_range_and_length_rules_accept_matching_kinds():
    cleaned = LooseModule().validate_data({"level": 2.5, "label": ["a", "b"]})

    assert cleaned == {"level": 2.5, "label": ["a", "b"]}
