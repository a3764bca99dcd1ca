from __future__ import annotations

import json

import pytest

from tiergate.exceptions import ConfigurationError, InvalidTierError, ValidationError
from tiergate.tiers import ALL, UNLIMITED, Tier, TierPolicyTable, parse_limit, parse_limits


def test_tier_parse_accepts_enum_and_value():
    assert Tier.parse("gold") is Tier.GOLD
    assert Tier.parse(Tier.SILVER) is Tier.SILVER


@pytest.mark.parametrize("raw", ["Gold", "diamond", "", None])
def test_tier_parse_rejects_unknown_values(raw):
    with pytest.raises(InvalidTierError):
        Tier.parse(raw)


def test_tier_rank_is_ordered():
    assert Tier.FREE.rank < Tier.BRONZE.rank < Tier.GOLD.rank < Tier.PLATINUM.rank


def test_parse_limit_handles_unlimited_and_ints():
    assert parse_limit("unlimited") is UNLIMITED
    assert parse_limit(UNLIMITED) is UNLIMITED
    assert parse_limit(10) == 10
    assert parse_limit("25") == 25
    assert parse_limit(0) == 0


@pytest.mark.parametrize("raw", [-1, True, 1.5, "lots", [1]])
def test_parse_limit_rejects_invalid_values(raw):
    with pytest.raises(ValidationError):
        parse_limit(raw)


def test_parse_limits_rejects_non_mapping():
    with pytest.raises(ValidationError):
        parse_limits(["episodes"])


def test_default_table_matches_builtin_tiers():
    table = TierPolicyTable.default()

    free = table.get(Tier.FREE)
    assert free.limit_for("episodes") == 50
    assert free.limit_for("ai_analyses") == 5
    assert free.allows_module("mood-tracker")
    assert not free.allows_module("sleep-tracker")

    assert table.get("bronze").allows_module("sleep-tracker")
    assert table.get("gold").limit_for("episodes") is UNLIMITED
    assert table.get("gold").limit_for("ai_analyses") == 200
    assert table.get("platinum").limit_for("ai_analyses") is UNLIMITED
    assert table.get("gold").allowed_modules is ALL
    assert table.get("custom").limit_for("episodes") is None


def test_unconfigured_tier_falls_back_to_free_policy():
    table = TierPolicyTable.from_mapping(
        {"free": {"limits": {"episodes": 3}, "modules": ["mood-tracker"]}}
    )

    assert Tier.GOLD not in table
    policy = table.get(Tier.GOLD)
    assert policy.limit_for("episodes") == 3
    assert policy.allows_module("mood-tracker")


def test_from_mapping_wraps_errors_in_configuration_error():
    with pytest.raises(ConfigurationError):
        TierPolicyTable.from_mapping({"diamond": {"limits": {}}})
    with pytest.raises(ConfigurationError):
        TierPolicyTable.from_mapping({"free": {"limits": {"episodes": -5}}})


@pytest.mark.parametrize(
    "raw_policy",
    [
        {"limit": {"ai_analyses": 1}},
        {"limits": {"ai_analyses": 1}, "module": ["mood-tracker"]},
        ["mood-tracker"],
        "gold",
    ],
)
def test_from_mapping_rejects_malformed_tier_policy(raw_policy):
    with pytest.raises(ConfigurationError) as exc_info:
        TierPolicyTable.from_mapping({"free": raw_policy})

    assert exc_info.value.code == "CONFIGURATION_ERROR"


def test_from_file_rejects_misspelled_policy_key(tmp_path):
    policy_file = tmp_path / "tiers.yml"
    policy_file.write_text("free:\n  limit: {ai_analyses: 1}\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        TierPolicyTable.from_file(policy_file)


def test_from_file_reads_yaml_with_top_level_key(tmp_path):
    policy_file = tmp_path / "tiers.yaml"
    policy_file.write_text(
        "tiers:\n"
        "  free:\n"
        "    limits: {episodes: 10}\n"
        "    modules: [mood-tracker]\n"
        "  gold:\n"
        "    limits: {episodes: unlimited}\n"
        "    modules: all\n",
        encoding="utf-8",
    )

    table = TierPolicyTable.from_file(policy_file)

    assert table.tiers() == [Tier.FREE, Tier.GOLD]
    assert table.get("free").limit_for("episodes") == 10
    assert table.get("gold").limit_for("episodes") is UNLIMITED


def test_from_file_reads_json(tmp_path):
    policy_file = tmp_path / "tiers.json"
    policy_file.write_text(
        json.dumps({"silver": {"limits": {"ai_analyses": 7}, "modules": []}}),
        encoding="utf-8",
    )

    table = TierPolicyTable.from_file(policy_file)

    assert table.get("silver").limit_for("ai_analyses") == 7


def test_from_file_missing_or_malformed(tmp_path):
    with pytest.raises(ConfigurationError):
        TierPolicyTable.from_file(tmp_path / "missing.yaml")

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        TierPolicyTable.from_file(broken)


def test_to_dict_serializes_sentinels():
    data = TierPolicyTable.default().to_dict()

    assert data["gold"]["modules"] == "all"
    assert data["gold"]["limits"]["episodes"] == "unlimited"
    assert data["free"]["modules"] == ["mood-tracker", "overthinking-logger"]
