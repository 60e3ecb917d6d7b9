import pytest

from dynevents import waterfall
from dynevents.schema import (
    RULE_TYPES,
    ActionType,
    AssetAllocation,
    EventAction,
    IncomeSource,
    SchemaError,
    SimulationContext,
    WaterfallAllocationRule,
    WaterfallTier,
    load_context,
    load_rules,
    rule_from_dict,
)
from tests.helpers import clone, write_json


def test_sample_rules_cover_every_rule_type():
    rules = load_rules("sample_rules.json")

    assert len(rules) == 10
    assert {rule.type for rule in rules} == set(RULE_TYPES)


def test_load_rules_rejects_non_object_root(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(SchemaError, match="rules: root must be a JSON object"):
        load_rules(path)


def test_load_rules_requires_rules_array(tmp_path):
    path = write_json(tmp_path, {"rules": {}})

    with pytest.raises(SchemaError, match="rules: expected array"):
        load_rules(path)


def test_load_rules_reports_nested_missing_field(tmp_path, sample_rules_dict):
    data = clone(sample_rules_dict)
    del data["rules"][1]["tiers"][0]["priority"]
    path = write_json(tmp_path, data)

    with pytest.raises(SchemaError, match=r"rules\[1\]\.tiers\[0\]\.priority: missing required field"):
        load_rules(path)


def test_load_rules_rejects_unknown_type(tmp_path, sample_rules_dict):
    data = clone(sample_rules_dict)
    data["rules"][0]["type"] = "LOTTERY_TICKET"
    path = write_json(tmp_path, data)

    with pytest.raises(SchemaError, match=r"rules\[0\]\.type: unknown rule type 'LOTTERY_TICKET'"):
        load_rules(path)


def test_load_rules_rejects_unknown_asset_class(tmp_path, sample_rules_dict):
    data = clone(sample_rules_dict)
    data["rules"][6]["target_allocation"]["gold"] = 0.1
    path = write_json(tmp_path, data)

    with pytest.raises(SchemaError, match=r"rules\[6\]\.target_allocation\.gold: unknown asset class"):
        load_rules(path)


def test_load_rules_rejects_unknown_fallback_policy(tmp_path, sample_rules_dict):
    data = clone(sample_rules_dict)
    data["rules"][0]["fallback"] = "PANIC"
    path = write_json(tmp_path, data)

    with pytest.raises(SchemaError, match=r"rules\[0\]\.fallback: must be one of SKIP"):
        load_rules(path)


def test_rule_from_dict_applies_common_defaults():
    rule = rule_from_dict(
        {
            "type": "WATERFALL_ALLOCATION",
            "id": "w",
            "name": "Waterfall",
            "total_amount": 1000,
            "tiers": [{"priority": 1, "target_account": "roth"}],
        }
    )

    assert isinstance(rule, WaterfallAllocationRule)
    assert rule.priority == 50
    assert rule.month_offset == 0
    assert rule.evaluation_frequency.value == "MONTHLY"
    assert rule.conditions is None
    assert rule.fallback is None
    assert rule.tiers[0].max_amount is None


def test_loaded_rules_are_hashable_and_compare_by_value():
    first = load_rules("sample_rules.json")
    second = load_rules("sample_rules.json")

    assert first == second
    assert {hash(rule) for rule in first} == {hash(rule) for rule in second}


def test_rules_built_with_lists_store_tuples():
    rule = waterfall.create_template(tiers=[WaterfallTier(1, "tax_deferred", 2000.0)])
    source = IncomeSource(include_types=["salary", "bonus"])

    assert rule.tiers == (WaterfallTier(1, "tax_deferred", 2000.0),)
    assert source.include_types == ("salary", "bonus")
    assert hash(rule) == hash(waterfall.create_template(tiers=(WaterfallTier(1, "tax_deferred", 2000.0),)))
    hash(source)


def test_load_context_reads_balances_and_goals():
    context = load_context("sample_context.json")

    assert context.cash_balance == 60000
    assert context.balance("cash") == 60000
    assert context.balance("roth") == 20000
    assert context.balance("529") == 0
    goal = context.goal_progress[0]
    assert goal.goal_id == "house-down-payment"
    assert goal.progress_percentage == pytest.approx(0.25)
    assert goal.on_track is False


def test_load_context_requires_core_fields(tmp_path, sample_context_dict):
    data = clone(sample_context_dict)
    del data["cash_balance"]
    path = write_json(tmp_path, data, "context.json")

    with pytest.raises(SchemaError, match=r"context\.cash_balance: missing required field"):
        load_context(path)


def test_context_income_history_defaults_to_current_income():
    context = SimulationContext.from_dict(
        {"cash_balance": 1000, "monthly_income": 5000, "monthly_expenses": 3000, "current_age": 40, "current_month": 14}
    )

    assert context.last_month_income == 5000
    assert context.average_income_last_6_months == 5000
    assert context.month_of_year == 2


def test_context_balances_are_read_only(context):
    with pytest.raises(TypeError):
        context.account_balances["roth"] = 1.0


def test_event_action_to_dict_is_json_ready():
    action = EventAction(ActionType.TRANSFER, 250.0, "Move cash", "cash", "hsa", 10, {"reason": "test"})

    assert action.to_dict() == {
        "type": "TRANSFER",
        "amount": 250.0,
        "source_account": "cash",
        "target_account": "hsa",
        "description": "Move cash",
        "priority": 10,
        "metadata": {"reason": "test"},
    }
    with pytest.raises(TypeError):
        action.metadata["reason"] = "changed"


def test_asset_allocation_total_sums_all_classes():
    allocation = AssetAllocation(stocks=0.5, bonds=0.3, cash=0.2)

    assert allocation.total() == pytest.approx(1.0)
    assert allocation.as_dict()["international"] == 0.0
