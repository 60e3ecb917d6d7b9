from dataclasses import dataclass
import logging
import threading
from typing import ClassVar

import pytest

from dynevents import conditional, waterfall
from dynevents.config import RegistryConfig
from dynevents.registry import EventRegistry, group_by_type, processor_for
from dynevents.errors import UnsupportedTypeError
from dynevents.schema import (
    ActionType,
    ContributionStrategy,
    EvaluationFrequency,
    EventAction,
    FallbackPolicy,
    RuleBase,
    SimulationContext,
    WaterfallTier,
    load_context,
    load_rules,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class CountingEvaluate:
    def __init__(self, actions=None) -> None:
        self.calls = 0
        self.actions = actions

    def __call__(self, rule, context, goals=None):
        self.calls += 1
        if self.actions is None:
            return [EventAction(ActionType.CONTRIBUTION, 100.0, "counted")]
        return list(self.actions)


@pytest.fixture
def context():
    return SimulationContext(cash_balance=55000.0, monthly_income=8000.0, current_age=35, current_month=0)


def test_evaluate_returns_processor_actions(context):
    actions = EventRegistry().evaluate(conditional.aggressive(50000.0), context)

    assert isinstance(actions, tuple)
    assert [(a.target_account, a.amount) for a in actions] == [("taxable", 5000.0)]


def test_identical_evaluation_within_ttl_runs_processor_once(monkeypatch, context):
    counting = CountingEvaluate()
    monkeypatch.setattr(conditional, "evaluate", counting)
    registry = EventRegistry(clock=FakeClock())
    rule = conditional.create_template()

    first = registry.evaluate(rule, context)
    second = registry.evaluate(rule, context)

    assert counting.calls == 1
    assert first == second
    stats = registry.cache_stats()
    assert (stats.hits, stats.misses) == (1, 1)


def test_cache_expires_and_can_be_cleared(monkeypatch, context):
    counting = CountingEvaluate()
    monkeypatch.setattr(conditional, "evaluate", counting)
    clock = FakeClock()
    registry = EventRegistry(clock=clock)
    rule = conditional.create_template()

    registry.evaluate(rule, context)
    clock.now = 61.0
    registry.evaluate(rule, context)
    registry.clear_cache()
    registry.evaluate(rule, context)

    assert counting.calls == 3


def test_output_is_truncated_to_action_cap(monkeypatch, caplog, context):
    many = [EventAction(ActionType.CONTRIBUTION, float(i), f"action {i}") for i in range(1, 16)]
    counting = CountingEvaluate(many)
    monkeypatch.setattr(conditional, "evaluate", counting)
    registry = EventRegistry()

    with caplog.at_level(logging.WARNING, logger="dynevents.registry"):
        actions = registry.evaluate(conditional.create_template(), context)

    assert len(actions) == 10
    assert actions == tuple(many[:10])
    assert "keeping the first 10" in caplog.text
    assert registry.evaluate(conditional.create_template(), context) == tuple(many[:10])
    assert counting.calls == 1


def test_action_cap_follows_config(monkeypatch, context):
    monkeypatch.setattr(conditional, "evaluate", CountingEvaluate([EventAction(ActionType.TRANSFER, 1.0, "x")] * 5))
    registry = EventRegistry(RegistryConfig(max_actions_per_evaluation=2))

    assert len(registry.evaluate(conditional.create_template(), context)) == 2


def test_invalid_rule_falls_back_without_raising(caplog, context):
    rule = conditional.create_template(name="")

    with caplog.at_level(logging.WARNING, logger="dynevents.registry"):
        actions = EventRegistry().evaluate(rule, context)

    assert actions == ()
    assert "name: must not be empty" in caplog.text


def test_processor_fault_is_contained(monkeypatch, caplog, context):
    def boom(rule, context, goals=None):
        raise RuntimeError("processor exploded")

    monkeypatch.setattr(conditional, "evaluate", boom)

    assert EventRegistry().evaluate(conditional.create_template(), context) == ()
    assert "failed during evaluation" in caplog.text


def test_unknown_rule_type_falls_back(context):
    registry = EventRegistry()

    assert registry.evaluate(object(), context) == ()
    assert registry.validate(object()).errors == ["type: unsupported rule type 'object'"]
    with pytest.raises(UnsupportedTypeError):
        processor_for(object())


def test_unimplemented_fallback_policy_is_logged(caplog, context):
    rule = conditional.create_template(name="", fallback=FallbackPolicy.REDUCE_AMOUNT)

    with caplog.at_level(logging.WARNING, logger="dynevents.registry"):
        assert EventRegistry().evaluate(rule, context) == ()

    assert "Fallback policy REDUCE_AMOUNT is not implemented" in caplog.text


@pytest.mark.parametrize(
    ("frequency", "month", "due"),
    [
        (EvaluationFrequency.MONTHLY, 7, True),
        (EvaluationFrequency.QUARTERLY, 3, True),
        (EvaluationFrequency.QUARTERLY, 4, False),
        (EvaluationFrequency.ANNUALLY, 12, True),
        (EvaluationFrequency.ANNUALLY, 6, False),
        (EvaluationFrequency.ON_TRIGGER, 0, False),
    ],
)
def test_is_due(frequency, month, due):
    rule = conditional.create_template(evaluation_frequency=frequency)

    assert EventRegistry.is_due(rule, SimulationContext(current_month=month)) is due


def test_due_rules_respects_month_offset():
    rules = load_rules("sample_rules.json")
    registry = EventRegistry()

    at_start = {rule.id for rule in registry.due_rules(rules, SimulationContext(current_month=0))}
    next_month = {rule.id for rule in registry.due_rules(rules, SimulationContext(current_month=1))}

    assert "income-responsive" not in at_start
    assert "quarterly-rebalance" in at_start
    assert "income-responsive" in next_month
    assert "quarterly-rebalance" not in next_month
    assert "lifecycle" not in next_month


def test_evaluate_many_returns_results_by_rule_id():
    rules = load_rules("sample_rules.json")
    context = load_context("sample_context.json")

    results = EventRegistry().evaluate_many(rules, context)

    assert set(results) == {rule.id for rule in rules}
    assert [(a.target_account, a.amount) for a in results["invest-excess-cash"]] == [("taxable", 10000.0)]
    assert [(a.metadata["debt_id"], a.amount) for a in results["debt-avalanche"]] == [("cc-1", 1000.0)]
    assert [(a.target_account, a.amount) for a in results["retirement-waterfall"]] == [("tax_deferred", 5000.0)]
    assert results["tax-loss-harvesting"] == ()


def test_evaluate_many_isolates_failing_rules(monkeypatch):
    def boom(rule, context, goals=None):
        raise ValueError("bad tier data")

    monkeypatch.setattr(waterfall, "evaluate", boom)
    rules = load_rules("sample_rules.json")
    context = load_context("sample_context.json")

    results = EventRegistry().evaluate_many(rules, context)

    assert results["retirement-waterfall"] == ()
    assert len(results["invest-excess-cash"]) == 1


def test_evaluate_many_applies_deadline(monkeypatch, caplog, context):
    release = threading.Event()

    def slow(rule, context, goals=None):
        release.wait(5)
        return [EventAction(ActionType.CONTRIBUTION, 1.0, "late")]

    monkeypatch.setattr(waterfall, "evaluate", slow)
    rules = [conditional.aggressive(50000.0), waterfall.create_template(total_amount=1000.0)]

    try:
        with caplog.at_level(logging.WARNING, logger="dynevents.registry"):
            results = EventRegistry().evaluate_many(rules, context, deadline=0.2)
    finally:
        release.set()

    assert results["waterfall-allocation"] == ()
    assert [a.amount for a in results["aggressive-investment"]] == [5000.0]
    assert "batch deadline" in caplog.text


def test_evaluate_many_keeps_later_duplicate(caplog, context):
    first = conditional.create_template(id="dup", strategy=ContributionStrategy("ALL_EXCESS"), target_amount=0.0)
    second = conditional.create_template(id="dup", cash_threshold=60000.0)

    with caplog.at_level(logging.WARNING, logger="dynevents.registry"):
        results = EventRegistry().evaluate_many([first, second], context)

    assert results == {"dup": ()}
    assert "Duplicate rule id dup" in caplog.text


def test_evaluate_many_with_no_rules():
    assert EventRegistry().evaluate_many([], SimulationContext()) == {}


def test_update_config_changes_behaviour(monkeypatch, context):
    monkeypatch.setattr(conditional, "evaluate", CountingEvaluate([EventAction(ActionType.TRANSFER, 1.0, "x")] * 5))
    registry = EventRegistry()

    config = registry.update_config(max_actions_per_evaluation=3)

    assert config is registry.config
    assert len(registry.evaluate(conditional.create_template(), context)) == 3


def test_explain_dispatches_to_processor():
    registry = EventRegistry()

    assert "$50,000" in registry.explain(conditional.create_template())
    assert registry.explain(object()) == "Unsupported rule type: object"


def test_group_by_type():
    rules = load_rules("sample_rules.json") + [conditional.create_template()]

    grouped = group_by_type(rules)

    assert len(grouped) == 10
    assert [rule.id for rule in grouped["CONDITIONAL_CONTRIBUTION"]] == ["invest-excess-cash", "conditional-contribution"]
    assert EventRegistry.group_by_type(rules) == grouped


def test_rule_built_with_lists_evaluates_through_registry(context):
    rule = waterfall.create_template(total_amount=2000.0, tiers=[WaterfallTier(1, "tax_deferred", 2000.0)])

    direct = waterfall.evaluate(rule, context)
    actions = EventRegistry().evaluate(rule, context)

    assert [(a.target_account, a.amount) for a in actions] == [("tax_deferred", 2000.0)]
    assert actions == tuple(direct)


@dataclass(frozen=True, slots=True, kw_only=True)
class StrayRule(RuleBase):
    TYPE: ClassVar[str] = "STRAY"


def test_unregistered_rule_subclass_is_unsupported(caplog, context):
    rule = StrayRule(id="stray", name="Stray")
    registry = EventRegistry()

    with pytest.raises(UnsupportedTypeError):
        processor_for(rule)
    with caplog.at_level(logging.WARNING, logger="dynevents.registry"):
        assert registry.evaluate(rule, context) == ()
    assert "Rule stray was not evaluated" in caplog.text
    assert "failed during evaluation" not in caplog.text
    assert registry.validate(rule).errors == ["type: unsupported rule type 'StrayRule'"]


def test_advisory_limits_are_logged(caplog):
    with caplog.at_level(logging.DEBUG, logger="dynevents.registry"):
        registry = EventRegistry(RegistryConfig(max_memory_mb=256.0))
        registry.update_config(max_memory_mb=512.0, max_evaluation_ms=250.0)

    assert "5000ms per rule evaluation, 256MB memory" in caplog.text
    assert "250ms per rule evaluation, 512MB memory" in caplog.text
