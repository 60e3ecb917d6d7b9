import pytest

from dynevents import conditional, percentage, waterfall
from dynevents.schema import (
    ActionType,
    ConditionSet,
    ContributionLimits,
    ContributionStrategy,
    IncomeSource,
    RangeCondition,
    RemainderPolicy,
    SimulationContext,
    TierConditions,
    WaterfallTier,
)


def test_conditional_all_excess_contributes_excess_cash():
    rule = conditional.aggressive(50000.0)
    context = SimulationContext(cash_balance=55000.0, monthly_income=8000.0)

    actions = conditional.evaluate(rule, context)

    assert len(actions) == 1
    action = actions[0]
    assert action.kind is ActionType.CONTRIBUTION
    assert action.amount == 5000.0
    assert action.source_account == "cash"
    assert action.target_account == "taxable"
    assert action.metadata["excess_cash"] == 5000.0


def test_conditional_below_threshold_does_nothing():
    rule = conditional.create_template()
    context = SimulationContext(cash_balance=49999.0)

    assert conditional.check_conditions(rule, context) is False
    assert conditional.evaluate(rule, context) == []


def test_conditional_respects_condition_set():
    rule = conditional.create_template(conditions=ConditionSet(age=RangeCondition(max=30)))
    context = SimulationContext(cash_balance=80000.0, current_age=45)

    assert conditional.evaluate(rule, context) == []


def test_conditional_drops_amount_above_cap(caplog):
    rule = conditional.aggressive(0.0)
    context = SimulationContext(cash_balance=2_000_000.0)

    assert conditional.evaluate(rule, context) == []
    assert "Dropping CONTRIBUTION action" in caplog.text


def test_conditional_explain_mentions_threshold():
    text = conditional.explain(conditional.conservative(30000.0))

    assert "$30,000" in text


def test_conditional_authoring_input_flags_large_amounts():
    result = conditional.validate_authoring_input(
        {
            "name": "Big",
            "target_amount": 250000,
            "cash_threshold": 10,
            "target_account": "taxable",
            "contribution_strategy": {"type": "FIXED_AMOUNT"},
        }
    )

    assert result.errors == ["target_amount: seems unusually high (max $100,000)"]


def test_waterfall_cascades_through_tiers_and_invests_remainder():
    rule = waterfall.create_template(
        total_amount=5000.0,
        tiers=(WaterfallTier(1, "tax_deferred", 2000.0), WaterfallTier(2, "roth", 1000.0)),
        remainder=RemainderPolicy("INVEST_TAXABLE", "taxable"),
    )
    context = SimulationContext(cash_balance=10000.0, monthly_income=8000.0)

    actions = waterfall.evaluate(rule, context)

    assert [(a.target_account, a.amount) for a in actions] == [
        ("tax_deferred", 2000.0),
        ("roth", 1000.0),
        ("taxable", 2000.0),
    ]
    assert actions[0].metadata["waterfall_priority"] == 1
    assert actions[-1].metadata["remainder"] is True


def test_waterfall_keep_cash_leaves_remainder_unallocated():
    rule = waterfall.create_template(
        total_amount=3000.0,
        tiers=(WaterfallTier(1, "roth", 1000.0),),
        remainder=RemainderPolicy("KEEP_CASH"),
    )
    actions = waterfall.evaluate(rule, SimulationContext(cash_balance=3000.0))

    assert [(a.target_account, a.amount) for a in actions] == [("roth", 1000.0)]


def test_waterfall_requires_cash_for_total():
    rule = waterfall.create_template(total_amount=5000.0)

    assert waterfall.evaluate(rule, SimulationContext(cash_balance=4999.0)) == []


def test_waterfall_employer_match_tier_only_for_tax_deferred():
    rule = waterfall.create_template(
        total_amount=1000.0,
        tiers=(
            WaterfallTier(1, "roth", 500.0, conditions=TierConditions(employer_match=True)),
            WaterfallTier(2, "hsa", 4300.0),
        ),
        remainder=None,
    )
    actions = waterfall.evaluate(rule, SimulationContext(cash_balance=1000.0))

    assert [(a.target_account, a.amount) for a in actions] == [("hsa", 1000.0)]


def test_waterfall_allocates_large_totals_in_full(caplog):
    rule = waterfall.create_template(
        total_amount=2_000_000.0,
        tiers=(WaterfallTier(1, "taxable"),),
        remainder=None,
    )
    actions = waterfall.evaluate(rule, SimulationContext(cash_balance=3_000_000.0))

    assert [(a.target_account, a.amount) for a in actions] == [("taxable", 2_000_000.0)]
    assert "Dropping" not in caplog.text


def test_waterfall_labels_tiers_sharing_a_priority():
    rule = waterfall.create_template(
        total_amount=2000.0,
        tiers=(
            WaterfallTier(1, "tax_deferred", 1000.0, "401k match"),
            WaterfallTier(1, "roth", 1000.0, "Roth IRA"),
        ),
        remainder=None,
    )
    actions = waterfall.evaluate(rule, SimulationContext(cash_balance=2000.0))

    assert [a.target_account for a in actions] == ["tax_deferred", "roth"]
    assert "401k match" in actions[0].description
    assert "Roth IRA" in actions[1].description


@pytest.mark.parametrize(
    ("account", "age", "expected"),
    [("tax_deferred", 35, 23500.0), ("tax_deferred", 55, 31000.0), ("roth", 50, 8000.0), ("hsa", 60, 4550.0)],
)
def test_contribution_limit_includes_catch_up(account, age, expected):
    assert waterfall.contribution_limit(account, age) == expected


def test_waterfall_authoring_input_rejects_duplicate_priorities():
    result = waterfall.validate_authoring_input(
        {
            "name": "Dup",
            "total_amount": 1000,
            "tiers": [{"priority": 1, "target_account": "roth"}, {"priority": 1, "target_account": "hsa"}],
        }
    )

    assert result.errors == ["tiers[1].priority: duplicate priority 1"]


def test_percentage_contribution_saves_share_of_income():
    rule = percentage.create_template(savings_rate=0.15)
    actions = percentage.evaluate(rule, SimulationContext(monthly_income=8000.0))

    assert len(actions) == 1
    assert actions[0].amount == pytest.approx(1200.0)
    assert actions[0].metadata["calculated_amount"] == pytest.approx(1200.0)


def test_percentage_contribution_applies_limits():
    rule = percentage.create_template(
        savings_rate=0.30,
        income_source=IncomeSource(use_gross_income=False),
        limits=ContributionLimits(min_monthly=100.0, max_monthly=1000.0),
    )
    actions = percentage.evaluate(rule, SimulationContext(monthly_income=10000.0))

    assert actions[0].amount == 1000.0
    assert actions[0].metadata["base_income"] == pytest.approx(7500.0)
    assert actions[0].metadata["calculated_amount"] == pytest.approx(2250.0)


def test_percentage_contribution_needs_salary_income():
    rule = percentage.standard_401k()

    assert percentage.evaluate(rule, SimulationContext(monthly_income=0.0)) == []


def test_percentage_explain_mentions_rate_and_account():
    text = percentage.explain(percentage.roth_ira())

    assert "15.0%" in text
    assert "roth" in text
