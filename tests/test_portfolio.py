import pytest

from dynevents import income_responsive, lifecycle, rebalancing, tax_loss
from dynevents.schema import (
    ActionType,
    AssetAllocation,
    IncomeThreshold,
    LifecycleStage,
    SimulationContext,
    WashSaleProtection,
    load_context,
    load_rules,
)


@pytest.fixture
def sample_rules():
    return {rule.id: rule for rule in load_rules("sample_rules.json")}


@pytest.fixture
def sample_context():
    return load_context("sample_context.json")


class FixedEstimator:
    def __init__(self, allocation: AssetAllocation, total: float) -> None:
        self.allocation = allocation
        self.total = total
        self.calls: list[tuple[str, ...]] = []

    def estimate(self, accounts, context):
        self.calls.append(tuple(accounts))
        return self.allocation, self.total


def test_rebalancing_trades_drifted_asset_classes(sample_rules, sample_context):
    actions = rebalancing.evaluate(sample_rules["quarterly-rebalance"], sample_context)

    trades = {a.metadata["from_asset"] if a.metadata["to_asset"] == "cash" else a.metadata["to_asset"]: a for a in actions}
    assert set(trades) == {"stocks", "bonds"}
    assert all(a.kind is ActionType.REBALANCE for a in actions)
    assert trades["stocks"].amount == pytest.approx(26000.0)
    assert trades["stocks"].metadata["to_asset"] == "cash"
    assert trades["bonds"].amount == pytest.approx(21000.0)
    assert trades["bonds"].metadata["from_asset"] == "cash"
    assert {a.source_account for a in actions} == {"tax_deferred"}
    assert {a.metadata["tax_implications"] for a in actions} == {"MINIMAL"}


def test_rebalancing_honours_time_gate_and_cash_reserve(sample_rules, sample_context):
    rule = sample_rules["quarterly-rebalance"]

    assert rebalancing.evaluate(rule, SimulationContext.from_dict({**_context_dict(sample_context), "current_month": 1})) == []
    assert rebalancing.evaluate(rule, SimulationContext.from_dict({**_context_dict(sample_context), "cash_balance": 500})) == []


def _context_dict(context: SimulationContext) -> dict:
    return {
        "cash_balance": context.cash_balance,
        "monthly_income": context.monthly_income,
        "monthly_expenses": context.monthly_expenses,
        "current_age": context.current_age,
        "current_month": context.current_month,
        "account_balances": dict(context.account_balances),
    }


def test_rebalancing_uses_injected_estimator_and_trade_cap():
    estimator = FixedEstimator(AssetAllocation(stocks=0.9, bonds=0.05, international=0.05), 100000.0)
    rule = rebalancing.create_template(time_based=None, minimum_cash_reserve=None, max_trades_per_rebalance=1)

    actions = rebalancing.evaluate(rule, SimulationContext(), estimator=estimator)

    assert estimator.calls == [("tax_deferred", "roth", "taxable")]
    assert len(actions) == 1
    assert actions[0].amount == pytest.approx(30000.0)
    assert actions[0].metadata["from_asset"] == "stocks"


def test_rebalancing_keeps_large_trades():
    estimator = FixedEstimator(AssetAllocation(stocks=0.6, bonds=0.3, international=0.1), 10_000_000.0)
    rule = rebalancing.create_template(
        target_allocation=AssetAllocation(stocks=0.4, bonds=0.6),
        time_based=None,
        minimum_cash_reserve=None,
    )

    actions = rebalancing.evaluate(rule, SimulationContext(), estimator=estimator)

    assert sorted(a.amount for a in actions) == pytest.approx([1_000_000.0, 2_000_000.0, 3_000_000.0])


def test_rebalancing_skips_trades_below_minimum():
    estimator = FixedEstimator(AssetAllocation(stocks=0.7, bonds=0.2, international=0.1), 5000.0)
    rule = rebalancing.create_template(time_based=None, minimum_cash_reserve=None, minimum_trade_amount=1000.0)

    assert rebalancing.evaluate(rule, SimulationContext(), estimator=estimator) == []


def test_lifecycle_hybrid_contributes_and_rebalances(sample_rules, sample_context):
    actions = lifecycle.evaluate(sample_rules["lifecycle"], sample_context)

    assert [a.kind for a in actions] == [ActionType.CONTRIBUTION, ActionType.REBALANCE, ActionType.REBALANCE]
    assert actions[0].amount == pytest.approx(1200.0)
    assert actions[0].target_account == "tax_deferred"
    assert actions[0].metadata["current_stage"] == "Accumulation"
    assert [a.metadata["asset_class"] for a in actions[1:]] == ["stocks", "bonds"]
    assert actions[1].amount == pytest.approx(12000.0)


def test_lifecycle_runs_only_on_schedule(sample_rules, sample_context):
    context = SimulationContext.from_dict({**_context_dict(sample_context), "current_month": 5})

    assert lifecycle.evaluate(sample_rules["lifecycle"], context) == []


def test_lifecycle_without_matching_stage_does_nothing(sample_rules, sample_context):
    context = SimulationContext.from_dict({**_context_dict(sample_context), "current_age": 15})

    assert lifecycle.evaluate(sample_rules["lifecycle"], context) == []


@pytest.mark.parametrize(
    ("age", "stocks", "bonds"),
    [(30, 0.85, 0.10), (40, 0.75, 0.20), (100, 0.30, 0.70)],
)
def test_linear_glide_path_shifts_stocks_to_bonds(age, stocks, bonds):
    stage = LifecycleStage(20, 100, AssetAllocation(stocks=0.85, bonds=0.10, international=0.05))
    rule = lifecycle.create_template(stages=(stage,), glide_path="LINEAR")

    target = lifecycle.target_allocation(rule, stage, age)

    assert target.stocks == pytest.approx(stocks)
    assert target.bonds == pytest.approx(bonds)
    assert target.international == pytest.approx(0.05)


def test_income_responsive_raises_rate_on_income_growth(sample_rules, sample_context):
    actions = income_responsive.evaluate(sample_rules["income-responsive"], sample_context)

    assert len(actions) == 1
    metadata = actions[0].metadata
    assert metadata["adjusted_savings_rate"] == pytest.approx(0.11)
    assert metadata["smoothed_income"] == pytest.approx(23300.0 / 3)
    assert actions[0].amount == pytest.approx(23300.0 / 3 * 0.11)
    assert actions[0].target_account == "roth"


def test_income_responsive_lowers_rate_on_income_drop():
    rule = income_responsive.create_template(
        base_savings_rate=0.10,
        income_thresholds=(IncomeThreshold(500.0, 0.01), IncomeThreshold(1500.0, 0.02)),
        min_savings_rate=0.05,
        smoothing_period=1,
    )
    context = SimulationContext(monthly_income=6000.0, last_month_income=6000.0, average_income_last_6_months=8000.0)

    analysis = income_responsive.analyze_income(rule, context)

    assert analysis.income_change == -2000.0
    assert analysis.savings_rate == pytest.approx(0.07)
    assert analysis.change_percentage == pytest.approx(-0.25)


def test_income_responsive_keeps_base_rate_when_income_is_steady():
    rule = income_responsive.moderate()
    context = SimulationContext(monthly_income=5000.0, last_month_income=5000.0, average_income_last_6_months=5000.0)

    actions = income_responsive.evaluate(rule, context)

    assert actions[0].amount == pytest.approx(750.0)
    assert actions[0].metadata["adjustment_reason"] == "Income steady; base savings rate"


def _harvest_context(month: int = 10, taxable: float = 40000.0) -> SimulationContext:
    return SimulationContext(current_month=month, account_balances={"taxable": taxable})


def test_tax_loss_harvesting_sells_losers_and_buys_substitute():
    actions = tax_loss.evaluate(tax_loss.create_template(), _harvest_context())

    assert [(a.kind, a.amount) for a in actions] == [
        (ActionType.WITHDRAWAL, pytest.approx(2400.0)),
        (ActionType.CONTRIBUTION, pytest.approx(2400.0)),
    ]
    sell = actions[0]
    assert sell.source_account == "taxable"
    assert sell.metadata["estimated_loss"] == pytest.approx(480.0)
    assert sell.metadata["estimated_tax_savings"] == pytest.approx(115.2)
    assert actions[1].metadata["harvesting_action"] == "BUY_SUBSTITUTE"


def test_tax_loss_harvesting_waits_out_wash_sale_without_substitutes():
    rule = tax_loss.create_template(wash_sale=WashSaleProtection(use_substitutes=False, wait_period_days=45))

    actions = tax_loss.evaluate(rule, _harvest_context())

    placeholder = actions[1]
    assert placeholder.amount == 0.0
    assert placeholder.metadata["wait_period"] == 45
    assert placeholder.metadata["future_amount"] == pytest.approx(2400.0)


@pytest.mark.parametrize(
    ("rule", "context"),
    [
        (tax_loss.create_template(), _harvest_context(month=3)),
        (tax_loss.create_template(), _harvest_context(taxable=9000.0)),
        (tax_loss.create_template(minimum_tax_savings=1000.0), _harvest_context()),
        (tax_loss.create_template(wash_sale=WashSaleProtection(last_harvest_month=9)), _harvest_context()),
    ],
)
def test_tax_loss_harvesting_skips_when_not_worthwhile(rule, context):
    assert tax_loss.evaluate(rule, context) == []


def test_tax_loss_quarterly_timing_uses_quarter_end_months():
    rule = tax_loss.create_template(timing="QUARTERLY", max_annual_harvesting=None)

    actions = tax_loss.evaluate(rule, _harvest_context(month=5))

    assert actions[0].amount == pytest.approx(1600.0)
    assert tax_loss.evaluate(rule, _harvest_context(month=4)) == []
