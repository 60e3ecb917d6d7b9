"""Income-responsive savings: move the savings rate with smoothed income changes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .actions import build_action
from .calc import EFFECTIVE_TAX_RATE, check_condition_set, format_currency, format_percentage
from .ports import GoalProgressSource
from .schema import ActionType, EventAction, IncomeResponsiveSavingsRule, IncomeThreshold, SimulationContext
from .validate import ACCOUNT_CATEGORIES, ValidationResult, check_enum, check_fraction, check_max, check_min, validate_common

MAX_RATE_STEP = 0.5


@dataclass(frozen=True, slots=True)
class IncomeAnalysis:
    reference_income: float
    smoothed_income: float
    income_change: float
    savings_rate: float

    @property
    def change_percentage(self) -> float:
        return self.income_change / self.reference_income if self.reference_income > 0 else 0.0


def validate_rule(rule: IncomeResponsiveSavingsRule) -> ValidationResult:
    result = validate_common(rule)
    check_enum(result, "target_account", rule.target_account, ACCOUNT_CATEGORIES)
    check_fraction(result, "base_savings_rate", rule.base_savings_rate)
    check_fraction(result, "min_savings_rate", rule.min_savings_rate)
    check_fraction(result, "max_savings_rate", rule.max_savings_rate)
    if rule.min_savings_rate > rule.max_savings_rate:
        result.errors.append("min_savings_rate/max_savings_rate: minimum must be <= maximum")
    elif not rule.min_savings_rate <= rule.base_savings_rate <= rule.max_savings_rate:
        result.errors.append("base_savings_rate: must be within min_savings_rate and max_savings_rate")
    if not rule.income_thresholds:
        result.errors.append("income_thresholds: at least one threshold is required")
    for idx, threshold in enumerate(rule.income_thresholds):
        check_min(result, f"income_thresholds[{idx}].income_increase", threshold.income_increase, 0, exclusive=True)
        check_max(result, f"income_thresholds[{idx}].savings_rate_adjustment", abs(threshold.savings_rate_adjustment), MAX_RATE_STEP)
    check_min(result, "smoothing_period", rule.smoothing_period, 1)
    return result


def check_conditions(rule: IncomeResponsiveSavingsRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> bool:
    return check_condition_set(rule.conditions, context, goals)


def smoothed_income(rule: IncomeResponsiveSavingsRule, context: SimulationContext) -> float:
    current = context.monthly_income
    if rule.smoothing_period <= 1:
        return current
    window = [
        current,
        context.last_month_income or current,
        context.average_income_last_6_months or current,
    ][: rule.smoothing_period]
    return sum(window) / len(window)


def analyze_income(rule: IncomeResponsiveSavingsRule, context: SimulationContext) -> IncomeAnalysis:
    reference = context.average_income_last_6_months or context.monthly_income
    smoothed = smoothed_income(rule, context)
    change = smoothed - reference
    rate = rule.base_savings_rate
    if change != 0:
        direction = 1 if change > 0 else -1
        for threshold in rule.income_thresholds:
            if abs(change) >= threshold.income_increase:
                rate += threshold.savings_rate_adjustment * direction
    rate = min(rule.max_savings_rate, max(rule.min_savings_rate, rate))
    return IncomeAnalysis(reference, smoothed, change, rate)


def evaluate(rule: IncomeResponsiveSavingsRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> list[EventAction]:
    if not check_conditions(rule, context, goals):
        return []
    analysis = analyze_income(rule, context)
    income = analysis.smoothed_income if rule.use_gross_income else analysis.smoothed_income * (1 - EFFECTIVE_TAX_RATE)
    amount = income * analysis.savings_rate
    if amount <= 0:
        return []
    if analysis.savings_rate > rule.base_savings_rate:
        reason = f"Income up {format_currency(analysis.income_change)}; savings rate raised"
    elif analysis.savings_rate < rule.base_savings_rate:
        reason = f"Income down {format_currency(-analysis.income_change)}; savings rate lowered"
    else:
        reason = "Income steady; base savings rate"
    action = build_action(
        ActionType.CONTRIBUTION,
        amount,
        description=f"{rule.name}: save {format_percentage(analysis.savings_rate)} of income ({format_currency(amount)})",
        source_account="cash",
        target_account=rule.target_account,
        priority=rule.priority,
        metadata={
            "original_savings_rate": rule.base_savings_rate,
            "adjusted_savings_rate": analysis.savings_rate,
            "income_change": analysis.income_change,
            "change_percentage": analysis.change_percentage,
            "smoothed_income": analysis.smoothed_income,
            "adjustment_reason": reason,
        },
    )
    return [action] if action is not None else []


def explain(rule: IncomeResponsiveSavingsRule) -> str:
    steps = "; ".join(
        f"{format_currency(t.income_increase)} income change -> {format_percentage(abs(t.savings_rate_adjustment))} rate adjustment"
        for t in rule.income_thresholds
    )
    return (
        f"Saves {format_percentage(rule.base_savings_rate)} of income into your {rule.target_account.replace('_', ' ')} account, "
        f"adjusting the rate as income changes ({steps}). The rate stays between "
        f"{format_percentage(rule.min_savings_rate)} and {format_percentage(rule.max_savings_rate)}."
    )


def create_template(**overrides: Any) -> IncomeResponsiveSavingsRule:
    fields: dict[str, Any] = {
        "id": "income-responsive-savings",
        "name": "Income-Responsive Savings",
        "description": "Adjust savings rate as income changes",
        "priority": 25,
        "base_savings_rate": 0.15,
        "target_account": "tax_deferred",
        "income_thresholds": (
            IncomeThreshold(5000.0, 0.01),
            IncomeThreshold(10000.0, 0.02),
            IncomeThreshold(20000.0, 0.03),
        ),
        "min_savings_rate": 0.05,
        "max_savings_rate": 0.40,
        "smoothing_period": 3,
    }
    fields.update(overrides)
    return IncomeResponsiveSavingsRule(**fields)


def conservative() -> IncomeResponsiveSavingsRule:
    return create_template(
        id="conservative-income-responsive",
        name="Conservative Income-Responsive Savings",
        base_savings_rate=0.10,
        income_thresholds=(IncomeThreshold(10000.0, 0.01),),
    )


def moderate() -> IncomeResponsiveSavingsRule:
    return create_template(
        id="moderate-income-responsive",
        name="Moderate Income-Responsive Savings",
        income_thresholds=(IncomeThreshold(5000.0, 0.01), IncomeThreshold(15000.0, 0.02)),
    )


def validate_authoring_input(data: dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    if not str(data.get("name") or "").strip():
        result.errors.append("name: is required")
    if not isinstance(data.get("base_savings_rate"), (int, float)):
        result.errors.append("base_savings_rate: is required")
    if not data.get("target_account"):
        result.errors.append("target_account: is required")
    if not isinstance(data.get("income_thresholds"), list):
        result.errors.append("income_thresholds: is required")
    return result
