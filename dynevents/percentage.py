"""Percentage contribution: save a fixed share of monthly income."""

from __future__ import annotations

from typing import Any

from .actions import build_action
from .calc import EFFECTIVE_TAX_RATE, check_condition_set, format_currency, format_percentage, percentage_contribution
from .ports import GoalProgressSource
from .schema import ActionType, ContributionLimits, EventAction, PercentageContributionRule, SimulationContext
from .validate import (
    ACCOUNT_CATEGORIES,
    ValidationResult,
    check_enum,
    check_fraction,
    check_min,
    check_min_max,
    validate_common,
)

INCOME_TYPES = {"salary", "bonus", "rental", "dividends", "business", "other"}
MAX_AMOUNT = 1_000_000.0


def validate_rule(rule: PercentageContributionRule) -> ValidationResult:
    result = validate_common(rule)
    check_fraction(result, "savings_rate", rule.savings_rate)
    check_enum(result, "target_account", rule.target_account, ACCOUNT_CATEGORIES)
    if not rule.income_source.include_types:
        result.errors.append("income_source.include_types: at least one income type is required")
    for idx, kind in enumerate(rule.income_source.include_types):
        check_enum(result, f"income_source.include_types[{idx}]", kind, INCOME_TYPES)
    limits = rule.limits
    check_min(result, "contribution_limits.min_monthly", limits.min_monthly, 0)
    check_min(result, "contribution_limits.max_monthly", limits.max_monthly, 0)
    check_min(result, "contribution_limits.max_annual", limits.max_annual, 0)
    check_min(result, "contribution_limits.contributed_year_to_date", limits.contributed_year_to_date, 0)
    check_min_max(
        result,
        "contribution_limits.min_monthly",
        limits.min_monthly,
        "contribution_limits.max_monthly",
        limits.max_monthly,
    )
    return result


def check_conditions(rule: PercentageContributionRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> bool:
    if "salary" in rule.income_source.include_types and context.monthly_income <= 0:
        return False
    return check_condition_set(rule.conditions, context, goals)


def evaluate(rule: PercentageContributionRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> list[EventAction]:
    if not check_conditions(rule, context, goals):
        return []
    use_gross = rule.income_source.use_gross_income
    base_income = context.monthly_income if use_gross else context.monthly_income * (1 - EFFECTIVE_TAX_RATE)
    uncapped = base_income * rule.savings_rate
    amount = percentage_contribution(
        context.monthly_income,
        rule.savings_rate,
        use_gross_income=use_gross,
        min_monthly=rule.limits.min_monthly,
        max_monthly=rule.limits.max_monthly,
        max_annual=rule.limits.max_annual,
        contributed_year_to_date=rule.limits.contributed_year_to_date,
        month_of_year=context.month_of_year,
    )
    if amount <= 0:
        return []
    action = build_action(
        ActionType.CONTRIBUTION,
        amount,
        description=f"{rule.name}: save {format_percentage(rule.savings_rate)} of income ({format_currency(amount)})",
        source_account="cash",
        target_account=rule.target_account,
        priority=rule.priority,
        metadata={
            "savings_rate": rule.savings_rate,
            "base_income": base_income,
            "calculated_amount": uncapped,
            "limited_amount": amount,
        },
        maximum=MAX_AMOUNT,
    )
    return [action] if action is not None else []


def explain(rule: PercentageContributionRule) -> str:
    basis = "gross" if rule.income_source.use_gross_income else "after-tax"
    text = (
        f"Saves {format_percentage(rule.savings_rate)} of {basis} {', '.join(rule.income_source.include_types)} income "
        f"into your {rule.target_account.replace('_', ' ')} account each month."
    )
    limits = rule.limits
    if limits.min_monthly is not None:
        text += f" At least {format_currency(limits.min_monthly)} per month."
    if limits.max_monthly is not None:
        text += f" At most {format_currency(limits.max_monthly)} per month."
    if limits.max_annual is not None:
        text += f" Capped at {format_currency(limits.max_annual)} per year."
    return text


def create_template(**overrides: Any) -> PercentageContributionRule:
    fields: dict[str, Any] = {
        "id": "percentage-contribution",
        "name": "Percentage-Based Savings",
        "description": "Save a fixed percentage of income",
        "priority": 45,
        "savings_rate": 0.20,
        "target_account": "tax_deferred",
    }
    fields.update(overrides)
    return PercentageContributionRule(**fields)


def standard_401k(savings_rate: float = 0.20) -> PercentageContributionRule:
    return create_template(
        id="standard-401k",
        name="Standard 401k Contribution",
        savings_rate=savings_rate,
        limits=ContributionLimits(min_monthly=500.0, max_annual=23500.0),
    )


def aggressive_savings(savings_rate: float = 0.30) -> PercentageContributionRule:
    return create_template(
        id="aggressive-savings",
        name="Aggressive Savings",
        savings_rate=savings_rate,
        target_account="taxable",
        limits=ContributionLimits(min_monthly=1000.0),
    )


def roth_ira(savings_rate: float = 0.15) -> PercentageContributionRule:
    return create_template(
        id="roth-ira",
        name="Roth IRA Contribution",
        savings_rate=savings_rate,
        target_account="roth",
        limits=ContributionLimits(min_monthly=250.0, max_annual=7000.0),
    )


def validate_authoring_input(data: dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    if not str(data.get("name") or "").strip():
        result.errors.append("name: is required")
    rate = data.get("savings_rate")
    if not isinstance(rate, (int, float)) or not 0 <= rate <= 1:
        result.errors.append("savings_rate: must be between 0 and 1")
    elif rate > 0.5:
        result.errors.append("savings_rate: above 50% seems unusually high")
    if not data.get("target_account"):
        result.errors.append("target_account: is required")
    source = data.get("income_source") or {}
    if not source.get("include_types"):
        result.errors.append("income_source.include_types: is required")
    return result
