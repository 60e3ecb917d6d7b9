"""Emergency-fund maintenance: top up a shortfall or drain an excess."""

from __future__ import annotations

from typing import Any

from .actions import build_action
from .calc import check_condition_set, emergency_fund_target, format_currency, format_percentage
from .ports import GoalProgressSource
from .schema import ActionType, DrainExcess, EmergencyFundMaintenanceRule, EventAction, SimulationContext, TopUpLimits
from .validate import ACCOUNT_CATEGORIES, ValidationResult, check_enum, check_fraction, check_max, check_min, validate_common

FUNDING_SOURCES = {"income", "surplus", "other_savings"}
DEFAULT_INCOME_SHARE = 0.20
SURPLUS_SHARE = 0.5
MIN_TOP_UP = 10.0
DRAIN_TRIGGER = 0.10
MAX_AMOUNT = 100_000.0


def validate_rule(rule: EmergencyFundMaintenanceRule) -> ValidationResult:
    result = validate_common(rule)
    check_min(result, "target_months", rule.target_months, 0, exclusive=True)
    check_max(result, "target_months", rule.target_months, 24)
    check_enum(result, "emergency_fund_account", rule.emergency_fund_account, ACCOUNT_CATEGORIES)
    if not rule.funding_sources:
        result.errors.append("funding_sources: at least one funding source is required")
    for idx, source in enumerate(rule.funding_sources):
        check_enum(result, f"funding_sources[{idx}]", source, FUNDING_SOURCES)
    check_min(result, "top_up_limits.max_monthly_top_up", rule.top_up_limits.max_monthly_top_up, 0)
    check_fraction(result, "top_up_limits.max_percentage_of_income", rule.top_up_limits.max_percentage_of_income)
    check_fraction(result, "rebalancing_threshold", rule.rebalancing_threshold)
    if rule.drain_excess is not None:
        check_enum(result, "drain_excess.target_account", rule.drain_excess.target_account, ACCOUNT_CATEGORIES)
        check_fraction(result, "drain_excess.max_drain_percentage", rule.drain_excess.max_drain_percentage)
    return result


def check_conditions(rule: EmergencyFundMaintenanceRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> bool:
    if "income" in rule.funding_sources and context.monthly_income <= 0:
        return False
    return check_condition_set(rule.conditions, context, goals)


def available_funds(rule: EmergencyFundMaintenanceRule, context: SimulationContext, target: float) -> float:
    funds = 0.0
    if "income" in rule.funding_sources:
        share = rule.top_up_limits.max_percentage_of_income
        funds += context.monthly_income * (DEFAULT_INCOME_SHARE if share is None else share)
    if "surplus" in rule.funding_sources:
        funds += max(0.0, context.cash_balance - target) * SURPLUS_SHARE
    if "other_savings" in rule.funding_sources:
        funds += max(0.0, context.balance("taxable"))
    return funds


def _top_up_source(rule: EmergencyFundMaintenanceRule) -> str:
    if "income" in rule.funding_sources or "surplus" in rule.funding_sources:
        return "cash"
    return "taxable"


def evaluate(rule: EmergencyFundMaintenanceRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> list[EventAction]:
    if not check_conditions(rule, context, goals):
        return []
    target = emergency_fund_target(context.monthly_expenses, rule.target_months)
    if target <= 0:
        return []
    current = context.balance(rule.emergency_fund_account)
    shortfall = target - current
    months_covered = current / context.monthly_expenses if context.monthly_expenses > 0 else 0.0
    metadata = {"target_months": rule.target_months, "current_months": months_covered}

    if shortfall > 0 and shortfall / target > rule.rebalancing_threshold:
        amount = shortfall
        limits = rule.top_up_limits
        if limits.max_monthly_top_up is not None:
            amount = min(amount, limits.max_monthly_top_up)
        if limits.max_percentage_of_income is not None:
            amount = min(amount, context.monthly_income * limits.max_percentage_of_income)
        amount = min(amount, available_funds(rule, context, target))
        if amount <= MIN_TOP_UP:
            return []
        action = build_action(
            ActionType.TRANSFER,
            amount,
            description=f"Emergency fund top-up: {format_currency(amount)} (currently {months_covered:.1f} months of expenses)",
            source_account=_top_up_source(rule),
            target_account=rule.emergency_fund_account,
            priority=rule.priority,
            metadata={**metadata, "maintenance_type": "TOP_UP", "shortfall": shortfall},
            maximum=MAX_AMOUNT,
        )
        return [action] if action is not None else []

    drain = rule.drain_excess
    excess = -shortfall
    if drain is not None and drain.enabled and excess >= target * DRAIN_TRIGGER:
        amount = excess * drain.max_drain_percentage
        if amount <= 0:
            return []
        action = build_action(
            ActionType.TRANSFER,
            amount,
            description=f"Emergency fund excess drain: {format_currency(amount)} (currently {months_covered:.1f} months of expenses)",
            source_account=rule.emergency_fund_account,
            target_account=drain.target_account,
            priority=rule.priority,
            metadata={**metadata, "maintenance_type": "DRAIN_EXCESS", "excess_amount": excess},
            maximum=MAX_AMOUNT,
        )
        return [action] if action is not None else []
    return []


def explain(rule: EmergencyFundMaintenanceRule) -> str:
    sources = ", ".join(source.replace("_", " ") for source in rule.funding_sources)
    text = f"Keeps {rule.target_months:g} months of expenses in your {rule.emergency_fund_account.replace('_', ' ')} account, topping up from {sources}."
    if rule.top_up_limits.max_monthly_top_up is not None:
        text += f" Top-ups are limited to {format_currency(rule.top_up_limits.max_monthly_top_up)} per month."
    if rule.top_up_limits.max_percentage_of_income is not None:
        text += f" Top-ups never exceed {format_percentage(rule.top_up_limits.max_percentage_of_income)} of income."
    if rule.drain_excess is not None and rule.drain_excess.enabled:
        text += f" Excess above target is moved to your {rule.drain_excess.target_account.replace('_', ' ')} account."
    return text


def create_template(**overrides: Any) -> EmergencyFundMaintenanceRule:
    fields: dict[str, Any] = {
        "id": "emergency-fund-maintenance",
        "name": "Emergency Fund Maintenance",
        "description": "Keep emergency fund at target level",
        "priority": 60,
        "target_months": 6.0,
        "emergency_fund_account": "cash",
        "funding_sources": ("income", "surplus"),
        "top_up_limits": TopUpLimits(2000.0, 0.20),
        "rebalancing_threshold": 0.10,
        "drain_excess": DrainExcess(True, "taxable", 0.5),
    }
    fields.update(overrides)
    return EmergencyFundMaintenanceRule(**fields)


def conservative(target_months: float = 8) -> EmergencyFundMaintenanceRule:
    return create_template(
        id="conservative-emergency-fund",
        name="Conservative Emergency Fund",
        target_months=target_months,
        top_up_limits=TopUpLimits(1500.0, 0.15),
        drain_excess=None,
    )


def balanced(target_months: float = 6) -> EmergencyFundMaintenanceRule:
    return create_template(
        id="balanced-emergency-fund",
        name="Balanced Emergency Fund",
        target_months=target_months,
    )


def aggressive(target_months: float = 4) -> EmergencyFundMaintenanceRule:
    return create_template(
        id="aggressive-emergency-fund",
        name="Aggressive Emergency Fund",
        target_months=target_months,
        top_up_limits=TopUpLimits(3000.0, 0.25),
    )


def validate_authoring_input(data: dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    if not str(data.get("name") or "").strip():
        result.errors.append("name: is required")
    months = data.get("target_months")
    if not isinstance(months, (int, float)) or months <= 0:
        result.errors.append("target_months: must be a positive number")
    elif months > 24:
        result.errors.append("target_months: more than 24 months seems unusually high")
    if not data.get("funding_sources"):
        result.errors.append("funding_sources: at least one funding source is required")
    top_up = (data.get("top_up_limits") or {}).get("max_monthly_top_up")
    if top_up is not None and isinstance(top_up, (int, float)) and top_up > 50_000:
        result.errors.append("top_up_limits.max_monthly_top_up: seems unusually high (max $50,000)")
    return result
