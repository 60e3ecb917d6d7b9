"""Conditional contribution: invest cash held above a threshold."""

from __future__ import annotations

from typing import Any

from .actions import build_action
from .calc import check_condition_set, conditional_contribution, format_currency, format_percentage
from .ports import GoalProgressSource
from .schema import ActionType, ConditionalContributionRule, ContributionStrategy, EventAction, SimulationContext
from .validate import ACCOUNT_CATEGORIES, ValidationResult, check_enum, check_fraction, check_min, validate_common

STRATEGIES = {"FIXED_AMOUNT", "PERCENTAGE_OF_EXCESS", "ALL_EXCESS"}
MAX_AMOUNT = 1_000_000.0


def validate_rule(rule: ConditionalContributionRule) -> ValidationResult:
    result = validate_common(rule)
    check_min(result, "target_amount", rule.target_amount, 0)
    check_min(result, "cash_threshold", rule.cash_threshold, 0)
    check_enum(result, "target_account", rule.target_account, ACCOUNT_CATEGORIES)
    check_enum(result, "contribution_strategy.type", rule.strategy.type, STRATEGIES)
    if rule.strategy.type == "FIXED_AMOUNT" and rule.target_amount <= 0:
        result.errors.append("target_amount: must be > 0 for FIXED_AMOUNT")
    if rule.strategy.percentage is not None:
        check_fraction(result, "contribution_strategy.percentage", rule.strategy.percentage)
    return result


def check_conditions(rule: ConditionalContributionRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> bool:
    if context.cash_balance < rule.cash_threshold:
        return False
    return check_condition_set(rule.conditions, context, goals)


def evaluate(rule: ConditionalContributionRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> list[EventAction]:
    if not check_conditions(rule, context, goals):
        return []
    amount = conditional_contribution(
        context.cash_balance,
        rule.cash_threshold,
        rule.target_amount,
        rule.strategy.type,
        rule.strategy.percentage,
    )
    if amount <= 0:
        return []
    action = build_action(
        ActionType.CONTRIBUTION,
        amount,
        description=f"{rule.name}: invest {format_currency(amount)} of cash above {format_currency(rule.cash_threshold)}",
        source_account="cash",
        target_account=rule.target_account,
        priority=rule.priority,
        metadata={
            "strategy": rule.strategy.type,
            "cash_threshold": rule.cash_threshold,
            "excess_cash": context.cash_balance - rule.cash_threshold,
        },
        maximum=MAX_AMOUNT,
    )
    return [action] if action is not None else []


def explain(rule: ConditionalContributionRule) -> str:
    threshold = format_currency(rule.cash_threshold)
    account = rule.target_account.replace("_", " ")
    text = f"Keeps a cash cushion of {threshold}, then invests "
    if rule.strategy.type == "FIXED_AMOUNT":
        text += f"a fixed {format_currency(rule.target_amount)} into your {account} account when there is enough excess cash."
    elif rule.strategy.type == "PERCENTAGE_OF_EXCESS":
        pct = 1.0 if rule.strategy.percentage is None else rule.strategy.percentage
        text += f"{format_percentage(pct)} of any excess cash into your {account} account."
    else:
        text += f"all excess cash into your {account} account."
    if rule.conditions is not None:
        text += " Additional conditions apply."
    return text


def create_template(**overrides: Any) -> ConditionalContributionRule:
    fields: dict[str, Any] = {
        "id": "conditional-contribution",
        "name": "Smart Investment Strategy",
        "description": "Invest excess cash after maintaining emergency fund",
        "priority": 50,
        "target_amount": 2000.0,
        "target_account": "tax_deferred",
        "cash_threshold": 50000.0,
        "strategy": ContributionStrategy("FIXED_AMOUNT"),
    }
    fields.update(overrides)
    return ConditionalContributionRule(**fields)


def emergency_plus_retirement(monthly_expenses: float) -> ConditionalContributionRule:
    """Keep six months of expenses in cash and put $2,000 a month into the 401k."""
    return create_template(
        id="emergency-plus-retirement",
        name="Emergency Fund + 401k",
        cash_threshold=monthly_expenses * 6,
    )


def conservative(cash_buffer: float) -> ConditionalContributionRule:
    return create_template(
        id="conservative-investment",
        name="Conservative Investment",
        target_amount=0.0,
        target_account="taxable",
        cash_threshold=cash_buffer,
        strategy=ContributionStrategy("PERCENTAGE_OF_EXCESS", 0.25),
    )


def aggressive(min_cash: float) -> ConditionalContributionRule:
    return create_template(
        id="aggressive-investment",
        name="Aggressive Investment",
        target_amount=0.0,
        target_account="taxable",
        cash_threshold=min_cash,
        strategy=ContributionStrategy("ALL_EXCESS"),
    )


def validate_authoring_input(data: dict[str, Any]) -> ValidationResult:
    """Editor-time checks on raw form input."""
    result = ValidationResult()
    if not str(data.get("name") or "").strip():
        result.errors.append("name: is required")
    target = data.get("target_amount")
    threshold = data.get("cash_threshold")
    strategy = (data.get("contribution_strategy") or {}).get("type")
    if not isinstance(target, (int, float)) or target <= 0:
        result.errors.append("target_amount: must be a positive number")
    elif target > 100_000:
        result.errors.append("target_amount: seems unusually high (max $100,000)")
    if not isinstance(threshold, (int, float)) or threshold < 0:
        result.errors.append("cash_threshold: must be a non-negative number")
    elif threshold > 1_000_000:
        result.errors.append("cash_threshold: seems unusually high (max $1,000,000)")
    if not data.get("target_account"):
        result.errors.append("target_account: is required")
    if not strategy:
        result.errors.append("contribution_strategy.type: is required")
    elif strategy == "PERCENTAGE_OF_EXCESS":
        pct = (data.get("contribution_strategy") or {}).get("percentage")
        if not isinstance(pct, (int, float)) or not 0 < pct <= 1:
            result.errors.append("contribution_strategy.percentage: must be between 0 and 1")
    return result
