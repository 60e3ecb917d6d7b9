"""Goal-driven contribution: scale contributions by progress toward a goal."""

from __future__ import annotations

from typing import Any

from .actions import build_action
from .calc import check_condition_set, format_currency, format_percentage, goal_driven_contribution
from .ports import ContextGoalProgressSource, GoalProgressSource
from .schema import (
    ActionType,
    AdjustmentStrategy,
    EventAction,
    GoalDrivenContributionRule,
    GoalLimits,
    GoalProgress,
    ProgressThreshold,
    SimulationContext,
)
from .validate import ACCOUNT_CATEGORIES, ValidationResult, check_enum, check_fraction, check_max, check_min, check_min_max, validate_common

STRATEGY_TYPES = {"TIME_BASED", "PROGRESS_BASED", "DEFICIT_BASED", "MARKET_RESPONSIVE"}
AGGRESSIVENESS = {"CONSERVATIVE", "MODERATE", "AGGRESSIVE"}
MAX_AMOUNT = 500_000.0


def validate_rule(rule: GoalDrivenContributionRule) -> ValidationResult:
    result = validate_common(rule)
    if not rule.target_goal_id:
        result.errors.append("target_goal_id: must not be empty")
    check_enum(result, "target_account", rule.target_account, ACCOUNT_CATEGORIES)
    strategy = rule.adjustment_strategy
    check_enum(result, "adjustment_strategy.type", strategy.type, STRATEGY_TYPES)
    check_enum(result, "adjustment_strategy.aggressiveness", strategy.aggressiveness, AGGRESSIVENESS)
    check_min(result, "adjustment_strategy.base_contribution", strategy.base_contribution, 0, exclusive=True)
    check_min(result, "adjustment_strategy.min_contribution", strategy.min_contribution, 0)
    check_min_max(
        result,
        "adjustment_strategy.min_contribution",
        strategy.min_contribution,
        "adjustment_strategy.max_contribution",
        strategy.max_contribution,
    )
    limits = rule.limits
    check_min(result, "contribution_limits.min_contribution", limits.min_contribution, 0)
    check_min_max(
        result,
        "contribution_limits.min_contribution",
        limits.min_contribution,
        "contribution_limits.max_contribution",
        limits.max_contribution,
    )
    check_min(result, "contribution_limits.max_adjustment_percentage", limits.max_adjustment_percentage, 0)
    check_max(result, "contribution_limits.max_adjustment_percentage", limits.max_adjustment_percentage, 2)
    for idx, threshold in enumerate(rule.progress_thresholds):
        check_fraction(result, f"progress_thresholds[{idx}].progress_percentage", threshold.progress_percentage)
        check_min(result, f"progress_thresholds[{idx}].adjustment_percentage", threshold.adjustment_percentage, -1)
    return result


def check_conditions(rule: GoalDrivenContributionRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> bool:
    minimum = rule.adjustment_strategy.min_contribution
    if minimum is not None and context.cash_balance < minimum:
        return False
    return check_condition_set(rule.conditions, context, goals)


def _reason(goal: GoalProgress) -> str:
    if not goal.on_track:
        remaining = "" if goal.months_remaining is None else f" with {goal.months_remaining} months remaining"
        return f"Behind schedule: {format_percentage(goal.progress_percentage)} complete{remaining}"
    if goal.progress_percentage > 0.8:
        return "Goal approaching completion, maintaining steady contributions"
    return "Goal on track, continuing planned contributions"


def evaluate(rule: GoalDrivenContributionRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> list[EventAction]:
    source = goals or ContextGoalProgressSource()
    goal = source.lookup(rule.target_goal_id, context)
    if goal is None or goal.current_amount >= goal.target_amount:
        return []
    if not check_conditions(rule, context, source):
        return []
    adjustment = goal_driven_contribution(goal, rule.adjustment_strategy, rule.limits, rule.progress_thresholds)
    if adjustment.amount <= 0:
        return []
    action = build_action(
        ActionType.CONTRIBUTION,
        adjustment.amount,
        description=f"{rule.name}: {format_currency(adjustment.amount)} toward {goal.goal_name or goal.goal_id}",
        source_account="cash",
        target_account=rule.target_account,
        priority=rule.priority,
        metadata={
            "goal_id": goal.goal_id,
            "progress_percentage": goal.progress_percentage,
            "base_amount": adjustment.base_amount,
            "multiplier": adjustment.multiplier,
            "reason": _reason(goal),
        },
        maximum=MAX_AMOUNT,
    )
    return [action] if action is not None else []


def explain(rule: GoalDrivenContributionRule) -> str:
    strategy = rule.adjustment_strategy
    text = (
        f"Contributes around {format_currency(strategy.base_contribution)} per month toward goal "
        f"'{rule.target_goal_id}' in your {rule.target_account.replace('_', ' ')} account, "
        f"adjusting {strategy.aggressiveness.lower()}ly using a {strategy.type.lower().replace('_', ' ')} strategy."
    )
    if rule.progress_thresholds:
        steps = ", ".join(
            f"below {format_percentage(t.progress_percentage, 0)} adjust {t.adjustment_percentage:+.0%}"
            for t in sorted(rule.progress_thresholds, key=lambda t: t.progress_percentage)
        )
        text += f" Progress steps: {steps}."
    return text


def create_template(**overrides: Any) -> GoalDrivenContributionRule:
    fields: dict[str, Any] = {
        "id": "goal-driven-contribution",
        "name": "Smart Goal Tracking",
        "description": "Automatically adjust contributions based on goal progress",
        "priority": 50,
        "target_goal_id": "retirement-goal-1",
        "target_account": "tax_deferred",
        "adjustment_strategy": AdjustmentStrategy("PROGRESS_BASED", 2000.0, 1000.0, 5000.0, "MODERATE"),
        "limits": GoalLimits(500.0, 10000.0, 0.50),
        "progress_thresholds": (
            ProgressThreshold(0.20, 0.25),
            ProgressThreshold(0.50, 0.00),
            ProgressThreshold(0.80, -0.10),
        ),
    }
    fields.update(overrides)
    return GoalDrivenContributionRule(**fields)


def retirement_goal(base_amount: float, goal_id: str = "retirement") -> GoalDrivenContributionRule:
    return create_template(
        id="retirement-goal-tracking",
        name="Retirement Goal Tracking",
        target_goal_id=goal_id,
        adjustment_strategy=AdjustmentStrategy("PROGRESS_BASED", base_amount, base_amount * 0.5, base_amount * 2, "MODERATE"),
        limits=GoalLimits(500.0, 15000.0, 0.50),
        progress_thresholds=(),
    )


def emergency_fund_goal(base_amount: float, goal_id: str = "emergency-fund") -> GoalDrivenContributionRule:
    return create_template(
        id="emergency-fund-goal",
        name="Emergency Fund Goal",
        target_goal_id=goal_id,
        target_account="cash",
        adjustment_strategy=AdjustmentStrategy("DEFICIT_BASED", base_amount, base_amount * 0.25, base_amount * 3, "AGGRESSIVE"),
        limits=GoalLimits(200.0, 5000.0, 1.0),
        progress_thresholds=(),
    )


def house_down_payment(base_amount: float, goal_id: str = "house-down-payment") -> GoalDrivenContributionRule:
    return create_template(
        id="house-down-payment",
        name="House Down Payment",
        target_goal_id=goal_id,
        target_account="taxable",
        adjustment_strategy=AdjustmentStrategy("TIME_BASED", base_amount, base_amount * 0.75, base_amount * 1.5, "CONSERVATIVE"),
        limits=GoalLimits(1000.0, 8000.0, 0.25),
        progress_thresholds=(),
    )


def validate_authoring_input(data: dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    if not str(data.get("name") or "").strip():
        result.errors.append("name: is required")
    if not data.get("target_goal_id"):
        result.errors.append("target_goal_id: is required")
    if not data.get("target_account"):
        result.errors.append("target_account: is required")
    strategy = data.get("adjustment_strategy") or {}
    if not strategy.get("type"):
        result.errors.append("adjustment_strategy.type: is required")
    base = strategy.get("base_contribution")
    if not isinstance(base, (int, float)) or base <= 0:
        result.errors.append("adjustment_strategy.base_contribution: must be a positive number")
    elif base > 50_000:
        result.errors.append("adjustment_strategy.base_contribution: seems unusually high (max $50,000)")
    low, high = strategy.get("min_contribution"), strategy.get("max_contribution")
    if isinstance(low, (int, float)) and isinstance(high, (int, float)) and high <= low:
        result.errors.append("adjustment_strategy.max_contribution: must be greater than min_contribution")
    adjust = (data.get("contribution_limits") or {}).get("max_adjustment_percentage")
    if adjust is not None and (not isinstance(adjust, (int, float)) or not 0 <= adjust <= 2):
        result.errors.append("contribution_limits.max_adjustment_percentage: must be between 0 and 2")
    return result
