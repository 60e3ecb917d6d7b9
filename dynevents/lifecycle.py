"""Lifecycle adjustment: age-based target allocations with an optional glide path."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from .actions import build_action
from .allocation import AllocationEstimator, lifecycle_estimator
from .calc import check_condition_set, format_currency, format_percentage
from .ports import GoalProgressSource
from .schema import ActionType, AssetAllocation, EventAction, LifecycleAdjustmentRule, LifecycleStage, SimulationContext
from .validate import ACCOUNT_CATEGORIES, ValidationResult, check_allocation, check_enum, check_max, check_min, validate_common

FREQUENCIES = {"ANNUAL", "QUARTERLY", "ON_BIRTHDAY", "MONTHLY"}
GLIDE_PATHS = {"LINEAR"}
METHODS = {"NEW_CONTRIBUTIONS", "FULL_REBALANCE", "HYBRID"}
TRACKED_CLASSES = ("stocks", "bonds", "international")
STAGE_TOLERANCE = 0.05
GLIDE_START_AGE = 30
GLIDE_STEP = 0.01
MIN_STOCKS = 0.30
MAX_BONDS = 0.70
CONTRIBUTION_RATE = 0.15
MIN_REBALANCE = 1000.0
HYBRID_TRIGGER = 0.10


@dataclass(frozen=True, slots=True)
class AllocationChange:
    asset: str
    current: float
    target: float

    @property
    def change(self) -> float:
        return self.target - self.current


def validate_rule(rule: LifecycleAdjustmentRule) -> ValidationResult:
    result = validate_common(rule)
    if not rule.stages:
        result.errors.append("stages: at least one lifecycle stage is required")
    for idx, stage in enumerate(rule.stages):
        base = f"stages[{idx}]"
        if stage.min_age >= stage.max_age:
            result.errors.append(f"{base}.min_age/{base}.max_age: minimum age must be less than maximum age")
        check_allocation(result, f"{base}.target_allocation", stage.target_allocation, STAGE_TOLERANCE)
        for other_idx in range(idx + 1, len(rule.stages)):
            other = rule.stages[other_idx]
            if stage.min_age <= other.max_age and other.min_age <= stage.max_age:
                result.errors.append(f"{base}/stages[{other_idx}]: age ranges overlap")
    check_enum(result, "adjustment_frequency", rule.adjustment_frequency, FREQUENCIES)
    if rule.glide_path is not None:
        check_enum(result, "glide_path", rule.glide_path, GLIDE_PATHS)
    check_enum(result, "rebalancing_method", rule.rebalancing_method, METHODS)
    check_min(result, "drift_threshold", rule.drift_threshold, 0, exclusive=True)
    check_max(result, "drift_threshold", rule.drift_threshold, 0.5)
    if not rule.account_scope:
        result.errors.append("account_scope: at least one account is required")
    for idx, account in enumerate(rule.account_scope):
        check_enum(result, f"account_scope[{idx}]", account, ACCOUNT_CATEGORIES)
    return result


def is_scheduled(rule: LifecycleAdjustmentRule, context: SimulationContext) -> bool:
    if rule.adjustment_frequency in ("ANNUAL", "ON_BIRTHDAY"):
        return context.current_month % 12 == 0
    if rule.adjustment_frequency == "QUARTERLY":
        return context.current_month % 3 == 0
    return True


def check_conditions(rule: LifecycleAdjustmentRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> bool:
    if not is_scheduled(rule, context):
        return False
    return check_condition_set(rule.conditions, context, goals)


def find_stage(rule: LifecycleAdjustmentRule, age: int) -> LifecycleStage | None:
    for stage in rule.stages:
        if stage.min_age <= age <= stage.max_age:
            return stage
    return None


def target_allocation(rule: LifecycleAdjustmentRule, stage: LifecycleStage, age: int) -> AssetAllocation:
    target = stage.target_allocation
    if rule.glide_path != "LINEAR":
        return target
    shift = max(0.0, (age - GLIDE_START_AGE) * GLIDE_STEP)
    return replace(
        target,
        stocks=max(MIN_STOCKS, target.stocks - shift),
        bonds=min(MAX_BONDS, target.bonds + shift),
    )


def allocation_changes(current: AssetAllocation, target: AssetAllocation, threshold: float) -> list[AllocationChange]:
    changes = []
    for asset in TRACKED_CLASSES:
        have, want = getattr(current, asset), getattr(target, asset)
        if abs(have - want) > threshold:
            changes.append(AllocationChange(asset, have, want))
    return changes


def evaluate(
    rule: LifecycleAdjustmentRule,
    context: SimulationContext,
    goals: GoalProgressSource | None = None,
    estimator: AllocationEstimator | None = None,
) -> list[EventAction]:
    if not check_conditions(rule, context, goals):
        return []
    stage = find_stage(rule, context.current_age)
    if stage is None:
        return []
    target = target_allocation(rule, stage, context.current_age)
    current, total_value = (estimator or lifecycle_estimator()).estimate(rule.account_scope, context)
    if total_value <= 0:
        return []
    changes = allocation_changes(current, target, rule.drift_threshold)
    if not changes:
        return []

    account = rule.account_scope[0]
    stage_label = stage.stage_name or f"ages {stage.min_age}-{stage.max_age}"
    actions: list[EventAction | None] = []

    def contribution() -> EventAction | None:
        amount = context.monthly_income * CONTRIBUTION_RATE
        if amount <= 0:
            return None
        return build_action(
            ActionType.CONTRIBUTION,
            amount,
            description=f"Lifecycle-adjusted contribution to {stage_label} allocation (age {context.current_age})",
            source_account="cash",
            target_account=account,
            priority=rule.priority,
            metadata={"current_stage": stage_label, "adjustment_method": "NEW_CONTRIBUTIONS", "target_allocation": target.as_dict()},
        )

    def rebalances() -> list[EventAction | None]:
        out = []
        for change in changes:
            amount = abs(change.change) * total_value
            if amount <= MIN_REBALANCE:
                continue
            out.append(
                build_action(
                    ActionType.REBALANCE,
                    amount,
                    description=(
                        f"Lifecycle rebalancing: move {change.asset} from {format_percentage(change.current)} "
                        f"to {format_percentage(change.target)} ({format_currency(amount)})"
                    ),
                    source_account=account,
                    target_account=account,
                    priority=rule.priority,
                    metadata={
                        "current_stage": stage_label,
                        "asset_class": change.asset,
                        "allocation_change": change.change,
                        "adjustment_method": "FULL_REBALANCE",
                    },
                )
            )
        return out

    match rule.rebalancing_method:
        case "NEW_CONTRIBUTIONS":
            actions.append(contribution())
        case "FULL_REBALANCE":
            actions.extend(rebalances())
        case "HYBRID":
            actions.append(contribution())
            if any(abs(change.change) > HYBRID_TRIGGER for change in changes):
                actions.extend(rebalances())
    return [action for action in actions if action is not None and action.amount > 0]


def explain(rule: LifecycleAdjustmentRule) -> str:
    lines = ["Adjusts your asset allocation as you age:"]
    for stage in sorted(rule.stages, key=lambda s: s.min_age):
        weights = ", ".join(
            f"{format_percentage(weight, 0)} {asset}" for asset, weight in stage.target_allocation.as_dict().items() if weight > 0
        )
        lines.append(f"{stage.stage_name or 'Stage'} (ages {stage.min_age}-{stage.max_age}): {weights}")
    lines.append(
        f"Checked {rule.adjustment_frequency.lower().replace('_', ' ')} using {rule.rebalancing_method.lower().replace('_', ' ')}"
        + (f" with a {rule.glide_path.lower()} glide path." if rule.glide_path else ".")
    )
    return "\n".join(lines)


def create_template(**overrides: Any) -> LifecycleAdjustmentRule:
    fields: dict[str, Any] = {
        "id": "lifecycle-adjustment",
        "name": "Lifecycle Asset Allocation",
        "description": "Automatically adjust allocation based on age and life stage",
        "priority": 40,
        "stages": (
            LifecycleStage(20, 35, AssetAllocation(stocks=0.85, bonds=0.10, international=0.05), "Young Professional"),
            LifecycleStage(36, 50, AssetAllocation(stocks=0.70, bonds=0.20, international=0.10), "Mid-Career"),
            LifecycleStage(51, 65, AssetAllocation(stocks=0.55, bonds=0.35, international=0.05, cash=0.05), "Pre-Retirement"),
            LifecycleStage(66, 100, AssetAllocation(stocks=0.40, bonds=0.50, cash=0.10), "Retirement"),
        ),
        "adjustment_frequency": "ANNUAL",
        "glide_path": "LINEAR",
        "rebalancing_method": "HYBRID",
        "drift_threshold": 0.05,
        "account_scope": ("tax_deferred", "roth", "taxable"),
    }
    fields.update(overrides)
    return LifecycleAdjustmentRule(**fields)


def validate_authoring_input(data: dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    if not str(data.get("name") or "").strip():
        result.errors.append("name: is required")
    if not isinstance(data.get("stages"), list):
        result.errors.append("stages: is required")
    if not data.get("rebalancing_method"):
        result.errors.append("rebalancing_method: is required")
    if not data.get("account_scope"):
        result.errors.append("account_scope: is required")
    return result
