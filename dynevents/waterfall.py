"""Waterfall allocation: cascade a fixed amount through prioritized tiers."""

from __future__ import annotations

import logging
from typing import Any

from .actions import build_action
from .calc import check_condition_set, format_currency, waterfall_allocation
from .ports import GoalProgressSource
from .schema import (
    ActionType,
    EventAction,
    RemainderPolicy,
    SimulationContext,
    TierConditions,
    WaterfallAllocationRule,
    WaterfallTier,
)
from .validate import ACCOUNT_CATEGORIES, ValidationResult, check_enum, check_min, validate_common

logger = logging.getLogger(__name__)

REMAINDER_ACTIONS = {"INVEST_TAXABLE", "KEEP_CASH", "DISTRIBUTE_EVENLY"}

CONTRIBUTION_LIMITS_2025 = {
    "401k": 23500.0,
    "ira": 7000.0,
    "roth_ira": 7000.0,
    "hsa": 4550.0,
    "catch_up_401k": 7500.0,
    "catch_up_ira": 1000.0,
}
CATCH_UP_AGE = 50


def contribution_limit(account: str, age: int) -> float:
    """Annual contribution limit for an account category at ``age``."""
    catch_up = age >= CATCH_UP_AGE
    if account == "tax_deferred":
        return CONTRIBUTION_LIMITS_2025["401k"] + (CONTRIBUTION_LIMITS_2025["catch_up_401k"] if catch_up else 0.0)
    if account == "roth":
        return CONTRIBUTION_LIMITS_2025["roth_ira"] + (CONTRIBUTION_LIMITS_2025["catch_up_ira"] if catch_up else 0.0)
    if account == "hsa":
        return CONTRIBUTION_LIMITS_2025["hsa"]
    if account in ("taxable", "cash", "529"):
        return float("inf")
    return 0.0


def validate_rule(rule: WaterfallAllocationRule) -> ValidationResult:
    result = validate_common(rule)
    check_min(result, "total_amount", rule.total_amount, 0, exclusive=True)
    if not rule.tiers:
        result.errors.append("tiers: at least one tier is required")
    for idx, tier in enumerate(rule.tiers):
        base = f"tiers[{idx}]"
        check_min(result, f"{base}.priority", tier.priority, 1)
        check_enum(result, f"{base}.target_account", tier.target_account, ACCOUNT_CATEGORIES)
        check_min(result, f"{base}.max_amount", tier.max_amount, 0, exclusive=True)
        if tier.conditions is not None:
            check_min(result, f"{base}.conditions.income_limit", tier.conditions.income_limit, 0)
    if rule.remainder is not None:
        check_enum(result, "remainder.action", rule.remainder.action, REMAINDER_ACTIONS)
        check_enum(result, "remainder.target_account", rule.remainder.target_account, ACCOUNT_CATEGORIES)
    return result


def check_conditions(rule: WaterfallAllocationRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> bool:
    if context.cash_balance < rule.total_amount:
        return False
    return check_condition_set(rule.conditions, context, goals)


def _remainder_action(rule: WaterfallAllocationRule, remaining: float) -> EventAction | None:
    policy = rule.remainder
    if policy is None or remaining <= 0:
        return None
    if policy.action == "KEEP_CASH":
        return None
    if policy.action == "DISTRIBUTE_EVENLY":
        logger.debug("%s: DISTRIBUTE_EVENLY remainder is not implemented; %s left unallocated", rule.id, format_currency(remaining))
        return None
    return build_action(
        ActionType.CONTRIBUTION,
        remaining,
        description=f"{rule.name}: invest remaining {format_currency(remaining)} in {policy.target_account}",
        source_account="cash",
        target_account=policy.target_account,
        priority=rule.priority,
        metadata={"waterfall_priority": None, "remainder": True},
    )


def evaluate(rule: WaterfallAllocationRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> list[EventAction]:
    if not check_conditions(rule, context, goals):
        return []
    allocations, remaining = waterfall_allocation(rule.total_amount, rule.tiers, context)
    actions: list[EventAction] = []
    for allocation in allocations:
        label = allocation.description or allocation.target_account
        action = build_action(
            ActionType.CONTRIBUTION,
            allocation.amount,
            description=f"{rule.name}: tier {allocation.priority} {label} {format_currency(allocation.amount)}",
            source_account="cash",
            target_account=allocation.target_account,
            priority=rule.priority,
            metadata={
                "waterfall_priority": allocation.priority,
                "remaining_capacity": allocation.remaining_capacity,
            },
        )
        if action is not None:
            actions.append(action)
    remainder = _remainder_action(rule, remaining)
    if remainder is not None:
        actions.append(remainder)
    return actions


def explain(rule: WaterfallAllocationRule) -> str:
    lines = [f"Allocates {format_currency(rule.total_amount)} each period through a priority waterfall:"]
    for tier in sorted(rule.tiers, key=lambda t: t.priority):
        cap = f" (up to {format_currency(tier.max_amount)})" if tier.max_amount is not None else ""
        label = tier.description or tier.target_account
        lines.append(f"{tier.priority}. {label}{cap} -> {tier.target_account.replace('_', ' ')} account")
    if rule.remainder is not None:
        match rule.remainder.action:
            case "INVEST_TAXABLE":
                lines.append(f"Any remaining funds are invested in your {rule.remainder.target_account} account.")
            case "KEEP_CASH":
                lines.append("Any remaining funds are kept in cash.")
            case _:
                lines.append("Any remaining funds are distributed evenly across unfilled tiers.")
    return "\n".join(lines)


def create_template(**overrides: Any) -> WaterfallAllocationRule:
    fields: dict[str, Any] = {
        "id": "waterfall-allocation",
        "name": "Optimal Contribution Strategy",
        "description": "Priority-based savings allocation for maximum tax efficiency",
        "priority": 40,
        "total_amount": 5000.0,
        "tiers": (
            WaterfallTier(1, "tax_deferred", 23500.0, "401k to employer match", TierConditions(employer_match=True)),
            WaterfallTier(2, "hsa", 4300.0, "HSA contribution"),
            WaterfallTier(3, "roth", 7000.0, "Roth IRA"),
        ),
        "remainder": RemainderPolicy("INVEST_TAXABLE", "taxable"),
    }
    fields.update(overrides)
    return WaterfallAllocationRule(**fields)


def max_out_everything(total_amount: float) -> WaterfallAllocationRule:
    return create_template(
        id="max-out-everything",
        name="Max Out Everything",
        total_amount=total_amount,
        tiers=(
            WaterfallTier(1, "tax_deferred", 12000.0, "401k to full employer match", TierConditions(employer_match=True)),
            WaterfallTier(2, "hsa", 4300.0, "HSA contribution"),
            WaterfallTier(3, "roth", 7000.0, "Roth IRA contribution"),
            WaterfallTier(4, "tax_deferred", 23500.0, "Additional 401k contribution"),
        ),
    )


def balanced_approach(total_amount: float, emergency_fund_target: float) -> WaterfallAllocationRule:
    return create_template(
        id="balanced-approach",
        name="Balanced Approach",
        total_amount=total_amount,
        tiers=(
            WaterfallTier(1, "cash", emergency_fund_target, "Emergency fund"),
            WaterfallTier(2, "tax_deferred", 12000.0, "401k to employer match"),
            WaterfallTier(3, "roth", 7000.0, "Roth IRA contribution"),
            WaterfallTier(4, "tax_deferred", 23500.0, "Additional 401k contribution"),
        ),
    )


def tax_optimized(total_amount: float) -> WaterfallAllocationRule:
    return create_template(
        id="tax-optimized",
        name="Tax Optimized",
        total_amount=total_amount,
        tiers=(
            WaterfallTier(1, "hsa", 4300.0, "HSA"),
            WaterfallTier(2, "tax_deferred", 23500.0, "Traditional 401k"),
            WaterfallTier(3, "roth", 7000.0, "Roth IRA", TierConditions(income_limit=140000.0)),
        ),
    )


def validate_authoring_input(data: dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    if not str(data.get("name") or "").strip():
        result.errors.append("name: is required")
    total = data.get("total_amount")
    if not isinstance(total, (int, float)) or total <= 0:
        result.errors.append("total_amount: must be a positive number")
    elif total > 200_000:
        result.errors.append("total_amount: seems unusually high (max $200,000)")
    tiers = data.get("tiers")
    if not isinstance(tiers, list) or not tiers:
        result.errors.append("tiers: at least one tier is required")
        tiers = []
    seen: set[Any] = set()
    for idx, tier in enumerate(tiers):
        base = f"tiers[{idx}]"
        priority = tier.get("priority")
        if not isinstance(priority, int) or priority < 1:
            result.errors.append(f"{base}.priority: must be a positive integer")
        elif priority in seen:
            result.errors.append(f"{base}.priority: duplicate priority {priority}")
        seen.add(priority)
        if not tier.get("target_account"):
            result.errors.append(f"{base}.target_account: is required")
        cap = tier.get("max_amount")
        if cap is not None and (not isinstance(cap, (int, float)) or cap <= 0):
            result.errors.append(f"{base}.max_amount: must be a positive number")
    remainder = data.get("remainder")
    if remainder is not None and not remainder.get("action"):
        result.errors.append("remainder.action: is required when remainder is set")
    return result
