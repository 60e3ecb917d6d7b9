"""Automatic rebalancing back to a target asset allocation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .actions import build_action
from .allocation import AllocationEstimator, HeuristicAllocationEstimator
from .calc import check_condition_set, format_currency, format_percentage
from .ports import GoalProgressSource
from .schema import ASSET_CLASSES, ActionType, AssetAllocation, AutomaticRebalancingRule, EventAction, SimulationContext
from .validate import ACCOUNT_CATEGORIES, ValidationResult, check_allocation, check_enum, check_max, check_min, validate_common

TIME_TRIGGERS = {"MONTHLY", "QUARTERLY", "ANNUALLY"}
TAX_ADVANTAGED = ("tax_deferred", "roth")


@dataclass(frozen=True, slots=True)
class Trade:
    asset: str
    amount: float
    overweight: bool
    drift: float
    account: str


def validate_rule(rule: AutomaticRebalancingRule) -> ValidationResult:
    result = validate_common(rule)
    check_allocation(result, "target_allocation", rule.target_allocation)
    check_min(result, "drift_threshold", rule.drift_threshold, 0, exclusive=True)
    check_max(result, "drift_threshold", rule.drift_threshold, 0.5)
    if not rule.included_accounts:
        result.errors.append("included_accounts: at least one account is required")
    for idx, account in enumerate(rule.included_accounts):
        check_enum(result, f"included_accounts[{idx}]", account, ACCOUNT_CATEGORIES)
    for idx, account in enumerate(rule.preferred_trading_accounts):
        check_enum(result, f"preferred_trading_accounts[{idx}]", account, ACCOUNT_CATEGORIES)
    if rule.time_based is not None:
        check_enum(result, "time_based", rule.time_based, TIME_TRIGGERS)
    check_min(result, "minimum_trade_amount", rule.minimum_trade_amount, 0)
    check_min(result, "max_trades_per_rebalance", rule.max_trades_per_rebalance, 1)
    check_min(result, "minimum_cash_reserve", rule.minimum_cash_reserve, 0)
    return result


def check_conditions(rule: AutomaticRebalancingRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> bool:
    if rule.minimum_cash_reserve is not None and context.cash_balance < rule.minimum_cash_reserve:
        return False
    if rule.time_based == "QUARTERLY" and context.current_month % 3 != 0:
        return False
    if rule.time_based == "ANNUALLY" and context.current_month % 12 != 0:
        return False
    return check_condition_set(rule.conditions, context, goals)


def trading_account(rule: AutomaticRebalancingRule) -> str:
    if rule.preferred_trading_accounts:
        return rule.preferred_trading_accounts[0]
    for account in rule.included_accounts:
        if account in TAX_ADVANTAGED:
            return account
    return rule.included_accounts[0] if rule.included_accounts else "taxable"


def plan_trades(rule: AutomaticRebalancingRule, current: AssetAllocation, total_value: float) -> list[Trade]:
    account = trading_account(rule)
    target = rule.target_allocation
    trades: list[Trade] = []
    for asset in ASSET_CLASSES:
        want, have = getattr(target, asset), getattr(current, asset)
        drift = abs(have - want)
        if drift <= rule.drift_threshold:
            continue
        amount = drift * total_value
        if amount < rule.minimum_trade_amount:
            continue
        trades.append(Trade(asset, amount, have > want, drift, account))
    if rule.max_trades_per_rebalance is not None:
        trades = trades[: rule.max_trades_per_rebalance]
    return trades


def evaluate(
    rule: AutomaticRebalancingRule,
    context: SimulationContext,
    goals: GoalProgressSource | None = None,
    estimator: AllocationEstimator | None = None,
) -> list[EventAction]:
    if not check_conditions(rule, context, goals):
        return []
    current, total_value = (estimator or HeuristicAllocationEstimator()).estimate(rule.included_accounts, context)
    if total_value <= 0:
        return []
    actions: list[EventAction] = []
    for trade in plan_trades(rule, current, total_value):
        verb = "Sell" if trade.overweight else "Buy"
        side = "overweight" if trade.overweight else "underweight"
        action = build_action(
            ActionType.REBALANCE,
            trade.amount,
            description=(
                f"{verb} {format_currency(trade.amount)} of {trade.asset} - "
                f"{trade.asset} is {side} by {format_percentage(trade.drift)}"
            ),
            source_account=trade.account,
            target_account=trade.account,
            priority=rule.priority,
            metadata={
                "from_asset": trade.asset if trade.overweight else "cash",
                "to_asset": "cash" if trade.overweight else trade.asset,
                "tax_implications": "SIGNIFICANT" if trade.account == "taxable" else "MINIMAL",
                "drift": trade.drift,
            },
        )
        if action is not None:
            actions.append(action)
    return actions


def explain(rule: AutomaticRebalancingRule) -> str:
    weights = ", ".join(
        f"{asset}: {format_percentage(weight)}" for asset, weight in rule.target_allocation.as_dict().items() if weight > 0
    )
    text = (
        f"Rebalances {', '.join(rule.included_accounts)} toward {weights} when any asset class drifts "
        f"more than {format_percentage(rule.drift_threshold)} from target"
    )
    if rule.time_based is not None:
        text += f", checked {rule.time_based.lower()}"
    text += "."
    if rule.preferred_trading_accounts:
        text += f" Trades are placed in {', '.join(rule.preferred_trading_accounts)} accounts first."
    return text


def create_template(**overrides: Any) -> AutomaticRebalancingRule:
    fields: dict[str, Any] = {
        "id": "automatic-rebalancing",
        "name": "Portfolio Auto-Rebalancing",
        "description": "Automatically rebalance portfolio when allocation drifts from target",
        "priority": 35,
        "target_allocation": AssetAllocation(stocks=0.60, bonds=0.30, international=0.10),
        "drift_threshold": 0.05,
        "time_based": "QUARTERLY",
        "minimum_trade_amount": 1000.0,
        "included_accounts": ("tax_deferred", "roth", "taxable"),
        "max_trades_per_rebalance": 5,
        "preferred_trading_accounts": ("tax_deferred", "roth"),
        "minimum_cash_reserve": 5000.0,
    }
    fields.update(overrides)
    return AutomaticRebalancingRule(**fields)


def validate_authoring_input(data: dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    if not isinstance(data.get("name"), str) or not data["name"].strip():
        result.errors.append("name: is required")
    if not isinstance(data.get("target_allocation"), dict):
        result.errors.append("target_allocation: is required")
    if not isinstance(data.get("drift_threshold"), (int, float)):
        result.errors.append("drift_threshold: is required")
    if not isinstance(data.get("included_accounts"), list):
        result.errors.append("included_accounts: is required")
    return result
