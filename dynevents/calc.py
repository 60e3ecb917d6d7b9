"""Pure calculation helpers shared by the rule processors."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Sequence

from .errors import AmountOutOfRangeError
from .ports import ContextGoalProgressSource, GoalProgressSource
from .schema import (
    AdjustmentStrategy,
    BalanceCondition,
    ConditionSet,
    Debt,
    GoalLimits,
    GoalProgress,
    IncomeCondition,
    ProgressThreshold,
    RangeCondition,
    SimulationContext,
    WaterfallTier,
)

EFFECTIVE_TAX_RATE = 0.25
DEFAULT_MAX_AMOUNT = 1_000_000.0

AGGRESSIVENESS_FACTORS = {"CONSERVATIVE": 0.8, "MODERATE": 1.0, "AGGRESSIVE": 1.2}


@dataclass(frozen=True, slots=True)
class TierAllocation:
    priority: int
    target_account: str
    amount: float
    remaining_capacity: float | None
    description: str = ""


@dataclass(frozen=True, slots=True)
class DebtPayment:
    debt_id: str
    amount: float


@dataclass(frozen=True, slots=True)
class GoalAdjustment:
    amount: float
    multiplier: float
    base_amount: float


def emergency_fund_target(monthly_expenses: float, target_months: float) -> float:
    return max(0.0, monthly_expenses) * max(0.0, target_months)


def tier_is_eligible(tier: WaterfallTier, context: SimulationContext) -> bool:
    conditions = tier.conditions
    if conditions is None:
        return True
    # Employer plans are only modelled for the tax-deferred category.
    if conditions.employer_match and tier.target_account != "tax_deferred":
        return False
    if conditions.income_limit is not None and context.monthly_income * 12 > conditions.income_limit:
        return False
    if conditions.account_exists and tier.target_account != "cash" and tier.target_account not in context.account_balances:
        return False
    return True


def waterfall_allocation(
    total_amount: float,
    tiers: Sequence[WaterfallTier],
    context: SimulationContext,
) -> tuple[list[TierAllocation], float]:
    """Cascade ``total_amount`` through tiers in priority order.

    Returns the per-tier allocations and the unallocated remainder. ``sorted``
    is stable, so tiers sharing a priority keep their input order.
    """
    remaining = max(0.0, total_amount)
    allocations: list[TierAllocation] = []
    for tier in sorted(tiers, key=lambda t: t.priority):
        if remaining <= 0:
            break
        if not tier_is_eligible(tier, context):
            continue
        if tier.max_amount is None:
            capacity = remaining
        else:
            capacity = max(0.0, tier.max_amount - context.balance(tier.target_account))
        amount = min(remaining, capacity)
        if amount <= 0:
            continue
        remaining -= amount
        left = None if tier.max_amount is None else capacity - amount
        allocations.append(TierAllocation(tier.priority, tier.target_account, amount, left, tier.description))
    return allocations, remaining


def percentage_contribution(
    monthly_income: float,
    savings_rate: float,
    *,
    use_gross_income: bool = True,
    min_monthly: float | None = None,
    max_monthly: float | None = None,
    max_annual: float | None = None,
    contributed_year_to_date: float = 0.0,
    month_of_year: int = 0,
) -> float:
    base = monthly_income if use_gross_income else monthly_income * (1 - EFFECTIVE_TAX_RATE)
    amount = max(0.0, base * savings_rate)
    if max_annual is not None:
        months_remaining = 12 - (month_of_year % 12)
        remaining_annual = max(0.0, max_annual - contributed_year_to_date)
        amount = min(amount, remaining_annual / months_remaining)
    if max_monthly is not None:
        amount = min(amount, max_monthly)
    if min_monthly is not None:
        amount = max(amount, min_monthly)
    return amount


def conditional_contribution(
    cash_balance: float,
    cash_threshold: float,
    target_amount: float,
    strategy: str,
    percentage: float | None = None,
) -> float:
    excess = max(0.0, cash_balance - cash_threshold)
    if strategy == "FIXED_AMOUNT":
        return target_amount if excess >= target_amount else 0.0
    if strategy == "PERCENTAGE_OF_EXCESS":
        return excess * (1.0 if percentage is None else percentage)
    if strategy == "ALL_EXCESS":
        return excess
    return 0.0


def sort_debts(debts: Sequence[Debt], strategy: str) -> list[Debt]:
    if strategy == "AVALANCHE":
        return sorted(debts, key=lambda d: d.interest_rate, reverse=True)
    if strategy == "SNOWBALL":
        return sorted(debts, key=lambda d: d.balance)
    if strategy == "HIGHEST_PAYMENT":
        return sorted(debts, key=lambda d: d.minimum_payment, reverse=True)
    return list(debts)


def smart_debt_payment(debts: Sequence[Debt], budget: float, strategy: str) -> list[DebtPayment]:
    """Split ``budget`` across ``debts``.

    AVALANCHE and SNOWBALL focus the whole budget on the first debt in their
    ordering; other strategies share it evenly. Payments never exceed a balance.
    """
    open_debts = [debt for debt in sort_debts(debts, strategy) if debt.balance > 0]
    if budget <= 0 or not open_debts:
        return []
    if strategy in ("AVALANCHE", "SNOWBALL"):
        focus = open_debts[0]
        return [DebtPayment(focus.id, min(budget, focus.balance))]
    share = budget / len(open_debts)
    return [DebtPayment(debt.id, min(share, debt.balance)) for debt in open_debts]


def _progress_multiplier(goal: GoalProgress, strategy: AdjustmentStrategy, thresholds: Sequence[ProgressThreshold]) -> float:
    if thresholds:
        for threshold in sorted(thresholds, key=lambda t: t.progress_percentage):
            if goal.progress_percentage < threshold.progress_percentage:
                return 1.0 + threshold.adjustment_percentage
        return 1.0
    if strategy.type == "TIME_BASED":
        return 1.0 if goal.on_track else 1.2
    if strategy.type == "PROGRESS_BASED":
        return 1.1 if goal.progress_percentage < 0.8 else 1.0
    if strategy.type == "DEFICIT_BASED":
        return 1.0 if goal.on_track else 1.25
    return 1.0


def goal_driven_contribution(
    goal: GoalProgress,
    strategy: AdjustmentStrategy,
    limits: GoalLimits,
    thresholds: Sequence[ProgressThreshold] = (),
) -> GoalAdjustment:
    base = strategy.base_contribution
    multiplier = _progress_multiplier(goal, strategy, thresholds)
    multiplier *= AGGRESSIVENESS_FACTORS.get(strategy.aggressiveness, 1.0)
    amount = base * multiplier
    for low, high in (
        (strategy.min_contribution, strategy.max_contribution),
        (limits.min_contribution, limits.max_contribution),
    ):
        if low is not None:
            amount = max(amount, low)
        if high is not None:
            amount = min(amount, high)
    if limits.max_adjustment_percentage is not None:
        spread = base * limits.max_adjustment_percentage
        amount = min(max(amount, base - spread), base + spread)
    return GoalAdjustment(amount=max(0.0, amount), multiplier=multiplier, base_amount=base)


def check_balance_condition(condition: BalanceCondition, context: SimulationContext) -> bool:
    cash = context.cash_balance
    if condition.min is not None and cash < condition.min:
        return False
    if condition.max is not None and cash > condition.max:
        return False
    if condition.percentage_of is not None and condition.percentage is not None:
        reference = {
            "INCOME": context.monthly_income * 12,
            "EXPENSES": context.monthly_expenses * 12,
            "NET_WORTH": context.total_net_worth,
        }.get(condition.percentage_of, 0.0)
        if cash < reference * condition.percentage / 100:
            return False
    return True


def _income_reference(context: SimulationContext, period: str) -> float:
    if period == "LAST_MONTH":
        return context.last_month_income
    # Only a six-month rolling average is tracked for longer windows.
    return context.average_income_last_6_months


def check_income_condition(condition: IncomeCondition, context: SimulationContext) -> bool:
    monthly = context.monthly_income
    annual = monthly * 12
    if condition.min_monthly is not None and monthly < condition.min_monthly:
        return False
    if condition.max_monthly is not None and monthly > condition.max_monthly:
        return False
    if condition.min_annual is not None and annual < condition.min_annual:
        return False
    if condition.max_annual is not None and annual > condition.max_annual:
        return False
    if condition.change_threshold is not None:
        reference = _income_reference(context, condition.change_threshold.comparison_period)
        if reference > 0:
            change = abs(monthly - reference) / reference
            if change < condition.change_threshold.percentage:
                return False
    return True


def _in_range(condition: RangeCondition, value: float) -> bool:
    if condition.min is not None and value < condition.min:
        return False
    if condition.max is not None and value > condition.max:
        return False
    return True


def check_condition_set(
    conditions: ConditionSet | None,
    context: SimulationContext,
    goals: GoalProgressSource | None = None,
) -> bool:
    if conditions is None:
        return True
    if conditions.cash_balance is not None and not check_balance_condition(conditions.cash_balance, context):
        return False
    if conditions.income is not None and not check_income_condition(conditions.income, context):
        return False
    if conditions.age is not None and not _in_range(conditions.age, context.current_age):
        return False
    if conditions.net_worth is not None and not _in_range(conditions.net_worth, context.total_net_worth):
        return False
    if conditions.goal_progress is not None:
        clause = conditions.goal_progress
        goal = (goals or ContextGoalProgressSource()).lookup(clause.goal_id, context)
        if goal is None:
            return False
        if clause.require_on_track and not goal.on_track:
            return False
        if not _in_range(RangeCondition(clause.min_progress, clause.max_progress), goal.progress_percentage):
            return False
    return True


def validate_amount(amount: float, *, minimum: float = 0.0, maximum: float = DEFAULT_MAX_AMOUNT) -> float:
    if not math.isfinite(amount) or amount < minimum or amount > maximum:
        raise AmountOutOfRangeError(amount, minimum=minimum, maximum=maximum)
    return amount


def format_currency(amount: float) -> str:
    if amount < 0:
        return f"-${-amount:,.0f}"
    return f"${amount:,.0f}"


def format_percentage(value: float, decimals: int = 1) -> str:
    return f"{value * 100:.{decimals}f}%"


def compound_growth(principal: float, annual_rate: float, years: float, monthly_contribution: float = 0.0) -> float:
    """Future value with monthly compounding and end-of-month contributions."""
    months = int(round(years * 12))
    if annual_rate == 0:
        return principal + monthly_contribution * months
    rate = annual_rate / 12
    factor = (1 + rate) ** months
    return principal * factor + monthly_contribution * (factor - 1) / rate
