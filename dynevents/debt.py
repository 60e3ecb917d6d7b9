"""Smart debt payment: extra principal payments ordered by a payoff strategy."""

from __future__ import annotations

from typing import Any, Sequence

from .actions import build_action
from .calc import check_condition_set, format_currency, format_percentage, smart_debt_payment
from .ports import DebtSource, GoalProgressSource, StaticDebtSource
from .schema import ActionType, Debt, EventAction, ExtraPayment, SimulationContext, SmartDebtPaymentRule
from .validate import ValidationResult, check_enum, check_fraction, check_min, validate_common

STRATEGIES = {"AVALANCHE", "SNOWBALL", "HIGHEST_PAYMENT", "CUSTOM"}
EXTRA_PAYMENT_TYPES = {"FIXED_AMOUNT", "PERCENTAGE_OF_INCOME", "SURPLUS_AFTER_EXPENSES"}
MAX_AMOUNT = 100_000.0


def validate_rule(rule: SmartDebtPaymentRule) -> ValidationResult:
    result = validate_common(rule)
    check_enum(result, "strategy", rule.strategy, STRATEGIES)
    check_enum(result, "extra_payment.type", rule.extra_payment.type, EXTRA_PAYMENT_TYPES)
    check_min(result, "emergency_fund_target", rule.emergency_fund_target, 0)
    extra = rule.extra_payment
    if extra.type == "FIXED_AMOUNT":
        if extra.amount is None:
            result.errors.append("extra_payment.amount: required for FIXED_AMOUNT")
        check_min(result, "extra_payment.amount", extra.amount, 0, exclusive=True)
    elif extra.type == "PERCENTAGE_OF_INCOME":
        if extra.percentage is None:
            result.errors.append("extra_payment.percentage: required for PERCENTAGE_OF_INCOME")
        check_fraction(result, "extra_payment.percentage", extra.percentage)
    return result


def payment_budget(rule: SmartDebtPaymentRule, context: SimulationContext) -> float:
    extra = rule.extra_payment
    if extra.type == "FIXED_AMOUNT":
        return max(0.0, extra.amount or 0.0)
    if extra.type == "PERCENTAGE_OF_INCOME":
        return max(0.0, context.monthly_income * (extra.percentage or 0.0))
    if extra.type == "SURPLUS_AFTER_EXPENSES":
        return max(0.0, context.monthly_income - context.monthly_expenses - rule.emergency_fund_target)
    return 0.0


def target_debts(rule: SmartDebtPaymentRule, debts: Sequence[Debt]) -> list[Debt]:
    if not rule.target_debts:
        return list(debts)
    by_id = {debt.id: debt for debt in debts}
    return [by_id[debt_id] for debt_id in rule.target_debts if debt_id in by_id]


def check_conditions(rule: SmartDebtPaymentRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> bool:
    # Extra payments never draw the emergency fund below target.
    if context.cash_balance < rule.emergency_fund_target:
        return False
    if rule.extra_payment.type == "PERCENTAGE_OF_INCOME" and context.monthly_income <= 0:
        return False
    return check_condition_set(rule.conditions, context, goals)


def evaluate(
    rule: SmartDebtPaymentRule,
    context: SimulationContext,
    goals: GoalProgressSource | None = None,
    debts: DebtSource | None = None,
) -> list[EventAction]:
    if not check_conditions(rule, context, goals):
        return []
    budget = payment_budget(rule, context)
    candidates = target_debts(rule, (debts or StaticDebtSource()).debts(context))
    payments = smart_debt_payment(candidates, budget, rule.strategy)
    names = {debt.id: debt.name for debt in candidates}
    actions: list[EventAction] = []
    for payment in payments:
        action = build_action(
            ActionType.DEBT_PAYMENT,
            payment.amount,
            description=f"{rule.name}: extra {format_currency(payment.amount)} to {names.get(payment.debt_id, payment.debt_id)}",
            source_account="cash",
            target_account="debt",
            priority=rule.priority,
            metadata={
                "debt_id": payment.debt_id,
                "strategy": rule.strategy,
                "total_payment": budget,
                "extra_payment": payment.amount,
            },
            maximum=MAX_AMOUNT,
        )
        if action is not None:
            actions.append(action)
    return actions


def explain(rule: SmartDebtPaymentRule) -> str:
    extra = rule.extra_payment
    if extra.type == "FIXED_AMOUNT":
        budget = f"an extra {format_currency(extra.amount or 0.0)} per month"
    elif extra.type == "PERCENTAGE_OF_INCOME":
        budget = f"{format_percentage(extra.percentage or 0.0)} of monthly income"
    else:
        budget = "any income left after expenses"
    order = {
        "AVALANCHE": "focusing on the highest interest rate first",
        "SNOWBALL": "focusing on the smallest balance first",
        "HIGHEST_PAYMENT": "spread across debts with the largest minimum payments first",
        "CUSTOM": "spread across debts in the order you chose",
    }.get(rule.strategy, "")
    return (
        f"Pays {budget} toward debt, {order}. "
        f"Only pays extra when you have at least {format_currency(rule.emergency_fund_target)} in cash."
    )


def create_template(**overrides: Any) -> SmartDebtPaymentRule:
    fields: dict[str, Any] = {
        "id": "smart-debt-payment",
        "name": "Smart Debt Payoff",
        "description": "Pay off high-interest debt first while keeping an emergency fund",
        "priority": 30,
        "strategy": "AVALANCHE",
        "extra_payment": ExtraPayment("FIXED_AMOUNT", amount=1000.0),
        "emergency_fund_target": 15000.0,
    }
    fields.update(overrides)
    return SmartDebtPaymentRule(**fields)


def debt_avalanche(extra_amount: float, emergency_fund: float = 15000.0) -> SmartDebtPaymentRule:
    return create_template(
        id="debt-avalanche",
        name="Debt Avalanche Strategy",
        extra_payment=ExtraPayment("FIXED_AMOUNT", amount=extra_amount),
        emergency_fund_target=emergency_fund,
    )


def debt_snowball(extra_amount: float, emergency_fund: float = 15000.0) -> SmartDebtPaymentRule:
    return create_template(
        id="debt-snowball",
        name="Debt Snowball Strategy",
        strategy="SNOWBALL",
        extra_payment=ExtraPayment("FIXED_AMOUNT", amount=extra_amount),
        emergency_fund_target=emergency_fund,
    )


def aggressive_payoff(income_percentage: float, emergency_fund: float = 20000.0) -> SmartDebtPaymentRule:
    return create_template(
        id="aggressive-payoff",
        name="Aggressive Debt Payoff",
        extra_payment=ExtraPayment("PERCENTAGE_OF_INCOME", percentage=income_percentage),
        emergency_fund_target=emergency_fund,
    )


def validate_authoring_input(data: dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    if not str(data.get("name") or "").strip():
        result.errors.append("name: is required")
    if not data.get("strategy"):
        result.errors.append("strategy: is required")
    extra = data.get("extra_payment") or {}
    kind = extra.get("type")
    if not kind:
        result.errors.append("extra_payment.type: is required")
    elif kind == "FIXED_AMOUNT":
        amount = extra.get("amount")
        if not isinstance(amount, (int, float)) or amount <= 0:
            result.errors.append("extra_payment.amount: must be a positive number")
        elif amount > 50_000:
            result.errors.append("extra_payment.amount: seems unusually high (max $50,000)")
    elif kind == "PERCENTAGE_OF_INCOME":
        pct = extra.get("percentage")
        if not isinstance(pct, (int, float)) or not 0 < pct <= 1:
            result.errors.append("extra_payment.percentage: must be between 0 and 1")
    target = data.get("emergency_fund_target")
    if not isinstance(target, (int, float)) or target < 0:
        result.errors.append("emergency_fund_target: must be a non-negative number")
    return result
