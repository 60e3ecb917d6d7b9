"""Tax-loss harvesting in the taxable account."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .actions import build_action
from .calc import check_condition_set, format_currency, format_percentage
from .ports import GoalProgressSource
from .schema import ActionType, EventAction, SimulationContext, TaxLossHarvestingRule, WashSaleProtection
from .validate import ValidationResult, check_enum, check_max, check_min, validate_common

TIMINGS = {"YEAR_END", "QUARTERLY", "CONTINUOUS"}
MAX_PORTFOLIO_SHARE = 0.30
SELL_SHARE = 0.80
LOSS_ON_SALE = 0.20
MIN_WASH_SALE_DAYS = 31
WASH_SALE_MONTHS = 2


@dataclass(frozen=True, slots=True)
class HarvestAnalysis:
    taxable_balance: float
    unrealized_losses: float
    harvestable: float
    tax_savings: float
    wash_sale_risk: bool

    @property
    def sell_amount(self) -> float:
        return self.harvestable * SELL_SHARE


def validate_rule(rule: TaxLossHarvestingRule) -> ValidationResult:
    result = validate_common(rule)
    check_min(result, "minimum_account_value", rule.minimum_account_value, 0, exclusive=True)
    check_min(result, "minimum_tax_savings", rule.minimum_tax_savings, 0, exclusive=True)
    check_min(result, "max_annual_harvesting", rule.max_annual_harvesting, 0, exclusive=True)
    check_min(result, "marginal_tax_rate", rule.marginal_tax_rate, 0, exclusive=True)
    check_max(result, "marginal_tax_rate", rule.marginal_tax_rate, 0.5)
    check_min(result, "capital_gains_rate", rule.capital_gains_rate, 0)
    check_max(result, "capital_gains_rate", rule.capital_gains_rate, 0.4)
    check_enum(result, "timing", rule.timing, TIMINGS)
    check_min(result, "wash_sale_protection.wait_period_days", rule.wash_sale.wait_period_days, MIN_WASH_SALE_DAYS)
    return result


def is_harvesting_season(rule: TaxLossHarvestingRule, context: SimulationContext) -> bool:
    month = context.month_of_year
    if rule.timing == "YEAR_END":
        return month >= 10
    if rule.timing == "QUARTERLY":
        return month % 3 == 2
    if rule.timing == "CONTINUOUS":
        return True
    return month == 11


def check_conditions(rule: TaxLossHarvestingRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> bool:
    if not is_harvesting_season(rule, context):
        return False
    if context.balance("taxable") < rule.minimum_account_value:
        return False
    return check_condition_set(rule.conditions, context, goals)


def estimated_loss_rate(context: SimulationContext) -> float:
    month = context.month_of_year
    if month >= 9:
        return 0.15
    if month >= 6:
        return 0.10
    return 0.05


def wash_sale_risk(protection: WashSaleProtection, context: SimulationContext) -> bool:
    if not protection.enabled or protection.last_harvest_month is None:
        return False
    return context.current_month - protection.last_harvest_month < WASH_SALE_MONTHS


def analyze(rule: TaxLossHarvestingRule, context: SimulationContext) -> HarvestAnalysis:
    balance = context.balance("taxable")
    losses = balance * estimated_loss_rate(context)
    cap = losses if rule.max_annual_harvesting is None else rule.max_annual_harvesting
    harvestable = min(losses, cap, balance * MAX_PORTFOLIO_SHARE)
    return HarvestAnalysis(
        taxable_balance=balance,
        unrealized_losses=losses,
        harvestable=harvestable,
        tax_savings=harvestable * rule.marginal_tax_rate,
        wash_sale_risk=wash_sale_risk(rule.wash_sale, context),
    )


def evaluate(rule: TaxLossHarvestingRule, context: SimulationContext, goals: GoalProgressSource | None = None) -> list[EventAction]:
    if not check_conditions(rule, context, goals):
        return []
    analysis = analyze(rule, context)
    if analysis.tax_savings < rule.minimum_tax_savings or analysis.wash_sale_risk:
        return []
    sell = analysis.sell_amount
    if sell <= 0:
        return []
    loss = sell * LOSS_ON_SALE
    actions = [
        build_action(
            ActionType.WITHDRAWAL,
            sell,
            description=f"Tax loss harvesting: sell {format_currency(sell)} of underperforming stock positions",
            source_account="taxable",
            priority=rule.priority,
            metadata={
                "harvesting_action": "SELL_LOSERS",
                "asset_class": "stocks",
                "estimated_loss": loss,
                "estimated_tax_savings": loss * rule.marginal_tax_rate,
            },
        )
    ]
    if rule.wash_sale.use_substitutes:
        actions.append(
            build_action(
                ActionType.CONTRIBUTION,
                sell,
                description=f"Tax loss harvesting: buy {format_currency(sell)} of a substitute fund to keep market exposure",
                target_account="taxable",
                priority=rule.priority,
                metadata={"harvesting_action": "BUY_SUBSTITUTE", "asset_class": "stocks"},
            )
        )
    else:
        wait = rule.wash_sale.wait_period_days
        actions.append(
            build_action(
                ActionType.CONTRIBUTION,
                0.0,
                description=f"Tax loss harvesting: wait {wait} days before repurchasing to avoid a wash sale",
                target_account="taxable",
                priority=rule.priority,
                metadata={"harvesting_action": "WAIT_WASH_SALE", "wait_period": wait, "future_amount": sell},
            )
        )
    return [action for action in actions if action is not None]


def explain(rule: TaxLossHarvestingRule) -> str:
    timing = {
        "YEAR_END": "in November and December",
        "QUARTERLY": "at the end of each quarter",
        "CONTINUOUS": "whenever an opportunity appears",
    }.get(rule.timing, "in December")
    text = (
        f"Harvests tax losses in your taxable account {timing} when the account holds at least "
        f"{format_currency(rule.minimum_account_value)} and the estimated savings reach "
        f"{format_currency(rule.minimum_tax_savings)} at a {format_percentage(rule.marginal_tax_rate)} marginal rate."
    )
    if rule.wash_sale.use_substitutes:
        text += " Sold positions are replaced with a substitute fund."
    else:
        text += f" Repurchases wait {rule.wash_sale.wait_period_days} days to avoid wash sales."
    return text


def create_template(**overrides: Any) -> TaxLossHarvestingRule:
    fields: dict[str, Any] = {
        "id": "tax-loss-harvesting",
        "name": "Tax Loss Harvesting",
        "description": "Harvest losses in the taxable account to offset gains",
        "priority": 20,
        "minimum_account_value": 10000.0,
        "minimum_tax_savings": 100.0,
        "max_annual_harvesting": 3000.0,
        "marginal_tax_rate": 0.24,
        "capital_gains_rate": 0.15,
        "timing": "YEAR_END",
    }
    fields.update(overrides)
    return TaxLossHarvestingRule(**fields)


def validate_authoring_input(data: dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    if not str(data.get("name") or "").strip():
        result.errors.append("name: is required")
    for key in ("minimum_account_value", "minimum_tax_savings"):
        value = data.get(key)
        if not isinstance(value, (int, float)) or value <= 0:
            result.errors.append(f"{key}: must be a positive number")
    if not data.get("timing"):
        result.errors.append("timing: is required")
    return result
