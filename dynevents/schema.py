"""Rule, context and action dataclasses and JSON loading."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, ClassVar, Mapping


class SchemaError(ValueError):
    """Raised when raw JSON cannot be parsed into schema objects."""


def _expect_dict(value: Any, path: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise SchemaError(f"{path}: expected object")
    return value


def _expect_list(value: Any, path: str) -> list[Any]:
    if not isinstance(value, list):
        raise SchemaError(f"{path}: expected array")
    return value


def _require(data: dict[str, Any], key: str, path: str) -> Any:
    if key not in data:
        raise SchemaError(f"{path}.{key}: missing required field")
    return data[key]


def _optional(data: dict[str, Any], key: str, default: Any = None) -> Any:
    return data.get(key, default)


def _optional_float(data: dict[str, Any], key: str) -> float | None:
    value = data.get(key)
    return None if value is None else float(value)


def _optional_dict(data: dict[str, Any], key: str, path: str) -> dict[str, Any] | None:
    value = data.get(key)
    if value is None:
        return None
    return _expect_dict(value, f"{path}.{key}")


def _freeze_sequences(obj: Any) -> None:
    """Store list-valued fields of a frozen dataclass as tuples so it stays hashable."""
    for item in fields(obj):
        value = getattr(obj, item.name)
        if isinstance(value, list):
            object.__setattr__(obj, item.name, tuple(value))


def _str_tuple(data: dict[str, Any], key: str, path: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return default
    return tuple(str(item) for item in _expect_list(value, f"{path}.{key}"))


def _enum(enum_cls: type[Enum], value: Any, path: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise SchemaError(f"{path}: must be one of {allowed}") from None


class ActionType(str, Enum):
    CONTRIBUTION = "CONTRIBUTION"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    REBALANCE = "REBALANCE"
    DEBT_PAYMENT = "DEBT_PAYMENT"


class EvaluationFrequency(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUALLY = "ANNUALLY"
    ON_TRIGGER = "ON_TRIGGER"


class FallbackPolicy(str, Enum):
    SKIP = "SKIP"
    REDUCE_AMOUNT = "REDUCE_AMOUNT"
    DEFER_TO_NEXT_PERIOD = "DEFER_TO_NEXT_PERIOD"
    USE_ALTERNATIVE_SOURCE = "USE_ALTERNATIVE_SOURCE"
    NOTIFY_USER = "NOTIFY_USER"


ASSET_CLASSES = ("stocks", "bonds", "international", "real_estate", "commodities", "cash")


@dataclass(frozen=True, slots=True)
class GoalProgress:
    goal_id: str
    target_amount: float
    current_amount: float
    on_track: bool
    progress_percentage: float
    goal_name: str | None = None
    months_remaining: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "GoalProgress":
        target = float(_require(data, "target_amount", path))
        current = float(_require(data, "current_amount", path))
        progress = _optional_float(data, "progress_percentage")
        if progress is None:
            progress = current / target if target > 0 else 1.0
        months = _optional(data, "months_remaining")
        return cls(
            goal_id=str(_require(data, "goal_id", path)),
            target_amount=target,
            current_amount=current,
            on_track=bool(_optional(data, "on_track", True)),
            progress_percentage=progress,
            goal_name=_optional(data, "goal_name"),
            months_remaining=None if months is None else int(months),
        )


@dataclass(frozen=True, slots=True)
class SimulationContext:
    """Read-only snapshot of simulation state for one period."""

    cash_balance: float = 0.0
    monthly_income: float = 0.0
    last_month_income: float = 0.0
    average_income_last_6_months: float = 0.0
    year_to_date_income: float = 0.0
    monthly_expenses: float = 0.0
    current_age: int = 30
    current_month: int = 0
    account_balances: Mapping[str, float] = field(default_factory=dict)
    total_net_worth: float = 0.0
    goal_progress: tuple[GoalProgress, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "account_balances", MappingProxyType(dict(self.account_balances)))
        object.__setattr__(self, "goal_progress", tuple(self.goal_progress))

    def balance(self, account: str) -> float:
        if account == "cash":
            return self.cash_balance
        return float(self.account_balances.get(account, 0.0))

    @property
    def month_of_year(self) -> int:
        return self.current_month % 12

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str = "context") -> "SimulationContext":
        balances_raw = _expect_dict(_optional(data, "account_balances", {}), f"{path}.account_balances")
        goals_raw = _expect_list(_optional(data, "goal_progress", []), f"{path}.goal_progress")
        income = float(_require(data, "monthly_income", path))
        return cls(
            cash_balance=float(_require(data, "cash_balance", path)),
            monthly_income=income,
            last_month_income=float(_optional(data, "last_month_income", income)),
            average_income_last_6_months=float(_optional(data, "average_income_last_6_months", income)),
            year_to_date_income=float(_optional(data, "year_to_date_income", 0.0)),
            monthly_expenses=float(_require(data, "monthly_expenses", path)),
            current_age=int(_require(data, "current_age", path)),
            current_month=int(_require(data, "current_month", path)),
            account_balances={str(k): float(v) for k, v in balances_raw.items()},
            total_net_worth=float(_optional(data, "total_net_worth", 0.0)),
            goal_progress=tuple(
                GoalProgress.from_dict(_expect_dict(item, f"{path}.goal_progress[{idx}]"), f"{path}.goal_progress[{idx}]")
                for idx, item in enumerate(goals_raw)
            ),
        )


@dataclass(frozen=True, slots=True)
class EventAction:
    """A proposed ledger operation produced by a rule."""

    kind: ActionType
    amount: float
    description: str
    source_account: str | None = None
    target_account: str | None = None
    priority: int = 50
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "amount": self.amount,
            "source_account": self.source_account,
            "target_account": self.target_account,
            "description": self.description,
            "priority": self.priority,
            "metadata": dict(self.metadata),
        }


# Condition set


@dataclass(frozen=True, slots=True)
class RangeCondition:
    min: float | None = None
    max: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "RangeCondition":
        return cls(min=_optional_float(data, "min"), max=_optional_float(data, "max"))


@dataclass(frozen=True, slots=True)
class BalanceCondition:
    min: float | None = None
    max: float | None = None
    percentage_of: str | None = None
    percentage: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "BalanceCondition":
        return cls(
            min=_optional_float(data, "min"),
            max=_optional_float(data, "max"),
            percentage_of=_optional(data, "percentage_of"),
            percentage=_optional_float(data, "percentage"),
        )


@dataclass(frozen=True, slots=True)
class IncomeChangeThreshold:
    percentage: float
    comparison_period: str = "LAST_MONTH"

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "IncomeChangeThreshold":
        return cls(
            percentage=float(_require(data, "percentage", path)),
            comparison_period=_optional(data, "comparison_period", "LAST_MONTH"),
        )


@dataclass(frozen=True, slots=True)
class IncomeCondition:
    min_monthly: float | None = None
    max_monthly: float | None = None
    min_annual: float | None = None
    max_annual: float | None = None
    change_threshold: IncomeChangeThreshold | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "IncomeCondition":
        change_raw = _optional_dict(data, "change_threshold", path)
        return cls(
            min_monthly=_optional_float(data, "min_monthly"),
            max_monthly=_optional_float(data, "max_monthly"),
            min_annual=_optional_float(data, "min_annual"),
            max_annual=_optional_float(data, "max_annual"),
            change_threshold=None if change_raw is None else IncomeChangeThreshold.from_dict(change_raw, f"{path}.change_threshold"),
        )


@dataclass(frozen=True, slots=True)
class GoalProgressCondition:
    goal_id: str
    min_progress: float | None = None
    max_progress: float | None = None
    require_on_track: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "GoalProgressCondition":
        return cls(
            goal_id=str(_require(data, "goal_id", path)),
            min_progress=_optional_float(data, "min_progress"),
            max_progress=_optional_float(data, "max_progress"),
            require_on_track=bool(_optional(data, "require_on_track", False)),
        )


@dataclass(frozen=True, slots=True)
class ConditionSet:
    """Conjunction of optional gating clauses."""

    cash_balance: BalanceCondition | None = None
    income: IncomeCondition | None = None
    age: RangeCondition | None = None
    net_worth: RangeCondition | None = None
    goal_progress: GoalProgressCondition | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "ConditionSet":
        def _sub(key: str, parser: Any) -> Any:
            raw = _optional_dict(data, key, path)
            return None if raw is None else parser.from_dict(raw, f"{path}.{key}")

        return cls(
            cash_balance=_sub("cash_balance", BalanceCondition),
            income=_sub("income", IncomeCondition),
            age=_sub("age", RangeCondition),
            net_worth=_sub("net_worth", RangeCondition),
            goal_progress=_sub("goal_progress", GoalProgressCondition),
        )


@dataclass(frozen=True, slots=True)
class AssetAllocation:
    stocks: float = 0.0
    bonds: float = 0.0
    international: float = 0.0
    real_estate: float = 0.0
    commodities: float = 0.0
    cash: float = 0.0

    def total(self) -> float:
        return sum(self.as_dict().values())

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in ASSET_CLASSES}

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "AssetAllocation":
        unknown = sorted(set(data) - set(ASSET_CLASSES))
        if unknown:
            raise SchemaError(f"{path}.{unknown[0]}: unknown asset class")
        return cls(**{name: float(data.get(name, 0.0)) for name in ASSET_CLASSES})


# Rules


@dataclass(frozen=True, slots=True, kw_only=True)
class RuleBase:
    """Fields shared by every rule variant."""

    TYPE: ClassVar[str] = ""

    id: str
    name: str
    description: str = ""
    priority: int = 50
    month_offset: int = 0
    evaluation_frequency: EvaluationFrequency = EvaluationFrequency.MONTHLY
    conditions: ConditionSet | None = None
    fallback: FallbackPolicy | None = None

    def __post_init__(self) -> None:
        _freeze_sequences(self)

    @property
    def type(self) -> str:
        return self.TYPE


def _common_fields(data: dict[str, Any], path: str) -> dict[str, Any]:
    conditions_raw = _optional_dict(data, "conditions", path)
    fallback_raw = _optional(data, "fallback")
    return {
        "id": str(_require(data, "id", path)),
        "name": str(_require(data, "name", path)),
        "description": str(_optional(data, "description", "")),
        "priority": int(_optional(data, "priority", 50)),
        "month_offset": int(_optional(data, "month_offset", 0)),
        "evaluation_frequency": _enum(
            EvaluationFrequency, _optional(data, "evaluation_frequency", "MONTHLY"), f"{path}.evaluation_frequency"
        ),
        "conditions": None if conditions_raw is None else ConditionSet.from_dict(conditions_raw, f"{path}.conditions"),
        "fallback": None if fallback_raw is None else _enum(FallbackPolicy, fallback_raw, f"{path}.fallback"),
    }


@dataclass(frozen=True, slots=True)
class ContributionStrategy:
    type: str = "FIXED_AMOUNT"
    percentage: float | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ConditionalContributionRule(RuleBase):
    TYPE: ClassVar[str] = "CONDITIONAL_CONTRIBUTION"

    target_amount: float
    target_account: str
    cash_threshold: float
    strategy: ContributionStrategy = ContributionStrategy()

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "ConditionalContributionRule":
        strategy_raw = _optional_dict(data, "contribution_strategy", path) or {}
        return cls(
            **_common_fields(data, path),
            target_amount=float(_require(data, "target_amount", path)),
            target_account=str(_require(data, "target_account", path)),
            cash_threshold=float(_require(data, "cash_threshold", path)),
            strategy=ContributionStrategy(
                type=_optional(strategy_raw, "type", "FIXED_AMOUNT"),
                percentage=_optional_float(strategy_raw, "percentage"),
            ),
        )


@dataclass(frozen=True, slots=True)
class TierConditions:
    employer_match: bool = False
    income_limit: float | None = None
    account_exists: bool = False


@dataclass(frozen=True, slots=True)
class WaterfallTier:
    priority: int
    target_account: str
    max_amount: float | None = None
    description: str = ""
    conditions: TierConditions | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "WaterfallTier":
        cond_raw = _optional_dict(data, "conditions", path)
        conditions = None
        if cond_raw is not None:
            conditions = TierConditions(
                employer_match=bool(_optional(cond_raw, "employer_match", False)),
                income_limit=_optional_float(cond_raw, "income_limit"),
                account_exists=bool(_optional(cond_raw, "account_exists", False)),
            )
        return cls(
            priority=int(_require(data, "priority", path)),
            target_account=str(_require(data, "target_account", path)),
            max_amount=_optional_float(data, "max_amount"),
            description=str(_optional(data, "description", "")),
            conditions=conditions,
        )


@dataclass(frozen=True, slots=True)
class RemainderPolicy:
    action: str = "INVEST_TAXABLE"
    target_account: str = "taxable"


@dataclass(frozen=True, slots=True, kw_only=True)
class WaterfallAllocationRule(RuleBase):
    TYPE: ClassVar[str] = "WATERFALL_ALLOCATION"

    total_amount: float
    tiers: tuple[WaterfallTier, ...]
    remainder: RemainderPolicy | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "WaterfallAllocationRule":
        tiers_raw = _expect_list(_require(data, "tiers", path), f"{path}.tiers")
        remainder_raw = _optional_dict(data, "remainder", path)
        remainder = None
        if remainder_raw is not None:
            remainder = RemainderPolicy(
                action=_optional(remainder_raw, "action", "INVEST_TAXABLE"),
                target_account=_optional(remainder_raw, "target_account", "taxable"),
            )
        return cls(
            **_common_fields(data, path),
            total_amount=float(_require(data, "total_amount", path)),
            tiers=tuple(
                WaterfallTier.from_dict(_expect_dict(item, f"{path}.tiers[{idx}]"), f"{path}.tiers[{idx}]")
                for idx, item in enumerate(tiers_raw)
            ),
            remainder=remainder,
        )


@dataclass(frozen=True, slots=True)
class IncomeSource:
    include_types: tuple[str, ...] = ("salary",)
    exclude_types: tuple[str, ...] = ()
    use_gross_income: bool = True

    def __post_init__(self) -> None:
        _freeze_sequences(self)


@dataclass(frozen=True, slots=True)
class ContributionLimits:
    min_monthly: float | None = None
    max_monthly: float | None = None
    max_annual: float | None = None
    contributed_year_to_date: float = 0.0


@dataclass(frozen=True, slots=True, kw_only=True)
class PercentageContributionRule(RuleBase):
    TYPE: ClassVar[str] = "PERCENTAGE_CONTRIBUTION"

    savings_rate: float
    target_account: str
    income_source: IncomeSource = IncomeSource()
    limits: ContributionLimits = ContributionLimits()

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "PercentageContributionRule":
        source_raw = _optional_dict(data, "income_source", path) or {}
        limits_raw = _optional_dict(data, "contribution_limits", path) or {}
        return cls(
            **_common_fields(data, path),
            savings_rate=float(_require(data, "savings_rate", path)),
            target_account=str(_require(data, "target_account", path)),
            income_source=IncomeSource(
                include_types=_str_tuple(source_raw, "include_types", f"{path}.income_source", ("salary",)),
                exclude_types=_str_tuple(source_raw, "exclude_types", f"{path}.income_source"),
                use_gross_income=bool(_optional(source_raw, "use_gross_income", True)),
            ),
            limits=ContributionLimits(
                min_monthly=_optional_float(limits_raw, "min_monthly"),
                max_monthly=_optional_float(limits_raw, "max_monthly"),
                max_annual=_optional_float(limits_raw, "max_annual"),
                contributed_year_to_date=float(_optional(limits_raw, "contributed_year_to_date", 0.0)),
            ),
        )


@dataclass(frozen=True, slots=True)
class Debt:
    id: str
    name: str
    balance: float
    interest_rate: float
    minimum_payment: float
    kind: str = "other"

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "Debt":
        return cls(
            id=str(_require(data, "id", path)),
            name=str(_optional(data, "name", data.get("id", ""))),
            balance=float(_require(data, "balance", path)),
            interest_rate=float(_require(data, "interest_rate", path)),
            minimum_payment=float(_optional(data, "minimum_payment", 0.0)),
            kind=str(_optional(data, "kind", "other")),
        )


@dataclass(frozen=True, slots=True)
class ExtraPayment:
    type: str = "FIXED_AMOUNT"
    amount: float | None = None
    percentage: float | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class SmartDebtPaymentRule(RuleBase):
    TYPE: ClassVar[str] = "SMART_DEBT_PAYMENT"

    strategy: str
    extra_payment: ExtraPayment
    target_debts: tuple[str, ...] = ()
    emergency_fund_target: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "SmartDebtPaymentRule":
        extra_raw = _expect_dict(_require(data, "extra_payment", path), f"{path}.extra_payment")
        return cls(
            **_common_fields(data, path),
            strategy=str(_require(data, "strategy", path)),
            extra_payment=ExtraPayment(
                type=_optional(extra_raw, "type", "FIXED_AMOUNT"),
                amount=_optional_float(extra_raw, "amount"),
                percentage=_optional_float(extra_raw, "percentage"),
            ),
            target_debts=_str_tuple(data, "target_debts", path),
            emergency_fund_target=float(_optional(data, "emergency_fund_target", 0.0)),
        )


@dataclass(frozen=True, slots=True)
class AdjustmentStrategy:
    type: str
    base_contribution: float
    min_contribution: float | None = None
    max_contribution: float | None = None
    aggressiveness: str = "MODERATE"


@dataclass(frozen=True, slots=True)
class GoalLimits:
    min_contribution: float | None = None
    max_contribution: float | None = None
    max_adjustment_percentage: float | None = None


@dataclass(frozen=True, slots=True)
class ProgressThreshold:
    progress_percentage: float
    adjustment_percentage: float


@dataclass(frozen=True, slots=True, kw_only=True)
class GoalDrivenContributionRule(RuleBase):
    TYPE: ClassVar[str] = "GOAL_DRIVEN_CONTRIBUTION"

    target_goal_id: str
    target_account: str
    adjustment_strategy: AdjustmentStrategy
    limits: GoalLimits = GoalLimits()
    progress_thresholds: tuple[ProgressThreshold, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "GoalDrivenContributionRule":
        strat_path = f"{path}.adjustment_strategy"
        strat_raw = _expect_dict(_require(data, "adjustment_strategy", path), strat_path)
        limits_raw = _optional_dict(data, "contribution_limits", path) or {}
        thresholds_raw = _expect_list(_optional(data, "progress_thresholds", []), f"{path}.progress_thresholds")
        thresholds = []
        for idx, item in enumerate(thresholds_raw):
            item_path = f"{path}.progress_thresholds[{idx}]"
            item = _expect_dict(item, item_path)
            thresholds.append(
                ProgressThreshold(
                    progress_percentage=float(_require(item, "progress_percentage", item_path)),
                    adjustment_percentage=float(_require(item, "adjustment_percentage", item_path)),
                )
            )
        return cls(
            **_common_fields(data, path),
            target_goal_id=str(_require(data, "target_goal_id", path)),
            target_account=str(_require(data, "target_account", path)),
            adjustment_strategy=AdjustmentStrategy(
                type=str(_require(strat_raw, "type", strat_path)),
                base_contribution=float(_require(strat_raw, "base_contribution", strat_path)),
                min_contribution=_optional_float(strat_raw, "min_contribution"),
                max_contribution=_optional_float(strat_raw, "max_contribution"),
                aggressiveness=_optional(strat_raw, "aggressiveness", "MODERATE"),
            ),
            limits=GoalLimits(
                min_contribution=_optional_float(limits_raw, "min_contribution"),
                max_contribution=_optional_float(limits_raw, "max_contribution"),
                max_adjustment_percentage=_optional_float(limits_raw, "max_adjustment_percentage"),
            ),
            progress_thresholds=tuple(thresholds),
        )


@dataclass(frozen=True, slots=True)
class TopUpLimits:
    max_monthly_top_up: float | None = None
    max_percentage_of_income: float | None = None


@dataclass(frozen=True, slots=True)
class DrainExcess:
    enabled: bool = False
    target_account: str = "taxable"
    max_drain_percentage: float = 1.0


@dataclass(frozen=True, slots=True, kw_only=True)
class EmergencyFundMaintenanceRule(RuleBase):
    TYPE: ClassVar[str] = "EMERGENCY_FUND_MAINTENANCE"

    target_months: float
    emergency_fund_account: str = "cash"
    funding_sources: tuple[str, ...] = ("income",)
    top_up_limits: TopUpLimits = TopUpLimits()
    rebalancing_threshold: float = 0.0
    drain_excess: DrainExcess | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "EmergencyFundMaintenanceRule":
        limits_raw = _optional_dict(data, "top_up_limits", path) or {}
        drain_raw = _optional_dict(data, "drain_excess", path)
        drain = None
        if drain_raw is not None:
            drain = DrainExcess(
                enabled=bool(_optional(drain_raw, "enabled", False)),
                target_account=_optional(drain_raw, "target_account", "taxable"),
                max_drain_percentage=float(_optional(drain_raw, "max_drain_percentage", 1.0)),
            )
        return cls(
            **_common_fields(data, path),
            target_months=float(_require(data, "target_months", path)),
            emergency_fund_account=str(_optional(data, "emergency_fund_account", "cash")),
            funding_sources=_str_tuple(data, "funding_sources", path, ("income",)),
            top_up_limits=TopUpLimits(
                max_monthly_top_up=_optional_float(limits_raw, "max_monthly_top_up"),
                max_percentage_of_income=_optional_float(limits_raw, "max_percentage_of_income"),
            ),
            rebalancing_threshold=float(_optional(data, "rebalancing_threshold", 0.0)),
            drain_excess=drain,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class AutomaticRebalancingRule(RuleBase):
    TYPE: ClassVar[str] = "AUTOMATIC_REBALANCING"

    target_allocation: AssetAllocation
    drift_threshold: float
    included_accounts: tuple[str, ...]
    time_based: str | None = None
    minimum_trade_amount: float = 0.0
    max_trades_per_rebalance: int | None = None
    preferred_trading_accounts: tuple[str, ...] = ()
    minimum_cash_reserve: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "AutomaticRebalancingRule":
        alloc_raw = _expect_dict(_require(data, "target_allocation", path), f"{path}.target_allocation")
        max_trades = _optional(data, "max_trades_per_rebalance")
        return cls(
            **_common_fields(data, path),
            target_allocation=AssetAllocation.from_dict(alloc_raw, f"{path}.target_allocation"),
            drift_threshold=float(_require(data, "drift_threshold", path)),
            included_accounts=_str_tuple(data, "included_accounts", path),
            time_based=_optional(data, "time_based"),
            minimum_trade_amount=float(_optional(data, "minimum_trade_amount", 0.0)),
            max_trades_per_rebalance=None if max_trades is None else int(max_trades),
            preferred_trading_accounts=_str_tuple(data, "preferred_trading_accounts", path),
            minimum_cash_reserve=_optional_float(data, "minimum_cash_reserve"),
        )


@dataclass(frozen=True, slots=True)
class IncomeThreshold:
    income_increase: float
    savings_rate_adjustment: float


@dataclass(frozen=True, slots=True, kw_only=True)
class IncomeResponsiveSavingsRule(RuleBase):
    TYPE: ClassVar[str] = "INCOME_RESPONSIVE_SAVINGS"

    base_savings_rate: float
    target_account: str
    income_thresholds: tuple[IncomeThreshold, ...] = ()
    min_savings_rate: float = 0.0
    max_savings_rate: float = 1.0
    smoothing_period: int = 3
    use_gross_income: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "IncomeResponsiveSavingsRule":
        thresholds_raw = _expect_list(_optional(data, "income_thresholds", []), f"{path}.income_thresholds")
        thresholds = []
        for idx, item in enumerate(thresholds_raw):
            item_path = f"{path}.income_thresholds[{idx}]"
            item = _expect_dict(item, item_path)
            thresholds.append(
                IncomeThreshold(
                    income_increase=float(_require(item, "income_increase", item_path)),
                    savings_rate_adjustment=float(_require(item, "savings_rate_adjustment", item_path)),
                )
            )
        return cls(
            **_common_fields(data, path),
            base_savings_rate=float(_require(data, "base_savings_rate", path)),
            target_account=str(_require(data, "target_account", path)),
            income_thresholds=tuple(thresholds),
            min_savings_rate=float(_optional(data, "min_savings_rate", 0.0)),
            max_savings_rate=float(_optional(data, "max_savings_rate", 1.0)),
            smoothing_period=int(_optional(data, "smoothing_period", 3)),
            use_gross_income=bool(_optional(data, "use_gross_income", True)),
        )


@dataclass(frozen=True, slots=True)
class LifecycleStage:
    min_age: int
    max_age: int
    target_allocation: AssetAllocation
    stage_name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "LifecycleStage":
        alloc_raw = _expect_dict(_require(data, "target_allocation", path), f"{path}.target_allocation")
        return cls(
            min_age=int(_require(data, "min_age", path)),
            max_age=int(_require(data, "max_age", path)),
            target_allocation=AssetAllocation.from_dict(alloc_raw, f"{path}.target_allocation"),
            stage_name=str(_optional(data, "stage_name", "")),
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class LifecycleAdjustmentRule(RuleBase):
    TYPE: ClassVar[str] = "LIFECYCLE_ADJUSTMENT"

    stages: tuple[LifecycleStage, ...]
    adjustment_frequency: str = "ANNUAL"
    glide_path: str | None = None
    rebalancing_method: str = "NEW_CONTRIBUTIONS"
    drift_threshold: float = 0.05
    account_scope: tuple[str, ...] = ("tax_deferred",)

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "LifecycleAdjustmentRule":
        stages_raw = _expect_list(_require(data, "stages", path), f"{path}.stages")
        return cls(
            **_common_fields(data, path),
            stages=tuple(
                LifecycleStage.from_dict(_expect_dict(item, f"{path}.stages[{idx}]"), f"{path}.stages[{idx}]")
                for idx, item in enumerate(stages_raw)
            ),
            adjustment_frequency=str(_optional(data, "adjustment_frequency", "ANNUAL")),
            glide_path=_optional(data, "glide_path"),
            rebalancing_method=str(_optional(data, "rebalancing_method", "NEW_CONTRIBUTIONS")),
            drift_threshold=float(_optional(data, "drift_threshold", 0.05)),
            account_scope=_str_tuple(data, "account_scope", path, ("tax_deferred",)),
        )


@dataclass(frozen=True, slots=True)
class WashSaleProtection:
    enabled: bool = True
    use_substitutes: bool = True
    wait_period_days: int = 31
    last_harvest_month: int | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class TaxLossHarvestingRule(RuleBase):
    TYPE: ClassVar[str] = "TAX_LOSS_HARVESTING"

    minimum_account_value: float
    minimum_tax_savings: float
    max_annual_harvesting: float | None = None
    marginal_tax_rate: float = 0.25
    capital_gains_rate: float = 0.15
    timing: str = "YEAR_END"
    wash_sale: WashSaleProtection = WashSaleProtection()

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "TaxLossHarvestingRule":
        wash_raw = _optional_dict(data, "wash_sale_protection", path) or {}
        last_harvest = _optional(wash_raw, "last_harvest_month")
        return cls(
            **_common_fields(data, path),
            minimum_account_value=float(_require(data, "minimum_account_value", path)),
            minimum_tax_savings=float(_require(data, "minimum_tax_savings", path)),
            max_annual_harvesting=_optional_float(data, "max_annual_harvesting"),
            marginal_tax_rate=float(_optional(data, "marginal_tax_rate", 0.25)),
            capital_gains_rate=float(_optional(data, "capital_gains_rate", 0.15)),
            timing=str(_optional(data, "timing", "YEAR_END")),
            wash_sale=WashSaleProtection(
                enabled=bool(_optional(wash_raw, "enabled", True)),
                use_substitutes=bool(_optional(wash_raw, "use_substitutes", True)),
                wait_period_days=int(_optional(wash_raw, "wait_period_days", 31)),
                last_harvest_month=None if last_harvest is None else int(last_harvest),
            ),
        )


Rule = (
    ConditionalContributionRule
    | WaterfallAllocationRule
    | PercentageContributionRule
    | SmartDebtPaymentRule
    | GoalDrivenContributionRule
    | EmergencyFundMaintenanceRule
    | AutomaticRebalancingRule
    | IncomeResponsiveSavingsRule
    | LifecycleAdjustmentRule
    | TaxLossHarvestingRule
)

RULE_TYPES = (
    ConditionalContributionRule.TYPE,
    WaterfallAllocationRule.TYPE,
    PercentageContributionRule.TYPE,
    SmartDebtPaymentRule.TYPE,
    GoalDrivenContributionRule.TYPE,
    EmergencyFundMaintenanceRule.TYPE,
    AutomaticRebalancingRule.TYPE,
    IncomeResponsiveSavingsRule.TYPE,
    LifecycleAdjustmentRule.TYPE,
    TaxLossHarvestingRule.TYPE,
)


def rule_from_dict(data: dict[str, Any], path: str = "rule") -> Rule:
    tag = _require(data, "type", path)
    match tag:
        case "CONDITIONAL_CONTRIBUTION":
            return ConditionalContributionRule.from_dict(data, path)
        case "WATERFALL_ALLOCATION":
            return WaterfallAllocationRule.from_dict(data, path)
        case "PERCENTAGE_CONTRIBUTION":
            return PercentageContributionRule.from_dict(data, path)
        case "SMART_DEBT_PAYMENT":
            return SmartDebtPaymentRule.from_dict(data, path)
        case "GOAL_DRIVEN_CONTRIBUTION":
            return GoalDrivenContributionRule.from_dict(data, path)
        case "EMERGENCY_FUND_MAINTENANCE":
            return EmergencyFundMaintenanceRule.from_dict(data, path)
        case "AUTOMATIC_REBALANCING":
            return AutomaticRebalancingRule.from_dict(data, path)
        case "INCOME_RESPONSIVE_SAVINGS":
            return IncomeResponsiveSavingsRule.from_dict(data, path)
        case "LIFECYCLE_ADJUSTMENT":
            return LifecycleAdjustmentRule.from_dict(data, path)
        case "TAX_LOSS_HARVESTING":
            return TaxLossHarvestingRule.from_dict(data, path)
        case _:
            raise SchemaError(f"{path}.type: unknown rule type {tag!r}")


def _read_json(path: str | Path) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def load_rules(path: str | Path) -> list[Rule]:
    raw = _read_json(path)
    if not isinstance(raw, dict):
        raise SchemaError("rules: root must be a JSON object")
    items = _expect_list(_require(raw, "rules", "rules"), "rules")
    return [rule_from_dict(_expect_dict(item, f"rules[{idx}]"), f"rules[{idx}]") for idx, item in enumerate(items)]


def load_context(path: str | Path) -> SimulationContext:
    raw = _read_json(path)
    if not isinstance(raw, dict):
        raise SchemaError("context: root must be a JSON object")
    return SimulationContext.from_dict(raw)
