"""Structural validation shared by all rule types."""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Iterable

from .schema import AssetAllocation, ConditionSet, RangeCondition, RuleBase

ACCOUNT_CATEGORIES = {"cash", "taxable", "tax_deferred", "roth", "hsa", "529"}
PAYMENT_TARGETS = ACCOUNT_CATEGORIES | {"debt"}
PERCENTAGE_BASES = {"INCOME", "EXPENSES", "NET_WORTH"}
COMPARISON_PERIODS = {"LAST_MONTH", "LAST_3_MONTHS", "LAST_6_MONTHS", "LAST_YEAR"}
ALLOCATION_TOLERANCE = 0.01


@dataclass(slots=True)
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def extend(self, other: "ValidationResult", prefix: str = "") -> None:
        self.errors.extend(f"{prefix}{msg}" for msg in other.errors)
        self.warnings.extend(f"{prefix}{msg}" for msg in other.warnings)


def check_enum(result: ValidationResult, path: str, value: str | None, allowed: Iterable[str]) -> None:
    allowed_set = set(allowed)
    if value not in allowed_set:
        expected = ", ".join(sorted(allowed_set))
        result.errors.append(f"{path}: '{value}' is not valid; expected one of [{expected}]")


def check_min(result: ValidationResult, path: str, value: float | None, minimum: float, *, exclusive: bool = False) -> None:
    if value is None:
        return
    if not math.isfinite(value):
        result.errors.append(f"{path}: must be a finite number")
    elif exclusive and value <= minimum:
        result.errors.append(f"{path}: must be > {minimum:g}")
    elif not exclusive and value < minimum:
        result.errors.append(f"{path}: must be >= {minimum:g}")


def check_max(result: ValidationResult, path: str, value: float | None, maximum: float) -> None:
    if value is not None and math.isfinite(value) and value > maximum:
        result.errors.append(f"{path}: must be <= {maximum:g}")


def check_fraction(result: ValidationResult, path: str, value: float | None) -> None:
    check_min(result, path, value, 0)
    check_max(result, path, value, 1)


def check_min_max(result: ValidationResult, min_path: str, minimum: float | None, max_path: str, maximum: float | None) -> None:
    if minimum is not None and maximum is not None and minimum > maximum:
        result.errors.append(f"{min_path}/{max_path}: minimum must be <= maximum")


def check_allocation(result: ValidationResult, path: str, allocation: AssetAllocation, tolerance: float = ALLOCATION_TOLERANCE) -> None:
    for name, weight in allocation.as_dict().items():
        check_fraction(result, f"{path}.{name}", weight)
    total = allocation.total()
    if abs(total - 1.0) > tolerance:
        result.errors.append(f"{path}: weights must sum to 1.0 (got {total:.3f})")


def _check_range(result: ValidationResult, path: str, condition: RangeCondition) -> None:
    check_min_max(result, f"{path}.min", condition.min, f"{path}.max", condition.max)


def validate_condition_set(conditions: ConditionSet, path: str = "conditions") -> ValidationResult:
    result = ValidationResult()
    if conditions.cash_balance is not None:
        cash = conditions.cash_balance
        base = f"{path}.cash_balance"
        check_min(result, f"{base}.min", cash.min, 0)
        check_min_max(result, f"{base}.min", cash.min, f"{base}.max", cash.max)
        if cash.percentage_of is not None:
            check_enum(result, f"{base}.percentage_of", cash.percentage_of, PERCENTAGE_BASES)
            if cash.percentage is None:
                result.errors.append(f"{base}.percentage: required when percentage_of is set")
            check_min(result, f"{base}.percentage", cash.percentage, 0)
    if conditions.income is not None:
        income = conditions.income
        base = f"{path}.income"
        check_min(result, f"{base}.min_monthly", income.min_monthly, 0)
        check_min(result, f"{base}.min_annual", income.min_annual, 0)
        check_min_max(result, f"{base}.min_monthly", income.min_monthly, f"{base}.max_monthly", income.max_monthly)
        check_min_max(result, f"{base}.min_annual", income.min_annual, f"{base}.max_annual", income.max_annual)
        if income.change_threshold is not None:
            check_min(result, f"{base}.change_threshold.percentage", income.change_threshold.percentage, 0)
            check_enum(result, f"{base}.change_threshold.comparison_period", income.change_threshold.comparison_period, COMPARISON_PERIODS)
    if conditions.age is not None:
        check_min(result, f"{path}.age.min", conditions.age.min, 0)
        _check_range(result, f"{path}.age", conditions.age)
    if conditions.net_worth is not None:
        _check_range(result, f"{path}.net_worth", conditions.net_worth)
    if conditions.goal_progress is not None:
        goal = conditions.goal_progress
        base = f"{path}.goal_progress"
        if not goal.goal_id:
            result.errors.append(f"{base}.goal_id: must not be empty")
        check_fraction(result, f"{base}.min_progress", goal.min_progress)
        check_fraction(result, f"{base}.max_progress", goal.max_progress)
        check_min_max(result, f"{base}.min_progress", goal.min_progress, f"{base}.max_progress", goal.max_progress)
    return result


def validate_common(rule: RuleBase) -> ValidationResult:
    """Checks shared by every rule variant."""
    result = ValidationResult()
    if not rule.id or not rule.id.strip():
        result.errors.append("id: must not be empty")
    if not rule.name or not rule.name.strip():
        result.errors.append("name: must not be empty")
    check_min(result, "priority", rule.priority, 0)
    check_min(result, "month_offset", rule.month_offset, 0)
    if rule.conditions is not None:
        result.extend(validate_condition_set(rule.conditions))
    return result
