"""Error types raised while validating and evaluating dynamic events."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .validate import ValidationResult


class DynamicEventError(Exception):
    """Base class for engine errors."""


class ConfigurationError(DynamicEventError):
    """Raised when a rule fails structural or type-specific validation."""

    def __init__(self, rule_id: str, result: ValidationResult) -> None:
        self.rule_id = rule_id
        self.result = result
        super().__init__(f"{rule_id}: " + "; ".join(result.errors))


class EvaluationError(DynamicEventError):
    """Raised when a processor fails unexpectedly."""

    def __init__(self, rule_id: str, cause: BaseException) -> None:
        self.rule_id = rule_id
        self.cause = cause
        super().__init__(f"{rule_id}: {type(cause).__name__}: {cause}")


class UnsupportedTypeError(DynamicEventError):
    """Raised when an object is not one of the known rule types."""


class AmountOutOfRangeError(DynamicEventError):
    def __init__(self, amount: float, *, minimum: float, maximum: float) -> None:
        self.amount = amount
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(f"amount {amount!r} outside [{minimum}, {maximum}]")
