"""Coordinator that validates, dispatches and caches rule evaluations."""

from __future__ import annotations

from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, wait
import logging
import time
from types import ModuleType
from typing import Any, Callable, Iterable

from . import (
    conditional,
    debt,
    emergency_fund,
    goal,
    income_responsive,
    lifecycle,
    percentage,
    rebalancing,
    tax_loss,
    waterfall,
)
from .allocation import AllocationEstimator
from .cache import CacheStats, ResultCache, cache_key
from .config import RegistryConfig
from .errors import ConfigurationError, DynamicEventError, EvaluationError, UnsupportedTypeError
from .ports import ContextGoalProgressSource, DebtSource, GoalProgressSource, StaticDebtSource
from .schema import (
    AutomaticRebalancingRule,
    ConditionalContributionRule,
    EmergencyFundMaintenanceRule,
    EvaluationFrequency,
    EventAction,
    FallbackPolicy,
    GoalDrivenContributionRule,
    IncomeResponsiveSavingsRule,
    LifecycleAdjustmentRule,
    PercentageContributionRule,
    Rule,
    RuleBase,
    SimulationContext,
    SmartDebtPaymentRule,
    TaxLossHarvestingRule,
    WaterfallAllocationRule,
)
from .validate import ValidationResult

logger = logging.getLogger(__name__)

Actions = tuple[EventAction, ...]


def _rule_id(rule: Any) -> str:
    return str(getattr(rule, "id", None) or f"<{type(rule).__name__}>")


def processor_for(rule: Rule) -> ModuleType:
    """Return the processor module that handles ``rule``."""
    if not isinstance(rule, RuleBase):
        raise UnsupportedTypeError(f"unsupported rule type {type(rule).__name__!r}")
    match rule:
        case ConditionalContributionRule():
            return conditional
        case WaterfallAllocationRule():
            return waterfall
        case PercentageContributionRule():
            return percentage
        case SmartDebtPaymentRule():
            return debt
        case GoalDrivenContributionRule():
            return goal
        case EmergencyFundMaintenanceRule():
            return emergency_fund
        case AutomaticRebalancingRule():
            return rebalancing
        case IncomeResponsiveSavingsRule():
            return income_responsive
        case LifecycleAdjustmentRule():
            return lifecycle
        case TaxLossHarvestingRule():
            return tax_loss
        case _:
            raise UnsupportedTypeError(f"unsupported rule type {type(rule).__name__!r}")


def group_by_type(rules: Iterable[Rule]) -> dict[str, list[Rule]]:
    grouped: dict[str, list[Rule]] = defaultdict(list)
    for rule in rules:
        grouped[rule.type].append(rule)
    return dict(grouped)


class EventRegistry:
    """Evaluates dynamic event rules against one period's simulation context.

    Every public evaluation entry point is total: a rule that fails validation,
    is of an unknown type or faults inside its processor produces its fallback
    result (no actions) and a log line instead of an exception.
    """

    def __init__(
        self,
        config: RegistryConfig | None = None,
        *,
        goals: GoalProgressSource | None = None,
        debts: DebtSource | None = None,
        estimator: AllocationEstimator | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or RegistryConfig()
        self._goals = goals or ContextGoalProgressSource()
        self._debts = debts or StaticDebtSource()
        self._estimator = estimator
        self._cache = ResultCache(self._config.cache_ttl_seconds, clock)
        self._log_limits()

    @property
    def config(self) -> RegistryConfig:
        return self._config

    def update_config(self, **changes: Any) -> RegistryConfig:
        self._config = self._config.with_changes(**changes)
        self._cache.ttl_seconds = self._config.cache_ttl_seconds
        self._log_limits()
        return self._config

    def _log_limits(self) -> None:
        # Advisory only; neither limit aborts an evaluation.
        logger.debug(
            "Advisory limits: %.0fms per rule evaluation, %.0fMB memory",
            self._config.max_evaluation_ms,
            self._config.max_memory_mb,
        )

    # Scheduling

    @staticmethod
    def is_due(rule: Rule, context: SimulationContext) -> bool:
        match rule.evaluation_frequency:
            case EvaluationFrequency.MONTHLY:
                return True
            case EvaluationFrequency.QUARTERLY:
                return context.current_month % 3 == 0
            case EvaluationFrequency.ANNUALLY:
                return context.current_month % 12 == 0
            case EvaluationFrequency.ON_TRIGGER:
                # No trigger mechanism exists yet.
                return False
        return False

    @staticmethod
    def is_applicable(rule: Rule, context: SimulationContext) -> bool:
        return context.current_month >= rule.month_offset

    def due_rules(self, rules: Iterable[Rule], context: SimulationContext) -> list[Rule]:
        return [rule for rule in rules if self.is_applicable(rule, context) and self.is_due(rule, context)]

    group_by_type = staticmethod(group_by_type)

    # Validation and explanation

    def validate(self, rule: Rule) -> ValidationResult:
        try:
            processor = processor_for(rule)
        except UnsupportedTypeError as exc:
            return ValidationResult(errors=[f"type: {exc}"])
        return processor.validate_rule(rule)

    def explain(self, rule: Rule) -> str:
        try:
            processor = processor_for(rule)
        except UnsupportedTypeError:
            return f"Unsupported rule type: {type(rule).__name__}"
        return processor.explain(rule)

    # Evaluation

    def evaluate(self, rule: Rule, context: SimulationContext) -> Actions:
        rule_id = _rule_id(rule)
        try:
            return self._evaluate(rule, context)
        except DynamicEventError as exc:
            logger.warning("Rule %s was not evaluated: %s", rule_id, exc)
            return self._fallback(rule, exc)
        except Exception as exc:
            error = EvaluationError(rule_id, exc)
            logger.exception("Rule %s failed during evaluation", rule_id)
            return self._fallback(rule, error)

    def evaluate_many(
        self,
        rules: Iterable[Rule],
        context: SimulationContext,
        *,
        deadline: float | None = None,
    ) -> dict[str, Actions]:
        """Evaluate ``rules`` concurrently and return results keyed by rule id.

        Rules still running after ``deadline`` seconds (or the configured batch
        deadline) receive their fallback result. When two rules share an id the
        later one's result is kept.
        """
        rules = list(rules)
        if not rules:
            return {}
        timeout = deadline if deadline is not None else self._config.batch_deadline_seconds
        results: dict[str, Actions] = {}
        executor = ThreadPoolExecutor(max_workers=self._config.max_workers, thread_name_prefix="dynevents")
        try:
            futures = [(rule, executor.submit(self.evaluate, rule, context)) for rule in rules]
            done, _ = wait([future for _, future in futures], timeout=timeout)
            for rule, future in futures:
                rule_id = _rule_id(rule)
                if future in done:
                    actions = future.result()
                else:
                    future.cancel()
                    logger.warning("Rule %s did not finish within the %.3fs batch deadline", rule_id, timeout)
                    actions = self._fallback(rule, EvaluationError(rule_id, TimeoutError("batch deadline exceeded")))
                if rule_id in results:
                    logger.warning("Duplicate rule id %s; keeping the later rule's result", rule_id)
                results[rule_id] = actions
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return results

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def _evaluate(self, rule: Rule, context: SimulationContext) -> Actions:
        processor_for(rule)
        validation = self.validate(rule)
        if not validation.is_valid:
            raise ConfigurationError(rule.id, validation)

        key = cache_key(rule, context)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for rule %s at month %d", rule.id, context.current_month)
            return cached

        started = time.perf_counter()
        actions = self._dispatch(rule, context)
        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > self._config.max_evaluation_ms:
            logger.warning(
                "Rule %s took %.0fms to evaluate (limit %.0fms)", rule.id, elapsed_ms, self._config.max_evaluation_ms
            )

        limit = self._config.max_actions_per_evaluation
        if len(actions) > limit:
            logger.warning("Rule %s produced %d actions; keeping the first %d", rule.id, len(actions), limit)
            actions = actions[:limit]
        result = tuple(actions)
        if self._config.debug_mode:
            logger.debug(
                "Rule %s (%s) produced %d action(s) in %.1fms", rule.id, rule.type, len(result), elapsed_ms
            )
        self._cache.put(key, result)
        return result

    def _dispatch(self, rule: Rule, context: SimulationContext) -> list[EventAction]:
        match rule:
            case SmartDebtPaymentRule():
                return debt.evaluate(rule, context, self._goals, self._debts)
            case AutomaticRebalancingRule():
                return rebalancing.evaluate(rule, context, self._goals, self._estimator)
            case LifecycleAdjustmentRule():
                return lifecycle.evaluate(rule, context, self._goals, self._estimator)
            case _:
                return processor_for(rule).evaluate(rule, context, self._goals)

    def _fallback(self, rule: Any, error: BaseException) -> Actions:
        policy = getattr(rule, "fallback", None)
        if not isinstance(policy, FallbackPolicy):
            policy = self._config.default_fallback
        if policy is not FallbackPolicy.SKIP:
            logger.warning(
                "Fallback policy %s is not implemented; skipping rule %s (%s)", policy.value, _rule_id(rule), error
            )
        elif self._config.debug_mode:
            logger.debug("Skipping rule %s: %s", _rule_id(rule), error)
        return ()
