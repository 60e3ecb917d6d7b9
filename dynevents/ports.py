"""Collaborator interfaces for goal progress and debt lookups."""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence

from .schema import Debt, GoalProgress, SimulationContext


class GoalProgressSource(Protocol):
    def lookup(self, goal_id: str, context: SimulationContext) -> GoalProgress | None: ...


class DebtSource(Protocol):
    def debts(self, context: SimulationContext) -> Sequence[Debt]: ...


class ContextGoalProgressSource:
    """Resolves goals from the progress records carried on the context."""

    def lookup(self, goal_id: str, context: SimulationContext) -> GoalProgress | None:
        for goal in context.goal_progress:
            if goal.goal_id == goal_id:
                return goal
        return None


# Stand-in liabilities used until the simulation supplies its own debt ledger.
DEFAULT_DEBTS = (
    Debt(id="cc-1", name="Credit Card", balance=5000.0, interest_rate=0.18, minimum_payment=150.0, kind="credit_card"),
    Debt(id="student-1", name="Student Loan", balance=25000.0, interest_rate=0.045, minimum_payment=300.0, kind="student_loan"),
)


class StaticDebtSource:
    def __init__(self, debts: Iterable[Debt] = DEFAULT_DEBTS) -> None:
        self._debts = tuple(debts)

    def debts(self, context: SimulationContext) -> Sequence[Debt]:
        return self._debts
