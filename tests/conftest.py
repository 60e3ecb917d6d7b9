import json
from pathlib import Path

import pytest

from dynevents.schema import SimulationContext


@pytest.fixture
def sample_rules_dict() -> dict:
    return json.loads(Path("sample_rules.json").read_text(encoding="utf-8"))


@pytest.fixture
def sample_context_dict() -> dict:
    return json.loads(Path("sample_context.json").read_text(encoding="utf-8"))


@pytest.fixture
def context() -> SimulationContext:
    return SimulationContext(
        cash_balance=20000.0,
        monthly_income=8000.0,
        last_month_income=8000.0,
        average_income_last_6_months=8000.0,
        monthly_expenses=4000.0,
        current_age=35,
        current_month=0,
    )
