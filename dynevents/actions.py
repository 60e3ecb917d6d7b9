"""Construction of checked event actions."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping

from .calc import validate_amount
from .errors import AmountOutOfRangeError
from .schema import ActionType, EventAction

logger = logging.getLogger(__name__)


def build_action(
    kind: ActionType,
    amount: float,
    *,
    description: str,
    source_account: str | None = None,
    target_account: str | None = None,
    priority: int = 50,
    metadata: Mapping[str, Any] | None = None,
    maximum: float = math.inf,
) -> EventAction | None:
    """Return an action, or ``None`` when ``amount`` fails range validation."""
    try:
        validate_amount(amount, maximum=maximum)
    except AmountOutOfRangeError as exc:
        logger.error("Dropping %s action (%s): %s", kind.value, description, exc)
        return None
    return EventAction(
        kind=kind,
        amount=amount,
        description=description,
        source_account=source_account,
        target_account=target_account,
        priority=priority,
        metadata=metadata or {},
    )
