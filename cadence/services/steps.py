"""
Sequence step helpers shared by enrollment and the runner:
delay arithmetic, condition evaluation and cursor navigation.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.models.sequence import Step

logger = logging.getLogger(__name__)

DELAY_UNITS = ("minutes", "hours", "days", "weeks", "months")
DEFAULT_DELAY = {"value": 1, "unit": "days"}

CONDITION_OPERATORS = (
    "eq", "neq", "gt", "gte", "lt", "lte",
    "in", "not_in", "contains", "exists", "not_exists",
)


def add_delay(start: datetime, delay_config: Optional[dict]) -> datetime:
    """start + the step's delay. Months are calendar months."""
    config = delay_config or DEFAULT_DELAY
    unit = config.get("unit", "days")
    if unit not in DELAY_UNITS:
        logger.warning("Unknown delay unit '%s', using days", unit)
        unit = "days"
    try:
        value = int(config.get("value", 1))
    except (TypeError, ValueError):
        value = DEFAULT_DELAY["value"]
    return start + relativedelta(**{unit: max(value, 0)})


def _field_value(field: str, lead, enrollment) -> Any:
    if field == "messages_sent":
        return sum(1 for e in (enrollment.execution_logs or []) if e.get("kind") == "sent")
    attr = field.removeprefix("lead.")
    return getattr(lead, attr, None)


def evaluate_condition(condition_config: Optional[dict], lead, enrollment) -> bool:
    """
    Evaluate a condition step against current lead/enrollment state.
    Config: {"field": "status", "operator": "eq", "value": "qualified"}.
    Missing or malformed config evaluates to False.
    """
    config = condition_config or {}
    field = config.get("field")
    operator = config.get("operator", "eq")
    expected = config.get("value")
    if not field or operator not in CONDITION_OPERATORS:
        logger.warning("Invalid condition config: %s", config)
        return False

    actual = _field_value(field, lead, enrollment)

    if operator == "exists":
        return actual not in (None, "", [])
    if operator == "not_exists":
        return actual in (None, "", [])
    if operator == "eq":
        return actual == expected
    if operator == "neq":
        return actual != expected
    if operator == "in":
        return actual in (expected or [])
    if operator == "not_in":
        return actual not in (expected or [])
    if operator == "contains":
        return isinstance(actual, (list, str)) and expected in actual

    # Ordered comparisons; None never satisfies them
    if actual is None or expected is None:
        return False
    try:
        if operator == "gt":
            return actual > expected
        if operator == "gte":
            return actual >= expected
        if operator == "lt":
            return actual < expected
        return actual <= expected
    except TypeError:
        return False


async def first_step(db: AsyncSession, sequence_id: uuid.UUID) -> Optional[Step]:
    result = await db.execute(
        select(Step).where(Step.sequence_id == sequence_id).order_by(Step.order_index).limit(1)
    )
    return result.scalar_one_or_none()


async def next_step_after(db: AsyncSession, step: Step) -> Optional[Step]:
    """The step following `step` by order_index, or None at the end of the sequence."""
    result = await db.execute(
        select(Step)
        .where(Step.sequence_id == step.sequence_id, Step.order_index > step.order_index)
        .order_by(Step.order_index)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def step_at_index(db: AsyncSession, sequence_id: uuid.UUID, order_index: int) -> Optional[Step]:
    result = await db.execute(
        select(Step).where(Step.sequence_id == sequence_id, Step.order_index == order_index)
    )
    return result.scalar_one_or_none()
