"""Installment schedule algorithm."""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import List, Optional

from dues_engine.errors import ValidationError
from dues_engine.logging_config import get_logger
from dues_engine.metrics import measure_duration, installment_schedule_duration_seconds
from dues_engine.types import CENT, to_money

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScheduledInstallment:
    sequence: int
    amount: Decimal
    scheduled_date: date
    due_now: bool = False


def split_amounts(balance, num_installments: int) -> List[Decimal]:
    """Split ``balance`` into ``num_installments`` amounts that sum to it exactly.

    Every installment but the last is ``floor(balance / n)`` to the cent; the
    last one absorbs the remainder and is never smaller than the others.

    Args:
        balance: Amount to split.
        num_installments (int): Number of installments (>= 1).

    Returns:
        List[Decimal]: Installment amounts in order.
    """
    if isinstance(num_installments, bool) or not isinstance(num_installments, int) or num_installments < 1:
        raise ValidationError("Number of installments must be at least 1")
    balance = to_money(balance)
    if balance <= 0:
        raise ValidationError("No outstanding balance to split")

    per_installment = (balance / num_installments).quantize(CENT, rounding=ROUND_DOWN)
    last = balance - per_installment * (num_installments - 1)
    return [per_installment] * (num_installments - 1) + [last]


def schedule_dates(start: date, deadline: date, num_installments: int) -> List[date]:
    """Spread ``num_installments`` dates from ``start`` to ``deadline``.

    The first date is ``start`` (charged immediately) and the last is
    ``deadline``; the ones in between are evenly spaced, rounded down to whole days.
    """
    if num_installments == 1:
        return [start]
    total_days = (deadline - start).days
    return [
        start + timedelta(days=(i * total_days) // (num_installments - 1))
        for i in range(num_installments - 1)
    ] + [deadline]


@measure_duration(installment_schedule_duration_seconds)
def build_schedule(
    balance, num_installments: int, deadline: date, start: Optional[date] = None
) -> List[ScheduledInstallment]:
    """Build the dated installment schedule for a plan.

    Args:
        balance: Balance covered by the plan.
        num_installments (int): Number of installments selected by the member.
        deadline (date): Date the last installment is due.
        start (Optional[date]): Plan start, defaults to today. Installment 1 is due on it.

    Returns:
        List[ScheduledInstallment]: Installments whose amounts sum to ``balance``.
    """
    start = start or date.today()
    if deadline is None:
        raise ValidationError("An installment plan requires a deadline")
    if deadline < start:
        raise ValidationError("Cannot create installment plan: deadline has already passed")
    if num_installments > 1 and deadline == start:
        raise ValidationError("Deadline must be after today to spread more than one installment")

    amounts = split_amounts(balance, num_installments)
    dates = schedule_dates(start, deadline, num_installments)
    schedule = [
        ScheduledInstallment(sequence=i + 1, amount=amount, scheduled_date=when, due_now=(i == 0))
        for i, (amount, when) in enumerate(zip(amounts, dates))
    ]
    logger.debug(
        f"Scheduled {num_installments} installments of {amounts[0]} through {deadline.isoformat()}"
    )
    return schedule
