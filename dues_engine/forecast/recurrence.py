"""Expansion of recurring items into dated occurrences."""

from datetime import date, timedelta
from typing import List

from dateutil.relativedelta import relativedelta

from dues_engine.types import Frequency, Occurrence, RecurringItem

_DAY_STEPS = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}

_MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def advance(anchor: date, frequency: Frequency, steps: int = 1) -> date:
    """Move ``anchor`` forward by ``steps`` periods of ``frequency``.

    Month-based frequencies clamp the day to the last day of the target month,
    so Jan 31 + 1 month is Feb 28 (or 29), never Mar 2 or 3.

    Args:
        anchor (date): Starting date.
        frequency (Frequency): Step size.
        steps (int): Number of periods to advance.

    Returns:
        date: The advanced date.
    """
    frequency = Frequency(frequency)
    if frequency in _DAY_STEPS:
        return anchor + timedelta(days=_DAY_STEPS[frequency] * steps)
    return anchor + relativedelta(months=_MONTH_STEPS[frequency] * steps)


def expand_occurrences(item: RecurringItem, start: date, end: date) -> List[Occurrence]:
    """Expand ``item`` into its occurrences within ``[start, end]`` (both inclusive).

    The k-th occurrence is computed from ``next_due_date`` directly rather than
    from the previous occurrence, so a clamped month (Feb 28) does not pull
    every later occurrence back to the 28th.

    Args:
        item (RecurringItem): Item to expand.
        start (date): First day of the window.
        end (date): Last day of the window.

    Returns:
        List[Occurrence]: Occurrences in strictly increasing date order. Empty for
        inactive items, inverted windows, or items first due after ``end``.
    """
    if not item.is_active or end < start:
        return []

    seed = item.next_due_date
    frequency = Frequency(item.frequency)
    k = 0
    # Skip whole periods that end before the window for fixed-length steps
    if seed < start and frequency in _DAY_STEPS:
        k = (start - seed).days // _DAY_STEPS[frequency]

    occurrences: List[Occurrence] = []
    cursor = advance(seed, frequency, k)
    while cursor <= end:
        if cursor >= start:
            occurrences.append(Occurrence(date=cursor, amount=item.amount))
        k += 1
        cursor = advance(seed, frequency, k)
    return occurrences
