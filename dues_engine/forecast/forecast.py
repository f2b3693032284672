"""Recurring-item cash-flow forecasting module."""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import IntEnum
from typing import Dict, Iterable, List, Optional

import pandas as pd

from dues_engine.config import get_settings
from dues_engine.errors import ValidationError
from dues_engine.events import EventBus, EventType
from dues_engine.forecast.recurrence import expand_occurrences
from dues_engine.logging_config import get_logger
from dues_engine.metrics import measure_duration, forecast_duration_seconds
from dues_engine.types import ForecastPoint, RecurringItem, SourceTag, to_money

logger = get_logger(__name__)


class ForecastHorizon(IntEnum):
    DAYS_30 = 30
    DAYS_60 = 60
    DAYS_90 = 90


@dataclass(frozen=True)
class ForecastSummary:
    """Headline numbers of a forecast curve.

    Attributes:
        current_balance (Decimal): Balance on day 0.
        ending_balance (Decimal): Balance on the last day.
        change (Decimal): ending_balance - current_balance.
        min_balance (Decimal): Lowest projected balance.
        min_balance_date (Optional[date]): First day the minimum is reached.
        will_go_negative (bool): True when min_balance < 0.
        warning (Optional[str]): Message for the consumer when the curve dips below zero.
    """

    current_balance: Decimal
    ending_balance: Decimal
    change: Decimal
    min_balance: Decimal
    min_balance_date: Optional[date]
    will_go_negative: bool
    warning: Optional[str]


def build_adjustments(
    items: Iterable[RecurringItem], chapter_id: str, start: date, end: date
) -> Dict[date, Decimal]:
    """Sum the occurrences of every active item of ``chapter_id`` per date in ``[start, end]``."""
    adjustments: Dict[date, Decimal] = defaultdict(lambda: Decimal("0.00"))
    for item in items:
        if item.chapter_id != chapter_id:
            continue
        for occurrence in expand_occurrences(item, start, end):
            adjustments[occurrence.date] += occurrence.amount
    return dict(adjustments)


def build_forecast(
    chapter_id: str,
    base_balance,
    horizon_days: int,
    items: Iterable[RecurringItem],
    today: Optional[date] = None,
) -> List[ForecastPoint]:
    """Project ``base_balance`` forward over ``horizon_days`` days.

    Args:
        chapter_id (str): Chapter whose items are projected.
        base_balance: Sum of actual transactions to date.
        horizon_days (int): Number of points to emit.
        items (Iterable[RecurringItem]): Recurring items; other chapters' items are ignored.
        today (Optional[date]): Day 0 (defaults to date.today()).

    Returns:
        List[ForecastPoint]: One point per day, date ordered. Day 0 is tagged
        ``actual``; days with recurring activity are tagged ``recurring``.
    """
    if isinstance(horizon_days, bool) or not isinstance(horizon_days, int) or horizon_days <= 0:
        raise ValidationError(f"Forecast horizon must be a positive number of days, got {horizon_days!r}")

    today = today or date.today()
    end = today + timedelta(days=horizon_days)
    adjustments = build_adjustments(items, chapter_id, today, end)

    running = to_money(base_balance)
    points: List[ForecastPoint] = []
    for day in range(horizon_days):
        current = today + timedelta(days=day)
        sources = set()
        if day == 0:
            sources.add(SourceTag.ACTUAL)
        adjustment = adjustments.get(current)
        if adjustment is not None:
            running = to_money(running + adjustment)
            sources.add(SourceTag.RECURRING)
        points.append(
            ForecastPoint(
                date=current,
                chapter_id=chapter_id,
                daily_amount=adjustment if adjustment is not None else Decimal("0.00"),
                sources=frozenset(sources),
                projected_balance=running,
            )
        )
    return points


def forecast_frame(points: List[ForecastPoint]) -> pd.DataFrame:
    """Convert forecast points into a DataFrame suitable for charting.

    Args:
        points (List[ForecastPoint]): Output of build_forecast.

    Returns:
        pd.DataFrame: Columns ['date', 'chapter_id', 'daily_amount',
        'projected_balance', 'is_actual', 'is_recurring'].
    """
    columns = ["date", "chapter_id", "daily_amount", "projected_balance", "is_actual", "is_recurring"]
    if not points:
        return pd.DataFrame(columns=columns)
    df = pd.DataFrame(
        [
            {
                "date": p.date,
                "chapter_id": p.chapter_id,
                "daily_amount": float(p.daily_amount),
                "projected_balance": float(p.projected_balance),
                "is_actual": SourceTag.ACTUAL in p.sources,
                "is_recurring": SourceTag.RECURRING in p.sources,
            }
            for p in points
        ],
        columns=columns,
    )
    df["date"] = pd.to_datetime(df["date"])
    return df


def summarize_forecast(points: List[ForecastPoint]) -> ForecastSummary:
    """Compute current, ending and minimum balance of a forecast.

    Args:
        points (List[ForecastPoint]): Output of build_forecast.

    Returns:
        ForecastSummary: Summary; all zero for an empty forecast.
    """
    if not points:
        zero = Decimal("0.00")
        return ForecastSummary(zero, zero, zero, zero, None, False, None)

    df = forecast_frame(points)
    min_position = int(df["projected_balance"].to_numpy().argmin())
    lowest = points[min_position]

    current = points[0].projected_balance
    ending = points[-1].projected_balance
    will_go_negative = lowest.projected_balance < 0
    warning = None
    if will_go_negative:
        warning = (
            f"Projected balance falls to ${lowest.projected_balance:,.2f} "
            f"on {lowest.date.isoformat()} within the next {len(points)} days"
        )
    return ForecastSummary(
        current_balance=current,
        ending_balance=ending,
        change=to_money(ending - current),
        min_balance=lowest.projected_balance,
        min_balance_date=lowest.date,
        will_go_negative=will_go_negative,
        warning=warning,
    )


class ForecastAggregator:
    """Reads a chapter's ledger inputs and produces its forecast curve."""

    def __init__(self, ledger, events: Optional[EventBus] = None):
        self.ledger = ledger
        self.events = events

    @measure_duration(forecast_duration_seconds)
    def run(self, chapter_id: str, horizon_days: Optional[int] = None, today: Optional[date] = None):
        """Load the chapter's recurring items and actual balance, then build the forecast.

        Args:
            chapter_id (str): Chapter to forecast.
            horizon_days (Optional[int]): Defaults to FORECAST_HORIZON_DAYS.
            today (Optional[date]): Day 0.

        Returns:
            Tuple[List[ForecastPoint], ForecastSummary]: Points and their summary.
        """
        if not chapter_id:
            logger.warning("Forecast requested without a chapter")
            return [], summarize_forecast([])

        horizon_days = int(horizon_days or get_settings().forecast_horizon_days)
        items = self.ledger.get_recurring_items(chapter_id)
        base_balance = self.ledger.get_actual_balance(chapter_id)

        points = build_forecast(chapter_id, base_balance, horizon_days, items, today)
        summary = summarize_forecast(points)
        logger.info(
            f"Forecast built for {horizon_days} days from {len(items)} recurring items",
            extra={"chapter_id": chapter_id},
        )
        if summary.will_go_negative:
            logger.warning(summary.warning, extra={"chapter_id": chapter_id})
        if self.events is not None:
            self.events.emit(EventType.FORECAST_UPDATED, chapter_id=chapter_id, points=points, summary=summary)
        return points, summary
