"""Unit tests for the forecast module."""

import unittest
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from dues_engine.errors import ValidationError
from dues_engine.events import EventBus, EventType
from dues_engine.forecast.forecast import (
    ForecastAggregator,
    ForecastHorizon,
    build_forecast,
    forecast_frame,
    summarize_forecast,
)
from dues_engine.types import Frequency, RecurringItem, SourceTag

TODAY = date(2026, 3, 1)


def item(amount, frequency, next_due, chapter_id="c1", active=True, item_id="r1"):
    return RecurringItem(
        id=item_id,
        chapter_id=chapter_id,
        amount=Decimal(amount),
        frequency=frequency,
        next_due_date=next_due,
        is_active=active,
    )


class TestBuildForecast(unittest.TestCase):
    """Test cases for build_forecast."""

    def test_single_expense_on_day_five(self):
        items = [item("-200.00", Frequency.YEARLY, TODAY + timedelta(days=5))]
        points = build_forecast("c1", Decimal("1000.00"), 10, items, TODAY)

        self.assertEqual(len(points), 10)
        balances = [p.projected_balance for p in points]
        self.assertEqual(balances[:5], [Decimal("1000.00")] * 5)
        self.assertEqual(balances[5:], [Decimal("800.00")] * 5)
        self.assertEqual(points[5].daily_amount, Decimal("-200.00"))
        self.assertEqual(points[5].sources, frozenset({SourceTag.RECURRING}))

    def test_day_zero_is_actual(self):
        points = build_forecast("c1", Decimal("50.00"), 3, [], TODAY)
        self.assertEqual(points[0].sources, frozenset({SourceTag.ACTUAL}))
        self.assertEqual(points[1].sources, frozenset())
        self.assertEqual([p.date for p in points], [TODAY, TODAY + timedelta(days=1), TODAY + timedelta(days=2)])

    def test_occurrence_on_day_zero_is_actual_and_recurring(self):
        points = build_forecast("c1", Decimal("0.00"), 1, [item("25.00", Frequency.DAILY, TODAY)], TODAY)
        self.assertEqual(points[0].sources, frozenset({SourceTag.ACTUAL, SourceTag.RECURRING}))
        self.assertEqual(points[0].projected_balance, Decimal("25.00"))

    def test_running_balance_matches_cumulative_sum(self):
        items = [
            item("100.00", Frequency.WEEKLY, TODAY + timedelta(days=2), item_id="a"),
            item("-30.00", Frequency.DAILY, TODAY, item_id="b"),
        ]
        points = build_forecast("c1", Decimal("500.00"), 30, items, TODAY)
        running = Decimal("500.00")
        for point in points:
            running += point.daily_amount
            self.assertEqual(point.projected_balance, running)

    def test_inactive_and_foreign_items_are_ignored(self):
        items = [
            item("-10.00", Frequency.DAILY, TODAY, active=False, item_id="a"),
            item("-10.00", Frequency.DAILY, TODAY, chapter_id="other", item_id="b"),
        ]
        points = build_forecast("c1", Decimal("10.00"), 5, items, TODAY)
        self.assertTrue(all(p.projected_balance == Decimal("10.00") for p in points))

    def test_invalid_horizon(self):
        for horizon in (0, -5, 1.5, True):
            with self.assertRaises(ValidationError):
                build_forecast("c1", Decimal("0"), horizon, [], TODAY)

    def test_standard_horizons(self):
        self.assertEqual([h.value for h in ForecastHorizon], [30, 60, 90])
        points = build_forecast("c1", Decimal("0"), ForecastHorizon.DAYS_30, [], TODAY)
        self.assertEqual(len(points), 30)


class TestSummary(unittest.TestCase):
    """Test cases for summarize_forecast and forecast_frame."""

    def test_negative_dip_is_reported(self):
        items = [item("-300.00", Frequency.MONTHLY, TODAY + timedelta(days=3))]
        points = build_forecast("c1", Decimal("200.00"), 10, items, TODAY)
        summary = summarize_forecast(points)

        self.assertTrue(summary.will_go_negative)
        self.assertEqual(summary.min_balance, Decimal("-100.00"))
        self.assertEqual(summary.min_balance_date, TODAY + timedelta(days=3))
        self.assertEqual(summary.change, Decimal("-300.00"))
        self.assertIn("$-100.00", summary.warning)

    def test_positive_curve_has_no_warning(self):
        summary = summarize_forecast(build_forecast("c1", Decimal("10.00"), 5, [], TODAY))
        self.assertFalse(summary.will_go_negative)
        self.assertIsNone(summary.warning)
        self.assertEqual(summary.min_balance_date, TODAY)

    def test_empty_forecast(self):
        summary = summarize_forecast([])
        self.assertEqual(summary.current_balance, Decimal("0.00"))
        self.assertIsNone(summary.min_balance_date)
        self.assertTrue(forecast_frame([]).empty)

    def test_frame_columns(self):
        df = forecast_frame(build_forecast("c1", Decimal("10.00"), 4, [], TODAY))
        self.assertEqual(len(df), 4)
        self.assertEqual(
            list(df.columns),
            ["date", "chapter_id", "daily_amount", "projected_balance", "is_actual", "is_recurring"],
        )
        self.assertTrue(df["is_actual"].iloc[0])
        self.assertFalse(df["is_actual"].iloc[1])


class TestForecastAggregator(unittest.TestCase):
    """Test cases for ForecastAggregator."""

    def setUp(self):
        self.ledger = MagicMock()
        self.ledger.get_recurring_items.return_value = [
            item("-200.00", Frequency.YEARLY, TODAY + timedelta(days=5))
        ]
        self.ledger.get_actual_balance.return_value = Decimal("1000.00")

    def test_run_reads_ledger_and_emits(self):
        events = EventBus()
        received = []
        events.subscribe(EventType.FORECAST_UPDATED, received.append)

        points, summary = ForecastAggregator(self.ledger, events).run("c1", 10, TODAY)

        self.ledger.get_recurring_items.assert_called_once_with("c1")
        self.assertEqual(len(points), 10)
        self.assertEqual(summary.ending_balance, Decimal("800.00"))
        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].payload["chapter_id"], "c1")

    def test_missing_chapter_returns_empty(self):
        points, summary = ForecastAggregator(self.ledger).run("", 10, TODAY)
        self.assertEqual(points, [])
        self.ledger.get_recurring_items.assert_not_called()


if __name__ == "__main__":
    unittest.main()
