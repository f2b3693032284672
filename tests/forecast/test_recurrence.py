"""Unit tests for recurring item expansion."""

import unittest
from datetime import date
from decimal import Decimal

from dues_engine.forecast.recurrence import advance, expand_occurrences
from dues_engine.types import Frequency, RecurringItem


def make_item(frequency, next_due, amount="-50.00", active=True):
    return RecurringItem(
        id="r1",
        chapter_id="c1",
        amount=Decimal(amount),
        frequency=frequency,
        next_due_date=next_due,
        is_active=active,
    )


class TestAdvance(unittest.TestCase):
    """Test cases for advance."""

    def test_day_based_steps(self):
        anchor = date(2026, 1, 1)
        self.assertEqual(advance(anchor, Frequency.DAILY), date(2026, 1, 2))
        self.assertEqual(advance(anchor, Frequency.WEEKLY), date(2026, 1, 8))
        self.assertEqual(advance(anchor, Frequency.BIWEEKLY, 2), date(2026, 1, 29))

    def test_month_end_is_clamped(self):
        self.assertEqual(advance(date(2026, 1, 31), Frequency.MONTHLY), date(2026, 2, 28))
        self.assertEqual(advance(date(2028, 1, 31), Frequency.MONTHLY), date(2028, 2, 29))
        self.assertEqual(advance(date(2026, 11, 30), Frequency.QUARTERLY), date(2027, 2, 28))
        self.assertEqual(advance(date(2028, 2, 29), Frequency.YEARLY), date(2029, 2, 28))


class TestExpandOccurrences(unittest.TestCase):
    """Test cases for expand_occurrences."""

    def test_weekly_inside_window(self):
        item = make_item(Frequency.WEEKLY, date(2026, 3, 3))
        occurrences = expand_occurrences(item, date(2026, 3, 1), date(2026, 3, 31))
        self.assertEqual(
            [o.date for o in occurrences],
            [date(2026, 3, 3), date(2026, 3, 10), date(2026, 3, 17), date(2026, 3, 24), date(2026, 3, 31)],
        )
        self.assertTrue(all(o.amount == Decimal("-50.00") for o in occurrences))

    def test_seed_before_window_is_advanced(self):
        item = make_item(Frequency.BIWEEKLY, date(2026, 1, 1))
        occurrences = expand_occurrences(item, date(2026, 2, 1), date(2026, 2, 28))
        self.assertEqual([o.date for o in occurrences], [date(2026, 2, 12), date(2026, 2, 26)])

    def test_monthly_keeps_day_after_short_month(self):
        item = make_item(Frequency.MONTHLY, date(2026, 1, 31))
        occurrences = expand_occurrences(item, date(2026, 1, 1), date(2026, 4, 30))
        self.assertEqual(
            [o.date for o in occurrences],
            [date(2026, 1, 31), date(2026, 2, 28), date(2026, 3, 31), date(2026, 4, 30)],
        )

    def test_window_bounds_are_inclusive(self):
        item = make_item(Frequency.DAILY, date(2026, 5, 1))
        occurrences = expand_occurrences(item, date(2026, 5, 1), date(2026, 5, 3))
        self.assertEqual(len(occurrences), 3)

    def test_dates_strictly_increase(self):
        item = make_item(Frequency.DAILY, date(2026, 1, 1))
        dates = [o.date for o in expand_occurrences(item, date(2026, 1, 1), date(2026, 12, 31))]
        self.assertEqual(len(dates), 365)
        self.assertTrue(all(a < b for a, b in zip(dates, dates[1:])))

    def test_inactive_item_yields_nothing(self):
        item = make_item(Frequency.DAILY, date(2026, 1, 1), active=False)
        self.assertEqual(expand_occurrences(item, date(2026, 1, 1), date(2026, 1, 31)), [])

    def test_first_due_after_window(self):
        item = make_item(Frequency.MONTHLY, date(2026, 6, 1))
        self.assertEqual(expand_occurrences(item, date(2026, 1, 1), date(2026, 5, 31)), [])

    def test_inverted_window(self):
        item = make_item(Frequency.DAILY, date(2026, 1, 1))
        self.assertEqual(expand_occurrences(item, date(2026, 2, 1), date(2026, 1, 1)), [])


if __name__ == "__main__":
    unittest.main()
