"""Integration tests for the SQLAlchemy ledger."""

import unittest
from datetime import date, datetime, timedelta
from decimal import Decimal

from dues_engine.db import models
from dues_engine.types import DuesStatus, Frequency, InstallmentStatus, PaymentMethodType
from tests.conftest import TODAY, BaseTestCase


class TestSqlLedgerReads(BaseTestCase):
    """Test cases for ledger reads."""

    def test_actual_balance_sums_chapter_transactions(self):
        self.db.add_all([
            models.Transaction(chapter_id="c1", date=TODAY, amount=Decimal("500.00")),
            models.Transaction(chapter_id="c1", date=TODAY, amount=Decimal("-120.50")),
            models.Transaction(chapter_id="c2", date=TODAY, amount=Decimal("999.00")),
        ])
        self.db.commit()
        self.assertEqual(self.ledger.get_actual_balance("c1"), Decimal("379.50"))
        self.assertEqual(self.ledger.get_actual_balance("empty"), Decimal("0.00"))

    def test_recurring_items_skip_unknown_frequency(self):
        self.db.add_all([
            models.RecurringTransaction(
                id="r1", chapter_id="c1", name="Rent", amount=Decimal("-800"),
                frequency="monthly", next_due_date=TODAY,
            ),
            models.RecurringTransaction(
                id="r2", chapter_id="c1", name="Odd", amount=Decimal("-5"),
                frequency="fortnightly", next_due_date=TODAY,
            ),
        ])
        self.db.commit()
        items = self.ledger.get_recurring_items("c1")
        self.assertEqual([i.id for i in items], ["r1"])
        self.assertEqual(items[0].frequency, Frequency.MONTHLY)

    def test_member_dues_balance_and_member_fields(self):
        self.add_member()
        self.add_dues("d1", base="150.00", late_fee="25.00", paid="50.00", status="partial")

        dues = self.ledger.get_member_dues("d1")
        self.assertEqual(dues.balance, Decimal("125.00"))
        self.assertEqual(dues.status, DuesStatus.PARTIAL)
        self.assertEqual(dues.member_name, "Alex Doe")
        self.assertIsNone(self.ledger.get_member_dues("missing"))

    def test_eligibility_and_member_flag(self):
        self.add_member(eligible=True)
        self.add_dues("d1")
        self.db.add(models.EligibilityRecord(member_dues_id="d1", is_eligible=True, allowed_plans=[3, 2]))
        self.db.commit()

        row = self.ledger.get_eligibility("d1")
        self.assertTrue(row.is_eligible)
        self.assertEqual(row.allowed_plans, (3, 2))
        self.assertTrue(self.ledger.get_member_eligibility_flag("m1"))
        self.assertFalse(self.ledger.get_member_eligibility_flag("nobody"))

    def test_saved_methods_default_first_and_delete(self):
        self.add_member()
        self.db.add_all([
            models.SavedPaymentMethodRecord(id="pm_1", member_id="m1", type="card", last4="1111"),
            models.SavedPaymentMethodRecord(
                id="pm_2", member_id="m1", type="us_bank_account", last4="6789", is_default=True
            ),
        ])
        self.db.commit()

        methods = self.ledger.list_saved_payment_methods("m1")
        self.assertEqual([m.id for m in methods], ["pm_2", "pm_1"])
        self.assertEqual(methods[0].type, PaymentMethodType.BANK)

        self.ledger.delete_saved_payment_method("pm_2", "m1")
        self.assertEqual([m.id for m in self.ledger.list_saved_payment_methods("m1")], ["pm_1"])

    def test_pending_payment(self):
        self.add_member()
        self.add_dues("d1")
        self.assertIsNone(self.ledger.get_pending_payment("d1"))
        self.db.add(models.PaymentIntentLog(id="pi_1", member_dues_id="d1", amount=Decimal("100"), status="processing"))
        self.db.add(models.PaymentIntentLog(id="pi_0", member_dues_id="d1", amount=Decimal("100"), status="succeeded"))
        self.db.commit()
        self.assertEqual(self.ledger.get_pending_payment("d1").id, "pi_1")

    def test_pending_payment_includes_awaiting_verification(self):
        self.add_member()
        self.add_dues("d1")
        self.db.add(models.PaymentIntentLog(
            id="pi_3ds", member_dues_id="d1", amount=Decimal("100"), status="requires_action",
        ))
        self.db.add(models.PaymentIntentLog(id="pi_x", member_dues_id="d1", amount=Decimal("100"), status="canceled"))
        self.db.commit()
        pending = self.ledger.get_pending_payment("d1")
        self.assertEqual(pending.id, "pi_3ds")
        self.assertEqual(pending.status, "requires_action")


class TestSqlLedgerLateFees(BaseTestCase):
    """Test cases for late fee preview and application."""

    def setUp(self):
        super().setUp()
        self.add_member("m1")
        self.add_member("m2", name="Sam Roe")
        self.add_member("m3", name="Kai Poe")
        self.add_dues("d1", member_id="m1", base="50.00")
        self.add_dues("d2", member_id="m2", base="100.00", paid="50.00", status="partial")
        self.add_dues("d3", member_id="m3", base="100.00")

    def test_preview_excludes_partial(self):
        preview = self.ledger.preview_late_fee("c1", [Decimal("50.00")], True, Decimal("25.00"))
        self.assertEqual([p.dues_id for p in preview], ["d1"])
        self.assertEqual(preview[0].new_balance, Decimal("75.00"))

    def test_apply_sets_fee_and_recomputes_balance(self):
        applied = self.ledger.apply_late_fee("c1", Decimal("25.00"), [Decimal("50.00")], False)
        self.assertEqual(applied, 2)

        self.db.expire_all()
        d2 = self.db.get(models.MemberDuesRecord, "d2")
        self.assertEqual(d2.late_fee, Decimal("25.00"))
        self.assertEqual(d2.balance, Decimal("75.00"))
        d3 = self.db.get(models.MemberDuesRecord, "d3")
        self.assertEqual(d3.late_fee, Decimal("0.00"))

    def test_apply_twice_does_not_double_charge(self):
        self.ledger.apply_late_fee("c1", Decimal("25.00"), [Decimal("50.00")], True)
        self.assertEqual(self.ledger.apply_late_fee("c1", Decimal("25.00"), [Decimal("75.00")], True), 0)


class TestSqlLedgerInstallments(BaseTestCase):
    """Test cases for installment bookkeeping."""

    def setUp(self):
        super().setUp()
        self.add_member()
        self.add_dues("d1", base="200.00", deadline=TODAY + timedelta(days=30))
        plan = models.InstallmentPlanRecord(
            id="plan_1", member_dues_id="d1", num_installments=2, installment_amount=Decimal("100.00"),
            payment_method_id="pm_1", payment_method_type="card",
        )
        self.db.add(plan)
        self.db.add_all([
            models.InstallmentPaymentRecord(
                id="p1", plan_id="plan_1", sequence=1, amount=Decimal("100.00"), scheduled_date=TODAY,
            ),
            models.InstallmentPaymentRecord(
                id="p2", plan_id="plan_1", sequence=2, amount=Decimal("100.00"),
                scheduled_date=TODAY + timedelta(days=30),
            ),
        ])
        self.db.commit()

    def test_due_installments(self):
        due = self.ledger.list_due_installments(TODAY)
        self.assertEqual([d.payment_id for d in due], ["p1"])
        self.assertEqual(due[0].payment_method_id, "pm_1")
        self.assertEqual(len(self.ledger.list_due_installments(TODAY + timedelta(days=30))), 2)

    def test_results_credit_dues_and_complete_plan(self):
        self.assertFalse(self.ledger.record_installment_result("p1", InstallmentStatus.SUCCEEDED, datetime(2026, 3, 1)))
        dues = self.ledger.get_member_dues("d1")
        self.assertEqual(dues.amount_paid, Decimal("100.00"))
        self.assertEqual(dues.status, DuesStatus.PARTIAL)

        self.assertTrue(self.ledger.record_installment_result("p2", InstallmentStatus.SUCCEEDED))
        dues = self.ledger.get_member_dues("d1")
        self.assertEqual(dues.balance, Decimal("0.00"))
        self.assertEqual(dues.status, DuesStatus.PAID)
        self.db.expire_all()
        self.assertEqual(self.db.get(models.InstallmentPlanRecord, "plan_1").status, "completed")

    def test_failed_result_leaves_dues_untouched(self):
        self.ledger.mark_installment_processing("p1")
        self.ledger.record_installment_result("p1", InstallmentStatus.FAILED)
        self.assertEqual(self.ledger.get_member_dues("d1").amount_paid, Decimal("0.00"))
        self.assertEqual(self.ledger.list_due_installments(TODAY), [])

    def test_unknown_payment(self):
        with self.assertRaises(LookupError):
            self.ledger.mark_installment_processing("missing")


if __name__ == "__main__":
    unittest.main()
