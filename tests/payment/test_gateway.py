"""Unit tests for the HTTP payments gateway."""

import unittest
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import requests

from dues_engine.config import Settings
from dues_engine.errors import PaymentGatewayError
from dues_engine.payment.gateway import HttpPaymentGateway, normalize_status
from dues_engine.types import InstallmentStatus, PaymentMethodType


def response(body, status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body
    return resp


class TestHttpPaymentGateway(unittest.IsolatedAsyncioTestCase):
    """Test cases for HttpPaymentGateway."""

    def setUp(self):
        self.session = MagicMock()
        settings = Settings(payments_api_url="https://payments.test/v1/", payments_api_token="tok")
        self.gateway = HttpPaymentGateway(settings, session=self.session)

    async def test_account_status(self):
        self.session.post.return_value = response(
            {"has_account": True, "onboarding_completed": True, "charges_enabled": False}
        )
        status = await self.gateway.get_account_status("c1")

        self.assertTrue(status.exists)
        self.assertFalse(status.ready)
        url = self.session.post.call_args.args[0]
        self.assertEqual(url, "https://payments.test/v1/account-status")
        headers = self.session.post.call_args.kwargs["headers"]
        self.assertEqual(headers["Authorization"], "Bearer tok")

    async def test_create_intent_sends_wire_names_and_idempotency_key(self):
        self.session.post.return_value = response({"client_secret": "pi_1_secret"})
        result = await self.gateway.create_payment_intent(
            "d1", PaymentMethodType.BANK, Decimal("50.00"), True, idempotency_key="d1-bank-50.00-true-0"
        )

        self.assertEqual(result.client_secret, "pi_1_secret")
        payload = self.session.post.call_args.kwargs["json"]
        self.assertEqual(payload["payment_method_type"], "us_bank_account")
        self.assertEqual(payload["amount"], 50.0)
        self.assertTrue(payload["save_payment_method"])
        self.assertNotIn("saved_payment_method_id", payload)
        headers = self.session.post.call_args.kwargs["headers"]
        self.assertEqual(headers["Idempotency-Key"], "d1-bank-50.00-true-0")

    async def test_saved_method_fast_path_payload(self):
        self.session.post.return_value = response({"payment_complete": True})
        result = await self.gateway.create_payment_intent(
            "d1", PaymentMethodType.CARD, Decimal("10.00"), False, saved_method_id="pm_1"
        )
        self.assertTrue(result.payment_complete)
        self.assertEqual(self.session.post.call_args.kwargs["json"]["saved_payment_method_id"], "pm_1")

    async def test_error_body_raises(self):
        self.session.post.return_value = response({"error": "Card declined", "code": "card_declined"}, 400)
        with self.assertRaises(PaymentGatewayError) as ctx:
            await self.gateway.create_payment_intent("d1", PaymentMethodType.CARD, Decimal("10.00"), False)
        self.assertEqual(str(ctx.exception), "Card declined")
        self.assertEqual(ctx.exception.code, "card_declined")

    async def test_network_error_raises(self):
        self.session.post.side_effect = requests.exceptions.ConnectionError("down")
        with self.assertRaises(PaymentGatewayError):
            await self.gateway.get_account_status("c1")

    async def test_confirm_normalizes_status(self):
        self.session.post.return_value = response({"status": "requires_payment_method", "error": "Declined"})
        result = await self.gateway.confirm_payment("secret")
        self.assertEqual(result.status, "failed")
        self.assertEqual(result.error, "Declined")

    async def test_installment_plan_success(self):
        self.session.post.return_value = response(
            {
                "success": True,
                "plan_id": "plan_1",
                "num_installments": 2,
                "installment_amount": 50,
                "schedule": [
                    {"installment_number": 1, "amount": 50, "scheduled_date": "2026-03-01", "status": "paid"},
                    {"installment_number": 2, "amount": 50, "scheduled_date": "2026-03-31T00:00:00Z"},
                ],
            }
        )
        result = await self.gateway.create_installment_plan("d1", 2, "pm_1", skip_first_payment=True)

        self.assertTrue(result.success)
        self.assertEqual(result.plan.id, "plan_1")
        self.assertEqual(result.plan.payments[0].status, InstallmentStatus.SUCCEEDED)
        self.assertEqual(result.plan.payments[1].scheduled_date, date(2026, 3, 31))
        self.assertTrue(self.session.post.call_args.kwargs["json"]["skip_first_payment"])

    async def test_installment_plan_failure_is_returned(self):
        self.session.post.return_value = response({"success": False, "error": "Deadline passed"}, 400)
        result = await self.gateway.create_installment_plan("d1", 2, "pm_1")
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Deadline passed")


class TestNormalizeStatus(unittest.TestCase):
    """Test cases for normalize_status."""

    def test_known_statuses(self):
        self.assertEqual(normalize_status("succeeded"), "succeeded")
        self.assertEqual(normalize_status("processing"), "processing")
        self.assertEqual(normalize_status("requires_action"), "requires_action")

    def test_unknown_status_is_failure(self):
        self.assertEqual(normalize_status(None), "failed")
        self.assertEqual(normalize_status("canceled"), "failed")


if __name__ == "__main__":
    unittest.main()
