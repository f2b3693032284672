"""Payment gateway boundary: the async protocol the engine calls and its HTTP client."""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional, Protocol

import requests

from dues_engine.config import Settings, get_settings
from dues_engine.errors import PaymentGatewayError
from dues_engine.logging_config import get_logger
from dues_engine.types import (
    AccountStatus,
    ConfirmResult,
    InstallmentPayment,
    InstallmentPlan,
    InstallmentStatus,
    IntentResponse,
    PaymentMethodType,
    PlanResponse,
    PlanStatus,
    to_money,
)

logger = get_logger(__name__)

SUCCEEDED = "succeeded"
PROCESSING = "processing"
REQUIRES_ACTION = "requires_action"
FAILED = "failed"

_STATUS_ALIASES = {
    "requires_payment_method": FAILED,
    "canceled": FAILED,
    "cancelled": FAILED,
    "requiresAction": REQUIRES_ACTION,
}


def normalize_status(status: Optional[str]) -> str:
    """Map a gateway intent status onto succeeded/processing/requires_action/failed."""
    status = _STATUS_ALIASES.get(status, status)
    if status in (SUCCEEDED, PROCESSING, REQUIRES_ACTION):
        return status
    return FAILED


class PaymentGateway(Protocol):
    """Async contract of the external payments backend."""

    async def get_account_status(self, chapter_id: str) -> AccountStatus: ...

    async def create_payment_intent(
        self,
        dues_id: str,
        method_type: PaymentMethodType,
        amount: Decimal,
        save_payment_method: bool,
        saved_method_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> IntentResponse: ...

    async def confirm_payment(self, client_secret: str) -> ConfirmResult: ...

    async def create_installment_plan(
        self,
        dues_id: str,
        num_installments: int,
        payment_method_id: str,
        skip_first_payment: bool = False,
    ) -> PlanResponse: ...


def _installment_status(value: Optional[str]) -> InstallmentStatus:
    if value == "paid":
        return InstallmentStatus.SUCCEEDED
    try:
        return InstallmentStatus(value or "scheduled")
    except ValueError:
        return InstallmentStatus.SCHEDULED


def _parse_plan(body: dict, dues_id: str, payment_method_id: str) -> Optional[InstallmentPlan]:
    plan_id = body.get("plan_id")
    if not plan_id:
        return None
    payments = tuple(
        InstallmentPayment(
            id=str(entry.get("id") or f"{plan_id}-{entry['installment_number']}"),
            plan_id=plan_id,
            sequence=int(entry["installment_number"]),
            amount=to_money(entry["amount"]),
            scheduled_date=date.fromisoformat(entry["scheduled_date"][:10]),
            status=_installment_status(entry.get("status")),
        )
        for entry in body.get("schedule") or []
    )
    return InstallmentPlan(
        id=plan_id,
        dues_id=dues_id,
        num_installments=int(body.get("num_installments") or len(payments)),
        installment_amount=to_money(body.get("installment_amount") or 0),
        status=PlanStatus.ACTIVE,
        payment_method_id=payment_method_id,
        payments=payments,
    )


class HttpPaymentGateway:
    """Client for the payments backend's JSON endpoints.

    Calls are blocking ``requests`` calls run in a worker thread so the event
    loop stays responsive.
    """

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        settings = settings or get_settings()
        self.base_url = settings.payments_api_url.rstrip("/")
        self.token = settings.payments_api_token
        self.timeout = settings.payments_api_timeout
        self.session = session or requests.Session()

    def _post(self, path: str, payload: dict, idempotency_key: Optional[str] = None,
              raise_on_error: bool = True) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        url = f"{self.base_url}/{path}"
        try:
            resp = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Payments backend unreachable at {url}: {e}")
            raise PaymentGatewayError(f"Payments backend unreachable: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if raise_on_error and (resp.status_code >= 400 or body.get("error")):
            message = body.get("error") or f"Payments backend returned HTTP {resp.status_code}"
            logger.warning(f"Gateway call {path} failed: {message}")
            raise PaymentGatewayError(message, code=body.get("code"))
        return body

    async def get_account_status(self, chapter_id: str) -> AccountStatus:
        body = await asyncio.to_thread(self._post, "account-status", {"chapter_id": chapter_id})
        return AccountStatus(
            exists=bool(body.get("has_account")),
            onboarding_complete=bool(body.get("onboarding_completed")),
            charges_enabled=bool(body.get("charges_enabled")),
        )

    async def create_payment_intent(
        self,
        dues_id: str,
        method_type: PaymentMethodType,
        amount: Decimal,
        save_payment_method: bool,
        saved_method_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> IntentResponse:
        payload = {
            "member_dues_id": dues_id,
            "payment_method_type": PaymentMethodType.parse(method_type).wire_value,
            "amount": float(to_money(amount)),
            "save_payment_method": bool(save_payment_method),
        }
        if saved_method_id:
            payload["saved_payment_method_id"] = saved_method_id
        body = await asyncio.to_thread(self._post, "create-payment-intent", payload, idempotency_key)
        return IntentResponse(
            client_secret=body.get("client_secret"),
            payment_complete=bool(body.get("payment_complete")),
            requires_action=bool(body.get("requires_action")),
            payment_method_id=body.get("payment_method_id"),
        )

    async def confirm_payment(self, client_secret: str) -> ConfirmResult:
        body = await asyncio.to_thread(
            self._post, "confirm-payment", {"client_secret": client_secret}, None, False
        )
        return ConfirmResult(
            status=normalize_status(body.get("status")),
            payment_method_id=body.get("payment_method"),
            error=body.get("error"),
        )

    async def create_installment_plan(
        self,
        dues_id: str,
        num_installments: int,
        payment_method_id: str,
        skip_first_payment: bool = False,
    ) -> PlanResponse:
        payload = {
            "member_dues_id": dues_id,
            "num_installments": num_installments,
            "stripe_payment_method_id": payment_method_id,
            "skip_first_payment": skip_first_payment,
        }
        body = await asyncio.to_thread(
            self._post, "create-installment-plan", payload, None, False
        )
        if not body.get("success"):
            return PlanResponse(success=False, error=body.get("error") or "Failed to create plan")
        return PlanResponse(
            success=True,
            plan=_parse_plan(body, dues_id, payment_method_id),
            requires_action=bool(body.get("requires_action")),
            first_payment_client_secret=body.get("first_payment_client_secret"),
        )
