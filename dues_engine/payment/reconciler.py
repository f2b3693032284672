"""Payment intent lifecycle for one checkout session.

A ``PaymentIntentReconciler`` is bound to one member-dues record while its
checkout view is open. It turns rapid parameter changes into at most one
gateway intent per distinct request, confirms that intent, and keeps installment
plan bookkeeping in step with the first installment charge.

State machine::

    idle -> creating -> ready -> confirming -> succeeded | processing | requires_action | failed
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from dues_engine.config import Settings, get_settings
from dues_engine.errors import (
    AccountNotReadyError,
    DuesEngineError,
    PaymentGatewayError,
    ReconciliationError,
    ValidationError,
)
from dues_engine.events import EventBus, EventType
from dues_engine.logging_config import get_logger
from dues_engine.metrics import (
    duplicate_intent_requests_total,
    gateway_failures_total,
    intent_creation_duration_seconds,
    intents_created_total,
    measure_duration,
    reconciliation_failures_total,
)
from dues_engine.payment import gateway as gw
from dues_engine.payment.eligibility import EligibilityDecision, EligibilityEvaluator, check_plan_request
from dues_engine.payment.fees import FeeQuote, calculate_fee
from dues_engine.payment.installments import ScheduledInstallment, build_schedule
from dues_engine.scheduler.tasks import TaskHandle, debounce, poll_until
from dues_engine.types import (
    AccountStatus,
    InstallmentPlan,
    MemberDues,
    PaymentMethodType,
    PendingPayment,
    SavedPaymentMethod,
    to_money,
)

logger = get_logger(__name__)

PLAN_FAILED_MESSAGE = "Payment successful, but failed to create installment plan. Please contact support."
MISSING_METHOD_MESSAGE = "Payment successful, but failed to get payment method. Please contact support."


class IntentState(str, Enum):
    IDLE = "idle"
    CREATING = "creating"
    READY = "ready"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    REQUIRES_ACTION = "requires_action"
    FAILED = "failed"


IN_FLIGHT_STATES = (IntentState.CREATING, IntentState.CONFIRMING)


@dataclass(frozen=True)
class IntentKey:
    """Parameters that identify one intent creation request."""

    dues_id: str
    method_type: PaymentMethodType
    amount: Decimal
    save_method: bool

    def __str__(self) -> str:
        return f"{self.dues_id}-{self.method_type.value}-{self.amount}-{str(self.save_method).lower()}"


@dataclass
class PaymentIntentRecord:
    key: IntentKey
    client_secret: str
    state: IntentState
    created_at: datetime


@dataclass(frozen=True)
class PaymentOutcome:
    """What a payment action ended in, as reported to the checkout view."""

    state: IntentState
    client_secret: Optional[str] = None
    payment_method_id: Optional[str] = None
    plan: Optional[InstallmentPlan] = None

    @property
    def success(self) -> bool:
        return self.state in (IntentState.SUCCEEDED, IntentState.PROCESSING)


class PaymentIntentReconciler:
    """Drives payment intents for one open checkout view.

    Args:
        gateway: Async payments backend (see ``gateway.PaymentGateway``).
        ledger: Dues ledger (see ``db.ledger.DuesLedger``).
        dues (MemberDues): Dues record being paid.
        events (Optional[EventBus]): Bus that receives lifecycle events.
        settings (Optional[Settings]): Engine settings, defaults to get_settings().
    """

    def __init__(self, gateway, ledger, dues: MemberDues, events: Optional[EventBus] = None,
                 settings: Optional[Settings] = None):
        self.gateway = gateway
        self.ledger = ledger
        self.dues = dues
        self.events = events if events is not None else EventBus()
        self.settings = settings or get_settings()

        self.state = IntentState.IDLE
        self.record: Optional[PaymentIntentRecord] = None
        self.account_status: Optional[AccountStatus] = None
        self.pending_payment: Optional[PendingPayment] = None
        self.saved_methods: List[SavedPaymentMethod] = []
        self.eligibility: Optional[EligibilityDecision] = None
        self.custom_amount: Optional[Decimal] = None
        self.installment_selection: Optional[int] = None
        self.installment_schedule: List[ScheduledInstallment] = []
        self.last_error: Optional[DuesEngineError] = None

        self._creating_key: Optional[IntentKey] = None
        self._queued_key: Optional[IntentKey] = None
        self._installment_checkout = False
        self._attempt = 0
        self._debounce: Optional[TaskHandle] = None
        self._poll: Optional[TaskHandle] = None
        self._closed = False

    # Session state

    async def open(self, today: Optional[date] = None) -> None:
        """Load what the checkout view needs before the member picks anything."""
        await self.refresh_account_status()
        self.load_saved_methods()
        self.refresh_pending_payment()
        try:
            self.eligibility = EligibilityEvaluator(
                self.ledger, self.settings.default_installment_plans
            ).evaluate(self.dues.id, self.dues.member_id, today)
        except ValidationError as e:
            logger.warning(f"Eligibility unavailable: {e}", extra={"dues_id": self.dues.id})
            self.eligibility = EligibilityDecision(False, reason=str(e))

    async def refresh_account_status(self) -> AccountStatus:
        self.account_status = await self.gateway.get_account_status(self.dues.chapter_id)
        return self.account_status

    def load_saved_methods(self) -> List[SavedPaymentMethod]:
        self.saved_methods = list(self.ledger.list_saved_payment_methods(self.dues.member_id))
        return self.saved_methods

    def delete_saved_method(self, method_id: str) -> List[SavedPaymentMethod]:
        self.ledger.delete_saved_payment_method(method_id, self.dues.member_id)
        logger.info(f"Deleted saved payment method {method_id}", extra={"dues_id": self.dues.id})
        return self.load_saved_methods()

    def refresh_pending_payment(self) -> Optional[PendingPayment]:
        """Re-read the dues record and any pending payment; the ledger is authoritative."""
        self.pending_payment = self.ledger.get_pending_payment(self.dues.id)
        dues = self.ledger.get_member_dues(self.dues.id)
        if dues is not None:
            self.dues = dues
        return self.pending_payment

    @property
    def can_charge(self) -> bool:
        return (
            not self._closed
            and self.account_status is not None
            and self.account_status.ready
            and self.pending_payment is None
            and self.state not in IN_FLIGHT_STATES
            and self.dues.balance > 0
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_request(self) -> Optional[TaskHandle]:
        """Handle of the debounced creation call, if one was scheduled."""
        return self._debounce

    def quote(self, method_type, amount=None) -> FeeQuote:
        if amount is None:
            amount = self.dues.balance
        return calculate_fee(amount, method_type)

    # Validation

    def validate_amount(self, amount=None) -> Decimal:
        """Return the amount to charge, the full balance when ``amount`` is None."""
        balance = self.dues.balance
        if amount is None:
            return balance
        try:
            amount = to_money(amount)
        except ArithmeticError:
            raise ValidationError("Please enter a valid amount")
        minimum = self.settings.min_payment_amount
        if amount < minimum:
            raise ValidationError(f"Minimum payment amount is ${minimum:.2f}")
        if amount > balance:
            raise ValidationError(f"Amount cannot exceed balance of ${balance:.2f}")
        return amount

    async def _ensure_can_charge(self) -> None:
        if self._closed:
            raise ValidationError("Checkout session is closed")
        if self.account_status is None:
            await self.refresh_account_status()
        status = self.account_status
        if not status.exists:
            raise AccountNotReadyError(
                "Online payments are not set up for your chapter. Please contact your treasurer."
            )
        if not status.ready:
            raise AccountNotReadyError(
                "Online payments are being set up. Please check back soon or contact your treasurer."
            )
        if self.dues.balance <= 0:
            raise ValidationError("No outstanding balance to pay")
        if self.pending_payment is not None:
            raise ValidationError("A payment for these dues is still processing")

    async def _claim(self, key: IntentKey, state: IntentState) -> None:
        """Mark ``key`` in flight before any await, then run the pre-charge checks.

        The claim is released and the previous state restored if the checks fail.
        """
        previous = self.state
        self._creating_key = key
        self.state = state
        try:
            await self._ensure_can_charge()
        except BaseException:
            self._creating_key = None
            self._queued_key = None
            self.state = previous
            raise

    # Intent creation

    def build_key(self, method_type, amount=None, save_method: bool = False) -> IntentKey:
        amount = self.validate_amount(amount)
        partial = amount if amount != self.dues.balance else None
        if partial is not None and self.installment_selection is not None:
            raise ValidationError("Partial payments cannot be combined with an installment plan")
        self.custom_amount = partial
        return IntentKey(self.dues.id, PaymentMethodType.parse(method_type), amount, bool(save_method))

    def request_intent(self, method_type, amount=None, save_method: bool = False) -> IntentKey:
        """Schedule intent creation after the debounce window.

        A newer request inside the window replaces the pending one, so a burst
        of parameter changes results in a single creation call.
        """
        if self._closed:
            raise ValidationError("Checkout session is closed")
        key = self.build_key(method_type, amount, save_method)
        self._schedule_creation(key)
        return key

    def _schedule_creation(self, key: IntentKey) -> None:
        # A debounce that already fired is running create_intent, whose guard handles the new key
        if self._debounce is not None:
            self._debounce.cancel_pending()
        self._debounce = debounce(
            self.settings.intent_debounce_seconds,
            lambda: self._debounced_create(key),
            name=f"intent-debounce:{self.dues.id}",
        )

    async def _debounced_create(self, key: IntentKey) -> Optional[PaymentIntentRecord]:
        try:
            return await self.create_intent(key)
        except ValidationError as e:
            self.last_error = e
            logger.warning(f"Intent request rejected: {e}", extra={"dues_id": self.dues.id})
            self.events.emit(EventType.PAYMENT_FAILED, dues_id=self.dues.id, error=str(e))
        except PaymentGatewayError as e:
            # create_intent already reported the failure
            self.last_error = e
        return None

    async def create_intent(self, key: IntentKey) -> Optional[PaymentIntentRecord]:
        """Create a gateway intent for ``key`` unless an equivalent one exists or is being made.

        Returns:
            Optional[PaymentIntentRecord]: The ready intent, or None when the
            request was dropped or deferred.
        """
        if self._closed:
            logger.debug("Ignoring intent request after close", extra={"dues_id": self.dues.id})
            return None
        if self._creating_key is not None:
            if key == self._creating_key:
                duplicate_intent_requests_total.inc()
                logger.info(f"Dropping duplicate intent request {key}", extra={"dues_id": self.dues.id})
            else:
                self._queued_key = key
                logger.info(f"Deferring intent request {key} until creation finishes",
                            extra={"dues_id": self.dues.id})
            return None
        if self.state == IntentState.CONFIRMING:
            duplicate_intent_requests_total.inc()
            logger.info("Dropping intent request while confirming", extra={"dues_id": self.dues.id})
            return None
        if self.record is not None and self.state == IntentState.READY:
            if self.record.key == key:
                duplicate_intent_requests_total.inc()
                logger.debug(f"Reusing ready intent {key}", extra={"dues_id": self.dues.id})
                return self.record
            logger.info(f"Parameters changed, discarding intent {self.record.key}",
                        extra={"dues_id": self.dues.id})
        elif self.record is not None and self.state == IntentState.REQUIRES_ACTION and self.record.key != key:
            logger.info(f"Parameters changed, discarding intent awaiting verification {self.record.key}",
                        extra={"dues_id": self.dues.id})

        await self._claim(key, IntentState.CREATING)
        self.record = None
        try:
            response = await self._create_remote(key)
        except PaymentGatewayError as e:
            self._queued_key = None
            self._fail(e)
            raise
        finally:
            self._creating_key = None

        if self._closed:
            logger.info(f"Discarding intent {key} created after close", extra={"dues_id": self.dues.id})
            return None
        if not response.client_secret:
            error = PaymentGatewayError("Failed to create payment intent")
            self._queued_key = None
            self._fail(error)
            raise error

        self.record = PaymentIntentRecord(key, response.client_secret, IntentState.READY, datetime.now())
        self.state = IntentState.READY
        intents_created_total.inc()
        logger.info(f"Payment intent ready for {key}", extra={"dues_id": self.dues.id})
        self.events.emit(
            EventType.INTENT_READY,
            dues_id=self.dues.id,
            client_secret=response.client_secret,
            quote=calculate_fee(key.amount, key.method_type),
        )

        queued, self._queued_key = self._queued_key, None
        if queued is not None and queued != key:
            return await self.create_intent(queued)
        return self.record

    @measure_duration(intent_creation_duration_seconds)
    async def _create_remote(self, key: IntentKey, saved_method_id: Optional[str] = None):
        return await self.gateway.create_payment_intent(
            key.dues_id,
            key.method_type,
            key.amount,
            key.save_method,
            saved_method_id=saved_method_id,
            idempotency_key=f"{key}-{self._attempt}",
        )

    # Confirmation

    async def confirm(self) -> PaymentOutcome:
        """Confirm the ready intent (again after a completed verification step)."""
        if self._closed:
            raise ValidationError("Checkout session is closed")
        if self.record is None or self.state not in (IntentState.READY, IntentState.REQUIRES_ACTION):
            raise ValidationError("No payment is ready to confirm")
        self.state = IntentState.CONFIRMING
        try:
            result = await self.gateway.confirm_payment(self.record.client_secret)
        except PaymentGatewayError as e:
            self._fail(e)
            raise
        return await self._settle(result.status, result.payment_method_id, result.error)

    async def _settle(self, status: str, payment_method_id: Optional[str],
                      error: Optional[str] = None) -> PaymentOutcome:
        if status == gw.FAILED:
            failure = PaymentGatewayError(error or "Payment failed")
            self._fail(failure)
            raise failure

        if status == gw.REQUIRES_ACTION:
            self.state = IntentState.REQUIRES_ACTION
            secret = self.record.client_secret if self.record else None
            logger.info("Payment requires additional verification", extra={"dues_id": self.dues.id})
            self.events.emit(EventType.ACTION_REQUIRED, dues_id=self.dues.id, client_secret=secret)
            return PaymentOutcome(IntentState.REQUIRES_ACTION, client_secret=secret)

        self.state = IntentState.SUCCEEDED if status == gw.SUCCEEDED else IntentState.PROCESSING
        if self.record is not None:
            self.record.state = self.state
        logger.info(f"Payment {self.state.value}", extra={"dues_id": self.dues.id})
        event = EventType.PAYMENT_SUCCEEDED if self.state == IntentState.SUCCEEDED else EventType.PAYMENT_PROCESSING
        self.events.emit(event, dues_id=self.dues.id, payment_method_id=payment_method_id)

        plan = None
        try:
            if self._installment_checkout:
                plan = await self.complete_checkout(payment_method_id)
        finally:
            self.refresh_pending_payment()
            self.events.emit(EventType.DATA_REFRESH, dues_id=self.dues.id)
        return PaymentOutcome(self.state, payment_method_id=payment_method_id, plan=plan)

    def _fail(self, error: PaymentGatewayError) -> None:
        self.state = IntentState.FAILED
        self.last_error = error
        self._attempt += 1
        gateway_failures_total.inc()
        logger.warning(f"Payment failed: {error}", extra={"dues_id": self.dues.id})
        self.events.emit(EventType.PAYMENT_FAILED, dues_id=self.dues.id, error=str(error))
        self.refresh_pending_payment()

    def retry(self) -> bool:
        """Return to idle so a new intent can be created. No-op while a call is in flight."""
        if self.state in IN_FLIGHT_STATES:
            return False
        self.state = IntentState.IDLE
        self.record = None
        self.last_error = None
        return True

    # Saved methods

    async def pay_with_saved_method(self, method_id: str, amount=None) -> PaymentOutcome:
        """Charge a saved payment method without showing a checkout form."""
        if self.state in IN_FLIGHT_STATES:
            duplicate_intent_requests_total.inc()
            raise ValidationError("A payment is already in progress")
        if self._installment_checkout:
            amount = self.installment_schedule[0].amount
        else:
            amount = self.build_key(PaymentMethodType.CARD, amount).amount
        method_type = next(
            (m.type for m in self.saved_methods if m.id == method_id), PaymentMethodType.CARD
        )
        key = IntentKey(self.dues.id, method_type, amount, False)
        await self._claim(key, IntentState.CONFIRMING)
        if self._debounce is not None:
            self._debounce.cancel_pending()
        self.record = None
        try:
            response = await self._create_remote(key, saved_method_id=method_id)
        except PaymentGatewayError as e:
            self._fail(e)
            raise
        finally:
            self._creating_key = None

        if response.payment_complete:
            return await self._settle(gw.SUCCEEDED, method_id)
        if response.requires_action:
            if not response.client_secret:
                failure = PaymentGatewayError("Verification required but no client secret was returned")
                self._fail(failure)
                raise failure
            self.record = PaymentIntentRecord(key, response.client_secret, IntentState.READY, datetime.now())
            self.state = IntentState.READY
            logger.info("Saved method requires verification", extra={"dues_id": self.dues.id})
            self.events.emit(
                EventType.ACTION_REQUIRED, dues_id=self.dues.id, client_secret=response.client_secret
            )
            return PaymentOutcome(IntentState.READY, client_secret=response.client_secret)
        return await self._settle(gw.PROCESSING, method_id)

    # Installment plans

    def select_installment_plan(self, num_installments: Optional[int],
                                today: Optional[date] = None) -> List[ScheduledInstallment]:
        """Validate a plan selection and compute its schedule for display."""
        if self.eligibility is None:
            self.eligibility = EligibilityEvaluator(
                self.ledger, self.settings.default_installment_plans
            ).evaluate(self.dues.id, self.dues.member_id, today)
        check_plan_request(self.eligibility, num_installments, self.custom_amount)
        self.installment_schedule = build_schedule(
            self.dues.balance, num_installments, self.eligibility.deadline, today
        )
        self.installment_selection = num_installments
        return self.installment_schedule

    def clear_installment_plan(self) -> None:
        self.installment_selection = None
        self.installment_schedule = []
        self._installment_checkout = False

    async def start_installment_plan(self, num_installments: Optional[int], saved_method_id: Optional[str] = None,
                                     method_type=PaymentMethodType.CARD,
                                     today: Optional[date] = None) -> PaymentOutcome:
        """Begin an installment plan by charging its first installment.

        With ``saved_method_id`` the first installment is charged right away
        and the plan is created once the charge goes through. Otherwise a
        checkout intent for the first installment is prepared, with the method
        saved for the later installments; ``confirm()`` then finishes the plan.
        """
        if self._closed:
            raise ValidationError("Checkout session is closed")
        schedule = self.select_installment_plan(num_installments, today)
        self._installment_checkout = True
        first = schedule[0].amount
        logger.info(
            f"Starting {num_installments}-payment plan, first installment {first}",
            extra={"dues_id": self.dues.id},
        )

        if saved_method_id:
            return await self.pay_with_saved_method(saved_method_id)

        key = IntentKey(self.dues.id, PaymentMethodType.parse(method_type), first, True)
        record = await self.create_intent(key)
        if record is None:
            return PaymentOutcome(self.state)
        return PaymentOutcome(IntentState.READY, client_secret=record.client_secret)

    async def complete_checkout(self, payment_method_id: Optional[str]) -> Optional[InstallmentPlan]:
        """Create the installment plan after its first installment was charged.

        The charge is never reversed here. A bookkeeping failure is reported
        through ``ReconciliationError`` so the member can be sent to support.
        """
        num = self.installment_selection
        if not payment_method_id:
            self._reconciliation_failed(MISSING_METHOD_MESSAGE, None, "no payment method returned")
        try:
            response = await self.gateway.create_installment_plan(
                self.dues.id, num, payment_method_id, skip_first_payment=True
            )
        except PaymentGatewayError as e:
            self._reconciliation_failed(PLAN_FAILED_MESSAGE, payment_method_id, str(e))
        if not response.success:
            self._reconciliation_failed(PLAN_FAILED_MESSAGE, payment_method_id, response.error)

        self._installment_checkout = False
        if response.requires_action and response.first_payment_client_secret:
            key = IntentKey(self.dues.id, PaymentMethodType.CARD, self.installment_schedule[0].amount, True)
            self.record = PaymentIntentRecord(
                key, response.first_payment_client_secret, IntentState.READY, datetime.now()
            )
            self.state = IntentState.REQUIRES_ACTION
            self.events.emit(
                EventType.ACTION_REQUIRED,
                dues_id=self.dues.id,
                client_secret=response.first_payment_client_secret,
            )
        logger.info(f"Installment plan created with {num} payments", extra={"dues_id": self.dues.id})
        self.events.emit(EventType.PLAN_CREATED, dues_id=self.dues.id, plan=response.plan)
        return response.plan

    def _reconciliation_failed(self, message: str, payment_method_id: Optional[str], cause) -> None:
        self._installment_checkout = False
        reconciliation_failures_total.inc()
        logger.error(
            f"Charge succeeded but installment plan was not created: {cause}",
            extra={"dues_id": self.dues.id, "payment_method_id": payment_method_id},
        )
        self.events.emit(
            EventType.RECONCILIATION_FAILED,
            dues_id=self.dues.id,
            payment_method_id=payment_method_id,
            error=message,
        )
        raise ReconciliationError(message, payment_method_id)

    # Onboarding

    def start_onboarding_poll(self, chapter_id: Optional[str] = None, interval: Optional[float] = None,
                              max_attempts: Optional[int] = None) -> TaskHandle:
        """Poll the chapter's account status until onboarding completes."""
        if self._closed:
            raise ValidationError("Checkout session is closed")
        chapter_id = chapter_id or self.dues.chapter_id
        if self._poll is not None:
            self._poll.cancel()

        async def check():
            status = await self.gateway.get_account_status(chapter_id)
            self.account_status = status
            return status if status.ready else None

        def completed(status):
            if not self._closed:
                self.events.emit(EventType.ONBOARDING_COMPLETE, chapter_id=chapter_id)

        self._poll = poll_until(
            check,
            interval if interval is not None else self.settings.onboarding_poll_interval_seconds,
            max_attempts if max_attempts is not None else self.settings.onboarding_poll_max_attempts,
            on_complete=completed,
            name=f"onboarding-poll:{chapter_id}",
        )
        return self._poll

    def close(self) -> None:
        """Stop everything this session scheduled. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        for handle in (self._debounce, self._poll):
            if handle is not None:
                handle.cancel()
        self._queued_key = None
        logger.debug("Checkout session closed", extra={"dues_id": self.dues.id})
