"""Domain value types shared by the engine components.

Currency amounts are ``Decimal`` values quantized to cents; dates are
``datetime.date``. These types are what the engine passes around; the ORM
rows in ``dues_engine.db.models`` are converted to them at the ledger boundary.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import FrozenSet, Optional, Tuple

CENT = Decimal("0.01")
MEMBER_LEVEL = "member-level"


def to_money(value) -> Decimal:
    """Coerce ``value`` to a Decimal rounded half-up to the cent."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class DuesStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    WAIVED = "waived"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InstallmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentMethodType(str, Enum):
    CARD = "card"
    BANK = "bank"

    @property
    def wire_value(self) -> str:
        """Name the payments backend uses for this method class."""
        return "us_bank_account" if self is PaymentMethodType.BANK else "card"

    @classmethod
    def parse(cls, value) -> "PaymentMethodType":
        if isinstance(value, cls):
            return value
        if value in ("us_bank_account", "ach", "bank_account"):
            return cls.BANK
        return cls(value)


class SourceTag(str, Enum):
    ACTUAL = "actual"
    RECURRING = "recurring"


@dataclass(frozen=True)
class RecurringItem:
    id: str
    chapter_id: str
    amount: Decimal
    frequency: Frequency
    next_due_date: date
    is_active: bool = True


@dataclass(frozen=True)
class Occurrence:
    date: date
    amount: Decimal


@dataclass(frozen=True)
class ForecastPoint:
    date: date
    chapter_id: str
    daily_amount: Decimal
    sources: FrozenSet[SourceTag]
    projected_balance: Decimal


@dataclass(frozen=True)
class MemberDues:
    """A member's assessed dues for one billing period.

    ``balance`` is always derived from the components; there is no stored
    balance to drift out of sync.
    """

    id: str
    member_id: str
    chapter_id: str
    base_amount: Decimal
    late_fee: Decimal = Decimal("0.00")
    adjustments: Decimal = Decimal("0.00")
    amount_paid: Decimal = Decimal("0.00")
    status: DuesStatus = DuesStatus.PENDING
    flexible_plan_deadline: Optional[date] = None
    notes: Optional[str] = None
    member_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def balance(self) -> Decimal:
        return to_money(self.base_amount + self.late_fee + self.adjustments - self.amount_paid)


@dataclass(frozen=True)
class InstallmentEligibility:
    dues_id: str
    is_eligible: bool
    allowed_plans: Tuple[int, ...] = ()
    notes: Optional[str] = None


@dataclass(frozen=True)
class InstallmentPayment:
    id: str
    plan_id: str
    sequence: int
    amount: Decimal
    scheduled_date: date
    status: InstallmentStatus = InstallmentStatus.SCHEDULED
    processed_at: Optional[datetime] = None


@dataclass(frozen=True)
class InstallmentPlan:
    id: str
    dues_id: str
    num_installments: int
    installment_amount: Decimal
    status: PlanStatus = PlanStatus.ACTIVE
    payment_method_id: Optional[str] = None
    payments: Tuple[InstallmentPayment, ...] = ()


@dataclass(frozen=True)
class SavedPaymentMethod:
    id: str
    member_id: str
    type: PaymentMethodType
    brand: str = ""
    last4: str = ""
    is_default: bool = False


@dataclass(frozen=True)
class AccountStatus:
    exists: bool
    onboarding_complete: bool
    charges_enabled: bool

    @property
    def ready(self) -> bool:
        return self.exists and self.onboarding_complete and self.charges_enabled


@dataclass(frozen=True)
class IntentResponse:
    """Result of ``create_payment_intent``: a fresh secret, or an immediate outcome."""

    client_secret: Optional[str] = None
    payment_complete: bool = False
    requires_action: bool = False
    payment_method_id: Optional[str] = None


@dataclass(frozen=True)
class ConfirmResult:
    status: str
    payment_method_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class PlanResponse:
    success: bool
    plan: Optional[InstallmentPlan] = None
    error: Optional[str] = None
    requires_action: bool = False
    first_payment_client_secret: Optional[str] = None


@dataclass(frozen=True)
class PendingPayment:
    id: str
    dues_id: str
    amount: Decimal
    status: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class PreviewMember:
    dues_id: str
    member_id: str
    status: DuesStatus
    current_balance: Decimal
    new_balance: Decimal
    member_name: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class DueInstallment:
    """A scheduled installment joined with what is needed to charge it."""

    payment_id: str
    plan_id: str
    dues_id: str
    sequence: int
    amount: Decimal
    scheduled_date: date
    payment_method_id: Optional[str]
    payment_method_type: PaymentMethodType = field(default=PaymentMethodType.CARD)
