"""Database ORM models for the dues ledger.

This module defines the SQLAlchemy models:
Transaction, RecurringTransaction, Member, MemberDuesRecord, EligibilityRecord,
InstallmentPlanRecord, InstallmentPaymentRecord, SavedPaymentMethodRecord and
PaymentIntentLog.
"""

import uuid

from sqlalchemy import (
    Column,
    String,
    Date,
    DateTime,
    Numeric,
    Boolean,
    Integer,
    Text,
    JSON,
    ForeignKey,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

Money = Numeric(12, 2)


def _uuid():
    return str(uuid.uuid4())


class Transaction(Base):
    """ORM model for transactions table, the chapter's actual ledger entries.

    Attributes:
        id (str): Primary key.
        chapter_id (str): Owning chapter.
        date (date): Posting date.
        amount (Decimal): Signed amount, negative for expenses.
        description (str): Free text.
    """

    __tablename__ = "transactions"
    id = Column(String(36), primary_key=True, default=_uuid)
    chapter_id = Column(String(36), nullable=False, index=True)
    date = Column(Date, nullable=False)
    amount = Column(Money, nullable=False)
    description = Column(Text)


class RecurringTransaction(Base):
    """ORM model for recurring_items table.

    Attributes:
        id (str): Primary key.
        chapter_id (str): Owning chapter.
        name (str): Display name.
        amount (Decimal): Signed amount per occurrence.
        frequency (str): One of daily, weekly, biweekly, monthly, quarterly, yearly.
        next_due_date (date): Next occurrence.
        is_active (bool): Inactive items are kept for history but not projected.
    """

    __tablename__ = "recurring_items"
    id = Column(String(36), primary_key=True, default=_uuid)
    chapter_id = Column(String(36), nullable=False, index=True)
    name = Column(String, nullable=False, default="")
    amount = Column(Money, nullable=False)
    frequency = Column(String(16), nullable=False)
    next_due_date = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class Member(Base):
    """ORM model for members table.

    Attributes:
        id (str): Primary key.
        chapter_id (str): Chapter the member belongs to.
        full_name (str): Display name.
        email (str): Contact address.
        installment_eligible (bool): Member-level installment flag.
    """

    __tablename__ = "members"
    id = Column(String(36), primary_key=True, default=_uuid)
    chapter_id = Column(String(36), nullable=False, index=True)
    full_name = Column(String)
    email = Column(String)
    installment_eligible = Column(Boolean, nullable=False, default=False)


class MemberDuesRecord(Base):
    """ORM model for member_dues table.

    ``balance`` is stored for querying but always rewritten from the
    components by ``recompute_balance``.
    """

    __tablename__ = "member_dues"
    id = Column(String(36), primary_key=True, default=_uuid)
    member_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)
    chapter_id = Column(String(36), nullable=False, index=True)
    base_amount = Column(Money, nullable=False)
    late_fee = Column(Money, nullable=False, default=0)
    adjustments = Column(Money, nullable=False, default=0)
    amount_paid = Column(Money, nullable=False, default=0)
    balance = Column(Money, nullable=False, default=0)
    status = Column(String(16), nullable=False, default="pending")
    flexible_plan_deadline = Column(Date)
    notes = Column(Text)

    member = relationship("Member")

    def recompute_balance(self):
        self.balance = (
            (self.base_amount or 0)
            + (self.late_fee or 0)
            + (self.adjustments or 0)
            - (self.amount_paid or 0)
        )
        return self.balance


class EligibilityRecord(Base):
    """ORM model for installment_eligibility table (per-dues override)."""

    __tablename__ = "installment_eligibility"
    id = Column(String(36), primary_key=True, default=_uuid)
    member_dues_id = Column(
        String(36), ForeignKey("member_dues.id"), nullable=False, unique=True, index=True
    )
    is_eligible = Column(Boolean, nullable=False, default=False)
    allowed_plans = Column(JSON, nullable=False, default=list)
    notes = Column(Text)


class InstallmentPlanRecord(Base):
    """ORM model for installment_plans table."""

    __tablename__ = "installment_plans"
    id = Column(String(36), primary_key=True, default=_uuid)
    member_dues_id = Column(String(36), ForeignKey("member_dues.id"), nullable=False, index=True)
    num_installments = Column(Integer, nullable=False)
    installment_amount = Column(Money, nullable=False)
    status = Column(String(16), nullable=False, default="active")
    payment_method_id = Column(String)
    payment_method_type = Column(String(16), nullable=False, default="card")
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    payments = relationship(
        "InstallmentPaymentRecord",
        back_populates="plan",
        order_by="InstallmentPaymentRecord.sequence",
    )


class InstallmentPaymentRecord(Base):
    """ORM model for installment_payments table."""

    __tablename__ = "installment_payments"
    id = Column(String(36), primary_key=True, default=_uuid)
    plan_id = Column(String(36), ForeignKey("installment_plans.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    amount = Column(Money, nullable=False)
    scheduled_date = Column(Date, nullable=False)
    status = Column(String(16), nullable=False, default="scheduled")
    processed_at = Column(DateTime)

    plan = relationship("InstallmentPlanRecord", back_populates="payments")


class SavedPaymentMethodRecord(Base):
    """ORM model for saved_payment_methods table."""

    __tablename__ = "saved_payment_methods"
    id = Column(String, primary_key=True)
    member_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)
    type = Column(String(16), nullable=False)
    brand = Column(String)
    last4 = Column(String(4))
    is_default = Column(Boolean, nullable=False, default=False)


class PaymentIntentLog(Base):
    """ORM model for payment_intents table, written by the payments backend.

    The engine reads it to find a pending payment before allowing a new charge.
    """

    __tablename__ = "payment_intents"
    id = Column(String, primary_key=True)
    member_dues_id = Column(String(36), ForeignKey("member_dues.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    status = Column(String(16), nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
