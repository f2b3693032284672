"""Ledger boundary: the persistence contract the engine reads and writes through.

``DuesLedger`` is the protocol; ``SqlLedger`` implements it on the SQLAlchemy
models. Balances are always recomputed from their components here, never
taken from a caller.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Protocol

from sqlalchemy import func

from dues_engine.db import models
from dues_engine.db.session import get_db_session
from dues_engine.latefees.latefees import select_cohort, to_preview
from dues_engine.logging_config import get_logger
from dues_engine.types import (
    DueInstallment,
    DuesStatus,
    Frequency,
    InstallmentEligibility,
    InstallmentStatus,
    MemberDues,
    PaymentMethodType,
    PendingPayment,
    PlanStatus,
    PreviewMember,
    RecurringItem,
    SavedPaymentMethod,
    to_money,
)

logger = get_logger(__name__)

PENDING_INTENT_STATUSES = ("pending", "processing", "requires_action")


class DuesLedger(Protocol):
    def get_recurring_items(self, chapter_id: str) -> List[RecurringItem]: ...

    def get_actual_balance(self, chapter_id: str) -> Decimal: ...

    def get_member_dues(self, dues_id: str) -> Optional[MemberDues]: ...

    def list_chapter_dues(self, chapter_id: str) -> List[MemberDues]: ...

    def get_eligibility(self, dues_id: str) -> Optional[InstallmentEligibility]: ...

    def get_member_eligibility_flag(self, member_id: str) -> bool: ...

    def list_saved_payment_methods(self, member_id: str) -> List[SavedPaymentMethod]: ...

    def delete_saved_payment_method(self, method_id: str, member_id: str) -> None: ...

    def get_pending_payment(self, dues_id: str) -> Optional[PendingPayment]: ...

    def preview_late_fee(self, chapter_id: str, target_balances: Iterable, exclude_partial: bool,
                         fee_amount: Optional[Decimal] = None) -> List[PreviewMember]: ...

    def apply_late_fee(self, chapter_id: str, amount: Decimal, target_balances: Iterable,
                       exclude_partial: bool) -> int: ...

    def list_due_installments(self, today: date) -> List[DueInstallment]: ...

    def mark_installment_processing(self, payment_id: str) -> None: ...

    def record_installment_result(self, payment_id: str, status: InstallmentStatus,
                                  processed_at: Optional[datetime] = None) -> bool: ...


def refresh_dues_status(record: models.MemberDuesRecord) -> None:
    """Derive paid/partial from the recomputed balance; waived dues stay waived."""
    if record.status == DuesStatus.WAIVED.value:
        return
    if record.balance <= 0:
        record.status = DuesStatus.PAID.value
    elif (record.amount_paid or 0) > 0:
        record.status = DuesStatus.PARTIAL.value


def _to_dues(record: models.MemberDuesRecord) -> MemberDues:
    member = record.member
    return MemberDues(
        id=record.id,
        member_id=record.member_id,
        chapter_id=record.chapter_id,
        base_amount=to_money(record.base_amount),
        late_fee=to_money(record.late_fee or 0),
        adjustments=to_money(record.adjustments or 0),
        amount_paid=to_money(record.amount_paid or 0),
        status=DuesStatus(record.status),
        flexible_plan_deadline=record.flexible_plan_deadline,
        notes=record.notes,
        member_name=member.full_name if member else None,
        email=member.email if member else None,
    )


class SqlLedger:
    """SQLAlchemy implementation of ``DuesLedger``.

    Args:
        session_scope: Context manager factory yielding a Session that commits
            on exit (defaults to get_db_session).
    """

    def __init__(self, session_scope=None):
        self.session_scope = session_scope or get_db_session

    def get_recurring_items(self, chapter_id: str) -> List[RecurringItem]:
        with self.session_scope() as db:
            rows = (
                db.query(models.RecurringTransaction)
                .filter(models.RecurringTransaction.chapter_id == chapter_id)
                .order_by(models.RecurringTransaction.next_due_date)
                .all()
            )
            items = []
            for row in rows:
                try:
                    frequency = Frequency(row.frequency)
                except ValueError:
                    logger.warning(f"Skipping recurring item {row.id} with unknown frequency '{row.frequency}'")
                    continue
                items.append(
                    RecurringItem(
                        id=row.id,
                        chapter_id=row.chapter_id,
                        amount=to_money(row.amount),
                        frequency=frequency,
                        next_due_date=row.next_due_date,
                        is_active=bool(row.is_active),
                    )
                )
            return items

    def get_actual_balance(self, chapter_id: str) -> Decimal:
        with self.session_scope() as db:
            total = (
                db.query(func.coalesce(func.sum(models.Transaction.amount), 0))
                .filter(models.Transaction.chapter_id == chapter_id)
                .scalar()
            )
            return to_money(total or 0)

    def get_member_dues(self, dues_id: str) -> Optional[MemberDues]:
        with self.session_scope() as db:
            record = db.get(models.MemberDuesRecord, dues_id)
            return _to_dues(record) if record else None

    def list_chapter_dues(self, chapter_id: str) -> List[MemberDues]:
        with self.session_scope() as db:
            records = (
                db.query(models.MemberDuesRecord)
                .filter(models.MemberDuesRecord.chapter_id == chapter_id)
                .all()
            )
            return [_to_dues(r) for r in records]

    def get_eligibility(self, dues_id: str) -> Optional[InstallmentEligibility]:
        with self.session_scope() as db:
            row = (
                db.query(models.EligibilityRecord)
                .filter(models.EligibilityRecord.member_dues_id == dues_id)
                .first()
            )
            if not row:
                return None
            return InstallmentEligibility(
                dues_id=row.member_dues_id,
                is_eligible=bool(row.is_eligible),
                allowed_plans=tuple(int(p) for p in (row.allowed_plans or [])),
                notes=row.notes,
            )

    def get_member_eligibility_flag(self, member_id: str) -> bool:
        with self.session_scope() as db:
            member = db.get(models.Member, member_id)
            return bool(member and member.installment_eligible)

    def list_saved_payment_methods(self, member_id: str) -> List[SavedPaymentMethod]:
        with self.session_scope() as db:
            rows = (
                db.query(models.SavedPaymentMethodRecord)
                .filter(models.SavedPaymentMethodRecord.member_id == member_id)
                .order_by(models.SavedPaymentMethodRecord.is_default.desc())
                .all()
            )
            return [
                SavedPaymentMethod(
                    id=row.id,
                    member_id=row.member_id,
                    type=PaymentMethodType.parse(row.type),
                    brand=row.brand or "",
                    last4=row.last4 or "",
                    is_default=bool(row.is_default),
                )
                for row in rows
            ]

    def delete_saved_payment_method(self, method_id: str, member_id: str) -> None:
        with self.session_scope() as db:
            deleted = (
                db.query(models.SavedPaymentMethodRecord)
                .filter(
                    models.SavedPaymentMethodRecord.id == method_id,
                    models.SavedPaymentMethodRecord.member_id == member_id,
                )
                .delete(synchronize_session=False)
            )
            if not deleted:
                logger.warning(f"No saved payment method {method_id} for member {member_id}")

    def get_pending_payment(self, dues_id: str) -> Optional[PendingPayment]:
        with self.session_scope() as db:
            row = (
                db.query(models.PaymentIntentLog)
                .filter(
                    models.PaymentIntentLog.member_dues_id == dues_id,
                    models.PaymentIntentLog.status.in_(PENDING_INTENT_STATUSES),
                )
                .order_by(models.PaymentIntentLog.created_at.desc())
                .first()
            )
            if not row:
                return None
            return PendingPayment(
                id=row.id,
                dues_id=row.member_dues_id,
                amount=to_money(row.amount),
                status=row.status,
                created_at=row.created_at,
            )

    def preview_late_fee(self, chapter_id: str, target_balances: Iterable, exclude_partial: bool,
                         fee_amount: Optional[Decimal] = None) -> List[PreviewMember]:
        cohort = select_cohort(self.list_chapter_dues(chapter_id), target_balances, exclude_partial)
        return [to_preview(d, fee_amount) for d in cohort]

    def apply_late_fee(self, chapter_id: str, amount: Decimal, target_balances: Iterable,
                       exclude_partial: bool) -> int:
        amount = to_money(amount)
        with self.session_scope() as db:
            records = (
                db.query(models.MemberDuesRecord)
                .filter(models.MemberDuesRecord.chapter_id == chapter_id)
                .all()
            )
            by_id = {r.id: r for r in records}
            # Re-select inside the write session so rows changed since the preview are skipped
            cohort = select_cohort([_to_dues(r) for r in records], target_balances, exclude_partial)
            for dues in cohort:
                record = by_id[dues.id]
                record.late_fee = amount
                record.recompute_balance()
            return len(cohort)

    def list_due_installments(self, today: date) -> List[DueInstallment]:
        with self.session_scope() as db:
            rows = (
                db.query(models.InstallmentPaymentRecord, models.InstallmentPlanRecord)
                .join(models.InstallmentPlanRecord,
                      models.InstallmentPaymentRecord.plan_id == models.InstallmentPlanRecord.id)
                .filter(
                    models.InstallmentPlanRecord.status == PlanStatus.ACTIVE.value,
                    models.InstallmentPaymentRecord.status == InstallmentStatus.SCHEDULED.value,
                    models.InstallmentPaymentRecord.scheduled_date <= today,
                )
                .order_by(models.InstallmentPaymentRecord.scheduled_date,
                          models.InstallmentPaymentRecord.sequence)
                .all()
            )
            return [
                DueInstallment(
                    payment_id=payment.id,
                    plan_id=plan.id,
                    dues_id=plan.member_dues_id,
                    sequence=payment.sequence,
                    amount=to_money(payment.amount),
                    scheduled_date=payment.scheduled_date,
                    payment_method_id=plan.payment_method_id,
                    payment_method_type=PaymentMethodType.parse(plan.payment_method_type),
                )
                for payment, plan in rows
            ]

    def mark_installment_processing(self, payment_id: str) -> None:
        with self.session_scope() as db:
            payment = db.get(models.InstallmentPaymentRecord, payment_id)
            if payment is None:
                raise LookupError(f"Installment payment {payment_id} not found")
            payment.status = InstallmentStatus.PROCESSING.value

    def record_installment_result(self, payment_id: str, status: InstallmentStatus,
                                  processed_at: Optional[datetime] = None) -> bool:
        """Store the outcome of an installment charge.

        A succeeded installment is credited to the dues record and the plan is
        completed once every installment has succeeded.

        Returns:
            bool: True when this result completed the plan.
        """
        status = InstallmentStatus(status)
        with self.session_scope() as db:
            payment = db.get(models.InstallmentPaymentRecord, payment_id)
            if payment is None:
                raise LookupError(f"Installment payment {payment_id} not found")
            payment.status = status.value
            if status is not InstallmentStatus.SUCCEEDED:
                return False

            payment.processed_at = processed_at or datetime.now()
            plan = payment.plan
            dues = db.get(models.MemberDuesRecord, plan.member_dues_id)
            dues.amount_paid = (dues.amount_paid or 0) + payment.amount
            dues.recompute_balance()
            refresh_dues_status(dues)

            db.flush()
            if all(p.status == InstallmentStatus.SUCCEEDED.value for p in plan.payments):
                plan.status = PlanStatus.COMPLETED.value
                logger.info(f"Installment plan {plan.id} completed", extra={"dues_id": plan.member_dues_id})
                return True
            return False
