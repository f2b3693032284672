"""Bulk late-fee preview and application by balance cohort."""

from decimal import Decimal
from typing import Iterable, List, Optional

from dues_engine.config import get_settings
from dues_engine.errors import ValidationError
from dues_engine.events import EventBus, EventType
from dues_engine.logging_config import get_logger
from dues_engine.metrics import measure_duration, late_fee_duration_seconds
from dues_engine.types import DuesStatus, MemberDues, PreviewMember, to_money

logger = get_logger(__name__)

DEFAULT_LATE_FEE = Decimal("25.00")


def is_late_fee_candidate(dues: MemberDues, exclude_partial: bool) -> bool:
    """Whether ``dues`` may receive a bulk late fee at all.

    Paid and waived dues are never charged, and dues that already carry a late
    fee are skipped so the fee is not applied twice.
    """
    if dues.status in (DuesStatus.PAID, DuesStatus.WAIVED):
        return False
    if dues.late_fee != 0:
        return False
    if exclude_partial and dues.status == DuesStatus.PARTIAL:
        return False
    return dues.balance > 0


def available_balances(dues_rows: Iterable[MemberDues], exclude_partial: bool) -> List[Decimal]:
    """Distinct balances of the candidate rows, ascending. These are the selectable cohorts."""
    return sorted({d.balance for d in dues_rows if is_late_fee_candidate(d, exclude_partial)})


def select_cohort(
    dues_rows: Iterable[MemberDues], target_balances: Iterable, exclude_partial: bool
) -> List[MemberDues]:
    """Candidate rows whose balance equals one of ``target_balances`` exactly."""
    targets = {to_money(t) for t in target_balances}
    if not targets:
        return []
    return [
        d for d in dues_rows
        if is_late_fee_candidate(d, exclude_partial) and d.balance in targets
    ]


def validate_fee_amount(amount, max_fee: Optional[Decimal] = None) -> Decimal:
    if amount is None or amount == "":
        raise ValidationError("Please enter a valid late fee amount")
    try:
        amount = to_money(amount)
    except ArithmeticError:
        raise ValidationError("Please enter a valid late fee amount")
    max_fee = max_fee if max_fee is not None else get_settings().max_late_fee
    if amount <= 0:
        raise ValidationError("Please enter a valid late fee amount")
    if amount > max_fee:
        raise ValidationError(f"Late fee cannot exceed ${max_fee:,.0f}")
    return amount


def to_preview(dues: MemberDues, fee_amount: Optional[Decimal]) -> PreviewMember:
    fee = fee_amount if fee_amount is not None else Decimal("0.00")
    return PreviewMember(
        dues_id=dues.id,
        member_id=dues.member_id,
        status=dues.status,
        current_balance=dues.balance,
        new_balance=to_money(dues.balance + fee),
        member_name=dues.member_name,
        email=dues.email,
    )


class LateFeeApplicator:
    """Holds a late-fee selection for one chapter and keeps its preview current.

    The preview is re-read from the ledger whenever the target balances or the
    exclude-partial flag change. ``apply()`` refuses to run until a preview
    with at least one member is known.
    """

    def __init__(self, ledger, chapter_id: str, events: Optional[EventBus] = None,
                 max_fee: Optional[Decimal] = None):
        self.ledger = ledger
        self.chapter_id = chapter_id
        self.events = events
        self.max_fee = max_fee if max_fee is not None else get_settings().max_late_fee
        self.fee_amount: Decimal = DEFAULT_LATE_FEE
        self.targets: List[Decimal] = []
        self.exclude_partial = True
        self._preview: Optional[List[PreviewMember]] = None

    @property
    def preview(self) -> Optional[List[PreviewMember]]:
        """Members the fee would apply to, or None while unknown."""
        return self._preview

    @property
    def total_fees(self) -> Decimal:
        return to_money(self.fee_amount * len(self._preview or []))

    def available_balances(self) -> List[Decimal]:
        return available_balances(self.ledger.list_chapter_dues(self.chapter_id), self.exclude_partial)

    def set_fee_amount(self, amount) -> None:
        self.fee_amount = validate_fee_amount(amount, self.max_fee)
        if self._preview:
            self._preview = [
                PreviewMember(
                    dues_id=p.dues_id,
                    member_id=p.member_id,
                    status=p.status,
                    current_balance=p.current_balance,
                    new_balance=to_money(p.current_balance + self.fee_amount),
                    member_name=p.member_name,
                    email=p.email,
                )
                for p in self._preview
            ]

    def set_targets(self, target_balances: Iterable) -> List[PreviewMember]:
        self.targets = sorted({to_money(t) for t in target_balances})
        return self.refresh_preview()

    def toggle_target(self, balance) -> List[PreviewMember]:
        balance = to_money(balance)
        if balance in self.targets:
            remaining = [t for t in self.targets if t != balance]
        else:
            remaining = self.targets + [balance]
        return self.set_targets(remaining)

    def set_exclude_partial(self, exclude_partial: bool) -> List[PreviewMember]:
        self.exclude_partial = bool(exclude_partial)
        return self.refresh_preview()

    @measure_duration(late_fee_duration_seconds)
    def refresh_preview(self) -> List[PreviewMember]:
        if not self.targets:
            self._preview = []
        else:
            self._preview = list(
                self.ledger.preview_late_fee(
                    self.chapter_id, self.targets, self.exclude_partial, self.fee_amount
                )
            )
        logger.info(
            f"Late fee preview: {len(self._preview)} members for balances {[str(t) for t in self.targets]}",
            extra={"chapter_id": self.chapter_id},
        )
        if self.events is not None:
            self.events.emit(
                EventType.LATE_FEE_PREVIEW_UPDATED, chapter_id=self.chapter_id, preview=self._preview
            )
        return self._preview

    @measure_duration(late_fee_duration_seconds)
    def apply(self) -> int:
        """Apply the fee to the previewed cohort.

        Returns:
            int: Number of member-dues rows updated.
        """
        amount = validate_fee_amount(self.fee_amount, self.max_fee)
        if not self.targets:
            raise ValidationError("Please select at least one balance amount")
        if self._preview is None:
            raise ValidationError("Preview the affected members before applying late fees")
        if not self._preview:
            raise ValidationError("No members match the selected balances")

        applied = self.ledger.apply_late_fee(self.chapter_id, amount, self.targets, self.exclude_partial)
        logger.info(
            f"Applied late fee {amount} to {applied} members",
            extra={"chapter_id": self.chapter_id},
        )
        # Balances changed, so the old preview no longer describes anything.
        self._preview = None
        self.targets = []
        if self.events is not None:
            self.events.emit(EventType.LATE_FEES_APPLIED, chapter_id=self.chapter_id, applied=applied, amount=amount)
            self.events.emit(EventType.DATA_REFRESH, chapter_id=self.chapter_id)
        return applied
