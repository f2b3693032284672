"""Installment-plan eligibility rules."""

from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence, Tuple

from dues_engine.config import get_settings
from dues_engine.errors import ValidationError
from dues_engine.logging_config import get_logger
from dues_engine.types import MEMBER_LEVEL, InstallmentEligibility, MemberDues

logger = get_logger(__name__)


@dataclass(frozen=True)
class EligibilityDecision:
    eligible: bool
    allowed_plans: Tuple[int, ...] = ()
    deadline: Optional[date] = None
    source: Optional[str] = None
    reason: Optional[str] = None


def evaluate_eligibility(
    dues: MemberDues,
    dues_eligibility: Optional[InstallmentEligibility],
    member_flag: bool,
    today: Optional[date] = None,
    default_plans: Optional[Sequence[int]] = None,
) -> EligibilityDecision:
    """Decide whether ``dues`` may be paid through an installment plan.

    A configured deadline is required before anything else is considered. A
    per-dues eligibility row, when present, decides on its own; otherwise the
    member-level flag grants the default plan sizes.

    Args:
        dues (MemberDues): Dues record being paid.
        dues_eligibility (Optional[InstallmentEligibility]): Per-dues override.
        member_flag (bool): Member-level installment flag.
        today (Optional[date]): Reference day for the deadline check.
        default_plans (Optional[Sequence[int]]): Plan sizes granted by the member flag.

    Returns:
        EligibilityDecision: The decision, with the reason when ineligible.
    """
    today = today or date.today()
    deadline = dues.flexible_plan_deadline
    if deadline is None:
        return EligibilityDecision(False, reason="No installment deadline is configured")
    if deadline < today:
        return EligibilityDecision(False, deadline=deadline, reason="The installment deadline has passed")
    if dues.balance <= 0:
        return EligibilityDecision(False, deadline=deadline, reason="No outstanding balance")

    if dues_eligibility is not None:
        plans = tuple(sorted(set(int(p) for p in dues_eligibility.allowed_plans)))
        if not dues_eligibility.is_eligible or not plans:
            return EligibilityDecision(
                False, deadline=deadline, source=dues.id, reason="Installments are disabled for these dues"
            )
        return EligibilityDecision(True, plans, deadline, source=dues.id)

    if member_flag:
        if default_plans is None:
            default_plans = get_settings().default_installment_plans
        return EligibilityDecision(True, tuple(default_plans), deadline, source=MEMBER_LEVEL)

    return EligibilityDecision(False, deadline=deadline, reason="Not eligible for installment payments")


def check_plan_request(
    decision: EligibilityDecision, num_installments: Optional[int], partial_amount=None
) -> int:
    """Validate a member's plan selection against an eligibility decision.

    Args:
        decision (EligibilityDecision): Result of evaluate_eligibility.
        num_installments (Optional[int]): Selected plan size.
        partial_amount: Custom amount of the same checkout, if any.

    Returns:
        int: The validated plan size.
    """
    if partial_amount is not None:
        raise ValidationError("Partial payments cannot be combined with an installment plan")
    if not decision.eligible:
        raise ValidationError(decision.reason or "Not eligible for installment payments")
    if not num_installments:
        raise ValidationError("Please select a payment plan")
    if num_installments not in decision.allowed_plans:
        available = ", ".join(str(p) for p in decision.allowed_plans)
        raise ValidationError(f"{num_installments}-payment plan not allowed. Available: {available}")
    return num_installments


class EligibilityEvaluator:
    """Reads eligibility inputs through the ledger."""

    def __init__(self, ledger, default_plans: Optional[Sequence[int]] = None):
        self.ledger = ledger
        self.default_plans = default_plans

    def evaluate(self, dues_id: str, member_id: str, today: Optional[date] = None) -> EligibilityDecision:
        dues = self.ledger.get_member_dues(dues_id)
        if dues is None:
            raise ValidationError("Member dues record not found")
        if dues.member_id != member_id:
            raise ValidationError("Dues record does not belong to this member")

        dues_eligibility = self.ledger.get_eligibility(dues_id)
        member_flag = self.ledger.get_member_eligibility_flag(member_id)
        decision = evaluate_eligibility(dues, dues_eligibility, member_flag, today, self.default_plans)
        logger.info(
            f"Installment eligibility: eligible={decision.eligible} source={decision.source}",
            extra={"dues_id": dues_id},
        )
        return decision
