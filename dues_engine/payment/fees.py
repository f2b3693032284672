"""Processing fee calculation."""

from dataclasses import dataclass
from decimal import Decimal

from dues_engine.errors import ValidationError
from dues_engine.types import PaymentMethodType, to_money

CARD_PERCENTAGE = Decimal("0.029")
CARD_FIXED = Decimal("0.30")
BANK_FLAT_FEE = Decimal("0.80")


@dataclass(frozen=True)
class FeeQuote:
    amount: Decimal
    fee: Decimal
    total: Decimal


def calculate_fee(amount, method_type) -> FeeQuote:
    """Compute the processing fee the payer bears on top of ``amount``.

    Args:
        amount: Positive payment amount credited to dues.
        method_type: PaymentMethodType (or its string value).

    Returns:
        FeeQuote: amount, fee and total charge, each rounded half-up to the cent.
    """
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")

    method_type = PaymentMethodType.parse(method_type)
    if method_type is PaymentMethodType.BANK:
        fee = BANK_FLAT_FEE
    else:
        fee = to_money(amount * CARD_PERCENTAGE + CARD_FIXED)
    return FeeQuote(amount=amount, fee=fee, total=amount + fee)
