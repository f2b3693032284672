"""Exception hierarchy for the dues engine."""

from typing import Optional


class DuesEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(DuesEngineError):
    """Input rejected before any external call. Never retried automatically."""


class AccountNotReadyError(ValidationError):
    """The chapter's receiving account cannot accept charges yet."""


class PaymentGatewayError(DuesEngineError):
    """Terminal gateway failure for the current intent (declined, invalid method, ...)."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ReconciliationError(DuesEngineError):
    """A charge succeeded but the follow-up bookkeeping did not.

    The charge is never rolled back; the message is meant for the member and
    points them to support.
    """

    def __init__(self, message: str, payment_method_id: Optional[str] = None):
        super().__init__(message)
        self.payment_method_id = payment_method_id
