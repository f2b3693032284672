"""Typed observer registry between the engine and its UI consumer."""

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List

from dues_engine.logging_config import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    INTENT_READY = "intent_ready"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_PROCESSING = "payment_processing"
    ACTION_REQUIRED = "action_required"
    PAYMENT_FAILED = "payment_failed"
    PLAN_CREATED = "plan_created"
    RECONCILIATION_FAILED = "reconciliation_failed"
    ONBOARDING_COMPLETE = "onboarding_complete"
    FORECAST_UPDATED = "forecast_updated"
    LATE_FEE_PREVIEW_UPDATED = "late_fee_preview_updated"
    LATE_FEES_APPLIED = "late_fees_applied"
    DATA_REFRESH = "data_refresh"


@dataclass(frozen=True)
class EngineEvent:
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)


Callback = Callable[[EngineEvent], None]


class EventBus:
    """Explicit subscribe/emit registry.

    Subscribers are called synchronously in subscription order. A subscriber
    that raises is logged and skipped so the others still receive the event.
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[Callback]] = defaultdict(list)

    def subscribe(self, event_type: EventType, callback: Callback) -> Callable[[], None]:
        """Register ``callback`` for ``event_type``.

        Returns:
            Callable[[], None]: Function that removes the subscription.
        """
        self._subscribers[event_type].append(callback)

        def unsubscribe():
            if callback in self._subscribers[event_type]:
                self._subscribers[event_type].remove(callback)

        return unsubscribe

    def emit(self, event_type: EventType, **payload) -> EngineEvent:
        event = EngineEvent(event_type, payload)
        for callback in list(self._subscribers[event_type]):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Subscriber failed for event {event_type.value}")
        return event

    def clear(self) -> None:
        self._subscribers.clear()
