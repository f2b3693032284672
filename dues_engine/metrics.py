"""Prometheus metrics definitions and duration measurement decorator.

This module defines Histogram metrics for the engine components, Counters for
the payment-intent lifecycle, and a decorator to measure function execution
durations using these metrics.
"""

import functools
import inspect

from prometheus_client import Counter, Histogram

forecast_duration_seconds = Histogram(
    "forecast_duration_seconds", "Duration of cash-flow forecast runs"
)
installment_schedule_duration_seconds = Histogram(
    "installment_schedule_duration_seconds", "Duration of installment schedule generation"
)
intent_creation_duration_seconds = Histogram(
    "intent_creation_duration_seconds", "Duration of payment intent creation calls"
)
late_fee_duration_seconds = Histogram(
    "late_fee_duration_seconds", "Duration of late fee preview/apply"
)
installment_collection_duration_seconds = Histogram(
    "installment_collection_duration_seconds", "Duration of the installment collection job"
)

intents_created_total = Counter(
    "payment_intents_created_total", "Payment intents created through the gateway"
)
duplicate_intent_requests_total = Counter(
    "duplicate_intent_requests_total", "Intent creation requests dropped as duplicates"
)
gateway_failures_total = Counter(
    "payment_gateway_failures_total", "Terminal gateway errors for payment intents"
)
reconciliation_failures_total = Counter(
    "reconciliation_failures_total", "Charges that succeeded but failed plan bookkeeping"
)


def measure_duration(metric):
    """Decorator to measure execution duration of a function using the provided Prometheus Histogram metric.

    Coroutine functions are timed until the awaited result is available.

    Args:
        metric (Histogram): Prometheus Histogram to record execution time.

    Returns:
        Callable: A decorator that wraps a function to measure and record its execution duration.
    """

    def decorator(func):
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                with metric.time():
                    return await func(*args, **kwargs)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with metric.time():
                return func(*args, **kwargs)

        return wrapper

    return decorator
