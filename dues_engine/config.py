"""Runtime configuration read from environment variables."""

import os
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Optional, Tuple


def _parse_plans(raw: str) -> Tuple[int, ...]:
    plans = []
    for part in raw.split(","):
        part = part.strip()
        if part:
            plans.append(int(part))
    return tuple(sorted(set(plans)))


@dataclass(frozen=True)
class Settings:
    """Engine settings.

    Attributes:
        database_url (str): SQLAlchemy URL of the dues ledger.
        payments_api_url (str): Base URL of the payments backend.
        payments_api_token (Optional[str]): Bearer token for the payments backend.
        payments_api_timeout (float): HTTP timeout in seconds.
        intent_debounce_seconds (float): Window that coalesces intent requests.
        onboarding_poll_interval_seconds (float): Delay between onboarding status checks.
        onboarding_poll_max_attempts (int): Upper bound on onboarding status checks.
        min_payment_amount (Decimal): Smallest accepted payment.
        max_late_fee (Decimal): Largest accepted bulk late fee.
        default_installment_plans (Tuple[int, ...]): Plan sizes granted by the member-level flag.
        forecast_horizon_days (int): Default forecast horizon.
        metrics_port (int): Port for the Prometheus HTTP exporter.
    """

    database_url: str = "sqlite:///./data.db"
    payments_api_url: str = "http://localhost:54321/functions/v1"
    payments_api_token: Optional[str] = None
    payments_api_timeout: float = 10.0
    intent_debounce_seconds: float = 0.3
    onboarding_poll_interval_seconds: float = 5.0
    onboarding_poll_max_attempts: int = 60
    min_payment_amount: Decimal = Decimal("1.00")
    max_late_fee: Decimal = Decimal("500")
    default_installment_plans: Tuple[int, ...] = (2, 3)
    forecast_horizon_days: int = 90
    metrics_port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment, falling back to defaults."""
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            payments_api_url=os.getenv("PAYMENTS_API_URL", cls.payments_api_url),
            payments_api_token=os.getenv("PAYMENTS_API_TOKEN"),
            payments_api_timeout=float(os.getenv("PAYMENTS_API_TIMEOUT", cls.payments_api_timeout)),
            intent_debounce_seconds=float(
                os.getenv("INTENT_DEBOUNCE_SECONDS", cls.intent_debounce_seconds)
            ),
            onboarding_poll_interval_seconds=float(
                os.getenv("ONBOARDING_POLL_INTERVAL_SECONDS", cls.onboarding_poll_interval_seconds)
            ),
            onboarding_poll_max_attempts=int(
                os.getenv("ONBOARDING_POLL_MAX_ATTEMPTS", cls.onboarding_poll_max_attempts)
            ),
            min_payment_amount=Decimal(os.getenv("MIN_PAYMENT_AMOUNT", str(cls.min_payment_amount))),
            max_late_fee=Decimal(os.getenv("MAX_LATE_FEE", str(cls.max_late_fee))),
            default_installment_plans=_parse_plans(os.getenv("DEFAULT_INSTALLMENT_PLANS", "2,3")),
            forecast_horizon_days=int(os.getenv("FORECAST_HORIZON_DAYS", cls.forecast_horizon_days)),
            metrics_port=int(os.getenv("METRICS_PORT", cls.metrics_port)),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, read once from the environment."""
    return Settings.from_env()
