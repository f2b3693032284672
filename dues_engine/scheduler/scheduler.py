"""Scheduler using APScheduler to charge installment payments as they fall due."""

import asyncio
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from prometheus_client import start_http_server

from dues_engine.config import get_settings
from dues_engine.db.ledger import SqlLedger
from dues_engine.errors import PaymentGatewayError
from dues_engine.logging_config import configure_logging, get_logger
from dues_engine.metrics import (
    gateway_failures_total,
    installment_collection_duration_seconds,
    measure_duration,
)
from dues_engine.payment.gateway import HttpPaymentGateway
from dues_engine.types import InstallmentStatus

logger = get_logger(__name__)


@dataclass
class CollectionResult:
    succeeded: int = 0
    processing: int = 0
    failed: int = 0
    completed_plans: int = 0

    @property
    def attempted(self) -> int:
        return self.succeeded + self.processing + self.failed


@measure_duration(installment_collection_duration_seconds)
async def collect_due_installments(ledger, gateway, today: Optional[date] = None) -> CollectionResult:
    """Charge every scheduled installment of an active plan due on or before ``today``.

    Each installment is marked processing before the charge so a concurrent
    run does not pick it up again. Charges go through the saved-method fast
    path with the plan's stored payment method.

    Args:
        ledger: Dues ledger.
        gateway: Async payments backend.
        today (Optional[date]): Collection day, defaults to today.

    Returns:
        CollectionResult: Counts per outcome.
    """
    today = today or date.today()
    result = CollectionResult()
    due = ledger.list_due_installments(today)
    logger.info(f"{len(due)} installments due on or before {today.isoformat()}")

    for installment in due:
        extra = {"dues_id": installment.dues_id, "plan_id": installment.plan_id}
        if not installment.payment_method_id:
            logger.error(f"Installment {installment.sequence} has no payment method on file", extra=extra)
            ledger.record_installment_result(installment.payment_id, InstallmentStatus.FAILED)
            result.failed += 1
            continue

        ledger.mark_installment_processing(installment.payment_id)
        try:
            response = await gateway.create_payment_intent(
                installment.dues_id,
                installment.payment_method_type,
                installment.amount,
                False,
                saved_method_id=installment.payment_method_id,
                idempotency_key=f"installment-{installment.payment_id}",
            )
        except PaymentGatewayError as e:
            gateway_failures_total.inc()
            logger.warning(f"Installment {installment.sequence} charge failed: {e}", extra=extra)
            ledger.record_installment_result(installment.payment_id, InstallmentStatus.FAILED)
            result.failed += 1
            continue

        if response.payment_complete:
            if ledger.record_installment_result(
                installment.payment_id, InstallmentStatus.SUCCEEDED, datetime.now()
            ):
                result.completed_plans += 1
            result.succeeded += 1
        elif response.requires_action:
            # Off-session charges cannot be verified by the member here
            logger.warning(f"Installment {installment.sequence} requires member action", extra=extra)
            ledger.record_installment_result(installment.payment_id, InstallmentStatus.FAILED)
            result.failed += 1
        else:
            result.processing += 1

    logger.info(
        f"Installment collection finished: succeeded={result.succeeded} "
        f"processing={result.processing} failed={result.failed} completed_plans={result.completed_plans}"
    )
    return result


def collection_job():
    """Run one collection pass against the configured ledger and payments backend."""
    try:
        asyncio.run(collect_due_installments(SqlLedger(), HttpPaymentGateway()))
    except Exception as e:
        logger.exception(f"Installment collection job failed: {e}")


def start_scheduler():
    """Start the APScheduler to run collection_job daily at 06:00 UTC and keep the process alive."""
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(collection_job, "cron", hour=6, minute=0, id="installment-collection")
    scheduler.start()
    logger.info(f"Scheduler started. Next runs: {scheduler.get_jobs()}")
    try:
        while True:
            time.sleep(60)
    except (KeyboardInterrupt, SystemExit):
        scheduler.shutdown()
        logger.info("Scheduler stopped.")


if __name__ == "__main__":
    configure_logging()
    start_http_server(get_settings().metrics_port)
    start_scheduler()
