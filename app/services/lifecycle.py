"""
Transaction lifecycle.

    PENDING ──processing_delay──▶ PROCESSING ──(callback − processing)──▶ SUCCESS | FAIL ──▶ webhook

Both delays are read from the outcome configuration current when each step
runs, so reconfiguring affects in-flight transactions that have not resolved
yet. The terminal delay is clamped at zero when callback_delay is not larger
than processing_delay.

The outcome engine is consulted only at the terminal step. A transaction that
disappears before a step fires is logged and left alone. Scheduled steps are
not persisted: a restart loses them.
"""
import functools

from app.exceptions import InvalidTransition
from app.logging import get_logger
from app.models import TransactionStatus
from app.services import payments
from app.services.delivery import DeliveryAgent
from app.services.scenario import OutcomeEngine, ScenarioHolder
from app.services.scheduler import ScheduledTask, Scheduler

logger = get_logger("lifecycle")


class LifecycleController:
    def __init__(
        self,
        session_factory,
        scenarios: ScenarioHolder,
        engine: OutcomeEngine,
        delivery: DeliveryAgent,
        scheduler: Scheduler,
    ):
        self._session_factory = session_factory
        self._scenarios = scenarios
        self._engine = engine
        self._delivery = delivery
        self._scheduler = scheduler

    def start(self, transaction_id: str) -> ScheduledTask:
        """Schedule the PROCESSING step for a freshly created transaction."""
        delay = self._scenarios.current.processing_delay
        logger.info("lifecycle_started", transaction_id=transaction_id, processing_in=delay)
        return self._scheduler.schedule(
            transaction_id,
            delay,
            functools.partial(self.mark_processing, transaction_id),
            name="to_processing",
        )

    async def mark_processing(self, transaction_id: str) -> None:
        with self._session_factory() as db:
            txn = payments.get_transaction(db, transaction_id)
            if txn is None:
                logger.warning("transition_abandoned", transaction_id=transaction_id, step="processing")
                return
            try:
                payments.advance_status(db, txn, TransactionStatus.PROCESSING)
            except InvalidTransition as e:
                logger.warning("transition_rejected", transaction_id=transaction_id, error=str(e))
                return

        delay = self._scenarios.current.terminal_delay
        self._scheduler.schedule(
            transaction_id,
            delay,
            functools.partial(self.complete, transaction_id),
            name="to_terminal",
        )

    async def complete(self, transaction_id: str) -> None:
        with self._session_factory() as db:
            txn = payments.get_transaction(db, transaction_id)
            if txn is None:
                logger.warning("transition_abandoned", transaction_id=transaction_id, step="terminal")
                return

            merchant_key = txn.merchant.merchant_token if txn.merchant else ""
            outcome = self._engine.decide(txn.amount, txn.network, merchant_key)
            try:
                payments.advance_status(db, txn, outcome)
            except InvalidTransition as e:
                logger.warning("transition_rejected", transaction_id=transaction_id, error=str(e))
                return

            logger.info(
                "transaction_completed",
                transaction_id=transaction_id,
                request_reference=txn.request_reference,
                status=outcome.value,
            )

        self._delivery.schedule_delivery(transaction_id, 0)
