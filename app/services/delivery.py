"""
Webhook delivery.

Once a transaction reaches SUCCESS or FAIL, the caller is notified with a
signed, form-encoded POST to its notify_url. Only HTTP 200 counts as an
acknowledgement.

Retry policy (per delivery run):
  attempt 1 → fail → wait 2s → attempt 2 → fail → wait 4s → attempt 3 → give up

Waits are timers on the shared Scheduler, not sleeps. Every attempt is
persisted (delivery_attempts, last_delivery_at); a 200 also sets
delivery_confirmed. An exhausted run leaves delivery_confirmed False until an
operator calls trigger() again.
"""
import asyncio
import functools
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set
from urllib.parse import quote, urlencode

import httpx

from app import models
from app.exceptions import DeliveryFailure, RecordNotFound
from app.logging import get_logger
from app.services import payments
from app.services.scheduler import ScheduledTask, Scheduler
from app.services.signature import QUERY_SAFE, SIGNATURE_FIELD, sign

logger = get_logger("delivery")

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass(eq=False)
class DeliveryRun:
    """State of one delivery run: which attempt we are on and when the next fires."""

    transaction_id: str
    max_attempts: int
    done: asyncio.Future = field(repr=False)
    attempt: int = 0
    delays: List[float] = field(default_factory=list)
    next_retry: Optional[ScheduledTask] = field(default=None, repr=False)


class DeliveryAgent:
    def __init__(
        self,
        session_factory,
        scheduler: Scheduler,
        max_attempts: int = 3,
        timeout: float = 10.0,
        backoff_unit: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._session_factory = session_factory
        self._scheduler = scheduler
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.backoff_unit = backoff_unit
        self._client = client
        self._runs: Set[DeliveryRun] = set()

    def retry_delay(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        return self.backoff_unit * (2 ** attempt)

    def build_payload(self, txn: models.Transaction, secret: str) -> Dict[str, str]:
        fields = {
            "amount": payments.format_amount(txn.amount, payments.WEBHOOK_AMOUNT_PLACES),
            "currency": txn.currency,
            "merchant_reference": txn.merchant_reference,
            "request_reference": txn.request_reference,
            "status": txn.transaction_status.code,
        }
        fields[SIGNATURE_FIELD] = sign(fields, secret)
        return fields

    def schedule_delivery(self, transaction_id: str, delay: float = 0.0) -> ScheduledTask:
        logger.info("callback_scheduled", transaction_id=transaction_id, delay=delay)
        return self._scheduler.schedule(
            transaction_id,
            delay,
            functools.partial(self.deliver, transaction_id),
            name="delivery",
        )

    def active_runs(self) -> List[DeliveryRun]:
        return list(self._runs)

    async def deliver(self, transaction_id: str) -> bool:
        """Run the full attempt/backoff cycle; resolves once confirmed or exhausted."""
        run = DeliveryRun(
            transaction_id=transaction_id,
            max_attempts=self.max_attempts,
            done=asyncio.get_running_loop().create_future(),
        )
        self._runs.add(run)
        await self._attempt(run)
        return await run.done

    async def trigger(self, transaction_id: str) -> bool:
        """
        Operator re-delivery, regardless of delivery_confirmed.

        Raises:
            RecordNotFound: if the transaction does not exist
        """
        with self._session_factory() as db:
            payments.require_transaction(db, transaction_id)
        logger.info("manual_callback_triggered", transaction_id=transaction_id)
        return await self.deliver(transaction_id)

    async def close(self) -> None:
        """Resolve unfinished runs as undelivered and release the HTTP client."""
        for run in list(self._runs):
            logger.warning("callback_run_abandoned", transaction_id=run.transaction_id, attempt=run.attempt)
            self._finish(run, False)
        if self._client is not None:
            await self._client.aclose()

    def _finish(self, run: DeliveryRun, confirmed: bool) -> None:
        run.next_retry = None
        self._runs.discard(run)
        if not run.done.done():
            run.done.set_result(confirmed)

    async def _attempt(self, run: DeliveryRun) -> None:
        try:
            await self._attempt_once(run)
        except Exception:
            self._finish(run, False)
            raise

    async def _attempt_once(self, run: DeliveryRun) -> None:
        run.attempt += 1
        run.next_retry = None

        with self._session_factory() as db:
            txn = payments.get_transaction(db, run.transaction_id)
            if txn is None:
                logger.error("callback_transaction_missing", transaction_id=run.transaction_id)
                self._finish(run, False)
                return
            if txn.merchant is None:
                logger.error("callback_merchant_missing", transaction_id=txn.id, merchant_id=txn.merchant_id)
                self._finish(run, False)
                return
            payload = self.build_payload(txn, txn.merchant.signature_secret)
            notify_url = txn.notify_url

        logger.info(
            "callback_sending",
            transaction_id=run.transaction_id,
            attempt=run.attempt,
            notify_url=notify_url,
        )

        confirmed = False
        try:
            status_code = await self._post(notify_url, payload)
            confirmed = True
            logger.info(
                "callback_sent",
                transaction_id=run.transaction_id,
                attempt=run.attempt,
                response_status=status_code,
            )
        except DeliveryFailure as e:
            logger.warning(
                "callback_attempt_failed",
                transaction_id=run.transaction_id,
                attempt=run.attempt,
                error=str(e),
            )

        with self._session_factory() as db:
            txn = payments.get_transaction(db, run.transaction_id)
            if txn is None:
                logger.error("callback_transaction_missing", transaction_id=run.transaction_id)
                self._finish(run, False)
                return
            payments.record_delivery_attempt(db, txn, confirmed)

        if confirmed:
            self._finish(run, True)
            return

        if run.attempt >= run.max_attempts:
            logger.error(
                "callback_attempts_exhausted",
                transaction_id=run.transaction_id,
                attempts=run.attempt,
            )
            self._finish(run, False)
            return

        delay = self.retry_delay(run.attempt)
        run.delays.append(delay)
        run.next_retry = self._scheduler.schedule(
            run.transaction_id,
            delay,
            functools.partial(self._attempt, run),
            name="delivery_retry",
        )

    async def _post(self, url: str, payload: Dict[str, str]) -> int:
        body = urlencode(payload, quote_via=quote, safe=QUERY_SAFE)
        headers = {"Content-Type": FORM_CONTENT_TYPE}
        try:
            if self._client is not None:
                response = await self._client.post(url, content=body, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, content=body, headers=headers)
        except httpx.TimeoutException as e:
            raise DeliveryFailure(f"Timed out after {self.timeout}s") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DeliveryFailure(f"{type(e).__name__}: {e}") from e

        if response.status_code != 200:
            raise DeliveryFailure(f"Unexpected response status {response.status_code}")
        return response.status_code
