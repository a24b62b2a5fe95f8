"""Intent executor: evaluates due intents and dispatches payments.

Per intent the pipeline is strictly evaluate -> execute -> record -> notify.
At most one pipeline runs per intent id at any time within this process.
"""

import asyncio
import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from flowpay.config import Settings, get_settings
from flowpay.execution.constraints import Decision, evaluate
from flowpay.execution.errors import ExecutionError, OutcomeNotRecordedError
from flowpay.execution.gateways import (
    ChainBackend,
    NotificationSink,
    NotificationType,
    PayoutBackend,
)
from flowpay.execution.intents import (
    ExecutionRecord,
    ExecutionStatus,
    Intent,
    IntentStatus,
    IntentUpdate,
    format_amount,
)
from flowpay.execution.schedule import next_execution_after
from flowpay.execution.store import IntentStore
from flowpay.services.health import HealthStatus, get_health_status
from flowpay.utils.clock import utcnow
from flowpay.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Outcomes returned by process_one
SUCCESS = "success"
DELAYED = "delayed"
FAILED = "failed"
UNRECORDED = "unrecorded"
ERROR = "error"


class IntentExecutor:
    """Drives due intents through evaluation and execution.

    Holds no persistent state besides the in-flight set and the quarantine
    set of intents whose outcome could not be written to the store.
    """

    def __init__(
        self,
        store: IntentStore,
        chain: ChainBackend,
        payout: PayoutBackend,
        notifier: NotificationSink,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        health: HealthStatus | None = None,
    ) -> None:
        """Initialize intent executor.

        Args:
            store: Intent store.
            chain: Ledger gateway (synchronous; run off the event loop).
            payout: Off-ramp payout gateway.
            notifier: Notification sink.
            settings: Settings override. Defaults to environment settings.
            clock: Source of naive-UTC "now" when a tick is not given one.
            health: Health status to flag on unrecorded outcomes.
        """
        self.store = store
        self.chain = chain
        self.payout = payout
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.clock = clock
        self.health = health or get_health_status()

        self.limiter = RateLimiter(
            calls_per_second=self.settings.rpc_calls_per_second, name="rpc"
        )
        self.store_retry_wait = wait_exponential(multiplier=0.5, max=5)
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_executions)
        self._in_flight: set[str] = set()
        self.quarantined: set[str] = set()

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    async def tick(self, now: datetime | None = None) -> dict[str, Any]:
        """Process every intent due at `now` and return a summary.

        Intents still being processed by an earlier tick are skipped.
        """
        now = now or self.clock()
        tick_id = str(uuid.uuid4())
        due = self.store.find_due_intents(now)

        batch: list[Intent] = []
        skipped_in_flight = 0
        skipped_quarantined = 0
        for intent in due:
            if not intent.is_due(now):
                logger.warning(
                    f"Intent {intent.id[:8]} returned by due query but not due; skipping",
                    extra={"intent_id": intent.id, "tick_id": tick_id, "status": intent.status.value},
                )
                continue
            if intent.id in self.quarantined:
                skipped_quarantined += 1
                logger.warning(
                    f"Intent {intent.id[:8]} is quarantined; outcome of a previous run is unrecorded",
                    extra={"intent_id": intent.id, "tick_id": tick_id},
                )
                continue
            if intent.id in self._in_flight:
                skipped_in_flight += 1
                logger.info(
                    f"Intent {intent.id[:8]} still in flight; skipping",
                    extra={"intent_id": intent.id, "tick_id": tick_id},
                )
                continue
            # Claimed before the first await so an overlapping tick sees it.
            self._in_flight.add(intent.id)
            batch.append(intent)

        outcomes = await asyncio.gather(*(self._run_claimed(intent, now) for intent in batch))

        summary = {
            "tick_id": tick_id,
            "now": now.isoformat(),
            "due": len(due),
            "processed": len(batch),
            "skipped_in_flight": skipped_in_flight,
            "skipped_quarantined": skipped_quarantined,
            "outcomes": dict(Counter(outcomes)),
        }
        if due:
            logger.info(
                f"Tick {tick_id[:8]}: {len(batch)}/{len(due)} due intents processed",
                extra=summary,
            )
        return summary

    async def _run_claimed(self, intent: Intent, now: datetime) -> str:
        try:
            async with self._semaphore:
                return await self.process_one(intent, now)
        finally:
            self._in_flight.discard(intent.id)

    async def process_one(self, intent: Intent, now: datetime | None = None) -> str:
        """Run one intent's pipeline. Never raises.

        Returns:
            One of "success", "delayed", "failed", "unrecorded" or "error".
        """
        now = now or self.clock()
        try:
            return await self._process(intent, now)
        except OutcomeNotRecordedError:
            return UNRECORDED
        except Exception as e:
            logger.error(
                f"Unexpected error processing intent {intent.id[:8]}: {e}",
                exc_info=True,
                extra={"intent_id": intent.id},
            )
            return ERROR

    async def _process(self, intent: Intent, now: datetime) -> str:
        try:
            decision = await self._evaluate(intent, now)
        except ExecutionError as e:
            return await self._handle_failure(intent, str(e), now)

        if not decision.proceed:
            return await self._handle_delay(intent, decision.reason or "Constraint not met", now)

        try:
            if intent.is_off_ramp:
                record = await self._execute_offramp(intent, now)
            else:
                record = await self._execute_onchain(intent, now)
        except ExecutionError as e:
            return await self._handle_failure(intent, str(e), now)

        return await self._handle_success(intent, record, now)

    # ------------------------------------------------------------------
    # Evaluate
    # ------------------------------------------------------------------

    async def _evaluate(self, intent: Intent, now: datetime) -> Decision:
        try:
            balance = await self._call_chain(
                self.chain.get_token_balance, intent.token_address, intent.owner_wallet
            )
        except Exception as e:
            raise ExecutionError(f"Balance check failed: {self._describe(e)}") from e

        gas_price = None
        if intent.max_gas_price is not None:
            try:
                gas_price = await self._call_chain(self.chain.get_gas_price)
            except Exception as e:
                raise ExecutionError(f"Gas price check failed: {self._describe(e)}") from e

        decision = evaluate(intent, balance, gas_price, now, tz=self.settings.tzinfo)
        logger.debug(
            f"Intent {intent.id[:8]} evaluated: {decision.action.value}",
            extra={
                "intent_id": intent.id,
                "balance": str(balance),
                "required": str(intent.required_balance),
                "gas_price": gas_price,
                "reason": decision.reason,
            },
        )
        return decision

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    async def _execute_onchain(self, intent: Intent, now: datetime) -> ExecutionRecord:
        try:
            receipt = await self._call_chain(self.chain.execute_intent, intent.on_chain_id)
        except Exception as e:
            raise ExecutionError(f"On-chain execution failed: {self._describe(e)}") from e

        logger.info(
            f"Intent {intent.id[:8]} executed on-chain",
            extra={
                "intent_id": intent.id,
                "tx_hash": receipt.tx_hash,
                "gas_used": receipt.gas_used,
                "block_number": receipt.block_number,
            },
        )
        return ExecutionRecord.onchain_success(intent, receipt, now)

    async def _execute_offramp(self, intent: Intent, now: datetime) -> ExecutionRecord:
        if intent.off_ramp is None:
            raise ExecutionError("Off-ramp execution failed: missing off-ramp details")

        try:
            result = await asyncio.wait_for(
                self.payout.payout(
                    phone=intent.off_ramp.phone_number,
                    country=intent.off_ramp.country,
                    amount_usd=intent.amount,
                    user_id=intent.owner_id,
                    intent_id=intent.id,
                ),
                timeout=self.settings.gateway_timeout_seconds,
            )
        except Exception as e:
            raise ExecutionError(f"Off-ramp execution failed: {self._describe(e)}") from e

        if not result.success:
            raise ExecutionError(f"Off-ramp execution failed: {result.error or 'unknown error'}")

        logger.info(
            f"Intent {intent.id[:8]} paid out off-ramp",
            extra={
                "intent_id": intent.id,
                "payout_id": result.payout_id,
                "provider_status": result.provider_status,
            },
        )
        return ExecutionRecord.offramp_success(intent, result, now)

    async def _call_chain(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking chain call in a worker thread, rate limited and time bounded."""
        await self.limiter.acquire()
        return await asyncio.wait_for(
            asyncio.to_thread(fn, *args), timeout=self.settings.gateway_timeout_seconds
        )

    # ------------------------------------------------------------------
    # Record + notify
    # ------------------------------------------------------------------

    async def _handle_success(self, intent: Intent, record: ExecutionRecord, now: datetime) -> str:
        update = IntentUpdate(
            reschedule=True,
            next_execution=next_execution_after(intent.frequency, now),
            last_execution=now,
            execution_count_delta=1,
            reset_failure_count=True,
        )
        saved = await self._record(intent, record, update)

        if intent.is_off_ramp:
            title = "Off-Ramp Successful"
            destination = intent.off_ramp.phone_number if intent.off_ramp else "mobile money"
            message = f"{intent.display_name}: {format_amount(intent.amount)} USD sent to {destination}"
        else:
            title = "Payment Sent Successfully"
            message = f"{intent.display_name}: {format_amount(intent.amount)} {intent.token} sent to {intent.recipient}"
        await self._notify(
            intent,
            NotificationType.EXECUTION_SUCCESS,
            title,
            message,
            {
                "intent_id": intent.id,
                "execution_id": saved.id,
                "tx_hash": saved.tx_hash,
                "payout_id": saved.payout_id,
            },
        )
        return SUCCESS

    async def _handle_delay(self, intent: Intent, reason: str, now: datetime) -> str:
        retry_at = now + timedelta(seconds=self.settings.delay_backoff_seconds)
        record = ExecutionRecord.delayed(intent, reason, now)
        saved = await self._record(
            intent, record, IntentUpdate(reschedule=True, next_execution=retry_at)
        )

        logger.info(
            f"Intent {intent.id[:8]} delayed: {reason}",
            extra={"intent_id": intent.id, "reason": reason, "retry_at": retry_at.isoformat()},
        )
        await self._notify(
            intent,
            NotificationType.EXECUTION_DELAYED,
            "Payment Delayed",
            f"{intent.display_name}: {reason}",
            {"intent_id": intent.id, "execution_id": saved.id, "reason": reason},
        )
        return DELAYED

    async def _handle_failure(self, intent: Intent, error: str, now: datetime) -> str:
        record = ExecutionRecord.failed(intent, error, now)
        saved = await self._record(
            intent, record, IntentUpdate(status=IntentStatus.FAILED, failure_count_delta=1)
        )

        logger.error(
            f"Intent {intent.id[:8]} failed: {error}",
            extra={"intent_id": intent.id, "error": error},
        )
        await self._notify(
            intent,
            NotificationType.EXECUTION_FAILED,
            "Payment Failed",
            f"{intent.display_name}: {error}",
            {"intent_id": intent.id, "execution_id": saved.id, "error": error},
        )
        return FAILED

    async def _record(
        self, intent: Intent, record: ExecutionRecord, update: IntentUpdate
    ) -> ExecutionRecord:
        """Write the outcome, retrying store errors.

        Raises:
            OutcomeNotRecordedError: When every attempt failed or the intent row
                is gone. SUCCESS and FAILED
                outcomes also quarantine the intent for the rest of the process.
        """
        saved: ExecutionRecord | None = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.store_write_attempts),
                wait=self.store_retry_wait,
                retry=retry_if_exception_type(SQLAlchemyError),
                reraise=True,
            ):
                with attempt:
                    saved = self.store.record_execution(intent.id, record, update)
        except (SQLAlchemyError, LookupError) as e:
            # LookupError: the intent row vanished; not retried.
            self._on_unrecorded(intent, record, e)
            raise OutcomeNotRecordedError(intent.id, record.status.value, str(e)) from e
        return saved

    def _on_unrecorded(self, intent: Intent, record: ExecutionRecord, error: Exception) -> None:
        payload = {
            "intent_id": intent.id,
            "outcome": record.status.value,
            "tx_hash": record.tx_hash,
            "payout_id": record.payout_id,
            "record": record.to_dict(),
            "error": str(error),
        }
        if record.status is ExecutionStatus.DELAYED:
            # Nothing was paid; the intent stays due and is evaluated again.
            logger.error(f"Could not record delay for intent {intent.id[:8]}", extra=payload)
            return

        self.quarantined.add(intent.id)
        logger.critical(
            f"UNRECORDED {record.status.value} for intent {intent.id}; quarantined until reconciled",
            extra=payload,
        )
        self.health.mark_unhealthy(
            f"Unrecorded {record.status.value} outcome for intent {intent.id}"
        )

    async def _notify(
        self,
        intent: Intent,
        type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> None:
        try:
            await self.notifier.notify(intent.owner_id, type, title, message, data)
        except Exception as e:
            logger.warning(
                f"Notification failed for intent {intent.id[:8]}: {e}",
                extra={"intent_id": intent.id, "type": type.value},
            )

    def _describe(self, e: Exception) -> str:
        if isinstance(e, asyncio.TimeoutError):
            return f"timed out after {self.settings.gateway_timeout_seconds:g}s"
        return str(e) or e.__class__.__name__
