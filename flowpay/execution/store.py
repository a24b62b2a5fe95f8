"""Persistent intent store: due-intent queries, atomic outcome writes, lifecycle."""

import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker

from flowpay.data.storage import ExecutionDB, IntentDB, UserDB
from flowpay.execution.errors import IntentValidationError
from flowpay.execution.intents import (
    ExecutionRecord,
    ExecutionStatus,
    Frequency,
    Intent,
    IntentCreate,
    IntentPatch,
    IntentStatus,
    IntentUpdate,
    OffRampDetails,
    Owner,
)
from flowpay.execution.schedule import first_execution
from flowpay.utils.clock import utcnow

logger = logging.getLogger(__name__)


class IntentStore:
    """Single source of truth for intents and their execution history.

    Each public method runs in its own session; methods that write commit
    exactly once, so every call is all-or-nothing.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        """Initialize intent store.

        Args:
            session_factory: SQLAlchemy session factory.
        """
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Execution read/write path
    # ------------------------------------------------------------------

    def find_due_intents(self, now: datetime) -> list[Intent]:
        """ACTIVE intents with a non-null next execution at or before `now`.

        Rows that cannot be parsed are logged and skipped.
        """
        with self.session_factory() as session:
            rows = (
                session.query(IntentDB, UserDB.wallet_address)
                .join(UserDB, IntentDB.owner_id == UserDB.id)
                .filter(IntentDB.status == IntentStatus.ACTIVE.value)
                .filter(IntentDB.next_execution.is_not(None))
                .filter(IntentDB.next_execution <= now)
                .order_by(IntentDB.next_execution)
                .all()
            )

            intents: list[Intent] = []
            for row, wallet in rows:
                try:
                    intents.append(self._load_intent_from_db(row, wallet))
                except (ValueError, ValidationError) as e:
                    logger.error(
                        f"Skipping unreadable intent {row.id}: {e}",
                        extra={"intent_id": row.id},
                    )
            return intents

    def record_execution(
        self, intent_id: str, record: ExecutionRecord, update: IntentUpdate
    ) -> ExecutionRecord:
        """Append `record` and apply `update` to the intent in one transaction.

        Raises:
            LookupError: If the intent does not exist.
            sqlalchemy.exc.SQLAlchemyError: On any store failure (nothing is written).
        """
        with self.session_factory() as session, session.begin():
            row = session.get(IntentDB, intent_id, with_for_update=True)
            if row is None:
                raise LookupError(f"Intent not found: {intent_id}")

            db_exec = ExecutionDB(
                intent_id=intent_id,
                status=record.status.value,
                amount=record.amount,
                executed_at=record.executed_at,
                tx_hash=record.tx_hash,
                gas_used=record.gas_used,
                gas_price=record.gas_price,
                block_number=record.block_number,
                payout_id=record.payout_id,
                provider_status=record.provider_status,
                error_message=record.error_message,
                delay_reason=record.delay_reason,
            )
            session.add(db_exec)

            if update.status is not None:
                if row.status == IntentStatus.CANCELLED.value:
                    logger.warning(
                        f"Intent {intent_id[:8]} was cancelled mid-flight; keeping CANCELLED",
                        extra={"intent_id": intent_id, "requested_status": update.status.value},
                    )
                else:
                    row.status = update.status.value
            if update.reschedule:
                row.next_execution = update.next_execution
            if update.last_execution is not None:
                row.last_execution = update.last_execution
            if update.execution_count_delta:
                row.execution_count = IntentDB.execution_count + update.execution_count_delta
            if update.reset_failure_count:
                row.failure_count = 0
            elif update.failure_count_delta:
                row.failure_count = IntentDB.failure_count + update.failure_count_delta

            session.flush()
            execution_id = db_exec.id

        logger.debug(
            f"Recorded {record.status.value} for intent {intent_id[:8]}",
            extra={"intent_id": intent_id, "execution_id": execution_id},
        )
        return replace(record, id=execution_id)

    # ------------------------------------------------------------------
    # Owners
    # ------------------------------------------------------------------

    def add_user(self, wallet_address: str, telegram_chat_id: str | None = None) -> Owner:
        """Register an intent owner."""
        with self.session_factory() as session, session.begin():
            user = UserDB(wallet_address=wallet_address, telegram_chat_id=telegram_chat_id)
            session.add(user)
            session.flush()
            return Owner(id=user.id, wallet_address=user.wallet_address, telegram_chat_id=telegram_chat_id)

    def get_user(self, user_id: str) -> Owner | None:
        with self.session_factory() as session:
            user = session.get(UserDB, user_id)
            if user is None:
                return None
            return Owner(
                id=user.id,
                wallet_address=user.wallet_address,
                telegram_chat_id=user.telegram_chat_id,
            )

    # ------------------------------------------------------------------
    # User-initiated lifecycle
    # ------------------------------------------------------------------

    def create_intent(
        self, owner_id: str, data: IntentCreate, now: datetime | None = None
    ) -> Intent:
        """Persist a new ACTIVE intent with its first next-execution time.

        Raises:
            IntentValidationError: If the owner does not exist.
        """
        now = now or utcnow()
        with self.session_factory() as session, session.begin():
            owner = session.get(UserDB, owner_id)
            if owner is None:
                raise IntentValidationError(f"Unknown owner: {owner_id}")

            row = IntentDB(
                owner_id=owner_id,
                name=data.name,
                description=data.description,
                recipient=data.recipient,
                amount=data.amount,
                token=data.token,
                token_address=data.token_address,
                frequency=data.frequency.value,
                safety_buffer=data.safety_buffer,
                max_gas_price=data.max_gas_price,
                time_window_start=data.time_window_start,
                time_window_end=data.time_window_end,
                is_off_ramp=data.is_off_ramp,
                off_ramp_details=(
                    data.off_ramp_details.model_dump() if data.off_ramp_details else None
                ),
                on_chain_id=data.on_chain_id,
                status=IntentStatus.ACTIVE.value,
                next_execution=first_execution(data.frequency, now, data.start_at),
                created_at=now,
            )
            session.add(row)
            session.flush()
            intent = self._load_intent_from_db(row, owner.wallet_address)

        logger.info(
            f"Created intent: {intent.id[:8]}",
            extra={
                "intent_id": intent.id,
                "owner_id": owner_id,
                "frequency": intent.frequency.value,
                "next_execution": intent.next_execution.isoformat() if intent.next_execution else None,
            },
        )
        return intent

    def update_intent(
        self,
        intent_id: str,
        patch: IntentPatch,
        owner_id: str | None = None,
        now: datetime | None = None,
    ) -> Intent | None:
        """Apply a partial edit. A frequency change recomputes the next execution.

        Raises:
            IntentValidationError: If the edited intent would be invalid.
        """
        now = now or utcnow()
        changes = patch.model_dump(exclude_unset=True)
        with self.session_factory() as session, session.begin():
            row = self._get_owned(session, intent_id, owner_id)
            if row is None:
                return None
            if row.status == IntentStatus.CANCELLED.value:
                logger.warning(f"Intent {intent_id} is cancelled and cannot be edited")
                return None

            merged = {
                "name": row.name,
                "description": row.description,
                "recipient": row.recipient,
                "amount": row.amount,
                "token": row.token,
                "token_address": row.token_address,
                "frequency": row.frequency,
                "safety_buffer": row.safety_buffer,
                "max_gas_price": row.max_gas_price,
                "time_window_start": row.time_window_start,
                "time_window_end": row.time_window_end,
                "is_off_ramp": row.is_off_ramp,
                "off_ramp_details": row.off_ramp_details,
                "on_chain_id": row.on_chain_id,
            }
            merged.update(changes)
            try:
                validated = IntentCreate.model_validate(merged)
            except ValidationError as e:
                raise IntentValidationError(str(e)) from e

            for key in merged:
                value = getattr(validated, key)
                if key == "frequency":
                    value = value.value
                elif key == "off_ramp_details" and value is not None:
                    value = value.model_dump()
                setattr(row, key, value)

            if "frequency" in changes and row.status == IntentStatus.ACTIVE.value:
                row.next_execution = first_execution(validated.frequency, now)

            session.flush()
            intent = self._load_intent_from_db(row, row.owner.wallet_address)

        logger.info(
            f"Updated intent: {intent_id[:8]}",
            extra={"intent_id": intent_id, "fields": sorted(changes)},
        )
        return intent

    def pause_intent(self, intent_id: str, owner_id: str | None = None) -> Intent | None:
        """ACTIVE -> PAUSED."""
        return self._transition(intent_id, {IntentStatus.ACTIVE}, IntentStatus.PAUSED, owner_id)

    def resume_intent(self, intent_id: str, owner_id: str | None = None) -> Intent | None:
        """PAUSED -> ACTIVE. A next execution already in the past is due at the next tick."""
        return self._transition(intent_id, {IntentStatus.PAUSED}, IntentStatus.ACTIVE, owner_id)

    def cancel_intent(self, intent_id: str, owner_id: str | None = None) -> Intent | None:
        """ACTIVE/PAUSED/FAILED -> CANCELLED (terminal)."""
        return self._transition(
            intent_id,
            {IntentStatus.ACTIVE, IntentStatus.PAUSED, IntentStatus.FAILED},
            IntentStatus.CANCELLED,
            owner_id,
        )

    def reactivate_intent(
        self, intent_id: str, owner_id: str | None = None, now: datetime | None = None
    ) -> Intent | None:
        """FAILED -> ACTIVE, due immediately."""
        return self._transition(
            intent_id,
            {IntentStatus.FAILED},
            IntentStatus.ACTIVE,
            owner_id,
            next_execution=now or utcnow(),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_intent(self, intent_id: str) -> Intent | None:
        """Get intent by ID."""
        with self.session_factory() as session:
            row = session.get(IntentDB, intent_id)
            if row is None:
                return None
            return self._load_intent_from_db(row, row.owner.wallet_address)

    def list_intents(
        self, owner_id: str | None = None, status: IntentStatus | None = None
    ) -> list[Intent]:
        """Intents, newest first."""
        with self.session_factory() as session:
            query = session.query(IntentDB, UserDB.wallet_address).join(
                UserDB, IntentDB.owner_id == UserDB.id
            )
            if owner_id is not None:
                query = query.filter(IntentDB.owner_id == owner_id)
            if status is not None:
                query = query.filter(IntentDB.status == status.value)
            rows = query.order_by(IntentDB.created_at.desc()).all()
            return [self._load_intent_from_db(row, wallet) for row, wallet in rows]

    def list_executions(self, intent_id: str, limit: int = 10) -> list[ExecutionRecord]:
        """Execution history of an intent, newest first."""
        with self.session_factory() as session:
            rows = (
                session.query(ExecutionDB)
                .filter(ExecutionDB.intent_id == intent_id)
                .order_by(ExecutionDB.executed_at.desc())
                .limit(limit)
                .all()
            )
            return [
                ExecutionRecord(
                    id=r.id,
                    intent_id=r.intent_id,
                    status=ExecutionStatus(r.status),
                    amount=Decimal(r.amount),
                    executed_at=r.executed_at,
                    tx_hash=r.tx_hash,
                    gas_used=r.gas_used,
                    gas_price=r.gas_price,
                    block_number=r.block_number,
                    payout_id=r.payout_id,
                    provider_status=r.provider_status,
                    error_message=r.error_message,
                    delay_reason=r.delay_reason,
                )
                for r in rows
            ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(
        self,
        intent_id: str,
        allowed_from: set[IntentStatus],
        to: IntentStatus,
        owner_id: str | None,
        **fields: object,
    ) -> Intent | None:
        with self.session_factory() as session, session.begin():
            row = self._get_owned(session, intent_id, owner_id)
            if row is None:
                return None

            current = IntentStatus(row.status)
            if current not in allowed_from:
                logger.warning(
                    f"Intent {intent_id} cannot move {current.value} -> {to.value}",
                    extra={"intent_id": intent_id},
                )
                return None

            row.status = to.value
            for key, value in fields.items():
                setattr(row, key, value)
            session.flush()
            intent = self._load_intent_from_db(row, row.owner.wallet_address)

        logger.info(
            f"Intent {intent_id[:8]}: {current.value} -> {to.value}",
            extra={"intent_id": intent_id, "from": current.value, "to": to.value},
        )
        return intent

    @staticmethod
    def _get_owned(session: Session, intent_id: str, owner_id: str | None) -> IntentDB | None:
        row = session.get(IntentDB, intent_id)
        if row is None or (owner_id is not None and row.owner_id != owner_id):
            logger.warning(f"Intent not found: {intent_id}")
            return None
        return row

    @staticmethod
    def _load_intent_from_db(row: IntentDB, owner_wallet: str) -> Intent:
        """Load Intent from database record.

        Raises:
            ValueError: On an unknown frequency or status.
            pydantic.ValidationError: On malformed off-ramp details.
        """
        return Intent(
            id=row.id,
            owner_id=row.owner_id,
            owner_wallet=owner_wallet,
            amount=Decimal(row.amount),
            token=row.token,
            token_address=row.token_address,
            frequency=Frequency(row.frequency),
            safety_buffer=Decimal(row.safety_buffer or 0),
            recipient=row.recipient,
            name=row.name,
            description=row.description,
            max_gas_price=row.max_gas_price,
            time_window_start=row.time_window_start,
            time_window_end=row.time_window_end,
            is_off_ramp=bool(row.is_off_ramp),
            off_ramp=OffRampDetails.model_validate(row.off_ramp_details) if row.off_ramp_details else None,
            status=IntentStatus(row.status),
            next_execution=row.next_execution,
            last_execution=row.last_execution,
            execution_count=row.execution_count or 0,
            failure_count=row.failure_count or 0,
            on_chain_id=row.on_chain_id,
            created_at=row.created_at,
        )
