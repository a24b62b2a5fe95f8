"""Database schema and storage using SQLAlchemy."""

import uuid
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    create_engine,
)
from sqlalchemy.orm import DeclarativeBase, Session, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from flowpay.config import get_settings
from flowpay.utils.clock import utcnow

class DecimalString(TypeDecorator):
    """Exact `Decimal` stored as text.

    SQLite keeps `Numeric` as a binary float, which would corrupt amounts
    with up to 18 fractional digits (ERC-20 max decimals).
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format(Decimal(value), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


AMOUNT = DecimalString()


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class UserDB(Base):
    """Intent owners. Identity and authentication live elsewhere."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    wallet_address = Column(String(42), unique=True, nullable=False, index=True)
    telegram_chat_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    intents = relationship("IntentDB", back_populates="owner")


class IntentDB(Base):
    """Standing payment instructions."""

    __tablename__ = "intents"

    id = Column(String(36), primary_key=True, default=_new_id)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    recipient = Column(String(255), nullable=True)
    amount = Column(AMOUNT, nullable=False)
    token = Column(String(32), nullable=False)
    token_address = Column(String(42), nullable=False)
    frequency = Column(String(16), nullable=False)  # ONCE, DAILY, WEEKLY, MONTHLY, YEARLY
    safety_buffer = Column(AMOUNT, nullable=False, default=0)
    max_gas_price = Column(BigInteger, nullable=True)  # wei
    time_window_start = Column(String(5), nullable=True)  # "HH:MM"
    time_window_end = Column(String(5), nullable=True)
    is_off_ramp = Column(Boolean, default=False, nullable=False)
    off_ramp_details = Column(JSON, nullable=True)  # {"phone_number": ..., "country": ...}
    status = Column(
        String(16), default="ACTIVE", nullable=False, index=True
    )  # ACTIVE, PAUSED, CANCELLED, FAILED
    next_execution = Column(DateTime, nullable=True, index=True)
    last_execution = Column(DateTime, nullable=True)
    execution_count = Column(Integer, default=0, nullable=False)
    failure_count = Column(Integer, default=0, nullable=False)
    on_chain_id = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("UserDB", back_populates="intents")
    executions = relationship(
        "ExecutionDB", back_populates="intent", order_by="ExecutionDB.executed_at"
    )


class ExecutionDB(Base):
    """Append-only audit trail, one row per evaluation outcome."""

    __tablename__ = "executions"

    id = Column(String(36), primary_key=True, default=_new_id)
    intent_id = Column(String(36), ForeignKey("intents.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False, index=True)  # SUCCESS, FAILED, DELAYED
    amount = Column(AMOUNT, nullable=False)
    executed_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    # SUCCESS (on-chain)
    tx_hash = Column(String(66), nullable=True, index=True)
    gas_used = Column(BigInteger, nullable=True)
    gas_price = Column(BigInteger, nullable=True)
    block_number = Column(BigInteger, nullable=True)
    # SUCCESS (off-ramp)
    payout_id = Column(String(255), nullable=True, index=True)
    provider_status = Column(String(64), nullable=True)
    # FAILED / DELAYED
    error_message = Column(Text, nullable=True)
    delay_reason = Column(String(255), nullable=True)

    intent = relationship("IntentDB", back_populates="executions")


class NotificationDB(Base):
    """In-app notifications."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(32), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    # NOTE: `metadata` is reserved on SQLAlchemy declarative models.
    data = Column(JSON, nullable=True)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


# Database engine and session management
_engine = None
_SessionLocal: sessionmaker | None = None


def build_engine(db_url: str):
    """Create an engine; in-memory SQLite shares one connection across sessions."""
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        db_url,
        echo=False,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False} if "sqlite" in db_url else {},
    )


def init_db(db_url: str | None = None) -> sessionmaker:
    """Initialize database connection and create tables."""
    global _engine, _SessionLocal

    if db_url is None:
        settings = get_settings()
        db_url = settings.db_url

    _engine = build_engine(db_url)
    Base.metadata.create_all(bind=_engine)
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _SessionLocal


def get_session_factory() -> sessionmaker:
    """Get the session factory created by `init_db`."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal


def get_session() -> Session:
    """Get a database session."""
    return get_session_factory()()

