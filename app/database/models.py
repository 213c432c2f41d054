from __future__ import annotations

from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    JSON,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

from app.utils.money import MONEY_SCALE, PERCENT_SCALE, to_money

Base = declarative_base()

# IMPORTANT (SQLite autoincrement):
# SQLite only auto-increments when the PRIMARY KEY column is exactly "INTEGER PRIMARY KEY".
# Using BIGINT for an autoincrement PK will NOT bind to rowid and will fail inserts (id stays NULL).
AUTO_PK = Integer().with_variant(BigInteger, "postgresql")

TRADE_PENDING = "pending"
TRADE_COMPLETED = "completed"

OUTCOME_WIN = "win"
OUTCOME_LOSS = "loss"
OUTCOME_DRAW = "draw"

DIRECTIONS = ("up", "down")
TRADE_TYPES = ("buy", "sell")


class Money(TypeDecorator):
    """Fixed-point Decimal column.

    PostgreSQL stores NUMERIC(20, scale). SQLite has no exact decimal type
    (NUMERIC degrades to REAL), so there we keep the canonical text form.
    Values always come back as Decimal quantized to `scale`.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, scale: int = MONEY_SCALE) -> None:
        super().__init__()
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(48))
        return dialect.type_descriptor(Numeric(20, self.scale, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        d = to_money(value, self.scale)
        if dialect.name == "sqlite":
            return format(d, "f")
        return d

    def process_result_value(self, value, dialect) -> Decimal | None:
        if value is None:
            return None
        return to_money(value, self.scale)


# ---------------------------
# Ledger
# ---------------------------

class Account(Base):
    __tablename__ = "accounts"

    account_id = Column(String(64), primary_key=True)
    username = Column(String(128), nullable=False, default="")
    email = Column(String(256), nullable=True, unique=True)

    balance = Column(Money(), nullable=False, default=Decimal("0"))

    created_at_ms = Column(BigInteger, nullable=False)


# ---------------------------
# Assets (read-only snapshot source)
# ---------------------------

class Asset(Base):
    __tablename__ = "assets"

    asset_id = Column(String(64), primary_key=True)  # e.g. "bitcoin"
    name = Column(String(128), nullable=False)
    symbol = Column(String(32), nullable=False)
    price = Column(Money(), nullable=True)
    updated_at_ms = Column(BigInteger, nullable=True)


# ---------------------------
# Trades
# ---------------------------

class Trade(Base):
    __tablename__ = "trades"

    trade_id = Column(String(64), primary_key=True)
    account_id = Column(String(64), ForeignKey("accounts.account_id"), nullable=False, index=True)

    # Snapshot taken at creation; intentionally not a FK to assets.
    asset_id = Column(String(64), nullable=False)
    asset_name = Column(String(128), nullable=False)
    asset_symbol = Column(String(32), nullable=False)

    trade_type = Column(String(8), nullable=False, default="buy")  # buy / sell
    direction = Column(String(8), nullable=False)  # up / down

    amount_wagered = Column(Money(), nullable=False)
    entry_price = Column(Money(), nullable=False)

    # Unix epoch milliseconds.
    created_at_ms = Column(BigInteger, nullable=False)
    delivery_deadline_ms = Column(BigInteger, nullable=False)
    resolved_at_ms = Column(BigInteger, nullable=True)

    status = Column(String(16), nullable=False, default=TRADE_PENDING)  # pending / completed
    outcome = Column(String(8), nullable=True)  # win / loss / draw

    gain_percentage = Column(Money(PERCENT_SCALE), nullable=True)
    final_amount = Column(Money(), nullable=True)
    simulated_final_price = Column(Money(), nullable=True)
    current_trade_value = Column(Money(), nullable=True)
    current_gain_loss_percentage = Column(Money(PERCENT_SCALE), nullable=True)

    account = relationship("Account")

    __table_args__ = (
        CheckConstraint("delivery_deadline_ms > created_at_ms", name="ck_trades_deadline_after_create"),
        CheckConstraint("status IN ('pending', 'completed')", name="ck_trades_status"),
        Index("ix_trades_status_deadline", "status", "delivery_deadline_ms"),
        Index("ix_trades_account_created", "account_id", "created_at_ms"),
    )


# ---------------------------
# Audit
# ---------------------------

class SystemEvent(Base):
    __tablename__ = "system_events"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    event_type = Column(String(64), nullable=False, index=True)
    severity = Column(String(16), nullable=False, default="INFO")

    correlation_id = Column(String(64), nullable=True, index=True)

    payload = Column(JSON, nullable=False, default=dict)
    time_ms = Column(BigInteger, nullable=False, index=True)

    __table_args__ = (Index("ix_system_events_type_time", "event_type", "time_ms"),)
