from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


POLYMARKET_PLATFORM_ID = 1
KALSHI_PLATFORM_ID = 2


class PlatformType(str, Enum):
    CHAIN = "chain"
    CENTRALIZED = "centralized"


SEEDED_PLATFORMS: tuple[tuple[int, str, str], ...] = (
    (POLYMARKET_PLATFORM_ID, "polymarket", PlatformType.CHAIN.value),
    (KALSHI_PLATFORM_ID, "kalshi", PlatformType.CENTRALIZED.value),
)


class EventStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    CANCELED = "canceled"


class OptionType(str, Enum):
    WIN = "win"
    DRAW = "draw"
    LOSE = "lose"


class ContractEventType(str, Enum):
    DEPOSIT_SUCCESS = "DepositSuccess"
    BET_PLACED = "BetPlaced"
    SETTLED = "Settled"


class OrderStatus(str, Enum):
    PENDING_PLACE = "pending_place"
    PLACED = "placed"
    SETTLABLE = "settlable"
    SETTLED = "settled"
    WITHDRAW_REQUESTED = "withdraw_requested"
    WITHDRAWN = "withdrawn"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Platform(Base):
    __tablename__ = "platforms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default=PlatformType.CHAIN.value)
    api_url: Mapped[str | None] = mapped_column(String(256), nullable=True)
    contract_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rpc_url: Mapped[str | None] = mapped_column(String(256), nullable=True)
    api_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=600)
    current_api_usage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_hot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("platform_id", "platform_event_id", name="uq_events_platform_event"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    event_uuid: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="sports")
    platform_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    platform_event_id: Mapped[str] = mapped_column(String(128), nullable=False)
    canonical_key: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolve_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    options: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    result: Mapped[str | None] = mapped_column(String(32), nullable=True)
    result_source: Mapped[str | None] = mapped_column(String(256), nullable=True)
    result_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EventStatus.ACTIVE.value, index=True)
    is_hot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class EventOdds(Base):
    __tablename__ = "event_odds"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    event_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    unique_event_platform: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    platform_id: Mapped[int] = mapped_column(Integer, nullable=False)
    option_name: Mapped[str] = mapped_column(String(64), nullable=False)
    option_type: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    price: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    liquidity: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    volume: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CanonicalEvent(Base):
    __tablename__ = "canonical_events"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    canonical_key: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    sport_type: Mapped[str] = mapped_column(String(64), nullable=False, default="sports", index=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    home_team: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    away_team: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    match_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EventStatus.ACTIVE.value, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class EventPlatformLink(Base):
    __tablename__ = "event_platform_links"
    __table_args__ = (
        UniqueConstraint("canonical_event_id", "platform_id", name="uq_links_canonical_platform"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    canonical_event_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    platform_id: Mapped[int] = mapped_column(Integer, nullable=False)
    event_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ContractEvent(Base):
    __tablename__ = "contract_events"
    # One deposit per contract order; other event types may repeat the id.
    __table_args__ = (
        Index(
            "uq_contract_events_deposit_order",
            "contract_order_id",
            unique=True,
            sqlite_where=text("event_type = 'DepositSuccess'"),
            postgresql_where=text("event_type = 'DepositSuccess'"),
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    contract_order_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    order_uuid: Mapped[str | None] = mapped_column(String(66), nullable=True)
    user_wallet: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    deposit_amount: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    fund_currency: Mapped[str] = mapped_column(String(16), nullable=False, default="USDC")
    tx_hash: Mapped[str] = mapped_column(String(66), unique=True, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    event_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    order_uuid: Mapped[str] = mapped_column(String(66), unique=True, nullable=False)
    user_wallet: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    platform_id: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_order_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    bet_option: Mapped[str] = mapped_column(String(64), nullable=False)
    bet_amount: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False)
    fund_currency: Mapped[str] = mapped_column(String(16), nullable=False, default="USDC")
    locked_odds: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False)
    expected_profit: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    actual_profit: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    platform_fee: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    manage_fee: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    gas_fee: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    fund_lock_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    settlement_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=OrderStatus.PENDING_PLACE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class SettlementRecord(Base):
    __tablename__ = "settlement_records"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    order_uuid: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    user_wallet: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    settlement_amount: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    manage_fee: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    gas_fee: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    tx_hash: Mapped[str] = mapped_column(String(66), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
