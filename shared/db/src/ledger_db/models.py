"""SQLAlchemy ORM models for the trade ledger database.

Supports 3 tables:
- aggregated_trades: one row per closed position lifecycle, unique per
  (account_id, provenance_hash)
- sync_runs: outcome of every sync run
- sync_quota_usage: per-account daily sync counters
"""

from datetime import date, datetime, UTC
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    String,
    Text,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    Index,
    UniqueConstraint,
    JSON,
    BigInteger,
    Integer,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def generate_uuid() -> str:
    """Generate UUID string for primary keys."""
    return str(uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class SyncRunRecord(Base):
    """Persisted outcome of one sync run for an account."""

    __tablename__ = "sync_runs"

    run_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # running, succeeded, partial, failed
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    window_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    window_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    events_fetched: Mapped[int] = mapped_column(Integer, default=0)
    events_dropped: Mapped[int] = mapped_column(Integer, default=0)
    trades_aggregated: Mapped[int] = mapped_column(Integer, default=0)
    trades_rejected: Mapped[int] = mapped_column(Integer, default=0)
    trades_inserted: Mapped[int] = mapped_column(Integer, default=0)
    open_lifecycles: Mapped[int] = mapped_column(Integer, default=0)
    incomplete_lifecycles: Mapped[int] = mapped_column(Integer, default=0)
    # Opening time of the earliest lifecycle left open, else window_end
    resume_from: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    aggregated_total_pnl: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8))
    venue_reported_total_pnl: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8))
    reconciliation_delta: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8))
    within_tolerance: Mapped[Optional[bool]] = mapped_column(Boolean)
    error: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_sync_runs_account_id", "account_id"),
        Index("ix_sync_runs_account_started", "account_id", "started_at"),
    )


class AggregatedTradeRecord(Base):
    """One aggregated trade derived from a closed position lifecycle.

    provenance_hash is the SHA-256 of the sorted source event ids; the unique
    constraint on (account_id, provenance_hash) makes re-inserting the same
    lifecycle a no-op.
    """

    __tablename__ = "aggregated_trades"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provenance_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    sync_run_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("sync_runs.run_id", ondelete="SET NULL")
    )
    instrument: Mapped[str] = mapped_column(String(50), nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)  # long, short
    entry_price: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    exit_price: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    total_quantity: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    realized_pnl: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    total_fees: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    funding: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    net_pnl: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    result: Mapped[str] = mapped_column(String(10), nullable=False)  # win, loss, breakeven
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    hold_time_minutes: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4))
    entry_order_type: Mapped[Optional[str]] = mapped_column(String(20))
    exit_order_type: Mapped[Optional[str]] = mapped_column(String(20))
    is_maker: Mapped[Optional[bool]] = mapped_column(Boolean)
    fee_assets: Mapped[Optional[list[str]]] = mapped_column(JSON)
    source_event_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("account_id", "provenance_hash", name="uq_aggregated_trade_provenance"),
        Index("ix_aggregated_trades_account_closed_at", "account_id", "closed_at"),
        Index("ix_aggregated_trades_instrument", "instrument"),
    )


class SyncQuotaUsage(Base):
    """Number of sync runs an account started on a given UTC day."""

    __tablename__ = "sync_quota_usage"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    run_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("account_id", "usage_date", name="uq_sync_quota_account_date"),
    )
