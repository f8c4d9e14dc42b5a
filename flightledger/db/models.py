"""
FlightLedger - SQLAlchemy ORM Models
Local mirror of tracked flight state
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class FlightRecordRow(Base):
    """Current state of one tracked flight instance (one departure date)."""

    __tablename__ = "flight_records"

    # Identity (tracking key)
    carrier_code: Mapped[str] = mapped_column(String(8), primary_key=True)
    flight_number: Mapped[str] = mapped_column(String(16), primary_key=True)
    departure_date: Mapped[str] = mapped_column(String(10), primary_key=True)
    departure_airport: Mapped[str] = mapped_column(String(8), primary_key=True)
    arrival_airport: Mapped[str] = mapped_column(String(8), primary_key=True, default="")

    # Current state
    status_code: Mapped[Optional[str]] = mapped_column(String(8))
    out_utc: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    off_utc: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    on_utc: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    in_utc: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    departure_delay_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    arrival_delay_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    snapshot: Mapped[Optional[dict]] = mapped_column(JSON().with_variant(JSONB(), "postgresql"))

    # Ledger sync
    committed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tx_ref: Mapped[Optional[str]] = mapped_column(String(128))
    block_number: Mapped[Optional[int]] = mapped_column(BigInteger)
    commit_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    dead_lettered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    tracked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_flight_records_pending", "committed", "dead_lettered", "next_attempt_at"),
        Index("idx_flight_records_departure_date", "departure_date"),
        Index("idx_flight_records_flight", "carrier_code", "flight_number"),
    )
