"""
SQLAlchemy ORM models — Cross-database compatible.

Supports: PostgreSQL, SQLite.

Only the tables the job system touches are mapped here:
  - users / email_preferences are owned by the API and read-only for us
  - <digest>_recap_queue tables are the eligibility queues
  - recap_scan_runs records which trigger windows were already seeded

String primary keys (uuid hex) keep the schema free of database-specific
sequences and UUID types.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from models.schemas import DigestType


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ──────────────────────────────────────────────────────────────
#  Users (read-only)
# ──────────────────────────────────────────────────────────────

class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    username: Mapped[str] = mapped_column(String(128), nullable=False)


class EmailPreferenceRow(Base):
    __tablename__ = "email_preferences"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
    )
    monthly_recap: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    weekly_recap: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    yearly_recap: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# ──────────────────────────────────────────────────────────────
#  Eligibility queues
# ──────────────────────────────────────────────────────────────

class _RecapQueueColumns:
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class MonthlyRecapQueueRow(_RecapQueueColumns, Base):
    __tablename__ = "monthly_recap_queue"

    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        Index("idx_monthly_recap_queue_processed", "processed"),
    )


class WeeklyRecapQueueRow(_RecapQueueColumns, Base):
    __tablename__ = "weekly_recap_queue"

    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        Index("idx_weekly_recap_queue_processed", "processed"),
    )


class YearlyRecapQueueRow(_RecapQueueColumns, Base):
    __tablename__ = "yearly_recap_queue"

    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        Index("idx_yearly_recap_queue_processed", "processed"),
    )


RecapQueueRow = MonthlyRecapQueueRow | WeeklyRecapQueueRow | YearlyRecapQueueRow

RECAP_QUEUE_TABLES: dict[DigestType, type] = {
    DigestType.MONTHLY: MonthlyRecapQueueRow,
    DigestType.WEEKLY: WeeklyRecapQueueRow,
    DigestType.YEARLY: YearlyRecapQueueRow,
}

# email_preferences column that opts a user into each digest
PREFERENCE_COLUMNS = {
    DigestType.MONTHLY: EmailPreferenceRow.monthly_recap,
    DigestType.WEEKLY: EmailPreferenceRow.weekly_recap,
    DigestType.YEARLY: EmailPreferenceRow.yearly_recap,
}


# ──────────────────────────────────────────────────────────────
#  Scan runs
# ──────────────────────────────────────────────────────────────

class ScanRunRow(Base):
    __tablename__ = "recap_scan_runs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    digest_type: Mapped[str] = mapped_column(String(16), nullable=False)
    window_key: Mapped[str] = mapped_column(String(32), nullable=False)
    seeded_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("digest_type", "window_key", name="uq_recap_scan_runs_window"),
    )
