"""
Eligibility queue store — which users are due a recurring digest.

One table per digest type (monthly / weekly / yearly). A row is:
  - inserted when a user becomes due (preference sync, or window seeding)
  - read by that digest's scanner while processed = false
  - flipped processed = true exactly once, after its job was enqueued
  - never deleted here

Scanners are the only readers and writers; workers never touch these tables.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import (
    PREFERENCE_COLUMNS, RECAP_QUEUE_TABLES, EmailPreferenceRow, ScanRunRow, UserRow,
)
from database.session import session_scope
from database.users import UserDirectory
from models.schemas import DigestType, UserContact

logger = structlog.get_logger()


@dataclass(frozen=True)
class PendingRecap:
    """An unprocessed eligibility row, joined to its user when it still exists."""
    row_id: str
    user_id: str
    created_at: datetime
    user: Optional[UserContact] = None


class EligibilityStore:

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        users: UserDirectory,
    ):
        self._sessions = sessions
        self._users = users

    # ── Reads ──────────────────────────────────────────────

    async def fetch_pending(self, digest: DigestType) -> list[PendingRecap]:
        """All processed = false rows for a digest, oldest first, with users joined."""
        table = RECAP_QUEUE_TABLES[digest]
        async with session_scope(self._sessions) as db:
            stmt = (
                select(table)
                .where(table.processed.is_(False))
                .order_by(table.created_at, table.id)
            )
            rows = list((await db.execute(stmt)).scalars())

        users = await self._users.get_users(sorted({r.user_id for r in rows}))
        return [
            PendingRecap(
                row_id=r.id,
                user_id=r.user_id,
                created_at=r.created_at,
                user=users.get(r.user_id),
            )
            for r in rows
        ]

    async def is_processed(self, digest: DigestType, row_id: str) -> Optional[bool]:
        table = RECAP_QUEUE_TABLES[digest]
        async with session_scope(self._sessions) as db:
            row = await db.get(table, row_id)
            return row.processed if row else None

    # ── Writes ─────────────────────────────────────────────

    async def add(self, digest: DigestType, user_id: str) -> str:
        """Insert a pending row for a user. Returns the row id."""
        table = RECAP_QUEUE_TABLES[digest]
        row = table(user_id=user_id)
        async with session_scope(self._sessions) as db:
            db.add(row)
            await db.flush()
            return row.id

    async def mark_processed(
        self, digest: DigestType, row_id: str, now: datetime = None,
    ) -> bool:
        """
        Flip one row to processed. Returns False when the row was already
        processed (or is gone), so a row can never be flipped twice.
        """
        table = RECAP_QUEUE_TABLES[digest]
        stamp = now or datetime.now(timezone.utc)
        async with session_scope(self._sessions) as db:
            result = await db.execute(
                update(table)
                .where(table.id == row_id, table.processed.is_(False))
                .values(processed=True, processed_at=stamp)
            )
            return result.rowcount == 1

    async def seed_window(self, digest: DigestType, window_key: str) -> Optional[int]:
        """
        Queue every opted-in user for a digest, once per trigger window.

        Users that already have a pending row are skipped. Returns the number
        of rows inserted, or None when this window was seeded before.
        """
        table = RECAP_QUEUE_TABLES[digest]
        pref_column = PREFERENCE_COLUMNS[digest]

        try:
            async with session_scope(self._sessions) as db:
                seen = await db.execute(
                    select(ScanRunRow.id).where(
                        ScanRunRow.digest_type == digest.value,
                        ScanRunRow.window_key == window_key,
                    )
                )
                if seen.scalar_one_or_none() is not None:
                    return None

                run = ScanRunRow(digest_type=digest.value, window_key=window_key)
                db.add(run)
                await db.flush()

                pending = select(table.user_id).where(table.processed.is_(False))
                stmt = (
                    select(UserRow.id)
                    .join(EmailPreferenceRow, EmailPreferenceRow.user_id == UserRow.id)
                    .where(pref_column.is_(True))
                    .where(UserRow.id.not_in(pending))
                    .order_by(UserRow.id)
                )
                user_ids = list((await db.execute(stmt)).scalars())
                for user_id in user_ids:
                    db.add(table(user_id=user_id))
                run.seeded_count = len(user_ids)
        except IntegrityError:
            # Another scanner instance won the race for this window
            logger.info("recap_window_already_seeded",
                        digest=digest.value, window=window_key)
            return None

        logger.info("recap_window_seeded",
                    digest=digest.value, window=window_key, rows=len(user_ids))
        return len(user_ids)
