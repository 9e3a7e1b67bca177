"""
User lookup — the narrow, read-only view of the accounts table that the
job system is allowed to use.
"""
from __future__ import annotations

import abc
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import UserRow
from database.session import session_scope
from models.schemas import UserContact


class UserDirectory(abc.ABC):
    """Resolve a user id to the address and name an email needs."""

    @abc.abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserContact]:
        ...

    async def get_users(self, user_ids: list[str]) -> dict[str, UserContact]:
        found = {}
        for user_id in user_ids:
            user = await self.get_user(user_id)
            if user:
                found[user_id] = user
        return found


class SqlUserDirectory(UserDirectory):

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    async def get_user(self, user_id: str) -> Optional[UserContact]:
        async with session_scope(self._sessions) as db:
            row = await db.get(UserRow, user_id)
            return _row_to_contact(row) if row else None

    async def get_users(self, user_ids: list[str]) -> dict[str, UserContact]:
        if not user_ids:
            return {}
        async with session_scope(self._sessions) as db:
            result = await db.execute(select(UserRow).where(UserRow.id.in_(user_ids)))
            return {row.id: _row_to_contact(row) for row in result.scalars()}


class InMemoryUserDirectory(UserDirectory):
    """Dict-backed directory for development and tests."""

    def __init__(self, users: list[UserContact] = None):
        self._users = {u.id: u for u in users or []}

    def add(self, user: UserContact) -> None:
        self._users[user.id] = user

    async def get_user(self, user_id: str) -> Optional[UserContact]:
        return self._users.get(user_id)


def _row_to_contact(row: UserRow) -> UserContact:
    return UserContact(id=row.id, email=row.email, username=row.username)
