"""
Database layer — eligibility queues and the user directory.

Quick start:
  from database import create_engine, create_session_factory, init_db
  engine = create_engine(settings.database)
  await init_db(engine)
  store = EligibilityStore(create_session_factory(engine), users)
"""
from database.models import (
    Base, UserRow, EmailPreferenceRow, ScanRunRow,
    MonthlyRecapQueueRow, WeeklyRecapQueueRow, YearlyRecapQueueRow,
)
from database.session import (
    create_engine, create_session_factory, session_scope, init_db, close_db,
)
from database.users import UserDirectory, SqlUserDirectory, InMemoryUserDirectory
from database.eligibility import EligibilityStore, PendingRecap

__all__ = [
    # ORM models
    "Base", "UserRow", "EmailPreferenceRow", "ScanRunRow",
    "MonthlyRecapQueueRow", "WeeklyRecapQueueRow", "YearlyRecapQueueRow",
    # Session management
    "create_engine", "create_session_factory", "session_scope", "init_db", "close_db",
    # Users
    "UserDirectory", "SqlUserDirectory", "InMemoryUserDirectory",
    # Eligibility
    "EligibilityStore", "PendingRecap",
]
