#!/usr/bin/env python3
"""
Database Migration — Create the job system's tables from SQLAlchemy models.

Usage:
    python scripts/migrate_db.py

    # Check status only (no changes):
    python scripts/migrate_db.py --check

users and email_preferences normally belong to the API's migrations; they
are created here only when missing, which is what local setups need.
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def _existing_tables(conn, dialect: str) -> list[str]:
    from sqlalchemy import text

    if dialect == "postgresql":
        result = await conn.execute(text(
            "SELECT tablename FROM pg_tables WHERE schemaname = 'public'"
        ))
    else:  # sqlite
        result = await conn.execute(text(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
        ))
    return [row[0] for row in result.fetchall()]


async def run_migration(config_path: str = None, check_only: bool = False):
    from config.settings import load_settings
    settings = load_settings(config_path)

    from database.models import Base
    from database.session import close_db, create_engine, init_db

    engine = create_engine(settings.database)
    dialect = engine.dialect.name

    try:
        if check_only:
            print(f"Database: {dialect}")
            print(f"Tables defined: {', '.join(Base.metadata.tables.keys())}")

            async with engine.connect() as conn:
                existing = await _existing_tables(conn, dialect)
            print(f"Tables existing: {', '.join(existing) or '(none)'}")

            missing = set(Base.metadata.tables.keys()) - set(existing)
            if missing:
                print(f"Tables MISSING: {', '.join(sorted(missing))}")
                print("Run without --check to create them.")
            else:
                print("All tables exist. ✓")
            return

        print("Running database migration...")
        await init_db(engine)

        async with engine.connect() as conn:
            tables = await _existing_tables(conn, dialect)
        print(f"Tables created/verified: {', '.join(tables)}")
        print("Migration complete. ✓")
    finally:
        await close_db(engine)


def main():
    parser = argparse.ArgumentParser(description="Database migration")
    parser.add_argument("--config", help="Path to settings YAML")
    parser.add_argument("--check", action="store_true", help="Check status only")
    args = parser.parse_args()

    asyncio.run(run_migration(config_path=args.config, check_only=args.check))


if __name__ == "__main__":
    main()
