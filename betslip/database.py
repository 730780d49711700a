import json
import logging
from typing import Any, Generator

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from betslip.schema import SubmissionPost
from betslip.utils import get_settings

_engine: AsyncEngine | None = None

log = logging.getLogger(__name__)


class DatabaseInsertError(Exception):
    """A submission row could not be written."""


async def open_database_conn_pool():
    global _engine
    if _engine:
        return

    log.info("Opening database connection pool")
    _engine = create_async_engine(
        get_settings().sqlite_db,
        pool_pre_ping=True,
    )
    log.info("Database connection pool opened")


def get_engine() -> Generator[AsyncEngine, Any, None]:
    global _engine

    if not _engine:
        raise ValueError(
            "Database engine is not set. Call open_database_conn_pool first."
        )

    yield _engine


async def close_database_conn_pool():
    global _engine
    if _engine:
        log.info("Closing database connection pool")
        await _engine.dispose()
        _engine = None
        log.info("Database connection pool closed")


async def create_tables(engine: AsyncEngine):
    async with engine.begin() as conn:
        log.info("Creating database tables if they do not exist")
        await conn.execute(
            text(
                """
CREATE TABLE IF NOT EXISTS betting_submissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    sports TEXT NOT NULL,
    teams TEXT NOT NULL,
    payment_confirmation_url TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""
            )
        )


async def init_db():
    """Creates the database tables."""
    global _engine
    try:
        await create_tables(_engine)
    except ConnectionRefusedError:
        log.error(
            "Database connection refused. Either the database is not "
            "running, is starting up, or the database connection is not "
            "configured correctly. Please restart the server."
        )
        return

    log.info("Database tables created or already exist")


class SubmissionTable:
    """Writes betting entries to `betting_submissions`."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def insert(self, entry: SubmissionPost, payment_confirmation_url: str) -> int:
        """
        Insert one entry and return its id.

        :raises DatabaseInsertError: on a duplicate email or any database error
        """
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    text(
                        """
INSERT INTO betting_submissions (
    name, email, sports, teams, payment_confirmation_url
) VALUES (
    :name, :email, :sports, :teams, :payment_confirmation_url
)
"""
                    ),
                    {
                        "name": entry.name,
                        "email": entry.email,
                        "sports": json.dumps(entry.sports),
                        "teams": json.dumps(entry.teams),
                        "payment_confirmation_url": payment_confirmation_url,
                    },
                )
        except IntegrityError as e:
            log.warning(f"Rejected submission for {entry.email}: {e.orig}")
            raise DatabaseInsertError(str(e.orig)) from e
        except SQLAlchemyError as e:
            log.error(f"Could not insert submission for {entry.email}: {e}")
            raise DatabaseInsertError(str(e)) from e

        log.debug(f"Inserted submission {result.lastrowid} for {entry.email}")
        return result.lastrowid


__all__ = [
    "DatabaseInsertError",
    "SubmissionTable",
    "open_database_conn_pool",
    "close_database_conn_pool",
    "get_engine",
    "create_tables",
    "init_db",
]
