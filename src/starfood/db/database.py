# manages connection to db, provides helper methods internal to db package
import asyncio
import os.path
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from sqlite3 import Row
from typing import AsyncIterator, Optional

import aiosqlite

from starfood import config
from starfood.utils.logger import get_logger

_logger = get_logger(__name__)

_HERE = os.path.dirname(os.path.abspath(__file__))

DB_PATH = config.DB_PATH
DB_INIT_SCRIPTS = [
    os.path.join(_HERE, "schema.sql"),
    os.path.join(_HERE, "seed.sql"),
]

_initialized = False
_init_lock = asyncio.Lock()

# money columns are NUMERIC; bind Decimal as its exact text form
sqlite3.register_adapter(Decimal, str)


def to_timestamp(when: Optional[datetime] = None) -> str:
    """
    Fixed-width UTC ISO timestamp used for every stored date, so that
    plain string comparison in SQL orders them chronologically.
    Naive datetimes are taken to be UTC.
    """
    when = when or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc).isoformat(timespec="microseconds")


def like_pattern(text: str) -> str:
    """Substring pattern for ``LIKE ? ESCAPE '\\'`` with ``%`` and ``_`` matched literally."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


async def _init_db(conn: aiosqlite.Connection) -> None:
    for script in DB_INIT_SCRIPTS:
        if not os.path.exists(script) or os.path.getsize(script) == 0:
            continue
        _logger.info(f"Initializing database with script {os.path.basename(script)}...")
        with open(script, "r") as f:
            await conn.executescript(f.read())


async def _table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    cur = await conn.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name = ?;
        """,
        (table_name,),
    )
    row = await cur.fetchone()
    await cur.close()
    return row is not None


@asynccontextmanager
async def connect() -> AsyncIterator[aiosqlite.Connection]:
    """Async context manager yielding an aiosqlite connection with FK enabled.

    The connection runs in autocommit mode; use ``transaction()`` for anything that
    must be all-or-nothing. Ensures the database is initialized (tables and seed
    data) on first use.
    """
    global _initialized
    db_dir = os.path.dirname(DB_PATH)
    if db_dir and not os.path.isdir(db_dir):
        os.makedirs(db_dir, exist_ok=True)

    conn = await aiosqlite.connect(DB_PATH, timeout=config.DB_TIMEOUT, isolation_level=None)
    conn.row_factory = Row
    await conn.execute("PRAGMA foreign_keys = ON;")

    if not _initialized:
        async with _init_lock:
            if not _initialized:
                exists = await _table_exists(conn, "users")
                if not exists:
                    _logger.info(f"Initializing database at {DB_PATH}...")
                    await _init_db(conn)
                _initialized = True
    try:
        yield conn
    finally:
        await conn.close()


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Connection wrapped in ``BEGIN IMMEDIATE`` ... ``COMMIT``.

    The write lock is taken up front, so concurrent transactions are serialized
    by SQLite. Any exception rolls everything back and is re-raised.
    """
    async with connect() as conn:
        await conn.execute("BEGIN IMMEDIATE;")
        try:
            yield conn
        except BaseException:
            await conn.execute("ROLLBACK;")
            raise
        await conn.execute("COMMIT;")


async def fetch_one(conn: aiosqlite.Connection, sql: str, params=()) -> Optional[Row]:
    cur = await conn.execute(sql, params)
    row = await cur.fetchone()
    await cur.close()
    return row


async def fetch_all(conn: aiosqlite.Connection, sql: str, params=()) -> list:
    cur = await conn.execute(sql, params)
    rows = await cur.fetchall()
    await cur.close()
    return list(rows)
