# manages connection to db, provides helper methods internal to db package
import asyncio
import os.path
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from sqlite3 import Row

import aiosqlite

from feirasmart.utils.config import get_settings
from feirasmart.utils.errors import TransientError
from feirasmart.utils.logger import get_logger

_logger = get_logger(__name__)

_HERE = os.path.dirname(os.path.abspath(__file__))
SCHEMA_SCRIPT = os.path.join(_HERE, "schema.sql")
SEED_SCRIPT = os.path.join(_HERE, "seed.sql")

DB_PATH = get_settings().db_path
DB_TIMEOUT = get_settings().db_timeout
LOAD_SEED = get_settings().seed_demo_data

_initialized = False
_init_lock = asyncio.Lock()

# sqlite reports contention through OperationalError with these messages
_TRANSIENT_MARKERS = ("locked", "busy", "unable to open database")


def now_iso() -> str:
    return datetime.now().isoformat(timespec="microseconds")


def _is_transient(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return any(marker in msg for marker in _TRANSIENT_MARKERS)


async def _init_db(conn: aiosqlite.Connection) -> None:
    scripts = [SCHEMA_SCRIPT]
    if LOAD_SEED:
        scripts.append(SEED_SCRIPT)
    for script in scripts:
        if not os.path.exists(script) or os.path.getsize(script) == 0:
            continue
        _logger.info(f"Initializing database with script {os.path.basename(script)}...")
        with open(script, "r", encoding="utf-8") as f:
            await conn.executescript(f.read())
    await conn.commit()


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
async def connect() -> aiosqlite.Connection:
    """Async context manager yielding an aiosqlite connection with FK enabled.

    Ensures the database is initialized (tables and seed data) on first use.
    Lock and busy errors raised while the connection is open are re-raised as
    TransientError.
    """
    global _initialized
    db_dir = os.path.dirname(DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    try:
        conn = await aiosqlite.connect(DB_PATH, timeout=DB_TIMEOUT)
    except sqlite3.OperationalError as e:
        raise TransientError("Database unavailable, try again.") from e
    conn.row_factory = Row
    try:
        await conn.execute("PRAGMA foreign_keys = ON;")
        if not _initialized:
            async with _init_lock:
                if not _initialized:
                    if not await _table_exists(conn, "users"):
                        _logger.info("Initializing database...")
                        await _init_db(conn)
                    _initialized = True
        yield conn
    except sqlite3.OperationalError as e:
        if _is_transient(e):
            _logger.warning(f"Transient database failure: {e}")
            raise TransientError("Database busy, try again.") from e
        raise
    finally:
        await conn.close()


@asynccontextmanager
async def transaction() -> aiosqlite.Connection:
    """Like connect(), but everything runs inside one write transaction.

    Commits when the block exits normally, rolls back on any exception.
    """
    async with connect() as conn:
        await conn.execute("BEGIN IMMEDIATE;")
        try:
            yield conn
        except BaseException:
            await conn.rollback()
            raise
        await conn.commit()
