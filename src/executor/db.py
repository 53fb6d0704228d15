"""Storage backend for workflows and generated video records.

PostgreSQL when SCRIPTFORGE_DATABASE_URL is a postgres URL, otherwise a
local SQLite file. Documents are stored whole as JSON; only the columns
needed for ownership, listing and run locking are lifted out. Raw SQL with
`%s` placeholders, rewritten to `?` for SQLite.

Postgres connections come from a small ThreadedConnectionPool. SQLite opens
one connection per statement, so each FastAPI worker thread gets its own.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("SCRIPTFORGE_DATABASE_URL", "")

SQLITE_PATH = Path(
    os.environ.get("SCRIPTFORGE_SQLITE_PATH", "")
    or Path(__file__).parent / "scriptforge.db"
)

FETCH_MODES = ("none", "one", "all", "rowcount")

_initialized = False
_pg_pool = None


def _is_postgres() -> bool:
    return DATABASE_URL.startswith("postgres")


def _pool():
    global _pg_pool
    if _pg_pool is None:
        import psycopg2.pool

        _pg_pool = psycopg2.pool.ThreadedConnectionPool(1, 5, dsn=DATABASE_URL)
        logger.info("Opened PostgreSQL pool for workflow storage")
    return _pg_pool


@contextmanager
def get_connection() -> Iterator[Any]:
    """Yield a connection; rolled back if the block raises."""
    if _is_postgres():
        pool = _pool()
        conn = pool.getconn()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)
        return

    conn = sqlite3.connect(str(SQLITE_PATH), timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _cursor(conn):
    if _is_postgres():
        from psycopg2.extras import RealDictCursor

        return conn.cursor(cursor_factory=RealDictCursor)
    return conn.cursor()


def _json_dumps(data: Any) -> str:
    """JSON text for a document column."""
    return json.dumps({} if data is None else data, ensure_ascii=False, default=str)


def _json_loads(value: Any) -> Any:
    """Document column back to Python. JSONB arrives already decoded."""
    if not value:
        return {}
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def execute(sql: str, params: tuple = (), fetch: str = "none") -> Any:
    """Run one statement.

    fetch: "none" (commit, return None), "rowcount" (commit, return the
    number of affected rows), "one" (a dict or None), "all" (list of dicts).
    """
    if fetch not in FETCH_MODES:
        raise ValueError(f"Unknown fetch mode: {fetch}")
    if not _is_postgres():
        sql = sql.replace("%s", "?")

    with get_connection() as conn:
        cursor = _cursor(conn)
        cursor.execute(sql, params)

        if fetch == "one":
            row = cursor.fetchone()
            return dict(row) if row is not None else None
        if fetch == "all":
            return [dict(row) for row in cursor.fetchall()]

        affected = cursor.rowcount
        conn.commit()
        return affected if fetch == "rowcount" else None


def _schema(postgres: bool) -> str:
    text = "VARCHAR(100)" if postgres else "TEXT"
    timestamp = "TIMESTAMPTZ" if postgres else "TEXT"
    document = "JSONB" if postgres else "TEXT"
    flag = "BOOLEAN NOT NULL DEFAULT FALSE" if postgres else "INTEGER NOT NULL DEFAULT 0"
    return f"""
    CREATE TABLE IF NOT EXISTS scriptforge_workflows (
        workflow_id {text} PRIMARY KEY,
        user_id {text} NOT NULL,
        name TEXT NOT NULL DEFAULT '',
        status {text} NOT NULL DEFAULT 'idle',
        document {document} NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        run_lock {text},
        locked_at {timestamp},
        cancel_requested {flag},
        created_at {timestamp},
        updated_at {timestamp}
    );

    CREATE INDEX IF NOT EXISTS idx_workflows_user
        ON scriptforge_workflows(user_id, updated_at);

    CREATE TABLE IF NOT EXISTS generated_videos (
        video_id {text} PRIMARY KEY,
        workflow_id {text} NOT NULL,
        user_id {text} NOT NULL,
        agent_type {text} NOT NULL,
        prompt_key {text} NOT NULL,
        prompt_index INTEGER NOT NULL DEFAULT 0,
        status {text} NOT NULL DEFAULT 'completed',
        document {document} NOT NULL,
        generated_at {timestamp},
        UNIQUE (workflow_id, agent_type, prompt_key, user_id)
    );
    """


def init_db() -> None:
    """Create the tables once per process."""
    global _initialized
    if _initialized:
        return

    postgres = _is_postgres()
    with get_connection() as conn:
        if postgres:
            cursor = conn.cursor()
            cursor.execute(_schema(postgres=True))
        else:
            conn.executescript(_schema(postgres=False))
        conn.commit()

    _initialized = True
    where = "PostgreSQL" if postgres else f"SQLite at {SQLITE_PATH}"
    logger.info(f"Workflow storage ready ({where})")


def reset_initialization() -> None:
    """Forget that tables were created (used when the SQLite path changes)."""
    global _initialized
    _initialized = False
