from __future__ import annotations

import itertools
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Sequence
from urllib.parse import urlparse

from insider_signals.schema import get_schema_sql


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


def detect_dialect(dsn: str) -> str:
    """'postgres' for postgres:// or postgresql:// DSNs, otherwise 'sqlite'."""
    scheme = urlparse((dsn or "").strip()).scheme.lower()
    return "postgres" if scheme in ("postgres", "postgresql") else "sqlite"


# Quoted literals are matched first so '?' and '%' inside them are not placeholders.
_PLACEHOLDER_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|\?|%")


def _qmark_to_pct(sql: str) -> str:
    """Rewrite sqlite '?' placeholders as psycopg2 '%s'.

    psycopg2 treats every '%' as a format char once params are bound, so
    literal percent signs (in LIKE patterns, say) are doubled.
    """

    def _sub(m: "re.Match[str]") -> str:
        tok = m.group(0)
        if tok == "?":
            return "%s"
        return tok.replace("%", "%%")

    return _PLACEHOLDER_RE.sub(_sub, sql)


class PostgresCursor:
    """psycopg2 cursor that accepts qmark SQL."""

    def __init__(self, cur: Any):
        self._cur = cur

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> "PostgresCursor":
        self._cur.execute(_qmark_to_pct(sql), tuple(params or ()))
        return self

    def executemany(self, sql: str, rows: Sequence[Sequence[Any]]) -> "PostgresCursor":
        self._cur.executemany(_qmark_to_pct(sql), [tuple(r) for r in rows])
        return self

    @property
    def rowcount(self) -> int:
        return max(int(self._cur.rowcount or 0), 0)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._cur.fetchall())

    def __getattr__(self, name: str) -> Any:
        # fetchone / fetchall / close pass straight through.
        return getattr(self._cur, name)


class PostgresConnection:
    """Enough of the sqlite3.Connection surface for this package."""

    dialect = "postgres"

    def __init__(self, raw: Any):
        self._raw = raw

    def cursor(self) -> PostgresCursor:
        return PostgresCursor(self._raw.cursor())

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> PostgresCursor:
        return self.cursor().execute(sql, params)

    def executemany(self, sql: str, rows: Sequence[Sequence[Any]]) -> PostgresCursor:
        return self.cursor().executemany(sql, rows)

    def commit(self) -> None:
        self._raw.commit()

    def rollback(self) -> None:
        self._raw.rollback()

    def close(self) -> None:
        self._raw.close()


def _open_postgres(dsn: str) -> PostgresConnection:
    try:
        import psycopg2
        import psycopg2.extras
    except ImportError as e:
        raise RuntimeError("A Postgres DSN needs psycopg2 (pip install psycopg2-binary)") from e
    # RealDictCursor rows support r["col"] like sqlite3.Row.
    return PostgresConnection(psycopg2.connect(dsn, cursor_factory=psycopg2.extras.RealDictCursor))


def _open_sqlite(dsn: str) -> sqlite3.Connection:
    path = dsn[len("sqlite:///") :] if dsn.lower().startswith("sqlite:///") else dsn
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    # Detection, dispatch and the API run as separate processes on one file.
    for pragma in (
        "journal_mode=WAL",
        "synchronous=NORMAL",
        "busy_timeout=5000",
        "temp_store=MEMORY",
        "foreign_keys=ON",
    ):
        conn.execute(f"PRAGMA {pragma}")
    return conn


@contextmanager
def connect(db_dsn: str) -> Iterator[Any]:
    """Open a connection for one unit of batch work.

    Postgres for postgres:// DSNs, otherwise a SQLite file. Commits when
    the block exits cleanly, rolls back and re-raises otherwise.
    """
    dsn = (db_dsn or "").strip()
    conn = _open_postgres(dsn) if detect_dialect(dsn) == "postgres" else _open_sqlite(dsn)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def dialect_of(conn: Any) -> str:
    return getattr(conn, "dialect", "sqlite")


_savepoint_ids = itertools.count(1)


@contextmanager
def unit_of_work(conn: Any, name: str = "uow") -> Iterator[Any]:
    """Run one item's writes as a unit.

    Uses a SAVEPOINT so a failing item rolls back only its own statements
    and the surrounding batch keeps going. On success the savepoint is
    released and the connection committed, so finished items survive a
    later crash of the cycle.
    """
    sp = f"sp_{name}_{next(_savepoint_ids)}"
    conn.execute(f"SAVEPOINT {sp}")
    try:
        yield conn
    except Exception:
        conn.execute(f"ROLLBACK TO SAVEPOINT {sp}")
        conn.execute(f"RELEASE SAVEPOINT {sp}")
        raise
    conn.execute(f"RELEASE SAVEPOINT {sp}")
    conn.commit()


def row_to_dict(row: Any) -> Dict[str, Any]:
    if row is None:
        return {}
    if isinstance(row, dict):
        return dict(row)
    return {k: row[k] for k in row.keys()}


# Any fixed key works as long as every process running init_db uses the same one.
SCHEMA_LOCK_KEY = 7_341_002


def init_db(db_dsn: str) -> None:
    """Create tables and views if missing, then apply column migrations.

    Safe to run from several processes at once: Postgres serializes on a
    transaction-scoped advisory lock, SQLite on its database write lock.
    """
    dialect = detect_dialect(db_dsn)
    _debug(f"init_db dialect={dialect} dsn={db_dsn}")
    with connect(db_dsn) as conn:
        if dialect == "postgres":
            # Released by the commit at the end of connect().
            conn.execute("SELECT pg_advisory_xact_lock(?)", (SCHEMA_LOCK_KEY,))
        _exec_schema(conn, get_schema_sql(dialect), dialect=dialect)
        _migrate(conn, dialect=dialect)


def _exec_schema(conn: Any, ddl: str, *, dialect: str) -> None:
    if dialect != "postgres":
        conn.executescript(ddl)
        return
    # No ';' appears inside a literal in the schema, so a plain split is enough.
    for stmt in filter(None, (s.strip() for s in ddl.split(";"))):
        conn.execute(stmt)


def _has_column(conn: Any, table: str, col: str, *, dialect: str) -> bool:
    if dialect == "postgres":
        r = conn.execute(
            """
            SELECT 1
            FROM information_schema.columns
            WHERE table_schema='public'
              AND table_name=?
              AND column_name=?
            LIMIT 1
            """,
            (table, col),
        ).fetchone()
        return r is not None

    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(r["name"] == col for r in rows)


def _migrate(conn: Any, *, dialect: str) -> None:
    """Lightweight forward-only migrations for databases created before a column existed."""
    # Queue: first-buy reference and retry bookkeeping were added after the first release.
    queue_cols = [
        ("first_buy_id", "INTEGER"),
        ("last_attempt_at", "TEXT"),
    ]
    for col, ctype in queue_cols:
        if not _has_column(conn, "notification_queue", col, dialect=dialect):
            _debug(f"migrate: notification_queue.{col}")
            conn.execute(f"ALTER TABLE notification_queue ADD COLUMN {col} {ctype}")

    if not _has_column(conn, "user_alert_preferences", "notification_email", dialect=dialect):
        _debug("migrate: user_alert_preferences.notification_email")
        conn.execute("ALTER TABLE user_alert_preferences ADD COLUMN notification_email TEXT")

    if not _has_column(conn, "important_trade_signals", "first_buy_score", dialect=dialect):
        _debug("migrate: important_trade_signals.first_buy_score")
        conn.execute(
            "ALTER TABLE important_trade_signals ADD COLUMN first_buy_score INTEGER NOT NULL DEFAULT 0"
        )

    if not _has_column(conn, "issuer_signal_metrics", "buy_sell_ratio", dialect=dialect):
        _debug("migrate: issuer_signal_metrics.buy_sell_ratio")
        conn.execute(
            "ALTER TABLE issuer_signal_metrics ADD COLUMN buy_sell_ratio DOUBLE PRECISION NOT NULL DEFAULT 0"
            if dialect == "postgres"
            else "ALTER TABLE issuer_signal_metrics ADD COLUMN buy_sell_ratio REAL NOT NULL DEFAULT 0"
        )
