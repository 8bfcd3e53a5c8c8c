"""Write helpers shared by the signal processors."""

from __future__ import annotations

from typing import Any, Dict, Sequence

from insider_signals.store.filters import QueryFilter

_CHUNK = 500

# table -> column holding the lifecycle key
_KEYED_TABLES = {
    "important_trade_signals": "transaction_id",
    "first_buy_signals": "transaction_id",
}


def existing_by_transaction(conn: Any, table: str, *, since_date: str) -> Dict[int, bool]:
    """transaction_id -> is_active for active rows and rows inside the window."""
    if table not in _KEYED_TABLES:
        raise ValueError(f"Unsupported signal table: {table}")
    rows = conn.execute(
        f"""
        SELECT s.transaction_id, s.is_active
        FROM {table} s
        JOIN insider_transactions it ON it.id = s.transaction_id
        WHERE s.is_active = 1 OR it.transaction_date >= ?
        """,
        (since_date,),
    ).fetchall()
    return {int(r["transaction_id"]): bool(r["is_active"]) for r in rows}


def retire_keys(conn: Any, table: str, keys: Sequence[int]) -> int:
    """Set is_active=0 for the given lifecycle keys. Returns rows changed."""
    col = _KEYED_TABLES.get(table)
    if col is None:
        raise ValueError(f"Unsupported signal table: {table}")
    n = 0
    keys = list(keys)
    for i in range(0, len(keys), _CHUNK):
        chunk = keys[i : i + _CHUNK]
        where, params = QueryFilter().in_(col, chunk).is_true("is_active").render()
        cur = conn.execute(f"UPDATE {table} SET is_active=0 WHERE {where}", params)
        n += cur.rowcount
    return n


def purge_inactive(conn: Any, table: str, *, detected_before: str) -> int:
    """Delete retired rows detected before the cutoff timestamp."""
    if table not in _KEYED_TABLES:
        raise ValueError(f"Unsupported signal table: {table}")
    where, params = QueryFilter().eq("is_active", 0).lt("detected_at", detected_before).render()
    cur = conn.execute(f"DELETE FROM {table} WHERE {where}", params)
    return cur.rowcount
