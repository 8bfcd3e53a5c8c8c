"""Read-side contract for the public API service.

These queries only touch the precomputed signal tables and views; no
scoring happens at read time.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from insider_signals.db import row_to_dict
from insider_signals.store.filters import QueryFilter
from insider_signals.util.normalization import normalize_cik


def active_clusters(
    conn: Any,
    *,
    min_strength: int = 0,
    since: Optional[str] = None,
    limit: int = 50,
    include_trades: bool = True,
) -> List[Dict[str, Any]]:
    """Active clusters, newest then strongest first."""
    flt = QueryFilter().gte("signal_strength", int(min_strength))
    if since:
        flt.gte("transaction_date", since)
    where, params = flt.render()
    rows = conn.execute(
        f"""
        SELECT * FROM vw_cluster_buy_details
        WHERE {where}
        ORDER BY transaction_date DESC, signal_strength DESC, cluster_id ASC
        LIMIT ?
        """,
        params + [int(limit)],
    ).fetchall()
    clusters = [row_to_dict(r) for r in rows]
    if include_trades:
        for c in clusters:
            c["trades"] = [
                row_to_dict(t)
                for t in conn.execute(
                    """
                    SELECT transaction_id, person_id, person_name, transaction_date,
                           shares_transacted, price_per_share, transaction_value,
                           is_officer, is_director, is_ten_percent_owner, officer_title
                    FROM cluster_buy_trades
                    WHERE cluster_id = ?
                    ORDER BY transaction_value DESC, id ASC
                    """,
                    (c["cluster_id"],),
                ).fetchall()
            ]
    return clusters


def important_trades(
    conn: Any,
    *,
    min_score: int,
    purchases_only: bool = False,
    since: Optional[str] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    flt = QueryFilter().gte("importance_score", int(min_score))
    if purchases_only:
        flt.is_true("is_purchase")
    if since:
        flt.gte("transaction_date", since)
    where, params = flt.render()
    rows = conn.execute(
        f"""
        SELECT * FROM vw_important_trades_details
        WHERE {where}
        ORDER BY importance_score DESC, transaction_date DESC, signal_id ASC
        LIMIT ?
        """,
        params + [int(limit)],
    ).fetchall()
    return [row_to_dict(r) for r in rows]


def first_buys(
    conn: Any,
    *,
    since: Optional[str] = None,
    min_score: int = 0,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    flt = QueryFilter().gte("importance_score", int(min_score))
    if since:
        flt.gte("transaction_date", since)
    where, params = flt.render()
    rows = conn.execute(
        f"""
        SELECT * FROM vw_first_buy_details
        WHERE {where}
        ORDER BY transaction_date DESC, importance_score DESC, signal_id ASC
        LIMIT ?
        """,
        params + [int(limit)],
    ).fetchall()
    return [row_to_dict(r) for r in rows]


def signal_history(conn: Any, *, since: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM signal_history WHERE date >= ? ORDER BY date ASC",
        (since,),
    ).fetchall()
    return [row_to_dict(r) for r in rows]


def issuer_metrics(conn: Any, issuer_cik: str, *, since: str) -> List[Dict[str, Any]]:
    cik = normalize_cik(issuer_cik)
    if cik is None:
        return []
    rows = conn.execute(
        """
        SELECT m.*
        FROM issuer_signal_metrics m
        JOIN issuers i ON i.id = m.issuer_id
        WHERE i.cik = ? AND m.date >= ?
        ORDER BY m.date ASC
        """,
        (cik, since),
    ).fetchall()
    return [row_to_dict(r) for r in rows]
