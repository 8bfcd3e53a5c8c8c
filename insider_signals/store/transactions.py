"""Reads against the Filing Store.

Only completed filings are visible. Every loader returns TradeRecord
objects (one per transaction x reporting owner) so the scoring code never
sees raw rows.
"""

from __future__ import annotations

from typing import Any, List, Optional, Tuple

from insider_signals.models import TradeRecord
from insider_signals.store.filters import QueryFilter, qualifying_purchase_filter

_TRADE_SELECT = """
SELECT
    it.id AS transaction_id,
    it.filing_id,
    f.issuer_id,
    i.cik AS issuer_cik,
    i.name AS issuer_name,
    i.trading_symbol,
    pr.person_id,
    p.name AS person_name,
    it.transaction_date,
    it.transaction_code,
    it.acquired_disposed_code,
    it.shares_transacted,
    it.price_per_share,
    it.transaction_value,
    it.shares_owned_following,
    it.direct_or_indirect,
    it.is_10b5_1_plan,
    pr.is_officer,
    pr.is_director,
    pr.is_ten_percent_owner,
    pr.officer_title
FROM insider_transactions it
JOIN filings f ON f.id = it.filing_id
JOIN filing_types ft ON ft.id = f.filing_type_id
JOIN issuers i ON i.id = f.issuer_id
JOIN person_relationships pr ON pr.filing_id = f.id
JOIN persons p ON p.id = pr.person_id
"""


def _row_to_trade(r: Any) -> TradeRecord:
    shares = float(r["shares_transacted"] or 0.0)
    price = float(r["price_per_share"] or 0.0)
    value = r["transaction_value"]
    # Ingestion normally fills transaction_value; fall back to shares x price.
    value_f = float(value) if value is not None else shares * price
    following = r["shares_owned_following"]
    return TradeRecord(
        transaction_id=int(r["transaction_id"]),
        filing_id=int(r["filing_id"]),
        issuer_id=int(r["issuer_id"]),
        issuer_cik=str(r["issuer_cik"]),
        issuer_name=str(r["issuer_name"]),
        trading_symbol=r["trading_symbol"],
        person_id=int(r["person_id"]),
        person_name=str(r["person_name"]),
        transaction_date=str(r["transaction_date"])[:10],
        transaction_code=str(r["transaction_code"] or "").upper(),
        acquired_disposed_code=str(r["acquired_disposed_code"] or "").upper(),
        shares_transacted=shares,
        price_per_share=price,
        transaction_value=value_f,
        shares_owned_following=float(following) if following is not None else None,
        direct_or_indirect=r["direct_or_indirect"],
        is_10b5_1_plan=bool(r["is_10b5_1_plan"]),
        is_officer=bool(r["is_officer"]),
        is_director=bool(r["is_director"]),
        is_ten_percent_owner=bool(r["is_ten_percent_owner"]),
        officer_title=r["officer_title"],
    )


def _select_trades(conn: Any, flt: QueryFilter, *, order_by: str, limit: Optional[int] = None) -> List[TradeRecord]:
    where, params = flt.render()
    sql = f"{_TRADE_SELECT} WHERE {where} ORDER BY {order_by}"
    if limit is not None:
        sql += " LIMIT ?"
        params = params + [int(limit)]
    rows = conn.execute(sql, params).fetchall()
    return [_row_to_trade(r) for r in rows]


def load_purchases(
    conn: Any,
    *,
    date_from: str,
    date_to: Optional[str] = None,
    issuer_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[TradeRecord]:
    """Qualifying open-market purchases with transaction_date in [date_from, date_to]."""
    flt = qualifying_purchase_filter()
    if date_to is None:
        flt.gte("it.transaction_date", date_from)
    else:
        flt.between("it.transaction_date", date_from, date_to)
    if issuer_id is not None:
        flt.eq("f.issuer_id", int(issuer_id))
    return _select_trades(
        conn,
        flt,
        order_by="it.transaction_date DESC, it.transaction_value DESC, it.id ASC",
        limit=limit,
    )


def load_cluster_candidates(conn: Any, *, since: str, limit: int) -> List[Tuple[int, str]]:
    """(issuer_id, transaction_date) pairs with >= 2 distinct purchasers since `since`.

    Newest first; the limit bounds the work of one cycle.
    """
    flt = qualifying_purchase_filter().gte("it.transaction_date", since)
    where, params = flt.render()
    rows = conn.execute(
        f"""
        SELECT f.issuer_id AS issuer_id, it.transaction_date AS transaction_date,
               COUNT(DISTINCT pr.person_id) AS n_insiders
        FROM insider_transactions it
        JOIN filings f ON f.id = it.filing_id
        JOIN person_relationships pr ON pr.filing_id = f.id
        WHERE {where}
        GROUP BY f.issuer_id, it.transaction_date
        HAVING COUNT(DISTINCT pr.person_id) >= 2
        ORDER BY it.transaction_date DESC, n_insiders DESC, f.issuer_id ASC
        LIMIT ?
        """,
        params + [int(limit)],
    ).fetchall()
    return [(int(r["issuer_id"]), str(r["transaction_date"])[:10]) for r in rows]


def load_scorable_trades(conn: Any, *, since: str, limit: int) -> List[TradeRecord]:
    """Non-award trades with positive shares and price since `since`."""
    flt = (
        QueryFilter()
        .eq("f.status", "completed")
        .ne("it.transaction_code", "A")
        .gt("it.shares_transacted", 0)
        .is_not_null("it.price_per_share")
        .gt("it.price_per_share", 0)
        .gte("it.transaction_date", since)
    )
    return _select_trades(conn, flt, order_by="it.transaction_date DESC, it.id ASC", limit=limit)


def load_recent_form4_purchases(conn: Any, *, filed_since: str, limit: int) -> List[TradeRecord]:
    """Qualifying purchases on Form 4 filings filed at or after `filed_since`."""
    flt = qualifying_purchase_filter().eq("ft.type_code", "4").gte("f.filed_at", filed_since)
    return _select_trades(conn, flt, order_by="it.transaction_date DESC, it.id ASC", limit=limit)


def has_prior_purchase(conn: Any, *, person_id: int, issuer_id: int, date_from: str, date_to: str) -> bool:
    """Negative existence check used by first-buy detection.

    Same criteria as a candidate: qualifying purchase on a completed Form 4.
    """
    flt = (
        qualifying_purchase_filter()
        .eq("ft.type_code", "4")
        .eq("f.issuer_id", int(issuer_id))
        .eq("pr.person_id", int(person_id))
        .between("it.transaction_date", date_from, date_to)
    )
    where, params = flt.render()
    row = conn.execute(
        f"""
        SELECT 1 AS hit
        FROM insider_transactions it
        JOIN filings f ON f.id = it.filing_id
        JOIN filing_types ft ON ft.id = f.filing_type_id
        JOIN person_relationships pr ON pr.filing_id = f.id
        WHERE {where}
        LIMIT 1
        """,
        params,
    ).fetchone()
    return row is not None
