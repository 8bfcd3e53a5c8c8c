from __future__ import annotations

import time
from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from insider_signals.config import Config
from insider_signals.db import unit_of_work
from insider_signals.util.time import SystemClock

# Reported when there are buys and no sells on a day.
RATIO_NO_SELLS = 999.0


def _debug(msg: str) -> None:
    print(f"[metrics] {msg}")


def buy_sell_ratio(buy_value: float, sell_value: float) -> float:
    if sell_value > 0:
        return buy_value / sell_value
    if buy_value > 0:
        return RATIO_NO_SELLS
    return 0.0


def _f(v: Any) -> float:
    return float(v) if v is not None else 0.0


def _i(v: Any) -> int:
    return int(v) if v is not None else 0


def _activity_by_issuer_day(conn: Any, date_from: str, date_to: str) -> List[Any]:
    return conn.execute(
        """
        SELECT
            f.issuer_id AS issuer_id,
            it.transaction_date AS date,
            SUM(CASE WHEN it.transaction_code='P' AND it.acquired_disposed_code='A' THEN 1 ELSE 0 END) AS buys,
            SUM(CASE WHEN it.transaction_code='S' AND it.acquired_disposed_code='D' THEN 1 ELSE 0 END) AS sells,
            SUM(CASE WHEN it.transaction_code='P' AND it.acquired_disposed_code='A' THEN it.transaction_value ELSE 0 END) AS buy_value,
            SUM(CASE WHEN it.transaction_code='S' AND it.acquired_disposed_code='D' THEN it.transaction_value ELSE 0 END) AS sell_value
        FROM insider_transactions it
        JOIN filings f ON f.id = it.filing_id
        WHERE f.status = 'completed'
          AND it.price_per_share IS NOT NULL
          AND it.price_per_share > 0
          AND it.transaction_date BETWEEN ? AND ?
        GROUP BY f.issuer_id, it.transaction_date
        """,
        (date_from, date_to),
    ).fetchall()


def _clusters_by_issuer_day(conn: Any, date_from: str, date_to: str) -> List[Any]:
    return conn.execute(
        """
        SELECT issuer_id, transaction_date AS date, total_insiders, total_value
        FROM cluster_buy_signals
        WHERE is_active = 1 AND transaction_date BETWEEN ? AND ?
        """,
        (date_from, date_to),
    ).fetchall()


def _first_buys_by_issuer_day(conn: Any, date_from: str, date_to: str) -> List[Any]:
    return conn.execute(
        """
        SELECT issuer_id, transaction_date AS date, COUNT(*) AS n
        FROM first_buy_signals
        WHERE is_active = 1 AND transaction_date BETWEEN ? AND ?
        GROUP BY issuer_id, transaction_date
        """,
        (date_from, date_to),
    ).fetchall()


def _important_by_issuer_day(conn: Any, date_from: str, date_to: str) -> List[Any]:
    return conn.execute(
        """
        SELECT f.issuer_id AS issuer_id, it.transaction_date AS date,
               its.importance_score, its.is_purchase
        FROM important_trade_signals its
        JOIN insider_transactions it ON it.id = its.transaction_id
        JOIN filings f ON f.id = its.filing_id
        WHERE its.is_active = 1 AND it.transaction_date BETWEEN ? AND ?
        """,
        (date_from, date_to),
    ).fetchall()


def compute_daily_metrics(conn: Any, days: List[str]) -> Tuple[Dict[str, Dict[str, Any]], Dict[Tuple[int, str], Dict[str, Any]]]:
    """Aggregate signal and transaction activity.

    Returns (per_day, per_issuer_day). per_day has an entry for every
    requested day, zeros included; per_issuer_day only has days with
    activity.
    """
    date_from, date_to = min(days), max(days)

    day: Dict[str, Dict[str, Any]] = {
        d: {
            "cluster_sizes": [],
            "total_cluster_value": 0.0,
            "buys": 0,
            "sells": 0,
            "buy_value": 0.0,
            "sell_value": 0.0,
            "first_buys": 0,
            "important_scores": [],
        }
        for d in days
    }
    issuer: Dict[Tuple[int, str], Dict[str, Any]] = defaultdict(
        lambda: {
            "buys": 0,
            "sells": 0,
            "buy_value": 0.0,
            "sell_value": 0.0,
            "cluster_events": 0,
            "first_buy_events": 0,
            "buy_scores": [],
        }
    )

    for r in _activity_by_issuer_day(conn, date_from, date_to):
        d = str(r["date"])[:10]
        key = (int(r["issuer_id"]), d)
        for target in (day.get(d), issuer[key]):
            if target is None:
                continue
            target["buys"] += _i(r["buys"])
            target["sells"] += _i(r["sells"])
            target["buy_value"] += _f(r["buy_value"])
            target["sell_value"] += _f(r["sell_value"])

    for r in _clusters_by_issuer_day(conn, date_from, date_to):
        d = str(r["date"])[:10]
        if d in day:
            day[d]["cluster_sizes"].append(_i(r["total_insiders"]))
            day[d]["total_cluster_value"] += _f(r["total_value"])
        issuer[(int(r["issuer_id"]), d)]["cluster_events"] += 1

    for r in _first_buys_by_issuer_day(conn, date_from, date_to):
        d = str(r["date"])[:10]
        if d in day:
            day[d]["first_buys"] += _i(r["n"])
        issuer[(int(r["issuer_id"]), d)]["first_buy_events"] += _i(r["n"])

    for r in _important_by_issuer_day(conn, date_from, date_to):
        d = str(r["date"])[:10]
        if d in day:
            day[d]["important_scores"].append(_i(r["importance_score"]))
        if r["is_purchase"]:
            issuer[(int(r["issuer_id"]), d)]["buy_scores"].append(_i(r["importance_score"]))

    per_day: Dict[str, Dict[str, Any]] = {}
    for d, a in day.items():
        sizes = a["cluster_sizes"]
        scores = a["important_scores"]
        per_day[d] = {
            "cluster_buys_count": len(sizes),
            "avg_cluster_size": (sum(sizes) / len(sizes)) if sizes else 0.0,
            "max_cluster_size": max(sizes) if sizes else 0,
            "total_cluster_value": a["total_cluster_value"],
            "total_insider_buys": a["buys"],
            "total_insider_sells": a["sells"],
            "total_buy_value": a["buy_value"],
            "total_sell_value": a["sell_value"],
            "buy_sell_ratio": buy_sell_ratio(a["buy_value"], a["sell_value"]),
            "first_buys_count": a["first_buys"],
            "important_trades_count": len(scores),
            "avg_importance_score": (sum(scores) / len(scores)) if scores else 0.0,
        }

    per_issuer: Dict[Tuple[int, str], Dict[str, Any]] = {}
    for key, a in issuer.items():
        scores = a["buy_scores"]
        per_issuer[key] = {
            "insider_buys_count": a["buys"],
            "insider_sells_count": a["sells"],
            "cluster_events": a["cluster_events"],
            "first_buy_events": a["first_buy_events"],
            "total_buy_value": a["buy_value"],
            "total_sell_value": a["sell_value"],
            "buy_sell_ratio": buy_sell_ratio(a["buy_value"], a["sell_value"]),
            "avg_buy_importance": (sum(scores) / len(scores)) if scores else 0.0,
            "max_buy_importance": max(scores) if scores else 0,
        }

    return per_day, per_issuer


_HISTORY_COLS = (
    "cluster_buys_count",
    "avg_cluster_size",
    "max_cluster_size",
    "total_cluster_value",
    "total_insider_buys",
    "total_insider_sells",
    "total_buy_value",
    "total_sell_value",
    "buy_sell_ratio",
    "first_buys_count",
    "important_trades_count",
    "avg_importance_score",
)

_ISSUER_COLS = (
    "insider_buys_count",
    "insider_sells_count",
    "cluster_events",
    "first_buy_events",
    "total_buy_value",
    "total_sell_value",
    "buy_sell_ratio",
    "avg_buy_importance",
    "max_buy_importance",
)


def _upsert_sql(table: str, key_cols: Tuple[str, ...], cols: Tuple[str, ...]) -> str:
    all_cols = key_cols + cols + ("calculated_at",)
    marks = ",".join("?" for _ in all_cols)
    updates = ", ".join(f"{c}=excluded.{c}" for c in cols + ("calculated_at",))
    return (
        f"INSERT INTO {table} ({', '.join(all_cols)}) VALUES ({marks}) "
        f"ON CONFLICT({', '.join(key_cols)}) DO UPDATE SET {updates}"
    )


def process_historical_metrics(conn: Any, cfg: Config, *, clock: Optional[SystemClock] = None) -> Dict[str, Any]:
    """Refresh signal_history and issuer_signal_metrics for the last N days."""
    clock = clock or SystemClock()
    t0 = time.monotonic()
    now_iso = clock.now_iso()
    today = clock.today()
    days = [(today - timedelta(days=i)).isoformat() for i in range(cfg.METRICS_LOOKBACK_DAYS)]
    if not days:
        return {"processor": "historical_metrics", "days_processed": 0, "issuer_days": 0, "failed": 0, "duration_ms": 0}

    _debug(f"Start days={len(days)} from={days[-1]} to={days[0]}")
    per_day, per_issuer = compute_daily_metrics(conn, days)

    existing_days = {
        str(r["date"])
        for r in conn.execute("SELECT date FROM signal_history WHERE date BETWEEN ? AND ?", (days[-1], days[0])).fetchall()
    }

    summary: Dict[str, Any] = {
        "processor": "historical_metrics",
        "days_processed": 0,
        "new": 0,
        "updated": 0,
        "issuer_days": 0,
        "failed": 0,
    }

    history_sql = _upsert_sql("signal_history", ("date",), _HISTORY_COLS)
    for d in days:
        m = per_day[d]
        try:
            with unit_of_work(conn, "history"):
                conn.execute(history_sql, (d,) + tuple(m[c] for c in _HISTORY_COLS) + (now_iso,))
        except Exception as e:
            summary["failed"] += 1
            _debug(f"ERROR date={d}: {e}")
            continue
        summary["days_processed"] += 1
        summary["updated" if d in existing_days else "new"] += 1

    issuer_sql = _upsert_sql("issuer_signal_metrics", ("issuer_id", "date"), _ISSUER_COLS)
    for (issuer_id, d), m in sorted(per_issuer.items()):
        try:
            with unit_of_work(conn, "issuer_metrics"):
                conn.execute(issuer_sql, (issuer_id, d) + tuple(m[c] for c in _ISSUER_COLS) + (now_iso,))
        except Exception as e:
            summary["failed"] += 1
            _debug(f"ERROR issuer_id={issuer_id} date={d}: {e}")
            continue
        summary["issuer_days"] += 1

    summary["duration_ms"] = int((time.monotonic() - t0) * 1000)
    _debug(
        f"Done days={summary['days_processed']} new={summary['new']} updated={summary['updated']} "
        f"issuer_days={summary['issuer_days']} failed={summary['failed']} ms={summary['duration_ms']}"
    )
    return summary
