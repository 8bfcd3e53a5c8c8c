from __future__ import annotations

import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from insider_signals.compute.clusters import build_cluster_size_index
from insider_signals.compute.lifecycle import plan_lifecycle
from insider_signals.compute.scoring import importance_breakdown, importance_score, qualifies_as_important
from insider_signals.config import Config
from insider_signals.db import unit_of_work
from insider_signals.errors import DetectionError
from insider_signals.models import ImportanceBreakdown, TradeRecord
from insider_signals.store.signals import existing_by_transaction, purge_inactive, retire_keys
from insider_signals.store.transactions import has_prior_purchase, load_scorable_trades
from insider_signals.util.time import SystemClock, shift_date

TABLE = "important_trade_signals"


def _debug(msg: str) -> None:
    print(f"[important_trades] {msg}")


def best_per_transaction(trades: Iterable[TradeRecord], key: Callable[[TradeRecord], Any]) -> List[TradeRecord]:
    """One record per transaction: the reporting owner with the highest key.

    Multi-owner filings join once per owner; ties keep the first row seen.
    """
    best: Dict[int, TradeRecord] = {}
    ranks: Dict[int, Any] = {}
    for t in trades:
        rank = key(t)
        if t.transaction_id not in best or rank > ranks[t.transaction_id]:
            best[t.transaction_id] = t
            ranks[t.transaction_id] = rank
    return list(best.values())


def is_first_purchase(conn: Any, trade: TradeRecord, lookback_days: int) -> bool:
    """No qualifying purchase by the same person/issuer in [date - lookback, date - 1]."""
    if not trade.is_purchase:
        return False
    return not has_prior_purchase(
        conn,
        person_id=trade.person_id,
        issuer_id=trade.issuer_id,
        date_from=shift_date(trade.transaction_date, -lookback_days),
        date_to=shift_date(trade.transaction_date, -1),
    )


def _upsert_important_trade(
    conn: Any,
    trade: TradeRecord,
    parts: ImportanceBreakdown,
    *,
    cluster_size: int,
    is_first_buy: bool,
    now_iso: str,
) -> int:
    row = conn.execute(
        """
        INSERT INTO important_trade_signals (
            transaction_id, filing_id, importance_score,
            value_score, direction_score, role_score, ownership_score,
            cluster_score, timing_score, first_buy_score,
            cluster_size, is_first_buy, is_purchase, is_sale, is_10b5_1_plan,
            detected_at, is_active
        ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,1)
        ON CONFLICT(transaction_id) DO UPDATE SET
            filing_id=excluded.filing_id,
            importance_score=excluded.importance_score,
            value_score=excluded.value_score,
            direction_score=excluded.direction_score,
            role_score=excluded.role_score,
            ownership_score=excluded.ownership_score,
            cluster_score=excluded.cluster_score,
            timing_score=excluded.timing_score,
            first_buy_score=excluded.first_buy_score,
            cluster_size=excluded.cluster_size,
            is_first_buy=excluded.is_first_buy,
            is_purchase=excluded.is_purchase,
            is_sale=excluded.is_sale,
            is_10b5_1_plan=excluded.is_10b5_1_plan,
            is_active=1
        RETURNING id
        """,
        (
            trade.transaction_id,
            trade.filing_id,
            parts.total,
            parts.value_score,
            parts.direction_score,
            parts.role_score,
            parts.ownership_score,
            parts.cluster_score,
            parts.timing_score,
            parts.first_buy_score,
            int(cluster_size),
            1 if is_first_buy else 0,
            1 if trade.is_purchase else 0,
            1 if trade.is_sale else 0,
            1 if trade.is_10b5_1_plan else 0,
            now_iso,
        ),
    ).fetchone()
    return int(row["id"])


def process_important_trades(
    conn: Any,
    cfg: Config,
    *,
    clock: Optional[SystemClock] = None,
    orchestrator: Optional[Any] = None,
) -> Dict[str, Any]:
    """Score recent trades; store the ones that pass the noise floor."""
    clock = clock or SystemClock()
    t0 = time.monotonic()
    now_iso = clock.now_iso()
    since = clock.days_ago(cfg.IMPORTANT_LOOKBACK_DAYS)
    today = clock.today().isoformat()

    rows = load_scorable_trades(conn, since=since, limit=cfg.MAX_TRADE_CANDIDATES)
    sizes = build_cluster_size_index(
        conn, date_from=since, date_to=today, window_days=cfg.IMPORTANT_CLUSTER_WINDOW_DAYS
    )

    def _rank(t: TradeRecord) -> tuple:
        size = sizes.size(t.issuer_id, t.transaction_date)
        return (qualifies_as_important(t, size), importance_score(t, size))

    trades = best_per_transaction(rows, key=_rank)
    _debug(f"Start since={since} candidates={len(trades)}")

    qualifying: List[TradeRecord] = []
    cluster_size_by_tx: Dict[int, int] = {}
    for t in trades:
        size = sizes.size(t.issuer_id, t.transaction_date)
        cluster_size_by_tx[t.transaction_id] = size
        if qualifies_as_important(t, size):
            qualifying.append(t)

    existing = existing_by_transaction(conn, TABLE, since_date=since)
    plan = plan_lifecycle([t.transaction_id for t in qualifying], existing)
    new_keys = set(plan.add)

    summary: Dict[str, Any] = {
        "processor": "important_trades",
        "processed": 0,
        "new": 0,
        "updated": 0,
        "retired": 0,
        "failed": 0,
        "notified": 0,
        "cleaned_up": 0,
    }

    try:
        summary["retired"] = retire_keys(conn, TABLE, plan.retire)
        conn.commit()
    except Exception as e:
        raise DetectionError("important_trades", "retire", e) from e

    for t in qualifying:
        size = cluster_size_by_tx.get(t.transaction_id, 0)
        is_new = t.transaction_id in new_keys
        try:
            with unit_of_work(conn, "important"):
                first = is_first_purchase(conn, t, cfg.FIRST_BUY_LOOKBACK_DAYS)
                parts = importance_breakdown(t, size, first_buy=first)
                signal_id = _upsert_important_trade(
                    conn, t, parts, cluster_size=size, is_first_buy=first, now_iso=now_iso
                )
        except Exception as e:
            summary["failed"] += 1
            _debug(f"ERROR transaction_id={t.transaction_id}: {e}")
            continue

        summary["processed"] += 1
        summary["new" if is_new else "updated"] += 1

        if orchestrator is not None and (is_new or parts.total >= cfg.IMPORTANT_MIN_SCORE):
            try:
                summary["notified"] += orchestrator.important_trade(conn, signal_id)
            except Exception as e:
                _debug(f"ERROR notify important_trade_id={signal_id}: {e}")

    try:
        summary["cleaned_up"] = purge_inactive(
            conn, TABLE, detected_before=clock.timestamp_days_ago(cfg.IMPORTANT_RETENTION_DAYS)
        )
        conn.commit()
    except Exception as e:
        raise DetectionError("important_trades", "cleanup", e) from e

    summary["duration_ms"] = int((time.monotonic() - t0) * 1000)
    _debug(
        f"Done processed={summary['processed']} new={summary['new']} updated={summary['updated']} "
        f"retired={summary['retired']} failed={summary['failed']} ms={summary['duration_ms']}"
    )
    return summary
