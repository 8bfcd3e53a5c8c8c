from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Tuple

from insider_signals.compute.clusters import build_cluster_size_index
from insider_signals.compute.important_trades import best_per_transaction, is_first_purchase
from insider_signals.compute.lifecycle import plan_lifecycle
from insider_signals.compute.scoring import importance_score
from insider_signals.config import Config
from insider_signals.db import unit_of_work
from insider_signals.errors import DetectionError
from insider_signals.models import TradeRecord
from insider_signals.store.signals import existing_by_transaction, purge_inactive, retire_keys
from insider_signals.store.transactions import load_recent_form4_purchases
from insider_signals.util.time import SystemClock

TABLE = "first_buy_signals"


def _debug(msg: str) -> None:
    print(f"[first_buys] {msg}")


def _upsert_first_buy(
    conn: Any,
    trade: TradeRecord,
    *,
    lookback_days: int,
    cluster_size: int,
    score: int,
    now_iso: str,
) -> int:
    row = conn.execute(
        """
        INSERT INTO first_buy_signals (
            transaction_id, person_id, issuer_id, transaction_date,
            lookback_days, is_part_of_cluster, cluster_size, importance_score,
            detected_at, is_active
        ) VALUES (?,?,?,?,?,?,?,?,?,1)
        ON CONFLICT(transaction_id) DO UPDATE SET
            person_id=excluded.person_id,
            lookback_days=excluded.lookback_days,
            is_part_of_cluster=excluded.is_part_of_cluster,
            cluster_size=excluded.cluster_size,
            importance_score=excluded.importance_score,
            is_active=1
        RETURNING id
        """,
        (
            trade.transaction_id,
            trade.person_id,
            trade.issuer_id,
            trade.transaction_date,
            int(lookback_days),
            1 if cluster_size >= 2 else 0,
            int(cluster_size),
            int(score),
            now_iso,
        ),
    ).fetchone()
    return int(row["id"])


def process_first_buys(
    conn: Any,
    cfg: Config,
    *,
    clock: Optional[SystemClock] = None,
    orchestrator: Optional[Any] = None,
) -> Dict[str, Any]:
    """Flag recent purchases with no prior purchase of the same issuer by the same person."""
    clock = clock or SystemClock()
    t0 = time.monotonic()
    now_iso = clock.now_iso()
    lookback = cfg.FIRST_BUY_LOOKBACK_DAYS
    filed_since = clock.timestamp_days_ago(cfg.FIRST_BUY_RECENT_DAYS)

    candidates = load_recent_form4_purchases(conn, filed_since=filed_since, limit=cfg.MAX_TRADE_CANDIDATES)
    _debug(f"Start filed_since={filed_since} lookback_days={lookback} candidates={len(candidates)}")

    summary: Dict[str, Any] = {
        "processor": "first_buys",
        "processed": 0,
        "new": 0,
        "updated": 0,
        "retired": 0,
        "failed": 0,
        "notified": 0,
        "cleaned_up": 0,
    }

    detected: List[Tuple[TradeRecord, int]] = []
    if candidates:
        dates = [c.transaction_date for c in candidates]
        sizes = build_cluster_size_index(
            conn, date_from=min(dates), date_to=max(dates), window_days=cfg.IMPORTANT_CLUSTER_WINDOW_DAYS
        )
        # Each reporting owner of a joint filing is checked on its own history.
        firsts: List[TradeRecord] = []
        for c in candidates:
            try:
                with unit_of_work(conn, "first_buy_check"):
                    first = is_first_purchase(conn, c, lookback)
                if first:
                    firsts.append(c)
            except Exception as e:
                summary["failed"] += 1
                _debug(f"ERROR prior-purchase check transaction_id={c.transaction_id} person_id={c.person_id}: {e}")

        for c in best_per_transaction(
            firsts, key=lambda t: importance_score(t, sizes.size(t.issuer_id, t.transaction_date), first_buy=True)
        ):
            detected.append((c, sizes.size(c.issuer_id, c.transaction_date)))

    existing = existing_by_transaction(conn, TABLE, since_date=clock.days_ago(cfg.FIRST_BUY_RETENTION_DAYS))
    plan = plan_lifecycle([t.transaction_id for t, _ in detected], existing)
    new_keys = set(plan.add)

    try:
        summary["retired"] = retire_keys(conn, TABLE, plan.retire)
        conn.commit()
    except Exception as e:
        raise DetectionError("first_buys", "retire", e) from e

    for trade, size in detected:
        is_new = trade.transaction_id in new_keys
        score = importance_score(trade, size, first_buy=True)
        try:
            with unit_of_work(conn, "first_buy"):
                signal_id = _upsert_first_buy(
                    conn, trade, lookback_days=lookback, cluster_size=size, score=score, now_iso=now_iso
                )
        except Exception as e:
            summary["failed"] += 1
            _debug(f"ERROR transaction_id={trade.transaction_id}: {e}")
            continue

        summary["processed"] += 1
        summary["new" if is_new else "updated"] += 1

        if orchestrator is not None and (is_new or score >= cfg.IMPORTANT_MIN_SCORE):
            try:
                summary["notified"] += orchestrator.first_buy(conn, signal_id)
            except Exception as e:
                _debug(f"ERROR notify first_buy_id={signal_id}: {e}")

    try:
        summary["cleaned_up"] = purge_inactive(
            conn, TABLE, detected_before=clock.timestamp_days_ago(cfg.FIRST_BUY_RETENTION_DAYS)
        )
        conn.commit()
    except Exception as e:
        raise DetectionError("first_buys", "cleanup", e) from e

    summary["duration_ms"] = int((time.monotonic() - t0) * 1000)
    _debug(
        f"Done processed={summary['processed']} first_buys={summary['new'] + summary['updated']} "
        f"retired={summary['retired']} failed={summary['failed']} ms={summary['duration_ms']}"
    )
    return summary
