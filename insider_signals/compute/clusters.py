from __future__ import annotations

import time
from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from insider_signals.compute.lifecycle import plan_lifecycle
from insider_signals.compute.scoring import cluster_strength, is_ceo_title, is_cfo_title, role_priority
from insider_signals.config import Config
from insider_signals.db import unit_of_work
from insider_signals.errors import DetectionError
from insider_signals.models import ClusterGroup, TradeRecord
from insider_signals.store.transactions import load_cluster_candidates, load_purchases
from insider_signals.util.time import SystemClock, parse_date, shift_date


def _debug(msg: str) -> None:
    print(f"[clusters] {msg}")


ClusterKey = Tuple[int, str]


def aggregate_group(issuer_id: int, transaction_date: str, trades: Sequence[TradeRecord]) -> ClusterGroup:
    """Aggregate same-day purchases of one issuer.

    Shares, value and role priority are taken over every joined row; the
    insider count is over distinct persons.
    """
    persons: Set[int] = set()
    total_shares = 0.0
    total_value = 0.0
    priorities: List[int] = []
    has_ceo = False
    has_cfo = False
    has_ten = False
    for t in trades:
        persons.add(t.person_id)
        total_shares += float(t.shares_transacted or 0.0)
        total_value += float(t.transaction_value or 0.0)
        priorities.append(role_priority(t.is_officer, t.officer_title))
        if t.is_officer and is_ceo_title(t.officer_title):
            has_ceo = True
        if t.is_officer and is_cfo_title(t.officer_title):
            has_cfo = True
        if t.is_ten_percent_owner:
            has_ten = True

    avg_priority = (sum(priorities) / len(priorities)) if priorities else 0.0
    return ClusterGroup(
        issuer_id=int(issuer_id),
        transaction_date=transaction_date,
        total_insiders=len(persons),
        total_shares=total_shares,
        total_value=total_value,
        avg_role_priority=avg_priority,
        has_ceo_buy=has_ceo,
        has_cfo_buy=has_cfo,
        has_ten_percent_owner=has_ten,
    )


class ClusterSizeIndex:
    """Distinct purchasers per issuer within +/- window_days of a date.

    Built once per processor run from a preloaded purchase set so per-trade
    cluster sizes need no extra queries.
    """

    def __init__(self, purchases: Iterable[TradeRecord], window_days: int):
        self.window_days = int(window_days)
        self._by_issuer: Dict[int, List[Tuple[Any, int]]] = defaultdict(list)
        for t in purchases:
            self._by_issuer[t.issuer_id].append((parse_date(t.transaction_date), t.person_id))

    def size(self, issuer_id: int, transaction_date: str) -> int:
        d = parse_date(transaction_date)
        lo = d - timedelta(days=self.window_days)
        hi = d + timedelta(days=self.window_days)
        people = {pid for (dt, pid) in self._by_issuer.get(int(issuer_id), []) if lo <= dt <= hi}
        return len(people)


def build_cluster_size_index(conn: Any, *, date_from: str, date_to: str, window_days: int) -> ClusterSizeIndex:
    purchases = load_purchases(
        conn,
        date_from=shift_date(date_from, -window_days),
        date_to=shift_date(date_to, window_days),
    )
    return ClusterSizeIndex(purchases, window_days)


def _existing_clusters(conn: Any, since: str) -> Dict[ClusterKey, bool]:
    rows = conn.execute(
        """
        SELECT issuer_id, transaction_date, is_active
        FROM cluster_buy_signals
        WHERE is_active = 1 OR transaction_date >= ?
        """,
        (since,),
    ).fetchall()
    return {(int(r["issuer_id"]), str(r["transaction_date"])): bool(r["is_active"]) for r in rows}


def _upsert_cluster(conn: Any, group: ClusterGroup, strength: int, *, window_days: int, now_iso: str) -> int:
    row = conn.execute(
        """
        INSERT INTO cluster_buy_signals (
            issuer_id, transaction_date,
            total_insiders, total_shares, total_value,
            signal_strength, avg_role_priority,
            has_ceo_buy, has_cfo_buy, has_ten_percent_owner,
            buy_window_start, buy_window_end,
            detected_at, is_active, last_updated
        ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,1,?)
        ON CONFLICT(issuer_id, transaction_date) DO UPDATE SET
            total_insiders=excluded.total_insiders,
            total_shares=excluded.total_shares,
            total_value=excluded.total_value,
            signal_strength=excluded.signal_strength,
            avg_role_priority=excluded.avg_role_priority,
            has_ceo_buy=excluded.has_ceo_buy,
            has_cfo_buy=excluded.has_cfo_buy,
            has_ten_percent_owner=excluded.has_ten_percent_owner,
            buy_window_start=excluded.buy_window_start,
            buy_window_end=excluded.buy_window_end,
            is_active=1,
            last_updated=excluded.last_updated
        RETURNING id
        """,
        (
            group.issuer_id,
            group.transaction_date,
            group.total_insiders,
            group.total_shares,
            group.total_value,
            int(strength),
            round(group.avg_role_priority, 4),
            1 if group.has_ceo_buy else 0,
            1 if group.has_cfo_buy else 0,
            1 if group.has_ten_percent_owner else 0,
            shift_date(group.transaction_date, -window_days),
            shift_date(group.transaction_date, window_days),
            now_iso,
            now_iso,
        ),
    ).fetchone()
    return int(row["id"])


def _rebuild_cluster_trades(conn: Any, cluster_id: int, issuer_id: int, transaction_date: str, window_days: int) -> int:
    """Delete-then-insert the line items of one cluster."""
    conn.execute("DELETE FROM cluster_buy_trades WHERE cluster_id=?", (cluster_id,))
    trades = load_purchases(
        conn,
        issuer_id=issuer_id,
        date_from=shift_date(transaction_date, -window_days),
        date_to=shift_date(transaction_date, window_days),
    )
    n = 0
    for t in trades:
        cur = conn.execute(
            """
            INSERT INTO cluster_buy_trades (
                cluster_id, transaction_id, person_id, person_name, transaction_date,
                shares_transacted, price_per_share, transaction_value,
                is_officer, is_director, is_ten_percent_owner, officer_title
            ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)
            ON CONFLICT(cluster_id, transaction_id) DO NOTHING
            """,
            (
                cluster_id,
                t.transaction_id,
                t.person_id,
                t.person_name,
                t.transaction_date,
                t.shares_transacted,
                t.price_per_share,
                t.transaction_value,
                1 if t.is_officer else 0,
                1 if t.is_director else 0,
                1 if t.is_ten_percent_owner else 0,
                t.officer_title,
            ),
        )
        n += cur.rowcount
    return n


def process_cluster_buys(
    conn: Any,
    cfg: Config,
    *,
    clock: Optional[SystemClock] = None,
    orchestrator: Optional[Any] = None,
) -> Dict[str, Any]:
    """Recompute cluster buys over the lookback window.

    Steps: soft-invalidate every active cluster (committed before any
    upsert), upsert each candidate group with its line items as one unit,
    notify for new or strong clusters, then purge stale inactive rows.
    """
    clock = clock or SystemClock()
    t0 = time.monotonic()
    now_iso = clock.now_iso()
    since = clock.days_ago(cfg.CLUSTER_LOOKBACK_DAYS)
    window = cfg.CLUSTER_WINDOW_DAYS

    _debug(f"Start lookback_days={cfg.CLUSTER_LOOKBACK_DAYS} window_days={window} since={since}")

    existing = _existing_clusters(conn, since)

    try:
        conn.execute("UPDATE cluster_buy_signals SET is_active=0 WHERE is_active=1")
        conn.commit()
    except Exception as e:
        raise DetectionError("cluster_buys", "invalidate", e) from e

    candidates = load_cluster_candidates(conn, since=since, limit=cfg.MAX_CLUSTER_CANDIDATES)
    plan = plan_lifecycle(candidates, existing)
    new_keys = set(plan.add)
    _debug(f"candidates={len(candidates)} add={len(plan.add)} update={len(plan.update)} retire={len(plan.retire)}")

    summary: Dict[str, Any] = {
        "processor": "cluster_buys",
        "processed": 0,
        "new": 0,
        "updated": 0,
        "retired": len(plan.retire),
        "skipped": 0,
        "failed": 0,
        "notified": 0,
        "cleaned_up": 0,
    }

    for key in candidates:
        if key not in new_keys and key not in plan.update:
            continue
        issuer_id, tx_date = key
        is_new = key in new_keys
        try:
            with unit_of_work(conn, "cluster"):
                trades = load_purchases(conn, issuer_id=issuer_id, date_from=tx_date, date_to=tx_date)
                group = aggregate_group(issuer_id, tx_date, trades)
                if group.total_insiders < 2:
                    # Filing Store changed between candidate query and reload.
                    summary["skipped"] += 1
                    continue
                strength = cluster_strength(group)
                cluster_id = _upsert_cluster(conn, group, strength, window_days=window, now_iso=now_iso)
                n_trades = _rebuild_cluster_trades(conn, cluster_id, issuer_id, tx_date, window)
        except Exception as e:
            summary["failed"] += 1
            _debug(f"ERROR issuer_id={issuer_id} date={tx_date}: {e}")
            continue

        summary["processed"] += 1
        summary["new" if is_new else "updated"] += 1
        _debug(f"cluster_id={cluster_id} issuer_id={issuer_id} date={tx_date} insiders={group.total_insiders} strength={strength} trades={n_trades}")

        if orchestrator is not None and (is_new or strength >= cfg.CLUSTER_NOTIFY_MIN_STRENGTH):
            try:
                summary["notified"] += orchestrator.cluster_buy(conn, cluster_id)
            except Exception as e:
                _debug(f"ERROR notify cluster_id={cluster_id}: {e}")

    cutoff = clock.days_ago(cfg.CLUSTER_RETENTION_DAYS)
    try:
        conn.execute(
            """
            DELETE FROM cluster_buy_trades
            WHERE cluster_id IN (
                SELECT id FROM cluster_buy_signals WHERE is_active=0 AND transaction_date < ?
            )
            """,
            (cutoff,),
        )
        cur = conn.execute(
            "DELETE FROM cluster_buy_signals WHERE is_active=0 AND transaction_date < ?",
            (cutoff,),
        )
        summary["cleaned_up"] = cur.rowcount
        conn.commit()
    except Exception as e:
        raise DetectionError("cluster_buys", "cleanup", e) from e

    summary["duration_ms"] = int((time.monotonic() - t0) * 1000)
    _debug(
        f"Done processed={summary['processed']} new={summary['new']} updated={summary['updated']} "
        f"failed={summary['failed']} cleaned_up={summary['cleaned_up']} ms={summary['duration_ms']}"
    )
    return summary
