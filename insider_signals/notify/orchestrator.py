from __future__ import annotations

from typing import Any, Dict, List, Optional

from insider_signals.compute.scoring import priority_for_score
from insider_signals.config import Config
from insider_signals.db import row_to_dict, unit_of_work
from insider_signals.models import RenderedMessage, SignalSnapshot
from insider_signals.notify.preferences import PreferenceCache, evaluate
from insider_signals.notify.render import render_cluster_buy, render_first_buy, render_important_trade
from insider_signals.util.hashing import signal_fingerprint
from insider_signals.util.time import SystemClock


def _debug(msg: str) -> None:
    print(f"[orchestrator] {msg}")


_REF_COLUMNS = {
    "cluster_buy": "cluster_id",
    "important_trade": "important_trade_id",
    "first_buy": "first_buy_id",
}


class NotificationOrchestrator:
    """Fans one detected signal out to every matching subscriber.

    Each (user, signal fingerprint) pair is queued at most once: the insert
    ignores conflicts on the queue's unique constraint, so re-running for
    the same signal is a no-op.
    """

    def __init__(self, cfg: Config, *, clock: Optional[SystemClock] = None, preferences: Optional[PreferenceCache] = None):
        self.cfg = cfg
        self.clock = clock or SystemClock()
        self.preferences = preferences or PreferenceCache(cfg)

    # -----------------
    # Signal loaders
    # -----------------

    def cluster_buy(self, conn: Any, cluster_id: int) -> int:
        row = conn.execute(
            """
            SELECT cbs.*, i.cik AS issuer_cik, i.name AS issuer_name, i.trading_symbol, i.sector
            FROM cluster_buy_signals cbs
            JOIN issuers i ON i.id = cbs.issuer_id
            WHERE cbs.id = ?
            """,
            (int(cluster_id),),
        ).fetchone()
        if row is None:
            _debug(f"cluster_id={cluster_id} not found")
            return 0
        cluster = row_to_dict(row)
        trades = [
            row_to_dict(r)
            for r in conn.execute(
                """
                SELECT person_name, officer_title, transaction_value
                FROM cluster_buy_trades
                WHERE cluster_id = ?
                ORDER BY transaction_value DESC, id ASC
                """,
                (int(cluster_id),),
            ).fetchall()
        ]
        snapshot = SignalSnapshot(
            signal_type="cluster_buy",
            signal_id=int(cluster["id"]),
            signal_date=str(cluster["transaction_date"]),
            fingerprint_id=int(cluster["id"]),
            issuer_id=int(cluster["issuer_id"]),
            issuer_cik=str(cluster["issuer_cik"]),
            issuer_name=str(cluster["issuer_name"]),
            trading_symbol=cluster.get("trading_symbol"),
            sector=cluster.get("sector"),
            score=int(cluster["signal_strength"]),
            total_value=float(cluster["total_value"] or 0.0),
            total_insiders=int(cluster["total_insiders"]),
        )
        message = render_cluster_buy(cluster, trades, self.cfg.PUBLIC_APP_URL)
        return self._fan_out(conn, snapshot, message)

    def important_trade(self, conn: Any, signal_id: int) -> int:
        row = conn.execute(
            "SELECT * FROM vw_important_trades_details WHERE signal_id = ? ORDER BY person_id LIMIT 1",
            (int(signal_id),),
        ).fetchone()
        if row is None:
            _debug(f"important_trade_id={signal_id} not found or inactive")
            return 0
        trade = row_to_dict(row)
        snapshot = SignalSnapshot(
            signal_type="important_trade",
            signal_id=int(trade["signal_id"]),
            signal_date=str(trade["transaction_date"]),
            fingerprint_id=int(trade["transaction_id"]),
            issuer_id=int(trade["issuer_id"]),
            issuer_cik=str(trade["issuer_cik"]),
            issuer_name=str(trade["issuer_name"]),
            trading_symbol=trade.get("trading_symbol"),
            sector=None,
            score=int(trade["importance_score"]),
            total_value=float(trade["transaction_value"] or 0.0),
        )
        message = render_important_trade(trade, self.cfg.PUBLIC_APP_URL)
        return self._fan_out(conn, snapshot, message)

    def first_buy(self, conn: Any, signal_id: int) -> int:
        row = conn.execute(
            "SELECT * FROM vw_first_buy_details WHERE signal_id = ? LIMIT 1",
            (int(signal_id),),
        ).fetchone()
        if row is None:
            _debug(f"first_buy_id={signal_id} not found or inactive")
            return 0
        fb = row_to_dict(row)
        snapshot = SignalSnapshot(
            signal_type="first_buy",
            signal_id=int(fb["signal_id"]),
            signal_date=str(fb["transaction_date"]),
            fingerprint_id=int(fb["transaction_id"]),
            issuer_id=int(fb["issuer_id"]),
            issuer_cik=str(fb["issuer_cik"]),
            issuer_name=str(fb["issuer_name"]),
            trading_symbol=fb.get("trading_symbol"),
            sector=None,
            score=int(fb["importance_score"]),
            total_value=float(fb["transaction_value"] or 0.0),
        )
        message = render_first_buy(fb, self.cfg.PUBLIC_APP_URL)
        return self._fan_out(conn, snapshot, message)

    # -----------------
    # Fan-out
    # -----------------

    def matching_subscribers(self, conn: Any, snapshot: SignalSnapshot) -> List[str]:
        out: List[str] = []
        for pref in self.preferences.subscribers(conn):
            ok, _reason = evaluate(pref, snapshot)
            if ok:
                out.append(pref.user_id)
        return out

    def _fan_out(self, conn: Any, snapshot: SignalSnapshot, message: RenderedMessage) -> int:
        fingerprint = signal_fingerprint(snapshot.signal_type, snapshot.fingerprint_id, snapshot.signal_date)
        priority = priority_for_score(snapshot.score)
        ref_col = _REF_COLUMNS[snapshot.signal_type]
        now_iso = self.clock.now_iso()

        queued = 0
        failed = 0
        users = self.matching_subscribers(conn, snapshot)
        for user_id in users:
            try:
                with unit_of_work(conn, "fanout"):
                    cur = conn.execute(
                        f"""
                        INSERT INTO notification_queue (
                            user_id, notification_type, priority, {ref_col}, issuer_id,
                            subject, body_text, body_html, signal_fingerprint,
                            status, attempts, created_at
                        ) VALUES (?,?,?,?,?,?,?,?,?,'pending',0,?)
                        ON CONFLICT(user_id, signal_fingerprint) DO NOTHING
                        """,
                        (
                            user_id,
                            snapshot.signal_type,
                            priority,
                            snapshot.signal_id,
                            snapshot.issuer_id,
                            message.subject,
                            message.text,
                            message.html,
                            fingerprint,
                            now_iso,
                        ),
                    )
                    queued += cur.rowcount
            except Exception as e:
                failed += 1
                _debug(f"ERROR queue user_id={user_id} {snapshot.signal_type}_id={snapshot.signal_id}: {e}")

        _debug(
            f"{snapshot.signal_type}_id={snapshot.signal_id} matched={len(users)} queued={queued} failed={failed}"
        )
        return queued


def queue_summary(conn: Any) -> Dict[str, int]:
    """Counts of queue entries by status."""
    rows = conn.execute("SELECT status, COUNT(*) AS n FROM notification_queue GROUP BY status").fetchall()
    return {str(r["status"]): int(r["n"]) for r in rows}
