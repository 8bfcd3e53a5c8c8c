from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from insider_signals.config import Config
from insider_signals.db import row_to_dict, unit_of_work
from insider_signals.errors import SignalError
from insider_signals.notify.preferences import load_preference
from insider_signals.notify.render import render_digest, render_test_email
from insider_signals.util.time import SystemClock, to_iso


def _debug(msg: str) -> None:
    print(f"[dispatcher] {msg}")


DAILY_LIMIT_REASON = "Daily limit reached"


def parse_digest_time(raw: str) -> int:
    """'HH:MM' -> minutes after midnight (UTC)."""
    s = (raw or "").strip()
    try:
        hh, mm = s.split(":")[:2]
        h, m = int(hh), int(mm)
    except ValueError as e:
        raise SignalError(f"Malformed digest_time: {raw!r}") from e
    if not (0 <= h < 24 and 0 <= m < 60):
        raise SignalError(f"Malformed digest_time: {raw!r}")
    return h * 60 + m


def digest_due(digest_time: str, now: datetime, window_minutes: int) -> bool:
    """True if now is within +/- window_minutes of digest_time, across midnight."""
    target = parse_digest_time(digest_time)
    current = now.hour * 60 + now.minute
    diff = abs(current - target)
    diff = min(diff, 24 * 60 - diff)
    return diff <= window_minutes


class NotificationDispatcher:
    """Drains the notification queue.

    Real-time: pending -> sent | failed | cancelled, one message per entry.
    Digest: one combined message per user per day, near their digest_time.
    """

    def __init__(self, cfg: Config, mailer: Any, *, clock: Optional[SystemClock] = None):
        self.cfg = cfg
        self.mailer = mailer
        self.clock = clock or SystemClock()

    # -----------------
    # Shared helpers
    # -----------------

    def sent_in_last_24h(self, conn: Any, user_id: str) -> int:
        since = to_iso(self.clock.now() - timedelta(hours=24))
        row = conn.execute(
            """
            SELECT COUNT(*) AS n
            FROM notification_history
            WHERE user_id = ?
              AND sent_at >= ?
              AND notification_type <> 'digest'
            """,
            (user_id, since),
        ).fetchone()
        return int(row["n"] or 0)

    def _record_failure(self, conn: Any, queue_id: int, error: str) -> str:
        now_iso = self.clock.now_iso()
        with unit_of_work(conn, "send_failed"):
            conn.execute(
                """
                UPDATE notification_queue
                SET attempts = attempts + 1,
                    last_attempt_at = ?,
                    error_message = ?,
                    status = CASE WHEN attempts + 1 >= ? THEN 'failed' ELSE 'pending' END
                WHERE id = ?
                """,
                (now_iso, error[:1000], self.cfg.MAX_SEND_ATTEMPTS, int(queue_id)),
            )
            row = conn.execute("SELECT status FROM notification_queue WHERE id = ?", (int(queue_id),)).fetchone()
        return str(row["status"]) if row is not None else "unknown"

    # -----------------
    # Real-time flow
    # -----------------

    def _pending_realtime(self, conn: Any) -> List[Dict[str, Any]]:
        rows = conn.execute(
            """
            SELECT
                nq.id, nq.user_id, nq.notification_type, nq.priority,
                nq.subject, nq.body_text, nq.body_html, nq.attempts,
                COALESCE(uap.notification_email, u.email) AS delivery_email,
                uap.max_alerts_per_day,
                i.cik AS issuer_cik,
                i.name AS issuer_name
            FROM notification_queue nq
            JOIN user_alert_preferences uap ON uap.user_id = nq.user_id
            JOIN users u ON u.id = nq.user_id
            LEFT JOIN issuers i ON i.id = nq.issuer_id
            WHERE nq.status = 'pending'
              AND uap.notifications_enabled = 1
              AND u.email_verified = 1
              AND uap.digest_mode = 0
              AND nq.attempts < ?
            ORDER BY nq.priority DESC, nq.created_at ASC, nq.id ASC
            LIMIT ?
            """,
            (self.cfg.MAX_SEND_ATTEMPTS, self.cfg.MAX_BATCH_SIZE),
        ).fetchall()
        return [row_to_dict(r) for r in rows]

    def process_realtime(self, conn: Any) -> Dict[str, Any]:
        entries = self._pending_realtime(conn)
        summary = {"processed": 0, "sent": 0, "failed": 0, "retrying": 0, "cancelled": 0}
        _debug(f"Real-time batch size={len(entries)}")

        for e in entries:
            qid = int(e["id"])
            user_id = str(e["user_id"])
            summary["processed"] += 1

            limit = e["max_alerts_per_day"]
            limit = int(limit) if limit is not None else self.cfg.DEFAULT_MAX_ALERTS_PER_DAY
            try:
                over_cap = self.sent_in_last_24h(conn, user_id) >= limit
                if over_cap:
                    with unit_of_work(conn, "cancel"):
                        conn.execute(
                            """
                            UPDATE notification_queue
                            SET status='cancelled', error_message=?, last_attempt_at=?
                            WHERE id = ?
                            """,
                            (DAILY_LIMIT_REASON, self.clock.now_iso(), qid),
                        )
                    summary["cancelled"] += 1
                    _debug(f"queue_id={qid} user_id={user_id} cancelled: daily limit {limit}")
                    continue
            except Exception as ex:
                summary["failed"] += 1
                _debug(f"ERROR cap check queue_id={qid} user_id={user_id}: {ex}")
                continue

            try:
                self.mailer.send(
                    to=str(e["delivery_email"] or ""),
                    subject=str(e["subject"]),
                    text=str(e["body_text"]),
                    html=e.get("body_html"),
                )
            except Exception as ex:
                try:
                    status = self._record_failure(conn, qid, str(ex))
                except Exception as ex2:
                    _debug(f"ERROR recording failure queue_id={qid}: {ex2}")
                    status = "unknown"
                if status == "failed":
                    summary["failed"] += 1
                else:
                    summary["retrying"] += 1
                _debug(f"queue_id={qid} user_id={user_id} send failed status={status}: {ex}")
                continue

            now_iso = self.clock.now_iso()
            try:
                with unit_of_work(conn, "sent"):
                    conn.execute(
                        """
                        UPDATE notification_queue
                        SET status='sent', sent_at=?, last_attempt_at=?, attempts=attempts + 1, error_message=NULL
                        WHERE id = ?
                        """,
                        (now_iso, now_iso, qid),
                    )
                    conn.execute(
                        """
                        INSERT INTO notification_history (
                            user_id, notification_type, queue_id, issuer_cik, issuer_name, subject, sent_at
                        ) VALUES (?,?,?,?,?,?,?)
                        """,
                        (user_id, e["notification_type"], qid, e.get("issuer_cik"), e.get("issuer_name"), e["subject"], now_iso),
                    )
            except Exception as ex:
                # Message went out; only bookkeeping failed.
                summary["failed"] += 1
                _debug(f"ERROR recording send queue_id={qid}: {ex}")
                continue
            summary["sent"] += 1

        _debug(
            f"Real-time done sent={summary['sent']} retrying={summary['retrying']} "
            f"failed={summary['failed']} cancelled={summary['cancelled']}"
        )
        return summary

    # -----------------
    # Digest flow
    # -----------------

    def _digest_users(self, conn: Any) -> List[Dict[str, Any]]:
        rows = conn.execute(
            """
            SELECT uap.user_id, uap.digest_time, COALESCE(uap.notification_email, u.email) AS delivery_email
            FROM user_alert_preferences uap
            JOIN users u ON u.id = uap.user_id
            WHERE uap.notifications_enabled = 1
              AND uap.digest_mode = 1
              AND u.email_verified = 1
            ORDER BY uap.user_id
            """
        ).fetchall()
        return [row_to_dict(r) for r in rows]

    def _pending_for_user(self, conn: Any, user_id: str) -> List[Dict[str, Any]]:
        rows = conn.execute(
            """
            SELECT id, notification_type, subject, body_text, body_html
            FROM notification_queue
            WHERE user_id = ?
              AND status = 'pending'
              AND attempts < ?
            ORDER BY priority DESC, created_at ASC, id ASC
            """,
            (user_id, self.cfg.MAX_SEND_ATTEMPTS),
        ).fetchall()
        return [row_to_dict(r) for r in rows]

    def _send_digest(self, conn: Any, user: Dict[str, Any], digest_date: str) -> str:
        """Returns sent | skipped | failed."""
        user_id = str(user["user_id"])
        if not digest_due(str(user["digest_time"] or "09:00"), self.clock.now(), self.cfg.DIGEST_WINDOW_MINUTES):
            return "skipped"

        already = conn.execute(
            "SELECT 1 AS hit FROM notification_digests WHERE user_id = ? AND digest_date = ?",
            (user_id, digest_date),
        ).fetchone()
        if already is not None:
            return "skipped"

        entries = self._pending_for_user(conn, user_id)
        if not entries:
            return "skipped"

        now_iso = self.clock.now_iso()
        # Claim today's digest first; a concurrent run loses the insert and skips.
        with unit_of_work(conn, "digest_claim"):
            cur = conn.execute(
                """
                INSERT INTO notification_digests (user_id, digest_date, alerts_included, sent_at)
                VALUES (?,?,?,?)
                ON CONFLICT(user_id, digest_date) DO NOTHING
                """,
                (user_id, digest_date, len(entries), now_iso),
            )
            claimed = cur.rowcount == 1
        if not claimed:
            return "skipped"

        message = render_digest(entries, digest_date, self.cfg.PUBLIC_APP_URL)
        ids = [int(x["id"]) for x in entries]
        try:
            self.mailer.send(
                to=str(user["delivery_email"] or ""),
                subject=message.subject,
                text=message.text,
                html=message.html,
            )
        except Exception as ex:
            _debug(f"user_id={user_id} digest send failed entries={len(ids)}: {ex}")
            with unit_of_work(conn, "digest_release"):
                conn.execute(
                    "DELETE FROM notification_digests WHERE user_id = ? AND digest_date = ?",
                    (user_id, digest_date),
                )
            for qid in ids:
                self._record_failure(conn, qid, str(ex))
            return "failed"

        with unit_of_work(conn, "digest_sent"):
            marks = ",".join("?" for _ in ids)
            conn.execute(
                f"""
                UPDATE notification_queue
                SET status='sent', sent_at=?, last_attempt_at=?, attempts=attempts + 1
                WHERE id IN ({marks})
                """,
                [now_iso, now_iso] + ids,
            )
            conn.execute(
                """
                INSERT INTO notification_history (user_id, notification_type, queue_id, subject, sent_at)
                VALUES (?, 'digest', NULL, ?, ?)
                """,
                (user_id, message.subject, now_iso),
            )
        _debug(f"user_id={user_id} digest sent entries={len(ids)}")
        return "sent"

    def process_digests(self, conn: Any) -> Dict[str, Any]:
        digest_date = self.clock.today().isoformat()
        summary = {"users": 0, "sent": 0, "skipped": 0, "failed": 0}
        for user in self._digest_users(conn):
            summary["users"] += 1
            try:
                outcome = self._send_digest(conn, user, digest_date)
            except Exception as ex:
                outcome = "failed"
                _debug(f"ERROR digest user_id={user['user_id']}: {ex}")
            summary[outcome] += 1
        _debug(f"Digest done users={summary['users']} sent={summary['sent']} failed={summary['failed']}")
        return summary

    # -----------------
    # Entry points
    # -----------------

    def run(self, conn: Any) -> Dict[str, Any]:
        """One dispatch pass: configuration check, real-time flow, digest flow."""
        t0 = time.monotonic()
        ensure = getattr(self.mailer, "ensure_configured", None)
        if ensure is not None:
            ensure()
        realtime = self.process_realtime(conn)
        digests = self.process_digests(conn)
        return {
            "realtime": realtime,
            "digest": digests,
            "duration_ms": int((time.monotonic() - t0) * 1000),
        }

    def send_test_email(self, conn: Any, *, user_id: Optional[str] = None, to: Optional[str] = None) -> Dict[str, Any]:
        """Send a fixed test message to an address or to a user's delivery address."""
        address = (to or "").strip()
        if not address and user_id:
            pref = load_preference(conn, self.cfg, user_id)
            if pref is None:
                raise SignalError(f"No alert preferences for user_id={user_id}")
            address = (pref.email or "").strip()
        if not address:
            raise SignalError("No recipient for test email")

        message = render_test_email(address, self.cfg.PUBLIC_APP_URL)
        self.mailer.send(to=address, subject=message.subject, text=message.text, html=message.html)
        _debug(f"Test email sent user_id={user_id}")
        return {"sent": True, "to": address}
