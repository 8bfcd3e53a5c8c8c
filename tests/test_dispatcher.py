from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from conftest import NOW, TODAY

from insider_signals.errors import MailConfigError, SignalError
from insider_signals.jobs.cycles import run_notification_cycle
from insider_signals.notify.dispatcher import DAILY_LIMIT_REASON, NotificationDispatcher, digest_due, parse_digest_time
from insider_signals.notify.mailer import MailgunMailer
from insider_signals.util.time import to_iso


def _enqueue(conn, user_id: str, issuer_id: int, n: int = 1, *, priority: int = 4, start: int = 0) -> list:
    ids = []
    for i in range(start, start + n):
        cur = conn.execute(
            """
            INSERT INTO notification_queue (
                user_id, notification_type, priority, issuer_id, subject, body_text, body_html,
                signal_fingerprint, status, attempts, created_at
            ) VALUES (?, 'important_trade', ?, ?, ?, ?, ?, ?, 'pending', 0, ?)
            """,
            (user_id, priority, issuer_id, f"Alert {i}", f"Body {i}", f"<p>Body {i}</p>", f"fp-{user_id}-{i}", to_iso(NOW)),
        )
        ids.append(int(cur.lastrowid))
    conn.commit()
    return ids


def _status(conn, qid: int):
    return conn.execute("SELECT * FROM notification_queue WHERE id=?", (qid,)).fetchone()


def test_realtime_sends_in_priority_order(conn, seed, cfg, clock, mailer) -> None:
    issuer_id = seed.issuer()
    seed.subscriber("u1", email="u1@example.com", notification_email="alerts@u1.test")
    low = _enqueue(conn, "u1", issuer_id, priority=2)[0]
    high = _enqueue(conn, "u1", issuer_id, priority=10, start=1)[0]

    res = NotificationDispatcher(cfg, mailer, clock=clock).process_realtime(conn)

    assert res["sent"] == 2
    assert [m["subject"] for m in mailer.sent] == ["Alert 1", "Alert 0"]
    assert {m["to"] for m in mailer.sent} == {"alerts@u1.test"}
    for qid in (low, high):
        row = _status(conn, qid)
        assert row["status"] == "sent"
        assert row["attempts"] == 1
        assert row["sent_at"] == to_iso(NOW)
    history = conn.execute("SELECT * FROM notification_history ORDER BY id").fetchall()
    assert [h["queue_id"] for h in history] == [high, low]
    assert history[0]["issuer_name"] == "Acme Corp"


def test_daily_cap_cancels_the_overflow(conn, seed, cfg, clock, mailer) -> None:
    issuer_id = seed.issuer()
    seed.subscriber("u1", max_alerts_per_day=2)
    ids = _enqueue(conn, "u1", issuer_id, 3)

    res = NotificationDispatcher(cfg, mailer, clock=clock).process_realtime(conn)

    assert res["sent"] == 2
    assert res["cancelled"] == 1
    last = _status(conn, ids[2])
    assert last["status"] == "cancelled"
    assert last["error_message"] == DAILY_LIMIT_REASON
    assert len(mailer.sent) == 2


def test_cap_counts_only_the_last_24_hours(conn, seed, cfg, clock, mailer) -> None:
    issuer_id = seed.issuer()
    seed.subscriber("u1", max_alerts_per_day=1)
    conn.execute(
        "INSERT INTO notification_history (user_id, notification_type, sent_at) VALUES ('u1', 'cluster_buy', ?)",
        (to_iso(NOW - timedelta(hours=25)),),
    )
    conn.commit()
    _enqueue(conn, "u1", issuer_id, 1)

    res = NotificationDispatcher(cfg, mailer, clock=clock).process_realtime(conn)

    assert res["sent"] == 1


def test_failed_sends_retry_then_fail(conn, seed, cfg, clock, mailer) -> None:
    issuer_id = seed.issuer()
    seed.subscriber("u1")
    qid = _enqueue(conn, "u1", issuer_id)[0]
    mailer.fail = True
    dispatcher = NotificationDispatcher(cfg, mailer, clock=clock)

    first = dispatcher.process_realtime(conn)
    assert first["retrying"] == 1
    row = _status(conn, qid)
    assert row["status"] == "pending"
    assert row["attempts"] == 1
    assert "500" in row["error_message"]

    dispatcher.process_realtime(conn)
    last = dispatcher.process_realtime(conn)
    assert last["failed"] == 1
    row = _status(conn, qid)
    assert row["status"] == "failed"
    assert row["attempts"] == cfg.MAX_SEND_ATTEMPTS

    mailer.fail = False
    assert dispatcher.process_realtime(conn)["processed"] == 0


def test_digest_users_are_skipped_by_realtime(conn, seed, cfg, clock, mailer) -> None:
    issuer_id = seed.issuer()
    seed.subscriber("d1", digest_mode=True)
    _enqueue(conn, "d1", issuer_id)

    res = NotificationDispatcher(cfg, mailer, clock=clock).process_realtime(conn)

    assert res["processed"] == 0
    assert mailer.sent == []


def test_digest_sends_once_per_day(conn, seed, cfg, clock, mailer) -> None:
    issuer_id = seed.issuer()
    seed.subscriber("d1", digest_mode=True, digest_time="12:03")
    ids = _enqueue(conn, "d1", issuer_id, 2)
    dispatcher = NotificationDispatcher(cfg, mailer, clock=clock)

    res = dispatcher.process_digests(conn)

    assert res["sent"] == 1
    assert len(mailer.sent) == 1
    msg = mailer.sent[0]
    assert msg["subject"] == f"Insider Alerts Digest {TODAY}: 2 new alerts"
    assert "Alert 0" in msg["text"] and "Alert 1" in msg["text"]
    assert {_status(conn, q)["status"] for q in ids} == {"sent"}
    digest = conn.execute("SELECT * FROM notification_digests WHERE user_id='d1'").fetchone()
    assert digest["digest_date"] == TODAY
    assert digest["alerts_included"] == 2

    _enqueue(conn, "d1", issuer_id, 1, start=5)
    clock.advance(minutes=2)
    again = dispatcher.process_digests(conn)
    assert again["sent"] == 0
    assert len(mailer.sent) == 1


def test_digest_waits_for_its_time(conn, seed, cfg, clock, mailer) -> None:
    issuer_id = seed.issuer()
    seed.subscriber("d1", digest_mode=True, digest_time="09:00")
    _enqueue(conn, "d1", issuer_id)

    res = NotificationDispatcher(cfg, mailer, clock=clock).process_digests(conn)

    assert res["skipped"] == 1
    assert mailer.sent == []


def test_failed_digest_releases_the_claim(conn, seed, cfg, clock, mailer) -> None:
    issuer_id = seed.issuer()
    seed.subscriber("d1", digest_mode=True, digest_time="12:00")
    qid = _enqueue(conn, "d1", issuer_id)[0]
    mailer.fail = True
    dispatcher = NotificationDispatcher(cfg, mailer, clock=clock)

    assert dispatcher.process_digests(conn)["failed"] == 1
    assert conn.execute("SELECT COUNT(*) AS n FROM notification_digests").fetchone()["n"] == 0
    assert _status(conn, qid)["attempts"] == 1

    mailer.fail = False
    assert dispatcher.process_digests(conn)["sent"] == 1


def test_digest_window_wraps_midnight() -> None:
    assert digest_due("23:58", datetime(2026, 3, 10, 0, 2), 5)
    assert digest_due("00:01", datetime(2026, 3, 10, 23, 59), 5)
    assert not digest_due("09:00", datetime(2026, 3, 10, 9, 6), 5)


def test_parse_digest_time() -> None:
    assert parse_digest_time("09:30") == 570
    with pytest.raises(SignalError):
        parse_digest_time("9am")
    with pytest.raises(SignalError):
        parse_digest_time("24:00")


def test_test_email_goes_to_delivery_address(conn, seed, cfg, clock, mailer) -> None:
    seed.subscriber("u1", notification_email="alerts@u1.test")
    dispatcher = NotificationDispatcher(cfg, mailer, clock=clock)

    res = dispatcher.send_test_email(conn, user_id="u1")

    assert res == {"sent": True, "to": "alerts@u1.test"}
    assert mailer.sent[0]["subject"] == "Test alert from Insider Signals"
    with pytest.raises(SignalError):
        dispatcher.send_test_email(conn, user_id="nobody")


def test_unconfigured_transport_fails_the_cycle(db_dsn, cfg, clock) -> None:
    bare = replace(cfg, MAILGUN_API_KEY=None, MAILGUN_DOMAIN=None)
    with pytest.raises(MailConfigError):
        MailgunMailer(bare).ensure_configured()

    res = run_notification_cycle(db_dsn, bare, mailer=MailgunMailer(bare), clock=clock)
    assert "MAILGUN_API_KEY" in res["error"]


def test_one_failing_recipient_does_not_block_others(conn, seed, cfg, clock, mailer) -> None:
    issuer_id = seed.issuer()
    seed.subscriber("u1")
    seed.subscriber("u2")
    bad = _enqueue(conn, "u1", issuer_id)[0]
    good = _enqueue(conn, "u2", issuer_id)[0]
    mailer.fail_for.add("u1@example.com")

    res = NotificationDispatcher(cfg, mailer, clock=clock).process_realtime(conn)

    assert res["sent"] == 1
    assert res["retrying"] == 1
    assert _status(conn, good)["status"] == "sent"
    assert _status(conn, bad)["status"] == "pending"
    assert [m["to"] for m in mailer.sent] == ["u2@example.com"]


def test_unverified_addresses_receive_nothing(conn, seed, cfg, clock, mailer) -> None:
    issuer_id = seed.issuer()
    seed.subscriber("u1", verified=False)
    seed.subscriber("d1", verified=False, digest_mode=True, digest_time="12:00")
    _enqueue(conn, "u1", issuer_id)
    _enqueue(conn, "d1", issuer_id)
    dispatcher = NotificationDispatcher(cfg, mailer, clock=clock)

    assert dispatcher.process_realtime(conn)["processed"] == 0
    assert dispatcher.process_digests(conn)["sent"] == 0
    assert mailer.sent == []
