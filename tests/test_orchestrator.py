from conftest import Seeder

from insider_signals.compute.clusters import process_cluster_buys
from insider_signals.models import AlertPreference, SignalSnapshot
from insider_signals.notify.orchestrator import NotificationOrchestrator, queue_summary
from insider_signals.notify.preferences import evaluate
from insider_signals.util.hashing import signal_fingerprint


def _snapshot(**kw) -> SignalSnapshot:
    base = dict(
        signal_type="cluster_buy",
        signal_id=1,
        signal_date="2026-03-09",
        fingerprint_id=1,
        issuer_id=1,
        issuer_cik="0000320193",
        issuer_name="Acme Corp",
        trading_symbol="ACME",
        sector="Technology",
        score=80,
        total_value=5_000_000.0,
        total_insiders=3,
    )
    base.update(kw)
    return SignalSnapshot(**base)


def _cluster(seed: Seeder, *values: float, date: str = "2026-03-09", symbol: str = "ACME", sector=None) -> int:
    issuer_id = seed.issuer(symbol=symbol, sector=sector)
    titles = ["Chief Executive Officer", None, None, "CFO"]
    for i, v in enumerate(values):
        p = seed.person(f"Buyer {i}")
        title = titles[i % len(titles)]
        seed.trade(issuer_id, p, date, shares=v / 100.0, price=100.0, officer_title=title, is_director=title is None)
    return issuer_id


def _queued(conn, user_id=None):
    if user_id is None:
        return conn.execute("SELECT * FROM notification_queue").fetchall()
    return conn.execute("SELECT * FROM notification_queue WHERE user_id=?", (user_id,)).fetchall()


def test_recomputed_cluster_is_queued_once(conn, seed, cfg, clock) -> None:
    issuer_id = _cluster(seed, 2_000_000, 1_000_000, 1_000_000)
    seed.subscriber("u1")
    process_cluster_buys(conn, cfg, clock=clock, orchestrator=NotificationOrchestrator(cfg, clock=clock))
    strength_1 = conn.execute("SELECT signal_strength FROM cluster_buy_signals").fetchone()["signal_strength"]

    cfo = seed.person("Late CFO")
    seed.trade(issuer_id, cfo, "2026-03-09", shares=10_000, price=100.0, officer_title="CFO")
    res = process_cluster_buys(conn, cfg, clock=clock, orchestrator=NotificationOrchestrator(cfg, clock=clock))
    strength_2 = conn.execute("SELECT signal_strength FROM cluster_buy_signals").fetchone()["signal_strength"]

    assert strength_1 == 60
    assert strength_2 == 85
    assert res["notified"] == 0
    assert len(_queued(conn, "u1")) == 1


def test_cluster_below_user_min_value_is_not_queued(conn, seed, cfg, clock) -> None:
    _cluster(seed, 1_000_000, 500_000)
    seed.subscriber("picky", cluster_min_value=2_000_000, cluster_min_strength=0)
    seed.subscriber("open", cluster_min_strength=0)

    process_cluster_buys(conn, cfg, clock=clock, orchestrator=NotificationOrchestrator(cfg, clock=clock))

    assert _queued(conn, "picky") == []
    assert len(_queued(conn, "open")) == 1


def test_only_enabled_verified_subscribers_are_considered(conn, seed, cfg, clock) -> None:
    _cluster(seed, 2_000_000, 1_000_000, 1_000_000)
    seed.subscriber("ok")
    seed.subscriber("unverified", verified=False)
    seed.subscriber("off", notifications_enabled=False)
    seed.subscriber("no_clusters", cluster_buy_alerts=False)

    process_cluster_buys(conn, cfg, clock=clock, orchestrator=NotificationOrchestrator(cfg, clock=clock))

    assert [r["user_id"] for r in _queued(conn)] == ["ok"]
    assert queue_summary(conn) == {"pending": 1}


def test_fingerprint_is_shared_by_users(conn, seed, cfg, clock) -> None:
    _cluster(seed, 2_000_000, 1_000_000, 1_000_000)
    seed.subscriber("u1")
    seed.subscriber("u2")

    process_cluster_buys(conn, cfg, clock=clock, orchestrator=NotificationOrchestrator(cfg, clock=clock))

    rows = _queued(conn)
    cluster_id = conn.execute("SELECT id FROM cluster_buy_signals").fetchone()["id"]
    assert {r["signal_fingerprint"] for r in rows} == {signal_fingerprint("cluster_buy", cluster_id, "2026-03-09")}
    assert len(rows) == 2

    orch = NotificationOrchestrator(cfg, clock=clock)
    assert orch.cluster_buy(conn, cluster_id) == 0
    assert orch.cluster_buy(conn, 9999) == 0


def test_rendered_cluster_message(conn, seed, cfg, clock) -> None:
    _cluster(seed, 2_000_000, 1_000_000, 1_000_000)
    seed.subscriber("u1")

    process_cluster_buys(conn, cfg, clock=clock, orchestrator=NotificationOrchestrator(cfg, clock=clock))

    q = _queued(conn, "u1")[0]
    assert q["subject"] == "MODERATE Cluster Buy Alert: 3 Insiders Buying ACME"
    assert "CEO participated in this cluster buy!" in q["body_text"]
    assert "Buyer 0 (Chief Executive Officer): $2,000,000" in q["body_text"]
    assert "https://app.test/settings/alerts" in q["body_html"]


def test_watchlist_by_ticker_or_cik() -> None:
    s = _snapshot()
    assert evaluate(AlertPreference(user_id="a", email="a@x", watched_companies=["ACME"]), s)[0]
    assert evaluate(AlertPreference(user_id="a", email="a@x", watched_companies=["320193"]), s)[0]
    ok, reason = evaluate(AlertPreference(user_id="a", email="a@x", watched_companies=["MSFT"]), s)
    assert not ok and reason == "not on watchlist"


def test_exclusion_vetoes_watchlist() -> None:
    pref = AlertPreference(user_id="a", email="a@x", watched_companies=["ACME"], excluded_companies=["acme"])
    assert evaluate(pref, _snapshot()) == (False, "excluded company")


def test_sector_filter_only_applies_to_clusters_with_a_sector() -> None:
    pref = AlertPreference(user_id="a", email="a@x", watched_sectors=["HEALTHCARE"])
    assert evaluate(pref, _snapshot()) == (False, "sector not watched")
    assert evaluate(pref, _snapshot(sector=None))[0]
    assert evaluate(pref, _snapshot(signal_type="important_trade", score=90))[0]


def test_trade_alerts_use_min_score() -> None:
    pref = AlertPreference(user_id="a", email="a@x", important_trade_min_score=80)
    assert evaluate(pref, _snapshot(signal_type="first_buy", score=79)) == (False, "below min score")
    assert evaluate(pref, _snapshot(signal_type="first_buy", score=80)) == (True, "ok")
    off = AlertPreference(user_id="a", email="a@x", first_buy_alerts=False)
    assert evaluate(off, _snapshot(signal_type="first_buy", score=99)) == (False, "first_buy alerts disabled")
