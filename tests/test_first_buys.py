from insider_signals.compute.first_buys import process_first_buys
from insider_signals.notify.orchestrator import NotificationOrchestrator
from insider_signals.store.read import first_buys


def _signals(conn):
    return conn.execute("SELECT * FROM first_buy_signals ORDER BY id").fetchall()


def test_repeat_buyer_within_lookback_is_not_a_first_buy(conn, seed, cfg, clock) -> None:
    issuer_id = seed.issuer("Yellow Inc", symbol="YLW")
    p = seed.person("Pat Buyer")
    seed.trade(issuer_id, p, "2026-01-18", shares=2000, is_director=True)
    seed.trade(issuer_id, p, "2026-03-09", shares=2000, is_director=True)

    res = process_first_buys(conn, cfg, clock=clock)

    assert res["processed"] == 0
    assert _signals(conn) == []


def test_first_purchase_is_flagged_and_scored(conn, seed, cfg, clock) -> None:
    issuer_id = seed.issuer("Yellow Inc", symbol="YLW")
    p = seed.person("Pat Buyer")
    tx = seed.trade(issuer_id, p, "2026-03-09", shares=2000, is_director=True)
    seed.subscriber("u1")

    res = process_first_buys(conn, cfg, clock=clock, orchestrator=NotificationOrchestrator(cfg, clock=clock))

    assert res["new"] == 1
    s = _signals(conn)[0]
    assert s["transaction_id"] == tx
    assert s["person_id"] == p
    assert s["lookback_days"] == 365
    assert s["is_part_of_cluster"] == 0
    # 10 value + 30 direction + 10 director + 40 first buy
    assert s["importance_score"] == 90

    rows = first_buys(conn)
    assert [r["person_name"] for r in rows] == ["Pat Buyer"]
    queued = conn.execute("SELECT * FROM notification_queue").fetchall()
    assert len(queued) == 1
    assert queued[0]["first_buy_id"] == s["id"]
    assert queued[0]["notification_type"] == "first_buy"


def test_prior_purchase_on_incomplete_filing_does_not_count(conn, seed, cfg, clock) -> None:
    issuer_id = seed.issuer()
    p = seed.person("Pat Buyer")
    seed.trade(issuer_id, p, "2025-11-01", shares=2000, status="pending")
    seed.trade(issuer_id, p, "2026-03-09", shares=2000)

    res = process_first_buys(conn, cfg, clock=clock)

    assert res["new"] == 1


def test_purchase_at_another_issuer_does_not_count(conn, seed, cfg, clock) -> None:
    a = seed.issuer("Alpha", symbol="ALP")
    b = seed.issuer("Beta", symbol="BET")
    p = seed.person("Pat Buyer")
    seed.trade(a, p, "2026-01-05", shares=2000)
    seed.trade(b, p, "2026-03-09", shares=2000)

    process_first_buys(conn, cfg, clock=clock)

    assert [r["issuer_id"] for r in _signals(conn)] == [b]


def test_first_buys_age_out(conn, seed, cfg, clock) -> None:
    issuer_id = seed.issuer()
    p = seed.person("Pat Buyer")
    seed.trade(issuer_id, p, "2026-03-09", shares=2000)
    process_first_buys(conn, cfg, clock=clock)

    clock.advance(days=100)
    res = process_first_buys(conn, cfg, clock=clock)

    assert res["retired"] == 1
    assert res["cleaned_up"] == 1
    assert _signals(conn) == []


def test_joint_filing_flags_the_owner_without_prior_purchases(conn, seed, cfg, clock) -> None:
    issuer_id = seed.issuer("Yellow Inc", symbol="YLW")
    repeat = seed.person("Repeat Owner")
    fresh = seed.person("Fresh Owner")
    seed.trade(issuer_id, repeat, "2026-01-05", shares=2000)
    tx = seed.trade(issuer_id, repeat, "2026-03-09", shares=2000)
    seed.co_owner(tx, fresh)

    res = process_first_buys(conn, cfg, clock=clock)

    assert res["new"] == 1
    rows = _signals(conn)
    assert [(r["transaction_id"], r["person_id"]) for r in rows] == [(tx, fresh)]
