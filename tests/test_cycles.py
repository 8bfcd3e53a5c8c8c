from insider_signals.jobs import cycles
from insider_signals.jobs.cycles import resolve_processors, run_signal_cycle
from insider_signals.jobs.scheduler import run_scheduler_forever
from insider_signals.store.read import active_clusters


def _seed_cluster(seed) -> int:
    issuer_id = seed.issuer("Acme Corp", symbol="ACME")
    for i, title in enumerate(["CEO", None, None]):
        p = seed.person(f"Buyer {i}")
        seed.trade(issuer_id, p, "2026-03-09", shares=10_000, price=100.0, officer_title=title, is_director=title is None)
    return issuer_id


def test_full_cycle_runs_every_processor_in_order(db_dsn, seed, cfg, clock) -> None:
    _seed_cluster(seed)
    seed.subscriber("u1")

    res = run_signal_cycle(db_dsn, cfg, clock=clock)

    assert "error" not in res
    assert list(res["results"]) == ["cluster-buys", "important-trades", "first-buys", "historical-metrics"]
    assert res["results"]["cluster-buys"]["new"] == 1
    assert res["results"]["first-buys"]["new"] == 3
    assert res["results"]["historical-metrics"]["days_processed"] == cfg.METRICS_LOOKBACK_DAYS


def test_single_processor(db_dsn, seed, cfg, clock) -> None:
    _seed_cluster(seed)
    res = run_signal_cycle(db_dsn, cfg, processor="cluster-buys", clock=clock)
    assert list(res["results"]) == ["cluster-buys"]


def test_unknown_processor_is_reported_not_raised(db_dsn, cfg, clock) -> None:
    res = run_signal_cycle(db_dsn, cfg, processor="nope", clock=clock)
    assert res["error"] == "Unknown processor: nope"
    assert res["results"] == {}


def test_failing_processor_stops_the_cycle(db_dsn, cfg, clock, monkeypatch) -> None:
    def boom(conn, cfg, clock, orch):
        raise RuntimeError("store unavailable")

    monkeypatch.setitem(cycles.PROCESSORS, "important-trades", boom)

    res = run_signal_cycle(db_dsn, cfg, clock=clock)

    assert res["error"] == "store unavailable"
    assert list(res["results"]) == ["cluster-buys"]


def test_resolve_processors() -> None:
    assert resolve_processors("ALL") == list(cycles.PROCESSORS)
    assert resolve_processors("first-buys") == ["first-buys"]


def test_active_clusters_read_contract(conn, seed, cfg, clock) -> None:
    _seed_cluster(seed)
    run_signal_cycle(cfg.DB_DSN, cfg, processor="cluster-buys", clock=clock)

    rows = active_clusters(conn, since="2026-03-01")
    assert len(rows) == 1
    assert rows[0]["trading_symbol"] == "ACME"
    assert len(rows[0]["trades"]) == 3
    assert active_clusters(conn, min_strength=rows[0]["signal_strength"] + 1) == []


def test_scheduler_runs_both_cycles_until_stopped(cfg, monkeypatch) -> None:
    calls = []
    monkeypatch.setattr("insider_signals.jobs.scheduler.run_signal_cycle", lambda dsn, c: calls.append("detect") or {})
    monkeypatch.setattr(
        "insider_signals.jobs.scheduler.run_notification_cycle", lambda dsn, c, mailer=None: calls.append("dispatch") or {}
    )
    ticks = iter([False, False, True])

    run_scheduler_forever(cfg, should_stop=lambda: next(ticks), sleep=lambda s: None)

    # Second tick is inside both intervals, so each cycle ran once.
    assert calls == ["detect", "dispatch"]
