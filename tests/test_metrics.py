from insider_signals.compute.clusters import process_cluster_buys
from insider_signals.compute.metrics import RATIO_NO_SELLS, buy_sell_ratio, process_historical_metrics
from insider_signals.store.read import issuer_metrics, signal_history


def test_buy_sell_ratio() -> None:
    assert buy_sell_ratio(1_000.0, 250.0) == 4.0
    assert buy_sell_ratio(1_000.0, 0.0) == RATIO_NO_SELLS == 999.0
    assert buy_sell_ratio(0.0, 0.0) == 0.0


def _seed_activity(seed):
    a = seed.issuer("Alpha", cik="0000000111", symbol="ALP")
    b = seed.issuer("Beta", cik="0000000222", symbol="BET")
    p1, p2, p3 = seed.person("One"), seed.person("Two"), seed.person("Three")
    seed.trade(a, p1, "2026-03-09", shares=5000, price=100.0)
    seed.trade(a, p2, "2026-03-09", shares=5000, price=100.0)
    seed.trade(a, p3, "2026-03-09", code="S", ad="D", shares=2500, price=100.0)
    seed.trade(b, p1, "2026-03-08", shares=2000, price=100.0)
    return a, b


def test_daily_history_covers_every_day(conn, seed, cfg, clock) -> None:
    _seed_activity(seed)
    process_cluster_buys(conn, cfg, clock=clock)

    res = process_historical_metrics(conn, cfg, clock=clock)

    assert res["days_processed"] == cfg.METRICS_LOOKBACK_DAYS
    assert res["new"] == cfg.METRICS_LOOKBACK_DAYS
    assert res["failed"] == 0
    rows = {r["date"]: r for r in signal_history(conn, since="2026-03-07")}
    assert sorted(rows) == ["2026-03-07", "2026-03-08", "2026-03-09", "2026-03-10"]

    d9 = rows["2026-03-09"]
    assert d9["total_insider_buys"] == 2
    assert d9["total_insider_sells"] == 1
    assert d9["total_buy_value"] == 1_000_000.0
    assert d9["buy_sell_ratio"] == 4.0
    assert d9["cluster_buys_count"] == 1
    assert d9["max_cluster_size"] == 2

    assert rows["2026-03-08"]["buy_sell_ratio"] == RATIO_NO_SELLS
    quiet = rows["2026-03-07"]
    assert quiet["total_insider_buys"] == 0
    assert quiet["buy_sell_ratio"] == 0.0
    assert quiet["avg_cluster_size"] == 0.0


def test_rerun_updates_in_place(conn, seed, cfg, clock) -> None:
    _seed_activity(seed)
    process_historical_metrics(conn, cfg, clock=clock)

    res = process_historical_metrics(conn, cfg, clock=clock)

    assert res["new"] == 0
    assert res["updated"] == cfg.METRICS_LOOKBACK_DAYS
    n = conn.execute("SELECT COUNT(*) AS n FROM signal_history").fetchone()["n"]
    assert n == cfg.METRICS_LOOKBACK_DAYS


def test_issuer_metrics(conn, seed, cfg, clock) -> None:
    _seed_activity(seed)
    process_cluster_buys(conn, cfg, clock=clock)
    process_historical_metrics(conn, cfg, clock=clock)

    alpha = issuer_metrics(conn, "111", since="2026-03-01")
    assert len(alpha) == 1
    assert alpha[0]["date"] == "2026-03-09"
    assert alpha[0]["insider_buys_count"] == 2
    assert alpha[0]["cluster_events"] == 1
    assert alpha[0]["buy_sell_ratio"] == 4.0

    beta = issuer_metrics(conn, "0000000222", since="2026-03-01")
    assert beta[0]["buy_sell_ratio"] == RATIO_NO_SELLS
    assert issuer_metrics(conn, "", since="2026-03-01") == []
