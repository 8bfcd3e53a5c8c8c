from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

from insider_signals.compute.clusters import process_cluster_buys
from insider_signals.compute.first_buys import process_first_buys
from insider_signals.compute.important_trades import process_important_trades
from insider_signals.compute.metrics import process_historical_metrics
from insider_signals.config import Config
from insider_signals.db import connect
from insider_signals.notify.dispatcher import NotificationDispatcher
from insider_signals.notify.mailer import MailgunMailer
from insider_signals.notify.orchestrator import NotificationOrchestrator
from insider_signals.util.time import SystemClock


def _debug(msg: str) -> None:
    print(f"[cycles] {msg}")


def _run_clusters(conn: Any, cfg: Config, clock: SystemClock, orch: NotificationOrchestrator) -> Dict[str, Any]:
    return process_cluster_buys(conn, cfg, clock=clock, orchestrator=orch)


def _run_important(conn: Any, cfg: Config, clock: SystemClock, orch: NotificationOrchestrator) -> Dict[str, Any]:
    return process_important_trades(conn, cfg, clock=clock, orchestrator=orch)


def _run_first_buys(conn: Any, cfg: Config, clock: SystemClock, orch: NotificationOrchestrator) -> Dict[str, Any]:
    return process_first_buys(conn, cfg, clock=clock, orchestrator=orch)


def _run_metrics(conn: Any, cfg: Config, clock: SystemClock, orch: NotificationOrchestrator) -> Dict[str, Any]:
    return process_historical_metrics(conn, cfg, clock=clock)


# Order matters: metrics read what the three detectors just wrote.
PROCESSORS: Dict[str, Callable[..., Dict[str, Any]]] = {
    "cluster-buys": _run_clusters,
    "important-trades": _run_important,
    "first-buys": _run_first_buys,
    "historical-metrics": _run_metrics,
}


def resolve_processors(name: str) -> List[str]:
    n = (name or "all").strip().lower()
    if n == "all":
        return list(PROCESSORS)
    if n not in PROCESSORS:
        raise ValueError(f"Unknown processor: {name}")
    return [n]


def run_signal_cycle(
    db_dsn: str,
    cfg: Config,
    *,
    processor: str = "all",
    clock: Optional[SystemClock] = None,
) -> Dict[str, Any]:
    """Run the detection processors in sequence.

    Never raises. A processor failing as a whole stops the cycle; the
    result then carries "error" plus the summaries collected so far.
    """
    clock = clock or SystemClock()
    t0 = time.monotonic()
    result: Dict[str, Any] = {"started_at": clock.now_iso(), "results": {}}

    try:
        names = resolve_processors(processor)
        with connect(db_dsn) as conn:
            # One subscriber list for the whole cycle.
            orch = NotificationOrchestrator(cfg, clock=clock)
            for name in names:
                _debug(f"Running {name}")
                result["results"][name] = PROCESSORS[name](conn, cfg, clock, orch)
    except Exception as e:
        _debug(f"ERROR signal cycle: {e}")
        result["error"] = str(e)

    result["duration_ms"] = int((time.monotonic() - t0) * 1000)
    _debug(f"Signal cycle done ms={result['duration_ms']} error={result.get('error')}")
    return result


def run_notification_cycle(
    db_dsn: str,
    cfg: Config,
    *,
    mailer: Optional[Any] = None,
    clock: Optional[SystemClock] = None,
) -> Dict[str, Any]:
    """Drain the notification queue once. Never raises."""
    clock = clock or SystemClock()
    t0 = time.monotonic()
    result: Dict[str, Any] = {"started_at": clock.now_iso()}

    try:
        dispatcher = NotificationDispatcher(cfg, mailer or MailgunMailer(cfg), clock=clock)
        with connect(db_dsn) as conn:
            result.update(dispatcher.run(conn))
    except Exception as e:
        _debug(f"ERROR notification cycle: {e}")
        result["error"] = str(e)

    result["duration_ms"] = int((time.monotonic() - t0) * 1000)
    _debug(f"Notification cycle done ms={result['duration_ms']} error={result.get('error')}")
    return result
