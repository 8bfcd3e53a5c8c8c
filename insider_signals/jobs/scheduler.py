from __future__ import annotations

import time
from typing import Any, Callable, Optional

from insider_signals.config import Config
from insider_signals.jobs.cycles import run_notification_cycle, run_signal_cycle


def _debug(msg: str) -> None:
    print(f"[scheduler] {msg}")


def run_scheduler_forever(
    cfg: Config,
    *,
    mailer: Optional[Any] = None,
    should_stop: Optional[Callable[[], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Run detection and dispatch on their own cadences.

    Both cycles are stateless batch jobs. A cycle that overruns its
    interval finishes; the next tick simply fires late. Cycle entry points
    never raise, so one bad tick cannot stop the loop.
    """
    _debug(
        f"Scheduler starting; detection every {cfg.DETECTION_INTERVAL_SECONDS}s, "
        f"dispatch every {cfg.DISPATCH_INTERVAL_SECONDS}s"
    )
    next_detection = time.monotonic()
    next_dispatch = time.monotonic()

    while not (should_stop and should_stop()):
        now = time.monotonic()
        if now >= next_detection:
            res = run_signal_cycle(cfg.DB_DSN, cfg)
            _debug(f"detection ms={res.get('duration_ms')} error={res.get('error')}")
            next_detection = time.monotonic() + max(1, int(cfg.DETECTION_INTERVAL_SECONDS))

        if time.monotonic() >= next_dispatch:
            res = run_notification_cycle(cfg.DB_DSN, cfg, mailer=mailer)
            _debug(f"dispatch ms={res.get('duration_ms')} error={res.get('error')}")
            next_dispatch = time.monotonic() + max(1, int(cfg.DISPATCH_INTERVAL_SECONDS))

        sleep(cfg.SCHEDULER_POLL_SECONDS)
