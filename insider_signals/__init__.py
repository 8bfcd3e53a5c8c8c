"""Insider Signals (SEC Form 4) - signal detection and alert dispatch.

This package is the batch core that sits between Form 4 ingestion and the
public read API:
- Detection cycle (every ~30 minutes): cluster buys, important trades,
  first buys, historical metrics. Results land in precomputed signal tables.
- Dispatch cycle (every ~5 minutes): drain the notification queue in
  real-time and digest modes.

Core concepts:
- Signals are recomputed, never streamed. Every write is a keyed upsert or an
  insert that ignores conflicts, so overlapping cycles are safe.
- One notification per (user, signal fingerprint), ever.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
