from __future__ import annotations

from typing import Any, List, Optional, Tuple

from insider_signals.config import Config
from insider_signals.models import AlertPreference, SignalSnapshot
from insider_signals.util.normalization import company_token_matches, split_tokens


def _debug(msg: str) -> None:
    print(f"[preferences] {msg}")


_PREF_SELECT = """
SELECT
    uap.*,
    COALESCE(uap.notification_email, u.email) AS delivery_email
FROM user_alert_preferences uap
JOIN users u ON u.id = uap.user_id
"""


def preference_from_row(r: Any, cfg: Config) -> AlertPreference:
    max_per_day = r["max_alerts_per_day"]
    return AlertPreference(
        user_id=str(r["user_id"]),
        email=r["delivery_email"],
        notifications_enabled=bool(r["notifications_enabled"]),
        cluster_buy_alerts=bool(r["cluster_buy_alerts"]),
        important_trade_alerts=bool(r["important_trade_alerts"]),
        first_buy_alerts=bool(r["first_buy_alerts"]),
        cluster_min_insiders=int(r["cluster_min_insiders"]),
        cluster_min_value=float(r["cluster_min_value"]),
        cluster_min_strength=int(r["cluster_min_strength"]),
        important_trade_min_score=int(r["important_trade_min_score"]),
        digest_mode=bool(r["digest_mode"]),
        digest_time=str(r["digest_time"] or "09:00"),
        max_alerts_per_day=int(max_per_day) if max_per_day is not None else cfg.DEFAULT_MAX_ALERTS_PER_DAY,
        watched_companies=split_tokens(r["watched_companies"]),
        watched_sectors=split_tokens(r["watched_sectors"]),
        excluded_companies=split_tokens(r["excluded_companies"]),
    )


def load_subscribers(conn: Any, cfg: Config) -> List[AlertPreference]:
    """Users with notifications on and a verified address."""
    rows = conn.execute(
        f"""
        {_PREF_SELECT}
        WHERE uap.notifications_enabled = 1
          AND u.email_verified = 1
        ORDER BY uap.user_id
        """
    ).fetchall()
    return [preference_from_row(r, cfg) for r in rows]


def load_preference(conn: Any, cfg: Config, user_id: str) -> Optional[AlertPreference]:
    r = conn.execute(f"{_PREF_SELECT} WHERE uap.user_id = ?", (user_id,)).fetchone()
    if r is None:
        return None
    return preference_from_row(r, cfg)


class PreferenceCache:
    """Subscriber list fetched at most once per cycle."""

    def __init__(self, cfg: Config):
        self.cfg = cfg
        self._subscribers: Optional[List[AlertPreference]] = None

    def subscribers(self, conn: Any) -> List[AlertPreference]:
        if self._subscribers is None:
            self._subscribers = load_subscribers(conn, self.cfg)
            _debug(f"Loaded subscribers={len(self._subscribers)}")
        return self._subscribers


def _type_enabled(pref: AlertPreference, signal_type: str) -> bool:
    if signal_type == "cluster_buy":
        return pref.cluster_buy_alerts
    if signal_type == "important_trade":
        return pref.important_trade_alerts
    if signal_type == "first_buy":
        return pref.first_buy_alerts
    return False


def evaluate(pref: AlertPreference, signal: SignalSnapshot) -> Tuple[bool, str]:
    """Decide whether one subscriber gets an alert for one signal.

    Returns (ok, reason). Thresholds must all pass, then the watchlist
    (if any) must match, exclusions veto, and the sector filter applies
    to cluster buys that carry a sector.
    """
    if not pref.notifications_enabled:
        return False, "notifications disabled"
    if not _type_enabled(pref, signal.signal_type):
        return False, f"{signal.signal_type} alerts disabled"

    if signal.signal_type == "cluster_buy":
        if signal.total_insiders < pref.cluster_min_insiders:
            return False, "below min insiders"
        if signal.total_value < pref.cluster_min_value:
            return False, "below min value"
        if signal.score < pref.cluster_min_strength:
            return False, "below min strength"
    elif signal.score < pref.important_trade_min_score:
        return False, "below min score"

    if pref.watched_companies and not any(
        company_token_matches(tok, issuer_cik=signal.issuer_cik, ticker=signal.trading_symbol)
        for tok in pref.watched_companies
    ):
        return False, "not on watchlist"

    if any(
        company_token_matches(tok, issuer_cik=signal.issuer_cik, ticker=signal.trading_symbol)
        for tok in pref.excluded_companies
    ):
        return False, "excluded company"

    if signal.signal_type == "cluster_buy" and pref.watched_sectors and signal.sector:
        if signal.sector.strip().upper() not in pref.watched_sectors:
            return False, "sector not watched"

    return True, "ok"
