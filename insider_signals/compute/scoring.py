"""Pure scoring functions.

Nothing here touches the database. The processors fetch plain records,
call into this module, and persist the results together with each
component so a score can always be explained after the fact.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from insider_signals.models import ClusterGroup, ImportanceBreakdown, TradeRecord

# (threshold, points), checked top-down
CLUSTER_INSIDER_TIERS: Tuple[Tuple[int, int], ...] = ((5, 30), (4, 25), (3, 20), (2, 15))
CLUSTER_VALUE_TIERS: Tuple[Tuple[float, int], ...] = (
    (10_000_000, 25),
    (5_000_000, 20),
    (2_500_000, 15),
    (1_000_000, 10),
    (250_000, 5),
)
IMPORTANCE_VALUE_TIERS: Tuple[Tuple[float, int], ...] = (
    (10_000_000, 100),
    (2_500_000, 60),
    (1_000_000, 40),
    (250_000, 20),
)
IMPORTANCE_VALUE_FLOOR = 10

FIRST_BUY_BONUS = 40
MAX_SIGNAL_STRENGTH = 100

# Qualification floors for the important-trades table
PURCHASE_NOISE_FLOOR = 100_000
LARGE_SALE_VALUE = 5_000_000
LARGE_SALE_HOLDINGS_FRACTION = 0.25
TEN_PERCENT_OWNER_MIN_VALUE = 1_000_000


def _tier(value: float, tiers: Iterable[Tuple[float, int]], default: int = 0) -> int:
    for threshold, points in tiers:
        if value >= threshold:
            return points
    return default


def is_ceo_title(title: Optional[str]) -> bool:
    t = (title or "").lower()
    return "chief executive" in t or "ceo" in t


def is_cfo_title(title: Optional[str]) -> bool:
    t = (title or "").lower()
    return "chief financial" in t or "cfo" in t


def is_c_suite_title(title: Optional[str]) -> bool:
    """CEO/CFO/COO/CTO, any "Chief ..." title, or a President."""
    t = (title or "").lower()
    if not t:
        return False
    if any(tok in t for tok in ("ceo", "cfo", "coo", "cto")):
        return True
    return "chief" in t or "president" in t


def role_priority(is_officer: bool, officer_title: Optional[str]) -> int:
    """Seniority used for cluster averaging: CEO=3, CFO=2, other officer=1, else 0."""
    if not is_officer:
        return 0
    if is_ceo_title(officer_title):
        return 3
    if is_cfo_title(officer_title):
        return 2
    return 1


def cluster_strength(group: ClusterGroup) -> int:
    """Signal strength of a same-day purchase cluster, 0..100."""
    score = _tier(group.total_insiders, CLUSTER_INSIDER_TIERS)
    score += _tier(float(group.total_value or 0.0), CLUSTER_VALUE_TIERS)

    if group.has_ceo_buy:
        score += 15
    if group.has_cfo_buy:
        score += 10

    if group.avg_role_priority >= 2:
        score += 10
    elif group.avg_role_priority >= 1:
        score += 5

    if group.has_ten_percent_owner:
        score += 10

    if group.total_insiders >= 4:
        score += 10
    elif group.total_insiders >= 3:
        score += 5

    return max(0, min(MAX_SIGNAL_STRENGTH, score))


def holdings_fraction(trade: TradeRecord) -> float:
    """shares_transacted relative to the position before the trade.

    For disposals the pre-trade position is following + sold; for
    acquisitions the following balance is used as-is.
    """
    shares = float(trade.shares_transacted or 0.0)
    following = float(trade.shares_owned_following or 0.0)
    base = following + shares if trade.acquired_disposed_code == "D" else following
    if base <= 0 or shares <= 0:
        return 0.0
    return shares / base


def importance_breakdown(trade: TradeRecord, cluster_size: int, *, first_buy: bool = False) -> ImportanceBreakdown:
    """Score one transaction. Shared by important trades and first buys."""
    value_score = _tier(float(trade.transaction_value or 0.0), IMPORTANCE_VALUE_TIERS, IMPORTANCE_VALUE_FLOOR)

    direction_score = 30 if trade.is_purchase else -10

    if trade.is_officer and (is_ceo_title(trade.officer_title) or is_cfo_title(trade.officer_title)):
        role_score = 30
    elif trade.is_officer:
        role_score = 15
    elif trade.is_director:
        role_score = 10
    else:
        role_score = 0

    pct = holdings_fraction(trade)
    if pct >= 0.5:
        ownership_score = 30
    elif pct >= 0.25:
        ownership_score = 20
    else:
        ownership_score = 0

    if cluster_size >= 3:
        cluster_score = 25
    elif cluster_size >= 2:
        cluster_score = 15
    else:
        cluster_score = 0

    timing_score = 0
    if (trade.direct_or_indirect or "").upper() == "I":
        timing_score -= 10
    if trade.is_10b5_1_plan:
        timing_score -= 25

    return ImportanceBreakdown(
        value_score=value_score,
        direction_score=direction_score,
        role_score=role_score,
        ownership_score=ownership_score,
        cluster_score=cluster_score,
        timing_score=timing_score,
        first_buy_score=FIRST_BUY_BONUS if first_buy else 0,
    )


def importance_score(trade: TradeRecord, cluster_size: int, *, first_buy: bool = False) -> int:
    return importance_breakdown(trade, cluster_size, first_buy=first_buy).total


def qualifies_as_important(trade: TradeRecord, cluster_size: int) -> bool:
    """Noise floor deciding which trades are stored as important.

    Independent from the score: a trade can score well and still fail the
    floor, or pass the floor with a modest score.
    """
    if trade.transaction_code == "A":
        return False
    if not trade.price_per_share or trade.price_per_share <= 0:
        return False
    if not trade.shares_transacted or trade.shares_transacted <= 0:
        return False

    value = float(trade.transaction_value or 0.0)

    if trade.is_purchase:
        if (
            value >= PURCHASE_NOISE_FLOOR
            or trade.is_officer
            or trade.is_ten_percent_owner
            or cluster_size >= 2
        ):
            return True

    if trade.is_sale:
        if value >= LARGE_SALE_VALUE:
            return True
        if trade.is_officer and is_c_suite_title(trade.officer_title):
            return True
        if holdings_fraction(trade) >= LARGE_SALE_HOLDINGS_FRACTION:
            return True

    if trade.is_ten_percent_owner and value >= TEN_PERCENT_OWNER_MIN_VALUE:
        return True

    return False


def priority_for_score(score: int) -> int:
    """Queue priority (higher sends first)."""
    if score >= 90:
        return 10
    if score >= 80:
        return 8
    if score >= 70:
        return 6
    if score >= 60:
        return 4
    return 2


def strength_label(strength: int) -> str:
    if strength >= 90:
        return "EXTREME"
    if strength >= 80:
        return "VERY HIGH"
    if strength >= 70:
        return "HIGH"
    if strength >= 60:
        return "MODERATE"
    return "NOTABLE"
