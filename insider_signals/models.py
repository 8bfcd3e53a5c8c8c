from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class TradeRecord:
    """One insider transaction joined with its filing, reporting person and issuer.

    A filing with several reporting owners yields one record per owner.
    """

    transaction_id: int
    filing_id: int
    issuer_id: int
    issuer_cik: str
    issuer_name: str
    trading_symbol: Optional[str]
    person_id: int
    person_name: str
    transaction_date: str
    transaction_code: str
    acquired_disposed_code: str
    shares_transacted: float
    price_per_share: float
    transaction_value: float
    shares_owned_following: Optional[float]
    direct_or_indirect: Optional[str]
    is_10b5_1_plan: bool
    is_officer: bool
    is_director: bool
    is_ten_percent_owner: bool
    officer_title: Optional[str]

    @property
    def is_purchase(self) -> bool:
        return self.transaction_code == "P" and self.acquired_disposed_code == "A"

    @property
    def is_sale(self) -> bool:
        return self.transaction_code == "S" and self.acquired_disposed_code == "D"


@dataclass(frozen=True)
class ClusterGroup:
    """Aggregate of same-day purchases at one issuer."""

    issuer_id: int
    transaction_date: str
    total_insiders: int
    total_shares: float
    total_value: float
    avg_role_priority: float
    has_ceo_buy: bool
    has_cfo_buy: bool
    has_ten_percent_owner: bool


@dataclass(frozen=True)
class ImportanceBreakdown:
    value_score: int
    direction_score: int
    role_score: int
    ownership_score: int
    cluster_score: int
    timing_score: int
    first_buy_score: int

    @property
    def total(self) -> int:
        return (
            self.value_score
            + self.direction_score
            + self.role_score
            + self.ownership_score
            + self.cluster_score
            + self.timing_score
            + self.first_buy_score
        )


@dataclass(frozen=True)
class LifecyclePlan:
    add: List[object] = field(default_factory=list)
    update: List[object] = field(default_factory=list)
    retire: List[object] = field(default_factory=list)


@dataclass(frozen=True)
class AlertPreference:
    """A subscriber's alert settings plus the resolved delivery address."""

    user_id: str
    email: Optional[str]
    notifications_enabled: bool = True
    cluster_buy_alerts: bool = True
    important_trade_alerts: bool = True
    first_buy_alerts: bool = True
    cluster_min_insiders: int = 2
    cluster_min_value: float = 1_000_000.0
    cluster_min_strength: int = 60
    important_trade_min_score: int = 70
    digest_mode: bool = False
    digest_time: str = "09:00"
    max_alerts_per_day: int = 20
    watched_companies: List[str] = field(default_factory=list)
    watched_sectors: List[str] = field(default_factory=list)
    excluded_companies: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SignalSnapshot:
    """What the orchestrator knows about one signal when fanning it out."""

    signal_type: str  # cluster_buy | important_trade | first_buy
    signal_id: int
    signal_date: str
    fingerprint_id: int
    issuer_id: int
    issuer_cik: str
    issuer_name: str
    trading_symbol: Optional[str]
    sector: Optional[str]
    score: int
    total_value: float
    total_insiders: int = 0


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    text: str
    html: str
