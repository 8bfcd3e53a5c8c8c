"""Database schema for the insider signal pipeline.

Three groups of tables live here:
- Filing Store (issuers, persons, filings, person_relationships,
  insider_transactions). Populated by the ingestion service; read-only here.
  The DDL is kept so a fresh database (dev, tests) is usable end to end.
- Signal tables (cluster_buy_signals, cluster_buy_trades,
  important_trade_signals, first_buy_signals, signal_history,
  issuer_signal_metrics). Recomputed every detection cycle.
- Notification tables (user_alert_preferences, notification_queue,
  notification_history, notification_digests). `users` belongs to the
  account system and is only read.

Timestamps are ISO-8601 TEXT (UTC, with 'Z'); dates are YYYY-MM-DD TEXT.
Both sort lexicographically in time order, so window filters are plain
string comparisons. Booleans are INTEGER 0/1 on both engines.

NOTE: The Postgres schema is generated from the SQLite schema with a small set of
transformations (types, autoincrement, views).
"""

from __future__ import annotations

import re


SCHEMA_SQLITE = r"""
PRAGMA foreign_keys = ON;

-- -----------------------------------------------------------------------------
-- Filing Store (external, read-only to the signal pipeline)
-- -----------------------------------------------------------------------------

CREATE TABLE IF NOT EXISTS filing_types (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type_code TEXT NOT NULL UNIQUE,
    type_name TEXT
);

CREATE TABLE IF NOT EXISTS issuers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cik TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    trading_symbol TEXT,
    sector TEXT,
    industry TEXT
);

CREATE TABLE IF NOT EXISTS persons (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cik TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    history_imported INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS filings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    accession_number TEXT NOT NULL UNIQUE,
    issuer_id INTEGER NOT NULL REFERENCES issuers(id),
    filing_type_id INTEGER NOT NULL REFERENCES filing_types(id),
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','processing','completed','failed')),
    filed_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_filings_issuer ON filings(issuer_id);
CREATE INDEX IF NOT EXISTS idx_filings_filed_at ON filings(filed_at);

CREATE TABLE IF NOT EXISTS person_relationships (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    filing_id INTEGER NOT NULL REFERENCES filings(id) ON DELETE CASCADE,
    person_id INTEGER NOT NULL REFERENCES persons(id),
    is_director INTEGER NOT NULL DEFAULT 0,
    is_officer INTEGER NOT NULL DEFAULT 0,
    is_ten_percent_owner INTEGER NOT NULL DEFAULT 0,
    officer_title TEXT,
    UNIQUE(filing_id, person_id)
);

CREATE TABLE IF NOT EXISTS insider_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    filing_id INTEGER NOT NULL REFERENCES filings(id) ON DELETE CASCADE,
    transaction_date TEXT NOT NULL,
    security_title TEXT,
    transaction_code TEXT NOT NULL,
    acquired_disposed_code TEXT NOT NULL,
    shares_transacted REAL,
    price_per_share REAL,
    transaction_value REAL,
    shares_owned_following REAL,
    direct_or_indirect TEXT,
    is_10b5_1_plan INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_insider_tx_filing ON insider_transactions(filing_id);
CREATE INDEX IF NOT EXISTS idx_insider_tx_date_code ON insider_transactions(transaction_date, transaction_code);

-- Account system table. Only id/email/verification are read here.
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    name TEXT,
    email_verified INTEGER NOT NULL DEFAULT 0
);

-- -----------------------------------------------------------------------------
-- Cluster buys
-- -----------------------------------------------------------------------------

CREATE TABLE IF NOT EXISTS cluster_buy_signals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issuer_id INTEGER NOT NULL REFERENCES issuers(id),
    transaction_date TEXT NOT NULL,

    total_insiders INTEGER NOT NULL,
    total_shares REAL NOT NULL,
    total_value REAL NOT NULL,

    signal_strength INTEGER NOT NULL,
    avg_role_priority REAL,
    has_ceo_buy INTEGER NOT NULL DEFAULT 0,
    has_cfo_buy INTEGER NOT NULL DEFAULT 0,
    has_ten_percent_owner INTEGER NOT NULL DEFAULT 0,

    buy_window_start TEXT NOT NULL,
    buy_window_end TEXT NOT NULL,

    detected_at TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_updated TEXT NOT NULL,

    UNIQUE(issuer_id, transaction_date)
);

CREATE INDEX IF NOT EXISTS idx_cluster_signals_date ON cluster_buy_signals(transaction_date);
CREATE INDEX IF NOT EXISTS idx_cluster_signals_active ON cluster_buy_signals(is_active) WHERE is_active = 1;
CREATE INDEX IF NOT EXISTS idx_cluster_signals_strength ON cluster_buy_signals(signal_strength DESC);

-- Line items, rebuilt from scratch whenever the parent cluster is recomputed.
CREATE TABLE IF NOT EXISTS cluster_buy_trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cluster_id INTEGER NOT NULL REFERENCES cluster_buy_signals(id) ON DELETE CASCADE,
    transaction_id INTEGER NOT NULL REFERENCES insider_transactions(id) ON DELETE CASCADE,
    person_id INTEGER NOT NULL REFERENCES persons(id),

    person_name TEXT NOT NULL,
    transaction_date TEXT NOT NULL,
    shares_transacted REAL NOT NULL,
    price_per_share REAL,
    transaction_value REAL NOT NULL,
    is_officer INTEGER NOT NULL DEFAULT 0,
    is_director INTEGER NOT NULL DEFAULT 0,
    is_ten_percent_owner INTEGER NOT NULL DEFAULT 0,
    officer_title TEXT,

    UNIQUE(cluster_id, transaction_id)
);

CREATE INDEX IF NOT EXISTS idx_cluster_trades_cluster ON cluster_buy_trades(cluster_id);

-- -----------------------------------------------------------------------------
-- Important trades
-- -----------------------------------------------------------------------------

CREATE TABLE IF NOT EXISTS important_trade_signals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    transaction_id INTEGER NOT NULL REFERENCES insider_transactions(id) ON DELETE CASCADE,
    filing_id INTEGER NOT NULL REFERENCES filings(id),

    -- Composite score (can be negative for sells)
    importance_score INTEGER NOT NULL,

    -- Components, stored for explainability
    value_score INTEGER NOT NULL DEFAULT 0,
    direction_score INTEGER NOT NULL DEFAULT 0,
    role_score INTEGER NOT NULL DEFAULT 0,
    ownership_score INTEGER NOT NULL DEFAULT 0,
    cluster_score INTEGER NOT NULL DEFAULT 0,
    timing_score INTEGER NOT NULL DEFAULT 0,
    first_buy_score INTEGER NOT NULL DEFAULT 0,

    -- Quick filters
    cluster_size INTEGER NOT NULL DEFAULT 0,
    is_first_buy INTEGER NOT NULL DEFAULT 0,
    is_purchase INTEGER NOT NULL DEFAULT 0,
    is_sale INTEGER NOT NULL DEFAULT 0,
    is_10b5_1_plan INTEGER NOT NULL DEFAULT 0,

    detected_at TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,

    UNIQUE(transaction_id)
);

CREATE INDEX IF NOT EXISTS idx_important_signals_score ON important_trade_signals(importance_score DESC);
CREATE INDEX IF NOT EXISTS idx_important_signals_active ON important_trade_signals(is_active) WHERE is_active = 1;

-- -----------------------------------------------------------------------------
-- First buys
-- -----------------------------------------------------------------------------

CREATE TABLE IF NOT EXISTS first_buy_signals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    transaction_id INTEGER NOT NULL REFERENCES insider_transactions(id) ON DELETE CASCADE,
    person_id INTEGER NOT NULL REFERENCES persons(id),
    issuer_id INTEGER NOT NULL REFERENCES issuers(id),
    transaction_date TEXT NOT NULL,

    lookback_days INTEGER NOT NULL,
    is_part_of_cluster INTEGER NOT NULL DEFAULT 0,
    cluster_size INTEGER NOT NULL DEFAULT 0,
    importance_score INTEGER NOT NULL,

    detected_at TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,

    UNIQUE(transaction_id)
);

CREATE INDEX IF NOT EXISTS idx_first_buys_person_issuer ON first_buy_signals(person_id, issuer_id);
CREATE INDEX IF NOT EXISTS idx_first_buys_active ON first_buy_signals(is_active) WHERE is_active = 1;

-- -----------------------------------------------------------------------------
-- Historical metrics (derived, never hand-edited)
-- -----------------------------------------------------------------------------

CREATE TABLE IF NOT EXISTS signal_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL UNIQUE,

    cluster_buys_count INTEGER NOT NULL DEFAULT 0,
    avg_cluster_size REAL NOT NULL DEFAULT 0,
    max_cluster_size INTEGER NOT NULL DEFAULT 0,
    total_cluster_value REAL NOT NULL DEFAULT 0,

    total_insider_buys INTEGER NOT NULL DEFAULT 0,
    total_insider_sells INTEGER NOT NULL DEFAULT 0,
    total_buy_value REAL NOT NULL DEFAULT 0,
    total_sell_value REAL NOT NULL DEFAULT 0,
    buy_sell_ratio REAL NOT NULL DEFAULT 0,

    first_buys_count INTEGER NOT NULL DEFAULT 0,

    important_trades_count INTEGER NOT NULL DEFAULT 0,
    avg_importance_score REAL NOT NULL DEFAULT 0,

    calculated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS issuer_signal_metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issuer_id INTEGER NOT NULL REFERENCES issuers(id),
    date TEXT NOT NULL,

    insider_buys_count INTEGER NOT NULL DEFAULT 0,
    insider_sells_count INTEGER NOT NULL DEFAULT 0,
    cluster_events INTEGER NOT NULL DEFAULT 0,
    first_buy_events INTEGER NOT NULL DEFAULT 0,

    total_buy_value REAL NOT NULL DEFAULT 0,
    total_sell_value REAL NOT NULL DEFAULT 0,
    buy_sell_ratio REAL NOT NULL DEFAULT 0,

    avg_buy_importance REAL NOT NULL DEFAULT 0,
    max_buy_importance INTEGER NOT NULL DEFAULT 0,

    calculated_at TEXT NOT NULL,

    UNIQUE(issuer_id, date)
);

CREATE INDEX IF NOT EXISTS idx_issuer_metrics_issuer_date ON issuer_signal_metrics(issuer_id, date DESC);

-- -----------------------------------------------------------------------------
-- Notifications
-- -----------------------------------------------------------------------------

CREATE TABLE IF NOT EXISTS user_alert_preferences (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL UNIQUE,

    notifications_enabled INTEGER NOT NULL DEFAULT 1,
    notification_email TEXT,

    cluster_buy_alerts INTEGER NOT NULL DEFAULT 1,
    important_trade_alerts INTEGER NOT NULL DEFAULT 1,
    first_buy_alerts INTEGER NOT NULL DEFAULT 1,

    cluster_min_insiders INTEGER NOT NULL DEFAULT 2,
    cluster_min_value REAL NOT NULL DEFAULT 1000000,
    cluster_min_strength INTEGER NOT NULL DEFAULT 60,
    important_trade_min_score INTEGER NOT NULL DEFAULT 70,

    digest_mode INTEGER NOT NULL DEFAULT 0,
    digest_time TEXT NOT NULL DEFAULT '09:00',
    max_alerts_per_day INTEGER NOT NULL DEFAULT 20,

    -- Comma-separated CIK or ticker tokens
    watched_companies TEXT,
    watched_sectors TEXT,
    excluded_companies TEXT,

    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS notification_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,

    notification_type TEXT NOT NULL CHECK (notification_type IN ('cluster_buy','important_trade','first_buy')),
    priority INTEGER NOT NULL DEFAULT 0,

    cluster_id INTEGER REFERENCES cluster_buy_signals(id) ON DELETE SET NULL,
    important_trade_id INTEGER REFERENCES important_trade_signals(id) ON DELETE SET NULL,
    first_buy_id INTEGER REFERENCES first_buy_signals(id) ON DELETE SET NULL,
    issuer_id INTEGER NOT NULL REFERENCES issuers(id),

    subject TEXT NOT NULL,
    body_text TEXT NOT NULL,
    body_html TEXT,

    signal_fingerprint TEXT NOT NULL,

    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','sent','failed','cancelled')),
    attempts INTEGER NOT NULL DEFAULT 0,
    last_attempt_at TEXT,
    sent_at TEXT,
    error_message TEXT,

    created_at TEXT NOT NULL,

    UNIQUE(user_id, signal_fingerprint)
);

CREATE INDEX IF NOT EXISTS idx_notif_queue_pending ON notification_queue(status, priority DESC, created_at);
CREATE INDEX IF NOT EXISTS idx_notif_queue_user ON notification_queue(user_id);

CREATE TABLE IF NOT EXISTS notification_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    notification_type TEXT NOT NULL,
    queue_id INTEGER,

    issuer_cik TEXT,
    issuer_name TEXT,

    subject TEXT,
    sent_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notif_history_user_sent ON notification_history(user_id, sent_at);

CREATE TABLE IF NOT EXISTS notification_digests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    digest_date TEXT NOT NULL,
    alerts_included INTEGER NOT NULL DEFAULT 0,
    sent_at TEXT NOT NULL,
    UNIQUE(user_id, digest_date)
);

-- -----------------------------------------------------------------------------
-- Read views (consumed by the public API service)
-- -----------------------------------------------------------------------------

CREATE VIEW IF NOT EXISTS vw_cluster_buy_details AS
SELECT
    cbs.id AS cluster_id,
    cbs.issuer_id,
    cbs.transaction_date,
    cbs.total_insiders,
    cbs.total_shares,
    cbs.total_value,
    cbs.signal_strength,
    cbs.avg_role_priority,
    cbs.has_ceo_buy,
    cbs.has_cfo_buy,
    cbs.has_ten_percent_owner,
    cbs.buy_window_start,
    cbs.buy_window_end,
    i.cik AS issuer_cik,
    i.name AS issuer_name,
    i.trading_symbol,
    i.sector,
    i.industry,
    cbs.detected_at,
    cbs.last_updated
FROM cluster_buy_signals cbs
JOIN issuers i ON i.id = cbs.issuer_id
WHERE cbs.is_active = 1;

CREATE VIEW IF NOT EXISTS vw_important_trades_details AS
SELECT
    its.id AS signal_id,
    its.transaction_id,
    its.importance_score,
    its.value_score,
    its.direction_score,
    its.role_score,
    its.ownership_score,
    its.cluster_score,
    its.timing_score,
    its.first_buy_score,
    its.cluster_size,
    its.is_first_buy,
    its.is_purchase,
    its.is_sale,
    its.is_10b5_1_plan,
    its.detected_at,
    f.accession_number,
    f.filed_at,
    ft.type_code AS form_type,
    i.id AS issuer_id,
    i.cik AS issuer_cik,
    i.name AS issuer_name,
    i.trading_symbol,
    p.id AS person_id,
    p.cik AS person_cik,
    p.name AS person_name,
    pr.is_director,
    pr.is_officer,
    pr.officer_title,
    pr.is_ten_percent_owner,
    it.transaction_date,
    it.security_title,
    it.transaction_code,
    it.acquired_disposed_code,
    it.shares_transacted,
    it.price_per_share,
    it.transaction_value,
    it.shares_owned_following,
    it.direct_or_indirect
FROM important_trade_signals its
JOIN insider_transactions it ON it.id = its.transaction_id
JOIN filings f ON f.id = its.filing_id
JOIN filing_types ft ON ft.id = f.filing_type_id
JOIN issuers i ON i.id = f.issuer_id
JOIN person_relationships pr ON pr.filing_id = f.id
JOIN persons p ON p.id = pr.person_id
WHERE its.is_active = 1;

CREATE VIEW IF NOT EXISTS vw_first_buy_details AS
SELECT
    fbs.id AS signal_id,
    fbs.transaction_id,
    fbs.transaction_date,
    fbs.lookback_days,
    fbs.is_part_of_cluster,
    fbs.cluster_size,
    fbs.importance_score,
    fbs.detected_at,
    f.accession_number,
    f.filed_at,
    i.id AS issuer_id,
    i.cik AS issuer_cik,
    i.name AS issuer_name,
    i.trading_symbol,
    p.id AS person_id,
    p.cik AS person_cik,
    p.name AS person_name,
    pr.is_director,
    pr.is_officer,
    pr.officer_title,
    pr.is_ten_percent_owner,
    it.shares_transacted,
    it.price_per_share,
    it.transaction_value,
    it.shares_owned_following
FROM first_buy_signals fbs
JOIN insider_transactions it ON it.id = fbs.transaction_id
JOIN filings f ON f.id = it.filing_id
JOIN issuers i ON i.id = fbs.issuer_id
JOIN persons p ON p.id = fbs.person_id
JOIN person_relationships pr ON pr.filing_id = f.id AND pr.person_id = fbs.person_id
WHERE fbs.is_active = 1;

CREATE VIEW IF NOT EXISTS vw_pending_notifications AS
SELECT
    nq.id AS queue_id,
    nq.user_id,
    nq.notification_type,
    nq.priority,
    nq.issuer_id,
    nq.subject,
    nq.attempts,
    nq.created_at,
    COALESCE(uap.notification_email, u.email) AS delivery_email,
    uap.digest_mode,
    uap.max_alerts_per_day
FROM notification_queue nq
JOIN user_alert_preferences uap ON uap.user_id = nq.user_id
JOIN users u ON u.id = nq.user_id
WHERE nq.status = 'pending';
"""


def _sqlite_to_postgres(ddl: str) -> str:
    # Remove SQLite pragmas
    lines: list[str] = []
    for line in ddl.splitlines():
        if line.strip().upper().startswith("PRAGMA "):
            continue
        lines.append(line)
    out = "\n".join(lines)

    # Types
    out = re.sub(r"\bREAL\b", "DOUBLE PRECISION", out)

    # AUTOINCREMENT primary keys
    out = re.sub(
        r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        "BIGSERIAL PRIMARY KEY",
        out,
        flags=re.IGNORECASE,
    )
    out = re.sub(r"\bAUTOINCREMENT\b", "", out, flags=re.IGNORECASE)

    # Views: Postgres has no IF NOT EXISTS for views
    out = re.sub(r"CREATE\s+VIEW\s+IF\s+NOT\s+EXISTS", "CREATE OR REPLACE VIEW", out, flags=re.IGNORECASE)

    return out


SCHEMA_POSTGRES = _sqlite_to_postgres(SCHEMA_SQLITE)


def get_schema_sql(dialect: str) -> str:
    d = (dialect or "").lower()
    if d.startswith("post"):
        return SCHEMA_POSTGRES
    return SCHEMA_SQLITE
