from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

import pytest

from insider_signals.config import Config
from insider_signals.db import connect, init_db
from insider_signals.errors import MailSendError
from insider_signals.notify.mailer import SendResult
from insider_signals.util.time import FixedClock

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)
TODAY = "2026-03-10"


class FakeMailer:
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail = False
        self.fail_for: Set[str] = set()

    def ensure_configured(self) -> None:
        return None

    def send(self, *, to: str, subject: str, text: str, html: Optional[str] = None) -> SendResult:
        if self.fail or to in self.fail_for:
            raise MailSendError("Mailgun error 500: boom", status_code=500)
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})
        return SendResult(message_id=f"<msg-{len(self.sent)}@test>")


class Seeder:
    """Writes Filing Store and account rows the way ingestion would."""

    def __init__(self, conn: Any):
        self.conn = conn
        self._n = 0
        conn.execute("INSERT OR IGNORE INTO filing_types (type_code, type_name) VALUES ('4', 'Form 4')")
        self.form4_type_id = int(conn.execute("SELECT id FROM filing_types WHERE type_code='4'").fetchone()["id"])

    def _next(self) -> int:
        self._n += 1
        return self._n

    def issuer(self, name: str = "Acme Corp", *, cik: Optional[str] = None, symbol: Optional[str] = "ACME", sector: Optional[str] = None) -> int:
        cik = cik or str(1000 + self._next()).zfill(10)
        cur = self.conn.execute(
            "INSERT INTO issuers (cik, name, trading_symbol, sector) VALUES (?,?,?,?)",
            (cik, name, symbol, sector),
        )
        return int(cur.lastrowid)

    def person(self, name: str) -> int:
        cur = self.conn.execute(
            "INSERT INTO persons (cik, name) VALUES (?,?)",
            (str(900000 + self._next()).zfill(10), name),
        )
        return int(cur.lastrowid)

    def trade(
        self,
        issuer_id: int,
        person_id: int,
        date: str,
        *,
        code: str = "P",
        ad: str = "A",
        shares: float = 1000.0,
        price: float = 100.0,
        value: Optional[float] = None,
        following: Optional[float] = 1_000_000.0,
        direct: str = "D",
        plan: bool = False,
        officer_title: Optional[str] = None,
        is_director: bool = False,
        is_ten_percent_owner: bool = False,
        filed_at: Optional[str] = None,
        status: str = "completed",
    ) -> int:
        """One filing + relationship + transaction. Returns the transaction id."""
        n = self._next()
        cur = self.conn.execute(
            "INSERT INTO filings (accession_number, issuer_id, filing_type_id, status, filed_at) VALUES (?,?,?,?,?)",
            (f"0000000000-26-{n:06d}", issuer_id, self.form4_type_id, status, filed_at or f"{date}T21:00:00Z"),
        )
        filing_id = int(cur.lastrowid)
        self.conn.execute(
            """
            INSERT INTO person_relationships (filing_id, person_id, is_director, is_officer, is_ten_percent_owner, officer_title)
            VALUES (?,?,?,?,?,?)
            """,
            (
                filing_id,
                person_id,
                1 if is_director else 0,
                1 if officer_title else 0,
                1 if is_ten_percent_owner else 0,
                officer_title,
            ),
        )
        cur = self.conn.execute(
            """
            INSERT INTO insider_transactions (
                filing_id, transaction_date, security_title, transaction_code, acquired_disposed_code,
                shares_transacted, price_per_share, transaction_value, shares_owned_following,
                direct_or_indirect, is_10b5_1_plan
            ) VALUES (?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                filing_id,
                date,
                "Common Stock",
                code,
                ad,
                shares,
                price,
                value if value is not None else shares * price,
                following,
                direct,
                1 if plan else 0,
            ),
        )
        self.conn.commit()
        return int(cur.lastrowid)

    def co_owner(
        self,
        transaction_id: int,
        person_id: int,
        *,
        officer_title: Optional[str] = None,
        is_director: bool = False,
        is_ten_percent_owner: bool = False,
    ) -> None:
        """Add another reporting owner to the filing behind a transaction (joint filing)."""
        filing_id = self.conn.execute(
            "SELECT filing_id FROM insider_transactions WHERE id=?", (transaction_id,)
        ).fetchone()["filing_id"]
        self.conn.execute(
            """
            INSERT INTO person_relationships (filing_id, person_id, is_director, is_officer, is_ten_percent_owner, officer_title)
            VALUES (?,?,?,?,?,?)
            """,
            (
                filing_id,
                person_id,
                1 if is_director else 0,
                1 if officer_title else 0,
                1 if is_ten_percent_owner else 0,
                officer_title,
            ),
        )
        self.conn.commit()

    def subscriber(self, user_id: str, *, email: Optional[str] = None, verified: bool = True, **prefs: Any) -> str:
        self.conn.execute(
            "INSERT INTO users (id, email, name, email_verified) VALUES (?,?,?,?)",
            (user_id, email or f"{user_id}@example.com", user_id, 1 if verified else 0),
        )
        cols = ["user_id"] + list(prefs)
        vals = [user_id] + [int(v) if isinstance(v, bool) else v for v in prefs.values()]
        self.conn.execute(
            f"INSERT INTO user_alert_preferences ({', '.join(cols)}) VALUES ({','.join('?' for _ in cols)})",
            vals,
        )
        self.conn.commit()
        return user_id


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def db_dsn(tmp_path) -> str:
    dsn = str(tmp_path / "signals.sqlite")
    init_db(dsn)
    return dsn


@pytest.fixture
def cfg(db_dsn) -> Config:
    return replace(Config(), DB_DSN=db_dsn, PUBLIC_APP_URL="https://app.test")


@pytest.fixture
def conn(db_dsn):
    with connect(db_dsn) as c:
        yield c


@pytest.fixture
def seed(conn) -> Seeder:
    return Seeder(conn)


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()
