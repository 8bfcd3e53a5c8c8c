from __future__ import annotations

from typing import List


def normalize_cik(cik: str | None) -> str | None:
    """Normalize a CIK: digits only, left-pad to 10.

    Returns None if input is blank or contains no digits.
    """
    if cik is None:
        return None
    s = str(cik).strip()
    if not s:
        return None
    digits = "".join(ch for ch in s if ch.isdigit())
    if not digits:
        return None
    return digits.zfill(10)


def split_tokens(raw: str | None, *, upper: bool = True) -> List[str]:
    """Split a comma-separated preference list ("AAPL, 320193 ,msft").

    Blank entries are dropped. Case is folded so comparisons are exact.
    """
    if not raw:
        return []
    out: List[str] = []
    for part in str(raw).split(","):
        tok = part.strip()
        if not tok:
            continue
        out.append(tok.upper() if upper else tok.lower())
    return out


def company_token_matches(token: str, *, issuer_cik: str | None, ticker: str | None) -> bool:
    """True if a watch/exclude token names this issuer, by ticker or by CIK.

    Digit-only tokens are compared as CIKs so "320193" matches "0000320193".
    """
    t = token.strip().upper()
    if not t:
        return False
    if ticker and t == ticker.strip().upper():
        return True
    if t.isdigit():
        return normalize_cik(t) is not None and normalize_cik(t) == normalize_cik(issuer_cik)
    return bool(issuer_cik) and t == str(issuer_cik).strip().upper()
