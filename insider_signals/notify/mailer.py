from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from insider_signals.config import Config
from insider_signals.errors import MailConfigError, MailSendError


def _debug(msg: str) -> None:
    print(f"[mailer] {msg}")


@dataclass(frozen=True)
class SendResult:
    message_id: Optional[str]


class MailgunMailer:
    """Sends one message through the Mailgun HTTP API.

    The dispatcher only needs send(); anything with the same method works
    as a transport (tests use an in-memory fake).
    """

    def __init__(self, cfg: Config, session: Optional[requests.Session] = None):
        self.cfg = cfg
        self._session = session or requests.Session()

    def ensure_configured(self) -> None:
        if not (self.cfg.MAILGUN_API_KEY or "").strip():
            raise MailConfigError("MAILGUN_API_KEY is not set")
        if not (self.cfg.MAILGUN_DOMAIN or "").strip():
            raise MailConfigError("MAILGUN_DOMAIN is not set")

    def send(self, *, to: str, subject: str, text: str, html: Optional[str] = None) -> SendResult:
        self.ensure_configured()
        if not (to or "").strip():
            raise MailSendError("Recipient address is blank")

        url = f"{self.cfg.MAILGUN_BASE_URL.rstrip('/')}/{self.cfg.MAILGUN_DOMAIN}/messages"
        data: Dict[str, Any] = {
            "from": f"{self.cfg.MAIL_FROM_NAME} <{self.cfg.MAIL_FROM_EMAIL}>",
            "to": to,
            "subject": subject,
            "text": text,
            "o:tracking": "yes" if self.cfg.MAIL_TRACKING else "no",
        }
        if html:
            data["html"] = html

        try:
            r = self._session.post(
                url,
                auth=("api", self.cfg.MAILGUN_API_KEY or ""),
                data=data,
                timeout=self.cfg.MAIL_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise MailSendError(f"Mailgun request failed: {e}") from e

        if r.status_code != 200:
            raise MailSendError(f"Mailgun error {r.status_code}: {r.text[:300]}", status_code=r.status_code)

        try:
            payload = r.json() if r.text else {}
        except ValueError:
            payload = {}
        message_id = payload.get("id") if isinstance(payload, dict) else None
        _debug(f"Sent message_id={message_id}")
        return SendResult(message_id=message_id)
