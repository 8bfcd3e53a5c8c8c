from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from insider_signals.config import Config, load_config
from insider_signals.db import connect, init_db
from insider_signals.jobs.cycles import PROCESSORS, run_notification_cycle, run_signal_cycle
from insider_signals.notify.dispatcher import NotificationDispatcher
from insider_signals.notify.mailer import MailgunMailer
from insider_signals.notify.orchestrator import queue_summary
from insider_signals.util.time import utcnow_iso


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


app = FastAPI(title="Insider Signals", version="0.1.0")
cfg: Config = load_config()


def _cfg() -> Config:
    return getattr(app.state, "cfg", None) or cfg


def _mailer() -> Any:
    # Tests (and alternative transports) can set app.state.mailer.
    m = getattr(app.state, "mailer", None)
    return m if m is not None else MailgunMailer(_cfg())


@app.on_event("startup")
def _on_startup() -> None:
    if getattr(app.state, "cfg", None) is None:
        app.state.cfg = cfg
    init_db(_cfg().DB_DSN)


# -----------------------------
# Health
# -----------------------------


@app.get("/health")
def health() -> Dict[str, Any]:
    with connect(_cfg().DB_DSN) as conn:
        queue = queue_summary(conn)
    return {"status": "ok", "time": utcnow_iso(), "queue": queue}


# -----------------------------
# Detection
# -----------------------------


class ProcessIn(BaseModel):
    processor: str = "all"


@app.post("/process")
def process(body: Optional[ProcessIn] = None) -> Dict[str, Any]:
    name = (body.processor if body else "all").strip().lower()
    if name != "all" and name not in PROCESSORS:
        raise HTTPException(status_code=400, detail=f"Unknown processor: {name}")
    _debug(f"Manual signal cycle processor={name}")
    res = run_signal_cycle(_cfg().DB_DSN, _cfg(), processor=name)
    if res.get("error"):
        raise HTTPException(status_code=500, detail=res)
    return {"ok": True, **res}


# -----------------------------
# Notifications
# -----------------------------


@app.post("/notifications/process")
def process_notifications() -> Dict[str, Any]:
    _debug("Manual notification cycle")
    res = run_notification_cycle(_cfg().DB_DSN, _cfg(), mailer=_mailer())
    if res.get("error"):
        raise HTTPException(status_code=500, detail=res)
    return {"ok": True, **res}


class EmailCheckIn(BaseModel):
    user_id: Optional[str] = None
    to: Optional[str] = None


@app.post("/notifications/test-email")
def send_test_email(body: EmailCheckIn) -> Dict[str, Any]:
    if not (body.user_id or body.to):
        raise HTTPException(status_code=400, detail="user_id or to is required")
    dispatcher = NotificationDispatcher(_cfg(), _mailer())
    try:
        with connect(_cfg().DB_DSN) as conn:
            res = dispatcher.send_test_email(conn, user_id=body.user_id, to=body.to)
    except Exception as e:
        _debug(f"Test email failed user_id={body.user_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return {"ok": True, **res}
