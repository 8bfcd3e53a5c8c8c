import pytest
from fastapi.testclient import TestClient

from insider_signals.api.server import app


@pytest.fixture
def client(cfg, mailer):
    app.state.cfg = cfg
    app.state.mailer = mailer
    with TestClient(app) as c:
        yield c
    app.state.cfg = None
    app.state.mailer = None


def test_health(client) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["queue"] == {}


def test_process_rejects_unknown_processor(client) -> None:
    r = client.post("/process", json={"processor": "bogus"})
    assert r.status_code == 400


def test_process_single_processor(client) -> None:
    r = client.post("/process", json={"processor": "cluster-buys"})
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert list(body["results"]) == ["cluster-buys"]


def test_process_defaults_to_all(client) -> None:
    r = client.post("/process")
    assert r.status_code == 200
    assert len(r.json()["results"]) == 4


def test_notifications_process_uses_configured_mailer(client, conn, seed, mailer) -> None:
    issuer_id = seed.issuer()
    seed.subscriber("u1")
    conn.execute(
        """
        INSERT INTO notification_queue (user_id, notification_type, priority, issuer_id, subject, body_text, signal_fingerprint, created_at)
        VALUES ('u1', 'first_buy', 6, ?, 'Hello', 'Body', 'fp-1', '2026-03-10T12:00:00Z')
        """,
        (issuer_id,),
    )
    conn.commit()

    r = client.post("/notifications/process")

    assert r.status_code == 200
    assert r.json()["realtime"]["sent"] == 1
    assert mailer.sent[0]["to"] == "u1@example.com"


def test_test_email(client, mailer) -> None:
    assert client.post("/notifications/test-email", json={}).status_code == 400

    r = client.post("/notifications/test-email", json={"to": "ops@example.com"})
    assert r.status_code == 200
    assert r.json()["to"] == "ops@example.com"

    mailer.fail = True
    assert client.post("/notifications/test-email", json={"to": "ops@example.com"}).status_code == 502
