from fastapi.testclient import TestClient
import pytest

from portfolio.abuse import AbuseGate, GateConfig
from portfolio.main import app
from portfolio.rate_limit import InMemoryGateStore
from portfolio.routers.contact import current_time_ms, get_gate
from portfolio.services.mailer import MailConfigurationError, MailDeliveryError

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "X-Forwarded-For": "203.0.113.7",
}


class FakeClock:
    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture()
def clock():
    return FakeClock(1_700_000_000_000)


@pytest.fixture()
def gate():
    return AbuseGate(
        GateConfig(max_per_window=3, window_ms=600_000, min_fill_ms=2_500, expected_origin="https://example.com"),
        InMemoryGateStore(),
        classifier=lambda user_agent: "bot" in user_agent.lower(),
    )


@pytest.fixture()
def sent(monkeypatch):
    outbox = []

    async def fake_send(reply_to: str, subject: str, text: str) -> str:
        outbox.append({"reply_to": reply_to, "subject": subject, "text": text})
        return "<test@example.com>"

    monkeypatch.setattr("portfolio.routers.contact.send_contact_email", fake_send)
    return outbox


@pytest.fixture()
def client(gate, clock):
    app.dependency_overrides[get_gate] = lambda: gate
    app.dependency_overrides[current_time_ms] = clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _payload(clock: FakeClock, **overrides) -> dict:
    payload = {
        "email": "visitor@example.com",
        "subject": "Project inquiry",
        "message": "Hi, I would like to talk about a project.",
        "started_at": clock.now - 10_000,
        "website": "",
    }
    payload.update(overrides)
    return payload


def test_form_endpoint_returns_render_timestamp(client, clock):
    response = client.get("/api/contact/form")
    assert response.status_code == 200
    assert response.json() == {"started_at": clock.now}


def test_valid_submission_is_sent(client, clock, sent):
    response = client.post("/api/contact", json=_payload(clock), headers=BROWSER_HEADERS)

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert sent == [
        {
            "reply_to": "visitor@example.com",
            "subject": "Project inquiry",
            "text": "Hi, I would like to talk about a project.",
        }
    ]


def test_rate_limit_returns_retry_after(client, clock, sent):
    for i in range(3):
        clock.now += 1
        response = client.post("/api/contact", json=_payload(clock, message=f"message {i}"), headers=BROWSER_HEADERS)
        assert response.status_code == 200

    clock.now += 1
    response = client.post("/api/contact", json=_payload(clock, message="message 4"), headers=BROWSER_HEADERS)

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "600"
    assert "10 minutes" in response.json()["detail"]
    assert len(sent) == 3


def test_duplicate_submission_rejected(client, clock, sent):
    assert client.post("/api/contact", json=_payload(clock), headers=BROWSER_HEADERS).status_code == 200

    clock.now += 100
    response = client.post("/api/contact", json=_payload(clock), headers=BROWSER_HEADERS)
    assert response.status_code == 429
    assert "already sent" in response.json()["detail"]

    clock.now += 100
    changed = _payload(clock, message="Hi, I would like to talk about a project!")
    assert client.post("/api/contact", json=changed, headers=BROWSER_HEADERS).status_code == 200
    assert len(sent) == 2


def test_too_fast_submission_rejected(client, clock, sent):
    response = client.post("/api/contact", json=_payload(clock, started_at=clock.now - 1_000), headers=BROWSER_HEADERS)
    assert response.status_code == 400
    assert sent == []


def test_missing_started_at_rejected(client, clock, sent):
    payload = _payload(clock)
    del payload["started_at"]
    response = client.post("/api/contact", json=payload, headers=BROWSER_HEADERS)
    assert response.status_code == 400
    assert sent == []


def test_oversized_started_at_rejected_as_too_fast(client, gate, clock, sent):
    response = client.post("/api/contact", json=_payload(clock, started_at=10**400), headers=BROWSER_HEADERS)

    assert response.status_code == 400
    assert response.json() == {"detail": "Please take a moment to complete the form and try again."}
    assert sent == []
    assert len(gate.store) == 0


def test_foreign_origin_gets_generic_error(client, clock, sent):
    headers = {**BROWSER_HEADERS, "Origin": "https://evil.example.net"}
    response = client.post("/api/contact", json=_payload(clock), headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Unable to process your message."
    assert sent == []


def test_same_origin_passes(client, clock, sent):
    headers = {**BROWSER_HEADERS, "Origin": "https://example.com"}
    assert client.post("/api/contact", json=_payload(clock), headers=headers).status_code == 200


def test_bot_user_agent_gets_generic_error(client, clock, sent):
    headers = {**BROWSER_HEADERS, "User-Agent": "FriendlyBot/1.0"}
    response = client.post("/api/contact", json=_payload(clock), headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Unable to process your message."


def test_honeypot_gets_generic_error(client, clock, sent):
    response = client.post("/api/contact", json=_payload(clock, website="http://spam.example"), headers=BROWSER_HEADERS)
    assert response.status_code == 400
    assert sent == []


def test_invalid_fields_do_not_consume_throttle(client, gate, clock, sent):
    bad = _payload(clock, email="not-an-email")
    response = client.post("/api/contact", json=bad, headers=BROWSER_HEADERS)
    assert response.status_code == 422
    assert gate.store.get_bucket("203.0.113.7") is None
    assert gate.store.get_record("203.0.113.7") is None

    clock.now += 100
    fixed = _payload(clock)
    assert client.post("/api/contact", json=fixed, headers=BROWSER_HEADERS).status_code == 200


@pytest.mark.parametrize(
    "overrides",
    [
        {"subject": "   "},
        {"subject": "x" * 201},
        {"message": ""},
        {"message": "x" * 20_001},
    ],
)
def test_field_validation(client, clock, sent, overrides):
    response = client.post("/api/contact", json=_payload(clock, **overrides), headers=BROWSER_HEADERS)
    assert response.status_code == 422
    assert sent == []


def test_clients_are_keyed_by_forwarded_ip(client, clock, sent):
    for i in range(3):
        clock.now += 1
        client.post("/api/contact", json=_payload(clock, message=f"message {i}"), headers=BROWSER_HEADERS)

    other = {**BROWSER_HEADERS, "X-Forwarded-For": "198.51.100.1, 10.0.0.1"}
    assert client.post("/api/contact", json=_payload(clock, message="message 4"), headers=other).status_code == 200


def test_mail_configuration_error_maps_to_503(client, clock, monkeypatch):
    async def not_configured(*_args) -> str:
        raise MailConfigurationError("SMTP_HOST not set")

    monkeypatch.setattr("portfolio.routers.contact.send_contact_email", not_configured)
    response = client.post("/api/contact", json=_payload(clock), headers=BROWSER_HEADERS)

    assert response.status_code == 503
    assert response.json()["detail"] == "Contact form is not configured"


def test_delivery_failure_maps_to_502(client, clock, monkeypatch):
    async def relay_down(*_args) -> str:
        raise MailDeliveryError("connection refused")

    monkeypatch.setattr("portfolio.routers.contact.send_contact_email", relay_down)
    response = client.post("/api/contact", json=_payload(clock), headers=BROWSER_HEADERS)

    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to send message. Please try again later."
