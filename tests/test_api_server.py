"""
Tests for the FastAPI server.

Nothing in the test environment configures a voice transport, so the
lifespan builds a text-only assistant.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import api_server
from api_server import RateLimitMiddleware, app, format_sse
from mentorai.realtime.events import NotificationEvent, SignalEvent, TranscriptEvent
from mentorai.realtime.response_provider import DEFAULT_RULES
from mentorai.realtime.session import (
    ConversationState,
    Notification,
    SignalSnapshot,
)

CALCULUS_REPLY = next(rule.reply for rule in DEFAULT_RULES if rule.name == "calculus")


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    """Tests for unauthenticated informational endpoints."""

    def test_health_ready(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "ready": True}

    def test_health_before_startup(self):
        response = TestClient(app).get("/api/health")
        assert response.json()["ready"] is False

    def test_welcome(self, client):
        response = client.get("/api/welcome")
        assert response.status_code == 200
        assert response.json()["message"]


class TestSessionEndpoints:
    """Tests for begin / submit / end / signals."""

    def test_not_ready_returns_503(self):
        response = TestClient(app).get("/api/session/signals")
        assert response.status_code == 503
        assert "starting up" in response.json()["detail"]

    def test_lifespan_builds_assistant(self, client):
        """Without a configured transport the lifespan still serves text questions."""
        assert api_server.assistant is not None
        assert api_server.assistant.state == "IDLE"

    def test_initial_signals(self, client):
        response = client.get("/api/session/signals")
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "idle"
        assert data["is_listening"] is False
        assert data["last_error"] is None

    def test_submit_question(self, client):
        response = client.post("/api/session/submit", json={"message": "Teach me calculus basics"})

        assert response.status_code == 200
        data = response.json()
        assert data["accepted"] is True
        assert data["signals"]["state"] == "idle"
        assert data["signals"]["last_transcript"] == "Teach me calculus basics"
        assert data["signals"]["last_response"] == CALCULUS_REPLY

    def test_submit_empty_rejected(self, client):
        response = client.post("/api/session/submit", json={"message": ""})
        assert response.status_code == 422

    def test_submit_blank_rejected(self, client):
        response = client.post("/api/session/submit", json={"message": "   "})
        assert response.status_code == 400

    def test_begin_without_microphone(self, client):
        """A text-only assistant cannot listen."""
        response = client.post("/api/session/begin")
        assert response.status_code == 200
        assert response.json()["accepted"] is False

    def test_end_is_always_accepted(self, client):
        response = client.post("/api/session/end")
        assert response.status_code == 200
        assert response.json()["accepted"] is True
        assert response.json()["signals"]["state"] == "idle"


class TestFormatSse:
    """Tests for server-sent event framing."""

    def test_signal_frame(self):
        frame = format_sse(SignalEvent(snapshot=SignalSnapshot(state=ConversationState.SPEAKING, is_speaking=True)))
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert '"type": "signals"' in frame
        assert '"state": "speaking"' in frame

    def test_notification_frame(self):
        note = Notification(kind="processing", level="error", title="Processing Error", message="Try again.")
        frame = format_sse(NotificationEvent(notification=note))
        assert '"type": "notification"' in frame
        assert '"title": "Processing Error"' in frame

    def test_other_events_skipped(self):
        assert format_sse(TranscriptEvent(text="x")) is None
        assert format_sse(NotificationEvent()) is None


class TestRateLimit:
    """Tests for the rate limiting middleware."""

    def _app(self, limit):
        limited = FastAPI()
        limited.add_middleware(RateLimitMiddleware, requests_limit=limit, window_seconds=60)

        @limited.get("/api/ping")
        async def ping():
            return {"ok": True}

        @limited.get("/api/health")
        async def health():
            return {"status": "healthy"}

        return limited

    def test_limit_exceeded(self):
        client = TestClient(self._app(2))

        assert client.get("/api/ping").status_code == 200
        assert client.get("/api/ping").status_code == 200
        response = client.get("/api/ping")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"

    def test_health_exempt(self):
        client = TestClient(self._app(1))

        for _ in range(3):
            assert client.get("/api/health").status_code == 200

    def test_limit_per_forwarded_client(self):
        client = TestClient(self._app(1))

        assert client.get("/api/ping", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
        assert client.get("/api/ping", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200
        assert client.get("/api/ping", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429
