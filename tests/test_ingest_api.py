"""Tests del gateway HTTP de ingesta."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from common.stream import AppendResult
from ingest_api.main import create_app


def _payload(**overrides):
    data = {
        "sessionId": "s-123",
        "clientTimestampMs": 1717000000000,
        "fileUri": "file:///repo/src/App.java",
        "fileName": "App.java",
        "lineNumber": 42,
        "textNormalized": "return total;",
        "source": "manual",
    }
    data.update(overrides)
    return data


@pytest.fixture
def producer():
    p = MagicMock()
    p.append.return_value = AppendResult(stream="code_events:2", partition=2, entry_id="1-0")
    return p


@pytest.fixture
def client(producer, monkeypatch):
    monkeypatch.setenv("INGEST_API_KEY", "secret")
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("CODE_ACTIVITY_ENV_FILE", "")
    with TestClient(create_app(producer=producer)) as c:
        yield c


AUTH = {"X-API-Key": "secret"}


class TestIngestEvent:

    def test_accepts_valid_event(self, client, producer):
        resp = client.post("/api/events", json=_payload(), headers=AUTH)

        assert resp.status_code == 200
        assert resp.json() == {"message": "Event received successfully", "sessionId": "s-123"}

        (event,), _ = producer.append.call_args
        assert event.session_id == "s-123"
        assert event.line_number == 42
        assert event.server_timestamp_ms is not None
        assert event.server_timestamp_ms > 0

    @pytest.mark.parametrize(
        "field", ["sessionId", "clientTimestampMs", "fileUri", "fileName", "lineNumber", "textNormalized", "source"]
    )
    def test_missing_field_rejected(self, client, producer, field):
        data = _payload()
        del data[field]

        resp = client.post("/api/events", json=data, headers=AUTH)

        assert resp.status_code == 422
        producer.append.assert_not_called()

    @pytest.mark.parametrize("field", ["sessionId", "fileUri", "fileName", "textNormalized", "source"])
    def test_blank_field_rejected(self, client, producer, field):
        resp = client.post("/api/events", json=_payload(**{field: "   "}), headers=AUTH)

        assert resp.status_code == 422
        producer.append.assert_not_called()

    def test_negative_line_number_rejected(self, client):
        resp = client.post("/api/events", json=_payload(lineNumber=-1), headers=AUTH)
        assert resp.status_code == 422

    def test_log_unavailable_returns_503(self, client, producer):
        producer.append.return_value = None

        resp = client.post("/api/events", json=_payload(), headers=AUTH)

        assert resp.status_code == 503
        assert resp.json() == {"detail": "Event log unavailable"}


class TestApiKey:

    def test_missing_key(self, client, producer):
        resp = client.post("/api/events", json=_payload())

        assert resp.status_code == 401
        producer.append.assert_not_called()

    def test_wrong_key(self, client):
        resp = client.post("/api/events", json=_payload(), headers={"X-API-Key": "nope"})
        assert resp.status_code == 401

    def test_dev_mode_without_key(self, producer, monkeypatch):
        monkeypatch.delenv("INGEST_API_KEY", raising=False)
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("CODE_ACTIVITY_ENV_FILE", "")
        with TestClient(create_app(producer=producer)) as c:
            resp = c.post("/api/events", json=_payload())

        assert resp.status_code == 200

    def test_production_without_key_is_misconfiguration(self, producer, monkeypatch):
        monkeypatch.delenv("INGEST_API_KEY", raising=False)
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("CODE_ACTIVITY_ENV_FILE", "")
        with TestClient(create_app(producer=producer)) as c:
            resp = c.post("/api/events", json=_payload())

        assert resp.status_code == 500


class TestHealthAndMetrics:

    def test_health_is_public(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "degraded"

    def test_metrics_exposed(self, client):
        client.post("/api/events", json=_payload(), headers=AUTH)

        resp = client.get("/metrics")

        assert resp.status_code == 200
        assert "ingest_events_total" in resp.text
