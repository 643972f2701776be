"""
Medlink Triage - API Endpoint Tests

Tests for REST API endpoints using FastAPI TestClient.
These tests verify:
- Health, root and greeting endpoints
- Utterance handling and call state
- Call termination
- Guidance switch / stop
- Error handling

Run with: pytest tests/test_api_endpoints.py -v
"""

from fastapi.testclient import TestClient

ARREST = "Ma femme est inconsciente et ne respire plus"


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_returns_200(self, client: TestClient):
        response = client.get("/api/health")
        assert response.status_code == 200

    def test_health_returns_correct_structure(self, client: TestClient):
        data = client.get("/api/health").json()

        assert data["status"] == "healthy"
        assert data["active_calls"] == 0
        assert data["components"]["reply_generator"] == "StaticReplyGenerator"
        assert data["components"]["structured_extractor"] == "RegexStructuredExtractor"
        assert data["components"]["geocoder"] == "disabled"

    def test_health_counts_active_calls(self, client: TestClient):
        client.post("/api/calls/call-1/utterances", json={"text": "J'ai mal au pied"})
        assert client.get("/api/health").json()["active_calls"] == 1


class TestRootEndpoint:
    """Tests for the root endpoint."""

    def test_root_returns_service_info(self, client: TestClient):
        response = client.get("/")
        data = response.json()

        assert response.status_code == 200
        assert data["service"] == "Medlink Triage"
        assert data["status"] == "operational"
        assert "version" in data

    def test_greeting(self, client: TestClient):
        data = client.get("/api/greeting").json()
        assert data["text"].startswith("Bonjour")


class TestUtteranceEndpoint:
    """Tests for POST /api/calls/{call_id}/utterances."""

    def test_immediate_call(self, client: TestClient):
        response = client.post("/api/calls/call-1/utterances", json={"text": ARREST})
        data = response.json()

        assert response.status_code == 200
        assert data["reply_text"]
        assert data["retired"] is False

        snapshot = data["triage_snapshot"]
        assert snapshot["classification"]["tier"] == "immediate"
        assert snapshot["classification"]["priority"] == "P0"
        assert snapshot["classification"]["recommended_resource"] == "smur+vsav"
        assert snapshot["is_partial"] is True
        assert snapshot["vital_emergency"] is True

        assert data["guidance"]["protocol"] == "cpr"
        assert data["guidance"]["step_index"] == 0

    def test_guidance_progresses(self, client: TestClient):
        client.post("/api/calls/call-1/utterances", json={"text": ARREST})
        data = client.post("/api/calls/call-1/utterances", json={"text": "oui"}).json()

        assert data["guidance"]["step_index"] == 1
        assert data["triage_snapshot"]["is_partial"] is False

    def test_empty_text_rejected(self, client: TestClient):
        response = client.post("/api/calls/call-1/utterances", json={"text": ""})
        assert response.status_code == 422

    def test_missing_text_rejected(self, client: TestClient):
        response = client.post("/api/calls/call-1/utterances", json={})
        assert response.status_code == 422


class TestCallEndpoints:
    """Tests for call state and termination."""

    def test_get_call(self, client: TestClient):
        client.post("/api/calls/call-1/utterances", json={"text": ARREST})

        data = client.get("/api/calls/call-1").json()

        assert data["message_count"] == 2
        assert data["facts"]["consciousness"] == "unconscious"
        assert data["facts"]["breathing"] is False
        assert data["guidance"]["protocol"] == "cpr"

    def test_get_unknown_call(self, client: TestClient):
        response = client.get("/api/calls/missing")
        assert response.status_code == 404

    def test_end_call(self, client: TestClient):
        client.post("/api/calls/call-1/utterances", json={"text": ARREST})

        data = client.delete("/api/calls/call-1").json()

        assert data["call_id"] == "call-1"
        assert data["report"]["tier"] == "immediate"
        assert data["report"]["severity_score"] is not None
        assert client.get("/api/calls/call-1").status_code == 404

    def test_end_unknown_call(self, client: TestClient):
        data = client.delete("/api/calls/missing").json()
        assert data["report"] is None


class TestGuidanceEndpoints:
    """Tests for guidance switch and stop."""

    def test_switch_guidance(self, client: TestClient):
        client.post("/api/calls/call-1/utterances", json={"text": ARREST})

        response = client.put("/api/calls/call-1/guidance", json={"protocol": "choking_relief"})
        data = response.json()

        assert response.status_code == 200
        assert data["protocol"] == "choking_relief"
        assert data["step_index"] == 0

    def test_switch_unknown_call(self, client: TestClient):
        response = client.put("/api/calls/missing/guidance", json={"protocol": "cpr"})
        assert response.status_code == 404

    def test_switch_invalid_protocol(self, client: TestClient):
        client.post("/api/calls/call-1/utterances", json={"text": ARREST})
        response = client.put("/api/calls/call-1/guidance", json={"protocol": "yoga"})
        assert response.status_code == 422

    def test_stop_guidance(self, client: TestClient):
        client.post("/api/calls/call-1/utterances", json={"text": ARREST})

        assert client.delete("/api/calls/call-1/guidance").status_code == 204
        assert client.delete("/api/calls/call-1/guidance").status_code == 404
