import uuid

import pytest
from fastapi.testclient import TestClient

from app import app
from tests.conftest import make_config, make_goal


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def session_id() -> str:
    return f"test-{uuid.uuid4()}"


def orchestrate_body(session_id: str, message: str, **extra):
    body = {
        "message": message,
        "session_id": session_id,
        "user_id": "user-1",
        "tenant_id": "tenant-1",
        "goal_config": make_config(make_goal("collect_email", "critical")),
    }
    body.update(extra)
    return body


class TestOrchestrateEndpoint:

    def test_recommends_and_activates(self, client, session_id):
        response = client.post("/goals/orchestrate", json=orchestrate_body(session_id, "tell me about classes"))

        assert response.status_code == 200
        data = response.json()
        assert data["session_id"] == session_id
        assert data["config_source"] == "persona"
        assert data["recommendations"][0]["goal_id"] == "collect_email"
        assert data["recommendations"][0]["should_pursue"] is True
        assert data["state_updates"]["newly_activated"] == ["collect_email"]

        state = client.get(f"/goals/state/tenant-1/user-1/{session_id}").json()
        assert state["active_goals"] == ["collect_email"]
        assert state["message_count"] == 2

    def test_answer_completes_goal_and_triggers_intent(self, client, session_id):
        client.post("/goals/orchestrate", json=orchestrate_body(session_id, "tell me about classes"))
        response = client.post("/goals/orchestrate", json=orchestrate_body(session_id, "sure, jane@example.com"))

        data = response.json()
        assert data["state_updates"]["newly_completed"] == ["collect_email"]
        assert data["triggered_intents"] == ["lead_qualified"]
        assert data["extracted_info"]["email"]["value"] == "jane@example.com"

    def test_without_auto_activate(self, client, session_id):
        response = client.post(
            "/goals/orchestrate",
            json=orchestrate_body(session_id, "tell me about classes", auto_activate=False)
        )

        assert response.json()["state_updates"]["newly_activated"] == []

    def test_company_config_wins(self, client, session_id):
        body = orchestrate_body(
            session_id, "tell me about classes",
            company_goal_config=make_config(make_goal("collect_phone", "critical"))
        )

        data = client.post("/goals/orchestrate", json=body).json()

        assert data["config_source"] == "company"
        assert [r["goal_id"] for r in data["recommendations"]] == ["collect_phone"]

    def test_generates_session_id(self, client):
        body = orchestrate_body(None, "hello")
        del body["session_id"]

        data = client.post("/goals/orchestrate", json=body).json()

        assert data["session_id"]

    def test_no_goal_config_triggers_nothing(self, client, session_id):
        body = orchestrate_body(session_id, "hello")
        del body["goal_config"]

        data = client.post("/goals/orchestrate", json=body).json()

        assert data["config_source"] == "none"
        assert data["triggered_intents"] == []
        assert data["recommendations"] == []
        state = client.get(f"/goals/state/tenant-1/user-1/{session_id}").json()
        assert state["message_count"] == 0
        assert state["detected_intents"] == []

    def test_disabled_goal_config_leaves_state_alone(self, client, session_id):
        body = orchestrate_body(
            session_id, "my email is jane@example.com",
            goal_config=make_config(make_goal("collect_email", "critical"), enabled=False)
        )

        data = client.post("/goals/orchestrate", json=body).json()

        assert data["triggered_intents"] == []
        assert data["extracted_info"]["email"]["value"] == "jane@example.com"
        assert client.get(f"/goals/state/tenant-1/user-1/{session_id}").json()["collected_fields"] == []

    def test_invalid_goal_config(self, client, session_id):
        body = orchestrate_body(session_id, "hello", goal_config=make_config({"id": "g", "name": "G"}))

        response = client.post("/goals/orchestrate", json=body)

        assert response.status_code == 422
        assert "timing" in response.json()["detail"]

    def test_missing_fields(self, client):
        assert client.post("/goals/orchestrate", json={"message": "hello"}).status_code == 422


class TestStateEndpoints:

    def test_reset(self, client, session_id):
        client.post("/goals/orchestrate", json=orchestrate_body(session_id, "hello"))

        response = client.delete(f"/goals/state/tenant-1/user-1/{session_id}")

        assert response.json() == {"status": "reset", "session_id": session_id}
        assert client.get(f"/goals/state/tenant-1/user-1/{session_id}").json()["message_count"] == 0

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["active_conversations"] >= 0
