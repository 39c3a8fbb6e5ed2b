"""Tests for the control API endpoints."""

import pytest
from fastapi.testclient import TestClient

from codeforge.main import create_app


@pytest.fixture
def client(session):
    with TestClient(create_app(session)) as test_client:
        yield test_client


class TestHealth:
    def test_basic_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_docker_health(self, client):
        response = client.get("/health/docker")
        assert response.status_code == 200
        assert response.json()["docker_command"] == "docker"

    def test_docker_health_unavailable(self, client, daemon):
        daemon.unreachable = True
        response = client.get("/health/docker")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestState:
    def test_state_after_startup(self, client):
        data = client.get("/state").json()
        assert data["is_initialized"] is False
        assert data["container_count"] == 0
        assert data["sequence"] >= 1

    def test_refresh(self, client, session):
        session.initializer.initialize(session.workspace_path)
        data = client.post("/state/refresh").json()
        assert data["is_initialized"] is True
        assert data["build"] == "not_built"


class TestContainersAndCommands:
    def test_list_containers(self, client, daemon, session):
        daemon.add_container(f"{session.image_name}_terminal_1")
        daemon.add_container(f"{session.image_name}_command_2", running=False)
        data = client.get("/containers").json()
        assert data["prefix"] == session.image_name
        assert data["count"] == 2
        assert data["running"] == 1
        assert {c["type"] for c in data["containers"]} == {"terminal", "command"}

    def test_dispatch_initialize(self, client, session):
        response = client.post("/commands/initialize")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["result"]["is_initialized"] is True

    def test_dispatch_with_params(self, client, daemon, session):
        container = daemon.add_container(f"{session.image_name}_terminal_1")
        response = client.post(
            "/commands/stop_container", json={"container_id": container.id, "remove": True}
        )
        assert response.json()["success"] is True
        assert daemon.find(container.id) is None

    def test_dispatch_run_command(self, client, session):
        response = client.post("/commands/run_command", json={"command": "make test"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True, body["error"]
        assert body["result"]["type"] == "command"
        assert body["result"]["name"].startswith(f"{session.image_name}_command_")

    def test_dispatch_failure_reported_in_outcome(self, client, daemon):
        daemon.unreachable = True
        response = client.post("/commands/check_docker")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error_type"] == "daemon_unreachable"

    def test_unknown_command(self, client):
        response = client.post("/commands/format_disk")
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_capabilities(self, client):
        data = client.get("/capabilities").json()
        assert "terminate_all" in data["confirmation_sensitive"]
        assert any(c["name"] == "build_image" for c in data["commands"])
