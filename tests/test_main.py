"""Tests for the workflow service main application."""

from fastapi import FastAPI

from propflow.config import EngineSettings, get_settings
from propflow.main import create_app


class TestWorkflowApp:
    """Test the workflow service FastAPI application."""

    def test_creates_fastapi_instance(self):
        app = create_app()
        assert isinstance(app, FastAPI)

    def test_health_endpoint_returns_configured_service(self, client, test_settings):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == test_settings.app_name
        assert data["execution_timeout_seconds"] == 30.0

    def test_app_title_follows_settings(self, test_settings):
        app = create_app(test_settings)
        assert app.title == "propflow-workflows-test"

    def test_workflow_routes_mounted(self, app):
        paths = {getattr(route, "path", None) for route in app.routes}

        assert "/api/v1/workflows" in paths
        assert "/api/v1/workflows/{workflow_id}/execute" in paths
        assert "/api/v1/workflows/executions/{execution_id}/approvals/{step_id}" in paths

    def test_cors_configuration(self, client):
        response = client.options(
            "/health",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )

        assert response.status_code in [200, 204]

    def test_unknown_route_returns_404(self, client):
        response = client.get("/nonexistent-endpoint")
        assert response.status_code == 404


class TestEngineSettings:
    def test_defaults(self):
        settings = EngineSettings(_env_file=None)

        assert settings.execution_timeout_seconds == 300.0
        assert settings.persist_executions is False
        assert settings.execution_retention_days == 30

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PROPFLOW_EXECUTION_TIMEOUT_SECONDS", "12.5")
        monkeypatch.setenv("PROPFLOW_PERSIST_EXECUTIONS", "true")

        settings = EngineSettings(_env_file=None)

        assert settings.execution_timeout_seconds == 12.5
        assert settings.persist_executions is True

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
