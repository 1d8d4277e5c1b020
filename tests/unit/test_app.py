"""Test cases for FastAPI application."""

from fastapi.testclient import TestClient


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_check_returns_ok(self, client: TestClient):
        """Test that health endpoint returns healthy status."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    def test_health_check_includes_timestamp(self, client: TestClient):
        """Test that health endpoint includes timestamp."""
        response = client.get("/health")

        assert response.status_code == 200
        assert "timestamp" in response.json()


class TestAPIRoot:
    """Test API root endpoint."""

    def test_api_root_returns_info(self, client: TestClient):
        """Test that API root returns application info."""
        response = client.get("/api/v1/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "boardflow"
        assert "version" in data
        assert "docs_url" in data


class TestRoutes:
    """Test route registration."""

    def test_approval_routes_registered(self, app):
        """Test that the approval router is mounted under the API prefix."""
        assert app.url_path_for("list_my_pending_approvals") == "/api/v1/approvals/pending"
        assert (
            app.url_path_for("decide_approval", record_id="rec-1")
            == "/api/v1/approvals/rec-1/decision"
        )
        assert (
            app.url_path_for("get_board_workflow", board_id="board-1")
            == "/api/v1/approvals/boards/board-1/workflow"
        )

    def test_approval_requires_actor(self, client: TestClient):
        """Test that approval endpoints need the acting user header."""
        response = client.get("/api/v1/approvals/pending")

        assert response.status_code == 422


class TestCORSConfiguration:
    """Test CORS middleware configuration."""

    def test_cors_preflight(self, client: TestClient):
        """Test that allowed origins pass preflight."""
        response = client.options(
            "/health",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
