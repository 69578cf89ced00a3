"""
Integration tests for the shelfscan API endpoints
"""
from fastapi.testclient import TestClient

from shelfscan import __version__
from shelfscan.main import app

client = TestClient(app)


class TestHealthEndpoint:
    """Test suite for health check endpoint"""

    def test_health_check_returns_200(self):
        response = client.get("/api/health")
        assert response.status_code == 200

    def test_health_check_response_format(self):
        data = client.get("/api/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__


class TestCrawlEndpoint:
    """Test suite for the crawl endpoint"""

    def test_invalid_body_rejected(self):
        response = client.post("/api/crawl", json={"extract_details": "not-a-bool"})
        assert response.status_code == 422
