from fastapi.testclient import TestClient

from services.lending.src.lending.main import app

client = TestClient(app)


def test_health_returns_ok():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_points_to_docs():
    response = client.get("/")
    assert response.json() == {"service": "lending-risk-engine-api", "docs": "/docs"}
