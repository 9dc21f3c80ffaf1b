# tests/test_health.py
from fastapi.testclient import TestClient

from app.main import app
from app.db.session import engine
from app.models import Base

client = TestClient(app)


def test_health_check():
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] in ("ok", "degraded")
    assert data["app"] == "MPT Phone Call Routing Engine"
    assert data["env"]
    assert data["database"] in ("ok", "error")


def test_engine_errors_render_structured_body():
    Base.metadata.create_all(bind=engine)

    response = client.get("/internal-calls/987654")
    assert response.status_code == 404
    assert response.json() == {"error": "Internal call not found"}


def test_request_validation_renders_as_400():
    response = client.get("/presence", params={"tenant_id": "not-a-number"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request"
    assert body["details"][0]["loc"] == ["query", "tenant_id"]
