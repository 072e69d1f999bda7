from fastapi.testclient import TestClient


def test_health_check(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["cache"] == "memory"
    assert "ts" in data


def test_request_id_middleware(client: TestClient):
    """Ensure X-Request-ID header is present."""
    response = client.get("/health")
    assert response.status_code == 200
    assert "X-Request-ID" in response.headers
    assert len(response.headers["X-Request-ID"]) > 10


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "trace-abc-123456"})
    assert response.headers["X-Request-ID"] == "trace-abc-123456"


def test_error_responses_carry_request_id_and_code(client: TestClient):
    response = client.get("/elements/does-not-exist")
    assert response.status_code == 404
    assert "X-Request-ID" in response.headers
    body = response.json()
    assert body["code"] == "NOT_FOUND"
    assert body["detail"] == "Element not found"
    assert body["errors"] == []
