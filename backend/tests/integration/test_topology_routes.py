"""
test_topology_routes.py

Integration tests for /elements and /topology.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from gridmon import deps
from gridmon.main import RETRY_AFTER_S
from gridmon.services import store as store_module


def _create(client: TestClient, element_type: str, name: str, **props):
    body = {"element_type": element_type, "name": name, "properties": props}
    if element_type == "line":
        body["path"] = [
            {"sequence_order": 0, "latitude": 0.0, "longitude": 0.0},
            {"sequence_order": 1, "latitude": 0.0, "longitude": 1.0},
        ]
    response = client.post("/elements", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def _bus(client, name, voltage_level=11.0, bus_type="pq"):
    return _create(client, "bus", name, voltage_level=voltage_level, bus_type=bus_type)


def _load(client, name, voltage_level=11.0):
    return _create(client, "load", name, voltage_level=voltage_level, rated_power=250.0)


def _connect(client, a, b, **kw):
    return client.post("/topology/connections", json={"from_element_id": a["id"], "to_element_id": b["id"], **kw})


# ============================================================
# ELEMENTS
# ============================================================

def test_element_crud_roundtrip(client: TestClient):
    bus = _bus(client, "Main Bus")
    assert bus["element_type"] == "bus"
    assert bus["properties"]["bus_type"] == "pq"

    response = client.put(f"/elements/{bus['id']}", json={"description": "Sub A", "status": "maintenance"})
    assert response.status_code == 200
    assert response.json()["status"] == "maintenance"

    listing = client.get("/elements", params={"type": "bus"}).json()
    assert listing["count"] == 1

    assert client.delete(f"/elements/{bus['id']}").status_code == 200
    assert client.get(f"/elements/{bus['id']}").status_code == 404
    assert client.get("/elements").json()["count"] == 0


def test_duplicate_name_conflicts(client: TestClient):
    _bus(client, "Main Bus")
    response = client.post(
        "/elements", json={"element_type": "bus", "name": "Main Bus", "properties": {"voltage_level": 11.0}}
    )
    assert response.status_code == 409
    assert response.json()["code"] == "CONFLICT"


@pytest.mark.parametrize("body", [
    {"element_type": "bus", "name": "B", "properties": {}},
    {"element_type": "load", "name": "L", "properties": {"voltage_level": 11.0, "rated_power": -1}},
    {"element_type": "generator", "name": "G", "properties": {
        "voltage_level": 11.0, "rated_capacity": 90.0, "min_capacity": 0.0, "max_capacity": 80.0}},
    {"element_type": "line", "name": "Ln", "properties": {"voltage_level": 11.0}},
])
def test_invalid_element_properties(client: TestClient, body):
    response = client.post("/elements", json=body)
    assert response.status_code == 422
    data = response.json()
    assert data["code"] == "VALIDATION_ERROR"
    assert data["errors"]


# ============================================================
# LINE COORDINATES
# ============================================================

def test_line_coordinates_replace_and_read(client: TestClient):
    line = _create(client, "line", "Line 1", voltage_level=33.0)
    assert line["properties"]["length"] == pytest.approx(111.195, abs=0.01)

    coords = [
        {"sequence_order": 2, "latitude": 1.0, "longitude": 1.0},
        {"sequence_order": 0, "latitude": 0.0, "longitude": 0.0},
        {"sequence_order": 1, "latitude": 0.0, "longitude": 1.0, "point_type": "tower"},
    ]
    response = client.put(f"/elements/lines/{line['id']}/coordinates", json={"coordinates": coords})
    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 3
    assert [c["point_type"] for c in data["coordinates"]] == ["start", "tower", "end"]
    assert data["length_km"] == pytest.approx(222.39, abs=0.01)

    read = client.get(f"/elements/lines/{line['id']}/coordinates").json()
    assert read["length_km"] == pytest.approx(data["length_km"])
    assert [c["sequence_order"] for c in read["coordinates"]] == [0, 1, 2]


def test_line_coordinates_errors(client: TestClient):
    bus = _bus(client, "Bus")
    two = [
        {"sequence_order": 0, "latitude": 0.0, "longitude": 0.0},
        {"sequence_order": 1, "latitude": 0.0, "longitude": 1.0},
    ]
    assert client.put("/elements/lines/missing/coordinates", json={"coordinates": two}).status_code == 404
    assert client.put(f"/elements/lines/{bus['id']}/coordinates", json={"coordinates": two}).status_code == 422
    assert client.put(f"/elements/lines/{bus['id']}/coordinates", json={"coordinates": two[:1]}).status_code == 422
    bad = [dict(two[0], latitude=91.0), two[1]]
    line = _create(client, "line", "Line 1", voltage_level=33.0)
    assert client.put(f"/elements/lines/{line['id']}/coordinates", json={"coordinates": bad}).status_code == 422


# ============================================================
# CONNECTIONS
# ============================================================

def test_connection_upsert_and_disconnect(client: TestClient):
    bus = _bus(client, "Bus")
    load = _load(client, "Load")

    first = _connect(client, bus, load)
    assert first.status_code == 201
    assert first.json()["created"] is True

    again = _connect(client, load, bus, connection_type="feeder")
    assert again.status_code == 200
    assert again.json()["created"] is False
    conn = again.json()["connection"]
    assert conn["id"] == first.json()["connection"]["id"]
    assert conn["connection_type"] == "feeder"

    response = client.delete(f"/topology/connections/{conn['id']}")
    assert response.status_code == 200
    assert response.json()["is_connected"] is False
    assert client.delete("/topology/connections/missing").status_code == 404

    listed = client.get(f"/elements/{bus['id']}/connections").json()
    assert len(listed) == 1


def test_invalid_topology_is_400(client: TestClient):
    a = _load(client, "Load A")
    b = _load(client, "Load B")
    response = _connect(client, a, b)
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "INVALID_TOPOLOGY"
    assert body["detail"] == "Invalid connection between load and load"


def test_connection_to_missing_element_is_404(client: TestClient):
    bus = _bus(client, "Bus")
    response = client.post("/topology/connections", json={"from_element_id": bus["id"], "to_element_id": "nope"})
    assert response.status_code == 404


# ============================================================
# TOPOLOGY VIEWS
# ============================================================

def test_topology_formats(client: TestClient):
    hv = _bus(client, "HV Bus", voltage_level=132.0, bus_type="slack")
    tx = _create(client, "transformer", "TX", primary_voltage=132.0, secondary_voltage=11.0, rated_power=40.0)
    mv = _bus(client, "MV Bus")
    load = _load(client, "Load")
    for a, b in [(hv, tx), (tx, mv), (mv, load)]:
        assert _connect(client, a, b).status_code == 201

    graph = client.get("/topology", params={"format": "graph"}).json()
    assert graph["format"] == "graph"
    assert len(graph["data"]["nodes"]) == 4
    assert len(graph["data"]["links"]) == 3

    matrix = client.get("/topology", params={"format": "matrix"}).json()["data"]
    assert sum(map(sum, matrix["matrix"])) == 6

    tree = client.get("/topology", params={"format": "hierarchical"}).json()["data"]
    assert tree[0]["id"] == hv["id"]
    assert tree[0]["children"][0]["id"] == tx["id"]

    adjacency = client.get("/topology", params={"format": "adjacency"}).json()["data"]
    assert {c["to"] for c in adjacency[mv["id"]]["connections"]} == {tx["id"], load["id"]}

    filtered = client.get("/topology", params={"voltage_level": 132}).json()
    assert filtered["metadata"]["element_count"] == 2


def test_topology_cache_invalidated_by_mutation(client: TestClient):
    bus = _bus(client, "Bus")
    assert client.get("/topology").json()["metadata"]["element_count"] == 1
    load = _load(client, "Load")
    assert _connect(client, bus, load).status_code == 201
    meta = client.get("/topology").json()["metadata"]
    assert meta["element_count"] == 2
    assert meta["connection_count"] == 1


def test_unknown_topology_format(client: TestClient):
    response = client.get("/topology", params={"format": "tree"})
    assert response.status_code == 422
    assert "hierarchical" in response.json()["detail"]


# ============================================================
# STORE FAILURES
# ============================================================

def test_store_outage_is_503_with_retry_after(client: TestClient, monkeypatch):
    def unavailable(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(store_module, "Session", unavailable)
    monkeypatch.setattr(deps.get_store(), "retry_backoff_s", 0.0)

    response = client.get("/elements/any-id")
    assert response.status_code == 503
    assert response.headers["Retry-After"] == str(RETRY_AFTER_S)
    assert response.headers["X-Request-ID"]
    assert response.json()["code"] == "STORE_UNAVAILABLE"
