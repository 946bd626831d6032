import asyncio

import pytest
from fastapi.testclient import TestClient

from freedompro_local import routes
from freedompro_local.api import FreedomproLocalAPI
from freedompro_local.cloud import CloudAPIError
from freedompro_local.homekit_uuids import generate_uuid

from conftest import FakeCloud, RecordingHost, make_device

KITCHEN = generate_uuid("A1")


@pytest.fixture
def cloud():
    return FakeCloud(devices=[make_device(accessories=(("A1", "Kitchen"), ("A2", "Hall")))])


@pytest.fixture
def local_api(cloud):
    local_api = FreedomproLocalAPI(cloud, RecordingHost())
    asyncio.run(local_api.discover_devices())
    return local_api


@pytest.fixture
def client(local_api):
    app = routes.create_app()
    routes.register_routes(app, lambda: local_api)
    return TestClient(app)


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "Freedompro Local"


def test_list_accessories(client):
    response = client.get("/accessories", params={"enhanced": "false"})
    assert response.status_code == 200
    names = sorted(a["display_name"] for a in response.json()["accessories"])
    assert names == ["Hall", "Kitchen"]


def test_get_unknown_accessory(client):
    assert client.get("/accessories/nope").status_code == 404
    assert client.get("/accessories/nope/state").status_code == 404
    assert client.put("/accessories/nope/state", json={"on": True}).status_code == 404


def test_put_state_then_get_from_cache(client, cloud):
    response = client.put(f"/accessories/{KITCHEN}/state", json={"on": True})
    assert response.status_code == 200
    assert response.json() == {"uuid": KITCHEN, "on": True}

    response = client.get(f"/accessories/{KITCHEN}/state")
    assert response.json() == {"uuid": KITCHEN, "on": True}
    assert cloud.set_calls == [("dev-1*A1", True)]
    assert cloud.state_calls == []


def test_put_state_cloud_failure(client, cloud):
    cloud.fail_set = CloudAPIError("HTTP 500")
    response = client.put(f"/accessories/{KITCHEN}/state", json={"on": True})
    assert response.status_code == 502
    assert client.get(f"/accessories/{KITCHEN}/state").json()["on"] is False


def test_put_state_validates_body(client):
    assert client.put(f"/accessories/{KITCHEN}/state", json={"brightness": 3}).status_code == 422


def test_status(client, local_api):
    response = client.get("/status")
    assert response.status_code == 200
    data = response.json()
    assert data["accessories"] == 2
    assert "stream" in data and "polling" in data


def test_refresh(client, cloud):
    cloud.devices.append(make_device("dev-2", (("B1", "Garage"),)))
    response = client.post("/refresh")
    assert response.status_code == 200
    assert response.json()["created"] == 1
    assert response.json()["restored"] == 2


def test_refresh_failure(client, cloud):
    async def broken():
        raise CloudAPIError("timed out")

    cloud.list_devices = broken
    assert client.post("/refresh").status_code == 502


def test_uninitialized_bridge():
    app = routes.create_app()
    routes.register_routes(app, lambda: None)
    assert TestClient(app).get("/status").status_code == 503


def test_api_keys_enforced(client, monkeypatch):
    monkeypatch.setattr(routes, "API_KEYS", {"local-secret"})
    assert client.get("/status").status_code == 401
    assert client.get("/status", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/status", headers={"Authorization": "Bearer local-secret"}).status_code == 200
