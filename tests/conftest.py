import asyncio

import pytest

from freedompro_local.cloud import CloudAPIError
from freedompro_local.host import AccessoryHost
from freedompro_local.models import AccessoryDescriptor, DeviceDescriptor
from freedompro_local.registry import AccessoryRegistry, Reconciler
from freedompro_local.state import StateCache


class RecordingHost(AccessoryHost):
    """In-memory host that records every call made by the core."""

    def __init__(self, restored=None):
        self.restored = list(restored or [])
        self.created = []
        self.restored_calls = []
        self.notifications = []

    def restored_accessories(self):
        return list(self.restored)

    def create_local_accessory(self, accessory):
        self.created.append(accessory)

    def restore_local_accessory(self, accessory):
        self.restored_calls.append(accessory)

    def notify_characteristic_changed(self, accessory, value):
        self.notifications.append((accessory.uuid, value))


class FakeCloud:
    """Scripted stand-in for FreedomproCloudAPI.

    ``connections`` is a list of stream scripts; each script is a list of lines,
    optionally ending in an exception instance to raise. Once the scripts run
    out, ``stream_events`` blocks until cancelled.
    """

    def __init__(self, devices=None, connections=None):
        self.devices = list(devices or [])
        self.connections = list(connections or [])
        self.accessory_states = {}
        self.all_states = []
        self.set_calls = []
        self.state_calls = []
        self.fail_set = None
        self.fail_all_states = []
        self.fail_accessory_state = {}
        self.stream_calls = 0
        self.exhausted = asyncio.Event()
        self.closed = False

    async def list_devices(self):
        return list(self.devices)

    async def set_accessory_state(self, composite_id, on):
        self.set_calls.append((composite_id, on))
        if self.fail_set:
            raise self.fail_set
        return {"ok": True}

    async def get_accessory_state(self, composite_id):
        self.state_calls.append(composite_id)
        if composite_id in self.fail_accessory_state:
            raise self.fail_accessory_state[composite_id]
        return self.accessory_states[composite_id]

    async def get_all_states(self):
        if self.fail_all_states:
            raise self.fail_all_states.pop(0)
        return list(self.all_states)

    async def stream_events(self):
        self.stream_calls += 1
        if not self.connections:
            self.exhausted.set()
            await asyncio.Event().wait()
        for item in self.connections.pop(0):
            if isinstance(item, BaseException):
                raise item
            yield item

    async def close(self):
        self.closed = True


def make_device(device_uid="dev-1", accessories=(("A1", "Kitchen"),)):
    return DeviceDescriptor(
        uid=device_uid,
        manufacturer="Freedompro",
        model="LightSwitch",
        serial_number="SN-1",
        home="Home",
        accessories=[AccessoryDescriptor(uid=uid, name=name) for uid, name in accessories],
    )


def report_state(uid, value):
    return 'data: {"intent":"REPORT_STATE","payload":{"uid":"%s","props":{"on":{"value":%s}}}}' % (
        uid, 'true' if value else 'false'
    )


@pytest.fixture
def host():
    return RecordingHost()


@pytest.fixture
def registry():
    return AccessoryRegistry()


@pytest.fixture
def state_cache():
    return StateCache()


@pytest.fixture
def reconciled(registry, state_cache, host):
    """Registry holding accessories A1 and A2 of device dev-1."""
    reconciler = Reconciler(registry, state_cache, host)
    reconciler.reconcile([make_device(accessories=(("A1", "Kitchen"), ("A2", "Hall")))])
    host.created.clear()
    return registry


@pytest.fixture
def transport_error():
    return CloudAPIError("connection refused")
