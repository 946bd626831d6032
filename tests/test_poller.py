import asyncio

from freedompro_local.cloud import CloudAPIError
from freedompro_local.homekit_uuids import generate_uuid
from freedompro_local.poller import PollingUpdater
from freedompro_local.state import SOURCE_ACCESSORY_POLL, SOURCE_GLOBAL_POLL
from freedompro_local.stream import LiveStateStream

from conftest import FakeCloud, report_state


def test_global_poll_recovers_after_failed_tick(reconciled, state_cache, host, transport_error):
    cloud = FakeCloud()
    cloud.all_states = [{"uid": "A1", "on": True}, {"uid": "A2", "on": False}]
    cloud.fail_all_states = [transport_error]
    poller = PollingUpdater(cloud, reconciled, state_cache, host, accessory_interval=3600, global_interval=0.01)

    async def scenario():
        task = asyncio.create_task(poller.global_poll_loop())
        for _ in range(200):
            if poller.poll_updates:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(scenario())

    assert poller.poll_failures == 1
    assert poller.global_polls >= 2
    assert state_cache.read(generate_uuid("A1")) is True
    assert state_cache.get(generate_uuid("A1")).source == SOURCE_GLOBAL_POLL


def test_global_poll_skips_unknown_uids(reconciled, state_cache, host):
    cloud = FakeCloud()
    cloud.all_states = [{"uid": "stranger", "on": True}, {"uid": "A2", "on": True}]
    poller = PollingUpdater(cloud, reconciled, state_cache, host)

    assert asyncio.run(poller.poll_all()) == 1
    assert host.notifications == [(generate_uuid("A2"), True)]
    assert len(state_cache) == 2


def test_accessory_poll_isolates_failures(reconciled, state_cache, host, transport_error):
    cloud = FakeCloud()
    cloud.fail_accessory_state = {"dev-1*A1": transport_error}
    cloud.accessory_states = {"dev-1*A2": True}
    poller = PollingUpdater(cloud, reconciled, state_cache, host)

    assert asyncio.run(poller.poll_accessories()) == 1

    assert cloud.state_calls == ["dev-1*A1", "dev-1*A2"]
    assert poller.poll_failures == 1
    assert state_cache.read(generate_uuid("A1")) is False
    assert state_cache.read(generate_uuid("A2")) is True
    assert state_cache.get(generate_uuid("A2")).source == SOURCE_ACCESSORY_POLL


def test_later_writer_wins_between_poll_and_stream(reconciled, state_cache, host):
    cloud = FakeCloud()
    cloud.all_states = [{"uid": "A1", "on": True}]
    poller = PollingUpdater(cloud, reconciled, state_cache, host)
    stream = LiveStateStream(cloud, reconciled, state_cache, host)
    uuid = generate_uuid("A1")

    asyncio.run(poller.poll_all())
    stream.handle_line(report_state("A1", False))
    assert state_cache.read(uuid) is False

    asyncio.run(poller.poll_all())
    assert state_cache.read(uuid) is True


class FlakyAccessoryCloud(FakeCloud):
    """The first two per-accessory requests fail, later ones report on."""

    async def get_accessory_state(self, composite_id):
        self.state_calls.append(composite_id)
        if len(self.state_calls) <= 2:
            raise CloudAPIError("connection reset")
        return True


def test_accessory_poll_recovers_after_failed_tick(reconciled, state_cache, host):
    cloud = FlakyAccessoryCloud()
    poller = PollingUpdater(cloud, reconciled, state_cache, host, accessory_interval=0.01, global_interval=3600)

    async def scenario():
        task = asyncio.create_task(poller.accessory_poll_loop())
        for _ in range(200):
            if poller.poll_updates >= 2:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(scenario())

    # First tick: both accessories fail
    assert poller.poll_failures == 2
    assert poller.accessory_polls >= 2
    assert state_cache.read(generate_uuid("A1")) is True
    assert state_cache.read(generate_uuid("A2")) is True
    assert state_cache.get(generate_uuid("A1")).source == SOURCE_ACCESSORY_POLL
