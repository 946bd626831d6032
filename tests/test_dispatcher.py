import asyncio

import pytest

from freedompro_local.cloud import CloudAPIError
from freedompro_local.dispatcher import CommandDispatcher
from freedompro_local.homekit_uuids import generate_uuid
from freedompro_local.state import SOURCE_COMMAND

from conftest import FakeCloud


def test_set_state_updates_cache_and_notifies_once(reconciled, state_cache, host):
    cloud = FakeCloud()
    dispatcher = CommandDispatcher(cloud, reconciled, state_cache, host)

    result = asyncio.run(dispatcher.set_state("dev-1*A1", True))

    uuid = generate_uuid("A1")
    assert result is True
    assert cloud.set_calls == [("dev-1*A1", True)]
    assert state_cache.read(uuid) is True
    assert state_cache.get(uuid).source == SOURCE_COMMAND
    assert host.notifications == [(uuid, True)]
    assert dispatcher.commands_sent == 1


def test_get_state_after_set_does_not_touch_network(reconciled, state_cache, host):
    cloud = FakeCloud()
    dispatcher = CommandDispatcher(cloud, reconciled, state_cache, host)

    asyncio.run(dispatcher.set_state("dev-1*A1", True))
    assert dispatcher.get_state("dev-1*A1") is True
    assert dispatcher.get_state("dev-1*A2") is False

    assert len(cloud.set_calls) == 1
    assert cloud.state_calls == []


def test_failed_set_leaves_cache_untouched(reconciled, state_cache, host, transport_error):
    cloud = FakeCloud()
    cloud.fail_set = transport_error
    dispatcher = CommandDispatcher(cloud, reconciled, state_cache, host)
    before = state_cache.get(generate_uuid("A1"))

    with pytest.raises(CloudAPIError):
        asyncio.run(dispatcher.set_state("dev-1*A1", True))

    assert state_cache.get(generate_uuid("A1")) == before
    assert host.notifications == []
    assert dispatcher.commands_sent == 0
    # Not retried
    assert len(cloud.set_calls) == 1


def test_unknown_composite_id(reconciled, state_cache, host):
    cloud = FakeCloud()
    dispatcher = CommandDispatcher(cloud, reconciled, state_cache, host)

    with pytest.raises(KeyError):
        asyncio.run(dispatcher.set_state("dev-1*missing", True))
    with pytest.raises(KeyError):
        dispatcher.get_state("dev-1*missing")
    assert cloud.set_calls == []
