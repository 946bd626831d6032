import asyncio

from freedompro_local import zeroconf_register


class FakeAsyncZeroconf:
    instances = []

    def __init__(self, fail=False):
        self.fail = fail
        self.registered = []
        self.unregistered = []
        self.closed = False
        FakeAsyncZeroconf.instances.append(self)

    async def async_register_service(self, info, allow_name_change=False):
        if self.fail:
            raise OSError("multicast not available")
        self.registered.append((info, allow_name_change))

    async def async_unregister_service(self, info):
        self.unregistered.append(info)

    async def async_close(self):
        self.closed = True


def test_register_and_unregister_service(monkeypatch):
    FakeAsyncZeroconf.instances = []
    monkeypatch.setattr(zeroconf_register, 'AsyncZeroconf', FakeAsyncZeroconf)
    monkeypatch.setattr(zeroconf_register, '_get_primary_ipv4', lambda: '192.168.1.20')

    ok, msg = asyncio.run(zeroconf_register.register_service_async('freedompro-test', 4408, {'path': '/'}))
    assert ok is True
    assert msg is None

    zc = FakeAsyncZeroconf.instances[0]
    info, allow_name_change = zc.registered[0]
    assert allow_name_change is True
    assert info.type == zeroconf_register.SERVICE_TYPE
    assert info.port == 4408
    assert info.properties[b'path'] == b'/'

    asyncio.run(zeroconf_register.unregister_service_async())
    assert zc.unregistered == [info]
    assert zc.closed is True
    assert zeroconf_register._reg is None


def test_register_failure_is_reported(monkeypatch):
    monkeypatch.setattr(zeroconf_register, 'AsyncZeroconf', lambda: FakeAsyncZeroconf(fail=True))
    monkeypatch.setattr(zeroconf_register, '_get_primary_ipv4', lambda: None)
    monkeypatch.setattr(zeroconf_register, '_reg', None)

    ok, msg = asyncio.run(zeroconf_register.register_service_async('freedompro-test', 4408))
    assert ok is False
    assert 'multicast' in msg

    # Nothing to withdraw
    asyncio.run(zeroconf_register.unregister_service_async())
