import pytest

from gwplugins.plugin import (
    DispenseError,
    Identifier,
    PingError,
    Plugin,
    PluginNotReadyError,
    PluginStartError,
    RPCClientError,
)


class Service:
    def get_plugin_config(self, args):
        return args


class FakeRPC:
    def __init__(self, raw=None, dispense_error=None, ping_error=None):
        self.raw = raw
        self.dispense_error = dispense_error
        self.ping_error = ping_error
        self.dispensed = []

    def dispense(self, name):
        self.dispensed.append(name)
        if self.dispense_error:
            raise self.dispense_error
        return self.raw

    def ping(self):
        if self.ping_error:
            raise self.ping_error


class FakeClient:
    def __init__(self, rpc=None, address="127.0.0.1:50001", start_error=None, client_error=None):
        self.rpc = rpc
        self.address = address
        self.start_error = start_error
        self.client_error = client_error
        self.killed = False

    def start(self):
        if self.start_error:
            raise self.start_error
        return self.address

    def kill(self):
        self.killed = True

    def client(self):
        if self.client_error:
            raise self.client_error
        return self.rpc


def make_plugin(client):
    return Plugin(id=Identifier(name="test", version="1.0.0"), client=client)


def test_identifier_is_usable_as_key():
    first = Identifier(name="test", version="1.0.0")
    second = Identifier(name="test", version="1.0.0")
    assert {first: 1}[second] == 1


def test_start_returns_address():
    plugin = make_plugin(FakeClient(address="127.0.0.1:50001"))
    assert plugin.start() == "127.0.0.1:50001"


def test_start_failure_is_wrapped():
    cause = OSError("boom")
    plugin = make_plugin(FakeClient(start_error=cause))
    with pytest.raises(PluginStartError) as info:
        plugin.start()
    assert info.value.__cause__ is cause


def test_start_without_client():
    with pytest.raises(PluginStartError):
        Plugin().start()


def test_stop_kills_client():
    client = FakeClient()
    make_plugin(client).stop()
    assert client.killed is True


def test_dispense_returns_service_by_name():
    service = Service()
    rpc = FakeRPC(raw=service)
    plugin = make_plugin(FakeClient(rpc=rpc))
    assert plugin.dispense() is service
    assert rpc.dispensed == ["test"]


def test_dispense_not_ready():
    plugin = make_plugin(FakeClient(rpc=FakeRPC(raw=object())))
    with pytest.raises(PluginNotReadyError):
        plugin.dispense()


def test_dispense_error_is_wrapped():
    cause = RuntimeError("no such plugin")
    plugin = make_plugin(FakeClient(rpc=FakeRPC(dispense_error=cause)))
    with pytest.raises(DispenseError) as info:
        plugin.dispense()
    assert info.value.__cause__ is cause


def test_rpc_client_error_on_dispense_and_ping():
    cause = ConnectionError("down")
    plugin = make_plugin(FakeClient(client_error=cause))
    with pytest.raises(RPCClientError) as info:
        plugin.dispense()
    assert info.value.__cause__ is cause
    with pytest.raises(RPCClientError):
        plugin.ping()


def test_ping_ok_and_failure():
    rpc = FakeRPC()
    plugin = make_plugin(FakeClient(rpc=rpc))
    assert plugin.ping() is None
    rpc.ping_error = TimeoutError("slow")
    with pytest.raises(PingError) as info:
        plugin.ping()
    assert isinstance(info.value.__cause__, TimeoutError)


def test_defaults_are_independent():
    first = Plugin()
    second = Plugin()
    first.config["key"] = "value"
    assert second.config == {}
    assert first.id == Identifier()