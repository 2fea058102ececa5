import io
import ipaddress
import json
import sys

import pytest

from netavark.errors import NetavarkError
from netavark.plugin import API_VERSION, Info, Plugin, PluginExec
from netavark.types import NetAddress, NetInterface, StatusBlock

NETWORK = {
    "dns_enabled": False,
    "driver": "demo",
    "id": "abc",
    "internal": False,
    "ipv6_enabled": False,
    "name": "net1",
}

EXEC_INPUT = {
    "container_id": "c1",
    "container_name": "box",
    "network": NETWORK,
    "network_options": {"interface_name": "eth0"},
}


class DemoPlugin(Plugin):
    def __init__(self):
        self.calls = []

    def create(self, network):
        network.name = network.name + "-created"
        return network

    def setup(self, netns, opts):
        self.calls.append(("setup", netns, opts.container_id))
        return StatusBlock(
            interfaces={
                opts.network_options.interface_name: NetInterface(
                    mac_address="aa:bb:cc:dd:ee:ff",
                    subnets=[NetAddress(ipnet=ipaddress.ip_interface("10.0.0.2/24"))],
                )
            }
        )

    def teardown(self, netns, opts):
        self.calls.append(("teardown", netns, opts.container_name))


@pytest.fixture
def plugin():
    return DemoPlugin()


@pytest.fixture
def runner(plugin):
    return PluginExec(plugin, Info("0.1.0", API_VERSION, {"author": "someone"}))


def run(runner, argv, data=None):
    stdin = io.StringIO("" if data is None else json.dumps(data))
    stdout = io.StringIO()
    runner.run(argv, stdin, stdout)
    return stdout.getvalue()


def test_info_to_dict_flattens_extra():
    info = Info("0.1.0", API_VERSION, {"author": "someone"})
    assert info.to_dict() == {"version": "0.1.0", "api_version": "1.0.0", "author": "someone"}


def test_info_without_extra():
    assert Info("2").to_dict() == {"version": "2", "api_version": API_VERSION}


def test_info_subcommand(runner):
    out = run(runner, ["prog", "info"])
    assert json.loads(out) == {"version": "0.1.0", "api_version": "1.0.0", "author": "someone"}


def test_no_subcommand_prints_info(runner):
    assert run(runner, ["prog"]) == run(runner, ["prog", "info"])


def test_create_roundtrip(runner):
    out = json.loads(run(runner, ["prog", "create"], NETWORK))
    assert out["name"] == "net1-created"
    assert out["driver"] == "demo"


def test_setup_writes_status_block(runner, plugin):
    out = json.loads(run(runner, ["prog", "setup", "/run/netns/x"], EXEC_INPUT))
    assert plugin.calls == [("setup", "/run/netns/x", "c1")]
    status = StatusBlock.from_dict(out)
    assert status.interfaces["eth0"].mac_address == "aa:bb:cc:dd:ee:ff"


def test_teardown_writes_nothing(runner, plugin):
    assert run(runner, ["prog", "teardown", "/run/netns/x"], EXEC_INPUT) == ""
    assert plugin.calls == [("teardown", "/run/netns/x", "box")]


@pytest.mark.parametrize("command", ["setup", "teardown"])
def test_missing_netns(runner, command):
    with pytest.raises(NetavarkError, match="netns path argument is missing"):
        run(runner, ["prog", command], EXEC_INPUT)


def test_unknown_subcommand(runner):
    with pytest.raises(NetavarkError, match="unknown subcommand: frob"):
        run(runner, ["prog", "frob"])


def test_zero_arguments(runner):
    with pytest.raises(NetavarkError, match="zero arguments given"):
        run(runner, [])


def test_invalid_input_json(runner):
    with pytest.raises(ValueError):
        run(runner, ["prog", "create"], None)


def test_exec_reports_json_error(runner, monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO(""))
    with pytest.raises(SystemExit) as exc:
        runner.exec(["prog", "frob"])
    assert exc.value.code == 1
    assert json.loads(capsys.readouterr().out) == {"error": "unknown subcommand: frob"}


def test_exec_success(runner, capsys):
    runner.exec(["prog", "info"])
    assert json.loads(capsys.readouterr().out)["version"] == "0.1.0"