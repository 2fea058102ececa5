import ipaddress

import pytest

from netavark.errors import NetavarkError
from netavark.internal_types import (
    IPAMAddresses,
    IsolateOption,
    PortForwardConfig,
    SetupNetwork,
)
from netavark.types import PortMapping


def _setup_dict():
    return {
        "subnets": ["10.88.0.0/16", "fd00::/64"],
        "bridge_name": "podman0",
        "network_id": "netid",
        "network_hash_name": "ABCDEF",
        "isolation": "Strict",
        "dns_port": 53,
    }


def test_setup_network_round_trip():
    data = _setup_dict()
    net = SetupNetwork.from_dict(data)
    assert net.isolation is IsolateOption.STRICT
    assert net.subnets == [
        ipaddress.ip_interface("10.88.0.0/16"),
        ipaddress.ip_interface("fd00::/64"),
    ]
    assert net.to_dict() == data


def test_setup_network_defaults():
    data = _setup_dict()
    del data["network_id"]
    del data["subnets"]
    net = SetupNetwork.from_dict(data)
    assert net.network_id == ""
    assert net.subnets is None


def test_setup_network_missing_bridge_name():
    data = _setup_dict()
    del data["bridge_name"]
    with pytest.raises(NetavarkError, match="bridge_name"):
        SetupNetwork.from_dict(data)


def test_setup_network_bad_isolation():
    data = _setup_dict()
    data["isolation"] = "sometimes"
    with pytest.raises(NetavarkError, match="unknown variant"):
        SetupNetwork.from_dict(data)


@pytest.mark.parametrize(
    ("name", "option"),
    [
        ("Strict", IsolateOption.STRICT),
        ("Normal", IsolateOption.NORMAL),
        ("Never", IsolateOption.NEVER),
    ],
)
def test_isolate_option_serialized_names(name, option):
    data = _setup_dict()
    data["isolation"] = name
    net = SetupNetwork.from_dict(data)
    assert net.isolation is option
    assert net.to_dict()["isolation"] == name


def _pf_dict():
    return {
        "container_id": "cid",
        "network_id": "netid",
        "port_mappings": [
            {
                "container_port": 80,
                "host_ip": "",
                "host_port": 8080,
                "protocol": "tcp",
                "range": 1,
            }
        ],
        "network_name": "podman",
        "network_hash_name": "ABCDEF",
        "container_ip_v4": "10.88.0.2",
        "subnet_v4": "10.88.0.0/16",
        "container_ip_v6": None,
        "subnet_v6": None,
        "dns_port": 53,
        "dns_server_ips": ["10.88.0.1"],
    }


def test_port_forward_round_trip():
    data = _pf_dict()
    pf = PortForwardConfig.from_dict(data)
    assert pf.container_ip_v4 == ipaddress.ip_address("10.88.0.2")
    assert pf.port_mappings[0] == PortMapping(
        container_port=80, host_ip="", host_port=8080, protocol="tcp", range=1
    )
    assert pf.to_dict() == data


def test_port_forward_defaults_and_optional():
    data = _pf_dict()
    del data["network_id"]
    del data["port_mappings"]
    pf = PortForwardConfig.from_dict(data)
    assert pf.network_id == ""
    assert pf.port_mappings is None
    assert pf.container_ip_v6 is None


def test_port_forward_requires_dns_servers():
    data = _pf_dict()
    del data["dns_server_ips"]
    with pytest.raises(NetavarkError, match="dns_server_ips"):
        PortForwardConfig.from_dict(data)


def test_port_forward_rejects_bad_port():
    data = _pf_dict()
    data["dns_port"] = 70000
    with pytest.raises(NetavarkError, match="out of range"):
        PortForwardConfig.from_dict(data)


def test_ipam_addresses_defaults_are_independent():
    a = IPAMAddresses()
    b = IPAMAddresses()
    a.container_addresses.append(ipaddress.ip_interface("10.88.0.2/16"))
    assert b.container_addresses == []
    assert a.dhcp_enabled is False