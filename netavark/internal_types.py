"""Types passed between the drivers and the firewall code."""

from __future__ import annotations

import ipaddress
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import NetavarkError
from .netlink import Route as NetlinkRoute
from .types import IPAddress, IPNetwork, NetAddress, PortMapping

_MISSING = object()


class IsolateOption(Enum):
    """How strictly a network is isolated from other networks."""

    STRICT = "Strict"
    NORMAL = "Normal"
    NEVER = "Never"


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise NetavarkError(f"invalid type: expected {what} object")
    return data


def _get(data: Mapping[str, Any], key: str, default: Any = _MISSING) -> Any:
    if key not in data:
        if default is _MISSING:
            raise NetavarkError(f"missing field `{key}`")
        return default
    value = data[key]
    if value is None:
        raise NetavarkError(f"invalid type: null for field `{key}`")
    return value


def _string(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise NetavarkError(f"invalid type for `{key}`: expected a string")
    return value


def _port(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise NetavarkError(f"invalid type for `{key}`: expected an integer")
    if not 0 <= value <= 0xFFFF:
        raise NetavarkError(f"invalid value for `{key}`: {value} is out of range")
    return value


def _ip(value: Any, key: str) -> IPAddress:
    try:
        return ipaddress.ip_address(_string(value, key))
    except ValueError as err:
        raise NetavarkError(f"invalid value for `{key}`: {err}") from err


def _ipnet(value: Any, key: str) -> IPNetwork:
    text = _string(value, key)
    if "/" not in text:
        raise NetavarkError(f"invalid value for `{key}`: invalid IP address syntax")
    try:
        return ipaddress.ip_interface(text)
    except ValueError as err:
        raise NetavarkError(f"invalid value for `{key}`: {err}") from err


def _list(value: Any, key: str) -> list[Any]:
    if not isinstance(value, list):
        raise NetavarkError(f"invalid type for `{key}`: expected a list")
    return value


def _isolate(value: Any, key: str) -> IsolateOption:
    try:
        return IsolateOption(value)
    except ValueError as err:
        raise NetavarkError(
            f"unknown variant `{value}` for `{key}`, "
            "expected one of `Strict`, `Normal`, `Never`"
        ) from err


def _optional_ip(value: Any, key: str) -> IPAddress | None:
    return None if value is None else _ip(value, key)


def _optional_ipnet(value: Any, key: str) -> IPNetwork | None:
    return None if value is None else _ipnet(value, key)


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


@dataclass(kw_only=True)
class SetupNetwork:
    """Firewall settings for setting up one network."""

    subnets: list[IPNetwork] | None = None
    bridge_name: str
    network_id: str = ""
    network_hash_name: str
    isolation: IsolateOption
    dns_port: int

    @classmethod
    def from_dict(cls, data: Any) -> SetupNetwork:
        data = _mapping(data, "setup network")
        subnets = data.get("subnets")
        return cls(
            subnets=(
                None
                if subnets is None
                else [_ipnet(s, "subnets") for s in _list(subnets, "subnets")]
            ),
            bridge_name=_string(_get(data, "bridge_name"), "bridge_name"),
            network_id=_string(_get(data, "network_id", ""), "network_id"),
            network_hash_name=_string(_get(data, "network_hash_name"), "network_hash_name"),
            isolation=_isolate(_get(data, "isolation"), "isolation"),
            dns_port=_port(_get(data, "dns_port"), "dns_port"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "subnets": None if self.subnets is None else [str(s) for s in self.subnets],
            "bridge_name": self.bridge_name,
            "network_id": self.network_id,
            "network_hash_name": self.network_hash_name,
            "isolation": self.isolation.value,
            "dns_port": self.dns_port,
        }


@dataclass
class TearDownNetwork:
    """Firewall settings for tearing down one network."""

    config: SetupNetwork
    complete_teardown: bool


@dataclass(kw_only=True)
class PortForwardConfig:
    """Port forwarding settings for one container on one network."""

    container_id: str
    network_id: str = ""
    port_mappings: list[PortMapping] | None = None
    network_name: str
    network_hash_name: str
    container_ip_v4: IPAddress | None = None
    subnet_v4: IPNetwork | None = None
    container_ip_v6: IPAddress | None = None
    subnet_v6: IPNetwork | None = None
    dns_port: int
    dns_server_ips: list[IPAddress] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> PortForwardConfig:
        data = _mapping(data, "port forward config")
        mappings = data.get("port_mappings")
        servers = _list(_get(data, "dns_server_ips"), "dns_server_ips")
        return cls(
            container_id=_string(_get(data, "container_id"), "container_id"),
            network_id=_string(_get(data, "network_id", ""), "network_id"),
            port_mappings=(
                None
                if mappings is None
                else [PortMapping.from_dict(m) for m in _list(mappings, "port_mappings")]
            ),
            network_name=_string(_get(data, "network_name"), "network_name"),
            network_hash_name=_string(_get(data, "network_hash_name"), "network_hash_name"),
            container_ip_v4=_optional_ip(data.get("container_ip_v4"), "container_ip_v4"),
            subnet_v4=_optional_ipnet(data.get("subnet_v4"), "subnet_v4"),
            container_ip_v6=_optional_ip(data.get("container_ip_v6"), "container_ip_v6"),
            subnet_v6=_optional_ipnet(data.get("subnet_v6"), "subnet_v6"),
            dns_port=_port(_get(data, "dns_port"), "dns_port"),
            dns_server_ips=[_ip(s, "dns_server_ips") for s in servers],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_id": self.container_id,
            "network_id": self.network_id,
            "port_mappings": (
                None
                if self.port_mappings is None
                else [m.to_dict() for m in self.port_mappings]
            ),
            "network_name": self.network_name,
            "network_hash_name": self.network_hash_name,
            "container_ip_v4": _str_or_none(self.container_ip_v4),
            "subnet_v4": _str_or_none(self.subnet_v4),
            "container_ip_v6": _str_or_none(self.container_ip_v6),
            "subnet_v6": _str_or_none(self.subnet_v6),
            "dns_port": self.dns_port,
            "dns_server_ips": [str(s) for s in self.dns_server_ips],
        }


@dataclass
class TeardownPortForward:
    """Port forwarding settings to remove for a container."""

    config: PortForwardConfig
    complete_teardown: bool


@dataclass(kw_only=True)
class IPAMAddresses:
    """Addresses, gateways and routes worked out by the IPAM driver."""

    container_addresses: list[IPNetwork] = field(default_factory=list)
    dhcp_enabled: bool = False
    gateway_addresses: list[IPNetwork] = field(default_factory=list)
    routes: list[NetlinkRoute] = field(default_factory=list)
    ipv6_enabled: bool = False
    net_addresses: list[NetAddress] = field(default_factory=list)
    nameservers: list[IPAddress] = field(default_factory=list)