"""Data types accepted and produced by the network stack."""

from __future__ import annotations

import ipaddress
import json
import os
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from .errors import NetavarkError, wrap_error

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
IPNetwork = ipaddress.IPv4Interface | ipaddress.IPv6Interface

T = TypeVar("T")


def _obj(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise NetavarkError(f"invalid type: expected {what} object")
    return data


def _req(data: Mapping[str, Any], key: str, conv: Callable[[Any, str], T]) -> T:
    if key not in data:
        raise NetavarkError(f"missing field `{key}`")
    value = data[key]
    if value is None:
        raise NetavarkError(f"invalid type: null for field `{key}`")
    return conv(value, key)


def _opt(data: Mapping[str, Any], key: str, conv: Callable[[Any, str], T]) -> T | None:
    value = data.get(key)
    return None if value is None else conv(value, key)


def _str(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise NetavarkError(f"invalid type for `{key}`: expected a string")
    return value


def _bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise NetavarkError(f"invalid type for `{key}`: expected a boolean")
    return value


def _uint(bits: int) -> Callable[[Any, str], int]:
    limit = 1 << bits

    def conv(value: Any, key: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise NetavarkError(f"invalid type for `{key}`: expected an integer")
        if not 0 <= value < limit:
            raise NetavarkError(f"invalid value for `{key}`: {value} is out of range")
        return value

    return conv


_u16 = _uint(16)
_u32 = _uint(32)


def _ip(value: Any, key: str) -> IPAddress:
    try:
        return ipaddress.ip_address(_str(value, key))
    except ValueError as err:
        raise NetavarkError(f"invalid value for `{key}`: {err}") from err


def _ipnet(value: Any, key: str) -> IPNetwork:
    text = _str(value, key)
    if "/" not in text:
        raise NetavarkError(f"invalid value for `{key}`: invalid IP address syntax")
    try:
        return ipaddress.ip_interface(text)
    except ValueError as err:
        raise NetavarkError(f"invalid value for `{key}`: {err}") from err


def _list(conv: Callable[[Any, str], T]) -> Callable[[Any, str], list[T]]:
    def inner(value: Any, key: str) -> list[T]:
        if not isinstance(value, list):
            raise NetavarkError(f"invalid type for `{key}`: expected a list")
        return [conv(item, key) for item in value]

    return inner


def _map(conv: Callable[[Any, str], T]) -> Callable[[Any, str], dict[str, T]]:
    def inner(value: Any, key: str) -> dict[str, T]:
        if not isinstance(value, Mapping):
            raise NetavarkError(f"invalid type for `{key}`: expected a map")
        return {_str(k, key): conv(v, key) for k, v in value.items()}

    return inner


def _from(cls: Any) -> Callable[[Any, str], Any]:
    return lambda value, _key: cls.from_dict(value)


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


def _strs_or_none(values: list[Any] | None) -> list[str] | None:
    return None if values is None else [str(v) for v in values]


def _dicts_or_none(values: list[Any] | None) -> list[dict[str, Any]] | None:
    return None if values is None else [v.to_dict() for v in values]


@dataclass(kw_only=True)
class LeaseRange:
    """Range inside a subnet from which addresses are leased."""

    end_ip: str | None = None
    start_ip: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> LeaseRange:
        data = _obj(data, "lease range")
        return cls(end_ip=_opt(data, "end_ip", _str), start_ip=_opt(data, "start_ip", _str))

    def to_dict(self) -> dict[str, Any]:
        return {"end_ip": self.end_ip, "start_ip": self.start_ip}


@dataclass(kw_only=True)
class Subnet:
    """A subnet of a network with its optional gateway."""

    gateway: IPAddress | None = None
    lease_range: LeaseRange | None = None
    subnet: IPNetwork

    @classmethod
    def from_dict(cls, data: Any) -> Subnet:
        data = _obj(data, "subnet")
        return cls(
            gateway=_opt(data, "gateway", _ip),
            lease_range=_opt(data, "lease_range", _from(LeaseRange)),
            subnet=_req(data, "subnet", _ipnet),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "gateway": _str_or_none(self.gateway),
            "lease_range": None if self.lease_range is None else self.lease_range.to_dict(),
            "subnet": str(self.subnet),
        }


@dataclass(kw_only=True)
class Route:
    """A static route for a network."""

    gateway: IPAddress
    destination: IPNetwork
    metric: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Route:
        data = _obj(data, "route")
        return cls(
            gateway=_req(data, "gateway", _ip),
            destination=_req(data, "destination", _ipnet),
            metric=_opt(data, "metric", _u32),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "gateway": str(self.gateway),
            "destination": str(self.destination),
            "metric": self.metric,
        }


@dataclass(kw_only=True)
class PortMapping:
    """One or more host ports forwarded into the container."""

    container_port: int
    host_ip: str
    host_port: int
    protocol: str
    range: int

    @classmethod
    def from_dict(cls, data: Any) -> PortMapping:
        data = _obj(data, "port mapping")
        return cls(
            container_port=_req(data, "container_port", _u16),
            host_ip=_req(data, "host_ip", _str),
            host_port=_req(data, "host_port", _u16),
            protocol=_req(data, "protocol", _str),
            range=_req(data, "range", _u16),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_port": self.container_port,
            "host_ip": self.host_ip,
            "host_port": self.host_port,
            "protocol": self.protocol,
            "range": self.range,
        }


@dataclass(kw_only=True)
class Network:
    """Attributes of one network."""

    dns_enabled: bool
    driver: str
    id: str
    internal: bool
    ipv6_enabled: bool
    name: str
    network_interface: str | None = None
    options: dict[str, str] | None = None
    ipam_options: dict[str, str] | None = None
    subnets: list[Subnet] | None = None
    routes: list[Route] | None = None
    network_dns_servers: list[IPAddress] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Network:
        data = _obj(data, "network")
        return cls(
            dns_enabled=_req(data, "dns_enabled", _bool),
            driver=_req(data, "driver", _str),
            id=_req(data, "id", _str),
            internal=_req(data, "internal", _bool),
            ipv6_enabled=_req(data, "ipv6_enabled", _bool),
            name=_req(data, "name", _str),
            network_interface=_opt(data, "network_interface", _str),
            options=_opt(data, "options", _map(_str)),
            ipam_options=_opt(data, "ipam_options", _map(_str)),
            subnets=_opt(data, "subnets", _list(_from(Subnet))),
            routes=_opt(data, "routes", _list(_from(Route))),
            network_dns_servers=_opt(data, "network_dns_servers", _list(_ip)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "dns_enabled": self.dns_enabled,
            "driver": self.driver,
            "id": self.id,
            "internal": self.internal,
            "ipv6_enabled": self.ipv6_enabled,
            "name": self.name,
            "network_interface": self.network_interface,
            "options": None if self.options is None else dict(self.options),
            "ipam_options": None if self.ipam_options is None else dict(self.ipam_options),
            "subnets": _dicts_or_none(self.subnets),
            "routes": _dicts_or_none(self.routes),
            "network_dns_servers": _strs_or_none(self.network_dns_servers),
        }


@dataclass(kw_only=True)
class PerNetworkOptions:
    """Options for a container that apply to one network."""

    aliases: list[str] | None = None
    interface_name: str
    static_ips: list[IPAddress] | None = None
    static_mac: str | None = None
    options: dict[str, str] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> PerNetworkOptions:
        data = _obj(data, "per network options")
        return cls(
            aliases=_opt(data, "aliases", _list(_str)),
            interface_name=_req(data, "interface_name", _str),
            static_ips=_opt(data, "static_ips", _list(_ip)),
            static_mac=_opt(data, "static_mac", _str),
            options=_opt(data, "options", _map(_str)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "aliases": None if self.aliases is None else list(self.aliases),
            "interface_name": self.interface_name,
            "static_ips": _strs_or_none(self.static_ips),
            "static_mac": self.static_mac,
            "options": None if self.options is None else dict(self.options),
        }


@dataclass(kw_only=True)
class NetworkOptions:
    """Network options for one container."""

    container_id: str
    container_name: str
    container_hostname: str | None = None
    networks: dict[str, PerNetworkOptions]
    network_info: dict[str, Network]
    port_mappings: list[PortMapping] | None = None
    dns_servers: list[IPAddress] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> NetworkOptions:
        data = _obj(data, "network options")
        return cls(
            container_id=_req(data, "container_id", _str),
            container_name=_req(data, "container_name", _str),
            container_hostname=_opt(data, "container_hostname", _str),
            networks=_req(data, "networks", _map(_from(PerNetworkOptions))),
            network_info=_req(data, "network_info", _map(_from(Network))),
            port_mappings=_opt(data, "port_mappings", _list(_from(PortMapping))),
            dns_servers=_opt(data, "dns_servers", _list(_ip)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_id": self.container_id,
            "container_name": self.container_name,
            "container_hostname": self.container_hostname,
            "networks": {k: v.to_dict() for k, v in self.networks.items()},
            "network_info": {k: v.to_dict() for k, v in self.network_info.items()},
            "port_mappings": _dicts_or_none(self.port_mappings),
            "dns_servers": _strs_or_none(self.dns_servers),
        }

    @classmethod
    def load(cls, path: str | os.PathLike[str] | None = None) -> NetworkOptions:
        """Read options as JSON from ``path``, or from stdin when it is None."""
        try:
            if path is None:
                data = json.load(sys.stdin)
            else:
                with open(path, encoding="utf-8") as handle:
                    data = json.load(handle)
            return cls.from_dict(data)
        except (OSError, ValueError, NetavarkError) as err:
            raise wrap_error("failed to load network options", err) from err


@dataclass(kw_only=True)
class NetAddress:
    """An assigned address with its prefix and gateway."""

    gateway: IPAddress | None = None
    ipnet: IPNetwork

    @classmethod
    def from_dict(cls, data: Any) -> NetAddress:
        data = _obj(data, "net address")
        return cls(gateway=_opt(data, "gateway", _ip), ipnet=_req(data, "ipnet", _ipnet))

    def to_dict(self) -> dict[str, Any]:
        return {"gateway": _str_or_none(self.gateway), "ipnet": str(self.ipnet)}


@dataclass(kw_only=True)
class NetInterface:
    """Settings of one network interface in the container."""

    mac_address: str
    subnets: list[NetAddress] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> NetInterface:
        data = _obj(data, "net interface")
        return cls(
            mac_address=_req(data, "mac_address", _str),
            subnets=_opt(data, "subnets", _list(_from(NetAddress))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"mac_address": self.mac_address, "subnets": _dicts_or_none(self.subnets)}


@dataclass(kw_only=True)
class StatusBlock:
    """Network information about a container attached to one network."""

    dns_search_domains: list[str] | None = None
    dns_server_ips: list[IPAddress] | None = None
    interfaces: dict[str, NetInterface] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> StatusBlock:
        data = _obj(data, "status block")
        return cls(
            dns_search_domains=_opt(data, "dns_search_domains", _list(_str)),
            dns_server_ips=_opt(data, "dns_server_ips", _list(_ip)),
            interfaces=_opt(data, "interfaces", _map(_from(NetInterface))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "dns_search_domains": (
                None if self.dns_search_domains is None else list(self.dns_search_domains)
            ),
            "dns_server_ips": _strs_or_none(self.dns_server_ips),
            "interfaces": (
                None
                if self.interfaces is None
                else {k: v.to_dict() for k, v in self.interfaces.items()}
            ),
        }


@dataclass(kw_only=True)
class NetworkPluginExec:
    """Input passed to a plugin's setup and teardown commands."""

    container_id: str
    container_name: str
    port_mappings: list[PortMapping] | None = None
    network: Network
    network_options: PerNetworkOptions

    @classmethod
    def from_dict(cls, data: Any) -> NetworkPluginExec:
        data = _obj(data, "plugin exec")
        return cls(
            container_id=_req(data, "container_id", _str),
            container_name=_req(data, "container_name", _str),
            port_mappings=_opt(data, "port_mappings", _list(_from(PortMapping))),
            network=_req(data, "network", _from(Network)),
            network_options=_req(data, "network_options", _from(PerNetworkOptions)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_id": self.container_id,
            "container_name": self.container_name,
            "port_mappings": _dicts_or_none(self.port_mappings),
            "network": self.network.to_dict(),
            "network_options": self.network_options.to_dict(),
        }