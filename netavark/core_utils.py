"""Helpers shared by the network drivers."""

from __future__ import annotations

import hashlib
import ipaddress
import os
import re
import string
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, BinaryIO

from . import constants, types
from .errors import NetavarkError, wrap_error
from .internal_types import IPAMAddresses
from .netlink import IFLA_ADDRESS, IFLA_MTU, RTA_DST, RTA_OIF, Attribute, LinkMessage
from .netlink import Route as NetlinkRoute
from .netlink import Socket


class MacVlanMode(IntEnum):
    """Kernel macvlan modes."""

    PRIVATE = 1
    VEPA = 2
    BRIDGE = 4
    PASSTHROUGH = 8
    SOURCE = 16


class IpVlanMode(IntEnum):
    """Kernel ipvlan modes."""

    L2 = 0
    L3 = 1
    L3S = 2


@dataclass
class NamespaceOptions:
    """A namespace file kept open together with a netlink socket inside it."""

    file: BinaryIO
    netlink: Socket


def _parse_uint(text: str, bits: int, base: int = 10) -> int:
    if not text:
        raise ValueError("cannot parse integer from empty string")
    digits = text[1:] if text.startswith("+") else text
    valid = string.hexdigits if base == 16 else string.digits
    if not digits or any(c not in valid for c in digits):
        raise ValueError("invalid digit found in string")
    value = int(digits, base)
    if value >= 1 << bits:
        raise ValueError("number too large to fit in target type")
    return value


def _parse_int(text: str) -> int:
    if not text:
        raise ValueError("cannot parse integer from empty string")
    if not re.fullmatch(r"[+-]?[0-9]+", text):
        raise ValueError("invalid digit found in string")
    return int(text)


def _parse_bool(text: str) -> bool:
    if text == "true":
        return True
    if text == "false":
        return False
    raise ValueError("provided string was not `true` or `false`")


def get_netavark_dns_port() -> int:
    """Port of the DNS server, from NETAVARK_DNS_PORT or 53."""
    port_string = os.environ.get("NETAVARK_DNS_PORT")
    if port_string is None:
        return 53
    try:
        return _parse_uint(port_string, 16)
    except ValueError as err:
        raise NetavarkError(f"Invalid NETAVARK_DNS_PORT {port_string}: {err}") from err


def parse_option(
    opts: Mapping[str, str] | None,
    name: str,
    kind: type | Callable[[str], Any] = str,
) -> Any:
    """Parse option ``name`` as ``kind``; None when the option is not set."""
    if opts is None or name not in opts:
        return None
    value = opts[name]
    try:
        if kind is str:
            return str(value)
        if kind is bool:
            return _parse_bool(value)
        if kind is int:
            return _parse_int(value)
        return kind(value)
    except (ValueError, TypeError) as err:
        raise NetavarkError(f'unable to parse "{name}": {err}') from err


def get_ipam_addresses(
    per_network_opts: types.PerNetworkOptions, network: types.Network
) -> IPAMAddresses:
    """Work out the container's addresses according to the IPAM driver."""
    driver = (network.ipam_options or {}).get("driver")

    if driver in (constants.IPAM_HOSTLOCAL, None):
        static_ips = per_network_opts.static_ips
        if static_ips is None:
            raise NetavarkError("no static ips provided")

        result = IPAMAddresses()
        for idx, subnet in enumerate(network.subnets or []):
            prefix = subnet.subnet.network.prefixlen
            if subnet.gateway is not None:
                try:
                    gw_net = ipaddress.ip_interface(f"{subnet.gateway}/{prefix}")
                except ValueError as err:
                    raise NetavarkError(
                        f"failed to parse address {subnet.gateway}/{prefix}: {err}"
                    ) from err
                result.gateway_addresses.append(gw_net)
                result.nameservers.append(subnet.gateway)

            # A dual-stack network may not set ipv6_enabled, so check each subnet.
            if subnet.subnet.version == 6:
                result.ipv6_enabled = True

            if idx >= len(static_ips):
                raise NetavarkError(f"no static ip provided for subnet {subnet.subnet}")
            try:
                container_address = ipaddress.ip_interface(f"{static_ips[idx]}/{prefix}")
            except ValueError as err:
                raise NetavarkError(str(err)) from err
            result.container_addresses.append(container_address)
            result.net_addresses.append(
                types.NetAddress(gateway=subnet.gateway, ipnet=container_address)
            )

        result.routes = create_route_list(network.routes)
        return result

    if driver == constants.IPAM_NONE:
        return IPAMAddresses()

    if driver == constants.IPAM_DHCP:
        return IPAMAddresses(dhcp_enabled=True)

    raise NetavarkError(f"unsupported ipam driver {driver}")


def encode_address_to_hex(data: bytes) -> str:
    """Format a hardware address as colon separated hex."""
    return ":".join(f"{b:02x}" for b in data)


def decode_address_from_hex(text: str) -> bytes:
    """Parse a MAC address separated by ':' or '-'."""
    try:
        values = [_parse_uint(part, 8, 16) for part in re.split(r"[:-]", text)]
    except ValueError as err:
        raise NetavarkError(f"unable to parse mac address {text}: {err}") from err
    if len(values) != 6:
        raise NetavarkError(f"invalid mac length for address: {text}")
    return bytes(values)


def get_macvlan_mode_from_string(mode: str | None) -> MacVlanMode:
    """Map a mode option to a macvlan mode, bridge by default."""
    match mode:
        case None | "" | "bridge":
            return MacVlanMode.BRIDGE
        case "private":
            return MacVlanMode.PRIVATE
        case "vepa":
            return MacVlanMode.VEPA
        case "passthru":
            return MacVlanMode.PASSTHROUGH
        case "source":
            return MacVlanMode.SOURCE
    raise NetavarkError(f'invalid macvlan mode "{mode}"')


def get_ipvlan_mode_from_string(mode: str | None) -> IpVlanMode:
    """Map a mode option to an ipvlan mode, l2 by default."""
    match mode:
        case None | "" | "l2":
            return IpVlanMode.L2
        case "l3":
            return IpVlanMode.L3
        case "l3s":
            return IpVlanMode.L3S
    raise NetavarkError(f'invalid ipvlan mode "{mode}"')


def create_network_hash(network_name: str, length: int) -> str:
    """First ``length`` upper case hex digits of the name's SHA-512."""
    digest = hashlib.sha512(network_name.encode()).hexdigest().upper()
    if not 0 <= length <= len(digest):
        raise ValueError(f"hash length must be between 0 and {len(digest)}")
    return digest[:length]


def join_netns(fd: Any) -> None:
    """Move the calling thread into the network namespace behind ``fd``."""
    try:
        os.setns(fd, os.CLONE_NEWNET)
    except OSError as err:
        raise wrap_error("setns", err) from err


@contextmanager
def exec_netns(host_fd: Any, netns_fd: Any) -> Iterator[None]:
    """Run the body inside the container namespace, then return to the host."""
    join_netns(netns_fd)
    try:
        yield
    finally:
        join_netns(host_fd)


def _open_ns(path: str) -> BinaryIO:
    try:
        return open(path, "rb")
    except OSError as err:
        raise wrap_error(f"open {path}", err) from err


def open_netlink_sockets(netns_path: str) -> tuple[NamespaceOptions, NamespaceOptions]:
    """Open netlink sockets in the host and in the container namespace."""
    try:
        netns = _open_ns(netns_path)
    except NetavarkError as err:
        raise err.wrap("open container netns") from err
    try:
        try:
            hostns = _open_ns("/proc/self/ns/net")
        except NetavarkError as err:
            raise err.wrap("open host netns") from err
        try:
            try:
                host_socket = Socket()
            except NetavarkError as err:
                raise err.wrap("host netlink socket") from err
            try:
                with exec_netns(hostns, netns):
                    try:
                        netns_socket = Socket()
                    except NetavarkError as err:
                        raise err.wrap("netns netlink socket") from err
            except BaseException:
                host_socket.close()
                raise
        except BaseException:
            hostns.close()
            raise
    except BaseException:
        netns.close()
        raise
    return (
        NamespaceOptions(file=hostns, netlink=host_socket),
        NamespaceOptions(file=netns, netlink=netns_socket),
    )


def add_default_routes(
    sock: Any, gateways: Iterable[types.IPNetwork], metric: int | None
) -> None:
    """Add one default route per IP version via the first gateway of it."""
    seen: set[int] = set()
    for addr in gateways:
        if addr.version in seen:
            continue
        seen.add(addr.version)
        dest = "0.0.0.0/0" if addr.version == 4 else "::/0"
        route = NetlinkRoute(dest=ipaddress.ip_interface(dest), gw=addr.ip, metric=metric)
        try:
            sock.add_route(route)
        except NetavarkError as err:
            raise err.wrap(f"add default route {route}") from err


def create_route_list(routes: Iterable[types.Route] | None) -> list[NetlinkRoute]:
    """Turn configured static routes into netlink routes."""
    result = []
    for r in routes or []:
        dst, gw = r.destination, r.gateway
        if gw.version == 4 and dst.version == 6:
            raise NetavarkError(
                f"Route with ipv6 destination and ipv4 gateway ({dst} via {gw})"
            )
        if gw.version == 6 and dst.version == 4:
            raise NetavarkError(
                f"Route with ipv4 destination and ipv6 gateway ({dst} via {gw})"
            )
        result.append(NetlinkRoute(dest=dst, gw=gw, metric=r.metric))
    return result


def get_mac_address(attributes: Iterable[Attribute]) -> str:
    """Hex encoded hardware address from link attributes."""
    for attr in attributes:
        if attr.kind == IFLA_ADDRESS:
            return encode_address_to_hex(attr.data)
    raise NetavarkError("failed to get the the container mac address")


def is_using_systemd() -> bool:
    """Whether the system was booted with systemd, see sd_booted(3)."""
    return Path("/run/systemd/system").exists()


def get_default_route_interface(sock: Any) -> LinkMessage:
    """The link of the first route without a destination, a default route."""
    try:
        routes = sock.dump_routes()
    except NetavarkError as err:
        raise err.wrap("dump routes") from err

    for route in routes:
        dest = False
        out_if = 0
        for attr in route.attributes:
            if attr.kind == RTA_DST:
                dest = True
            elif attr.kind == RTA_OIF:
                out_if = attr.as_u32()
        if not dest and out_if > 0:
            return sock.get_link(out_if)
    raise NetavarkError("failed to get default route interface")


def get_mtu_from_iface_attributes(attributes: Iterable[Attribute]) -> int:
    """The MTU from link attributes."""
    for attr in attributes:
        if attr.kind == IFLA_MTU:
            return attr.as_u32()
    raise NetavarkError("no MTU attribute in netlink message, possible kernel issue")