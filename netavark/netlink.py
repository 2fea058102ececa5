"""A small rtnetlink client for managing links, addresses and routes."""

from __future__ import annotations

import errno
import ipaddress
import logging
import socket
import struct
from collections.abc import Iterable
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

from . import constants
from .errors import NetavarkError, NetlinkError, wrap_error

log = logging.getLogger(__name__)

NETLINK_ROUTE = 0
AF_NETLINK = getattr(socket, "AF_NETLINK", 16)

# Address families
AF_UNSPEC = 0
AF_INET = 2
AF_BRIDGE = 7
AF_INET6 = 10

# Netlink control message types
NLMSG_NOOP = 1
NLMSG_ERROR = 2
NLMSG_DONE = 3
NLMSG_OVERRUN = 4

# Netlink header flags
NLM_F_REQUEST = 0x1
NLM_F_MULTI = 0x2
NLM_F_ACK = 0x4
NLM_F_DUMP = 0x300
NLM_F_EXCL = 0x200
NLM_F_CREATE = 0x400

# rtnetlink message types
RTM_NEWLINK = 16
RTM_DELLINK = 17
RTM_GETLINK = 18
RTM_SETLINK = 19
RTM_NEWADDR = 20
RTM_DELADDR = 21
RTM_GETADDR = 22
RTM_NEWROUTE = 24
RTM_DELROUTE = 25
RTM_GETROUTE = 26

# Link attributes
IFLA_ADDRESS = 1
IFLA_BROADCAST = 2
IFLA_IFNAME = 3
IFLA_MTU = 4
IFLA_LINK = 5
IFLA_MASTER = 10
IFLA_LINKINFO = 18
IFLA_AF_SPEC = 26
IFLA_NET_NS_FD = 28

IFLA_INFO_KIND = 1
IFLA_INFO_DATA = 2

IFLA_BR_VLAN_FILTERING = 7
IFLA_BRIDGE_VLAN_INFO = 2
BRIDGE_VLAN_INFO_MASTER = 0x1
BRIDGE_VLAN_INFO_PVID = 0x2
BRIDGE_VLAN_INFO_UNTAGGED = 0x4

VETH_INFO_PEER = 1
IFLA_MACVLAN_MODE = 1
IFLA_MACVLAN_BC_CUTOFF = 9
IFLA_IPVLAN_MODE = 1

IFF_UP = 0x1

# Address attributes
IFA_ADDRESS = 1
IFA_LOCAL = 2
IFA_BROADCAST = 4

# Route attributes and header values
RTA_DST = 1
RTA_OIF = 4
RTA_GATEWAY = 5
RTA_PRIORITY = 6
RT_TABLE_MAIN = 254
RTPROT_UNSPEC = 0
RTPROT_STATIC = 4
RT_SCOPE_UNIVERSE = 0
RTN_UNICAST = 1

NLA_TYPE_MASK = 0x3FFF

# See NLMSG_GOODSIZE in the kernel.
BUFFER_SIZE = 8192

_NLMSGHDR = struct.Struct("=IHHII")
_NLA_HDR = struct.Struct("=HH")
_IFINFOMSG = struct.Struct("=BxHIII")
_IFADDRMSG = struct.Struct("=BBBBI")
_RTMSG = struct.Struct("=BBBBBBBBI")
_VLAN_INFO = struct.Struct("=HH")

IPInterface = ipaddress.IPv4Interface | ipaddress.IPv6Interface
IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _align(length: int) -> int:
    return (length + 3) & ~3


def _deserialize_error(reason: str) -> NetavarkError:
    return NetavarkError(f"failed to deserialize netlink message: {reason}")


def _fd(obj: Any) -> int:
    return obj if isinstance(obj, int) else obj.fileno()


@dataclass(frozen=True)
class Attribute:
    """A netlink attribute: a type and its raw payload."""

    type: int
    data: bytes = b""

    @classmethod
    def u8(cls, type_: int, value: int) -> Attribute:
        return cls(type_, struct.pack("=B", value))

    @classmethod
    def u16(cls, type_: int, value: int) -> Attribute:
        return cls(type_, struct.pack("=H", value))

    @classmethod
    def u32(cls, type_: int, value: int) -> Attribute:
        return cls(type_, struct.pack("=I", value))

    @classmethod
    def i32(cls, type_: int, value: int) -> Attribute:
        return cls(type_, struct.pack("=i", value))

    @classmethod
    def string(cls, type_: int, value: str) -> Attribute:
        return cls(type_, value.encode() + b"\0")

    @classmethod
    def nested(cls, type_: int, children: Iterable[Attribute]) -> Attribute:
        return cls(type_, b"".join(child.pack() for child in children))

    @property
    def kind(self) -> int:
        """The attribute type without the nested and byte order flags."""
        return self.type & NLA_TYPE_MASK

    def _number(self, fmt: str) -> int:
        size = struct.calcsize(fmt)
        if len(self.data) < size:
            raise _deserialize_error(f"attribute {self.kind} too short")
        return struct.unpack_from(fmt, self.data)[0]

    def as_u8(self) -> int:
        return self._number("=B")

    def as_u16(self) -> int:
        return self._number("=H")

    def as_u32(self) -> int:
        return self._number("=I")

    def as_str(self) -> str:
        return self.data.split(b"\0", 1)[0].decode(errors="replace")

    def children(self) -> list[Attribute]:
        """Parse the payload as nested attributes."""
        return Attribute.unpack_all(self.data)

    def pack(self) -> bytes:
        length = _NLA_HDR.size + len(self.data)
        raw = _NLA_HDR.pack(length, self.type) + self.data
        return raw.ljust(_align(length), b"\0")

    @classmethod
    def unpack_all(cls, data: bytes) -> list[Attribute]:
        """Parse a run of attributes."""
        attrs = []
        offset = 0
        while offset + _NLA_HDR.size <= len(data):
            length, type_ = _NLA_HDR.unpack_from(data, offset)
            if length < _NLA_HDR.size or offset + length > len(data):
                raise _deserialize_error("invalid attribute length")
            attrs.append(cls(type_, bytes(data[offset + _NLA_HDR.size : offset + length])))
            offset += _align(length)
        return attrs


def _find(attributes: Iterable[Attribute], kind: int) -> Attribute | None:
    return next((attr for attr in attributes if attr.kind == kind), None)


@dataclass
class LinkMessage:
    """An ifinfomsg header with its attributes."""

    family: int = AF_UNSPEC
    link_type: int = 0
    index: int = 0
    flags: int = 0
    change_mask: int = 0
    attributes: list[Attribute] = field(default_factory=list)

    def pack(self) -> bytes:
        header = _IFINFOMSG.pack(
            self.family, self.link_type, self.index, self.flags, self.change_mask
        )
        return header + b"".join(attr.pack() for attr in self.attributes)

    @classmethod
    def unpack(cls, data: bytes) -> LinkMessage:
        if len(data) < _IFINFOMSG.size:
            raise _deserialize_error("link message too short")
        family, link_type, index, flags, change = _IFINFOMSG.unpack_from(data)
        return cls(family, link_type, index, flags, change,
                   Attribute.unpack_all(data[_IFINFOMSG.size :]))

    def attribute(self, kind: int) -> Attribute | None:
        return _find(self.attributes, kind)

    def _u32(self, kind: int) -> int | None:
        attr = self.attribute(kind)
        return None if attr is None else attr.as_u32()

    @property
    def name(self) -> str | None:
        attr = self.attribute(IFLA_IFNAME)
        return None if attr is None else attr.as_str()

    @property
    def mtu(self) -> int | None:
        return self._u32(IFLA_MTU)

    @property
    def address(self) -> bytes | None:
        attr = self.attribute(IFLA_ADDRESS)
        return None if attr is None else attr.data

    @property
    def link(self) -> int | None:
        return self._u32(IFLA_LINK)

    @property
    def controller(self) -> int | None:
        return self._u32(IFLA_MASTER)

    @property
    def info_kind(self) -> str | None:
        info = self.attribute(IFLA_LINKINFO)
        if info is None:
            return None
        kind = _find(info.children(), IFLA_INFO_KIND)
        return None if kind is None else kind.as_str()


@dataclass
class AddressMessage:
    """An ifaddrmsg header with its attributes."""

    family: int = AF_UNSPEC
    prefix_len: int = 0
    flags: int = 0
    scope: int = 0
    index: int = 0
    attributes: list[Attribute] = field(default_factory=list)

    def pack(self) -> bytes:
        header = _IFADDRMSG.pack(self.family, self.prefix_len, self.flags, self.scope, self.index)
        return header + b"".join(attr.pack() for attr in self.attributes)

    @classmethod
    def unpack(cls, data: bytes) -> AddressMessage:
        if len(data) < _IFADDRMSG.size:
            raise _deserialize_error("address message too short")
        family, prefix_len, flags, scope, index = _IFADDRMSG.unpack_from(data)
        return cls(family, prefix_len, flags, scope, index,
                   Attribute.unpack_all(data[_IFADDRMSG.size :]))


@dataclass
class RouteMessage:
    """An rtmsg header with its attributes."""

    family: int = AF_UNSPEC
    dst_len: int = 0
    src_len: int = 0
    tos: int = 0
    table: int = 0
    protocol: int = RTPROT_UNSPEC
    scope: int = RT_SCOPE_UNIVERSE
    type: int = 0
    flags: int = 0
    attributes: list[Attribute] = field(default_factory=list)

    def pack(self) -> bytes:
        header = _RTMSG.pack(
            self.family, self.dst_len, self.src_len, self.tos, self.table,
            self.protocol, self.scope, self.type, self.flags,
        )
        return header + b"".join(attr.pack() for attr in self.attributes)

    @classmethod
    def unpack(cls, data: bytes) -> RouteMessage:
        if len(data) < _RTMSG.size:
            raise _deserialize_error("route message too short")
        fields = _RTMSG.unpack_from(data)
        return cls(*fields, attributes=Attribute.unpack_all(data[_RTMSG.size :]))


@dataclass
class Route:
    """A route to ``dest`` via gateway ``gw``, both of one IP version."""

    dest: IPInterface
    gw: IPAddress
    metric: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.dest, (ipaddress.IPv4Interface, ipaddress.IPv6Interface)):
            self.dest = ipaddress.ip_interface(self.dest)
        if not isinstance(self.gw, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            self.gw = ipaddress.ip_address(self.gw)
        if self.dest.version != self.gw.version:
            raise NetavarkError(
                f"route destination {self.dest} and gateway {self.gw} "
                "must be of the same IP version"
            )

    def __str__(self) -> str:
        metric = constants.DEFAULT_METRIC if self.metric is None else self.metric
        return f"(dest: {self.dest} ,gw: {self.gw}, metric {metric})"


@dataclass
class CreateLinkOptions:
    """Settings for a link to create."""

    name: str
    kind: str
    info_data: list[Attribute] | None = None
    mtu: int = 0
    primary_index: int = 0
    link: int = 0
    mac: bytes = b""
    netns: Any = None


def build_link_message(options: CreateLinkOptions) -> LinkMessage:
    """Build the link message that creates a link with ``options``."""
    msg = LinkMessage()
    info = [Attribute.string(IFLA_INFO_KIND, options.kind)]
    if options.info_data is not None:
        info.append(Attribute.nested(IFLA_INFO_DATA, options.info_data))
    msg.attributes.append(Attribute.nested(IFLA_LINKINFO, info))
    if options.name:
        msg.attributes.append(Attribute.string(IFLA_IFNAME, options.name))
    if options.mtu:
        msg.attributes.append(Attribute.u32(IFLA_MTU, options.mtu))
    if options.mac:
        msg.attributes.append(Attribute(IFLA_ADDRESS, bytes(options.mac)))
    if options.primary_index:
        msg.attributes.append(Attribute.u32(IFLA_MASTER, options.primary_index))
    if options.link:
        msg.attributes.append(Attribute.u32(IFLA_LINK, options.link))
    if options.netns is not None:
        msg.attributes.append(Attribute.u32(IFLA_NET_NS_FD, _fd(options.netns)))
    return msg


def build_address_message(index: int, addr: Any) -> AddressMessage:
    """Build the address message for ``addr`` on link ``index``."""
    if not isinstance(addr, (ipaddress.IPv4Interface, ipaddress.IPv6Interface)):
        addr = ipaddress.ip_interface(addr)
    msg = AddressMessage(index=index, prefix_len=addr.network.prefixlen)
    if addr.version == 4:
        msg.family = AF_INET
        msg.attributes.append(
            Attribute(IFA_BROADCAST, addr.network.broadcast_address.packed)
        )
    else:
        msg.family = AF_INET6
    msg.attributes.append(Attribute(IFA_LOCAL, addr.ip.packed))
    return msg


def build_route_message(route: Route) -> RouteMessage:
    """Build the static unicast route message for ``route``."""
    metric = constants.DEFAULT_METRIC if route.metric is None else route.metric
    return RouteMessage(
        family=AF_INET if route.dest.version == 4 else AF_INET6,
        dst_len=route.dest.network.prefixlen,
        table=RT_TABLE_MAIN,
        protocol=RTPROT_STATIC,
        scope=RT_SCOPE_UNIVERSE,
        type=RTN_UNICAST,
        attributes=[
            Attribute(RTA_DST, route.dest.ip.packed),
            Attribute(RTA_GATEWAY, route.gw.packed),
            Attribute.u32(RTA_PRIORITY, metric),
        ],
    )


def encode_message(msg_type: int, flags: int, sequence: int, payload: bytes) -> bytes:
    """Frame ``payload`` with a netlink header."""
    return _NLMSGHDR.pack(_NLMSGHDR.size + len(payload), msg_type, flags, sequence, 0) + payload


def parse_messages(data: bytes) -> list[tuple[int, int, int, bytes]]:
    """Split a datagram into (type, flags, sequence, payload) tuples."""
    messages = []
    offset = 0
    while offset < len(data):
        if len(data) - offset < _NLMSGHDR.size:
            raise _deserialize_error("truncated header")
        length, msg_type, flags, sequence, _pid = _NLMSGHDR.unpack_from(data, offset)
        if length == 0:
            break
        if length < _NLMSGHDR.size or offset + length > len(data):
            raise _deserialize_error("invalid message length")
        payload = bytes(data[offset + _NLMSGHDR.size : offset + length])
        messages.append((msg_type, flags, sequence, payload))
        offset += _align(length)
    return messages


def _expect(result: list[Any], count: int, function: str) -> None:
    if len(result) != count:
        raise NetavarkError(
            f"{function}: unexpected netlink result "
            f"(got {len(result)} result(s), want {count})"
        )


def _link_id_message(link: int | str) -> LinkMessage:
    msg = LinkMessage()
    if isinstance(link, str):
        msg.attributes.append(Attribute.string(IFLA_IFNAME, link))
    else:
        msg.index = link
    return msg


def _unexpected_type(msg_type: int) -> NetavarkError:
    return NetavarkError(f"unexpected netlink message type: {msg_type}")


class Socket:
    """A route netlink socket that sends one request at a time."""

    def __init__(self) -> None:
        try:
            sock = socket.socket(AF_NETLINK, socket.SOCK_RAW, NETLINK_ROUTE)
        except OSError as err:
            raise wrap_error("open", err) from err
        for step, call in (("bind", sock.bind), ("connect", sock.connect)):
            try:
                call((0, 0))
            except OSError as err:
                sock.close()
                raise wrap_error(step, err) from err
        self._sock = sock
        self._sequence = 0

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> Socket:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def get_link(self, link: int | str) -> LinkMessage:
        """Look up a link by index or name."""
        result = self._request(RTM_GETLINK, _link_id_message(link).pack(), 0)
        _expect(result, 1, "get_link")
        msg_type, payload = result[0]
        if msg_type != RTM_NEWLINK:
            raise _unexpected_type(msg_type)
        return LinkMessage.unpack(payload)

    def create_link(self, options: CreateLinkOptions) -> None:
        msg = build_link_message(options)
        result = self._request(
            RTM_NEWLINK, msg.pack(), NLM_F_ACK | NLM_F_EXCL | NLM_F_CREATE
        )
        _expect(result, 0, "create_link")

    def set_link_name(self, index: int, name: str) -> None:
        msg = LinkMessage(index=index, attributes=[Attribute.string(IFLA_IFNAME, name)])
        _expect(self._request(RTM_SETLINK, msg.pack(), NLM_F_ACK), 0, "set_link_name")

    def del_link(self, link: int | str) -> None:
        msg = _link_id_message(link)
        _expect(self._request(RTM_DELLINK, msg.pack(), NLM_F_ACK), 0, "del_link")

    def set_link_ns(self, index: int, netns_fd: Any) -> None:
        msg = LinkMessage(
            index=index, attributes=[Attribute.u32(IFLA_NET_NS_FD, _fd(netns_fd))]
        )
        _expect(self._request(RTM_SETLINK, msg.pack(), NLM_F_ACK), 0, "set_link_ns")

    def set_vlan_filtering(self, index: int, enabled: bool) -> None:
        """Set the vlan_filtering attribute on a bridge."""
        info = [
            Attribute.string(IFLA_INFO_KIND, "bridge"),
            Attribute.nested(
                IFLA_INFO_DATA, [Attribute.u8(IFLA_BR_VLAN_FILTERING, int(enabled))]
            ),
        ]
        msg = LinkMessage(index=index, attributes=[Attribute.nested(IFLA_LINKINFO, info)])
        # The kernel only applies this through NEWLINK, SETLINK is silently ignored.
        _expect(self._request(RTM_NEWLINK, msg.pack(), NLM_F_ACK), 0, "set_vlan_filtering")

    def set_vlan_id(self, index: int, vid: int, flags: int) -> None:
        """Add vlan ``vid`` to a bridge port, like ``bridge vlan add``."""
        vlan = Attribute(IFLA_BRIDGE_VLAN_INFO, _VLAN_INFO.pack(flags, vid))
        msg = LinkMessage(
            family=AF_BRIDGE,
            index=index,
            attributes=[Attribute.nested(IFLA_AF_SPEC, [vlan])],
        )
        _expect(self._request(RTM_SETLINK, msg.pack(), NLM_F_ACK), 0, "set_vlan_id")

    def add_addr(self, index: int, addr: Any) -> None:
        msg = build_address_message(index, addr)
        try:
            result = self._request(
                RTM_NEWADDR, msg.pack(), NLM_F_ACK | NLM_F_EXCL | NLM_F_CREATE
            )
        except NetlinkError as err:
            # EACCES is what the kernel returns when ipv6 is disabled.
            if err.code == errno.EACCES and msg.family == AF_INET6:
                raise err.wrap(
                    "failed to add ipv6 address, is ipv6 enabled in the kernel?"
                ) from err
            raise
        _expect(result, 0, "add_addr")

    def del_addr(self, index: int, addr: Any) -> None:
        msg = build_address_message(index, addr)
        _expect(self._request(RTM_DELADDR, msg.pack(), NLM_F_ACK), 0, "del_addr")

    def add_route(self, route: Route) -> None:
        msg = build_route_message(route)
        log.info("Adding route %s", route)
        result = self._request(RTM_NEWROUTE, msg.pack(), NLM_F_ACK | NLM_F_CREATE)
        _expect(result, 0, "add_route")

    def del_route(self, route: Route) -> None:
        msg = build_route_message(route)
        log.info("Deleting route %s", route)
        _expect(self._request(RTM_DELROUTE, msg.pack(), NLM_F_ACK), 0, "del_route")

    def dump_routes(self) -> list[RouteMessage]:
        msg = RouteMessage(
            table=RT_TABLE_MAIN,
            protocol=RTPROT_UNSPEC,
            scope=RT_SCOPE_UNIVERSE,
            type=RTN_UNICAST,
        )
        return self._dump(RTM_GETROUTE, msg.pack(), RTM_NEWROUTE, RouteMessage)

    def dump_links(self, attributes: Iterable[Attribute] = ()) -> list[LinkMessage]:
        """Dump all links matching the given filter attributes."""
        msg = LinkMessage(attributes=list(attributes))
        return self._dump(RTM_GETLINK, msg.pack(), RTM_NEWLINK, LinkMessage)

    def dump_addresses(self) -> list[AddressMessage]:
        return self._dump(RTM_GETADDR, AddressMessage().pack(), RTM_NEWADDR, AddressMessage)

    def set_up(self, link: int | str) -> None:
        msg = _link_id_message(link)
        msg.flags = IFF_UP
        msg.change_mask = IFF_UP
        result = self._request(
            RTM_SETLINK, msg.pack(), NLM_F_ACK | NLM_F_EXCL | NLM_F_CREATE
        )
        _expect(result, 0, "set_up")

    def set_mac_address(self, link: int | str, mac: bytes) -> None:
        msg = _link_id_message(link)
        msg.attributes.append(Attribute(IFLA_ADDRESS, bytes(mac)))
        _expect(self._request(RTM_SETLINK, msg.pack(), NLM_F_ACK), 0, "set_mac_address")

    def _dump(self, request: int, payload: bytes, reply: int, cls: Any) -> list[Any]:
        results = self._request(request, payload, NLM_F_DUMP | NLM_F_ACK)
        messages = []
        for msg_type, data in results:
            if msg_type != reply:
                raise _unexpected_type(msg_type)
            messages.append(cls.unpack(data))
        return messages

    def _request(self, msg_type: int, payload: bytes, flags: int) -> list[tuple[int, bytes]]:
        self._sequence += 1
        packet = encode_message(msg_type, NLM_F_REQUEST | flags, self._sequence, payload)
        log.debug("send netlink packet: type %d flags %#x seq %d", msg_type, flags, self._sequence)
        try:
            self._sock.send(packet)
        except OSError as err:
            raise wrap_error("send to netlink", err) from err
        return self._recv(flags & NLM_F_DUMP == NLM_F_DUMP)

    def _recv(self, multi: bool) -> list[tuple[int, bytes]]:
        result: list[tuple[int, bytes]] = []
        while True:
            try:
                data = self._sock.recv(BUFFER_SIZE)
            except OSError as err:
                raise wrap_error("recv from netlink", err) from err
            if not data:
                raise _deserialize_error("empty read")
            for msg_type, _flags, sequence, payload in parse_messages(data):
                if sequence != self._sequence:
                    raise NetavarkError(
                        "netlink: sequence_number out of sync "
                        f"(got {sequence}, want {self._sequence})"
                    )
                if msg_type == NLMSG_DONE:
                    return result
                if msg_type == NLMSG_ERROR:
                    if len(payload) < 4:
                        raise _deserialize_error("error message too short")
                    code = struct.unpack_from("=i", payload)[0]
                    if code:
                        raise NetlinkError(code)
                    return result
                if msg_type == NLMSG_NOOP:
                    raise NetavarkError("unimplemented netlink message type NOOP")
                if msg_type == NLMSG_OVERRUN:
                    raise NetavarkError("unimplemented netlink message type OVERRUN")
                result.append((msg_type, payload))
                if not multi:
                    return result