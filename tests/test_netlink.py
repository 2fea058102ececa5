import errno
import ipaddress
import struct

import pytest

from netavark import constants, netlink
from netavark.errors import NetavarkError, NetlinkError


class FakeKernel:
    """Stands in for the netlink socket and answers requests."""

    def __init__(self):
        self.responder = self.ack
        self.sent = []
        self.pending = []
        self.bound = None
        self.connected = None
        self.closed = False
        self.args = None

    def __call__(self, family, type_, proto):
        self.args = (family, type_, proto)
        return self

    def bind(self, addr):
        self.bound = addr

    def connect(self, addr):
        self.connected = addr

    def send(self, data, flags=0):
        messages = netlink.parse_messages(data)
        self.sent.extend(messages)
        for message in messages:
            self.pending.extend(self.responder(*message))
        return len(data)

    def recv(self, size):
        return self.pending.pop(0)

    def close(self):
        self.closed = True

    @staticmethod
    def ack(msg_type, flags, seq, payload):
        body = struct.pack("=i", 0) + b"\0" * 16
        return [netlink.encode_message(netlink.NLMSG_ERROR, 0, seq, body)]


def error_reply(code):
    def respond(msg_type, flags, seq, payload):
        body = struct.pack("=i", -code) + b"\0" * 16
        return [netlink.encode_message(netlink.NLMSG_ERROR, 0, seq, body)]

    return respond


@pytest.fixture
def kernel(monkeypatch):
    fake = FakeKernel()
    monkeypatch.setattr(netlink.socket, "socket", fake)
    return fake


def sample_link(index, name):
    return netlink.LinkMessage(
        index=index,
        attributes=[
            netlink.Attribute.string(netlink.IFLA_IFNAME, name),
            netlink.Attribute.u32(netlink.IFLA_MTU, 1500),
            netlink.Attribute.nested(
                netlink.IFLA_LINKINFO,
                [netlink.Attribute.string(netlink.IFLA_INFO_KIND, "bridge")],
            ),
        ],
    )


def test_attribute_pack_is_aligned_and_round_trips():
    attrs = [
        netlink.Attribute.string(netlink.IFLA_IFNAME, "eth0"),
        netlink.Attribute.u8(netlink.IFLA_BR_VLAN_FILTERING, 1),
        netlink.Attribute.u32(netlink.IFLA_MTU, 9000),
    ]
    packed = [a.pack() for a in attrs]
    assert all(len(p) % 4 == 0 for p in packed)
    parsed = netlink.Attribute.unpack_all(b"".join(packed))
    assert parsed == attrs
    assert parsed[0].as_str() == "eth0"
    assert parsed[1].as_u8() == 1
    assert parsed[2].as_u32() == 9000


def test_attribute_unpack_rejects_bad_length():
    data = netlink.Attribute.u32(netlink.IFLA_MTU, 1).pack()
    with pytest.raises(NetavarkError, match="deserialize"):
        netlink.Attribute.unpack_all(data[:6])


def test_link_message_round_trip():
    msg = sample_link(7, "podman0")
    parsed = netlink.LinkMessage.unpack(msg.pack())
    assert parsed == msg
    assert parsed.name == "podman0"
    assert parsed.mtu == 1500
    assert parsed.info_kind == "bridge"
    assert parsed.address is None


def test_link_message_unpack_too_short():
    with pytest.raises(NetavarkError):
        netlink.LinkMessage.unpack(b"\0" * 4)


def test_address_and_route_message_round_trip():
    addr = netlink.build_address_message(3, ipaddress.ip_interface("10.88.0.2/16"))
    assert netlink.AddressMessage.unpack(addr.pack()) == addr
    route = netlink.build_route_message(netlink.Route("10.1.0.0/24", "10.88.0.1", 5))
    assert netlink.RouteMessage.unpack(route.pack()) == route


def test_build_link_message_attribute_order():
    opts = netlink.CreateLinkOptions(
        name="veth0",
        kind="veth",
        info_data=[],
        mtu=1400,
        primary_index=4,
        link=2,
        mac=b"\x02\x00\x00\x00\x00\x01",
        netns=9,
    )
    msg = netlink.build_link_message(opts)
    assert [a.kind for a in msg.attributes] == [
        netlink.IFLA_LINKINFO,
        netlink.IFLA_IFNAME,
        netlink.IFLA_MTU,
        netlink.IFLA_ADDRESS,
        netlink.IFLA_MASTER,
        netlink.IFLA_LINK,
        netlink.IFLA_NET_NS_FD,
    ]
    assert msg.controller == 4
    assert msg.link == 2
    assert msg.info_kind == "veth"
    assert msg.attribute(netlink.IFLA_NET_NS_FD).as_u32() == 9


def test_build_link_message_defaults_only_linkinfo():
    msg = netlink.build_link_message(netlink.CreateLinkOptions(name="", kind="bridge"))
    assert [a.kind for a in msg.attributes] == [netlink.IFLA_LINKINFO]
    info = msg.attribute(netlink.IFLA_LINKINFO).children()
    assert [a.kind for a in info] == [netlink.IFLA_INFO_KIND]


def test_build_address_message_ipv4_has_broadcast():
    msg = netlink.build_address_message(5, ipaddress.ip_interface("10.88.0.2/24"))
    assert msg.family == netlink.AF_INET
    assert msg.prefix_len == 24
    assert msg.index == 5
    assert [a.kind for a in msg.attributes] == [netlink.IFA_BROADCAST, netlink.IFA_LOCAL]
    assert msg.attributes[0].data == ipaddress.ip_address("10.88.0.255").packed
    assert msg.attributes[1].data == ipaddress.ip_address("10.88.0.2").packed


def test_build_address_message_ipv6():
    msg = netlink.build_address_message(5, "fd00::2/64")
    assert msg.family == netlink.AF_INET6
    assert [a.kind for a in msg.attributes] == [netlink.IFA_LOCAL]


def test_build_route_message_uses_default_metric():
    msg = netlink.build_route_message(netlink.Route("0.0.0.0/0", "10.88.0.1"))
    assert msg.table == netlink.RT_TABLE_MAIN
    assert msg.protocol == netlink.RTPROT_STATIC
    assert msg.type == netlink.RTN_UNICAST
    assert msg.dst_len == 0
    priority = next(a for a in msg.attributes if a.kind == netlink.RTA_PRIORITY)
    assert priority.as_u32() == constants.DEFAULT_METRIC


def test_route_str():
    assert str(netlink.Route("10.0.0.0/24", "10.0.0.1")) == (
        "(dest: 10.0.0.0/24 ,gw: 10.0.0.1, metric 100)"
    )
    assert str(netlink.Route("fd00::/64", "fd00::1", 50)) == (
        "(dest: fd00::/64 ,gw: fd00::1, metric 50)"
    )


def test_route_rejects_mixed_versions():
    with pytest.raises(NetavarkError):
        netlink.Route("10.0.0.0/24", "fd00::1")


def test_encode_parse_round_trip():
    data = netlink.encode_message(18, 5, 42, b"abcd") + netlink.encode_message(3, 0, 42, b"")
    assert netlink.parse_messages(data) == [(18, 5, 42, b"abcd"), (3, 0, 42, b"")]


def test_parse_messages_truncated():
    data = netlink.encode_message(18, 0, 1, b"abcdefgh")
    with pytest.raises(NetavarkError, match="deserialize"):
        netlink.parse_messages(data[:-4])


def test_socket_get_link(kernel):
    def respond(msg_type, flags, seq, payload):
        return [netlink.encode_message(netlink.RTM_NEWLINK, 0, seq, sample_link(3, "br0").pack())]

    kernel.responder = respond
    with netlink.Socket() as sock:
        link = sock.get_link("br0")
    assert kernel.bound == (0, 0)
    assert kernel.connected == (0, 0)
    assert kernel.closed
    assert link.index == 3
    assert link.name == "br0"
    msg_type, flags, seq, payload = kernel.sent[0]
    assert msg_type == netlink.RTM_GETLINK
    assert flags == netlink.NLM_F_REQUEST
    assert seq == 1
    assert netlink.LinkMessage.unpack(payload).name == "br0"


def test_socket_create_link_flags(kernel):
    sock = netlink.Socket()
    sock.create_link(netlink.CreateLinkOptions(name="br0", kind="bridge"))
    sock.set_up(7)
    msg_type, flags, seq, _ = kernel.sent[0]
    assert msg_type == netlink.RTM_NEWLINK
    expected = netlink.NLM_F_REQUEST | netlink.NLM_F_ACK | netlink.NLM_F_EXCL | netlink.NLM_F_CREATE
    assert flags == expected
    up_type, _, up_seq, up_payload = kernel.sent[1]
    assert up_type == netlink.RTM_SETLINK
    assert up_seq == 2
    up = netlink.LinkMessage.unpack(up_payload)
    assert (up.index, up.flags, up.change_mask) == (7, netlink.IFF_UP, netlink.IFF_UP)


def test_socket_netlink_error(kernel):
    kernel.responder = error_reply(errno.ENODEV)
    sock = netlink.Socket()
    with pytest.raises(NetlinkError) as info:
        sock.get_link("missing0")
    assert info.value.code == errno.ENODEV


def test_socket_get_link_without_result(kernel):
    sock = netlink.Socket()
    with pytest.raises(NetavarkError, match="unexpected netlink result"):
        sock.get_link(1)


def test_socket_sequence_mismatch(kernel):
    def respond(msg_type, flags, seq, payload):
        return FakeKernel.ack(msg_type, flags, seq + 5, payload)

    kernel.responder = respond
    sock = netlink.Socket()
    with pytest.raises(NetavarkError, match="out of sync"):
        sock.del_link("veth0")


def test_socket_dump_links_multipart(kernel):
    def respond(msg_type, flags, seq, payload):
        first = netlink.encode_message(
            netlink.RTM_NEWLINK, netlink.NLM_F_MULTI, seq, sample_link(1, "a").pack()
        ) + netlink.encode_message(
            netlink.RTM_NEWLINK, netlink.NLM_F_MULTI, seq, sample_link(2, "b").pack()
        )
        done = netlink.encode_message(netlink.NLMSG_DONE, netlink.NLM_F_MULTI, seq, b"\0" * 4)
        return [first, done]

    kernel.responder = respond
    sock = netlink.Socket()
    links = sock.dump_links([netlink.Attribute.u32(netlink.IFLA_MASTER, 4)])
    assert [link.name for link in links] == ["a", "b"]
    _, flags, _, payload = kernel.sent[0]
    assert flags & netlink.NLM_F_DUMP == netlink.NLM_F_DUMP
    assert netlink.LinkMessage.unpack(payload).controller == 4


def test_socket_add_ipv6_addr_eacces(kernel):
    kernel.responder = error_reply(errno.EACCES)
    sock = netlink.Socket()
    with pytest.raises(NetavarkError, match="is ipv6 enabled in the kernel"):
        sock.add_addr(2, ipaddress.ip_interface("fd00::5/64"))
    with pytest.raises(NetlinkError):
        sock.add_addr(2, ipaddress.ip_interface("10.0.0.5/24"))


def test_socket_set_vlan_id(kernel):
    sock = netlink.Socket()
    flags = netlink.BRIDGE_VLAN_INFO_PVID | netlink.BRIDGE_VLAN_INFO_UNTAGGED
    sock.set_vlan_id(6, 20, flags)
    _, _, _, payload = kernel.sent[0]
    msg = netlink.LinkMessage.unpack(payload)
    assert msg.family == netlink.AF_BRIDGE
    assert msg.index == 6
    spec = msg.attribute(netlink.IFLA_AF_SPEC).children()
    assert spec[0].kind == netlink.IFLA_BRIDGE_VLAN_INFO
    assert spec[0].data == struct.pack("=HH", flags, 20)


def test_socket_add_route_request(kernel):
    sock = netlink.Socket()
    route = netlink.Route("10.2.0.0/16", "10.88.0.1", 300)
    sock.add_route(route)
    msg_type, _, _, payload = kernel.sent[0]
    assert msg_type == netlink.RTM_NEWROUTE
    assert netlink.RouteMessage.unpack(payload) == netlink.build_route_message(route)