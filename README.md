# netavark

Building blocks for a Linux container network stack. The package reads the
network configuration that a container engine hands over as JSON, works out
container addresses from it, talks to the kernel over route netlink, writes
sysctl values, and runs networks that are handled by external plugin
executables. It has no dependencies outside the standard library.

## What is inside

- `netavark.types`: the JSON configuration model: `Network`, `Subnet`, `Route`,
  `LeaseRange`, `PortMapping`, `PerNetworkOptions`, `NetworkOptions`,
  `NetworkPluginExec`, and the result types `StatusBlock`, `NetInterface` and
  `NetAddress`. Each has `from_dict()` and `to_dict()`.
  `NetworkOptions.load(path)` reads a JSON file, or standard input when `path`
  is `None`.
- `netavark.netlink`: a route netlink `Socket` (`get_link`, `create_link`,
  `del_link`, `set_up`, `add_addr`, `add_route`, `dump_links`, `dump_routes`,
  and more), and the message classes and encoders it is built on
  (`LinkMessage`, `AddressMessage`, `RouteMessage`, `Attribute`,
  `build_link_message`, `build_address_message`, `build_route_message`,
  `encode_message`, `parse_messages`).
- `netavark.sysctl`: `apply_sysctl_value()`, `disable_ipv6_autoconf()`,
  `get_bridge_sysctl_d_path()` and `SysctlDWriter`, which writes a sysctl.d
  file alongside the values so that systemd-sysctl keeps them in place.
- `netavark.core_utils`: IPAM address calculation (`get_ipam_addresses`), MAC
  address encoding and decoding, macvlan and ipvlan mode parsing, network
  hashes, option parsing, default routes, route list conversion and network
  namespace switching (`join_netns`, the `exec_netns` context manager,
  `open_netlink_sockets`).
- `netavark.internal_types`: `IsolateOption`, `SetupNetwork`,
  `TearDownNetwork`, `PortForwardConfig`, `TeardownPortForward` and
  `IPAMAddresses`.
- `netavark.driver`: `DriverInfo`, the `NetworkDriver` interface,
  `PluginDriver`, which runs an external plugin executable, and
  `get_network_driver()`, which finds a plugin for a network's driver name.
- `netavark.plugin`: `Plugin`, `PluginExec` and `Info`, for writing such a
  plugin in Python.
- `netavark.validation`: `ns_checks()`, which checks that a namespace path
  can be opened.
- `netavark.errors`: `NetavarkError`, `NetlinkError` (carrying the kernel's
  errno), `ErrorList` and `wrap_error()`.

The netlink, namespace and sysctl operations need root privileges, or at least
`CAP_NET_ADMIN` inside the network namespaces involved.

## What it does not do

- There are no built-in bridge, macvlan or ipvlan drivers.
  `get_network_driver()` raises `NetavarkError` for the names `bridge`,
  `macvlan` and `ipvlan`; every other driver name is looked up as an executable
  in the plugin directories given to it.
- There is no DHCP client or proxy: the `dhcp` IPAM driver only marks the
  result with `dhcp_enabled=True`.
- There is no firewall code and no DNS server integration.
- There is no command-line program; the package is used as a library, and
  plugins written with `PluginExec` are their own executables.

## Reading a configuration

```python
from netavark.types import NetworkOptions

opts = NetworkOptions.load("network-options.json")
for name, network in opts.network_info.items():
    print(name, network.driver, [s.subnet for s in network.subnets or []])
```

## Short helpers

```python
from netavark.core_utils import (
    create_network_hash,
    decode_address_from_hex,
    encode_address_to_hex,
    get_ipvlan_mode_from_string,
)

mac = decode_address_from_hex("02:00:00:00:00:01")
print(encode_address_to_hex(mac))             # 02:00:00:00:00:01
print(create_network_hash("podman", 13))      # first 13 upper case hex digits of SHA-512
mode = get_ipvlan_mode_from_string(None)      # IpVlanMode.L2, the default
```

Malformed input raises `netavark.errors.NetavarkError`, with a message saying
which value was wrong.

## Writing sysctl values

```python
from netavark.sysctl import SysctlDWriter, get_bridge_sysctl_d_path

path = get_bridge_sysctl_d_path("podman1")
with SysctlDWriter(path, [("net/ipv4/ip_forward", "1")]) as writer:
    writer.write_sysctls()
    writer.commit()
```

A writer that is closed without `commit()` removes its sysctl.d file again, so
an error partway through leaves nothing behind. An existing sysctl.d file is
left as it is. Both `apply_sysctl_value()` and `SysctlDWriter` take an optional
`root` to use a directory other than `/proc/sys`.

## Writing a network plugin

A plugin is an executable that takes a subcommand (`create`, `setup`,
`teardown` or `info`), reads JSON on standard input and writes JSON to standard
output. `PluginExec` handles all of that; you provide the network logic.

```python
import sys

from netavark.plugin import Info, Plugin, PluginExec
from netavark.types import StatusBlock


class ExamplePlugin(Plugin):
    def create(self, network):
        return network

    def setup(self, netns, opts):
        return StatusBlock.from_dict(
            {"dns_search_domains": [], "dns_server_ips": [], "interfaces": {}}
        )

    def teardown(self, netns, opts):
        pass


PluginExec(ExamplePlugin(), Info("0.1.0", "1.0.0", None)).exec(sys.argv)
```

With no subcommand, or with `info`, the plugin prints its `Info`. On failure
it prints `{"error": "..."}` and exits with status 1. This is what
`PluginDriver` expects when it runs the plugin.

## Running the tests

Install the package with its `test` extra and run pytest from the project
directory.