"""Network drivers and the selection of a driver for a network."""

from __future__ import annotations

import json
import os
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from . import constants
from .errors import NetavarkError, wrap_error
from .types import IPAddress, Network, NetworkPluginExec, PerNetworkOptions, PortMapping
from .types import StatusBlock


@dataclass(kw_only=True)
class DriverInfo:
    """Everything a driver needs to know to set up one network."""

    container_id: str
    container_name: str
    netns_path: str
    network: Network
    per_network_opts: PerNetworkOptions
    firewall: Any = None
    container_dns_servers: list[IPAddress] | None = None
    netns_host: Any = None
    netns_container: Any = None
    port_mappings: list[PortMapping] | None = None
    dns_port: int = 53
    config_dir: Path = Path(constants.DEFAULT_CONFIG_DIR)
    rootless: bool = False
    container_hostname: str | None = None


class NetworkDriver(ABC):
    """A driver that sets up and tears down one network for a container."""

    @abstractmethod
    def validate(self) -> None:
        """Check the driver options."""

    @abstractmethod
    def setup(self, host_sock: Any, netns_sock: Any) -> tuple[StatusBlock, Any]:
        """Set up interfaces and firewall; return the status and a DNS entry or None."""

    @abstractmethod
    def teardown(self, host_sock: Any, netns_sock: Any) -> None:
        """Remove what setup created."""

    @abstractmethod
    def network_name(self) -> str:
        """Name of the network this driver handles."""


class PluginDriver(NetworkDriver):
    """A driver implemented by an external plugin program."""

    def __init__(self, path: str | os.PathLike[str], info: DriverInfo) -> None:
        self.path = Path(path)
        self.info = info

    def validate(self) -> None:
        # The plugin API has no validate call; it would only cost an extra exec.
        return None

    def setup(self, host_sock: Any, netns_sock: Any) -> tuple[StatusBlock, Any]:
        status = self._run(True)
        assert status is not None
        return status, None

    def teardown(self, host_sock: Any, netns_sock: Any) -> None:
        self._run(False)

    def network_name(self) -> str:
        return self.info.network.name

    def _run(self, setup: bool) -> StatusBlock | None:
        try:
            return self._exec_plugin(setup, self.info.netns_path)
        except (NetavarkError, OSError, ValueError) as err:
            raise wrap_error(f'plugin "{self.path.name}" failed', err) from err

    def _exec_plugin(self, setup: bool, netns: str) -> StatusBlock | None:
        payload = NetworkPluginExec(
            container_id=self.info.container_id,
            container_name=self.info.container_name,
            port_mappings=self.info.port_mappings,
            network=self.info.network,
            network_options=self.info.per_network_opts,
        )
        data = json.dumps(payload.to_dict(), separators=(",", ":")).encode()

        with subprocess.Popen(
            [str(self.path), "setup" if setup else "teardown", netns],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
        ) as child:
            output, _ = child.communicate(data)
            rc = child.returncode

        if rc < 0:
            raise NetavarkError("plugin killed by signal")
        if rc == 0:
            if setup:
                return StatusBlock.from_dict(json.loads(output))
            return None
        reply = json.loads(output)
        if not isinstance(reply, dict) or not isinstance(reply.get("error"), str):
            raise NetavarkError("invalid plugin error reply: missing field `error`")
        raise NetavarkError(f"exit code {rc}, message: {reply['error']}")


def _is_executable_file(path: Path) -> bool:
    try:
        meta = path.stat()
    except OSError:
        return False
    return path.is_file() and meta.st_mode & 0o111 != 0


def get_network_driver(
    info: DriverInfo,
    plugin_directories: Sequence[str | os.PathLike[str]] | None = None,
) -> NetworkDriver:
    """Select the driver for ``info.network``, searching plugin directories in order."""
    name = info.network.driver
    if name in (constants.DRIVER_BRIDGE, constants.DRIVER_IPVLAN, constants.DRIVER_MACVLAN):
        raise NetavarkError(f'network driver "{name}" is not available in this build')

    for directory in plugin_directories or ():
        path = Path(directory) / name
        if _is_executable_file(path):
            return PluginDriver(path, info)

    raise NetavarkError(f'unknown network driver "{name}"')