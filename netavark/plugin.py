"""Framework for writing external network plugins.

A plugin is a program that is called with a subcommand (``create``,
``setup``, ``teardown`` or ``info``) and exchanges JSON over stdin and stdout.
"""

from __future__ import annotations

import json
import sys
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, TextIO

from .errors import NetavarkError
from .types import Network, NetworkPluginExec, StatusBlock

API_VERSION = "1.0.0"


def _dump(obj: Any, stdout: TextIO) -> None:
    json.dump(obj, stdout, separators=(",", ":"))
    stdout.flush()


@dataclass
class Info:
    """Information about a plugin, printed by the ``info`` subcommand."""

    version: str
    api_version: str = API_VERSION
    extra_info: dict[str, str] | None = None

    def to_dict(self) -> dict[str, str]:
        """The JSON object; extra fields sit next to the version fields."""
        result = {"version": self.version, "api_version": self.api_version}
        if self.extra_info:
            result.update(self.extra_info)
        return result


class Plugin(ABC):
    """The operations a network plugin provides."""

    @abstractmethod
    def create(self, network: Network) -> Network:
        """Validate and complete a network configuration."""

    @abstractmethod
    def setup(self, netns: str, opts: NetworkPluginExec) -> StatusBlock:
        """Set up the network inside the namespace at ``netns``."""

    @abstractmethod
    def teardown(self, netns: str, opts: NetworkPluginExec) -> None:
        """Tear down the network inside the namespace at ``netns``."""


class PluginExec:
    """Dispatches command line subcommands to a plugin."""

    def __init__(self, plugin: Plugin, info: Info) -> None:
        self.plugin = plugin
        self.info = info

    def exec(self, argv: Sequence[str] | None = None) -> None:
        """Run the plugin; on failure print a JSON error and exit with status 1."""
        try:
            self.run(argv)
        except Exception as err:  # every failure is reported to the caller as JSON
            try:
                _dump({"error": str(err)}, sys.stdout)
            except (OSError, ValueError) as write_err:
                print(f"failed to write json error: {write_err}: {err}")
            raise SystemExit(1) from err

    def run(
        self,
        argv: Sequence[str] | None = None,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        """Handle one invocation; ``argv`` includes the program name."""
        args = list(sys.argv if argv is None else argv)
        stdin = sys.stdin if stdin is None else stdin
        stdout = sys.stdout if stdout is None else stdout

        if not args:
            raise NetavarkError("zero arguments given")
        rest = args[1:]
        command = rest[0] if rest else None

        match command:
            case "create":
                network = Network.from_dict(json.load(stdin))
                network = self.plugin.create(network)
                _dump(network.to_dict(), stdout)
            case "setup":
                netns = self._netns(rest)
                opts = NetworkPluginExec.from_dict(json.load(stdin))
                status = self.plugin.setup(netns, opts)
                _dump(status.to_dict(), stdout)
            case "teardown":
                netns = self._netns(rest)
                opts = NetworkPluginExec.from_dict(json.load(stdin))
                self.plugin.teardown(netns, opts)
            case "info" | None:
                _dump(self.info.to_dict(), stdout)
            case unknown:
                raise NetavarkError(f"unknown subcommand: {unknown}")

    @staticmethod
    def _netns(rest: list[str]) -> str:
        if len(rest) < 2:
            raise NetavarkError("netns path argument is missing")
        return rest[1]