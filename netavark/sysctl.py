"""Reading and writing kernel sysctl values and sysctl.d files."""

from __future__ import annotations

import errno
import logging
import os
from collections.abc import Iterable
from pathlib import Path
from types import TracebackType

from .errors import NetavarkError, wrap_error

log = logging.getLogger(__name__)

PROC_SYS = Path("/proc/sys")


def _apply(ns_value: str, val: str, root: str | os.PathLike[str] | None) -> None:
    path = Path(root if root is not None else PROC_SYS) / ns_value
    log.debug("Setting sysctl value for %s to %s", ns_value, val)
    with open(path, encoding="utf-8") as handle:
        current = handle.read()
    if current.strip() == val:
        return
    fd = os.open(path, os.O_WRONLY)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(val)


def apply_sysctl_value(
    ns_value: str, val: str, root: str | os.PathLike[str] | None = None
) -> None:
    """Set a sysctl given as a slash separated path below /proc/sys."""
    try:
        _apply(ns_value, val, root)
    except OSError as err:
        raise wrap_error(f"set sysctl {ns_value}", err) from err


def disable_ipv6_autoconf(if_name: str, root: str | os.PathLike[str] | None = None) -> None:
    """Turn off IPv6 autoconf on an interface, ignoring systems without IPv6."""
    try:
        _apply(f"net/ipv6/conf/{if_name}/autoconf", "0", root)
    except FileNotFoundError:
        pass
    except OSError as err:
        if err.errno == errno.EROFS:
            return
        raise wrap_error("failed to set autoconf sysctl", err) from err


def get_bridge_sysctl_d_path(bridge_name: str) -> str:
    """Path of the sysctl.d file generated for a bridge."""
    return f"/run/sysctl.d/10-netavark-{bridge_name}.conf"


class SysctlDWriter:
    """Writes sysctl values and a matching sysctl.d(5) file.

    Create the writer before the interfaces its sysctls refer to, so that
    systemd-sysctl sees the file as soon as they appear. Unless commit() is
    called, close() removes the file again.
    """

    def __init__(
        self,
        path: str | os.PathLike[str] | None,
        sysctls: Iterable[tuple[str, str]],
        root: str | os.PathLike[str] | None = None,
    ) -> None:
        self.path = Path(path) if path is not None else None
        self.sysctls = list(sysctls)
        self.root = root
        self._committed = False
        if self.path is not None:
            self._create_file(self.path)

    def _create_file(self, path: Path) -> None:
        # An existing file is assumed to hold the right content already.
        try:
            handle = open(path, "x", encoding="utf-8")
        except OSError:
            return
        try:
            with handle:
                handle.write(self._render())
        except OSError:
            try:
                path.unlink()
            except OSError:
                pass

    def _render(self) -> str:
        lines = ["# autogenerated by netavark\n"]
        lines.extend(f"{key} = {val}\n" for key, val in self.sysctls)
        return "".join(lines)

    def write_sysctls(self) -> None:
        """Write every value to the kernel."""
        for key, val in self.sysctls:
            apply_sysctl_value(key, val, self.root)

    def commit(self) -> None:
        """Keep the sysctl.d file when the writer is closed."""
        self._committed = True

    def close(self) -> None:
        """Remove the sysctl.d file unless the writer was committed."""
        if self._committed or self.path is None:
            return
        try:
            self.path.unlink()
        except OSError:
            pass

    def __enter__(self) -> SysctlDWriter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = [
    "NetavarkError",
    "SysctlDWriter",
    "apply_sysctl_value",
    "disable_ipv6_autoconf",
    "get_bridge_sysctl_d_path",
]