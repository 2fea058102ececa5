"""Error types raised by the network stack."""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator


class NetavarkError(Exception):
    """An error with a message and, optionally, the error it wraps."""

    def __init__(self, message: str, *, inner: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.inner = inner

    def __str__(self) -> str:
        if self.inner is not None:
            return f"{self.message}: {self.inner}"
        return self.message

    def wrap(self, context: str) -> NetavarkError:
        """Return a new error that adds ``context`` in front of this one."""
        return wrap_error(context, self)


class NetlinkError(NetavarkError):
    """An error reported by the kernel over netlink, carrying its errno."""

    def __init__(self, code: int, message: str | None = None) -> None:
        self.code = abs(code)
        if message is None:
            message = f"Netlink error: {os.strerror(self.code)} (os error {self.code})"
        super().__init__(message)


class ErrorList(NetavarkError):
    """Several errors collected while continuing past failures."""

    def __init__(self, errors: Iterable[BaseException] = ()) -> None:
        self.errors: list[BaseException] = list(errors)
        super().__init__("")

    def append(self, error: BaseException) -> None:
        """Add one more error to the list."""
        self.errors.append(error)

    def __len__(self) -> int:
        return len(self.errors)

    def __iter__(self) -> Iterator[BaseException]:
        return iter(self.errors)

    def __str__(self) -> str:
        if len(self.errors) == 1:
            return str(self.errors[0])
        lines = "".join(f"\n\t- {err}" for err in self.errors)
        return f"netavark encountered multiple errors:{lines}"


def wrap_error(context: str, error: BaseException) -> NetavarkError:
    """Wrap any exception in a NetavarkError that prefixes ``context``."""
    wrapped = NetavarkError(context, inner=error)
    wrapped.__cause__ = error
    return wrapped