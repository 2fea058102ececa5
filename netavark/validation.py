"""Checks on the inputs given for a container."""

from __future__ import annotations

import logging
import os

from .errors import NetavarkError

log = logging.getLogger(__name__)


def ns_checks(path: str | os.PathLike[str]) -> os.stat_result:
    """Make sure the network namespace path can be opened; return its status."""
    log.debug("Validating network namespace...")
    try:
        fd = os.open(path, os.O_RDONLY)
        try:
            return os.fstat(fd)
        finally:
            os.close(fd)
    except OSError as err:
        raise NetavarkError(str(err)) from err