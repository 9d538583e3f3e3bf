"""
Exception hierarchy for USB Probe.

Per-probe transport failures are recorded in the session report and are
never raised. The exceptions below cover resource acquisition, contract
misuse and malformed input.
"""

from __future__ import annotations


class ProbeError(Exception):
    """Base class for all USB Probe errors."""


class DeviceUnavailable(ProbeError):
    """Device could not be opened or its interface could not be claimed."""

    def __init__(self, message: str, vid: int | None = None, pid: int | None = None) -> None:
        super().__init__(message)
        self.vid = vid
        self.pid = pid


class ProtocolViolation(ProbeError):
    """Programming-contract misuse, e.g. a transfer on a closed handle."""


class EndpointNotFound(ProbeError, LookupError):
    """No endpoint of the requested kind, address or direction exists."""


class SessionStateError(ProbeError):
    """Operation not allowed in the session's current state."""


class CatalogParseError(ProbeError):
    """Error parsing a probe catalog file."""
