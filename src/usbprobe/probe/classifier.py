"""
Response Classifier.

Maps a raw transfer outcome to a semantic verdict. Stall and timeout are
decided before any byte count is looked at: they are the clearest signals
for "wrong request" versus "right request, wrong size".
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from usbprobe.device.constants import TransferError
from usbprobe.probe.catalog import ProbeSpec
from usbprobe.probe.executor import TransferOutcome


class VerdictKind(Enum):
    """Verdict variants."""

    SUCCESS = "success"
    TIMEOUT = "timeout"
    STALLED = "stalled"
    SHORT_READ = "short_read"
    TRANSPORT_ERROR = "transport_error"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Verdict:
    """
    Classified result of one probe.

    ``payload`` and ``length`` are set for SUCCESS, ``length`` for
    SHORT_READ and ``error`` for TRANSPORT_ERROR.
    """

    kind: VerdictKind
    payload: bytes = b""
    length: int = 0
    error: TransferError | None = None

    @classmethod
    def success(cls, payload: bytes, length: int) -> Verdict:
        return cls(VerdictKind.SUCCESS, payload=payload, length=length)

    @classmethod
    def timeout(cls) -> Verdict:
        return cls(VerdictKind.TIMEOUT)

    @classmethod
    def stalled(cls) -> Verdict:
        return cls(VerdictKind.STALLED)

    @classmethod
    def short_read(cls, length: int, payload: bytes = b"") -> Verdict:
        return cls(VerdictKind.SHORT_READ, payload=payload, length=length)

    @classmethod
    def transport_error(cls, error: TransferError) -> Verdict:
        return cls(VerdictKind.TRANSPORT_ERROR, error=error)

    @property
    def is_success(self) -> bool:
        return self.kind == VerdictKind.SUCCESS

    @property
    def is_retryable(self) -> bool:
        """Timeouts and transport errors may succeed on a second attempt."""
        return self.kind in (VerdictKind.TIMEOUT, VerdictKind.TRANSPORT_ERROR)

    @property
    def is_evidence(self) -> bool:
        """Any success, or a short read that carried bytes."""
        if self.kind == VerdictKind.SUCCESS:
            return True
        return self.kind == VerdictKind.SHORT_READ and self.length > 0

    def __str__(self) -> str:
        if self.kind == VerdictKind.SUCCESS:
            return f"Success({self.length} bytes)"
        if self.kind == VerdictKind.SHORT_READ:
            return f"ShortRead({self.length})"
        if self.kind == VerdictKind.TRANSPORT_ERROR:
            name = self.error.libusb_name if self.error else "UNKNOWN"
            return f"TransportError({name})"
        return self.kind.name.capitalize()

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "length": self.length,
            "payload_hex": self.payload.hex(),
            "error": self.error.name if self.error is not None else None,
        }


def classify(
    outcome: TransferOutcome,
    spec: ProbeSpec,
    treat_empty_as_failure: bool = True,
) -> Verdict:
    """
    Classify a transfer outcome.

    Args:
        outcome: Raw outcome from the executor
        spec: Probe that produced it
        treat_empty_as_failure: Count a zero-byte answer as a timeout when
            the probe expects data

    Returns:
        Exactly one Verdict
    """
    if outcome.error == TransferError.PIPE:
        return Verdict.stalled()
    if outcome.error == TransferError.TIMEOUT:
        return Verdict.timeout()
    if outcome.error is not None:
        return Verdict.transport_error(outcome.error)

    transferred = outcome.bytes_transferred
    if transferred == 0:
        if spec.expects_data and treat_empty_as_failure:
            return Verdict.timeout()
        return Verdict.success(b"", 0)

    expected = spec.effective_length
    if expected is not None and transferred < expected:
        return Verdict.short_read(transferred, outcome.payload)

    return Verdict.success(outcome.payload, transferred)
