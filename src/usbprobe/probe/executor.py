"""
Transfer Executor.

Runs one probe specification against a device handle and returns the raw
outcome. Transport failures are captured in the outcome, never raised.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import usb.core

from usbprobe.device.constants import (
    EndpointDirection,
    TransferError,
    TransferType,
    transfer_error_from_code,
)
from usbprobe.device.descriptors import EndpointDescriptor
from usbprobe.device.registry import EndpointRegistry
from usbprobe.errors import EndpointNotFound, ProtocolViolation
from usbprobe.probe.catalog import ChannelKind, ProbeSpec


logger = logging.getLogger(__name__)

DEFAULT_CONTROL_LENGTH = 256
DEFAULT_CAPTURE_CAP = 4096
DEFAULT_READ_SIZE: dict[TransferType, int] = {
    TransferType.BULK: 8192,
    TransferType.INTERRUPT: 256,
}


class TransferPhase(Enum):
    """Individual transfer issued while executing a probe."""

    CONTROL = "control"
    SEND = "send"
    RECEIVE = "receive"


@dataclass(frozen=True)
class TransferOutcome:
    """Raw result of one execution attempt."""

    success: bool
    error: TransferError | None
    bytes_transferred: int
    payload: bytes = b""
    duration: float = 0.0
    bytes_sent: int = 0
    phases: tuple[TransferPhase, ...] = ()
    error_phase: TransferPhase | None = None
    message: str = ""

    @property
    def sent(self) -> bool:
        """A send phase was issued."""
        return TransferPhase.SEND in self.phases

    @property
    def received(self) -> bool:
        """A receive phase was issued."""
        return TransferPhase.RECEIVE in self.phases

    @property
    def truncated(self) -> bool:
        """Captured payload is shorter than what was transferred."""
        return len(self.payload) < self.bytes_transferred

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error.name if self.error is not None else None,
            "bytes_transferred": self.bytes_transferred,
            "bytes_sent": self.bytes_sent,
            "payload_hex": self.payload.hex(),
            "duration_ms": round(self.duration * 1000, 3),
            "phases": [p.value for p in self.phases],
            "error_phase": self.error_phase.value if self.error_phase else None,
        }


@dataclass
class _Attempt:
    """Mutable accumulator for one execute() call."""

    phases: list[TransferPhase] = field(default_factory=list)
    data: bytes = b""
    transferred: int = 0
    bytes_sent: int = 0
    error: TransferError | None = None
    error_phase: TransferPhase | None = None
    message: str = ""

    def begin(self, phase: TransferPhase) -> None:
        self.phases.append(phase)

    def fail(self, error: TransferError, message: str) -> None:
        self.error = error
        self.error_phase = self.phases[-1] if self.phases else None
        self.message = message


def error_from_usb(exc: usb.core.USBError) -> TransferError:
    """Normalize a PyUSB exception to a libusb error code."""
    if isinstance(exc, usb.core.USBTimeoutError):
        return TransferError.TIMEOUT
    return transfer_error_from_code(
        getattr(exc, "backend_error_code", None), getattr(exc, "errno", None)
    )


def read_size(endpoint: EndpointDescriptor, expected_length: int | None) -> int:
    """
    Receive buffer size for an IN endpoint.

    Rounded up to whole packets so a full final packet never overflows.
    """
    wanted = expected_length
    if wanted is None:
        wanted = DEFAULT_READ_SIZE.get(endpoint.transfer_type, DEFAULT_CONTROL_LENGTH)
    packet = max(endpoint.max_packet_size, 1)
    packets = max(-(-wanted // packet), 1)
    return packets * packet


class TransferExecutor:
    """
    Uniform executor over control, bulk and interrupt transfers.

    Holds no state between calls apart from its read-only configuration.
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        capture_cap: int = DEFAULT_CAPTURE_CAP,
    ) -> None:
        """
        Initialize executor.

        Args:
            registry: Endpoints of the claimed interface
            capture_cap: Maximum payload bytes kept in an outcome
        """
        self.registry = registry
        self.capture_cap = capture_cap

    def execute(self, handle: Any, spec: ProbeSpec, timeout: int) -> TransferOutcome:
        """
        Perform the transfer(s) described by a probe.

        Args:
            handle: Open device handle (USBDeviceHandle or compatible)
            spec: Probe to execute
            timeout: Per-transfer timeout in milliseconds

        Returns:
            TransferOutcome; transport errors are recorded in it

        Raises:
            ProtocolViolation: If the handle is closed or invalidated
        """
        if handle is None or not handle.is_open:
            raise ProtocolViolation(f"Cannot execute '{spec.label}': device handle is closed")

        attempt = _Attempt()
        started = time.monotonic()
        try:
            if spec.kind == ChannelKind.CONTROL:
                self._run_control(handle, spec, timeout, attempt)
            else:
                self._run_endpoint(handle, spec, timeout, attempt)
        except usb.core.USBError as e:
            attempt.fail(error_from_usb(e), str(e))
        except EndpointNotFound as e:
            attempt.fail(TransferError.NOT_FOUND, str(e))
        duration = time.monotonic() - started

        if attempt.error == TransferError.NO_DEVICE:
            handle.invalidate()

        outcome = TransferOutcome(
            success=attempt.error is None,
            error=attempt.error,
            bytes_transferred=attempt.transferred,
            payload=attempt.data[: self.capture_cap],
            duration=duration,
            bytes_sent=attempt.bytes_sent,
            phases=tuple(attempt.phases),
            error_phase=attempt.error_phase,
            message=attempt.message,
        )
        logger.debug(
            "%s: %s, %d bytes in %.1f ms",
            spec.label,
            outcome.error.name if outcome.error else "OK",
            outcome.bytes_transferred,
            duration * 1000,
        )
        return outcome

    def _run_control(
        self, handle: Any, spec: ProbeSpec, timeout: int, attempt: _Attempt
    ) -> None:
        req = spec.request
        response_ep = None
        if spec.is_composite:
            response_ep = self.registry.get(spec.response_endpoint)
            if response_ep.direction != EndpointDirection.IN:
                raise EndpointNotFound(
                    f"Response endpoint 0x{response_ep.address:02X} is not an IN endpoint"
                )

        attempt.begin(TransferPhase.CONTROL)
        if req.direction == EndpointDirection.IN:
            length = DEFAULT_CONTROL_LENGTH
            if spec.expected_length is not None and not spec.is_composite:
                length = spec.expected_length
            data = bytes(handle.ctrl_transfer(
                req.request_type, req.request, req.value, req.index, length, timeout
            ))
            attempt.data = data
            attempt.transferred = len(data)
        else:
            written = handle.ctrl_transfer(
                req.request_type, req.request, req.value, req.index, spec.payload, timeout
            )
            attempt.bytes_sent = written
            attempt.transferred = written

        if response_ep is not None:
            self._receive(handle, response_ep, spec, timeout, attempt)

    def _run_endpoint(
        self, handle: Any, spec: ProbeSpec, timeout: int, attempt: _Attempt
    ) -> None:
        kind = spec.kind.transfer_type
        ep_in = self.registry.resolve(kind, spec.endpoint, EndpointDirection.IN)

        if spec.payload:
            ep_out = self.registry.resolve(kind, spec.out_endpoint, EndpointDirection.OUT)
            attempt.begin(TransferPhase.SEND)
            attempt.bytes_sent = handle.write(ep_out.address, spec.payload, timeout)

        self._receive(handle, ep_in, spec, timeout, attempt)

    def _receive(
        self,
        handle: Any,
        endpoint: EndpointDescriptor,
        spec: ProbeSpec,
        timeout: int,
        attempt: _Attempt,
    ) -> None:
        size = read_size(endpoint, spec.expected_length)
        attempt.begin(TransferPhase.RECEIVE)
        attempt.data = b""
        attempt.transferred = 0
        data = bytes(handle.read(endpoint.address, size, timeout))
        attempt.data = data
        attempt.transferred = len(data)
