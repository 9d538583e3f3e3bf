"""
Mock device handle for testing without hardware.

Mirrors the transfer surface of USBDeviceHandle. Responses are scripted
per endpoint or control request and consumed in order; unscripted
transfers fall back to a default error. Every call is recorded.
"""

from __future__ import annotations

import errno as errno_mod
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Union

import usb.core

from usbprobe.device.constants import ERRNO_TO_TRANSFER_ERROR, TransferError
from usbprobe.device.descriptors import DeviceInfo, EndpointDescriptor, InterfaceDescriptor
from usbprobe.errors import ProtocolViolation


logger = logging.getLogger(__name__)

# bytes: data received, int: bytes written (or zero-filled reads),
# TransferError: raised as USBError
MockResponse = Union[bytes, int, TransferError]

_TRANSFER_ERROR_TO_ERRNO = {v: k for k, v in ERRNO_TO_TRANSFER_ERROR.items()}


def make_usb_error(error: TransferError) -> usb.core.USBError:
    """Build the exception PyUSB's libusb1 backend raises for an error code."""
    err = _TRANSFER_ERROR_TO_ERRNO.get(error, errno_mod.EIO)
    message = error.libusb_name
    if error == TransferError.TIMEOUT:
        return usb.core.USBTimeoutError(message, error.value, err)
    return usb.core.USBError(message, error.value, err)


@dataclass
class MockCall:
    """One transfer issued against the mock."""

    kind: str  # "control", "write" or "read"
    endpoint: int
    timeout: int
    data: bytes = b""
    size: int = 0
    request_type: int | None = None
    request: int | None = None
    value: int | None = None
    index: int | None = None


@dataclass
class _ControlScript:
    request_type: int
    request: int
    value: int | None
    responses: deque = field(default_factory=deque)


class MockDeviceHandle:
    """
    Scriptable stand-in for USBDeviceHandle.

    Unscripted reads and IN control requests raise ``default_error``;
    unscripted writes and OUT control requests succeed in full.
    """

    def __init__(
        self,
        vid: int = 0x2541,
        pid: int = 0xFA03,
        default_error: TransferError = TransferError.TIMEOUT,
        info: DeviceInfo | None = None,
    ) -> None:
        self._vid = vid
        self._pid = pid
        self.default_error = default_error
        self._info = info
        self._open = True
        self._reads: dict[int, deque] = {}
        self._writes: dict[int, deque] = {}
        self._controls: list[_ControlScript] = []
        self.calls: list[MockCall] = []
        self.claimed: set[int] = set()

    @property
    def vid(self) -> int:
        return self._vid

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def is_open(self) -> bool:
        return self._open

    def invalidate(self) -> None:
        self._open = False

    def close(self) -> None:
        self.claimed.clear()
        self._open = False

    def dispose(self) -> None:
        self.claimed.clear()

    def detach_kernel_driver(self, interface: int) -> bool:
        return False

    def claim_interface(self, interface: int) -> None:
        self.claimed.add(interface)

    def release_interface(self, interface: int) -> None:
        self.claimed.discard(interface)

    def device_info(self) -> DeviceInfo:
        if self._info is not None:
            return self._info
        return default_mock_info(self._vid, self._pid)

    # Scripting

    def script_read(self, endpoint: int, *responses: MockResponse) -> MockDeviceHandle:
        """Queue responses for reads on an IN endpoint."""
        self._reads.setdefault(endpoint, deque()).extend(responses)
        return self

    def script_write(self, endpoint: int, *responses: MockResponse) -> MockDeviceHandle:
        """Queue responses for writes on an OUT endpoint."""
        self._writes.setdefault(endpoint, deque()).extend(responses)
        return self

    def script_control(
        self,
        request_type: int,
        request: int,
        *responses: MockResponse,
        value: int | None = None,
    ) -> MockDeviceHandle:
        """Queue responses for a control request; value None matches any wValue."""
        self._controls.append(
            _ControlScript(request_type, request, value, deque(responses))
        )
        return self

    def calls_of(self, kind: str) -> list[MockCall]:
        """Recorded calls of one kind."""
        return [c for c in self.calls if c.kind == kind]

    # Transfers

    def _require_open(self) -> None:
        if not self._open:
            raise ProtocolViolation("Device handle is closed")

    def _next(self, queue: deque | None) -> MockResponse | None:
        if queue:
            return queue.popleft()
        return None

    def ctrl_transfer(
        self,
        request_type: int,
        request: int,
        value: int,
        index: int,
        data_or_length: bytes | int,
        timeout: int,
    ) -> bytes | int:
        self._require_open()
        is_in = bool(request_type & 0x80)
        data = b"" if is_in else bytes(data_or_length)
        size = int(data_or_length) if is_in else len(data)
        self.calls.append(
            MockCall(
                kind="control", endpoint=0x80 if is_in else 0x00, timeout=timeout,
                data=data, size=size, request_type=request_type, request=request,
                value=value, index=index,
            )
        )

        response = None
        for script in self._controls:
            if script.request_type != request_type or script.request != request:
                continue
            if script.value is not None and script.value != value:
                continue
            response = self._next(script.responses)
            if response is not None:
                break

        if response is None:
            if not is_in:
                return len(data)
            raise make_usb_error(self.default_error)
        if isinstance(response, TransferError):
            raise make_usb_error(response)
        if isinstance(response, int):
            return response
        return bytes(response[:size])

    def write(self, endpoint: int, data: bytes, timeout: int) -> int:
        self._require_open()
        self.calls.append(
            MockCall(kind="write", endpoint=endpoint, timeout=timeout, data=bytes(data), size=len(data))
        )
        response = self._next(self._writes.get(endpoint))
        if response is None:
            return len(data)
        if isinstance(response, TransferError):
            raise make_usb_error(response)
        if isinstance(response, int):
            return response
        return len(response)

    def read(self, endpoint: int, size: int, timeout: int) -> bytes:
        self._require_open()
        self.calls.append(MockCall(kind="read", endpoint=endpoint, timeout=timeout, size=size))
        response = self._next(self._reads.get(endpoint))
        if response is None:
            raise make_usb_error(self.default_error)
        if isinstance(response, TransferError):
            raise make_usb_error(response)
        if isinstance(response, int):
            return bytes(response)[:size]
        return bytes(response[:size])


def default_mock_info(vid: int = 0x2541, pid: int = 0xFA03) -> DeviceInfo:
    """Endpoint layout of the fingerprint sensor the presets were written for."""
    return DeviceInfo(
        vid=vid,
        pid=pid,
        manufacturer="Mock",
        product="Mock USB Device",
        interfaces=[
            InterfaceDescriptor(
                number=0,
                alternate_setting=0,
                interface_class=0xFF,
                interface_subclass=0,
                interface_protocol=0,
                endpoints=(
                    EndpointDescriptor(address=0x01, attributes=0x02, max_packet_size=64),
                    EndpointDescriptor(address=0x82, attributes=0x02, max_packet_size=64),
                    EndpointDescriptor(address=0x83, attributes=0x03, max_packet_size=16, interval=10),
                    EndpointDescriptor(address=0x84, attributes=0x03, max_packet_size=16, interval=10),
                ),
            )
        ],
    )
