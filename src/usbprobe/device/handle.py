"""
Device handle on top of PyUSB.

Opens the target device, detaches the kernel driver, claims the probed
interface and exposes the raw transfer primitives the executor needs.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

import usb.core
import usb.util

from usbprobe.device.descriptors import DeviceInfo, extract_device_info
from usbprobe.errors import DeviceUnavailable, ProtocolViolation

if TYPE_CHECKING:
    from usbprobe.config import DeviceConfig


logger = logging.getLogger(__name__)


class USBDeviceHandle:
    """
    Exclusively owned handle to one USB device.

    Transfer methods raise usb.core.USBError on transport failures; the
    transfer executor turns those into recorded outcomes.
    """

    def __init__(self, device: usb.core.Device) -> None:
        """
        Wrap an already located PyUSB device.

        Args:
            device: usb.core.Device returned by usb.core.find
        """
        self.device = device
        self._open = True
        self._claimed: set[int] = set()
        self._detached: set[int] = set()

    @classmethod
    def open(
        cls,
        vid: int,
        pid: int,
        configuration: int | None = None,
    ) -> USBDeviceHandle:
        """
        Locate and open a device by VID:PID.

        Args:
            vid: Vendor ID
            pid: Product ID
            configuration: Configuration value to select; keeps the active
                one (or selects the first) when None

        Raises:
            DeviceUnavailable: Device missing, no backend, or not configurable
        """
        try:
            device = usb.core.find(idVendor=vid, idProduct=pid)
        except usb.core.NoBackendError as e:
            raise DeviceUnavailable(f"No USB backend available: {e}", vid, pid) from e

        if device is None:
            raise DeviceUnavailable(f"Device {vid:04x}:{pid:04x} not found", vid, pid)

        try:
            if configuration is not None:
                device.set_configuration(configuration)
            else:
                try:
                    device.get_active_configuration()
                except usb.core.USBError:
                    device.set_configuration()
        except usb.core.USBError as e:
            raise DeviceUnavailable(
                f"Cannot configure {vid:04x}:{pid:04x}: {e}", vid, pid
            ) from e

        logger.info("Opened device %04x:%04x", vid, pid)
        return cls(device)

    @property
    def vid(self) -> int:
        return self.device.idVendor

    @property
    def pid(self) -> int:
        return self.device.idProduct

    @property
    def is_open(self) -> bool:
        """False once closed or invalidated by a disconnect."""
        return self._open

    def invalidate(self) -> None:
        """Mark the handle unusable after the device went away."""
        if self._open:
            logger.warning("Device %04x:%04x disconnected", self.vid, self.pid)
        self._open = False

    def _require_open(self) -> None:
        if not self._open:
            raise ProtocolViolation("Device handle is closed")

    def detach_kernel_driver(self, interface: int) -> bool:
        """
        Detach the kernel driver from an interface, best effort.

        Returns:
            True if a driver was detached
        """
        self._require_open()
        try:
            if not self.device.is_kernel_driver_active(interface):
                return False
            self.device.detach_kernel_driver(interface)
        except (usb.core.USBError, NotImplementedError) as e:
            logger.warning("Could not detach kernel driver from interface %d: %s", interface, e)
            return False
        self._detached.add(interface)
        logger.info("Kernel driver detached from interface %d", interface)
        return True

    def claim_interface(self, interface: int) -> None:
        """
        Claim an interface for exclusive use.

        Raises:
            DeviceUnavailable: If the interface cannot be claimed
        """
        self._require_open()
        try:
            usb.util.claim_interface(self.device, interface)
        except usb.core.USBError as e:
            raise DeviceUnavailable(
                f"Failed to claim interface {interface}: {e}", self.vid, self.pid
            ) from e
        self._claimed.add(interface)
        logger.debug("Interface %d claimed", interface)

    def release_interface(self, interface: int) -> None:
        """Release a claimed interface; errors are logged, not raised."""
        if interface not in self._claimed:
            return
        self._claimed.discard(interface)
        try:
            usb.util.release_interface(self.device, interface)
        except usb.core.USBError as e:
            logger.debug("Release of interface %d failed: %s", interface, e)

    def close(self) -> None:
        """Release interfaces, re-attach kernel drivers and free resources."""
        for interface in sorted(self._claimed):
            self.release_interface(interface)
        for interface in sorted(self._detached):
            try:
                self.device.attach_kernel_driver(interface)
            except (usb.core.USBError, NotImplementedError) as e:
                logger.debug("Re-attach of kernel driver on %d failed: %s", interface, e)
        self._detached.clear()
        usb.util.dispose_resources(self.device)
        self._open = False
        logger.info("Closed device %04x:%04x", self.vid, self.pid)

    def dispose(self) -> None:
        """Free libusb resources of a device that went away mid-session."""
        self._claimed.clear()
        self._detached.clear()
        usb.util.dispose_resources(self.device)

    def device_info(self) -> DeviceInfo:
        """Descriptor data of the opened device."""
        return extract_device_info(self.device)

    def ctrl_transfer(
        self,
        request_type: int,
        request: int,
        value: int,
        index: int,
        data_or_length: bytes | int,
        timeout: int,
    ) -> bytes | int:
        """Issue a control transfer; returns data read (IN) or bytes written (OUT)."""
        self._require_open()
        result = self.device.ctrl_transfer(
            request_type, request, value, index, data_or_length, timeout
        )
        if isinstance(result, int):
            return result
        return bytes(result)

    def write(self, endpoint: int, data: bytes, timeout: int) -> int:
        """Send data to an OUT endpoint; returns bytes written."""
        self._require_open()
        return self.device.write(endpoint, data, timeout)

    def read(self, endpoint: int, size: int, timeout: int) -> bytes:
        """Receive up to size bytes from an IN endpoint."""
        self._require_open()
        return bytes(self.device.read(endpoint, size, timeout))


@contextmanager
def open_device(config: DeviceConfig) -> Iterator[USBDeviceHandle]:
    """
    Open, detach and claim the configured device for the duration of a block.

    Args:
        config: Device section of the probe configuration

    Yields:
        Claimed USBDeviceHandle

    Raises:
        DeviceUnavailable: If the device cannot be opened or claimed
    """
    handle = USBDeviceHandle.open(config.vid, config.pid, config.configuration)
    try:
        if config.detach_kernel_driver:
            handle.detach_kernel_driver(config.interface)
        handle.claim_interface(config.interface)
        yield handle
    finally:
        if handle.is_open:
            handle.close()
        else:
            handle.dispose()
