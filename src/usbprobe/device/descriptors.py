"""
USB Descriptor parsing and data structures.

Extracts the static device metadata a probe session relies on: interfaces,
endpoints and the informational string descriptors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import usb.core
import usb.util

from usbprobe.device.constants import EndpointDirection, TransferType, get_transfer_type_name


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EndpointDescriptor:
    """USB Endpoint Descriptor."""

    address: int
    attributes: int
    max_packet_size: int
    interval: int = 0

    @property
    def direction(self) -> EndpointDirection:
        """Get endpoint direction (IN or OUT)."""
        return EndpointDirection.of(self.address)

    @property
    def transfer_type(self) -> TransferType:
        """Get transfer type."""
        return TransferType(self.attributes & 0x03)

    @property
    def number(self) -> int:
        """Endpoint number without the direction bit."""
        return self.address & 0x0F

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "address": f"0x{self.address:02X}",
            "direction": self.direction.name,
            "transfer_type": get_transfer_type_name(self.transfer_type),
            "max_packet_size": self.max_packet_size,
            "interval": self.interval,
        }


# The default control pipe is not described by any endpoint descriptor
CONTROL_ENDPOINT = EndpointDescriptor(
    address=0x00,
    attributes=TransferType.CONTROL,
    max_packet_size=64,
)


@dataclass(frozen=True)
class InterfaceDescriptor:
    """USB Interface Descriptor."""

    number: int
    alternate_setting: int
    interface_class: int
    interface_subclass: int
    interface_protocol: int
    endpoints: tuple[EndpointDescriptor, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "number": self.number,
            "alternate_setting": self.alternate_setting,
            "interface_class": self.interface_class,
            "interface_subclass": self.interface_subclass,
            "interface_protocol": self.interface_protocol,
            "endpoints": [ep.to_dict() for ep in self.endpoints],
        }


@dataclass
class DeviceInfo:
    """Device descriptor fields plus string descriptors."""

    vid: int
    pid: int
    device_class: int = 0
    device_subclass: int = 0
    device_protocol: int = 0
    bcd_usb: int = 0x0200
    bcd_device: int = 0
    max_packet_size0: int = 64
    num_configurations: int = 1
    manufacturer: str | None = None
    product: str | None = None
    serial: str | None = None
    interfaces: list[InterfaceDescriptor] = field(default_factory=list)

    @property
    def vid_pid(self) -> str:
        """VID:PID as printed by lsusb."""
        return f"{self.vid:04x}:{self.pid:04x}"

    def get_interface(self, number: int, alternate_setting: int = 0) -> InterfaceDescriptor | None:
        """Find an interface by number and alternate setting."""
        for intf in self.interfaces:
            if intf.number == number and intf.alternate_setting == alternate_setting:
                return intf
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "vid": f"{self.vid:04x}",
            "pid": f"{self.pid:04x}",
            "device_class": self.device_class,
            "device_subclass": self.device_subclass,
            "device_protocol": self.device_protocol,
            "bcd_usb": f"{self.bcd_usb:04X}",
            "bcd_device": f"{self.bcd_device:04X}",
            "max_packet_size0": self.max_packet_size0,
            "num_configurations": self.num_configurations,
            "manufacturer": self.manufacturer,
            "product": self.product,
            "serial": self.serial,
            "interfaces": [intf.to_dict() for intf in self.interfaces],
        }


def _read_string(dev: Any, index: int) -> str | None:
    """Read a string descriptor, returning None when the device refuses."""
    if not index:
        return None
    try:
        return usb.util.get_string(dev, index)
    except (usb.core.USBError, ValueError, NotImplementedError) as e:
        logger.debug("String descriptor %d unavailable: %s", index, e)
        return None


def extract_device_info(dev: Any, read_strings: bool = True) -> DeviceInfo:
    """
    Extract device information from a PyUSB device object.

    Args:
        dev: usb.core.Device object
        read_strings: Also fetch manufacturer/product/serial strings

    Returns:
        DeviceInfo with parsed information
    """
    interfaces = []
    try:
        cfg = dev.get_active_configuration()
    except usb.core.USBError as e:
        logger.debug("No active configuration (%s), using first one", e)
        cfg = dev[0]

    for intf in cfg:
        endpoints = tuple(
            EndpointDescriptor(
                address=ep.bEndpointAddress,
                attributes=ep.bmAttributes,
                max_packet_size=ep.wMaxPacketSize,
                interval=ep.bInterval,
            )
            for ep in intf
        )
        interfaces.append(
            InterfaceDescriptor(
                number=intf.bInterfaceNumber,
                alternate_setting=intf.bAlternateSetting,
                interface_class=intf.bInterfaceClass,
                interface_subclass=intf.bInterfaceSubClass,
                interface_protocol=intf.bInterfaceProtocol,
                endpoints=endpoints,
            )
        )

    info = DeviceInfo(
        vid=dev.idVendor,
        pid=dev.idProduct,
        device_class=dev.bDeviceClass,
        device_subclass=dev.bDeviceSubClass,
        device_protocol=dev.bDeviceProtocol,
        bcd_usb=dev.bcdUSB,
        bcd_device=dev.bcdDevice,
        max_packet_size0=dev.bMaxPacketSize0,
        num_configurations=dev.bNumConfigurations,
        interfaces=interfaces,
    )
    if read_strings:
        info.manufacturer = _read_string(dev, dev.iManufacturer)
        info.product = _read_string(dev, dev.iProduct)
        info.serial = _read_string(dev, dev.iSerialNumber)
    return info
