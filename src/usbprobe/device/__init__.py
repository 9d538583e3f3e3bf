"""
Device layer.

Descriptor enumeration, endpoint registry and device handles the probe
session consumes.
"""

from usbprobe.device.constants import (
    DescriptorType,
    EndpointDirection,
    StandardRequest,
    TransferError,
    TransferType,
    transfer_error_from_code,
)
from usbprobe.device.descriptors import (
    CONTROL_ENDPOINT,
    DeviceInfo,
    EndpointDescriptor,
    InterfaceDescriptor,
    extract_device_info,
)
from usbprobe.device.handle import USBDeviceHandle, open_device
from usbprobe.device.mock import MockDeviceHandle, default_mock_info, make_usb_error
from usbprobe.device.registry import EndpointRegistry

__all__ = [
    # Constants
    "DescriptorType",
    "EndpointDirection",
    "StandardRequest",
    "TransferError",
    "TransferType",
    "transfer_error_from_code",
    # Descriptors
    "CONTROL_ENDPOINT",
    "DeviceInfo",
    "EndpointDescriptor",
    "InterfaceDescriptor",
    "extract_device_info",
    # Handles
    "MockDeviceHandle",
    "USBDeviceHandle",
    "default_mock_info",
    "make_usb_error",
    "open_device",
    # Registry
    "EndpointRegistry",
]
