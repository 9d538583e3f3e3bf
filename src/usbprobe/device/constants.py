"""
USB Constants and Reference Data.

Transfer types, request type bits, standard requests and the libusb
error codes that transport failures are normalized to.
"""

from __future__ import annotations

import errno
from enum import IntEnum


class TransferType(IntEnum):
    """USB Transfer Types (endpoint bmAttributes & 0x03)."""

    CONTROL = 0x00
    ISOCHRONOUS = 0x01
    BULK = 0x02
    INTERRUPT = 0x03

    @classmethod
    def from_name(cls, name: str) -> TransferType:
        """Look up a transfer type by case-insensitive name."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown transfer type: {name}") from None


class EndpointDirection(IntEnum):
    """USB Endpoint Direction."""

    OUT = 0x00  # Host to device
    IN = 0x80  # Device to host

    @classmethod
    def of(cls, address: int) -> EndpointDirection:
        """Get the direction encoded in an endpoint address."""
        return cls.IN if address & 0x80 else cls.OUT


# bmRequestType fields
REQUEST_TYPE_STANDARD = 0x00
REQUEST_TYPE_CLASS = 0x20
REQUEST_TYPE_VENDOR = 0x40

RECIPIENT_DEVICE = 0x00
RECIPIENT_INTERFACE = 0x01
RECIPIENT_ENDPOINT = 0x02

# Commonly used request types
VENDOR_IN = EndpointDirection.IN | REQUEST_TYPE_VENDOR | RECIPIENT_DEVICE  # 0xC0
VENDOR_OUT = EndpointDirection.OUT | REQUEST_TYPE_VENDOR | RECIPIENT_DEVICE  # 0x40
STANDARD_IN = EndpointDirection.IN | REQUEST_TYPE_STANDARD | RECIPIENT_DEVICE  # 0x80


class StandardRequest(IntEnum):
    """Standard device requests (USB 2.0 table 9-4)."""

    GET_STATUS = 0x00
    CLEAR_FEATURE = 0x01
    SET_FEATURE = 0x03
    SET_ADDRESS = 0x05
    GET_DESCRIPTOR = 0x06
    SET_DESCRIPTOR = 0x07
    GET_CONFIGURATION = 0x08
    SET_CONFIGURATION = 0x09
    GET_INTERFACE = 0x0A
    SET_INTERFACE = 0x0B
    SYNCH_FRAME = 0x0C


class DescriptorType(IntEnum):
    """Descriptor types used as the high byte of wValue in GET_DESCRIPTOR."""

    DEVICE = 0x01
    CONFIGURATION = 0x02
    STRING = 0x03
    INTERFACE = 0x04
    ENDPOINT = 0x05


class TransferError(IntEnum):
    """libusb error codes, the common currency of transport failures."""

    IO = -1
    INVALID_PARAM = -2
    ACCESS = -3
    NO_DEVICE = -4
    NOT_FOUND = -5
    BUSY = -6
    TIMEOUT = -7
    OVERFLOW = -8
    PIPE = -9  # Endpoint stalled
    INTERRUPTED = -10
    NO_MEM = -11
    NOT_SUPPORTED = -12
    OTHER = -99

    @property
    def libusb_name(self) -> str:
        """Name as printed by libusb_error_name()."""
        return f"LIBUSB_ERROR_{self.name}"


# errno values reported by pyusb backends, mapped back to libusb codes
ERRNO_TO_TRANSFER_ERROR: dict[int, TransferError] = {
    errno.EIO: TransferError.IO,
    errno.EINVAL: TransferError.INVALID_PARAM,
    errno.EACCES: TransferError.ACCESS,
    errno.ENODEV: TransferError.NO_DEVICE,
    errno.ENOENT: TransferError.NOT_FOUND,
    errno.EBUSY: TransferError.BUSY,
    errno.ETIMEDOUT: TransferError.TIMEOUT,
    errno.EOVERFLOW: TransferError.OVERFLOW,
    errno.EPIPE: TransferError.PIPE,
    errno.EINTR: TransferError.INTERRUPTED,
    errno.ENOMEM: TransferError.NO_MEM,
    errno.ENOSYS: TransferError.NOT_SUPPORTED,
}


def transfer_error_from_code(code: int | None, err: int | None = None) -> TransferError:
    """
    Normalize a backend error code or errno to a TransferError.

    Args:
        code: libusb backend error code (negative), if known
        err: errno value, if known

    Returns:
        Matching TransferError, OTHER when neither value is recognised
    """
    if code is not None:
        try:
            return TransferError(code)
        except ValueError:
            pass
    if err is not None and err in ERRNO_TO_TRANSFER_ERROR:
        return ERRNO_TO_TRANSFER_ERROR[err]
    return TransferError.OTHER


def get_transfer_type_name(transfer_type: int) -> str:
    """
    Get name for a transfer type.

    Args:
        transfer_type: Transfer type code (from endpoint attributes & 0x03)

    Returns:
        Transfer type name
    """
    try:
        return TransferType(transfer_type).name.capitalize()
    except ValueError:
        return f"Unknown (0x{transfer_type:02X})"
