"""
Tests for the device layer: constants, descriptors, endpoint registry,
PyUSB handle and the scriptable mock.
"""

from __future__ import annotations

import errno
from unittest.mock import MagicMock, patch

import pytest
import usb.core

from usbprobe.config import DeviceConfig
from usbprobe.device.constants import (
    VENDOR_IN,
    VENDOR_OUT,
    EndpointDirection,
    TransferError,
    TransferType,
    get_transfer_type_name,
    transfer_error_from_code,
)
from usbprobe.device.descriptors import (
    CONTROL_ENDPOINT,
    EndpointDescriptor,
    extract_device_info,
)
from usbprobe.device.handle import USBDeviceHandle, open_device
from usbprobe.device.mock import MockDeviceHandle, default_mock_info, make_usb_error
from usbprobe.device.registry import EndpointRegistry
from usbprobe.errors import DeviceUnavailable, EndpointNotFound, ProtocolViolation


class _FakeInterface(list):
    """PyUSB interfaces iterate over their endpoints."""

    def __init__(self, endpoints: list, **attrs: int) -> None:
        super().__init__(endpoints)
        for name, value in attrs.items():
            setattr(self, name, value)


def _fake_endpoint(address: int, attributes: int, size: int, interval: int = 0) -> MagicMock:
    ep = MagicMock()
    ep.bEndpointAddress = address
    ep.bmAttributes = attributes
    ep.wMaxPacketSize = size
    ep.bInterval = interval
    return ep


def _fake_device() -> MagicMock:
    dev = MagicMock()
    dev.idVendor = 0x2541
    dev.idProduct = 0xFA03
    dev.bDeviceClass = 0xEF
    dev.bDeviceSubClass = 0x02
    dev.bDeviceProtocol = 0x01
    dev.bcdUSB = 0x0200
    dev.bcdDevice = 0x0100
    dev.bMaxPacketSize0 = 64
    dev.bNumConfigurations = 1
    dev.iManufacturer = 1
    dev.iProduct = 2
    dev.iSerialNumber = 0
    intf = _FakeInterface(
        [
            _fake_endpoint(0x01, 0x02, 64),
            _fake_endpoint(0x82, 0x02, 64),
            _fake_endpoint(0x83, 0x03, 16, 10),
        ],
        bInterfaceNumber=0,
        bAlternateSetting=0,
        bInterfaceClass=0xFF,
        bInterfaceSubClass=0x00,
        bInterfaceProtocol=0x00,
    )
    dev.get_active_configuration.return_value = [intf]
    dev.is_kernel_driver_active.return_value = False
    return dev


class TestConstants:
    """Tests for USB constants."""

    def test_request_types(self) -> None:
        """Test composed bmRequestType values."""
        assert VENDOR_IN == 0xC0
        assert VENDOR_OUT == 0x40

    def test_direction_of_address(self) -> None:
        """Test direction bit decoding."""
        assert EndpointDirection.of(0x82) == EndpointDirection.IN
        assert EndpointDirection.of(0x01) == EndpointDirection.OUT

    def test_transfer_type_from_name(self) -> None:
        """Test case-insensitive lookup."""
        assert TransferType.from_name("Bulk") == TransferType.BULK
        with pytest.raises(ValueError):
            TransferType.from_name("stream")

    def test_transfer_type_name(self) -> None:
        """Test transfer type name lookup."""
        assert get_transfer_type_name(0x03) == "Interrupt"
        assert "Unknown" in get_transfer_type_name(0x07)

    def test_error_from_backend_code(self) -> None:
        """Test backend codes take precedence over errno."""
        assert transfer_error_from_code(-9, errno.ETIMEDOUT) == TransferError.PIPE

    def test_error_from_errno(self) -> None:
        """Test errno fallback when the backend code is unknown."""
        assert transfer_error_from_code(None, errno.ENODEV) == TransferError.NO_DEVICE
        assert transfer_error_from_code(-1234, errno.EPIPE) == TransferError.PIPE

    def test_unrecognised_error(self) -> None:
        """Test unknown codes map to OTHER."""
        assert transfer_error_from_code(None, None) == TransferError.OTHER

    def test_libusb_name(self) -> None:
        """Test libusb style error names."""
        assert TransferError.PIPE.libusb_name == "LIBUSB_ERROR_PIPE"


class TestDescriptors:
    """Tests for descriptor structures and extraction."""

    def test_endpoint_properties(self) -> None:
        """Test derived endpoint fields."""
        ep = EndpointDescriptor(address=0x83, attributes=0x03, max_packet_size=16, interval=10)
        assert ep.direction == EndpointDirection.IN
        assert ep.transfer_type == TransferType.INTERRUPT
        assert ep.number == 3

    def test_endpoint_to_dict(self) -> None:
        """Test JSON representation of an endpoint."""
        d = EndpointDescriptor(address=0x01, attributes=0x02, max_packet_size=64).to_dict()
        assert d["address"] == "0x01"
        assert d["direction"] == "OUT"
        assert d["transfer_type"] == "Bulk"

    def test_control_endpoint(self) -> None:
        """Test the implicit default control pipe."""
        assert CONTROL_ENDPOINT.address == 0x00
        assert CONTROL_ENDPOINT.transfer_type == TransferType.CONTROL

    def test_extract_device_info(self) -> None:
        """Test extraction from a PyUSB device object."""
        dev = _fake_device()
        with patch("usb.util.get_string", side_effect=["Realtek", "MoC Sensor"]):
            info = extract_device_info(dev)

        assert info.vid_pid == "2541:fa03"
        assert info.manufacturer == "Realtek"
        assert info.product == "MoC Sensor"
        assert info.serial is None
        assert len(info.interfaces) == 1
        intf = info.get_interface(0)
        assert intf is not None
        assert intf.interface_class == 0xFF
        assert [ep.address for ep in intf.endpoints] == [0x01, 0x82, 0x83]
        assert intf.endpoints[2].interval == 10

    def test_extract_without_active_configuration(self) -> None:
        """Test fallback to the first configuration."""
        dev = _fake_device()
        config = dev.get_active_configuration.return_value
        dev.get_active_configuration.side_effect = usb.core.USBError("not configured")
        dev.__getitem__.return_value = config

        info = extract_device_info(dev, read_strings=False)

        dev.__getitem__.assert_called_with(0)
        assert len(info.interfaces) == 1
        assert info.manufacturer is None

    def test_unreadable_string_descriptor(self) -> None:
        """Test refused string descriptors are left empty."""
        dev = _fake_device()
        with patch("usb.util.get_string", side_effect=usb.core.USBError("pipe")):
            info = extract_device_info(dev)

        assert info.manufacturer is None
        assert info.product is None

    def test_missing_interface(self) -> None:
        """Test lookup of an interface that does not exist."""
        assert default_mock_info().get_interface(1) is None


class TestEndpointRegistry:
    """Tests for EndpointRegistry."""

    def test_control_endpoint_always_present(self) -> None:
        """Test an empty registry still knows endpoint 0x00."""
        registry = EndpointRegistry()
        assert 0x00 in registry
        assert len(registry) == 1

    def test_from_device(self, registry: EndpointRegistry) -> None:
        """Test registry built from device metadata."""
        assert [ep.address for ep in registry] == [0x00, 0x01, 0x82, 0x83, 0x84]

    def test_from_device_missing_interface(self) -> None:
        """Test unknown interface numbers are rejected."""
        with pytest.raises(EndpointNotFound):
            EndpointRegistry.from_device(default_mock_info(), interface=2)

    def test_duplicates_ignored(self) -> None:
        """Test duplicate addresses keep the first descriptor."""
        first = EndpointDescriptor(address=0x82, attributes=0x02, max_packet_size=64)
        second = EndpointDescriptor(address=0x82, attributes=0x03, max_packet_size=16)
        registry = EndpointRegistry([first, second])

        assert registry.get(0x82) is first
        assert len(registry) == 2

    def test_get_unknown(self, registry: EndpointRegistry) -> None:
        """Test lookup of an unregistered address."""
        with pytest.raises(EndpointNotFound, match="0x85"):
            registry.get(0x85)

    def test_resolve_by_hint(self, registry: EndpointRegistry) -> None:
        """Test exact address resolution."""
        ep = registry.resolve(TransferType.INTERRUPT, 0x84, EndpointDirection.IN)
        assert ep.address == 0x84

    def test_resolve_first_match(self, registry: EndpointRegistry) -> None:
        """Test resolution without a hint picks the first match."""
        assert registry.resolve(TransferType.BULK, direction=EndpointDirection.IN).address == 0x82
        assert registry.resolve(TransferType.BULK, direction=EndpointDirection.OUT).address == 0x01
        assert registry.resolve(TransferType.INTERRUPT).address == 0x83

    def test_resolve_control(self, registry: EndpointRegistry) -> None:
        """Test the control pipe resolves in either direction."""
        ep = registry.resolve(TransferType.CONTROL, direction=EndpointDirection.IN)
        assert ep.address == 0x00

    def test_resolve_wrong_kind(self, registry: EndpointRegistry) -> None:
        """Test a bulk lookup of an interrupt endpoint fails."""
        with pytest.raises(EndpointNotFound):
            registry.resolve(TransferType.BULK, 0x83)

    def test_resolve_wrong_direction(self, registry: EndpointRegistry) -> None:
        """Test direction mismatch fails."""
        with pytest.raises(EndpointNotFound, match="IN bulk endpoint at 0x01"):
            registry.resolve(TransferType.BULK, 0x01, EndpointDirection.IN)

    def test_lookup_does_not_mutate(self, registry: EndpointRegistry) -> None:
        """Test lookups leave the registry unchanged."""
        before = registry.endpoints
        registry.resolve(TransferType.BULK)
        with pytest.raises(EndpointNotFound):
            registry.get(0x05)
        assert registry.endpoints == before


class TestUSBDeviceHandle:
    """Tests for the PyUSB backed handle."""

    def test_open_not_found(self) -> None:
        """Test missing device raises DeviceUnavailable."""
        with patch("usb.core.find", return_value=None):
            with pytest.raises(DeviceUnavailable) as exc_info:
                USBDeviceHandle.open(0x2541, 0xFA03)

        assert exc_info.value.vid == 0x2541
        assert "not found" in str(exc_info.value)

    def test_open_no_backend(self) -> None:
        """Test missing libusb raises DeviceUnavailable."""
        with patch("usb.core.find", side_effect=usb.core.NoBackendError("No backend")):
            with pytest.raises(DeviceUnavailable, match="backend"):
                USBDeviceHandle.open(0x2541, 0xFA03)

    def test_open_sets_configuration_when_unconfigured(self) -> None:
        """Test an unconfigured device gets its first configuration."""
        dev = _fake_device()
        dev.get_active_configuration.side_effect = usb.core.USBError("not configured")
        with patch("usb.core.find", return_value=dev):
            handle = USBDeviceHandle.open(0x2541, 0xFA03)

        dev.set_configuration.assert_called_once_with()
        assert handle.is_open
        assert handle.vid == 0x2541

    def test_open_configuration_failure(self) -> None:
        """Test configuration errors raise DeviceUnavailable."""
        dev = _fake_device()
        dev.set_configuration.side_effect = usb.core.USBError("busy")
        with patch("usb.core.find", return_value=dev):
            with pytest.raises(DeviceUnavailable, match="Cannot configure"):
                USBDeviceHandle.open(0x2541, 0xFA03, configuration=1)

    def test_detach_kernel_driver(self) -> None:
        """Test an active kernel driver is detached and later re-attached."""
        dev = _fake_device()
        dev.is_kernel_driver_active.return_value = True
        handle = USBDeviceHandle(dev)

        assert handle.detach_kernel_driver(0) is True
        dev.detach_kernel_driver.assert_called_once_with(0)

        with patch("usb.util.dispose_resources"):
            handle.close()
        dev.attach_kernel_driver.assert_called_once_with(0)

    def test_detach_failure_not_fatal(self) -> None:
        """Test detach errors are reported, not raised."""
        dev = _fake_device()
        dev.is_kernel_driver_active.return_value = True
        dev.detach_kernel_driver.side_effect = usb.core.USBError("Access denied")
        handle = USBDeviceHandle(dev)

        assert handle.detach_kernel_driver(0) is False

    def test_claim_failure(self) -> None:
        """Test claim errors raise DeviceUnavailable."""
        handle = USBDeviceHandle(_fake_device())
        with patch("usb.util.claim_interface", side_effect=usb.core.USBError("busy")):
            with pytest.raises(DeviceUnavailable, match="claim interface 0"):
                handle.claim_interface(0)

    def test_close_releases_claimed(self) -> None:
        """Test close releases interfaces and frees resources."""
        dev = _fake_device()
        handle = USBDeviceHandle(dev)
        with patch("usb.util.claim_interface"), \
                patch("usb.util.release_interface") as release, \
                patch("usb.util.dispose_resources") as dispose:
            handle.claim_interface(0)
            handle.close()

        release.assert_called_once_with(dev, 0)
        dispose.assert_called_once_with(dev)
        assert not handle.is_open

    def test_transfer_on_closed_handle(self) -> None:
        """Test transfers after close are contract violations."""
        handle = USBDeviceHandle(_fake_device())
        handle.invalidate()

        with pytest.raises(ProtocolViolation):
            handle.read(0x82, 64, 100)
        with pytest.raises(ProtocolViolation):
            handle.ctrl_transfer(VENDOR_IN, 0x06, 0, 0, 64, 100)

    def test_transfers_delegate(self) -> None:
        """Test transfer primitives pass through to PyUSB."""
        dev = _fake_device()
        dev.read.return_value = [1, 2, 3]
        dev.write.return_value = 8
        dev.ctrl_transfer.return_value = [0xAA, 0xBB]
        handle = USBDeviceHandle(dev)

        assert handle.read(0x82, 64, 100) == b"\x01\x02\x03"
        assert handle.write(0x01, b"\x00" * 8, 100) == 8
        assert handle.ctrl_transfer(VENDOR_IN, 0x06, 0, 0, 2, 100) == b"\xaa\xbb"
        dev.read.assert_called_once_with(0x82, 64, 100)

    def test_open_device_context(self) -> None:
        """Test the context manager claims and closes."""
        dev = _fake_device()
        with patch("usb.core.find", return_value=dev), \
                patch("usb.util.claim_interface") as claim, \
                patch("usb.util.release_interface"), \
                patch("usb.util.dispose_resources"):
            with open_device(DeviceConfig()) as handle:
                assert handle.is_open
                claim.assert_called_once_with(dev, 0)

        assert not handle.is_open

    def test_open_device_after_disconnect(self) -> None:
        """Test an invalidated handle is only disposed."""
        dev = _fake_device()
        with patch("usb.core.find", return_value=dev), \
                patch("usb.util.claim_interface"), \
                patch("usb.util.release_interface") as release, \
                patch("usb.util.dispose_resources") as dispose:
            with open_device(DeviceConfig()) as handle:
                handle.invalidate()

        release.assert_not_called()
        dispose.assert_called_once_with(dev)


class TestMockDeviceHandle:
    """Tests for the scriptable mock."""

    def test_make_usb_error(self) -> None:
        """Test error construction mirrors the libusb1 backend."""
        timeout = make_usb_error(TransferError.TIMEOUT)
        assert isinstance(timeout, usb.core.USBTimeoutError)
        assert timeout.backend_error_code == -7

        stall = make_usb_error(TransferError.PIPE)
        assert not isinstance(stall, usb.core.USBTimeoutError)
        assert stall.errno == errno.EPIPE

    def test_scripted_reads_in_order(self, mock_handle: MockDeviceHandle) -> None:
        """Test scripted responses are consumed in order."""
        mock_handle.script_read(0x82, b"\x01\x02", 4)

        assert mock_handle.read(0x82, 64, 100) == b"\x01\x02"
        assert mock_handle.read(0x82, 64, 100) == b"\x00" * 4
        with pytest.raises(usb.core.USBTimeoutError):
            mock_handle.read(0x82, 64, 100)

    def test_read_truncated_to_size(self, mock_handle: MockDeviceHandle) -> None:
        """Test reads never return more than requested."""
        mock_handle.script_read(0x82, bytes(100))
        assert len(mock_handle.read(0x82, 64, 100)) == 64

    def test_scripted_error(self, mock_handle: MockDeviceHandle) -> None:
        """Test scripted errors are raised as USBError."""
        mock_handle.script_write(0x01, TransferError.PIPE)
        with pytest.raises(usb.core.USBError) as exc_info:
            mock_handle.write(0x01, b"\xea", 100)
        assert exc_info.value.backend_error_code == TransferError.PIPE

    def test_unscripted_write_succeeds(self, mock_handle: MockDeviceHandle) -> None:
        """Test writes default to full success."""
        assert mock_handle.write(0x01, b"\x00" * 8, 100) == 8

    def test_control_value_filter(self, mock_handle: MockDeviceHandle) -> None:
        """Test control scripts can match a single wValue."""
        mock_handle.script_control(VENDOR_IN, 0x06, b"\x11", value=1)

        with pytest.raises(usb.core.USBTimeoutError):
            mock_handle.ctrl_transfer(VENDOR_IN, 0x06, 0, 0, 64, 100)
        assert mock_handle.ctrl_transfer(VENDOR_IN, 0x06, 1, 0, 64, 100) == b"\x11"

    def test_control_out_default(self, mock_handle: MockDeviceHandle) -> None:
        """Test unscripted OUT requests report the payload as written."""
        assert mock_handle.ctrl_transfer(VENDOR_OUT, 0x01, 0, 0, b"\x01\x00", 100) == 2

    def test_calls_recorded(self, mock_handle: MockDeviceHandle) -> None:
        """Test every transfer is recorded."""
        mock_handle.write(0x01, b"\xea", 100)
        with pytest.raises(usb.core.USBError):
            mock_handle.read(0x82, 64, 250)

        assert [c.kind for c in mock_handle.calls] == ["write", "read"]
        assert mock_handle.calls_of("read")[0].timeout == 250

    def test_closed_mock(self, mock_handle: MockDeviceHandle) -> None:
        """Test a closed mock rejects transfers."""
        mock_handle.close()
        with pytest.raises(ProtocolViolation):
            mock_handle.read(0x82, 64, 100)
