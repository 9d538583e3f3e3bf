"""
Endpoint Registry.

Read-only view of the addressable channels of one claimed interface,
populated once from descriptor data before a session starts.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator

from usbprobe.device.constants import EndpointDirection, TransferType
from usbprobe.device.descriptors import (
    CONTROL_ENDPOINT,
    DeviceInfo,
    EndpointDescriptor,
    InterfaceDescriptor,
)
from usbprobe.errors import EndpointNotFound


logger = logging.getLogger(__name__)


class EndpointRegistry:
    """
    Lookup table of endpoint descriptors.

    The default control endpoint (0x00) is always registered. Lookups
    never mutate the registry.
    """

    def __init__(self, endpoints: Iterable[EndpointDescriptor] = ()) -> None:
        """
        Initialize registry.

        Args:
            endpoints: Endpoint descriptors of the claimed interface
        """
        by_address: dict[int, EndpointDescriptor] = {CONTROL_ENDPOINT.address: CONTROL_ENDPOINT}
        for ep in endpoints:
            if ep.address in by_address and ep.address != CONTROL_ENDPOINT.address:
                logger.warning("Duplicate endpoint 0x%02X ignored", ep.address)
                continue
            by_address[ep.address] = ep
        self._endpoints: tuple[EndpointDescriptor, ...] = tuple(by_address.values())

    @classmethod
    def from_interface(cls, interface: InterfaceDescriptor) -> EndpointRegistry:
        """Build a registry from a single interface descriptor."""
        return cls(interface.endpoints)

    @classmethod
    def from_device(
        cls,
        info: DeviceInfo,
        interface: int = 0,
        alternate_setting: int = 0,
    ) -> EndpointRegistry:
        """
        Build a registry from enumerated device metadata.

        Args:
            info: Device information from the descriptor collaborator
            interface: Interface number to be claimed
            alternate_setting: Alternate setting of that interface

        Raises:
            EndpointNotFound: If the device has no such interface
        """
        intf = info.get_interface(interface, alternate_setting)
        if intf is None:
            raise EndpointNotFound(
                f"Device {info.vid_pid} has no interface {interface} "
                f"(alt {alternate_setting})"
            )
        return cls.from_interface(intf)

    @property
    def endpoints(self) -> tuple[EndpointDescriptor, ...]:
        """All registered endpoints, control endpoint first."""
        return self._endpoints

    def get(self, address: int) -> EndpointDescriptor:
        """
        Look up an endpoint by exact address.

        Raises:
            EndpointNotFound: If the address is not registered
        """
        for ep in self._endpoints:
            if ep.address == address:
                return ep
        raise EndpointNotFound(f"No endpoint at 0x{address:02X}")

    def resolve(
        self,
        kind: TransferType,
        hint: int | None = None,
        direction: EndpointDirection | None = None,
    ) -> EndpointDescriptor:
        """
        Find the endpoint for a transfer.

        Args:
            kind: Transfer type of the endpoint
            hint: Exact endpoint address; first match of kind/direction if None
            direction: Required direction; implied by the address when hinted

        Returns:
            Matching EndpointDescriptor

        Raises:
            EndpointNotFound: If no endpoint of that kind/address exists
        """
        for ep in self._endpoints:
            if ep.transfer_type != kind:
                continue
            if hint is not None and ep.address != hint:
                continue
            if direction is not None and kind != TransferType.CONTROL and ep.direction != direction:
                continue
            return ep

        where = f" at 0x{hint:02X}" if hint is not None else ""
        way = f" {direction.name}" if direction is not None else ""
        raise EndpointNotFound(f"No{way} {kind.name.lower()} endpoint{where}")

    def __iter__(self) -> Iterator[EndpointDescriptor]:
        return iter(self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    def __contains__(self, address: object) -> bool:
        return any(ep.address == address for ep in self._endpoints)
