"""
Built-in probe catalogs.

Each preset reproduces one of the exploration passes that were run by hand
against a Realtek/Microctopus MoC fingerprint sensor (2541:fa03): bulk OUT
0x01, bulk IN 0x82, interrupt IN 0x83 and 0x84.
"""

from __future__ import annotations

from typing import Callable

from usbprobe.device.constants import STANDARD_IN, DescriptorType, StandardRequest
from usbprobe.probe.catalog import CatalogBuilder, ChannelKind, CommandCatalog


EP_OUT = 0x01
EP_IN_BULK = 0x82
EP_IN_INT1 = 0x83
EP_IN_INT2 = 0x84

# Replies to vendor writes were read into a 512-byte buffer
BULK_RESPONSE_LENGTH = 512

# CS9711 framing: 0xEA, command, four zero bytes, command, 0xEA
CS9711_COMMANDS: list[tuple[str, bytes]] = [
    ("CS9711 Init", bytes([0xEA, 0x01, 0x00, 0x00, 0x00, 0x00, 0x01, 0xEA])),
    ("CS9711 Reset", bytes([0xEA, 0x02, 0x00, 0x00, 0x00, 0x00, 0x02, 0xEA])),
    ("CS9711 Scan", bytes([0xEA, 0x04, 0x00, 0x00, 0x00, 0x00, 0x04, 0xEA])),
    ("Probe 0x00", bytes([0xEA, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0xEA])),
    ("Probe 0x03", bytes([0xEA, 0x03, 0x00, 0x00, 0x00, 0x00, 0x03, 0xEA])),
    ("Probe 0x05", bytes([0xEA, 0x05, 0x00, 0x00, 0x00, 0x00, 0x05, 0xEA])),
    ("Short Init", bytes([0xEA, 0x01, 0xEA])),
    ("Alt Frame", bytes([0xEB, 0x01, 0x00, 0x00, 0x00, 0x00, 0x01, 0xEB])),
]


def advanced_catalog() -> CommandCatalog:
    """Standard requests, vendor request sweep, interrupt and spontaneous reads."""
    builder = CatalogBuilder(
        name="advanced",
        description="Standard requests, vendor IN 0x00-0x0F, interrupt and bulk reads",
    )
    builder.control("Get Status", STANDARD_IN, StandardRequest.GET_STATUS, length=2)
    builder.control(
        "Get Descriptor (Device)",
        STANDARD_IN,
        StandardRequest.GET_DESCRIPTOR,
        value=DescriptorType.DEVICE << 8,
        length=18,
    )
    builder.vendor_scan(range(0x00, 0x10), length=64)
    builder.spontaneous_read(EP_IN_INT1, ChannelKind.INTERRUPT, label="Interrupt INT1 (0x83)")
    builder.spontaneous_read(EP_IN_INT2, ChannelKind.INTERRUPT, label="Interrupt INT2 (0x84)")
    builder.spontaneous_read(EP_IN_BULK, label="Spontaneous bulk read (0x82)")
    return builder.build()


def bulk_commands_catalog() -> CommandCatalog:
    """CS9711-style command frames, each answered on the bulk IN endpoint."""
    builder = CatalogBuilder(
        name="bulk-commands",
        description="8-byte command frames on bulk OUT 0x01, reply read on 0x82",
    )
    for label, frame in CS9711_COMMANDS:
        builder.bulk(label, endpoint=EP_IN_BULK, payload=frame, out_endpoint=EP_OUT)
    return builder.build()


def control_explorer_catalog() -> CommandCatalog:
    """Variations of the vendor requests that answered, plus write-then-read probes."""
    builder = CatalogBuilder(
        name="control-explorer",
        description="Vendor 0x06/0x07 variations, vendor writes with bulk replies, 0x10-0x1F scan",
    )
    builder.vendor_read(0x06, label="Request 0x06 (Status?)")
    builder.vendor_read(0x07, label="Request 0x07 (Device Info?)")
    builder.spontaneous_read(EP_IN_BULK, label="Spontaneous data check")

    for request in (0x06, 0x07):
        for value in range(4):
            builder.vendor_read(
                request, value=value,
                label=f"Request 0x{request:02X} with value 0x{value:04X}",
            )

    builder.write_then_read(
        "Init attempt", 0x01, bytes([0x01, 0x00, 0x00, 0x00]), EP_IN_BULK,
        response_length=BULK_RESPONSE_LENGTH,
    )
    builder.write_then_read(
        "Reset attempt", 0x02, bytes([0x02, 0x00, 0x00, 0x00]), EP_IN_BULK,
        response_length=BULK_RESPONSE_LENGTH,
    )
    builder.write_then_read(
        "Write to 0x06", 0x06, bytes([0x01]), EP_IN_BULK, value=0x0001,
        response_length=BULK_RESPONSE_LENGTH,
    )

    builder.vendor_scan(range(0x10, 0x20), length=64)

    builder.vendor_read(0x06, label="Final status check")
    builder.vendor_read(0x07, label="Final device info")
    builder.spontaneous_read(EP_IN_BULK, label="Final bulk read")
    return builder.build()


PRESETS: dict[str, Callable[[], CommandCatalog]] = {
    "advanced": advanced_catalog,
    "bulk-commands": bulk_commands_catalog,
    "control-explorer": control_explorer_catalog,
}


def get_preset(name: str) -> CommandCatalog:
    """
    Get a built-in catalog by name.

    Raises:
        KeyError: If no preset has that name
    """
    try:
        factory = PRESETS[name]
    except KeyError:
        raise KeyError(
            f"Unknown preset '{name}' (available: {', '.join(sorted(PRESETS))})"
        ) from None
    return factory()
