"""
Command Catalog.

Declarative, ordered sequences of probe specifications, built either in
code with CatalogBuilder or parsed from a YAML catalog file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator

import yaml

from usbprobe.device.constants import (
    VENDOR_IN,
    VENDOR_OUT,
    EndpointDirection,
    TransferType,
)
from usbprobe.device.registry import EndpointRegistry
from usbprobe.errors import CatalogParseError, EndpointNotFound


class ChannelKind(Enum):
    """Transfer kind a probe exercises."""

    CONTROL = "control"
    BULK = "bulk"
    INTERRUPT = "interrupt"

    @property
    def transfer_type(self) -> TransferType:
        return TransferType[self.name]

    def __str__(self) -> str:
        return self.value


def _check_range(name: str, value: int, maximum: int) -> None:
    if not 0 <= value <= maximum:
        raise ValueError(f"{name} {value} out of range 0..{maximum:#x}")


@dataclass(frozen=True)
class ControlRequest:
    """Setup packet fields of a control transfer (wLength comes from the probe)."""

    request_type: int
    request: int
    value: int = 0
    index: int = 0

    def __post_init__(self) -> None:
        for name in ("request_type", "request"):
            _check_range(name, getattr(self, name), 0xFF)
        for name in ("value", "index"):
            _check_range(name, getattr(self, name), 0xFFFF)

    @property
    def direction(self) -> EndpointDirection:
        return EndpointDirection.of(self.request_type)

    def __str__(self) -> str:
        return (
            f"bmRequestType=0x{self.request_type:02X} bRequest=0x{self.request:02X} "
            f"wValue=0x{self.value:04X} wIndex=0x{self.index:04X}"
        )


@dataclass(frozen=True)
class ProbeSpec:
    """
    One candidate command.

    Control probes carry a ControlRequest; bulk and interrupt probes name
    their IN ``endpoint`` and, when a payload is sent first, their
    ``out_endpoint``. Setting ``response_endpoint`` on a control probe makes
    it a write-then-probe composite: the control phase is followed by a
    read on that endpoint.
    """

    label: str
    kind: ChannelKind
    request: ControlRequest | None = None
    endpoint: int | None = None
    out_endpoint: int | None = None
    payload: bytes = b""
    expected_length: int | None = None
    response_endpoint: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", bytes(self.payload))
        if not self.label:
            raise ValueError("Probe label must not be empty")
        if self.kind == ChannelKind.CONTROL:
            if self.request is None:
                raise ValueError(f"{self.label}: control probe needs a request")
            if self.endpoint is not None or self.out_endpoint is not None:
                raise ValueError(f"{self.label}: control probe cannot target an endpoint")
            if self.payload and self.request.direction == EndpointDirection.IN:
                raise ValueError(f"{self.label}: IN control request cannot carry a payload")
            if len(self.payload) > 0xFFFF:
                raise ValueError(f"{self.label}: control payload exceeds wLength (65535 bytes)")
            if (
                not self.is_composite
                and self.expected_length is not None
                and self.expected_length > 0xFFFF
            ):
                raise ValueError(f"{self.label}: expected_length exceeds wLength (65535 bytes)")
        else:
            if self.request is not None:
                raise ValueError(f"{self.label}: {self.kind} probe cannot carry a control request")
            if self.response_endpoint is not None:
                raise ValueError(f"{self.label}: response_endpoint is for control probes")
        if self.expected_length is not None and self.expected_length < 0:
            raise ValueError(f"{self.label}: expected_length must be >= 0")
        for name in ("endpoint", "out_endpoint", "response_endpoint"):
            address = getattr(self, name)
            if address is not None and not 0 <= address <= 0xFF:
                raise ValueError(f"{self.label}: {name} {address} is not an endpoint address")

    @property
    def is_composite(self) -> bool:
        """Control phase followed by a read on another endpoint."""
        return self.response_endpoint is not None

    @property
    def is_control_write(self) -> bool:
        """OUT control request whose outcome is the number of bytes written."""
        return (
            self.kind == ChannelKind.CONTROL
            and not self.is_composite
            and self.request is not None
            and self.request.direction == EndpointDirection.OUT
        )

    @property
    def effective_length(self) -> int | None:
        """Byte count a full success is measured against (None: any)."""
        if self.is_control_write:
            return len(self.payload)
        return self.expected_length

    @property
    def expects_data(self) -> bool:
        """Whether zero bytes transferred means the device did not answer."""
        return self.effective_length != 0

    def describe(self) -> str:
        """One-line description of what is sent where."""
        if self.kind == ChannelKind.CONTROL:
            text = f"control {self.request}"
            if self.payload:
                text += f" data={self.payload.hex()}"
            if self.is_composite:
                text += f" then read 0x{self.response_endpoint:02X}"
            return text
        parts = [str(self.kind)]
        if self.payload:
            out = f"0x{self.out_endpoint:02X}" if self.out_endpoint is not None else "OUT"
            parts.append(f"send {self.payload.hex()} to {out}")
        ep = f"0x{self.endpoint:02X}" if self.endpoint is not None else "IN"
        parts.append(f"read {ep}")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the catalog file representation."""
        data: dict[str, Any] = {"label": self.label, "kind": self.kind.value}
        if self.request is not None:
            data["request"] = {
                "request_type": f"0x{self.request.request_type:02X}",
                "request": f"0x{self.request.request:02X}",
                "value": f"0x{self.request.value:04X}",
                "index": f"0x{self.request.index:04X}",
            }
        if self.endpoint is not None:
            data["endpoint"] = f"0x{self.endpoint:02X}"
        if self.out_endpoint is not None:
            data["out_endpoint"] = f"0x{self.out_endpoint:02X}"
        if self.payload:
            data["payload"] = self.payload.hex(" ")
        if self.expected_length is not None:
            data["expected_length"] = self.expected_length
        if self.response_endpoint is not None:
            data["response_endpoint"] = f"0x{self.response_endpoint:02X}"
        return data


@dataclass(frozen=True)
class CommandCatalog:
    """Ordered, immutable collection of probes; execution order is catalog order."""

    probes: tuple[ProbeSpec, ...] = ()
    name: str = ""
    description: str = ""

    def __iter__(self) -> Iterator[ProbeSpec]:
        return iter(self.probes)

    def __len__(self) -> int:
        return len(self.probes)

    def __getitem__(self, index: int) -> ProbeSpec:
        return self.probes[index]

    @property
    def labels(self) -> list[str]:
        return [p.label for p in self.probes]

    def __add__(self, other: CommandCatalog) -> CommandCatalog:
        names = [n for n in (self.name, other.name) if n]
        return CommandCatalog(
            probes=self.probes + other.probes,
            name="+".join(names),
            description=self.description or other.description,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "probes": [p.to_dict() for p in self.probes],
        }


@dataclass
class CatalogBuilder:
    """Fluent builder for command catalogs."""

    name: str = ""
    description: str = ""
    _probes: list[ProbeSpec] = field(default_factory=list)

    def add(self, spec: ProbeSpec) -> CatalogBuilder:
        self._probes.append(spec)
        return self

    def extend(self, specs: Iterable[ProbeSpec]) -> CatalogBuilder:
        self._probes.extend(specs)
        return self

    def control(
        self,
        label: str,
        request_type: int,
        request: int,
        value: int = 0,
        index: int = 0,
        length: int | None = None,
        payload: bytes = b"",
        response_endpoint: int | None = None,
        response_length: int | None = None,
    ) -> CatalogBuilder:
        """Add a raw control transfer probe."""
        return self.add(
            ProbeSpec(
                label=label,
                kind=ChannelKind.CONTROL,
                request=ControlRequest(request_type, request, value, index),
                payload=payload,
                expected_length=response_length if response_endpoint is not None else length,
                response_endpoint=response_endpoint,
            )
        )

    def vendor_read(
        self,
        request: int,
        value: int = 0,
        index: int = 0,
        length: int = 64,
        label: str | None = None,
    ) -> CatalogBuilder:
        """Add a device-to-host vendor request."""
        label = label or f"Vendor Read 0x{request:02X} wValue=0x{value:04X}"
        return self.control(label, VENDOR_IN, request, value, index, length=length)

    def vendor_write(
        self,
        request: int,
        payload: bytes = b"",
        value: int = 0,
        index: int = 0,
        label: str | None = None,
    ) -> CatalogBuilder:
        """Add a host-to-device vendor request."""
        label = label or f"Vendor Write 0x{request:02X} wValue=0x{value:04X}"
        return self.control(label, VENDOR_OUT, request, value, index, payload=payload)

    def vendor_scan(
        self,
        requests: Iterable[int],
        value: int = 0,
        index: int = 0,
        length: int = 64,
        label_format: str = "Vendor Request 0x{request:02X}",
    ) -> CatalogBuilder:
        """Add one vendor read per request code."""
        for request in requests:
            self.vendor_read(
                request, value, index, length,
                label=label_format.format(request=request, value=value, index=index),
            )
        return self

    def bulk(
        self,
        label: str,
        endpoint: int | None = None,
        payload: bytes = b"",
        out_endpoint: int | None = None,
        expected_length: int | None = None,
    ) -> CatalogBuilder:
        """Add a bulk probe (send then receive, or receive only)."""
        return self.add(
            ProbeSpec(
                label=label,
                kind=ChannelKind.BULK,
                endpoint=endpoint,
                out_endpoint=out_endpoint,
                payload=payload,
                expected_length=expected_length,
            )
        )

    def interrupt(
        self,
        label: str,
        endpoint: int | None = None,
        payload: bytes = b"",
        out_endpoint: int | None = None,
        expected_length: int | None = None,
    ) -> CatalogBuilder:
        """Add an interrupt probe (send then receive, or receive only)."""
        return self.add(
            ProbeSpec(
                label=label,
                kind=ChannelKind.INTERRUPT,
                endpoint=endpoint,
                out_endpoint=out_endpoint,
                payload=payload,
                expected_length=expected_length,
            )
        )

    def spontaneous_read(
        self,
        endpoint: int,
        kind: ChannelKind = ChannelKind.BULK,
        label: str | None = None,
        expected_length: int | None = None,
    ) -> CatalogBuilder:
        """Add a receive-only probe on an IN endpoint."""
        label = label or f"Spontaneous read 0x{endpoint:02X}"
        return self.add(
            ProbeSpec(label=label, kind=kind, endpoint=endpoint, expected_length=expected_length)
        )

    def write_then_read(
        self,
        label: str,
        request: int,
        payload: bytes,
        response_endpoint: int,
        value: int = 0,
        index: int = 0,
        response_length: int | None = None,
    ) -> CatalogBuilder:
        """Add a vendor write whose answer is read from another endpoint."""
        return self.control(
            label, VENDOR_OUT, request, value, index,
            payload=payload,
            response_endpoint=response_endpoint,
            response_length=response_length,
        )

    def build(self) -> CommandCatalog:
        return CommandCatalog(
            probes=tuple(self._probes), name=self.name, description=self.description
        )


def parse_int(value: Any, field_name: str) -> int:
    """Parse an int given as a YAML number or a (hex) string."""
    if isinstance(value, bool):
        raise CatalogParseError(f"'{field_name}' must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip(), 0)
        except ValueError:
            pass
    raise CatalogParseError(f"'{field_name}' must be an integer, got {value!r}")


def parse_payload(value: Any) -> bytes:
    """Parse a payload given as a hex string or a list of byte values."""
    if value is None:
        return b""
    if isinstance(value, str):
        text = value.replace(" ", "").replace(":", "")
        if text.lower().startswith("0x"):
            text = text[2:]
        try:
            return bytes.fromhex(text)
        except ValueError:
            raise CatalogParseError(f"Invalid hex payload: {value!r}") from None
    if isinstance(value, list):
        try:
            return bytes(parse_int(v, "payload") for v in value)
        except ValueError:
            raise CatalogParseError(f"Payload bytes out of range: {value!r}") from None
    raise CatalogParseError(f"Payload must be a hex string or list, got {type(value).__name__}")


def _optional_int(data: dict[str, Any], key: str) -> int | None:
    if data.get(key) is None:
        return None
    return parse_int(data[key], key)


def parse_probe(data: dict[str, Any]) -> ProbeSpec:
    """
    Parse a single probe from dictionary.

    Args:
        data: Dictionary with probe data

    Returns:
        ProbeSpec object
    """
    if not isinstance(data, dict):
        raise CatalogParseError("Probe must be a dictionary")

    label = data.get("label")
    if not label:
        raise CatalogParseError("Probe must have 'label' field")

    kind_str = data.get("kind")
    if kind_str is None:
        raise CatalogParseError("Probe must have 'kind' field")
    try:
        kind = ChannelKind(str(kind_str).lower())
    except ValueError:
        raise CatalogParseError(f"Invalid kind: {kind_str}") from None

    request = None
    request_data = data.get("request")
    if request_data is not None:
        if not isinstance(request_data, dict):
            raise CatalogParseError("'request' must be a dictionary")
        if "request_type" not in request_data or "request" not in request_data:
            raise CatalogParseError("'request' needs 'request_type' and 'request'")
        try:
            request = ControlRequest(
                request_type=parse_int(request_data["request_type"], "request_type"),
                request=parse_int(request_data["request"], "request"),
                value=parse_int(request_data.get("value", 0), "value"),
                index=parse_int(request_data.get("index", 0), "index"),
            )
        except ValueError as e:
            raise CatalogParseError(f"{label}: {e}") from e

    try:
        return ProbeSpec(
            label=str(label),
            kind=kind,
            request=request,
            endpoint=_optional_int(data, "endpoint"),
            out_endpoint=_optional_int(data, "out_endpoint"),
            payload=parse_payload(data.get("payload")),
            expected_length=_optional_int(data, "expected_length"),
            response_endpoint=_optional_int(data, "response_endpoint"),
        )
    except ValueError as e:
        raise CatalogParseError(str(e)) from e


def parse_catalog(data: dict[str, Any]) -> CommandCatalog:
    """
    Parse catalog from dictionary.

    Args:
        data: Dictionary with catalog data

    Returns:
        CommandCatalog object
    """
    if not isinstance(data, dict):
        raise CatalogParseError("Catalog must be a dictionary")

    probes_data = data.get("probes", [])
    if not isinstance(probes_data, list):
        raise CatalogParseError("'probes' must be a list")

    probes = []
    for i, probe_data in enumerate(probes_data):
        try:
            probes.append(parse_probe(probe_data))
        except CatalogParseError as e:
            raise CatalogParseError(f"Error parsing probe {i}: {e}") from e

    return CommandCatalog(
        probes=tuple(probes),
        name=str(data.get("name", "")),
        description=str(data.get("description", "")),
    )


def load_catalog(path: str | Path) -> CommandCatalog:
    """
    Load catalog from YAML file.

    Args:
        path: Path to catalog YAML file

    Returns:
        CommandCatalog with parsed probes

    Raises:
        FileNotFoundError: If file doesn't exist
        CatalogParseError: If file contains an invalid catalog
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f)

    if data is None:
        return CommandCatalog(name=path.stem)

    catalog = parse_catalog(data)
    if not catalog.name:
        catalog = CommandCatalog(catalog.probes, path.stem, catalog.description)
    return catalog


def validate_catalog(catalog: CommandCatalog, registry: EndpointRegistry | None = None) -> list[str]:
    """
    Validate a catalog and return list of errors/warnings.

    Args:
        catalog: Catalog to validate
        registry: Endpoints of the target interface, if known

    Returns:
        List of error/warning messages
    """
    errors: list[str] = []

    if not catalog.probes:
        errors.append("Warning: Catalog has no probes")
        return errors

    seen: dict[str, int] = {}
    for i, spec in enumerate(catalog.probes):
        if spec.label in seen:
            errors.append(f"Warning: Probe {i} has same label as probe {seen[spec.label]}")
        seen.setdefault(spec.label, i)

    if registry is None:
        return errors

    for i, spec in enumerate(catalog.probes):
        checks: list[tuple[TransferType, int | None, EndpointDirection]] = []
        if spec.kind == ChannelKind.CONTROL:
            if spec.response_endpoint is not None:
                try:
                    kind = registry.get(spec.response_endpoint).transfer_type
                except EndpointNotFound as e:
                    errors.append(f"Probe {i} ({spec.label}): {e}")
                    continue
                checks.append((kind, spec.response_endpoint, EndpointDirection.IN))
        else:
            checks.append((spec.kind.transfer_type, spec.endpoint, EndpointDirection.IN))
            if spec.payload:
                checks.append((spec.kind.transfer_type, spec.out_endpoint, EndpointDirection.OUT))
        for kind, address, direction in checks:
            try:
                registry.resolve(kind, address, direction)
            except EndpointNotFound as e:
                errors.append(f"Probe {i} ({spec.label}): {e}")

    return errors
