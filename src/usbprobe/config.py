"""
Configuration management for USB Probe.

Handles loading, validation, and access to probe run configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from usbprobe.probe.executor import DEFAULT_CAPTURE_CAP
from usbprobe.probe.session import SessionPolicy


# Default configuration paths, searched in order
DEFAULT_CONFIG_PATHS = [
    Path("usbprobe.yaml"),
    Path("config/usbprobe.yaml"),
    Path.home() / ".config" / "usbprobe" / "usbprobe.yaml",
]

# Realtek/Microctopus MoC fingerprint sensor
DEFAULT_VID = 0x2541
DEFAULT_PID = 0xFA03


def _parse_id(value: Any, name: str) -> int:
    """Ints are taken as is; strings are hex as printed by lsusb ("2541", "0x2541")."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip(), 16)
        except ValueError:
            pass
    raise ValueError(f"Invalid {name}: {value!r}")


@dataclass
class DeviceConfig:
    """Target device settings."""

    vid: int = DEFAULT_VID
    pid: int = DEFAULT_PID
    interface: int = 0
    alternate_setting: int = 0
    detach_kernel_driver: bool = True
    configuration: int | None = None

    def __post_init__(self) -> None:
        # Environment overrides the file
        env_vid = os.environ.get("USBPROBE_VID")
        env_pid = os.environ.get("USBPROBE_PID")
        if env_vid:
            self.vid = env_vid
        if env_pid:
            self.pid = env_pid
        self.vid = _parse_id(self.vid, "vid")
        self.pid = _parse_id(self.pid, "pid")


@dataclass
class SessionConfig:
    """Probe session pacing and retry settings."""

    inter_probe_delay: float = 0.1
    retry_count: int = 0
    retry_backoff: float = 0.25
    transfer_timeout: int = 1000
    treat_empty_as_failure: bool = True
    capture_cap: int = DEFAULT_CAPTURE_CAP

    def to_policy(self) -> SessionPolicy:
        """Build the session policy from these settings."""
        return SessionPolicy(
            inter_probe_delay=self.inter_probe_delay,
            retry_count=self.retry_count,
            retry_backoff=self.retry_backoff,
            transfer_timeout=self.transfer_timeout,
            treat_empty_as_failure=self.treat_empty_as_failure,
        )


@dataclass
class CatalogConfig:
    """Which probes to run."""

    preset: str = "advanced"
    file: str | None = None


@dataclass
class LoggingConfig:
    """Logging settings."""

    log_level: str = "info"
    log_file: str | None = None


@dataclass
class ReportConfig:
    """Report output settings."""

    format: str = "text"
    output: str | None = None
    preview_bytes: int = 64


@dataclass
class ProbeConfig:
    """Main configuration container."""

    device: DeviceConfig = field(default_factory=DeviceConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    report: ReportConfig = field(default_factory=ReportConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProbeConfig:
        """Create configuration from dictionary."""
        return cls(
            device=DeviceConfig(**data.get("device", {})),
            session=SessionConfig(**data.get("session", {})),
            catalog=CatalogConfig(**data.get("catalog", {})),
            logging=LoggingConfig(**data.get("logging", {})),
            report=ReportConfig(**data.get("report", {})),
        )


def load_config(path: str | Path | None = None) -> ProbeConfig:
    """
    Load configuration from YAML file.

    Args:
        path: Path to configuration file. If None, uses default paths.

    Returns:
        ProbeConfig instance with loaded settings.

    Raises:
        FileNotFoundError: If an explicit config file is not found.
        yaml.YAMLError: If config file is invalid YAML.
    """
    if path is None:
        for candidate in DEFAULT_CONFIG_PATHS:
            if candidate.exists():
                path = candidate
                break

    if path is None:
        return ProbeConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return ProbeConfig.from_dict(data)


def validate_config(config: ProbeConfig) -> list[str]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate.

    Returns:
        List of error messages. Empty list if valid.
    """
    from usbprobe.probe.presets import PRESETS

    errors: list[str] = []

    if not (0 <= config.device.vid <= 0xFFFF):
        errors.append(f"Invalid vid: {config.device.vid}")
    if not (0 <= config.device.pid <= 0xFFFF):
        errors.append(f"Invalid pid: {config.device.pid}")
    if config.device.interface < 0:
        errors.append(f"Invalid interface: {config.device.interface}")

    session = config.session
    if session.inter_probe_delay < 0:
        errors.append(f"Invalid inter_probe_delay: {session.inter_probe_delay}")
    if session.retry_count < 0:
        errors.append(f"Invalid retry_count: {session.retry_count}")
    if session.retry_backoff < 0:
        errors.append(f"Invalid retry_backoff: {session.retry_backoff}")
    if session.transfer_timeout <= 0:
        errors.append(f"Invalid transfer_timeout: {session.transfer_timeout}")
    if session.capture_cap <= 0:
        errors.append(f"Invalid capture_cap: {session.capture_cap}")

    if config.catalog.file is None and config.catalog.preset not in PRESETS:
        errors.append(f"Unknown catalog preset: {config.catalog.preset}")
    if config.catalog.file is not None and not Path(config.catalog.file).exists():
        errors.append(f"Catalog file not found: {config.catalog.file}")

    valid_log_levels = {"debug", "info", "warning", "error"}
    if config.logging.log_level not in valid_log_levels:
        errors.append(f"Invalid log_level: {config.logging.log_level}")

    valid_formats = {"text", "json", "csv"}
    if config.report.format not in valid_formats:
        errors.append(f"Invalid report format: {config.report.format}")
    if config.report.preview_bytes < 0:
        errors.append(f"Invalid preview_bytes: {config.report.preview_bytes}")

    return errors
