"""
Pytest configuration and shared fixtures for USB Probe tests.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator

import pytest
import yaml

from usbprobe.device.mock import MockDeviceHandle, default_mock_info
from usbprobe.device.registry import EndpointRegistry
from usbprobe.probe.executor import TransferExecutor
from usbprobe.probe.session import ProbeSession, SessionPolicy


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir: Path) -> Path:
    """Create a sample configuration file."""
    config_path = temp_dir / "usbprobe.yaml"
    config_data = {
        "device": {
            "vid": "2541",
            "pid": "fa03",
            "interface": 0,
        },
        "session": {
            "inter_probe_delay": 0,
            "retry_count": 2,
            "retry_backoff": 0,
            "transfer_timeout": 500,
        },
        "catalog": {
            "preset": "bulk-commands",
        },
        "logging": {
            "log_level": "debug",
        },
        "report": {
            "format": "json",
        },
    }
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def sample_catalog(temp_dir: Path) -> Path:
    """Create a sample catalog file."""
    catalog_path = temp_dir / "catalog.yaml"
    catalog_data = {
        "name": "sample",
        "description": "Sample catalog",
        "probes": [
            {
                "label": "Vendor status",
                "kind": "control",
                "request": {"request_type": "0xC0", "request": "0x06", "value": 0, "index": 0},
                "expected_length": 64,
            },
            {
                "label": "Init frame",
                "kind": "bulk",
                "endpoint": "0x82",
                "out_endpoint": "0x01",
                "payload": "EA 01 00 00 00 00 01 EA",
            },
            {
                "label": "Interrupt poll",
                "kind": "interrupt",
                "endpoint": 0x83,
            },
            {
                "label": "Init then read",
                "kind": "control",
                "request": {"request_type": 0x40, "request": 0x01},
                "payload": [1, 0, 0, 0],
                "response_endpoint": "0x82",
            },
        ],
    }
    with open(catalog_path, "w") as f:
        yaml.dump(catalog_data, f)
    return catalog_path


@pytest.fixture
def registry() -> EndpointRegistry:
    """Endpoints of the mock fingerprint sensor: 0x01/0x82 bulk, 0x83/0x84 interrupt."""
    return EndpointRegistry.from_device(default_mock_info())


@pytest.fixture
def mock_handle() -> MockDeviceHandle:
    """Mock device that times out on every unscripted read."""
    return MockDeviceHandle()


@pytest.fixture
def executor(registry: EndpointRegistry) -> TransferExecutor:
    """Transfer executor bound to the mock registry."""
    return TransferExecutor(registry)


@pytest.fixture
def sleeps() -> list[float]:
    """Collects the waits requested by a session."""
    return []


@pytest.fixture
def session(executor: TransferExecutor, sleeps: list[float]) -> ProbeSession:
    """Probe session whose waits are recorded instead of slept."""
    return ProbeSession(executor, sleep=sleeps.append)


@pytest.fixture
def fast_policy() -> SessionPolicy:
    """Policy without pacing or retries."""
    return SessionPolicy(inter_probe_delay=0, retry_count=0, retry_backoff=0)
