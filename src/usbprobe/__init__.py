"""
USB Probe - protocol discovery harness for opaque USB peripherals.

Exercises a device's control, bulk and interrupt endpoints with candidate
command frames, classifies every response and reports which probes drew
an answer.
"""

__version__ = "0.1.0"
__author__ = "USB Probe Contributors"

from usbprobe.config import ProbeConfig, load_config

__all__ = ["ProbeConfig", "load_config", "__version__"]
