"""
Probe pipeline.

Command catalog, transfer executor, response classifier and the session
loop that ties them together.
"""

from usbprobe.probe.catalog import (
    CatalogBuilder,
    ChannelKind,
    CommandCatalog,
    ControlRequest,
    ProbeSpec,
    load_catalog,
    parse_catalog,
    validate_catalog,
)
from usbprobe.probe.classifier import Verdict, VerdictKind, classify
from usbprobe.probe.executor import TransferExecutor, TransferOutcome, TransferPhase
from usbprobe.probe.presets import PRESETS, get_preset
from usbprobe.probe.session import (
    AbortMarker,
    ProbeSession,
    ReportEntry,
    SessionPolicy,
    SessionReport,
    SessionState,
    Summary,
    summarize,
)

__all__ = [
    # Catalog
    "CatalogBuilder",
    "ChannelKind",
    "CommandCatalog",
    "ControlRequest",
    "ProbeSpec",
    "load_catalog",
    "parse_catalog",
    "validate_catalog",
    "PRESETS",
    "get_preset",
    # Executor
    "TransferExecutor",
    "TransferOutcome",
    "TransferPhase",
    # Classifier
    "Verdict",
    "VerdictKind",
    "classify",
    # Session
    "AbortMarker",
    "ProbeSession",
    "ReportEntry",
    "SessionPolicy",
    "SessionReport",
    "SessionState",
    "Summary",
    "summarize",
]
