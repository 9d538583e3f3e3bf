"""
Probe Session - Catalog Execution Loop.

Drives a command catalog through the transfer executor and classifier,
applies the retry and pacing policy, and accumulates the session report.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping

from usbprobe.errors import ProtocolViolation, SessionStateError
from usbprobe.probe.catalog import CommandCatalog, ProbeSpec
from usbprobe.probe.classifier import Verdict, VerdictKind, classify
from usbprobe.probe.executor import TransferExecutor, TransferOutcome


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(Enum):
    """Probe session lifecycle."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.ABORTED)


@dataclass(frozen=True)
class SessionPolicy:
    """Pacing and retry settings; delays in seconds, timeout in milliseconds."""

    inter_probe_delay: float = 0.1
    retry_count: int = 0
    retry_backoff: float = 0.25
    transfer_timeout: int = 1000
    treat_empty_as_failure: bool = True

    def __post_init__(self) -> None:
        if self.inter_probe_delay < 0:
            raise ValueError("inter_probe_delay must be >= 0")
        if self.retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        if self.retry_backoff < 0:
            raise ValueError("retry_backoff must be >= 0")
        if self.transfer_timeout <= 0:
            raise ValueError("transfer_timeout must be > 0")


@dataclass(frozen=True)
class ReportEntry:
    """Final verdict of one probe."""

    label: str
    verdict: Verdict
    timestamp: datetime
    attempts: int = 1
    outcome: TransferOutcome | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "verdict": self.verdict.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "attempts": self.attempts,
            "duration_ms": round(self.outcome.duration * 1000, 3) if self.outcome else None,
        }


@dataclass(frozen=True)
class AbortMarker:
    """Trailing marker of an aborted session."""

    reason: str
    timestamp: datetime
    label: str | None = None  # Probe in flight when the session stopped

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "label": self.label,
        }


class SessionReport:
    """
    Ordered verdicts of one session pass.

    Grows while the session runs and becomes read-only once finalized.
    """

    def __init__(self, catalog_name: str = "") -> None:
        self.catalog_name = catalog_name
        self._entries: list[ReportEntry] = []
        self.state = SessionState.IDLE
        self.aborted: AbortMarker | None = None
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None
        self.device: str | None = None

    @property
    def entries(self) -> tuple[ReportEntry, ...]:
        return tuple(self._entries)

    @property
    def is_final(self) -> bool:
        return self.state.is_terminal

    def record(self, entry: ReportEntry) -> None:
        """Append the final verdict of a probe."""
        if self.is_final:
            raise SessionStateError("Report is finalized")
        self._entries.append(entry)

    def finalize(self, state: SessionState, aborted: AbortMarker | None = None) -> None:
        """Close the report in a terminal state."""
        if self.is_final:
            raise SessionStateError(f"Report already finalized as {self.state.value}")
        if not state.is_terminal:
            raise SessionStateError(f"{state.value} is not a terminal state")
        self.state = state
        self.aborted = aborted
        self.finished_at = _utcnow()

    def __len__(self) -> int:
        return len(self._entries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "catalog": self.catalog_name,
            "device": self.device,
            "state": self.state.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "entries": [e.to_dict() for e in self._entries],
            "aborted": self.aborted.to_dict() if self.aborted else None,
            "summary": summarize(self).to_dict(),
        }


@dataclass(frozen=True)
class Summary:
    """Aggregate counts of a session report."""

    total: int
    succeeded: int
    by_kind: Mapping[VerdictKind, int] = field(default_factory=lambda: MappingProxyType({}))
    attempts: int = 0
    aborted: bool = False
    has_evidence: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "by_kind": {k.value: v for k, v in self.by_kind.items()},
            "attempts": self.attempts,
            "aborted": self.aborted,
            "has_evidence": self.has_evidence,
        }


def summarize(report: SessionReport) -> Summary:
    """
    Aggregate a report.

    Args:
        report: Session report, finalized or not

    Returns:
        Summary with a count for every verdict kind
    """
    by_kind = {kind: 0 for kind in VerdictKind}
    attempts = 0
    evidence = False
    for entry in report.entries:
        by_kind[entry.verdict.kind] += 1
        attempts += entry.attempts
        evidence = evidence or entry.verdict.is_evidence

    return Summary(
        total=len(report),
        succeeded=by_kind[VerdictKind.SUCCESS],
        by_kind=MappingProxyType(by_kind),
        attempts=attempts,
        aborted=report.state == SessionState.ABORTED,
        has_evidence=evidence,
    )


RecordHook = Callable[[ReportEntry], None]


class ProbeSession:
    """
    One pass over a command catalog.

    Probes run strictly one at a time against an exclusively owned handle.
    A session runs once; start a new session for another pass.
    """

    def __init__(
        self,
        executor: TransferExecutor,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize session.

        Args:
            executor: Transfer executor bound to the endpoint registry
            sleep: Blocking wait used for pacing and retry backoff
        """
        self.executor = executor
        self._sleep = sleep
        self._state = SessionState.IDLE
        self._report = SessionReport()
        self._record_hooks: list[RecordHook] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def report(self) -> SessionReport:
        return self._report

    def add_record_hook(self, hook: RecordHook) -> None:
        """Register a callback invoked after each verdict is recorded."""
        self._record_hooks.append(hook)

    def start(
        self,
        catalog: CommandCatalog,
        handle: Any,
        policy: SessionPolicy | None = None,
    ) -> SessionReport:
        """
        Run every probe of the catalog in order.

        Args:
            catalog: Probes to execute
            handle: Open, claimed device handle
            policy: Pacing and retry policy (defaults if None)

        Returns:
            Finalized report (COMPLETED or ABORTED)

        Raises:
            SessionStateError: If the session already ran
            ProtocolViolation: If the handle is closed; the report is
                finalized as ABORTED before this propagates mid-session
        """
        if self._state != SessionState.IDLE:
            raise SessionStateError(f"Session is {self._state.value}, cannot start")
        if handle is None or not handle.is_open:
            raise ProtocolViolation("Cannot start a session on a closed device handle")

        policy = policy or SessionPolicy()
        self._report = SessionReport(catalog.name)
        self._report.started_at = _utcnow()
        if hasattr(handle, "vid") and hasattr(handle, "pid"):
            self._report.device = f"{handle.vid:04x}:{handle.pid:04x}"
        self._report.state = SessionState.RUNNING
        self._transition(SessionState.RUNNING)
        logger.info(
            "Session started: %d probes from catalog '%s'", len(catalog), catalog.name
        )

        total = len(catalog)
        current: ProbeSpec | None = None
        try:
            for position, spec in enumerate(catalog, 1):
                current = spec
                entry = self._run_probe(spec, handle, policy)
                if entry is None:
                    self._abort(f"Device disconnected during '{spec.label}'", spec.label)
                    return self._report
                self._record(entry)
                if position < total and policy.inter_probe_delay > 0:
                    self._sleep(policy.inter_probe_delay)
        except ProtocolViolation as e:
            self._abort(str(e), current.label if current else None)
            raise

        self._report.finalize(SessionState.COMPLETED)
        self._transition(SessionState.COMPLETED)
        summary = summarize(self._report)
        logger.info(
            "Session completed: %d/%d probes succeeded", summary.succeeded, summary.total
        )
        return self._report

    def _run_probe(
        self, spec: ProbeSpec, handle: Any, policy: SessionPolicy
    ) -> ReportEntry | None:
        """Execute a probe with retries; None when the handle was invalidated."""
        attempts = 0
        while True:
            outcome = self.executor.execute(handle, spec, policy.transfer_timeout)
            attempts += 1
            if not handle.is_open:
                return None

            verdict = classify(outcome, spec, policy.treat_empty_as_failure)
            if verdict.is_retryable and attempts <= policy.retry_count:
                logger.debug(
                    "%s: %s, retry %d/%d", spec.label, verdict, attempts, policy.retry_count
                )
                if policy.retry_backoff > 0:
                    self._sleep(policy.retry_backoff)
                continue

            return ReportEntry(
                label=spec.label,
                verdict=verdict,
                timestamp=_utcnow(),
                attempts=attempts,
                outcome=outcome,
            )

    def _record(self, entry: ReportEntry) -> None:
        self._report.record(entry)
        logger.info("%s -> %s", entry.label, entry.verdict)
        for hook in self._record_hooks:
            try:
                hook(entry)
            except Exception as e:
                logger.error("Record hook error: %s", e)

    def _abort(self, reason: str, label: str | None) -> None:
        marker = AbortMarker(reason=reason, timestamp=_utcnow(), label=label)
        self._report.finalize(SessionState.ABORTED, marker)
        self._transition(SessionState.ABORTED)
        logger.error("Session aborted after %d probes: %s", len(self._report), reason)

    def _transition(self, state: SessionState) -> None:
        logger.debug("Session %s -> %s", self._state.value, state.value)
        self._state = state
