"""
Tests for report rendering.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from usbprobe.device.constants import TransferError
from usbprobe.probe.classifier import Verdict
from usbprobe.probe.session import AbortMarker, ReportEntry, SessionReport, SessionState
from usbprobe.report import format_entry, hex_preview, render, render_csv, render_json, render_text, write_report


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def report() -> SessionReport:
    """Completed report with a success, a stall and a retried timeout."""
    report = SessionReport("advanced")
    report.device = "2541:fa03"
    report.record(ReportEntry("Request 0x06", Verdict.success(bytes(range(20)), 20), NOW))
    report.record(ReportEntry("Request 0x08", Verdict.stalled(), NOW))
    report.record(ReportEntry("Interrupt INT1", Verdict.timeout(), NOW, attempts=3))
    report.finalize(SessionState.COMPLETED)
    return report


@pytest.fixture
def silent_report() -> SessionReport:
    """Aborted report without any device answer."""
    report = SessionReport("bulk-commands")
    report.record(ReportEntry("CS9711 Init", Verdict.transport_error(TransferError.IO), NOW))
    report.finalize(
        SessionState.ABORTED,
        AbortMarker("Device disconnected during 'CS9711 Reset'", NOW, "CS9711 Reset"),
    )
    return report


class TestHexPreview:
    """Tests for hex_preview."""

    def test_rows(self) -> None:
        """Test bytes are split into rows."""
        rows = hex_preview(bytes(range(20)), width=16)
        assert rows == [
            "00 01 02 03 04 05 06 07 08 09 0A 0B 0C 0D 0E 0F",
            "10 11 12 13",
        ]

    def test_limit(self) -> None:
        """Test long payloads are cut with a note."""
        rows = hex_preview(bytes(100), limit=32)
        assert len(rows) == 3
        assert rows[-1] == "... (68 more bytes)"

    def test_empty(self) -> None:
        """Test empty payloads produce no rows."""
        assert hex_preview(b"") == []


class TestRenderText:
    """Tests for console rendering."""

    def test_entries_and_summary(self, report: SessionReport) -> None:
        """Test every probe and the summary appear."""
        text = render_text(report)

        assert "Probe Report: advanced on 2541:fa03" in text
        assert "Success(20 bytes)" in text
        assert "Stalled" in text
        assert "Timeout [3 attempts]" in text
        assert "Total:       3" in text
        assert "Succeeded:   1" in text
        assert "Attempts:    5" in text
        assert "got a response" in text

    def test_payload_preview(self, report: SessionReport) -> None:
        """Test payload bytes are previewed under the entry."""
        lines = format_entry(report.entries[0])
        assert lines[1].strip().startswith("00 01 02")

    def test_preview_disabled(self, report: SessionReport) -> None:
        """Test a zero preview shows no bytes."""
        assert len(format_entry(report.entries[0], preview_bytes=0)) == 1

    def test_aborted_without_evidence(self, silent_report: SessionReport) -> None:
        """Test abort reason and next-step hints."""
        text = render_text(silent_report)

        assert "TransportError(LIBUSB_ERROR_IO)" in text
        assert "ABORTED: Device disconnected during 'CS9711 Reset'" in text
        assert "No probe got a response" in text
        assert "usbmon" in text


class TestMachineFormats:
    """Tests for JSON and CSV rendering."""

    def test_json(self, report: SessionReport) -> None:
        """Test the JSON document."""
        data = json.loads(render_json(report))

        assert data["catalog"] == "advanced"
        assert data["state"] == "completed"
        assert len(data["entries"]) == 3
        assert data["entries"][0]["verdict"]["payload_hex"] == bytes(range(20)).hex()
        assert data["summary"]["by_kind"]["stalled"] == 1
        assert data["summary"]["has_evidence"] is True
        assert data["aborted"] is None

    def test_json_aborted(self, silent_report: SessionReport) -> None:
        """Test the abort marker is serialized."""
        data = json.loads(render_json(silent_report))
        assert data["aborted"]["label"] == "CS9711 Reset"
        assert data["summary"]["aborted"] is True

    def test_csv(self, report: SessionReport) -> None:
        """Test one CSV row per probe."""
        rows = list(csv.DictReader(io.StringIO(render_csv(report))))

        assert [r["label"] for r in rows] == ["Request 0x06", "Request 0x08", "Interrupt INT1"]
        assert rows[0]["verdict"] == "success"
        assert rows[0]["length"] == "20"
        assert rows[2]["attempts"] == "3"

    def test_unknown_format(self, report: SessionReport) -> None:
        """Test unknown formats are rejected."""
        with pytest.raises(ValueError):
            render(report, "xml")


class TestWriteReport:
    """Tests for write_report."""

    def test_write_to_file(self, report: SessionReport, temp_dir: Path) -> None:
        """Test reports can be written to a file."""
        path = temp_dir / "report.json"
        text = write_report(report, "json", path)

        assert path.read_text().strip() == text
        assert json.loads(path.read_text())["catalog"] == "advanced"

    def test_write_to_stdout(self, report: SessionReport, capsys: pytest.CaptureFixture) -> None:
        """Test reports are printed without an output path."""
        write_report(report, "csv")

        captured = capsys.readouterr()
        assert captured.out.startswith("label,verdict")
