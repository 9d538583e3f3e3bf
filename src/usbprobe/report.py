"""
Report rendering.

Turns a finalized session report into console text, JSON or CSV.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from pathlib import Path

from usbprobe.probe.classifier import VerdictKind
from usbprobe.probe.session import ReportEntry, SessionReport, summarize


logger = logging.getLogger(__name__)

FORMATS = ("text", "json", "csv")


def hex_preview(data: bytes, limit: int = 64, width: int = 16) -> list[str]:
    """
    Format bytes as rows of space separated hex.

    Args:
        data: Bytes to format
        limit: Maximum bytes shown
        width: Bytes per row

    Returns:
        Rows of text; a trailing row notes omitted bytes
    """
    shown = data[:limit]
    rows = [
        " ".join(f"{b:02X}" for b in shown[i:i + width])
        for i in range(0, len(shown), width)
    ]
    if len(data) > limit:
        rows.append(f"... ({len(data) - limit} more bytes)")
    return rows


def format_entry(entry: ReportEntry, preview_bytes: int = 64) -> list[str]:
    """Render one report entry as console lines."""
    attempts = f" [{entry.attempts} attempts]" if entry.attempts > 1 else ""
    lines = [f"{entry.label:<40} {entry.verdict}{attempts}"]
    if entry.verdict.payload and preview_bytes:
        lines.extend(f"    {row}" for row in hex_preview(entry.verdict.payload, preview_bytes))
    return lines


def render_text(report: SessionReport, preview_bytes: int = 64) -> str:
    """Render a report for the console."""
    summary = summarize(report)
    title = f"Probe Report: {report.catalog_name or 'catalog'}"
    if report.device:
        title += f" on {report.device}"

    lines = [title, "=" * 70]
    if not report.entries:
        lines.append("No probes were executed.")
    for entry in report.entries:
        lines.extend(format_entry(entry, preview_bytes))

    if report.aborted:
        lines.append("-" * 70)
        lines.append(f"ABORTED: {report.aborted.reason}")

    lines.append("")
    lines.append("Summary")
    lines.append("-" * 70)
    lines.append(f"  State:       {report.state.value}")
    lines.append(f"  Total:       {summary.total}")
    lines.append(f"  Succeeded:   {summary.succeeded}")
    lines.append(f"  Failed:      {summary.total - summary.succeeded}")
    lines.append(f"  Attempts:    {summary.attempts}")
    for kind in VerdictKind:
        count = summary.by_kind.get(kind, 0)
        if count and kind != VerdictKind.SUCCESS:
            lines.append(f"    {kind.value:<16} {count}")

    lines.append("")
    if summary.has_evidence:
        lines.append("At least one probe got a response. Review the payloads above.")
    else:
        lines.append("No probe got a response. The device may use a different protocol.")
        lines.append("  - Try another catalog preset or the interrupt endpoints")
        lines.append("  - Capture the vendor driver's traffic with usbmon/Wireshark")
        lines.append("  - Check whether the device needs a firmware upload")
    return "\n".join(lines)


def render_json(report: SessionReport) -> str:
    """Render a report as JSON."""
    return json.dumps(report.to_dict(), indent=2, default=str)


def render_csv(report: SessionReport) -> str:
    """Render report entries as CSV, one row per probe."""
    output_io = io.StringIO()
    writer = csv.DictWriter(
        output_io,
        fieldnames=["label", "verdict", "length", "error", "attempts", "timestamp", "payload_hex"],
    )
    writer.writeheader()
    for entry in report.entries:
        verdict = entry.verdict
        writer.writerow({
            "label": entry.label,
            "verdict": verdict.kind.value,
            "length": verdict.length,
            "error": verdict.error.name if verdict.error is not None else "",
            "attempts": entry.attempts,
            "timestamp": entry.timestamp.isoformat(),
            "payload_hex": verdict.payload.hex(),
        })
    return output_io.getvalue()


def render(report: SessionReport, fmt: str = "text", preview_bytes: int = 64) -> str:
    """Render a report in one of FORMATS."""
    if fmt == "text":
        return render_text(report, preview_bytes)
    if fmt == "json":
        return render_json(report)
    if fmt == "csv":
        return render_csv(report)
    raise ValueError(f"Unknown report format: {fmt}")


def write_report(
    report: SessionReport,
    fmt: str = "text",
    output: str | Path | None = None,
    preview_bytes: int = 64,
) -> str:
    """
    Render a report and write it to a file or stdout.

    Returns:
        The rendered text
    """
    text = render(report, fmt, preview_bytes)
    if output:
        Path(output).write_text(text + ("\n" if not text.endswith("\n") else ""))
        logger.info("Report written to %s", output)
    else:
        print(text)
    return text
