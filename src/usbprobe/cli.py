"""
USB Probe Command Line Interface.

Provides commands for probing an unknown USB device:
- run: Execute a probe catalog against the device and report verdicts
- catalog: Show or validate probe catalogs
- device: Dump descriptors of the target device
- config: Validate the configuration file
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import Any

import yaml

from usbprobe import __version__
from usbprobe.config import ProbeConfig, load_config, validate_config
from usbprobe.device.handle import USBDeviceHandle, open_device
from usbprobe.device.mock import MockDeviceHandle
from usbprobe.device.registry import EndpointRegistry
from usbprobe.errors import CatalogParseError, DeviceUnavailable, EndpointNotFound, ProtocolViolation
from usbprobe.probe.catalog import CommandCatalog, load_catalog, validate_catalog
from usbprobe.probe.executor import TransferExecutor
from usbprobe.probe.presets import PRESETS, get_preset
from usbprobe.probe.session import ProbeSession, ReportEntry, SessionReport, summarize
from usbprobe.report import FORMATS, write_report

logger = logging.getLogger("usbprobe")

EXIT_EVIDENCE = 0
EXIT_FATAL = 1
EXIT_NO_EVIDENCE = 2


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="usb-probe",
        description="Protocol discovery harness for unknown USB devices",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log every transfer (debug level)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Run a probe catalog")
    _add_catalog_args(run_parser)
    run_parser.add_argument("--vid", help="Vendor ID (hex)")
    run_parser.add_argument("--pid", help="Product ID (hex)")
    run_parser.add_argument("--interface", type=int, help="Interface number to claim")
    run_parser.add_argument("--retries", type=int, help="Retries per timed-out probe")
    run_parser.add_argument("--delay", type=float, help="Seconds between probes")
    run_parser.add_argument("--backoff", type=float, help="Seconds before a retry")
    run_parser.add_argument("--timeout", type=int, help="Transfer timeout (ms)")
    run_parser.add_argument(
        "--accept-empty",
        action="store_true",
        help="Count zero-length answers as success",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run against a simulated device that never answers",
    )
    run_parser.add_argument("--format", choices=FORMATS, help="Report format")
    run_parser.add_argument("-o", "--output", help="Report file (default: stdout)")
    run_parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="No per-probe progress on stderr",
    )
    run_parser.set_defaults(func=cmd_run)

    # catalog command
    catalog_parser = subparsers.add_parser("catalog", help="Show or validate catalogs")
    catalog_sub = catalog_parser.add_subparsers(dest="catalog_cmd")
    show_parser = catalog_sub.add_parser("show", help="List the probes of a catalog")
    _add_catalog_args(show_parser)
    validate_parser = catalog_sub.add_parser("validate", help="Validate a catalog")
    _add_catalog_args(validate_parser)
    catalog_sub.add_parser("presets", help="List built-in catalogs")
    catalog_parser.set_defaults(func=cmd_catalog)

    # device command
    device_parser = subparsers.add_parser("device", help="Inspect the target device")
    device_sub = device_parser.add_subparsers(dest="device_cmd")
    info_parser = device_sub.add_parser("info", help="Dump device descriptors")
    info_parser.add_argument("--vid", help="Vendor ID (hex)")
    info_parser.add_argument("--pid", help="Product ID (hex)")
    device_parser.set_defaults(func=cmd_device)

    # config command
    config_parser = subparsers.add_parser("config", help="Configuration tools")
    config_sub = config_parser.add_subparsers(dest="config_cmd")
    config_sub.add_parser("validate", help="Validate configuration")
    config_sub.add_parser("show", help="Show effective configuration")
    config_parser.set_defaults(func=cmd_config)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = load_config(args.config)
    except (FileNotFoundError, TypeError, ValueError, yaml.YAMLError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FATAL

    setup_logging(config, args.verbose)
    return args.func(args, config)


def _add_catalog_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--preset", choices=sorted(PRESETS), help="Built-in catalog")
    group.add_argument("--catalog", metavar="FILE", help="YAML catalog file")


def setup_logging(config: ProbeConfig, verbose: bool = False) -> None:
    """Configure logging based on config."""
    level_name = "debug" if verbose else config.logging.log_level
    level = getattr(logging, level_name.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.logging.log_file:
        handlers.append(logging.FileHandler(config.logging.log_file))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )


def output(data: Any, args: argparse.Namespace) -> None:
    """Output data in requested format."""
    if getattr(args, "json", False):
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, dict):
        for key, value in data.items():
            print(f"{key}: {value}")
    else:
        print(data)


def resolve_catalog(args: argparse.Namespace, config: ProbeConfig) -> CommandCatalog:
    """Pick the catalog from arguments, falling back to the configuration."""
    if getattr(args, "catalog", None):
        return load_catalog(args.catalog)
    if getattr(args, "preset", None):
        return get_preset(args.preset)
    if config.catalog.file:
        return load_catalog(config.catalog.file)
    return get_preset(config.catalog.preset)


def apply_overrides(args: argparse.Namespace, config: ProbeConfig) -> None:
    """Apply command line overrides to the loaded configuration."""
    if getattr(args, "vid", None):
        config.device.vid = int(args.vid, 16)
    if getattr(args, "pid", None):
        config.device.pid = int(args.pid, 16)
    if getattr(args, "interface", None) is not None:
        config.device.interface = args.interface
    if getattr(args, "retries", None) is not None:
        config.session.retry_count = args.retries
    if getattr(args, "delay", None) is not None:
        config.session.inter_probe_delay = args.delay
    if getattr(args, "backoff", None) is not None:
        config.session.retry_backoff = args.backoff
    if getattr(args, "timeout", None) is not None:
        config.session.transfer_timeout = args.timeout
    if getattr(args, "accept_empty", False):
        config.session.treat_empty_as_failure = False
    if getattr(args, "format", None):
        config.report.format = args.format
    elif getattr(args, "json", False):
        config.report.format = "json"
    if getattr(args, "output", None):
        config.report.output = args.output


def create_session(
    registry: EndpointRegistry,
    config: ProbeConfig,
    total: int,
    progress: bool = True,
) -> ProbeSession:
    """
    Build a probe session for one catalog pass.

    The caller keeps the session so that its report stays reachable even
    when start() re-raises a ProtocolViolation after aborting.
    """
    executor = TransferExecutor(registry, capture_cap=config.session.capture_cap)
    session = ProbeSession(executor)

    if progress:
        def show_progress(entry: ReportEntry) -> None:
            done = len(session.report)
            print(f"[{done}/{total}] {entry.label} -> {entry.verdict}", file=sys.stderr)

        session.add_record_hook(show_progress)

    return session


def _write(report: SessionReport, config: ProbeConfig) -> None:
    write_report(
        report,
        config.report.format,
        config.report.output,
        config.report.preview_bytes,
    )


def _emit(report: SessionReport, config: ProbeConfig) -> int:
    _write(report, config)
    summary = summarize(report)
    return EXIT_EVIDENCE if summary.has_evidence else EXIT_NO_EVIDENCE


def cmd_run(args: argparse.Namespace, config: ProbeConfig) -> int:
    """Run a probe catalog against the device."""
    try:
        apply_overrides(args, config)
    except ValueError as e:
        logger.error("Invalid argument: %s", e)
        return EXIT_FATAL

    errors = validate_config(config)
    if errors:
        for error in errors:
            logger.error("Configuration: %s", error)
        return EXIT_FATAL

    try:
        catalog = resolve_catalog(args, config)
    except (FileNotFoundError, CatalogParseError, KeyError) as e:
        logger.error("Cannot load catalog: %s", e)
        return EXIT_FATAL

    progress = not args.quiet and config.report.format == "text"
    policy = config.session.to_policy()

    if args.dry_run:
        handle = MockDeviceHandle(config.device.vid, config.device.pid)
        registry = EndpointRegistry.from_device(handle.device_info())
        session = create_session(registry, config, len(catalog), progress)
        return _emit(session.start(catalog, handle, policy), config)

    session: ProbeSession | None = None
    try:
        with open_device(config.device) as handle:
            info = handle.device_info()
            registry = EndpointRegistry.from_device(
                info, config.device.interface, config.device.alternate_setting
            )
            for warning in validate_catalog(catalog, registry):
                logger.warning("Catalog: %s", warning)
            session = create_session(registry, config, len(catalog), progress)
            session.start(catalog, handle, policy)
    except DeviceUnavailable as e:
        logger.error("Device unavailable: %s", e)
        return EXIT_FATAL
    except EndpointNotFound as e:
        logger.error("%s", e)
        return EXIT_FATAL
    except ProtocolViolation as e:
        logger.error("Protocol violation: %s", e)
        # Verdicts recorded before the violation are still reported
        if session is not None and session.report.is_final:
            _write(session.report, config)
        return EXIT_FATAL

    return _emit(session.report, config)


def cmd_catalog(args: argparse.Namespace, config: ProbeConfig) -> int:
    """Show or validate probe catalogs."""
    if args.catalog_cmd == "presets":
        data = {name: factory().description for name, factory in sorted(PRESETS.items())}
        output(data, args)
        return 0

    try:
        catalog = resolve_catalog(args, config)
    except (FileNotFoundError, CatalogParseError, KeyError) as e:
        print(f"Catalog invalid: {e}")
        return EXIT_FATAL

    if args.catalog_cmd == "validate":
        problems = validate_catalog(catalog)
        print(f"Catalog valid: {len(catalog)} probes loaded")
        if problems:
            print("\nWarnings:")
            for problem in problems:
                print(f"  - {problem}")
        return 0

    if getattr(args, "json", False):
        output(catalog.to_dict(), args)
        return 0

    print(f"Catalog '{catalog.name}' ({len(catalog)} probes)")
    if catalog.description:
        print(catalog.description)
    print("=" * 70)
    for i, spec in enumerate(catalog, 1):
        print(f"{i:>3}. {spec.label}")
        print(f"     {spec.describe()}")
    return 0


def cmd_device(args: argparse.Namespace, config: ProbeConfig) -> int:
    """Dump descriptors of the target device."""
    try:
        apply_overrides(args, config)
    except ValueError as e:
        logger.error("Invalid argument: %s", e)
        return EXIT_FATAL

    try:
        handle = USBDeviceHandle.open(config.device.vid, config.device.pid)
    except DeviceUnavailable as e:
        logger.error("Device unavailable: %s", e)
        return EXIT_FATAL

    try:
        info = handle.device_info()
    finally:
        handle.close()

    if getattr(args, "json", False):
        output(info.to_dict(), args)
        return 0

    print(f"Device {info.vid_pid}")
    print("=" * 50)
    print(f"Manufacturer:  {info.manufacturer or 'Unknown'}")
    print(f"Product:       {info.product or 'Unknown'}")
    print(f"Serial:        {info.serial or 'N/A'}")
    print(f"USB:           {info.bcd_usb:04X}")
    print(f"Device class:  0x{info.device_class:02X}")
    print(f"EP0 packet:    {info.max_packet_size0}")
    for intf in info.interfaces:
        print()
        print(
            f"Interface {intf.number} alt {intf.alternate_setting}: "
            f"class 0x{intf.interface_class:02X}/0x{intf.interface_subclass:02X}"
            f"/0x{intf.interface_protocol:02X}"
        )
        for ep in intf.endpoints:
            d = ep.to_dict()
            print(
                f"  {d['address']} {d['direction']:<3} {d['transfer_type']:<11} "
                f"max packet {ep.max_packet_size:<4} interval {ep.interval}"
            )
    return 0


def cmd_config(args: argparse.Namespace, config: ProbeConfig) -> int:
    """Validate or show configuration."""
    if args.config_cmd == "show":
        output(asdict(config), args)
        return 0

    errors = validate_config(config)
    if errors:
        print("Configuration invalid:")
        for error in errors:
            print(f"  - {error}")
        return EXIT_FATAL
    print("Configuration valid")
    return 0


if __name__ == "__main__":
    sys.exit(main())
