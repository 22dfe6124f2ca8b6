#!/usr/bin/env python3
"""IoT Hub Device Migration CLI.

This module provides a command-line interface for moving device identities,
authentication, twins and modules from one Azure IoT Hub to another through
a JSON snapshot file. It supports an interactive menu and non-interactive
export/import commands.

Architecture:
    - Uses RegistryClient as the shared HTTP layer for all API calls
    - SasTokenManager signs requests from the service connection string
    - ExportDevicesUseCase / ImportDevicesUseCase orchestrate the workflow
    - JsonSnapshotStore reads and writes the snapshot file

Environment Variables (all optional, CLI flags take precedence):
    - IOTHUB_SOURCE_CONNECTION_STRING: Source hub service connection string
    - IOTHUB_DEST_CONNECTION_STRING: Destination hub service connection string
    - IOTHUB_EXPORT_FILE: Snapshot path (default: export.json)
    - IOTHUB_DEVICE_LIMIT: Maximum devices to export (default: 1000)
    - IOTHUB_FORCE_TWIN_UPDATE: Overwrite twins unconditionally (default: true)
    - LOG_LEVEL: Logging level (default: INFO)

Example Usage:
    $ python main.py                                  # Interactive menu
    $ python main.py export --output export.json      # Export source hub
    $ python main.py import --all --yes               # Import every device
    $ python main.py import --prefix plant-a- --status disabled
    $ python main.py import --ids dev-1,dev-2 --no-force-twin
    $ python main.py -v export                         # Debug logging
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence

from dotenv import load_dotenv

load_dotenv()

# Local imports
from src.hubmigrate.api import (
    ConfigurationError,
    ConnectionString,
    RegistryClient,
    SasTokenManager,
    SnapshotFileError,
)
from src.hubmigrate.config import MigrationSettings
from src.hubmigrate.migration.adapters import IoTHubRegistry, JsonSnapshotStore, SnapshotMapper
from src.hubmigrate.migration.domain import (
    DeviceSelection,
    DeviceSnapshot,
    ExplicitIds,
    ExportResult,
    ImportReport,
    PrefixMatch,
    SelectAll,
    StatusMatch,
)
from src.hubmigrate.migration.use_cases import ExportDevicesUseCase, ImportDevicesUseCase

DEVICE_TABLE_LIMIT = 20


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def print_banner() -> None:
    print("=" * 60)
    print("IoT Hub Device Manager")
    print("Export and Import Utility")
    print("=" * 60)


def parse_connection_string(value: Optional[str], role: str) -> ConnectionString:
    """Validate a connection string before any network call.

    Raises:
        ConfigurationError: If the value is empty or malformed
    """
    if not value or not value.strip():
        raise ConfigurationError(f"{role} connection string cannot be empty")
    return ConnectionString.parse(value)


# ============================================
# Export
# ============================================

async def run_export(
    connection: ConnectionString,
    output_file: str,
    device_limit: int,
    api_version: str,
) -> ExportResult:
    """Export the source hub and write the snapshot file.

    Args:
        connection: Parsed source connection string
        output_file: Snapshot path to write
        device_limit: Maximum number of devices to export
        api_version: IoT Hub REST api-version

    Returns:
        ExportResult of the run
    """
    mapper = SnapshotMapper()
    store = JsonSnapshotStore(mapper)

    print(f"[Main] Connecting to {connection.host_name}...")
    async with RegistryClient(SasTokenManager(connection), api_version=api_version) as client:
        use_case = ExportDevicesUseCase(
            registry=IoTHubRegistry(client),
            mapper=mapper,
            device_limit=device_limit,
        )
        result = await use_case.execute()

    if result.success or result.exported:
        print(f"[Main] Saving to {output_file}...")
        store.save(result.document, output_file)
        print(f"[Main] Successfully exported {result.exported} device(s) to {output_file}")

    return result


def print_export_summary(result: ExportResult) -> None:
    print("\n" + "=" * 60)
    print("EXPORT COMPLETE" if result.success else "EXPORT INCOMPLETE")
    print("=" * 60)
    print(f"Devices listed:    {result.listed}")
    print(f"Devices exported:  {result.exported}")
    print(f"Devices failed:    {result.failed}")
    print(f"Module warnings:   {result.module_warnings}")
    if result.truncated:
        print("\n⚠️  The device limit was reached; the export may be incomplete.")
    for error in result.error_details[:10]:
        print(f"  - {error}")


# ============================================
# Import
# ============================================

async def run_import(
    connection: ConnectionString,
    devices: Sequence[DeviceSnapshot],
    force_twin_update: bool,
    api_version: str,
) -> ImportReport:
    """Reconcile the selected devices into the destination hub."""
    print(f"[Main] Connecting to {connection.host_name}...")
    async with RegistryClient(SasTokenManager(connection), api_version=api_version) as client:
        use_case = ImportDevicesUseCase(
            registry=IoTHubRegistry(client),
            force_twin_update=force_twin_update,
        )
        return await use_case.execute(devices)


def print_import_summary(report: ImportReport) -> None:
    print("\n" + "=" * 60)
    print("IMPORT ABORTED" if report.aborted else "IMPORT COMPLETE")
    print("=" * 60)
    print(f"Devices: {report.device_success} succeeded, {report.device_failure} failed "
          f"({report.devices_created} created, {report.devices_existing} already present)")
    print(f"Modules: {report.module_success} succeeded, {report.module_failure} failed "
          f"({report.modules_created} created, {report.modules_existing} already present)")
    print(f"Total entities imported: {report.total_succeeded}")
    if report.aborted:
        print(f"\n⚠️  Stopped early: {report.abort_reason}")
    for error in report.error_details[:10]:
        print(f"  - {error}")
    if len(report.error_details) > 10:
        print(f"  ... and {len(report.error_details) - 10} more errors")


def build_selection(
    devices: Sequence[DeviceSnapshot],
    select_all: bool = False,
    prefixes: Optional[Sequence[str]] = None,
    status: Optional[str] = None,
    ids: Optional[str] = None,
) -> DeviceSelection:
    """Accumulate the non-interactive selection flags into one selection."""
    selection = DeviceSelection(devices)
    if select_all:
        selection.apply(SelectAll())
    for prefix in prefixes or ():
        selection.apply(PrefixMatch(prefix))
    if status:
        selection.apply(StatusMatch(status))
    if ids:
        outcome = selection.apply(ExplicitIds.from_csv(ids))
        for device_id in outcome.unknown_ids:
            print(f"Device {device_id} not found in the export file, skipping.")
    return selection


def print_device_table(devices: Sequence[DeviceSnapshot], selection: DeviceSelection) -> None:
    print(f"\nDevice List (first {DEVICE_TABLE_LIMIT} shown):")
    print("-" * 47)
    print(f"| {'ID':<18} | {'Status':<8} | {'Selected':<10} |")
    print("-" * 47)
    for device in devices[:DEVICE_TABLE_LIMIT]:
        selected = "Yes" if device.device_id in selection else "No"
        print(f"| {device.device_id[:18]:<18} | {(device.status or 'N/A')[:8]:<8} | {selected:<10} |")
    print("-" * 47)
    if len(devices) > DEVICE_TABLE_LIMIT:
        print(f"... and {len(devices) - DEVICE_TABLE_LIMIT} more devices.")


def interactive_selection(devices: Sequence[DeviceSnapshot]) -> DeviceSelection:
    """Selection sub-menu; criteria accumulate until the user is done."""
    selection = DeviceSelection(devices)

    while True:
        print("\nSelect devices to import:")
        print("1. Select all devices")
        print("2. Select by prefix")
        print("3. Select by status (enabled/disabled)")
        print("4. Select individual devices")
        print("5. Done selecting")
        choice = input("\nSelect an option (1-5): ").strip()

        if choice == "1":
            selection.apply(SelectAll())
            print(f"Selected all {len(selection)} devices.")
        elif choice == "2":
            prefix = input("Enter device ID prefix: ").strip()
            if prefix:
                outcome = selection.apply(PrefixMatch(prefix))
                print(f"Selected {outcome.matched} devices with prefix '{prefix}'.")
        elif choice == "3":
            status = input("Enter status (enabled/disabled): ").strip().lower()
            if status in ("enabled", "disabled"):
                outcome = selection.apply(StatusMatch(status))
                print(f"Selected {outcome.matched} {status} devices.")
            else:
                print("Invalid status. Use 'enabled' or 'disabled'.")
        elif choice == "4":
            print_device_table(devices, selection)
            value = input("Enter device IDs to select (comma-separated, or 'all' for all): ").strip()
            if value.lower() == "all":
                selection.apply(SelectAll())
                print(f"Selected all {len(selection)} devices.")
            elif value:
                outcome = selection.apply(ExplicitIds.from_csv(value))
                for device_id in outcome.unknown_ids:
                    print(f"Device {device_id} not found, skipping.")
                print(f"Selected {outcome.matched} device(s).")
        elif choice == "5":
            break
        else:
            print("Invalid option. Please try again.")

        print(f"\nCurrently selected: {len(selection)} devices")

    return selection


def confirm(prompt: str) -> bool:
    return input(f"{prompt} (y/n): ").strip().lower() in ("y", "yes")


def load_snapshot(path: str) -> Sequence[DeviceSnapshot]:
    document = JsonSnapshotStore().load(path)
    if document.skipped_entries:
        print(f"[Main] Skipped {document.skipped_entries} malformed device entries")
    return document.devices


# ============================================
# Commands
# ============================================

async def cmd_export(args: argparse.Namespace, settings: MigrationSettings) -> int:
    try:
        connection = parse_connection_string(
            args.connection_string or settings.source_connection_string, "Source"
        )
    except ConfigurationError as e:
        print(f"[Main] Configuration error: {e.message}")
        return 1

    device_limit = args.device_limit if args.device_limit is not None else settings.device_limit
    if device_limit < 1:
        print("[Main] --device-limit must be at least 1")
        return 1

    try:
        result = await run_export(
            connection,
            args.output or settings.export_file,
            device_limit,
            settings.api_version,
        )
    except SnapshotFileError as e:
        print(f"[Main] Export error: {e.message}")
        return 1

    print_export_summary(result)
    return 0 if result.success else 1


async def cmd_import(args: argparse.Namespace, settings: MigrationSettings) -> int:
    try:
        connection = parse_connection_string(
            args.connection_string or settings.dest_connection_string, "Destination"
        )
    except ConfigurationError as e:
        print(f"[Main] Configuration error: {e.message}")
        return 1

    input_file = args.input or settings.export_file
    try:
        devices = load_snapshot(input_file)
    except SnapshotFileError as e:
        print(f"[Main] {e.message}")
        return 1

    if not devices:
        print("[Main] No devices found in the export file.")
        return 1

    print(f"\nFound {len(devices)} devices in the export file.")
    selection = build_selection(
        devices,
        select_all=args.all,
        prefixes=args.prefix,
        status=args.status,
        ids=args.ids,
    )
    if not len(selection):
        print("[Main] No devices selected for import.")
        return 1

    print(f"\nSelected {len(selection)} devices for import.")
    if not args.yes and not confirm("Proceed with import?"):
        print("Import canceled.")
        return 0

    force_twin_update = settings.force_twin_update and not args.no_force_twin
    report = await run_import(connection, selection.devices, force_twin_update, settings.api_version)
    print_import_summary(report)

    if report.aborted:
        return 1
    return 2 if report.device_failure or report.module_failure else 0


# ============================================
# Interactive mode
# ============================================

async def interactive_export(settings: MigrationSettings) -> None:
    print("\n--- Export Devices ---")
    value = input("Enter source IoT Hub Connection String: ").strip()
    try:
        connection = parse_connection_string(value or settings.source_connection_string, "Source")
    except ConfigurationError as e:
        print(e.message)
        return

    output_file = input(f"Enter output file name (default: {settings.export_file}): ").strip()
    try:
        result = await run_export(
            connection,
            output_file or settings.export_file,
            settings.device_limit,
            settings.api_version,
        )
    except SnapshotFileError as e:
        print(f"Export error: {e.message}")
        return
    print_export_summary(result)


async def interactive_import(settings: MigrationSettings) -> None:
    print("\n--- Import Devices ---")
    input_file = input(f"Enter input file name (default: {settings.export_file}): ").strip()
    try:
        devices = load_snapshot(input_file or settings.export_file)
    except SnapshotFileError as e:
        print(e.message)
        return

    value = input("Enter destination IoT Hub Connection String: ").strip()
    try:
        connection = parse_connection_string(value or settings.dest_connection_string, "Destination")
    except ConfigurationError as e:
        print(e.message)
        return

    if not devices:
        print("No devices found in the export file.")
        return

    print(f"\nFound {len(devices)} devices in the export file.")
    selection = interactive_selection(devices)
    if not len(selection):
        print("No devices selected for import.")
        return

    print(f"\nSelected {len(selection)} devices for import.")
    if not confirm("Proceed with import?"):
        print("Import canceled.")
        return

    report = await run_import(connection, selection.devices, settings.force_twin_update, settings.api_version)
    print_import_summary(report)


async def interactive_menu(settings: MigrationSettings) -> int:
    print_banner()
    while True:
        print("\nIoT Hub Device Manager - Main Menu")
        print("1. Export devices from IoT Hub")
        print("2. Import devices to IoT Hub")
        print("3. Exit")
        choice = input("\nSelect an option (1-3): ").strip()

        if choice == "1":
            await interactive_export(settings)
        elif choice == "2":
            await interactive_import(settings)
        elif choice == "3":
            return 0
        else:
            print("Invalid option. Please try again.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Migrate Azure IoT Hub devices, twins and modules through a JSON snapshot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                                   # Interactive menu
  python main.py export --output export.json       # Export source hub to export.json
  python main.py import --all --yes                # Import every device without prompting
  python main.py import --prefix plant-a-          # Import devices whose id starts with plant-a-
  python main.py import --status disabled          # Import disabled devices
  python main.py import --ids dev-1,dev-2          # Import specific devices
        """
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging (overrides $LOG_LEVEL)"
    )
    subparsers = parser.add_subparsers(dest="command")

    export_parser = subparsers.add_parser("export", help="Export devices from the source hub")
    export_parser.add_argument(
        "--connection-string",
        metavar="CS",
        help="Source hub connection string (default: $IOTHUB_SOURCE_CONNECTION_STRING)"
    )
    export_parser.add_argument(
        "--output",
        metavar="FILE",
        help="Snapshot file to write (default: $IOTHUB_EXPORT_FILE or export.json)"
    )
    export_parser.add_argument(
        "--device-limit",
        type=int,
        metavar="N",
        help="Maximum number of devices to export (default: $IOTHUB_DEVICE_LIMIT or 1000)"
    )

    import_parser = subparsers.add_parser("import", help="Import devices into the destination hub")
    import_parser.add_argument(
        "--connection-string",
        metavar="CS",
        help="Destination hub connection string (default: $IOTHUB_DEST_CONNECTION_STRING)"
    )
    import_parser.add_argument(
        "--input",
        metavar="FILE",
        help="Snapshot file to read (default: $IOTHUB_EXPORT_FILE or export.json)"
    )

    selection_group = import_parser.add_argument_group("Device Selection (criteria accumulate)")
    selection_group.add_argument(
        "--all",
        action="store_true",
        help="Select every device in the snapshot"
    )
    selection_group.add_argument(
        "--prefix",
        action="append",
        metavar="P",
        help="Select devices whose id starts with P, ignoring case (repeatable)"
    )
    selection_group.add_argument(
        "--status",
        choices=["enabled", "disabled"],
        help="Select devices with this status"
    )
    selection_group.add_argument(
        "--ids",
        metavar="A,B,C",
        help="Select devices by comma-separated ids"
    )

    import_parser.add_argument(
        "--no-force-twin",
        action="store_true",
        help="Send the destination twin's etag instead of overwriting unconditionally"
    )
    import_parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Skip the confirmation prompt"
    )
    return parser


async def run(args: argparse.Namespace, settings: MigrationSettings) -> int:
    start_time = datetime.now(timezone.utc)
    print(f"[Main] Starting at {start_time.isoformat()}")

    if args.command == "export":
        exit_code = await cmd_export(args, settings)
    else:
        exit_code = await cmd_import(args, settings)

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    print(f"\n[Main] Completed in {duration:.1f} seconds")
    return exit_code


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = MigrationSettings.from_env(load_env_file=False)
    except ConfigurationError as e:
        print(f"[Main] Configuration error: {e.message}")
        return 1

    setup_logging("DEBUG" if args.verbose else settings.log_level)

    try:
        if args.command is None:
            return asyncio.run(interactive_menu(settings))
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        print("\n[Main] Interrupted")
        return 130
    except EOFError:
        print("\n[Main] Input closed, exiting")
        return 1


if __name__ == "__main__":
    sys.exit(main())
