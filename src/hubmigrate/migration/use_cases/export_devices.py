"""Export Devices Use Case - Flattens a live registry into a SnapshotDocument.

Workflow:
1. List up to device_limit devices from the source registry (via IRegistry)
2. For each device, sequentially: fetch its twin, list its modules, fetch
   each module twin
3. Map everything to domain entities (via ISnapshotMapper)
4. Return the document plus export bookkeeping

A failing module twin still produces a module entry (with no twin and a
diagnostic note); a failing device is logged and left out. Only losing the
registry altogether ends the walk early.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from ...api.error_sanitizer import sanitize_error_message
from ...api.exceptions import FATAL_REGISTRY_ERRORS
from ..adapters.snapshot_mapper import resolve_module_id
from ..domain.entities import DeviceSnapshot, ExportResult, ModuleSnapshot, SnapshotDocument
from ..domain.ports import IRegistry, ISnapshotMapper

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_LIMIT = 1000


class ExportDevicesUseCase:
    """Orchestrates the export workflow.

    Example:
        use_case = ExportDevicesUseCase(
            registry=IoTHubRegistry(client),
            mapper=SnapshotMapper(),
            device_limit=1000,
        )
        result = await use_case.execute()
        JsonSnapshotStore().save(result.document, "export.json")
    """

    def __init__(
        self,
        registry: IRegistry,
        mapper: ISnapshotMapper,
        device_limit: int = DEFAULT_DEVICE_LIMIT,
    ):
        """Initialize the use case with its dependencies.

        Args:
            registry: Port for reading the source registry
            mapper: Port for building snapshot entities
            device_limit: Maximum number of devices to list
        """
        if device_limit < 1:
            raise ValueError("device_limit must be at least 1")
        self.registry = registry
        self.mapper = mapper
        self.device_limit = device_limit

    @property
    def effective_limit(self) -> int:
        """device_limit, capped by what one registry listing returns."""
        cap = self.registry.max_list_count
        if cap is not None and cap < self.device_limit:
            return cap
        return self.device_limit

    async def execute(self) -> ExportResult:
        """Execute the export workflow.

        Returns:
            ExportResult wrapping the SnapshotDocument
        """
        started_at = datetime.now(timezone.utc)
        limit = self.effective_limit
        if limit < self.device_limit:
            logger.warning(
                f"Device limit {self.device_limit} exceeds the registry listing maximum; "
                f"at most {limit} devices can be exported"
            )
        logger.info(f"Retrieving up to {limit} devices...")

        try:
            raw_devices = await self.registry.list_devices(limit)
        except Exception as e:
            error_msg = f"Failed to list devices: {sanitize_error_message(str(e))}"
            logger.error(error_msg)
            return ExportResult(
                document=SnapshotDocument(export_date=started_at),
                success=False,
                error_details=[error_msg],
            )

        total = len(raw_devices)
        truncated = total >= limit
        if truncated:
            logger.warning(
                f"Registry returned {total} devices, the listing limit. "
                f"Devices beyond the limit are not exported; raise the device limit "
                f"if the registry holds more."
            )

        logger.info(f"Found {total} devices. Starting export...")

        devices: list[DeviceSnapshot] = []
        errors: list[str] = []
        failed = 0
        module_warnings = 0
        aborted = False

        for index, raw in enumerate(raw_devices, start=1):
            device_id = raw.get("deviceId", "unknown")
            logger.info(f"Processing device {index}/{total}: {device_id}")

            try:
                snapshot, warnings = await self._export_device(raw)
            except FATAL_REGISTRY_ERRORS as e:
                error_msg = f"Registry unreachable while exporting {device_id}: {sanitize_error_message(str(e))}"
                logger.error(error_msg)
                errors.append(error_msg)
                failed += 1
                aborted = True
                break
            except Exception as e:
                error_msg = f"Error processing device {device_id}: {sanitize_error_message(str(e))}"
                logger.error(error_msg)
                errors.append(error_msg)
                failed += 1
                continue

            devices.append(snapshot)
            module_warnings += warnings

        document = SnapshotDocument(
            export_date=datetime.now(timezone.utc),
            devices=tuple(devices),
        )

        duration = (datetime.now(timezone.utc) - started_at).total_seconds()
        logger.info(
            f"Export completed in {duration:.2f}s: {len(devices)} exported, "
            f"{failed} failed, {module_warnings} module warnings"
        )

        return ExportResult(
            document=document,
            listed=total,
            failed=failed,
            module_warnings=module_warnings,
            truncated=truncated,
            error_details=errors,
            success=not aborted,
        )

    async def _export_device(self, raw: dict[str, Any]) -> tuple[DeviceSnapshot, int]:
        """Build one DeviceSnapshot; returns it with the module warning count."""
        device_id = raw["deviceId"]

        twin = await self.registry.get_twin(device_id)
        raw_modules = await self.registry.list_modules(device_id)

        modules: list[ModuleSnapshot] = []
        warnings = 0

        for raw_module in raw_modules:
            module_id = resolve_module_id(raw_module)
            try:
                module_twin = await self.registry.get_twin(device_id, module_id) if module_id else None
                modules.append(self.mapper.map_module(raw_module, module_twin))
            except FATAL_REGISTRY_ERRORS:
                raise
            except Exception as e:
                note = sanitize_error_message(str(e))
                logger.warning(
                    f"Could not process module {module_id} for device {device_id}: {note}"
                )
                modules.append(self.mapper.map_module(raw_module, None, export_error=note))
                warnings += 1

        return self.mapper.map_device(raw, twin, modules), warnings
