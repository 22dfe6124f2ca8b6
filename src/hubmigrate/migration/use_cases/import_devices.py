"""Import Devices Use Case - Reconciles snapshot devices into a destination registry.

Workflow per device:
1. Check whether the device exists in the destination (via IRegistry)
2. Create it if missing: gateway flag from the classifier, authentication,
   status and status reason carried over; skip creation otherwise
3. Merge the twin (desired properties and tags)
4. For each module: existence check, create if missing, merge its twin

Reconciliation is idempotent: existing identities are never re-created and
twin merges are last-writer-wins unless etag checks are enabled. A failure
on one device or module is counted and the loop moves on; only losing the
registry altogether stops the import.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from ...api.error_sanitizer import sanitize_error_message
from ...api.exceptions import FATAL_REGISTRY_ERRORS
from ..domain.capabilities import ClassificationRule, classify_with_rule
from ..domain.entities import (
    AuthType,
    DeviceIdentity,
    DeviceSnapshot,
    ImportReport,
    ModuleIdentity,
    ModuleSnapshot,
    TwinSnapshot,
)
from ..domain.ports import UNCONDITIONAL_ETAG, IRegistry

logger = logging.getLogger(__name__)


class RegistryUnavailable(Exception):
    """Internal signal: a fatal registry error surfaced inside a module step."""

    def __init__(self, cause: Exception):
        super().__init__(str(cause))
        self.cause = cause


class ImportDevicesUseCase:
    """Orchestrates the import workflow.

    Example:
        use_case = ImportDevicesUseCase(
            registry=IoTHubRegistry(client),
            force_twin_update=True,
        )
        report = await use_case.execute(selection.devices)
        print(f"Succeeded: {report.total_succeeded}")
    """

    def __init__(self, registry: IRegistry, force_twin_update: bool = True):
        """Initialize the use case.

        Args:
            registry: Port for the destination registry
            force_twin_update: Overwrite twins unconditionally. When False the
                destination twin's current etag is sent and a concurrent
                change fails the update instead of being overwritten.
        """
        self.registry = registry
        self.force_twin_update = force_twin_update

    async def execute(self, devices: Iterable[DeviceSnapshot]) -> ImportReport:
        """Execute the import workflow over the selected devices.

        Args:
            devices: Devices to reconcile, in processing order

        Returns:
            ImportReport with success/failure counts
        """
        devices = list(devices)
        report = ImportReport()
        total = len(devices)

        logger.info(f"Starting import of {total} devices...")

        for index, device in enumerate(devices, start=1):
            logger.info(f"Processing device {index}/{total}: {device.device_id}")

            try:
                await self._reconcile_device(device, report)
            except FATAL_REGISTRY_ERRORS as e:
                report.device_failure += 1
                self._abort(report, device.device_id, e)
                break
            except Exception as e:
                report.device_failure += 1
                error_msg = f"Error processing device {device.device_id}: {sanitize_error_message(str(e))}"
                logger.error(error_msg)
                report.record_error(error_msg)
                continue

            report.device_success += 1

            try:
                await self._reconcile_modules(device, report)
            except RegistryUnavailable as e:
                self._abort(report, device.device_id, e.cause)
                break

        report.completed_at = datetime.now(timezone.utc)

        logger.info(
            f"Import completed in {report.duration_seconds:.2f}s: "
            f"devices {report.device_success} succeeded / {report.device_failure} failed, "
            f"modules {report.module_success} succeeded / {report.module_failure} failed"
        )
        if report.aborted:
            remaining = total - report.devices_processed
            logger.error(f"Import aborted; {remaining} device(s) were not attempted")

        return report

    def _abort(self, report: ImportReport, device_id: str, error: Exception) -> None:
        reason = sanitize_error_message(str(error))
        logger.error(f"Registry unreachable while processing {device_id}, stopping import: {reason}")
        report.aborted = True
        report.abort_reason = reason
        report.record_error(f"Import aborted at device {device_id}: {reason}")

    # ----------------------------------------
    # Device steps
    # ----------------------------------------

    def build_device_identity(self, device: DeviceSnapshot) -> DeviceIdentity:
        """Derive the identity to create for a device missing in the destination."""
        gateway_capable, rule = classify_with_rule(device.capabilities, device.modules)

        if rule == ClassificationRule.CAPABILITY_FLAG:
            logger.info(f"Device {device.device_id} is an IoT Edge device")
        elif rule == ClassificationRule.SYSTEM_MODULE:
            logger.info(f"Device {device.device_id} detected as IoT Edge device based on its modules")
        else:
            logger.debug(f"Device {device.device_id} is a regular device")

        status = device.parsed_status
        if device.status is not None and status is None:
            logger.warning(
                f"Device {device.device_id} has unrecognised status '{device.status}'; "
                f"the registry default applies"
            )

        if device.authentication is None:
            logger.debug(f"Device {device.device_id} has no usable authentication; the registry generates keys")

        return DeviceIdentity(
            device_id=device.device_id,
            gateway_capable=gateway_capable,
            authentication=device.authentication,
            status=status,
            status_reason=device.status_reason,
        )

    async def _reconcile_device(self, device: DeviceSnapshot, report: ImportReport) -> None:
        existing = await self.registry.get_device(device.device_id)

        if existing is not None:
            logger.info(f"Device {device.device_id} already exists. Skipping creation.")
            report.devices_existing += 1
        else:
            await self.registry.create_device(self.build_device_identity(device))
            logger.info(f"Created device {device.device_id}")
            report.devices_created += 1

        if device.twin is not None:
            await self._merge_twin(device.device_id, device.twin)
            logger.info(f"Updated twin for device {device.device_id}")

    async def _merge_twin(
        self,
        device_id: str,
        twin: TwinSnapshot,
        module_id: Optional[str] = None,
    ) -> None:
        etag = UNCONDITIONAL_ETAG
        if not self.force_twin_update:
            current = await self.registry.get_twin(device_id, module_id)
            if current and current.get("etag"):
                etag = current["etag"]

        await self.registry.update_twin(device_id, twin, etag=etag, module_id=module_id)

    # ----------------------------------------
    # Module steps
    # ----------------------------------------

    @staticmethod
    def build_module_identity(device_id: str, module: ModuleSnapshot) -> ModuleIdentity:
        """Only symmetric-key module authentication is replayed."""
        auth = module.authentication
        if auth is not None and auth.type != AuthType.SAS:
            logger.debug(
                f"Module {module.module_id} on {device_id} uses {auth.type.value}; "
                f"creating it without authentication"
            )
            auth = None
        return ModuleIdentity(device_id=device_id, module_id=module.module_id, authentication=auth)

    async def _reconcile_modules(self, device: DeviceSnapshot, report: ImportReport) -> None:
        if not device.modules:
            return

        logger.info(f"Processing {len(device.modules)} modules for device {device.device_id}")

        for module in device.modules:
            if module.module_id is None:
                error_msg = f"Module ID is missing for a module on device {device.device_id}"
                logger.warning(error_msg)
                report.module_failure += 1
                report.record_error(error_msg)
                continue

            try:
                await self._reconcile_module(device.device_id, module, report)
            except FATAL_REGISTRY_ERRORS as e:
                report.module_failure += 1
                raise RegistryUnavailable(e) from e
            except Exception as e:
                report.module_failure += 1
                error_msg = (
                    f"Error processing module {module.module_id} for device {device.device_id}: "
                    f"{sanitize_error_message(str(e))}"
                )
                logger.error(error_msg)
                report.record_error(error_msg)
                continue

            report.module_success += 1

    async def _reconcile_module(
        self,
        device_id: str,
        module: ModuleSnapshot,
        report: ImportReport,
    ) -> None:
        existing = await self.registry.get_module(device_id, module.module_id)

        if existing is not None:
            logger.info(f"Module {module.module_id} already exists for device {device_id}. Skipping creation.")
            report.modules_existing += 1
        else:
            await self.registry.create_module(self.build_module_identity(device_id, module))
            logger.info(f"Created module {module.module_id} for device {device_id}")
            report.modules_created += 1

        if module.twin is not None:
            await self._merge_twin(device_id, module.twin, module_id=module.module_id)
            logger.info(f"Updated twin for module {module.module_id} on device {device_id}")
