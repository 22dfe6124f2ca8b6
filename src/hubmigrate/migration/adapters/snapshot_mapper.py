"""Snapshot mapper adapter for transforming between registry, domain and document formats.

This adapter implements ISnapshotMapper and encapsulates every field-level
decision about the intermediate document: which registry fields are captured,
how authentication and twins are rendered, and how tolerant parsing is of
hand-edited or foreign-tool-produced files.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ..domain.entities import (
    AuthDescriptor,
    AuthType,
    CapabilityFlags,
    DeviceSnapshot,
    ModuleSnapshot,
    SnapshotDocument,
    TwinSnapshot,
)
from ..domain.ports import ISnapshotMapper

logger = logging.getLogger(__name__)

# Module key names seen in the wild, in lookup order. Export always writes
# the first one.
MODULE_ID_KEYS = ("moduleId", "Id", "id", "ModuleId")


def resolve_module_id(entry: dict[str, Any]) -> Optional[str]:
    """Return the first non-empty module key from MODULE_ID_KEYS."""
    for key in MODULE_ID_KEYS:
        value = entry.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def parse_authentication(raw: Any) -> Optional[AuthDescriptor]:
    """Parse an authentication block.

    Registry responses and snapshot documents share the same shape. Returns
    None when the block is absent, of an unknown type, or a sas block without
    both keys.
    """
    if not isinstance(raw, dict):
        return None

    auth_type = raw.get("type")
    if auth_type == AuthType.SAS.value:
        keys = raw.get("symmetricKey") or {}
        primary = keys.get("primaryKey") if isinstance(keys, dict) else None
        secondary = keys.get("secondaryKey") if isinstance(keys, dict) else None
        if not primary or not secondary:
            return None
        return AuthDescriptor.sas(str(primary), str(secondary))

    if auth_type in (AuthType.SELF_SIGNED.value, AuthType.CERTIFICATE_AUTHORITY.value):
        thumbprint = raw.get("x509Thumbprint")
        if not isinstance(thumbprint, dict):
            thumbprint = {}
        return AuthDescriptor.x509(
            AuthType(auth_type),
            thumbprint.get("primaryThumbprint"),
            thumbprint.get("secondaryThumbprint"),
        )

    return None


def render_authentication(auth: Optional[AuthDescriptor]) -> Optional[dict[str, Any]]:
    if auth is None:
        return None
    if auth.type == AuthType.SAS:
        return {
            "type": auth.type.value,
            "symmetricKey": {
                "primaryKey": auth.symmetric_key.primary_key,
                "secondaryKey": auth.symmetric_key.secondary_key,
            },
        }
    return {
        "type": auth.type.value,
        "x509Thumbprint": {
            "primaryThumbprint": auth.x509_thumbprint.primary_thumbprint,
            "secondaryThumbprint": auth.x509_thumbprint.secondary_thumbprint,
        },
    }


def parse_capabilities(raw: Any) -> Optional[CapabilityFlags]:
    if not isinstance(raw, dict):
        return None
    value = raw.get("iotEdge", False)
    if isinstance(value, str):
        value = value.strip().lower() == "true"
    return CapabilityFlags(gateway_capable=bool(value))


def render_capabilities(capabilities: Optional[CapabilityFlags]) -> Optional[dict[str, Any]]:
    if capabilities is None:
        return None
    return {"iotEdge": capabilities.gateway_capable}


def parse_twin(raw: Any) -> Optional[TwinSnapshot]:
    """Extract desired properties and tags; reserved keys are dropped."""
    if not isinstance(raw, dict):
        return None

    properties = raw.get("properties")
    desired = properties.get("desired") if isinstance(properties, dict) else None
    tags = raw.get("tags")

    return TwinSnapshot.from_maps(
        desired if isinstance(desired, dict) else None,
        tags if isinstance(tags, dict) else None,
    )


def render_twin(twin: Optional[TwinSnapshot]) -> Optional[dict[str, Any]]:
    if twin is None:
        return None
    return {
        "properties": {"desired": dict(twin.desired)},
        "tags": dict(twin.tags),
    }


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _parse_timestamp(iso_string: Any) -> Optional[datetime]:
    """Parse ISO 8601 timestamp string to datetime.

    Handles the 'Z' suffix; returns None for missing or unparseable values.
    """
    if not iso_string or not isinstance(iso_string, str):
        return None
    try:
        parsed = datetime.fromisoformat(iso_string.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SnapshotMapper(ISnapshotMapper):
    """Maps IoT Hub registry JSON and snapshot documents to domain entities.

    This class handles:
    - Registry device/module/twin responses -> DeviceSnapshot / ModuleSnapshot
    - SnapshotDocument <-> intermediate JSON document
    - Tolerant module key lookup (moduleId / Id / id / ModuleId)
    - Dropping malformed document entries instead of failing the whole file
    """

    def map_module(
        self,
        raw_module: dict[str, Any],
        raw_twin: Optional[dict[str, Any]],
        export_error: Optional[str] = None,
    ) -> ModuleSnapshot:
        return ModuleSnapshot(
            module_id=resolve_module_id(raw_module),
            authentication=parse_authentication(raw_module.get("authentication")),
            twin=parse_twin(raw_twin),
            export_error=export_error,
        )

    def map_device(
        self,
        raw_device: dict[str, Any],
        raw_twin: Optional[dict[str, Any]],
        modules: list[ModuleSnapshot],
    ) -> DeviceSnapshot:
        """Transform a registry device identity plus twin and modules.

        Raises:
            ValueError: If the registry record has no deviceId
        """
        return DeviceSnapshot(
            device_id=raw_device.get("deviceId"),
            etag=raw_device.get("etag"),
            status=_as_optional_str(raw_device.get("status")),
            status_reason=raw_device.get("statusReason"),
            connection_state=_as_optional_str(raw_device.get("connectionState")),
            last_activity_time=_as_optional_str(raw_device.get("lastActivityTime")),
            cloud_to_device_message_count=_as_int(raw_device.get("cloudToDeviceMessageCount")),
            authentication=parse_authentication(raw_device.get("authentication")),
            capabilities=parse_capabilities(raw_device.get("capabilities")),
            parent_scopes=tuple(str(s) for s in raw_device.get("parentScopes") or ()),
            twin=parse_twin(raw_twin),
            modules=tuple(modules),
        )

    # ----------------------------------------
    # Document rendering
    # ----------------------------------------

    def _render_module(self, module: ModuleSnapshot) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "moduleId": module.module_id,
            "authentication": render_authentication(module.authentication),
            "twin": render_twin(module.twin),
        }
        if module.export_error:
            entry["exportError"] = module.export_error
        return entry

    def _render_device(self, device: DeviceSnapshot) -> dict[str, Any]:
        return {
            "deviceId": device.device_id,
            "etag": device.etag,
            "status": device.status,
            "statusReason": device.status_reason,
            "connectionState": device.connection_state,
            "lastActivityTime": device.last_activity_time,
            "cloudToDeviceMessageCount": device.cloud_to_device_message_count,
            "authentication": render_authentication(device.authentication),
            "capabilities": render_capabilities(device.capabilities),
            "parentScopes": list(device.parent_scopes),
            "twin": render_twin(device.twin),
            "modules": [self._render_module(m) for m in device.modules],
        }

    def to_document(self, document: SnapshotDocument) -> dict[str, Any]:
        return {
            "exportDate": document.export_date.isoformat() if document.export_date else None,
            "devices": [self._render_device(d) for d in document.devices],
        }

    # ----------------------------------------
    # Document parsing
    # ----------------------------------------

    def _parse_module(self, device_id: str, entry: Any) -> ModuleSnapshot:
        if not isinstance(entry, dict):
            logger.warning(f"Device {device_id}: module entry is not an object")
            return ModuleSnapshot(module_id=None)

        module_id = resolve_module_id(entry)
        if module_id is None:
            logger.warning(
                f"Device {device_id}: module ID is missing. "
                f"Available properties: {', '.join(entry.keys())}"
            )

        return ModuleSnapshot(
            module_id=module_id,
            authentication=parse_authentication(entry.get("authentication")),
            twin=parse_twin(entry.get("twin")),
            export_error=_as_optional_str(entry.get("exportError")),
        )

    def _parse_device(self, entry: dict[str, Any]) -> DeviceSnapshot:
        device_id = entry.get("deviceId")
        raw_modules = entry.get("modules")
        if not isinstance(raw_modules, list):
            raw_modules = []

        raw_scopes = entry.get("parentScopes")
        if not isinstance(raw_scopes, list):
            raw_scopes = []

        return DeviceSnapshot(
            device_id=device_id,
            etag=_as_optional_str(entry.get("etag")),
            status=_as_optional_str(entry.get("status")),
            status_reason=_as_optional_str(entry.get("statusReason")),
            connection_state=_as_optional_str(entry.get("connectionState")),
            last_activity_time=_as_optional_str(entry.get("lastActivityTime")),
            cloud_to_device_message_count=_as_int(entry.get("cloudToDeviceMessageCount")),
            authentication=parse_authentication(entry.get("authentication")),
            capabilities=parse_capabilities(entry.get("capabilities")),
            parent_scopes=tuple(str(s) for s in raw_scopes),
            twin=parse_twin(entry.get("twin")),
            modules=tuple(self._parse_module(device_id, m) for m in raw_modules),
        )

    def from_document(self, data: dict[str, Any]) -> SnapshotDocument:
        """Parse the intermediate JSON object.

        An absent or non-array "devices" member is treated as zero devices.
        Entries without a usable deviceId, and repeats of an id already
        seen, are skipped and counted in skipped_entries.
        """
        export_date = _parse_timestamp(data.get("exportDate"))

        raw_devices = data.get("devices")
        if not isinstance(raw_devices, list):
            logger.warning("Snapshot has no 'devices' array; treating it as empty")
            raw_devices = []

        devices: list[DeviceSnapshot] = []
        seen: set[str] = set()
        skipped = 0

        for index, entry in enumerate(raw_devices):
            if not isinstance(entry, dict):
                logger.warning(f"Skipping device entry #{index}: not an object")
                skipped += 1
                continue

            try:
                device = self._parse_device(entry)
            except ValueError as e:
                logger.warning(f"Skipping device entry #{index}: {e}")
                skipped += 1
                continue

            if device.device_id in seen:
                logger.warning(
                    f"Skipping device entry #{index}: duplicate deviceId {device.device_id}"
                )
                skipped += 1
                continue

            seen.add(device.device_id)
            devices.append(device)

        return SnapshotDocument(
            export_date=export_date,
            devices=tuple(devices),
            skipped_entries=skipped,
        )
