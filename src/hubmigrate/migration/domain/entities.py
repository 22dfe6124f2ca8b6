"""Domain entities for migration operations.

These are pure data structures with no infrastructure dependencies.
Snapshot entities are immutable value objects: they are built once during
export (from the source registry) or parsed once during import (from the
snapshot document) and consumed by the use cases.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

# Twin keys maintained by the registry itself; never replayed.
RESERVED_TWIN_KEYS = frozenset({"$metadata", "$version"})


class DeviceStatus(str, Enum):
    """Registry device status."""

    ENABLED = "enabled"
    DISABLED = "disabled"

    @classmethod
    def parse(cls, value: Any) -> Optional["DeviceStatus"]:
        """Case-insensitive parse; anything unrecognised yields None."""
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class AuthType(str, Enum):
    """Authentication mechanism kinds carried in a snapshot."""

    SAS = "sas"
    SELF_SIGNED = "selfSigned"
    CERTIFICATE_AUTHORITY = "certificateAuthority"

    @property
    def is_x509(self) -> bool:
        return self in (AuthType.SELF_SIGNED, AuthType.CERTIFICATE_AUTHORITY)


@dataclass(frozen=True)
class SymmetricKey:
    primary_key: str
    secondary_key: str


@dataclass(frozen=True)
class X509Thumbprint:
    primary_thumbprint: Optional[str] = None
    secondary_thumbprint: Optional[str] = None


@dataclass(frozen=True)
class AuthDescriptor:
    """Tagged union over authentication kind.

    A ``sas`` descriptor carries both symmetric keys; ``selfSigned`` and
    ``certificateAuthority`` carry thumbprints (which the registry leaves
    empty for CA-signed devices).
    """

    type: AuthType
    symmetric_key: Optional[SymmetricKey] = None
    x509_thumbprint: Optional[X509Thumbprint] = None

    def __post_init__(self):
        if self.type == AuthType.SAS and self.symmetric_key is None:
            raise ValueError("sas authentication requires a symmetric key")
        if self.type.is_x509 and self.x509_thumbprint is None:
            raise ValueError(f"{self.type.value} authentication requires a thumbprint block")

    @classmethod
    def sas(cls, primary_key: str, secondary_key: str) -> "AuthDescriptor":
        return cls(AuthType.SAS, symmetric_key=SymmetricKey(primary_key, secondary_key))

    @classmethod
    def x509(
        cls,
        auth_type: AuthType,
        primary_thumbprint: Optional[str] = None,
        secondary_thumbprint: Optional[str] = None,
    ) -> "AuthDescriptor":
        return cls(
            auth_type,
            x509_thumbprint=X509Thumbprint(primary_thumbprint, secondary_thumbprint),
        )


@dataclass(frozen=True)
class CapabilityFlags:
    """Device capability flags; gateway_capable maps to the registry's iotEdge."""

    gateway_capable: bool = False


def strip_reserved(values: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Copy a twin map without the registry-maintained keys."""
    if not values:
        return {}
    return {k: v for k, v in values.items() if k not in RESERVED_TWIN_KEYS}


@dataclass(frozen=True)
class TwinSnapshot:
    """Desired properties and tags of a device or module twin.

    Both maps never contain RESERVED_TWIN_KEYS; build instances through
    from_maps() when the source may include them.
    """

    desired: dict[str, Any] = field(default_factory=dict)
    tags: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_maps(
        cls,
        desired: Optional[Mapping[str, Any]] = None,
        tags: Optional[Mapping[str, Any]] = None,
    ) -> "TwinSnapshot":
        return cls(desired=strip_reserved(desired), tags=strip_reserved(tags))

    def to_patch(self) -> dict[str, Any]:
        """Render the twin update body sent to the registry."""
        return {
            "tags": dict(self.tags),
            "properties": {"desired": dict(self.desired)},
        }


@dataclass(frozen=True)
class ModuleSnapshot:
    """One module under a device.

    module_id is None only for document entries whose key could not be
    resolved; the importer counts those as module failures.
    export_error carries the diagnostic note when the module twin could not
    be read during export.
    """

    module_id: Optional[str]
    authentication: Optional[AuthDescriptor] = None
    twin: Optional[TwinSnapshot] = None
    export_error: Optional[str] = None


@dataclass(frozen=True)
class DeviceSnapshot:
    """Domain entity representing one exported device.

    connection_state, last_activity_time, cloud_to_device_message_count and
    parent_scopes are informational and never replayed on import.
    status keeps the raw string so that selection can match it textually;
    parsed_status gives the enum view used when creating the device.
    """

    device_id: str
    etag: Optional[str] = None
    status: Optional[str] = None
    status_reason: Optional[str] = None
    connection_state: Optional[str] = None
    last_activity_time: Optional[str] = None
    cloud_to_device_message_count: int = 0
    authentication: Optional[AuthDescriptor] = None
    capabilities: Optional[CapabilityFlags] = None
    parent_scopes: tuple[str, ...] = ()
    twin: Optional[TwinSnapshot] = None
    modules: tuple[ModuleSnapshot, ...] = ()

    def __post_init__(self):
        if not isinstance(self.device_id, str) or not self.device_id.strip():
            raise ValueError("deviceId must be a non-empty string")

    @property
    def parsed_status(self) -> Optional[DeviceStatus]:
        return DeviceStatus.parse(self.status)

    @property
    def module_ids(self) -> list[str]:
        return [m.module_id for m in self.modules if m.module_id]


@dataclass(frozen=True)
class SnapshotDocument:
    """The persisted interchange form: export timestamp plus devices.

    skipped_entries counts malformed document entries dropped while parsing
    (missing or duplicate deviceId); exports always produce zero.
    """

    export_date: Optional[datetime]
    devices: tuple[DeviceSnapshot, ...] = ()
    skipped_entries: int = 0

    @property
    def device_ids(self) -> list[str]:
        return [d.device_id for d in self.devices]

    def __len__(self) -> int:
        return len(self.devices)


# ============================================
# Write-side records
# ============================================


@dataclass(frozen=True)
class DeviceIdentity:
    """What the importer asks the registry to create for a new device."""

    device_id: str
    gateway_capable: bool = False
    authentication: Optional[AuthDescriptor] = None
    status: Optional[DeviceStatus] = None
    status_reason: Optional[str] = None


@dataclass(frozen=True)
class ModuleIdentity:
    """What the importer asks the registry to create for a new module."""

    device_id: str
    module_id: str
    authentication: Optional[AuthDescriptor] = None


# ============================================
# Result Entities
# ============================================


@dataclass
class ExportResult:
    """Result of an export operation.

    Wraps the SnapshotDocument with the bookkeeping gathered while walking
    the source registry.
    """

    document: SnapshotDocument
    listed: int = 0
    failed: int = 0
    module_warnings: int = 0
    truncated: bool = False
    error_details: list[str] = field(default_factory=list)
    success: bool = True

    @property
    def exported(self) -> int:
        return len(self.document.devices)

    def to_dict(self) -> dict[str, Any]:
        return {
            "listed": self.listed,
            "exported": self.exported,
            "failed": self.failed,
            "module_warnings": self.module_warnings,
            "truncated": self.truncated,
            "success": self.success,
        }


@dataclass
class ImportReport:
    """Running totals for an import, threaded through the reconciliation loop.

    device_success/device_failure and module_success/module_failure are the
    headline counts; the created/existing counters break successes down by
    whether the identity had to be created.
    """

    device_success: int = 0
    device_failure: int = 0
    module_success: int = 0
    module_failure: int = 0
    devices_created: int = 0
    devices_existing: int = 0
    modules_created: int = 0
    modules_existing: int = 0
    error_details: list[str] = field(default_factory=list)
    aborted: bool = False
    abort_reason: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def devices_processed(self) -> int:
        return self.device_success + self.device_failure

    @property
    def total_succeeded(self) -> int:
        return self.device_success + self.module_success

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def record_error(self, message: str) -> None:
        self.error_details.append(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "devices": {
                "succeeded": self.device_success,
                "failed": self.device_failure,
                "created": self.devices_created,
                "existing": self.devices_existing,
            },
            "modules": {
                "succeeded": self.module_success,
                "failed": self.module_failure,
                "created": self.modules_created,
                "existing": self.modules_existing,
            },
            "total_succeeded": self.total_succeeded,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
        }
