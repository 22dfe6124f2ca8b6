"""Domain layer - Pure domain entities and port interfaces.

This layer contains:
- Entities: Snapshot value objects and result records
- Capabilities: Gateway capability classification
- Selection: Device selection criteria for import
- Ports: Abstract interfaces defining contracts for adapters

No infrastructure dependencies allowed in this layer.
"""

from .capabilities import ClassificationRule, classify, classify_with_rule
from .entities import (
    AuthDescriptor,
    AuthType,
    CapabilityFlags,
    DeviceIdentity,
    DeviceSnapshot,
    DeviceStatus,
    ExportResult,
    ImportReport,
    ModuleIdentity,
    ModuleSnapshot,
    SnapshotDocument,
    TwinSnapshot,
)
from .ports import UNCONDITIONAL_ETAG, IRegistry, ISnapshotMapper, ISnapshotStore
from .selection import (
    DeviceSelection,
    ExplicitIds,
    PrefixMatch,
    SelectAll,
    SelectionOutcome,
    StatusMatch,
    select,
)

__all__ = [
    # Snapshot Entities
    "AuthDescriptor",
    "AuthType",
    "CapabilityFlags",
    "DeviceSnapshot",
    "DeviceStatus",
    "ModuleSnapshot",
    "SnapshotDocument",
    "TwinSnapshot",
    # Write-side records
    "DeviceIdentity",
    "ModuleIdentity",
    # Result Entities
    "ExportResult",
    "ImportReport",
    # Classification
    "ClassificationRule",
    "classify",
    "classify_with_rule",
    # Selection
    "DeviceSelection",
    "ExplicitIds",
    "PrefixMatch",
    "SelectAll",
    "SelectionOutcome",
    "StatusMatch",
    "select",
    # Ports
    "UNCONDITIONAL_ETAG",
    "IRegistry",
    "ISnapshotMapper",
    "ISnapshotStore",
]
