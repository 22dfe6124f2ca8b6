"""Migration module - Clean Architecture implementation for registry migration.

Moves device identities, authentication, twins and modules from one IoT Hub
to another through a JSON snapshot document.

Architecture:
    domain/     - Pure domain entities, classification, selection and ports
    use_cases/  - Export and import orchestration
    adapters/   - Infrastructure implementations (IoT Hub API, JSON file)
"""

from .domain.entities import (
    AuthDescriptor,
    DeviceSnapshot,
    ExportResult,
    ImportReport,
    ModuleSnapshot,
    SnapshotDocument,
    TwinSnapshot,
)
from .domain.ports import IRegistry, ISnapshotMapper, ISnapshotStore

__all__ = [
    # Snapshot Entities
    "AuthDescriptor",
    "DeviceSnapshot",
    "ModuleSnapshot",
    "SnapshotDocument",
    "TwinSnapshot",
    # Result Entities
    "ExportResult",
    "ImportReport",
    # Ports
    "IRegistry",
    "ISnapshotMapper",
    "ISnapshotStore",
]
