"""Use cases layer - Business logic orchestration for migration operations.

This layer contains use case classes that orchestrate the migration workflow:
- Export: read the source registry (via IRegistry) into a SnapshotDocument
  (via ISnapshotMapper)
- Import: reconcile selected snapshot devices into the destination registry

Use cases depend only on ports, not concrete implementations.
"""

from .export_devices import ExportDevicesUseCase
from .import_devices import ImportDevicesUseCase

__all__ = [
    "ExportDevicesUseCase",
    "ImportDevicesUseCase",
]
