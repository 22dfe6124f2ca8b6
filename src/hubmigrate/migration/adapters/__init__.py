"""Adapters layer - Infrastructure implementations for migration operations.

This layer contains concrete implementations of the ports defined in the domain layer:
- IoTHubRegistry: IoT Hub service API implementation of IRegistry
- SnapshotMapper: Document/registry mapping implementation of ISnapshotMapper
- JsonSnapshotStore: JSON file implementation of ISnapshotStore
"""

from .iothub_registry import IoTHubRegistry
from .json_snapshot_store import JsonSnapshotStore
from .snapshot_mapper import SnapshotMapper

__all__ = [
    "IoTHubRegistry",
    "JsonSnapshotStore",
    "SnapshotMapper",
]
