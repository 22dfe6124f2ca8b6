"""Port interfaces for migration operations.

Ports define the contracts between the domain/use cases and the infrastructure.
These are abstract base classes that adapters must implement.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases depend only on ports, not concrete implementations
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from .entities import (
    DeviceIdentity,
    DeviceSnapshot,
    ModuleIdentity,
    ModuleSnapshot,
    SnapshotDocument,
    TwinSnapshot,
)

# Concurrency token meaning "overwrite regardless of the current etag".
UNCONDITIONAL_ETAG = "*"


class IRegistry(ABC):
    """Port for device registry operations.

    Read operations return the registry's raw JSON dictionaries (mapped to
    entities by ISnapshotMapper); get operations return None when the entity
    does not exist. Write operations take domain records.
    """

    # Largest max_count a single list_devices call honours; None when unbounded
    max_list_count: Optional[int] = None

    @abstractmethod
    async def list_devices(self, max_count: int) -> list[dict[str, Any]]:
        """List up to max_count device identities in registry order."""
        ...

    @abstractmethod
    async def get_device(self, device_id: str) -> Optional[dict[str, Any]]:
        """Fetch a device identity, or None if absent."""
        ...

    @abstractmethod
    async def get_twin(
        self,
        device_id: str,
        module_id: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        """Fetch a device twin (or module twin when module_id is given)."""
        ...

    @abstractmethod
    async def list_modules(self, device_id: str) -> list[dict[str, Any]]:
        """List the module identities of a device in registry order."""
        ...

    @abstractmethod
    async def get_module(
        self,
        device_id: str,
        module_id: str,
    ) -> Optional[dict[str, Any]]:
        """Fetch a module identity, or None if absent."""
        ...

    @abstractmethod
    async def create_device(self, identity: DeviceIdentity) -> dict[str, Any]:
        """Create a device identity."""
        ...

    @abstractmethod
    async def create_module(self, identity: ModuleIdentity) -> dict[str, Any]:
        """Create a module identity."""
        ...

    @abstractmethod
    async def update_twin(
        self,
        device_id: str,
        twin: TwinSnapshot,
        etag: str = UNCONDITIONAL_ETAG,
        module_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Merge desired properties and tags into a device or module twin.

        Args:
            device_id: Target device
            twin: Desired properties and tags to merge
            etag: Concurrency token; UNCONDITIONAL_ETAG skips the check
            module_id: Target module, or None for the device twin
        """
        ...


class ISnapshotMapper(ABC):
    """Port for mapping between registry JSON, entities and document JSON."""

    @abstractmethod
    def map_module(
        self,
        raw_module: dict[str, Any],
        raw_twin: Optional[dict[str, Any]],
        export_error: Optional[str] = None,
    ) -> ModuleSnapshot:
        """Build a ModuleSnapshot from a registry module and its twin."""
        ...

    @abstractmethod
    def map_device(
        self,
        raw_device: dict[str, Any],
        raw_twin: Optional[dict[str, Any]],
        modules: list[ModuleSnapshot],
    ) -> DeviceSnapshot:
        """Build a DeviceSnapshot from a registry device, its twin and modules."""
        ...

    @abstractmethod
    def to_document(self, document: SnapshotDocument) -> dict[str, Any]:
        """Render a SnapshotDocument as the intermediate JSON object."""
        ...

    @abstractmethod
    def from_document(self, data: dict[str, Any]) -> SnapshotDocument:
        """Parse the intermediate JSON object, skipping malformed entries."""
        ...


class ISnapshotStore(ABC):
    """Port for persisting snapshot documents."""

    @abstractmethod
    def save(self, document: SnapshotDocument, path: str) -> None:
        """Write document to path."""
        ...

    @abstractmethod
    def load(self, path: str) -> SnapshotDocument:
        """Read a document from path."""
        ...
