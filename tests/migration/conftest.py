"""Shared fixtures for migration tests.

InMemoryRegistry is a hand-written IRegistry that behaves like a small hub:
identities, twins with etags, merge semantics on twin updates, and edge
system modules appearing when a gateway-capable device is created. Any
operation can be made to fail for a specific key via fail().
"""

import copy
from typing import Any, Optional

import pytest

from src.hubmigrate.api.exceptions import NotFoundError, PreconditionFailedError
from src.hubmigrate.migration.adapters.snapshot_mapper import render_authentication
from src.hubmigrate.migration.domain.capabilities import EDGE_AGENT_MODULE_ID, EDGE_HUB_MODULE_ID
from src.hubmigrate.migration.domain.entities import DeviceIdentity, ModuleIdentity, TwinSnapshot
from src.hubmigrate.migration.domain.ports import UNCONDITIONAL_ETAG, IRegistry

PRIMARY_KEY = "cHJpbWFyeS1rZXktZm9yLXRlc3Rz"
SECONDARY_KEY = "c2Vjb25kYXJ5LWtleS1mb3ItdGVzdHM="


def sas_auth(primary: str = PRIMARY_KEY, secondary: str = SECONDARY_KEY) -> dict[str, Any]:
    return {
        "type": "sas",
        "symmetricKey": {"primaryKey": primary, "secondaryKey": secondary},
        "x509Thumbprint": {"primaryThumbprint": None, "secondaryThumbprint": None},
    }


class InMemoryRegistry(IRegistry):
    """In-memory implementation of IRegistry for testing."""

    def __init__(self):
        self.devices: dict[str, dict[str, Any]] = {}
        self.modules: dict[tuple[str, str], dict[str, Any]] = {}
        self.twins: dict[tuple[str, Optional[str]], dict[str, Any]] = {}
        self.failures: dict[tuple, Exception] = {}
        self.calls: list[tuple] = []
        self.created_devices: list[DeviceIdentity] = []
        self.created_modules: list[ModuleIdentity] = []
        self.twin_updates: list[tuple[str, Optional[str], str]] = []
        self._etag_counter = 0

    # ----------------------------------------
    # Test setup helpers
    # ----------------------------------------

    def fail(self, operation: str, *key: Any, error: Exception) -> None:
        """Make operation raise error; without a key every call fails."""
        self.failures[(operation, *key)] = error

    def _check(self, operation: str, *key: Any) -> None:
        self.calls.append((operation, *key))
        error = self.failures.get((operation, *key)) or self.failures.get((operation,))
        if error is not None:
            raise error

    def _next_etag(self) -> str:
        self._etag_counter += 1
        return f"etag-{self._etag_counter}"

    def add_device(
        self,
        device_id: str,
        status: str = "enabled",
        iot_edge: bool = False,
        authentication: Optional[dict[str, Any]] = None,
        desired: Optional[dict[str, Any]] = None,
        tags: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        device = {
            "deviceId": device_id,
            "etag": self._next_etag(),
            "status": status,
            "statusReason": None,
            "connectionState": "Disconnected",
            "lastActivityTime": "2024-01-15T10:30:00Z",
            "cloudToDeviceMessageCount": 0,
            "authentication": authentication or sas_auth(),
            "capabilities": {"iotEdge": iot_edge},
        }
        self.devices[device_id] = device
        self.twins[(device_id, None)] = self._twin(device_id, None, desired, tags)
        return device

    def add_module(
        self,
        device_id: str,
        module_id: str,
        desired: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        module = {
            "deviceId": device_id,
            "moduleId": module_id,
            "etag": self._next_etag(),
            "authentication": sas_auth(),
        }
        self.modules[(device_id, module_id)] = module
        self.twins[(device_id, module_id)] = self._twin(device_id, module_id, desired, None)
        return module

    def _twin(
        self,
        device_id: str,
        module_id: Optional[str],
        desired: Optional[dict[str, Any]],
        tags: Optional[dict[str, Any]],
    ) -> dict[str, Any]:
        twin = {
            "deviceId": device_id,
            "etag": self._next_etag(),
            "tags": dict(tags or {}),
            "properties": {
                "desired": {**(desired or {}), "$metadata": {"$lastUpdated": "2024-01-15T10:30:00Z"}, "$version": 1},
                "reported": {"$metadata": {}, "$version": 1},
            },
        }
        if module_id:
            twin["moduleId"] = module_id
        return twin

    def desired(self, device_id: str, module_id: Optional[str] = None) -> dict[str, Any]:
        """Desired properties without the registry-maintained keys."""
        desired = self.twins[(device_id, module_id)]["properties"]["desired"]
        return {k: v for k, v in desired.items() if not k.startswith("$")}

    def tags(self, device_id: str) -> dict[str, Any]:
        return self.twins[(device_id, None)]["tags"]

    # ----------------------------------------
    # IRegistry
    # ----------------------------------------

    async def list_devices(self, max_count: int) -> list[dict[str, Any]]:
        self._check("list_devices")
        return [copy.deepcopy(d) for d in list(self.devices.values())[:max_count]]

    async def get_device(self, device_id: str) -> Optional[dict[str, Any]]:
        self._check("get_device", device_id)
        device = self.devices.get(device_id)
        return copy.deepcopy(device) if device else None

    async def get_twin(self, device_id: str, module_id: Optional[str] = None) -> Optional[dict[str, Any]]:
        self._check("get_twin", device_id, module_id)
        twin = self.twins.get((device_id, module_id))
        return copy.deepcopy(twin) if twin else None

    async def list_modules(self, device_id: str) -> list[dict[str, Any]]:
        self._check("list_modules", device_id)
        return [copy.deepcopy(m) for (d, _), m in self.modules.items() if d == device_id]

    async def get_module(self, device_id: str, module_id: str) -> Optional[dict[str, Any]]:
        self._check("get_module", device_id, module_id)
        module = self.modules.get((device_id, module_id))
        return copy.deepcopy(module) if module else None

    async def create_device(self, identity: DeviceIdentity) -> dict[str, Any]:
        self._check("create_device", identity.device_id)
        self.created_devices.append(identity)
        device = self.add_device(
            identity.device_id,
            status=identity.status.value if identity.status else "enabled",
            iot_edge=identity.gateway_capable,
            authentication=render_authentication(identity.authentication),
        )
        device["statusReason"] = identity.status_reason
        if identity.gateway_capable:
            # The hub provisions the edge runtime modules itself
            self.add_module(identity.device_id, EDGE_AGENT_MODULE_ID)
            self.add_module(identity.device_id, EDGE_HUB_MODULE_ID)
        return copy.deepcopy(device)

    async def create_module(self, identity: ModuleIdentity) -> dict[str, Any]:
        self._check("create_module", identity.device_id, identity.module_id)
        if identity.device_id not in self.devices:
            raise NotFoundError(resource_type="Device", resource_id=identity.device_id)
        self.created_modules.append(identity)
        module = self.add_module(identity.device_id, identity.module_id)
        if identity.authentication is not None:
            module["authentication"] = render_authentication(identity.authentication)
        return copy.deepcopy(module)

    async def update_twin(
        self,
        device_id: str,
        twin: TwinSnapshot,
        etag: str = UNCONDITIONAL_ETAG,
        module_id: Optional[str] = None,
    ) -> dict[str, Any]:
        self._check("update_twin", device_id, module_id)
        current = self.twins.get((device_id, module_id))
        if current is None:
            raise NotFoundError(resource_type="Twin", resource_id=device_id)
        if etag != UNCONDITIONAL_ETAG and etag != current["etag"]:
            raise PreconditionFailedError(f"ETag mismatch for twin {device_id}")

        current["tags"].update(twin.tags)
        current["properties"]["desired"].update(twin.desired)
        current["properties"]["desired"]["$version"] += 1
        current["etag"] = self._next_etag()
        self.twin_updates.append((device_id, module_id, etag))
        return copy.deepcopy(current)


@pytest.fixture
def registry():
    """Empty in-memory registry."""
    return InMemoryRegistry()


@pytest.fixture
def source_registry():
    """Registry with a regular device, a disabled device and an edge device."""
    reg = InMemoryRegistry()
    reg.add_device("sensor-001", desired={"interval": 30}, tags={"site": "plant-a"})
    reg.add_device("sensor-002", status="disabled", desired={"interval": 60})
    reg.add_device("gateway-001", iot_edge=True, tags={"role": "gateway"})
    reg.add_module("gateway-001", EDGE_AGENT_MODULE_ID)
    reg.add_module("gateway-001", EDGE_HUB_MODULE_ID)
    reg.add_module("gateway-001", "filter", desired={"threshold": 5})
    return reg
