"""IoT Hub registry adapter.

This adapter implements IRegistry and wraps RegistryClient with the
device/module/twin endpoints of the IoT Hub service API. It owns the request
payload shapes; the use cases only see raw response dictionaries and domain
records.
"""

import logging
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import quote

from ...api.exceptions import NotFoundError
from ..domain.entities import AuthDescriptor, DeviceIdentity, ModuleIdentity, TwinSnapshot
from ..domain.ports import UNCONDITIONAL_ETAG, IRegistry
from .snapshot_mapper import render_authentication

if TYPE_CHECKING:
    from ...api.client import RegistryClient

logger = logging.getLogger(__name__)

# GET /devices accepts at most this many per call
MAX_LIST_PAGE = 1000


def _segment(value: str) -> str:
    # Module ids such as "$edgeAgent" must keep their "$"
    return quote(value, safe="$")


def _etag_header(etag: str) -> str:
    if etag == UNCONDITIONAL_ETAG or etag.startswith('"'):
        return etag
    return f'"{etag}"'


class IoTHubRegistry(IRegistry):
    """IoT Hub service API adapter for registry operations.

    Example:
        async with RegistryClient(SasTokenManager(conn)) as client:
            registry = IoTHubRegistry(client)
            device = await registry.get_device("dev-001")
    """

    max_list_count = MAX_LIST_PAGE

    def __init__(self, client: "RegistryClient"):
        self.client = client

    # ----------------------------------------
    # Reads
    # ----------------------------------------

    async def list_devices(self, max_count: int) -> list[dict[str, Any]]:
        if max_count > MAX_LIST_PAGE:
            logger.warning(
                f"Requested {max_count} devices but the registry lists at most "
                f"{MAX_LIST_PAGE} per call; capping"
            )
            max_count = MAX_LIST_PAGE
        result = await self.client.get("/devices", params={"top": max_count})
        return list(result or [])

    async def _get_or_none(self, endpoint: str) -> Optional[dict[str, Any]]:
        try:
            return await self.client.get(endpoint)
        except NotFoundError:
            return None

    async def get_device(self, device_id: str) -> Optional[dict[str, Any]]:
        return await self._get_or_none(f"/devices/{_segment(device_id)}")

    async def get_twin(
        self,
        device_id: str,
        module_id: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        return await self._get_or_none(self._twin_endpoint(device_id, module_id))

    async def list_modules(self, device_id: str) -> list[dict[str, Any]]:
        result = await self.client.get(f"/devices/{_segment(device_id)}/modules")
        return list(result or [])

    async def get_module(
        self,
        device_id: str,
        module_id: str,
    ) -> Optional[dict[str, Any]]:
        return await self._get_or_none(
            f"/devices/{_segment(device_id)}/modules/{_segment(module_id)}"
        )

    # ----------------------------------------
    # Writes
    # ----------------------------------------

    @staticmethod
    def _auth_payload(auth: Optional[AuthDescriptor]) -> Optional[dict[str, Any]]:
        payload = render_authentication(auth)
        if payload is None:
            return None
        # The service expects both blocks present on create
        payload.setdefault("symmetricKey", {"primaryKey": None, "secondaryKey": None})
        payload.setdefault("x509Thumbprint", {"primaryThumbprint": None, "secondaryThumbprint": None})
        return payload

    def build_device_payload(self, identity: DeviceIdentity) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "deviceId": identity.device_id,
            "capabilities": {"iotEdge": identity.gateway_capable},
        }
        auth = self._auth_payload(identity.authentication)
        if auth is not None:
            payload["authentication"] = auth
        if identity.status is not None:
            payload["status"] = identity.status.value
        if identity.status_reason is not None:
            payload["statusReason"] = identity.status_reason
        return payload

    def build_module_payload(self, identity: ModuleIdentity) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "deviceId": identity.device_id,
            "moduleId": identity.module_id,
        }
        auth = self._auth_payload(identity.authentication)
        if auth is not None:
            payload["authentication"] = auth
        return payload

    async def create_device(self, identity: DeviceIdentity) -> dict[str, Any]:
        return await self.client.put(
            f"/devices/{_segment(identity.device_id)}",
            self.build_device_payload(identity),
        )

    async def create_module(self, identity: ModuleIdentity) -> dict[str, Any]:
        return await self.client.put(
            f"/devices/{_segment(identity.device_id)}/modules/{_segment(identity.module_id)}",
            self.build_module_payload(identity),
        )

    async def update_twin(
        self,
        device_id: str,
        twin: TwinSnapshot,
        etag: str = UNCONDITIONAL_ETAG,
        module_id: Optional[str] = None,
    ) -> dict[str, Any]:
        return await self.client.patch(
            self._twin_endpoint(device_id, module_id),
            twin.to_patch(),
            headers={"If-Match": _etag_header(etag)},
        )

    @staticmethod
    def _twin_endpoint(device_id: str, module_id: Optional[str]) -> str:
        endpoint = f"/twins/{_segment(device_id)}"
        if module_id:
            endpoint += f"/modules/{_segment(module_id)}"
        return endpoint
