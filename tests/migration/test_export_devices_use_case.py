"""Tests for the ExportDevicesUseCase.

These tests run the use case against the in-memory registry from conftest,
with failures injected per operation.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.hubmigrate.api.exceptions import ConnectionError, NotFoundError, ServerError
from src.hubmigrate.migration.adapters.iothub_registry import MAX_LIST_PAGE, IoTHubRegistry
from src.hubmigrate.migration.adapters.snapshot_mapper import SnapshotMapper
from src.hubmigrate.migration.domain.entities import AuthType, CapabilityFlags
from src.hubmigrate.migration.use_cases.export_devices import ExportDevicesUseCase


class TestExportDevicesUseCase:
    """Tests for ExportDevicesUseCase."""

    async def test_export_success(self, source_registry):
        use_case = ExportDevicesUseCase(source_registry, SnapshotMapper())

        result = await use_case.execute()

        assert result.success is True
        assert result.listed == 3
        assert result.exported == 3
        assert result.failed == 0
        assert result.module_warnings == 0
        assert result.truncated is False
        assert result.document.export_date is not None
        assert result.document.device_ids == ["sensor-001", "sensor-002", "gateway-001"]

    async def test_device_content(self, source_registry):
        result = await ExportDevicesUseCase(source_registry, SnapshotMapper()).execute()

        sensor = result.document.devices[0]
        assert sensor.status == "enabled"
        assert sensor.authentication.type == AuthType.SAS
        assert sensor.twin.desired == {"interval": 30}
        assert sensor.twin.tags == {"site": "plant-a"}
        assert sensor.modules == ()

        gateway = result.document.devices[2]
        assert gateway.capabilities == CapabilityFlags(gateway_capable=True)
        assert gateway.module_ids == ["$edgeAgent", "$edgeHub", "filter"]
        assert gateway.modules[2].twin.desired == {"threshold": 5}

    async def test_empty_registry(self, registry):
        result = await ExportDevicesUseCase(registry, SnapshotMapper()).execute()

        assert result.success is True
        assert result.exported == 0

    async def test_module_twin_failure_keeps_module(self, source_registry):
        source_registry.fail("get_twin", "gateway-001", "filter", error=ServerError("twin read failed"))

        result = await ExportDevicesUseCase(source_registry, SnapshotMapper()).execute()

        assert result.exported == 3
        assert result.module_warnings == 1
        filter_module = result.document.devices[2].modules[2]
        assert filter_module.module_id == "filter"
        assert filter_module.twin is None
        assert "twin read failed" in filter_module.export_error

    async def test_device_failure_is_omitted(self, source_registry):
        source_registry.fail("list_modules", "sensor-002", error=ServerError("modules failed"))

        result = await ExportDevicesUseCase(source_registry, SnapshotMapper()).execute()

        assert result.success is True
        assert result.failed == 1
        assert result.document.device_ids == ["sensor-001", "gateway-001"]
        assert "sensor-002" in result.error_details[0]

    async def test_missing_device_twin_is_tolerated(self, source_registry):
        del source_registry.twins[("sensor-001", None)]

        result = await ExportDevicesUseCase(source_registry, SnapshotMapper()).execute()

        assert result.document.devices[0].twin is None
        assert result.failed == 0

    async def test_list_failure(self, source_registry):
        source_registry.fail("list_devices", error=ServerError("listing failed"))

        result = await ExportDevicesUseCase(source_registry, SnapshotMapper()).execute()

        assert result.success is False
        assert result.exported == 0
        assert "listing failed" in result.error_details[0]

    async def test_connection_loss_stops_export(self, source_registry):
        source_registry.fail("get_twin", "sensor-002", None, error=ConnectionError("hub unreachable"))

        result = await ExportDevicesUseCase(source_registry, SnapshotMapper()).execute()

        assert result.success is False
        assert result.failed == 1
        assert result.document.device_ids == ["sensor-001"]
        assert ("get_twin", "gateway-001", None) not in source_registry.calls

    async def test_device_limit_marks_truncation(self, source_registry):
        result = await ExportDevicesUseCase(source_registry, SnapshotMapper(), device_limit=2).execute()

        assert result.truncated is True
        assert result.listed == 2
        assert result.document.device_ids == ["sensor-001", "sensor-002"]

    async def test_registry_listing_cap_marks_truncation(self, source_registry):
        source_registry.max_list_count = 2

        use_case = ExportDevicesUseCase(source_registry, SnapshotMapper(), device_limit=10)
        result = await use_case.execute()

        assert use_case.effective_limit == 2
        assert result.truncated is True
        assert result.listed == 2

    async def test_limit_below_cap_is_kept(self, source_registry):
        source_registry.max_list_count = 1000

        use_case = ExportDevicesUseCase(source_registry, SnapshotMapper(), device_limit=10)
        result = await use_case.execute()

        assert use_case.effective_limit == 10
        assert result.truncated is False
        assert result.listed == 3

    async def test_processing_is_sequential(self, source_registry):
        await ExportDevicesUseCase(source_registry, SnapshotMapper()).execute()

        order = [c for c in source_registry.calls if c[0] in ("get_twin", "list_modules")]
        assert order[:4] == [
            ("get_twin", "sensor-001", None),
            ("list_modules", "sensor-001"),
            ("get_twin", "sensor-002", None),
            ("list_modules", "sensor-002"),
        ]

    async def test_secrets_are_sanitized_in_errors(self, source_registry):
        source_registry.fail(
            "get_twin", "sensor-001", None,
            error=NotFoundError(
                resource_type="Twin",
                response_body="SharedAccessSignature sr=hub&sig=abc123&se=1",
            ),
        )

        result = await ExportDevicesUseCase(source_registry, SnapshotMapper()).execute()

        assert result.failed == 1
        assert "abc123" not in result.error_details[0]

    def test_invalid_device_limit(self, registry):
        with pytest.raises(ValueError):
            ExportDevicesUseCase(registry, SnapshotMapper(), device_limit=0)


class TestExportOverIoTHubRegistry:
    """The exporter against the real adapter with a mocked client."""

    @pytest.fixture
    def client(self):
        async def get(endpoint, params=None):
            if endpoint == "/devices":
                return [{"deviceId": f"dev-{i:04d}", "status": "enabled"} for i in range(params["top"])]
            if endpoint.endswith("/modules"):
                return []
            return {"properties": {"desired": {}}, "tags": {}}

        mock = MagicMock()
        mock.get = AsyncMock(side_effect=get)
        return mock

    async def test_limit_above_listing_maximum_is_flagged(self, client):
        use_case = ExportDevicesUseCase(IoTHubRegistry(client), SnapshotMapper(), device_limit=5000)

        result = await use_case.execute()

        assert client.get.await_args_list[0].kwargs["params"] == {"top": MAX_LIST_PAGE}
        assert result.listed == MAX_LIST_PAGE
        assert result.truncated is True

    async def test_limit_within_listing_maximum(self, client):
        result = await ExportDevicesUseCase(IoTHubRegistry(client), SnapshotMapper(), device_limit=3).execute()

        assert result.listed == 3
        assert result.exported == 3
        assert result.truncated is True
