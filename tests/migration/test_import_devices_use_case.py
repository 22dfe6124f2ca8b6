"""Tests for the ImportDevicesUseCase.

These tests use the in-memory registry from conftest as the destination hub,
covering creation, idempotence, failure isolation and the abort path.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.hubmigrate.api.auth import ConnectionString, SasTokenManager
from src.hubmigrate.api.client import RegistryClient
from src.hubmigrate.api.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    ConnectionError,
    InvalidCredentialsError,
    ServerError,
    ValidationError,
)
from src.hubmigrate.migration.adapters.iothub_registry import IoTHubRegistry
from src.hubmigrate.migration.adapters.snapshot_mapper import SnapshotMapper
from src.hubmigrate.migration.domain.entities import (
    AuthDescriptor,
    AuthType,
    CapabilityFlags,
    DeviceSnapshot,
    DeviceStatus,
    ModuleSnapshot,
    TwinSnapshot,
)
from src.hubmigrate.migration.domain.selection import DeviceSelection, PrefixMatch
from src.hubmigrate.migration.use_cases.export_devices import ExportDevicesUseCase
from src.hubmigrate.migration.use_cases.import_devices import ImportDevicesUseCase


def make_device(device_id: str, **kwargs) -> DeviceSnapshot:
    kwargs.setdefault("status", "enabled")
    kwargs.setdefault("authentication", AuthDescriptor.sas("cHJpbWFyeQ==", "c2Vjb25kYXJ5"))
    kwargs.setdefault("twin", TwinSnapshot.from_maps({"interval": 30}, {"site": "a"}))
    return DeviceSnapshot(device_id, **kwargs)


class TestDeviceCreation:
    """Tests for creating missing devices."""

    async def test_creates_device_and_merges_twin(self, registry):
        report = await ImportDevicesUseCase(registry).execute([make_device("dev-1")])

        assert report.device_success == 1
        assert report.device_failure == 0
        assert report.devices_created == 1
        assert report.completed_at is not None
        identity = registry.created_devices[0]
        assert identity.status == DeviceStatus.ENABLED
        assert identity.authentication.type == AuthType.SAS
        assert identity.gateway_capable is False
        assert registry.desired("dev-1") == {"interval": 30}
        assert registry.tags("dev-1") == {"site": "a"}

    async def test_existing_device_is_not_recreated(self, registry):
        registry.add_device("dev-1", desired={"old": True})

        report = await ImportDevicesUseCase(registry).execute([make_device("dev-1")])

        assert report.device_success == 1
        assert report.devices_existing == 1
        assert registry.created_devices == []
        assert registry.desired("dev-1") == {"old": True, "interval": 30}

    async def test_status_and_reason_carried_over(self, registry):
        device = make_device("dev-1", status="Disabled", status_reason="retired")

        await ImportDevicesUseCase(registry).execute([device])

        identity = registry.created_devices[0]
        assert identity.status == DeviceStatus.DISABLED
        assert identity.status_reason == "retired"
        assert registry.devices["dev-1"]["status"] == "disabled"

    async def test_unknown_status_falls_back_to_default(self, registry):
        await ImportDevicesUseCase(registry).execute([make_device("dev-1", status="paused")])

        assert registry.created_devices[0].status is None

    async def test_bare_device_is_regular(self, registry):
        device = DeviceSnapshot("bare")

        report = await ImportDevicesUseCase(registry).execute([device])

        assert report.device_success == 1
        identity = registry.created_devices[0]
        assert identity.gateway_capable is False
        assert identity.authentication is None
        assert registry.twin_updates == []

    async def test_edge_modules_make_device_gateway(self, registry):
        device = make_device("gw-1", modules=(ModuleSnapshot("$edgeHub"),))

        await ImportDevicesUseCase(registry).execute([device])

        assert registry.created_devices[0].gateway_capable is True

    async def test_capability_flag_makes_device_gateway(self, registry):
        device = make_device("gw-1", capabilities=CapabilityFlags(gateway_capable=True))

        await ImportDevicesUseCase(registry).execute([device])

        assert registry.created_devices[0].gateway_capable is True


class TestModules:
    """Tests for module reconciliation."""

    async def test_creates_modules_with_sas_only(self, registry):
        device = make_device("dev-1", modules=(
            ModuleSnapshot("sas-module", authentication=AuthDescriptor.sas("cA==", "cw==")),
            ModuleSnapshot("x509-module", authentication=AuthDescriptor.x509(AuthType.SELF_SIGNED, "AA", "BB")),
        ))

        report = await ImportDevicesUseCase(registry).execute([device])

        assert report.module_success == 2
        assert report.modules_created == 2
        sas_module, x509_module = registry.created_modules
        assert sas_module.authentication.type == AuthType.SAS
        assert x509_module.authentication is None

    async def test_module_twin_merged(self, registry):
        device = make_device("dev-1", modules=(
            ModuleSnapshot("filter", twin=TwinSnapshot.from_maps({"threshold": 5, "$version": 9})),
        ))

        await ImportDevicesUseCase(registry).execute([device])

        assert registry.desired("dev-1", "filter") == {"threshold": 5}

    async def test_existing_module_is_not_recreated(self, registry):
        registry.add_device("dev-1")
        registry.add_module("dev-1", "filter")

        report = await ImportDevicesUseCase(registry).execute([
            make_device("dev-1", modules=(ModuleSnapshot("filter"),)),
        ])

        assert report.module_success == 1
        assert report.modules_existing == 1
        assert registry.created_modules == []

    async def test_unresolved_module_id_counts_as_failure(self, registry):
        device = make_device("dev-1", modules=(ModuleSnapshot(None), ModuleSnapshot("ok")))

        report = await ImportDevicesUseCase(registry).execute([device])

        assert report.device_success == 1
        assert report.module_failure == 1
        assert report.module_success == 1
        assert "Module ID is missing" in report.error_details[0]

    async def test_module_failure_does_not_fail_device(self, registry):
        registry.fail("create_module", "dev-1", "bad", error=ValidationError("bad module id"))
        device = make_device("dev-1", modules=(ModuleSnapshot("bad"), ModuleSnapshot("good")))

        report = await ImportDevicesUseCase(registry).execute([device])

        assert report.device_success == 1
        assert report.module_failure == 1
        assert report.module_success == 1


class TestFailureIsolation:
    """Per-entity failures are counted and the loop continues."""

    async def test_middle_device_twin_failure(self, registry):
        registry.fail("update_twin", "dev-2", None, error=ServerError("twin update failed"))
        devices = [make_device("dev-1"), make_device("dev-2"), make_device("dev-3")]

        report = await ImportDevicesUseCase(registry).execute(devices)

        assert report.device_success == 2
        assert report.device_failure == 1
        assert report.aborted is False
        assert registry.desired("dev-3") == {"interval": 30}
        assert "dev-2" in report.error_details[0]

    async def test_create_failure_skips_twin_and_modules(self, registry):
        registry.fail("create_device", "dev-1", error=ValidationError("rejected"))
        device = make_device("dev-1", modules=(ModuleSnapshot("m"),))

        report = await ImportDevicesUseCase(registry).execute([device])

        assert report.device_failure == 1
        assert report.module_success == 0
        assert report.module_failure == 0
        assert not any(call[0] == "get_module" for call in registry.calls)

    async def test_error_messages_are_sanitized(self, registry):
        registry.fail(
            "create_device", "dev-1",
            error=ValidationError('bad body {"primaryKey": "c2VjcmV0"}'),
        )

        report = await ImportDevicesUseCase(registry).execute([make_device("dev-1")])

        assert "c2VjcmV0" not in report.error_details[0]


class TestAbort:
    """Losing the registry stops the import with counts preserved."""

    @pytest.mark.parametrize("error", [
        ConnectionError("connection refused"),
        InvalidCredentialsError("unauthorized"),
        CircuitOpenError(),
        ConfigurationError("SharedAccessKey is not valid base64"),
    ])
    async def test_fatal_error_aborts(self, registry, error):
        registry.fail("get_device", "dev-2", error=error)
        devices = [make_device("dev-1"), make_device("dev-2"), make_device("dev-3")]

        report = await ImportDevicesUseCase(registry).execute(devices)

        assert report.aborted is True
        assert report.abort_reason
        assert report.device_success == 1
        assert report.device_failure == 1
        assert "dev-3" not in registry.devices
        assert report.completed_at is not None

    async def test_fatal_error_in_module_aborts(self, registry):
        registry.fail("get_module", "dev-1", "m", error=ConnectionError("gone"))
        devices = [make_device("dev-1", modules=(ModuleSnapshot("m"),)), make_device("dev-2")]

        report = await ImportDevicesUseCase(registry).execute(devices)

        assert report.aborted is True
        assert report.device_success == 1
        assert report.module_failure == 1
        assert "dev-2" not in registry.devices


    async def test_unsignable_key_aborts_before_any_request(self):
        connection = ConnectionString("contoso.azure-devices.net", "iothubowner", "not*base64")
        client = RegistryClient(SasTokenManager(connection))
        client._session = MagicMock()
        devices = [make_device("dev-1"), make_device("dev-2"), make_device("dev-3")]

        report = await ImportDevicesUseCase(IoTHubRegistry(client)).execute(devices)

        assert report.aborted is True
        assert report.device_failure == 1
        assert "base64" in report.abort_reason
        client._session.request.assert_not_called()


class TestTwinConcurrency:
    """Tests for the unconditional vs etag-checked twin update toggle."""

    async def test_force_update_sends_wildcard(self, registry):
        await ImportDevicesUseCase(registry, force_twin_update=True).execute([make_device("dev-1")])

        assert registry.twin_updates == [("dev-1", None, "*")]
        assert ("get_twin", "dev-1", None) not in registry.calls

    async def test_etag_checked_update(self, registry):
        registry.add_device("dev-1")
        current_etag = registry.twins[("dev-1", None)]["etag"]

        report = await ImportDevicesUseCase(registry, force_twin_update=False).execute([make_device("dev-1")])

        assert report.device_success == 1
        assert registry.twin_updates == [("dev-1", None, current_etag)]

    async def test_stale_etag_is_device_failure(self, registry):
        registry.add_device("dev-1")
        stale = dict(registry.twins[("dev-1", None)], etag="stale")

        registry.get_twin = AsyncMock(return_value=stale)

        report = await ImportDevicesUseCase(registry, force_twin_update=False).execute([make_device("dev-1")])

        assert report.device_failure == 1
        assert "ETag" in report.error_details[0]


class TestEndToEnd:
    """Export, select and import across two registries."""

    async def test_prefix_selection_import(self, registry):
        document = SnapshotMapper().from_document({
            "exportDate": "2024-01-15T10:30:00Z",
            "devices": [
                {
                    "deviceId": "a-001",
                    "status": "enabled",
                    "authentication": {
                        "type": "sas",
                        "symmetricKey": {"primaryKey": "cHJpbWFyeQ==", "secondaryKey": "c2Vjb25kYXJ5"},
                    },
                    "modules": [],
                },
                {
                    "deviceId": "a-002",
                    "status": "disabled",
                    "authentication": {
                        "type": "selfSigned",
                        "x509Thumbprint": {"primaryThumbprint": "AA", "secondaryThumbprint": "BB"},
                    },
                    "modules": [{"moduleId": "$edgeAgent"}],
                },
            ],
        })
        selection = DeviceSelection(document.devices)
        selection.apply(PrefixMatch("a-0"))

        report = await ImportDevicesUseCase(registry).execute(selection.devices)

        assert len(selection) == 2
        assert report.device_success == 2
        assert report.module_success == 1
        gateway = next(d for d in registry.created_devices if d.device_id == "a-002")
        assert gateway.gateway_capable is True
        assert gateway.authentication.type == AuthType.SELF_SIGNED

    async def test_round_trip(self, source_registry, registry):
        export = await ExportDevicesUseCase(source_registry, SnapshotMapper()).execute()
        document = SnapshotMapper().from_document(SnapshotMapper().to_document(export.document))

        report = await ImportDevicesUseCase(registry).execute(document.devices)

        assert report.device_failure == 0
        assert report.module_failure == 0
        for device_id, source in source_registry.devices.items():
            copied = registry.devices[device_id]
            assert copied["status"] == source["status"]
            assert copied["authentication"]["type"] == source["authentication"]["type"]
            assert registry.desired(device_id).keys() == source_registry.desired(device_id).keys()
            assert registry.tags(device_id).keys() == source_registry.tags(device_id).keys()
        assert sorted(k for k in registry.modules if k[0] == "gateway-001") == sorted(
            k for k in source_registry.modules if k[0] == "gateway-001"
        )

    async def test_second_import_is_idempotent(self, source_registry, registry):
        export = await ExportDevicesUseCase(source_registry, SnapshotMapper()).execute()
        use_case = ImportDevicesUseCase(registry)

        first = await use_case.execute(export.document.devices)
        twins_after_first = {
            key: (dict(twin["tags"]), registry.desired(*key)) for key, twin in registry.twins.items()
        }
        second = await use_case.execute(export.document.devices)

        assert first.devices_created == 3
        assert second.devices_created == 0
        assert second.devices_existing == 3
        assert second.modules_created == 0
        assert {
            key: (dict(twin["tags"]), registry.desired(*key)) for key, twin in registry.twins.items()
        } == twins_after_first

    async def test_empty_selection(self, registry):
        report = await ImportDevicesUseCase(registry).execute([])

        assert report.devices_processed == 0
        assert report.aborted is False
