import pytest

from facility_ingest.ingestion.context import TenantContext
from facility_ingest.ingestion.topic_parser import ConfigEvent
from facility_ingest.provisioning.device_config import DeviceConfig
from facility_ingest.provisioning.migrator import (
    CREATED,
    MIGRATED,
    UNCHANGED,
    ReprovisioningMigrator,
)
from facility_ingest.storage import paths

from conftest import FIXED_NOW

MAC = "AA:BB:CC:DD:EE:FF"


def config(building="buildingA", location="locA", gender="pria", slot="3", mac=MAC, **extra):
    values = dict(
        company="acme",
        mac_address=mac,
        building=building,
        location=location,
        gender=gender,
        device_number=slot,
        toilet_number=slot,
        dispenser_number=slot,
    )
    values.update(extra)
    return DeviceConfig(**values)


def seed_config(store, cfg, version=1):
    cfg.version = version
    store.seed(cfg.collection, cfg.document_key, cfg.to_document())
    store.seed(paths.building_collection("acme"), cfg.building, {"company": "acme"})
    store.seed(
        paths.location_collection("acme", cfg.building),
        cfg.location,
        {"company": "acme", "building": cfg.building},
    )


def seed_sensor(store, sensor_type, building="buildingA", location="locA", gender="pria", slot="3"):
    store.seed(
        paths.sensor_collection("acme", gender, building, sensor_type),
        paths.device_key(building, location, gender, slot),
        {"location": location, "slot": slot, "status": "good", "amount": "70"},
    )


@pytest.fixture
def migrator(store, meter, clock):
    return ReprovisioningMigrator(store, meter, genders=("pria", "wanita"), clock=clock)


async def apply(migrator, tenant, cfg):
    return await migrator.apply(tenant, ConfigEvent(config=cfg, raw_topic=f"config/acme/{cfg.mac_address}"))


class TestNewDevice:

    @pytest.mark.asyncio
    async def test_creates_ancestors_and_config(self, migrator, store, tenant):
        result = await apply(migrator, tenant, config())

        assert result.path == CREATED
        assert result.version == 1
        assert store.all("buildings/acme") == {"buildingA": {"company": "acme"}}
        assert store.all("locations/acme/buildingA") == {
            "locA": {"company": "acme", "building": "buildingA"}
        }
        assert "acme" in store.all(paths.DEVICE_CONFIGS)
        doc = store.all("device_configs/acme/pria")["buildingA_locA_pria_3"]
        assert doc["mac_address"] == MAC
        assert doc["version"] == 1
        assert doc["updated_at"] == FIXED_NOW


class TestSamePlacement:

    @pytest.mark.asyncio
    async def test_bumps_version(self, migrator, store, tenant):
        seed_config(store, config(), version=4)

        result = await apply(migrator, tenant, config(wifi_ssid="new-ssid"))

        assert result.path == UNCHANGED
        doc = store.all("device_configs/acme/pria")["buildingA_locA_pria_3"]
        assert doc["version"] == 5
        assert doc["wifi_ssid"] == "new-ssid"
        assert store.ops("delete") == []


class TestRelocation:

    @pytest.mark.asyncio
    async def test_moves_sensor_records_and_replaces_config(self, migrator, store, tenant):
        seed_config(store, config())
        seed_sensor(store, "bau")
        seed_sensor(store, "sabun")

        result = await apply(migrator, tenant, config(building="buildingB"))

        assert result.path == MIGRATED
        assert sorted(result.moved_types) == ["bau", "sabun"]
        for sensor_type in ("bau", "sabun"):
            assert store.all(f"sensors/acme/pria/buildingA/{sensor_type}") == {}
            moved = store.all(f"sensors/acme/pria/buildingB/{sensor_type}")["buildingB_locA_pria_3"]
            assert moved["location"] == "locA"
            assert moved["slot"] == "3"
            assert moved["status"] == "good"
            assert moved["amount"] == "70"

        configs = store.all("device_configs/acme/pria")
        assert "buildingA_locA_pria_3" not in configs
        assert configs["buildingB_locA_pria_3"]["version"] == 2

    @pytest.mark.asyncio
    async def test_record_keys_follow_the_per_type_slot(self, migrator, store, tenant):
        old = config(slot="9", toilet_number="1", dispenser_number="2")
        seed_config(store, old)
        seed_sensor(store, "baterai", slot="9")
        seed_sensor(store, "bau", slot="1")
        seed_sensor(store, "sabun", slot="2")
        # Odor record at the device-number key belongs to toilet 9, not this device
        seed_sensor(store, "bau", slot="9")

        await apply(
            migrator, tenant,
            config(building="buildingB", slot="9", toilet_number="4", dispenser_number="5"),
        )

        assert list(store.all("sensors/acme/pria/buildingB/baterai")) == ["buildingB_locA_pria_9"]
        assert list(store.all("sensors/acme/pria/buildingB/bau")) == ["buildingB_locA_pria_4"]
        assert list(store.all("sensors/acme/pria/buildingB/sabun")) == ["buildingB_locA_pria_5"]
        assert store.all("sensors/acme/pria/buildingB/sabun")["buildingB_locA_pria_5"]["slot"] == "5"
        assert list(store.all("sensors/acme/pria/buildingA/bau")) == ["buildingA_locA_pria_9"]
        assert store.all("sensors/acme/pria/buildingA/baterai") == {}

    @pytest.mark.asyncio
    async def test_orphaned_building_and_location_are_removed(self, migrator, store, tenant):
        seed_config(store, config())

        result = await apply(migrator, tenant, config(building="buildingB"))

        assert sorted(result.removed_ancestors) == ["building:buildingA", "location:buildingA/locA"]
        assert "buildingA" not in store.all("buildings/acme")
        assert store.all("locations/acme/buildingA") == {}
        assert "buildingB" in store.all("buildings/acme")
        assert "locA" in store.all("locations/acme/buildingB")

    @pytest.mark.asyncio
    async def test_location_with_other_devices_is_kept(self, migrator, store, tenant):
        seed_config(store, config())
        seed_config(store, config(slot="4", mac="11:22:33:44:55:66", gender="wanita"))

        result = await apply(migrator, tenant, config(building="buildingB"))

        assert result.removed_ancestors == []
        assert "buildingA" in store.all("buildings/acme")
        assert "locA" in store.all("locations/acme/buildingA")

    @pytest.mark.asyncio
    async def test_building_kept_when_other_location_still_used(self, migrator, store, tenant):
        seed_config(store, config())
        seed_config(store, config(location="locZ", slot="9", mac="11:22:33:44:55:66"))

        result = await apply(migrator, tenant, config(building="buildingB"))

        assert result.removed_ancestors == ["location:buildingA/locA"]
        assert "buildingA" in store.all("buildings/acme")
        assert "locZ" in store.all("locations/acme/buildingA")

    @pytest.mark.asyncio
    async def test_slot_change_keeps_ancestors(self, migrator, store, tenant):
        seed_config(store, config())
        seed_sensor(store, "okupansi")

        result = await apply(migrator, tenant, config(slot="8"))

        assert result.removed_ancestors == []
        assert store.all("sensors/acme/pria/buildingA/okupansi") == {
            "buildingA_locA_pria_8": {"location": "locA", "slot": "8", "status": "good", "amount": "70"}
        }
        assert set(store.all("device_configs/acme/pria")) == {"buildingA_locA_pria_8"}

    @pytest.mark.asyncio
    async def test_gender_change_is_detected_across_partitions(self, migrator, store, tenant):
        seed_config(store, config())
        seed_sensor(store, "tisu")

        result = await apply(migrator, tenant, config(gender="wanita"))

        assert result.path == MIGRATED
        assert store.all("device_configs/acme/pria") == {}
        assert store.all("device_configs/acme/wanita")["buildingA_locA_wanita_3"]["version"] == 2
        assert "buildingA_locA_wanita_3" in store.all("sensors/acme/wanita/buildingA/tisu")
        # building and location are unchanged, so nothing is orphaned
        assert result.removed_ancestors == []

    @pytest.mark.asyncio
    async def test_slot_is_derived_per_sensor_type(self, migrator, store, tenant):
        old = config(toilet_number="5", dispenser_number="2")
        seed_config(store, old)
        seed_sensor(store, "baterai", slot="3")
        seed_sensor(store, "okupansi", slot="5")
        seed_sensor(store, "sabun", slot="2")

        await apply(migrator, tenant, config(location="locB", toilet_number="6", dispenser_number="1"))

        base = "sensors/acme/pria/buildingA"
        assert set(store.all(f"{base}/baterai")) == {"buildingA_locB_pria_3"}
        assert set(store.all(f"{base}/okupansi")) == {"buildingA_locB_pria_6"}
        assert store.all(f"{base}/sabun")["buildingA_locB_pria_1"]["slot"] == "1"

    @pytest.mark.asyncio
    async def test_only_tenant_supported_types_are_moved(self, migrator, store):
        tenant = TenantContext(company_id="acme", sensor_types=("bau",))
        seed_config(store, config())
        seed_sensor(store, "bau")
        seed_sensor(store, "sabun")

        result = await apply(migrator, tenant, config(building="buildingB"))

        assert result.moved_types == ["bau"]
        assert "buildingA_locA_pria_3" in store.all("sensors/acme/pria/buildingA/sabun")

    @pytest.mark.asyncio
    async def test_failure_on_one_type_does_not_stop_the_rest(self, migrator, store, tenant, caplog):
        seed_config(store, config())
        seed_sensor(store, "bau")
        seed_sensor(store, "sabun")
        store.fail("merge", "sensors/acme/pria/buildingB/bau")

        result = await apply(migrator, tenant, config(building="buildingB"))

        assert result.moved_types == ["sabun"]
        # the old odor record survives because its replacement was never written
        assert "buildingA_locA_pria_3" in store.all("sensors/acme/pria/buildingA/bau")
        assert "Failed to move bau record" in caplog.text
        assert store.all("device_configs/acme/pria")["buildingB_locA_pria_3"]["version"] == 2

    @pytest.mark.asyncio
    async def test_orphan_counts_are_taken_before_old_config_is_deleted(self, migrator, store, tenant):
        seed_config(store, config())

        await apply(migrator, tenant, config(building="buildingB"))

        calls = store.calls
        old_delete = calls.index(("delete", "device_configs/acme/pria"))
        last_query = max(i for i, c in enumerate(calls) if c[0] == "query")
        assert last_query < old_delete
        assert calls.index(("delete", "buildings/acme")) > old_delete


@pytest.mark.asyncio
async def test_highest_version_wins_when_mac_is_duplicated(migrator, store, tenant, caplog):
    seed_config(store, config(), version=2)
    seed_config(store, config(gender="wanita"), version=5)

    previous = await migrator.find_previous(tenant, MAC)

    assert previous.gender == "wanita"
    assert previous.version == 5
    assert "2 configs reference" in caplog.text
