"""
ReprovisioningMigrator — applies a device config message.

When a device's building/location/gender/slot assignment changes, its sensor
records are moved to the new keys and building/location ancestor records
that no longer have any config referencing them are removed.

Ancestor cleanup is best-effort: the reference count is taken before the
delete without a lock, so a device provisioned into the old building in
between can lose its ancestor record.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from facility_ingest.errors import StoreError
from facility_ingest.ingestion.context import TenantContext
from facility_ingest.ingestion.topic_parser import ConfigEvent
from facility_ingest.metering.usage_meter import READ, WRITE, UsageMeter
from facility_ingest.provisioning.device_config import DeviceConfig
from facility_ingest.storage import paths
from facility_ingest.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)

CREATED = "created"
UNCHANGED = "unchanged"
MIGRATED = "migrated"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MigrationResult:
    path: str
    version: int
    moved_types: List[str] = field(default_factory=list)
    removed_ancestors: List[str] = field(default_factory=list)


class ReprovisioningMigrator:
    def __init__(
        self,
        store: DocumentStore,
        meter: UsageMeter,
        genders: Sequence[str] = ("pria", "wanita"),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.meter = meter
        self.genders = tuple(genders)
        self._clock = clock

    async def apply(self, tenant: TenantContext, event: ConfigEvent) -> MigrationResult:
        new = event.config
        previous = await self.find_previous(tenant, new.mac_address)

        if previous is None:
            await self._upsert(tenant, new, version=1)
            logger.info(f"Provisioned new device {new.mac_address} as {new.document_key}")
            return MigrationResult(CREATED, 1)

        version = previous.version + 1
        if previous.placement == new.placement:
            await self._upsert(tenant, new, version)
            logger.info(f"Updated config {new.document_key} to version {version}")
            return MigrationResult(UNCHANGED, version)

        logger.info(
            f"Re-provisioning {new.mac_address}: {previous.document_key} -> {new.document_key}"
        )
        moved = await self._move_sensor_records(tenant, previous, new)
        removed = await self._retire_previous(tenant, previous, new)
        await self._upsert(tenant, new, version)
        return MigrationResult(MIGRATED, version, moved, removed)

    async def find_previous(self, tenant: TenantContext, mac_address: str) -> Optional[DeviceConfig]:
        """Config currently registered for ``mac_address`` in any gender partition."""
        found: List[DeviceConfig] = []
        for gender in self.genders:
            snaps = await self.store.query(
                paths.config_collection(tenant.company_id, gender), mac_address=mac_address
            )
            self.meter.record_op(tenant.company_id, READ, len(snaps))
            found.extend(DeviceConfig.from_document(s.data) for s in snaps)

        if not found:
            return None
        if len(found) > 1:
            logger.warning(
                f"{len(found)} configs reference {mac_address}: "
                f"{[c.document_key for c in found]}; using the highest version"
            )
        return max(found, key=lambda c: c.version)

    async def _move_sensor_records(
        self, tenant: TenantContext, old: DeviceConfig, new: DeviceConfig
    ) -> List[str]:
        company = tenant.company_id
        moved = []
        for sensor_type in tenant.sensor_types:
            old_slot, new_slot = old.slot_for(sensor_type), new.slot_for(sensor_type)
            if old_slot is None or new_slot is None:
                continue
            old_coll = paths.sensor_collection(company, old.gender, old.building, sensor_type)
            new_coll = paths.sensor_collection(company, new.gender, new.building, sensor_type)
            old_key = paths.device_key(old.building, old.location, old.gender, old_slot)
            new_key = paths.device_key(new.building, new.location, new.gender, new_slot)
            try:
                record = await self.store.get(old_coll, old_key)
                self.meter.record_op(company, READ, 1 if record else 0)
                if record is None:
                    continue

                record.update(location=new.location, slot=new_slot)
                # Write the new record before deleting the old one
                await self.store.merge(new_coll, new_key, record)
                self.meter.record_op(company, WRITE)
                if (old_coll, old_key) != (new_coll, new_key):
                    await self.store.delete(old_coll, old_key)
                    self.meter.record_op(company, WRITE)
                moved.append(sensor_type)
                logger.info(f"Moved {sensor_type} record {old_key} -> {new_key}")
            except StoreError:
                logger.exception(f"Failed to move {sensor_type} record {old_key} -> {new_key}")
        return moved

    async def _count_references(
        self, tenant: TenantContext, old: DeviceConfig, **equals
    ) -> int:
        """Configs matching ``equals`` in every gender partition, excluding ``old`` itself."""
        total = 0
        for gender in self.genders:
            snaps = await self.store.query(
                paths.config_collection(tenant.company_id, gender), **equals
            )
            self.meter.record_op(tenant.company_id, READ, len(snaps))
            total += sum(
                1 for s in snaps
                if (s.collection, s.key) != (old.collection, old.document_key)
            )
        return total

    async def _retire_previous(
        self, tenant: TenantContext, old: DeviceConfig, new: DeviceConfig
    ) -> List[str]:
        company = tenant.company_id
        # Counts are taken before the old config is deleted
        building_refs = await self._count_references(tenant, old, building=old.building)
        location_refs = await self._count_references(
            tenant, old, building=old.building, location=old.location
        )

        if (old.collection, old.document_key) != (new.collection, new.document_key):
            await self.store.delete(old.collection, old.document_key)
            self.meter.record_op(company, WRITE)

        removed = []
        if old.building != new.building and building_refs == 0:
            await self.store.delete(paths.building_collection(company), old.building)
            self.meter.record_op(company, WRITE)
            removed.append(f"building:{old.building}")

        old_place = (old.building, old.location)
        if old_place != (new.building, new.location) and location_refs == 0:
            await self.store.delete(paths.location_collection(company, old.building), old.location)
            self.meter.record_op(company, WRITE)
            removed.append(f"location:{old.building}/{old.location}")

        if removed:
            logger.info(f"Removed orphaned ancestors for {company}: {removed}")
        return removed

    async def _upsert(self, tenant: TenantContext, config: DeviceConfig, version: int) -> None:
        """Ensure ancestors exist, then write the config with ``version``."""
        company = tenant.company_id

        await self.store.merge(paths.building_collection(company), config.building, {"company": company})
        self.meter.record_op(company, WRITE)

        await self.store.merge(
            paths.location_collection(company, config.building),
            config.location,
            {"company": company, "building": config.building},
        )
        self.meter.record_op(company, WRITE)

        await self.store.merge(paths.DEVICE_CONFIGS, company, {})
        self.meter.record_op(company, WRITE)

        config.version = version
        document = config.to_document()
        document["updated_at"] = self._clock()
        await self.store.merge(config.collection, config.document_key, document)
        self.meter.record_op(company, WRITE)
