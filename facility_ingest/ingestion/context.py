"""TenantContext — company record resolved for each MQTT message."""

import logging
from dataclasses import dataclass, field
from typing import Tuple

from facility_ingest.errors import TenantGateError
from facility_ingest.sensors.types import DEVICE_SENSOR_TYPES
from facility_ingest.storage import paths
from facility_ingest.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    company_id: str
    sensor_types: Tuple[str, ...] = field(default=DEVICE_SENSOR_TYPES)


class TenantGate:
    """Loads the company document and refuses unknown or deactivated tenants."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def load(self, company: str) -> TenantContext:
        data = await self.store.get(paths.COMPANIES, company)
        if data is None:
            raise TenantGateError(company, "not found")
        if data.get("is_deactivated") is True:
            raise TenantGateError(company, "is deactivated")
        sensor_types = tuple(data.get("sensor_types") or DEVICE_SENSOR_TYPES)
        return TenantContext(company_id=company, sensor_types=sensor_types)
