"""
SensorStateEngine — applies one sensor reading to the store.

Fetches the previous record, merges the new state, appends a log entry when
the sensor's rule says the transition is worth keeping, and reports whether
a notification should go out. Delivery is left to the caller.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from facility_ingest.errors import ParseError
from facility_ingest.ingestion.topic_parser import DeviceIdentity, SensorEvent
from facility_ingest.metering.usage_meter import READ, WRITE, UsageMeter
from facility_ingest.sensors.rules import SensorRule, rule_for
from facility_ingest.storage import paths
from facility_ingest.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Reading:
    status: str
    amount: Optional[str] = None
    slot: Optional[str] = None


@dataclass
class NotificationTrigger:
    audience: str
    identity: DeviceIdentity
    title: str
    body: str


@dataclass
class SensorUpdate:
    identity: DeviceIdentity
    record: Dict[str, Any]
    previous_status: Optional[str] = None
    logged: bool = False
    notification: Optional[NotificationTrigger] = None


def parse_reading(rule: SensorRule, payload: str) -> Reading:
    """Split ``status[;amount][;slot]`` according to the rule's shape."""
    parts = payload.split(";")
    if len(parts) not in (rule.field_count, rule.field_count + 1):
        raise ParseError(
            f"{rule.sensor_type} payload expects {rule.field_count} or "
            f"{rule.field_count + 1} fields, got {len(parts)}"
        )
    status = parts[0].strip()
    if not status:
        raise ParseError(f"{rule.sensor_type} payload has an empty status")
    amount = parts[1].strip() if rule.has_amount else None
    slot = parts[rule.field_count].strip() if len(parts) > rule.field_count else None
    return Reading(status=status, amount=amount, slot=slot or None)


class SensorStateEngine:
    def __init__(
        self,
        store: DocumentStore,
        meter: UsageMeter,
        log_ttl_days: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.meter = meter
        self.log_ttl_days = log_ttl_days
        self._clock = clock

    async def apply(self, event: SensorEvent) -> Optional[SensorUpdate]:
        """Persist ``event``. Returns None when the reading was dropped."""
        identity = event.identity
        if identity.is_aggregate:
            return await self._apply_aggregate(identity, event.payload)

        rule = rule_for(identity.sensor_type)
        if rule is None:
            logger.info(f"No rule for sensor type '{identity.sensor_type}', dropping {event.raw_topic}")
            return None

        try:
            reading = parse_reading(rule, event.payload)
        except ParseError as e:
            logger.info(f"Dropping {event.raw_topic}: {e}")
            return None

        company = identity.company
        existing = await self.store.get(identity.collection, identity.document_key)
        self.meter.record_op(company, READ, 1 if existing else 0)
        previous = existing.get("status") if existing else None

        now = self._clock()
        record: Dict[str, Any] = {
            "location": identity.location,
            "slot": reading.slot or identity.slot,
            "status": reading.status,
            "last_updated": now,
        }
        if rule.has_amount:
            record["amount"] = reading.amount

        await self.store.merge(identity.collection, identity.document_key, record)
        self.meter.record_op(company, WRITE)
        logger.info(f"Real-time data updated: {identity.document_key} ({identity.sensor_type}={reading.status})")

        logged = False
        if rule.should_log(previous, reading.status):
            await self._append_log(identity, reading.status, now)
            logged = True

        notification = None
        if rule.audience and rule.should_notify(previous, reading.status):
            title, body = rule.render(
                building=identity.building,
                location=identity.location,
                gender=identity.gender,
                slot=record["slot"],
                amount=reading.amount or "",
            )
            notification = NotificationTrigger(rule.audience, identity, title, body)

        return SensorUpdate(
            identity=identity,
            record=record,
            previous_status=previous,
            logged=logged,
            notification=notification,
        )

    async def _apply_aggregate(self, identity: DeviceIdentity, payload: str) -> Optional[SensorUpdate]:
        """Location-level reading: no previous-state lookup, always logged."""
        if not payload:
            logger.info(f"Dropping empty aggregate reading for {identity.collection}")
            return None
        company = identity.company

        await self.store.merge(
            paths.sensor_building_collection(company, identity.gender), identity.building, {}
        )
        self.meter.record_op(company, WRITE)

        now = self._clock()
        record = {"location": identity.location, "status": payload, "last_updated": now}
        await self.store.merge(identity.collection, identity.document_key, record)
        self.meter.record_op(company, WRITE)

        await self._append_log(identity, payload, now)
        logger.info(f"Real-time data updated: {identity.document_key} ({identity.sensor_type}={payload})")
        return SensorUpdate(identity=identity, record=record, logged=True)

    async def _append_log(self, identity: DeviceIdentity, status: str, now: datetime) -> None:
        entry: Dict[str, Any] = {
            "sensor_type": identity.sensor_type,
            "building": identity.building,
            "location": identity.location,
            "gender": identity.gender,
            "slot": identity.slot,
            "status": status,
            "timestamp": now,
        }
        if self.log_ttl_days:
            entry["expire_at"] = now + timedelta(days=self.log_ttl_days)
        await self.store.add(paths.log_collection(identity.company, identity.sensor_type), entry)
        self.meter.record_op(identity.company, WRITE)
        logger.debug(f"Log saved for {identity.document_key}")
