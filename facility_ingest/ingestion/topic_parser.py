import logging
from dataclasses import dataclass
from typing import Optional, Union

from facility_ingest.errors import ParseError
from facility_ingest.provisioning.device_config import DeviceConfig, parse_config_payload
from facility_ingest.storage import paths

logger = logging.getLogger(__name__)

SENSOR_PREFIX = "sensor"
CONFIG_PREFIX = "config"


@dataclass(frozen=True)
class DeviceIdentity:
    """Where a sensor reading belongs. ``slot`` None means a location aggregate."""

    company: str
    building: str
    location: str
    gender: str
    sensor_type: str
    slot: Optional[str] = None

    @property
    def is_aggregate(self) -> bool:
        return self.slot is None

    @property
    def collection(self) -> str:
        return paths.sensor_collection(self.company, self.gender, self.building, self.sensor_type)

    @property
    def document_key(self) -> str:
        if self.slot is None:
            return paths.aggregate_key(self.location, self.gender)
        return paths.device_key(self.building, self.location, self.gender, self.slot)


@dataclass
class SensorEvent:
    identity: DeviceIdentity
    payload: str
    raw_topic: str

    @property
    def company(self) -> str:
        return self.identity.company


@dataclass
class ConfigEvent:
    config: DeviceConfig
    raw_topic: str

    @property
    def company(self) -> str:
        return self.config.company


@dataclass
class Ignored:
    reason: str
    raw_topic: str


ParsedMessage = Union[SensorEvent, ConfigEvent, Ignored]


def parse_message(topic: str, payload: bytes) -> ParsedMessage:
    """
    Parse an MQTT topic and payload into a typed event.

    Handles:
        sensor/{company}/{building}/{location}/{gender}/{type}[/{slot}]
        config/{company}/{mac_address}[/...]   payload: building;location;gender;...

    Never raises; anything unrecognised comes back as Ignored.
    """
    text = payload.decode("utf-8", errors="replace").strip()
    parts = topic.split("/")
    prefix = parts[0]

    if prefix == SENSOR_PREFIX:
        if len(parts) not in (6, 7) or not all(parts[1:]):
            return Ignored(f"sensor topic has {len(parts)} segments", topic)
        _, company, building, location, gender, sensor_type, *rest = parts
        identity = DeviceIdentity(
            company=company,
            building=building,
            location=location,
            gender=gender,
            sensor_type=sensor_type,
            slot=rest[0] if rest else None,
        )
        return SensorEvent(identity=identity, payload=text, raw_topic=topic)

    if prefix == CONFIG_PREFIX:
        if len(parts) < 3 or not parts[1] or not parts[2]:
            return Ignored(f"config topic has {len(parts)} segments", topic)
        try:
            config = parse_config_payload(parts[1], parts[2], text)
        except ParseError as e:
            return Ignored(str(e), topic)
        return ConfigEvent(config=config, raw_topic=topic)

    return Ignored(f"unknown prefix '{prefix}'", topic)
