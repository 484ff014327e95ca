"""DeviceConfig — provisioning record for one device, parsed from a config message."""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional, Tuple

from facility_ingest.errors import ParseError
from facility_ingest.sensors.types import BATTERY, ODOR, OCCUPANCY, SOAP, TISSUE
from facility_ingest.storage import paths

# Positional order of the semicolon-separated config payload
PAYLOAD_FIELDS = (
    "building",
    "location",
    "gender",
    "device_number",
    "wifi_ssid",
    "wifi_password",
    "mqtt_server",
    "mqtt_port",
    "mqtt_user",
    "mqtt_password",
    "occupancy",
    "visitor",
    "tissue",
    "soap",
    "odor",
    "toilet_number",
    "dispenser_number",
    "is_outdoor",
    "detection_range",
    "tissue_weight",
)

IDENTITY_FIELDS = ("building", "location", "gender", "device_number")

# Which config field a sensor type publishes its slot under
SLOT_FIELD_BY_TYPE = {
    BATTERY: "device_number",
    OCCUPANCY: "toilet_number",
    ODOR: "toilet_number",
    TISSUE: "toilet_number",
    SOAP: "dispenser_number",
}


def _coerce_version(value: Any) -> int:
    # Older documents carry the version as a string or float
    try:
        return max(int(float(value)), 1)
    except (TypeError, ValueError, OverflowError):
        return 1


@dataclass
class DeviceConfig:
    company: str
    mac_address: str
    building: str
    location: str
    gender: str
    device_number: str
    wifi_ssid: str = ""
    wifi_password: str = ""
    mqtt_server: str = ""
    mqtt_port: str = ""
    mqtt_user: str = ""
    mqtt_password: str = ""
    occupancy: str = ""
    visitor: str = ""
    tissue: str = ""
    soap: str = ""
    odor: str = ""
    toilet_number: str = ""
    dispenser_number: str = ""
    is_outdoor: str = ""
    detection_range: str = ""
    tissue_weight: str = ""
    version: int = 1

    @property
    def collection(self) -> str:
        return paths.config_collection(self.company, self.gender)

    @property
    def document_key(self) -> str:
        return paths.device_key(self.building, self.location, self.gender, self.device_number)

    @property
    def placement(self) -> Tuple[str, str, str, str]:
        return (self.building, self.location, self.gender, self.device_number)

    def slot_for(self, sensor_type: str) -> Optional[str]:
        """Slot the device uses when publishing ``sensor_type``; None if unmapped or blank."""
        field_name = SLOT_FIELD_BY_TYPE.get(sensor_type)
        if field_name is None:
            return None
        return getattr(self, field_name) or None

    def to_document(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "DeviceConfig":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["version"] = _coerce_version(values.get("version"))
        for name in known - {"version"}:
            values[name] = "" if values.get(name) is None else str(values[name])
        return cls(**values)


def parse_config_payload(company: str, mac_address: str, payload: str) -> DeviceConfig:
    """Map a ``building;location;gender;device_number;...`` payload onto a DeviceConfig.

    Missing trailing fields become empty strings; extra fields are ignored.
    Raises ParseError when any identity field is missing.
    """
    parts = [part.strip() for part in payload.split(";")]
    values = dict(zip(PAYLOAD_FIELDS, parts))
    missing = [name for name in IDENTITY_FIELDS if not values.get(name)]
    if missing:
        raise ParseError(f"config payload missing {', '.join(missing)}")
    return DeviceConfig(company=company, mac_address=mac_address, **values)
