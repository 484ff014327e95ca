"""Collection paths and document keys for every record the pipeline touches."""

SENSORS = "sensors"
SENSOR_LOGS = "sensor_logs"
REMINDERS = "reminders"
USERS = "users"
COMPANIES = "companies"
DEVICE_CONFIGS = "device_configs"
BUILDINGS = "buildings"
LOCATIONS = "locations"
USAGE_METRICS = "usage_metrics"


def sensor_collection(company: str, gender: str, building: str, sensor_type: str) -> str:
    return f"{SENSORS}/{company}/{gender}/{building}/{sensor_type}"


def sensor_building_collection(company: str, gender: str) -> str:
    """Container of per-building sensor groups; keyed by building."""
    return f"{SENSORS}/{company}/{gender}"


def device_key(building: str, location: str, gender: str, slot: str) -> str:
    return f"{building}_{location}_{gender}_{slot}"


def aggregate_key(location: str, gender: str) -> str:
    return f"{location}_{gender}"


def log_collection(company: str, sensor_type: str) -> str:
    return f"{SENSOR_LOGS}/{company}/{sensor_type}"


def reminder_collection(company: str) -> str:
    return f"{REMINDERS}/{company}"


def config_collection(company: str, gender: str) -> str:
    return f"{DEVICE_CONFIGS}/{company}/{gender}"


def building_collection(company: str) -> str:
    return f"{BUILDINGS}/{company}"


def location_collection(company: str, building: str) -> str:
    return f"{LOCATIONS}/{company}/{building}"


def usage_collection(company: str) -> str:
    return f"{USAGE_METRICS}/{company}/daily"
