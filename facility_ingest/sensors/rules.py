"""Per-sensor-type state transition rules.

Each rule declares the payload shape, when a transition is written to the
sensor log, and who (if anyone) is notified.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from facility_ingest.sensors.types import (
    BAD,
    BATTERY,
    GOOD,
    HEALTHY,
    ODOR,
    OCCUPANCY,
    SOAP,
    TISSUE,
    VACANT,
)

Transition = Callable[[Optional[str], str], bool]

# Notification audiences
REMINDERS = "reminders"
JANITORS = "janitors"


def snake_to_title(value: str) -> str:
    """``lantai_1`` -> ``Lantai 1``."""
    return " ".join(word[:1].upper() + word[1:] for word in value.split("_"))


def _always(previous, status):
    return True


def _never(previous, status):
    return False


@dataclass(frozen=True)
class SensorRule:
    sensor_type: str
    has_amount: bool
    should_log: Transition
    should_notify: Transition
    audience: Optional[str] = None
    title: str = ""
    body: str = ""

    @property
    def field_count(self) -> int:
        """Fields before the optional trailing slot."""
        return 2 if self.has_amount else 1

    def render(self, **context) -> tuple:
        values = {
            k: snake_to_title(v) if isinstance(v, str) and k != "amount" else v
            for k, v in context.items()
        }
        return self.title.format(**values), self.body.format(**values)


def _went_bad(previous, status):
    return previous in HEALTHY and status == BAD


RULES: Dict[str, SensorRule] = {
    OCCUPANCY: SensorRule(
        sensor_type=OCCUPANCY,
        has_amount=False,
        should_log=_always,
        should_notify=lambda previous, status: status == VACANT,
        audience=REMINDERS,
        title="Toilet Available",
        body="{location} ({gender}) in {building} is now vacant.",
    ),
    ODOR: SensorRule(
        sensor_type=ODOR,
        has_amount=False,
        should_log=lambda previous, status: previous == BAD and status == GOOD,
        should_notify=lambda previous, status: status == BAD,
        audience=JANITORS,
        title="Odor Alert",
        body="Bad odor detected in toilet {slot} at {location} ({gender}), {building}.",
    ),
    SOAP: SensorRule(
        sensor_type=SOAP,
        has_amount=True,
        should_log=_went_bad,
        should_notify=_went_bad,
        audience=JANITORS,
        title="Soap Running Out",
        body="Soap dispenser {slot} at {location} ({gender}), {building} needs a refill. Remaining: {amount}.",
    ),
    TISSUE: SensorRule(
        sensor_type=TISSUE,
        has_amount=True,
        should_log=_went_bad,
        should_notify=_went_bad,
        audience=JANITORS,
        title="Tissue Running Out",
        body="Tissue in toilet {slot} at {location} ({gender}), {building} needs a refill. Remaining: {amount}.",
    ),
    BATTERY: SensorRule(
        sensor_type=BATTERY,
        has_amount=True,
        should_log=_never,
        should_notify=_went_bad,
        audience=JANITORS,
        title="Low Battery",
        body="Device {slot} at {location} ({gender}), {building} is low on battery ({amount}).",
    ),
}


def rule_for(sensor_type: str) -> Optional[SensorRule]:
    return RULES.get(sensor_type)
