"""Sensor type and status tokens as published by deployed devices."""

OCCUPANCY = "okupansi"
ODOR = "bau"
SOAP = "sabun"
TISSUE = "tisu"
BATTERY = "baterai"
VISITOR = "pengunjung"

VACANT = "vacant"
OCCUPIED = "occupied"
GOOD = "good"
OK = "ok"
BAD = "bad"

HEALTHY = (GOOD, OK)

# Per-device types that carry a slot; visitor counters publish per location
DEVICE_SENSOR_TYPES = (OCCUPANCY, ODOR, SOAP, TISSUE, BATTERY)
