"""Internal constants shared across the library."""

PLUGIN_ID = "signalk-cloud"
SERVER_NAME = "signalk-server-node"
SELF_SHORTHAND = "vessels.self"

#: Prefix stamped onto the source of every update received from a cloud server.
CLOUD_MARKER = "cloud:"

RETRY_DELAY_SECONDS = 10.0
MIN_UPDATE_PERIOD_SECONDS = 10
MIN_STATIC_PERIOD_MINUTES = 5

DISCOVERY_PATH = "/signalk"

# Static vessel attributes republished on the static interval.
STATIC_KEYS: tuple[str, ...] = (
    "name",
    "mmsi",
    "uuid",
    "url",
    "flag",
    "port",
    "design.aisShipType",
    "design.draft",
    "design.length",
    "design.beam",
    "design.keel",
    "design.airHeight",
    "design.rigging",
    "sensors.gps.fromCenter",
    "sensors.gps.fromBow",
)
