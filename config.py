# config.py — OSM route topology configuration
# Edit this file to change Overpass mirrors, retry behaviour, statistics rules, etc.

# ── Overpass ─────────────────────────────────────────────────────────
OVERPASS_TIMEOUT = 180

# Mirrors tried in order.  The first is the primary; a 5xx response moves on
# to the next one.
OVERPASS_MIRRORS = [
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
]

# Attempts per mirror, and base delay (seconds) between attempts.  A 429
# response backs off for RETRY_DELAY * attempt number.
MAX_RETRIES = 3
RETRY_DELAY = 5

# ── Relation members ─────────────────────────────────────────────────
# Members with this role are excluded from the route graph and the main
# statistics; they are reported separately as alternatives.
ALTERNATIVE_ROLE = "alternative"

# Relation tag values treated as route relations when parsing Overpass data.
ROUTE_TYPES = {"route", "superroute"}

# ── Statistics ───────────────────────────────────────────────────────
# Only ways with one of these highway=* values count towards sac_scale coverage.
SAC_SCALE_HIGHWAYS = ("path", "track", "footway")

# Mean earth radius in km (same value turf.js uses for length).
EARTH_RADIUS_KM = 6371.0088

# ── Cache / output files ─────────────────────────────────────────────
CACHE_FILE = "route_relation_{relation_id}.json"
OUTPUT_FILE = "route_{relation_id}.geojson"
LOG_FILE = "osm_route_fetcher.log"
