"""Distance, bearing and radar-grid helpers for the status display."""

import math

EARTH_RADIUS_M = 6_371_000

# Palette for tracker colors; chosen for contrast and additive blending
TRACKER_COLORS = [
    "#ff7b54",  # coral orange
    "#a855f7",  # violet purple
    "#22d3ee",  # cyan
    "#facc15",  # amber
    "#f472b6",  # pink
    "#34d399",  # emerald
    "#fb923c",  # orange
    "#818cf8",  # indigo
]


def tracker_color(tracker_id: int) -> str:
    """Color keyed on tracker ID so it does not change when trackers come and go."""
    return TRACKER_COLORS[tracker_id % len(TRACKER_COLORS)]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def calculate_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing in degrees (0 = north, clockwise) from point 1 to point 2."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)

    return (math.degrees(math.atan2(y, x)) + 360) % 360


def latlon_to_radar_bin(
    lat: float,
    lon: float,
    home_lat: float,
    home_lon: float,
    radius_m: float,
    resolution: int,
) -> tuple[int, int]:
    """
    Project a position onto a resolution x resolution radar grid centred on home.

    North is up (negative y). Positions beyond radius_m land outside the grid,
    so callers drop any bin not in [0, resolution).
    """
    distance = haversine_distance(home_lat, home_lon, lat, lon)
    bearing = calculate_bearing(home_lat, home_lon, lat, lon)

    normalized = distance / radius_m
    if normalized > 1:
        normalized = 1.1  # outside

    angle = math.radians(bearing - 90)
    r = normalized * resolution / 2

    x = resolution / 2 + r * math.cos(angle)
    y = resolution / 2 + r * math.sin(angle)
    return math.floor(x), math.floor(y)
