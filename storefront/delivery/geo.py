import math
from typing import Any, Optional, Sequence, Tuple

EARTH_RADIUS_KM = 6371.0
_EDGE_EPSILON = 1e-9

Coordinate = Tuple[float, float]


def is_valid_coordinate(lat: Any, lon: Any) -> bool:
    if isinstance(lat, bool) or isinstance(lon, bool):
        return False
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0


def distance_km(p1: Coordinate, p2: Coordinate) -> float:
    """Great-circle distance in km (haversine). Callers validate coordinates first."""
    lat1, lon1 = map(math.radians, p1)
    lat2, lon2 = map(math.radians, p2)
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1

    a = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    # float error can push a a hair past 1 for antipodal points
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def _on_segment(point: Coordinate, a: Coordinate, b: Coordinate) -> bool:
    px, py = point
    ax, ay = a
    bx, by = b
    cross = (bx - ax) * (py - ay) - (by - ay) * (px - ax)
    if abs(cross) > _EDGE_EPSILON:
        return False
    return (min(ax, bx) - _EDGE_EPSILON <= px <= max(ax, bx) + _EDGE_EPSILON
            and min(ay, by) - _EDGE_EPSILON <= py <= max(ay, by) + _EDGE_EPSILON)


def point_in_polygon(point: Coordinate, polygon: Sequence[Coordinate]) -> bool:
    """
    Even-odd ray casting over an implicitly closed ring of (lat, lon) vertices.
    Points on an edge or vertex count as inside.
    Fewer than 3 vertices encloses nothing, so the answer is False; deciding that such a
    fence means "no restriction" is up to the caller.
    """
    n = len(polygon)
    if n < 3:
        return False

    x, y = point
    for i in range(n):
        if _on_segment(point, polygon[i], polygon[(i + 1) % n]):
            return True

    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def parse_polygon(raw: Any) -> Optional[list]:
    """Normalize stored geofence JSON into [(lat, lon), ...]; None when it is unusable."""
    if not raw or not isinstance(raw, (list, tuple)):
        return None
    vertices = []
    for vertex in raw:
        if not isinstance(vertex, (list, tuple)) or len(vertex) < 2:
            return None
        if not is_valid_coordinate(vertex[0], vertex[1]):
            return None
        vertices.append((float(vertex[0]), float(vertex[1])))
    return vertices
