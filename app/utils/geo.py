"""Geographic helpers: distances, polylines and web-mercator tiles."""

import math

EARTH_RADIUS_KM = 6371.0
# Web-mercator tiles stop at this latitude
MAX_MERCATOR_LAT = 85.05112878


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometers."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def haversine_meters(a: tuple[float, float], b: tuple[float, float]) -> float:
    """Distance in meters between two ``(lng, lat)`` pairs."""
    return haversine_distance(a[1], a[0], b[1], b[0]) * 1000


def decode_polyline(encoded: str, precision: int = 5) -> list[list[float]]:
    """Decode an encoded polyline into ``[lng, lat]`` pairs."""
    if not encoded:
        return []

    factor = 10 ** precision
    points: list[list[float]] = []
    index = 0
    lat = 0
    lng = 0
    length = len(encoded)

    while index < length:
        deltas = []
        for _ in range(2):
            shift = 0
            result = 0
            while True:
                byte = ord(encoded[index]) - 63
                index += 1
                result |= (byte & 0x1F) << shift
                shift += 5
                if byte < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lng += deltas[1]
        points.append([lng / factor, lat / factor])

    return points


def lat_lng_to_tile(lat: float, lng: float, zoom: int) -> tuple[int, int]:
    """XYZ tile containing the point at ``zoom``."""
    world_x, world_y = _world_coordinates(lat, lng, zoom)
    last = 2 ** zoom - 1
    x = min(max(int(math.floor(world_x)), 0), last)
    y = min(max(int(math.floor(world_y)), 0), last)
    return x, y


def lat_lng_to_pixel(
    lat: float, lng: float, zoom: int, x_tile: int, y_tile: int, tile_size: int = 256
) -> tuple[int, int]:
    """Pixel position of the point inside tile ``(x_tile, y_tile)``."""
    world_x, world_y = _world_coordinates(lat, lng, zoom)
    px = int(math.floor((world_x - x_tile) * tile_size))
    py = int(math.floor((world_y - y_tile) * tile_size))
    last = tile_size - 1
    return min(max(px, 0), last), min(max(py, 0), last)


def _world_coordinates(lat: float, lng: float, zoom: int) -> tuple[float, float]:
    lat_rad = math.radians(min(max(lat, -MAX_MERCATOR_LAT), MAX_MERCATOR_LAT))
    n = 2 ** zoom
    world_x = (lng + 180.0) / 360.0 * n
    world_y = (1 - math.log(math.tan(lat_rad) + 1 / math.cos(lat_rad)) / math.pi) / 2 * n
    return world_x, world_y
