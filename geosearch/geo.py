"""Spherical geometry helpers shared by search enrichment and ranking."""
from __future__ import annotations

import math

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometers."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bearing_degrees(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Initial forward azimuth from point 1 to point 2, 0-360 clockwise from north."""
    d_lng = math.radians(lng2 - lng1)
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    y = math.sin(d_lng) * math.cos(lat2_rad)
    x = math.cos(lat1_rad) * math.sin(lat2_rad) - math.sin(lat1_rad) * math.cos(lat2_rad) * math.cos(d_lng)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def estimate_travel_minutes(distance_km: float, average_speed_kmh: float) -> int:
    """Straight-line travel time at a constant average speed.

    This is a rough linear approximation for display purposes. It knows
    nothing about roads, traffic or transport mode and is not a routing
    estimate.
    """
    if average_speed_kmh <= 0:
        raise ValueError("average_speed_kmh must be positive")
    return int(round(distance_km / average_speed_kmh * 60))


def grid_cell(lat: float, lng: float, cell_degrees: float) -> tuple[int, int]:
    """Floor-quantize a coordinate onto a fixed-size degree grid."""
    # Rounding first keeps values like 40.0 / 0.01 from landing on 3999.999...
    return (
        math.floor(round(lat / cell_degrees, 9)),
        math.floor(round(lng / cell_degrees, 9)),
    )


def neighboring_cells(
    lat: float, lng: float, cell_degrees: float, span: int = 3
) -> list[tuple[int, int]]:
    """Return the span x span block of cells centered on the cell holding the point.

    Longitude indices wrap around the antimeridian; rows past either pole are
    dropped.
    """
    if span < 1 or span % 2 == 0:
        raise ValueError("span must be a positive odd number")
    center_i, center_j = grid_cell(lat, lng, cell_degrees)
    radius = span // 2
    lng_cells = int(round(360.0 / cell_degrees))
    min_j = -(lng_cells // 2)
    max_i = math.floor(round(90.0 / cell_degrees, 9))
    min_i = -max_i

    cells: list[tuple[int, int]] = []
    for di in range(-radius, radius + 1):
        i = center_i + di
        if i < min_i or i > max_i:
            continue
        for dj in range(-radius, radius + 1):
            j = (center_j + dj - min_j) % lng_cells + min_j
            cell = (i, j)
            if cell not in cells:
                cells.append(cell)
    return cells
