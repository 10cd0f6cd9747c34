"""SafeScore Engine: Geocell indexing (geohash base32)

A geocell is a standard geohash string. At the engine's fixed precision of
6 characters a cell is roughly 0.6 km x 1.2 km, which is the aggregation
and cache-key granularity for everything else in the package.
"""

import pygeohash as pgh

from safescore.config import GEOCELL_PRECISION
from safescore.models import Coordinate

_DIRECTIONS = {"n": "top", "s": "bottom", "e": "right", "w": "left"}


def encode(lat: float, lng: float, precision: int = GEOCELL_PRECISION) -> str:
    """Encode a latitude/longitude pair into a geohash of `precision` chars."""
    return pgh.encode(lat, lng, precision=precision)


def encode_coordinate(coord: Coordinate) -> str:
    return encode(coord.lat, coord.lng)


def decode_bounds(cell: str) -> tuple[float, float, float, float]:
    """Return (min_lat, min_lng, max_lat, max_lng) of a geocell."""
    try:
        lat, lng, lat_err, lng_err = pgh.decode_exactly(cell.lower())
    except (KeyError, ValueError) as e:
        raise ValueError(f"invalid geocell {cell!r}") from e
    return lat - lat_err, lng - lng_err, lat + lat_err, lng + lng_err


def decode_center(cell: str) -> Coordinate:
    min_lat, min_lng, max_lat, max_lng = decode_bounds(cell)
    return Coordinate(lat=(min_lat + max_lat) / 2, lng=(min_lng + max_lng) / 2)


def adjacent(cell: str, direction: str) -> str:
    """Geocell adjacent to `cell` in direction n/s/e/w (wraps at the edges)."""
    if not cell:
        raise ValueError("empty geocell")
    return pgh.get_adjacent(cell.lower(), _DIRECTIONS[direction])


def neighbors(cell: str) -> list[str]:
    """The 8 cells surrounding `cell`, clockwise from north."""
    n = adjacent(cell, "n")
    s = adjacent(cell, "s")
    return [
        n,
        adjacent(n, "e"),
        adjacent(cell, "e"),
        adjacent(s, "e"),
        s,
        adjacent(s, "w"),
        adjacent(cell, "w"),
        adjacent(n, "w"),
    ]


def nearby_cells(coord: Coordinate) -> list[str]:
    """Center cell followed by its 8 neighbors (9 total)."""
    center = encode_coordinate(coord)
    return [center, *neighbors(center)]
