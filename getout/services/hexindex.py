"""H3 helpers: route-to-cell conversion and viewport geometry."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Set, Tuple

import h3
import structlog

from ..errors import ValidationError
from ..models.hexagon import ROUTE_AREA, ROUTE_LINE

logger = structlog.get_logger(__name__)

H3_RESOLUTION = 10
PARENT_RESOLUTION = 6
CLOSE_THRESHOLD_M = 100.0

LatLng = Tuple[float, float]


@dataclass(frozen=True)
class BoundingBox:
    south: float
    west: float
    north: float
    east: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.south <= 90.0 and -90.0 <= self.north <= 90.0):
            raise ValidationError("Latitude must be between -90 and 90")
        if not (-180.0 <= self.west <= 180.0 and -180.0 <= self.east <= 180.0):
            raise ValidationError("Longitude must be between -180 and 180")
        if self.south > self.north:
            raise ValidationError("south must not exceed north")

    @property
    def center(self) -> LatLng:
        return ((self.north + self.south) / 2, (self.east + self.west) / 2)

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east


@dataclass
class RouteCells:
    hexagons: List[str] = field(default_factory=list)
    route_type: str = ROUTE_LINE


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters using the Haversine formula."""

    earth_radius_m = 6_371_000.0
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return earth_radius_m * c


def cell_for(lat: float, lng: float, resolution: int = H3_RESOLUTION) -> str:
    return h3.latlng_to_cell(lat, lng, resolution)


def parent_of(cell: str, resolution: int = PARENT_RESOLUTION) -> str:
    return h3.cell_to_parent(cell, resolution)


def cell_center(cell: str) -> LatLng:
    lat, lng = h3.cell_to_latlng(cell)
    return lat, lng


def is_valid_cell(cell: str) -> bool:
    try:
        return bool(h3.is_valid_cell(cell))
    except (TypeError, ValueError):
        return False


def _unique(cells: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    ordered: List[str] = []
    for cell in cells:
        if cell not in seen:
            seen.add(cell)
            ordered.append(cell)
    return ordered


def route_to_cells_line(coords: Sequence[LatLng], fill_gaps: bool = True) -> List[str]:
    """Cells touched by a polyline, in route order."""

    cells = [cell_for(lat, lng) for lat, lng in coords]
    if not fill_gaps:
        return _unique(cells)

    touched: List[str] = []
    for idx, current in enumerate(cells):
        touched.append(current)
        if idx + 1 >= len(cells):
            continue
        following = cells[idx + 1]
        if following == current:
            continue
        try:
            touched.extend(h3.grid_path_cells(current, following))
        except h3.H3BaseException:
            # no path (pentagon distortion or too far apart); keep the endpoint
            touched.append(following)
    return _unique(touched)


def route_to_cells_area(coords: Sequence[LatLng]) -> List[str]:
    """Cells whose centres fall inside the polygon traced by the route."""

    try:
        polygon = h3.LatLngPoly(list(coords))
        return list(h3.polygon_to_cells(polygon, H3_RESOLUTION))
    except (h3.H3BaseException, ValueError) as exc:
        logger.warning("polygon_fill_failed", error=str(exc), points=len(coords))
        return route_to_cells_line(coords)


def analyze_route(coords: Sequence[LatLng]) -> RouteCells:
    """Classify a route as a loop or a line and convert it to cells."""

    if len(coords) < 3:
        return RouteCells(hexagons=route_to_cells_line(coords), route_type=ROUTE_LINE)

    (start_lat, start_lng), (end_lat, end_lng) = coords[0], coords[-1]
    gap = haversine_m(start_lat, start_lng, end_lat, end_lng)

    if gap <= CLOSE_THRESHOLD_M:
        area = route_to_cells_area(coords)
        line = route_to_cells_line(coords)
        combined = _unique([*line, *area])
        logger.debug(
            "route_classified",
            route_type=ROUTE_AREA,
            gap_m=round(gap, 2),
            area_cells=len(area),
            line_cells=len(line),
            cells=len(combined),
        )
        return RouteCells(hexagons=combined, route_type=ROUTE_AREA)

    line = route_to_cells_line(coords)
    logger.debug("route_classified", route_type=ROUTE_LINE, gap_m=round(gap, 2), cells=len(line))
    return RouteCells(hexagons=line, route_type=ROUTE_LINE)


def ring_size_for_zoom(zoom: float) -> int:
    """Radius of the candidate cell disk for a map zoom level."""

    for limit, size in ((2, 5), (4, 10), (6, 20), (8, 30), (10, 50), (12, 80), (14, 120), (16, 150)):
        if zoom < limit:
            return size
    return 200


def viewport_cells(bbox: BoundingBox, zoom: float) -> List[str]:
    """Resolution-10 cells around the viewport centre whose centres are visible."""

    center = cell_for(*bbox.center)
    ring = h3.grid_disk(center, ring_size_for_zoom(zoom))
    return [cell for cell in ring if bbox.contains(*cell_center(cell))]


def viewport_parents(bbox: BoundingBox, ring: int = 1) -> List[str]:
    """Parent cell under the viewport centre plus ``ring`` rings of neighbours."""

    center_parent = cell_for(*bbox.center, resolution=PARENT_RESOLUTION)
    return list(h3.grid_disk(center_parent, ring))


__all__ = [
    "BoundingBox",
    "CLOSE_THRESHOLD_M",
    "H3_RESOLUTION",
    "PARENT_RESOLUTION",
    "RouteCells",
    "analyze_route",
    "cell_center",
    "cell_for",
    "haversine_m",
    "is_valid_cell",
    "parent_of",
    "ring_size_for_zoom",
    "route_to_cells_area",
    "route_to_cells_line",
    "viewport_cells",
    "viewport_parents",
]
