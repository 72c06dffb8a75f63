"""Service layer helpers."""

from .capture import capture_hexagons, delete_activity_and_restore, process_activity
from .hexindex import BoundingBox, analyze_route
from .viewport import hexagon_to_dict, hexagons_in_viewport

__all__ = [
    "BoundingBox",
    "analyze_route",
    "capture_hexagons",
    "delete_activity_and_restore",
    "hexagon_to_dict",
    "hexagons_in_viewport",
    "process_activity",
]
