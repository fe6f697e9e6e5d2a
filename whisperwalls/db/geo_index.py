from __future__ import annotations

"""In-process spatial index for message coordinates.

Points are bucketed on a fixed lat/lng grid.  A radius query visits only the
cells overlapping the query's bounding box and then applies the exact
haversine distance, so the grid is purely an accelerator.
"""

import math
from typing import Dict, Iterable, Iterator, List, Set, Tuple
from uuid import UUID

from whisperwalls.models.message import GeoPoint
from whisperwalls.utils.geo import bounding_box, haversine_meters

Cell = Tuple[int, int]


class GeoIndex:
    """Not thread-safe; callers hold their own lock."""

    def __init__(self, cell_size_degrees: float = 0.05):
        if cell_size_degrees <= 0:
            raise ValueError("cell_size_degrees must be positive")
        self._cell = cell_size_degrees
        self._points: Dict[UUID, GeoPoint] = {}
        self._buckets: Dict[Cell, Set[UUID]] = {}

    def __len__(self) -> int:
        return len(self._points)

    def __contains__(self, key: UUID) -> bool:
        return key in self._points

    def _cell_of(self, lng: float, lat: float) -> Cell:
        return (math.floor(lng / self._cell), math.floor(lat / self._cell))

    def insert(self, key: UUID, point: GeoPoint) -> None:
        if key in self._points:
            self.remove(key)
        self._points[key] = point
        self._buckets.setdefault(self._cell_of(point.longitude, point.latitude), set()).add(key)

    def remove(self, key: UUID) -> bool:
        point = self._points.pop(key, None)
        if point is None:
            return False
        cell = self._cell_of(point.longitude, point.latitude)
        bucket = self._buckets.get(cell)
        if bucket is not None:
            bucket.discard(key)
            if not bucket:
                del self._buckets[cell]
        return True

    def _lng_ranges(self, min_lng: float, max_lng: float) -> List[Tuple[float, float]]:
        if min_lng > max_lng:
            return [(min_lng, 180.0), (-180.0, max_lng)]
        return [(min_lng, max_lng)]

    def _candidate_cells(self, center: GeoPoint, radius_meters: float) -> Iterable[Cell]:
        box = bounding_box(center, radius_meters)
        lat_lo = math.floor(box.min_lat / self._cell)
        lat_hi = math.floor(box.max_lat / self._cell)

        cells: List[Cell] = []
        for lng_min, lng_max in self._lng_ranges(box.min_lng, box.max_lng):
            lng_lo = math.floor(lng_min / self._cell)
            lng_hi = math.floor(lng_max / self._cell)
            span = (lng_hi - lng_lo + 1) * (lat_hi - lat_lo + 1)
            # Walking more cells than there are buckets is wasted work.
            if span > len(self._buckets):
                return self._buckets.keys()
            for x in range(lng_lo, lng_hi + 1):
                for y in range(lat_lo, lat_hi + 1):
                    cells.append((x, y))
        return cells

    def query(self, center: GeoPoint, radius_meters: float) -> Iterator[Tuple[UUID, float]]:
        """Yield ``(key, distance_meters)`` for every point within the radius."""

        for cell in list(self._candidate_cells(center, radius_meters)):
            for key in list(self._buckets.get(cell, ())):
                distance = haversine_meters(center, self._points[key])
                if distance <= radius_meters:
                    yield key, distance
