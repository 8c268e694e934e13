"""
Coordinate System Management for MetOcean Extraction

This module provides the geographic building blocks used by the chunk planner
and the source adapters: a validated bounding box (Region) that doubles as a
single point, named fixed sites (Station), and the helpers that decompose a box
into request-sized sub-boxes or a grid of points.

Ownership convention:
Sub-boxes produced by ``split_region`` share their edges with their
neighbours. To make every grid cell belong to exactly one sub-box, a sub-box
owns its south and west edges but not its north and east edges, except when
that edge is also the outer edge of the original box.
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .logging_utils import ValidationError

# Tolerance used when comparing floating point coordinates
COORDINATE_TOLERANCE = 1e-9


@dataclass(frozen=True)
class Region:
    """
    Geographic bounding box in decimal degrees.

    A region with south == north and west == east is a single point.

    Attributes:
        north: Northern latitude (degrees north of the equator)
        south: Southern latitude
        east: Eastern longitude (degrees east of Greenwich)
        west: Western longitude
        north_inclusive: Whether the north edge belongs to this region
        east_inclusive: Whether the east edge belongs to this region
    """
    north: float
    south: float
    east: float
    west: float
    north_inclusive: bool = True
    east_inclusive: bool = True

    def __post_init__(self):
        for name in ('north', 'south', 'east', 'west'):
            value = getattr(self, name)
            if value is None or not math.isfinite(float(value)):
                raise ValidationError(f"{name.capitalize()} coordinate must be a finite number. Got: {value!r}")

        for name in ('north', 'south'):
            if not -90 <= getattr(self, name) <= 90:
                raise ValidationError(f"{name.capitalize()} latitude must be between -90 and 90. Got: {getattr(self, name)}")
        for name in ('east', 'west'):
            if not -180 <= getattr(self, name) <= 180:
                raise ValidationError(f"{name.capitalize()} longitude must be between -180 and 180. Got: {getattr(self, name)}")

        if self.south > self.north:
            raise ValidationError(
                "Southern latitudinal coordinate must be less than or equal to the northern coordinate.",
                {'north': self.north, 'south': self.south}
            )
        if self.west > self.east:
            raise ValidationError(
                "Western longitudinal coordinate must be less than or equal to the eastern coordinate.",
                {'east': self.east, 'west': self.west}
            )

    @classmethod
    def point(cls, latitude: float, longitude: float) -> 'Region':
        """Create a single-point region."""
        return cls(north=latitude, south=latitude, east=longitude, west=longitude)

    @classmethod
    def from_bounds(cls, north: float, east: float,
                    south: Optional[float] = None, west: Optional[float] = None) -> 'Region':
        """Create a region, treating a missing south/west as a single point."""
        return cls(
            north=north,
            south=north if south is None else south,
            east=east,
            west=east if west is None else west,
        )

    @property
    def is_point(self) -> bool:
        return self.north == self.south and self.east == self.west

    @property
    def center(self) -> Tuple[float, float]:
        """(latitude, longitude) of the box centre."""
        return (self.south + self.north) / 2.0, (self.west + self.east) / 2.0

    def contains(self, latitude: float, longitude: float) -> bool:
        """Check whether a coordinate belongs to the region under the ownership convention."""
        lat_ok = self.south - COORDINATE_TOLERANCE <= latitude and (
            latitude <= self.north + COORDINATE_TOLERANCE if self.north_inclusive
            else latitude < self.north - COORDINATE_TOLERANCE
        )
        lon_ok = self.west - COORDINATE_TOLERANCE <= longitude and (
            longitude <= self.east + COORDINATE_TOLERANCE if self.east_inclusive
            else longitude < self.east - COORDINATE_TOLERANCE
        )
        return lat_ok and lon_ok

    def to_area(self) -> List[float]:
        """Return [North, West, South, East], the order used by the CDS API."""
        return [self.north, self.west, self.south, self.east]


@dataclass(frozen=True)
class Station:
    """
    A named fixed observation site such as an NDBC buoy.

    Attributes:
        station_id: Identifier used by the source (e.g. '46027')
        latitude: Optional station latitude
        longitude: Optional station longitude
    """
    station_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_region(self) -> Optional[Region]:
        if self.latitude is None or self.longitude is None:
            return None
        return Region.point(self.latitude, self.longitude)


def format_coordinate(value: float, hemisphere: str, decimals: int = 4) -> str:
    """
    Format a coordinate for use in a file name.

    '.' becomes 'p' and '-' becomes 'n', e.g. -124.5 -> 'n124p5000E'.
    """
    text = f"{value:.{decimals}f}{hemisphere}"
    return text.replace('-', 'n').replace('.', 'p')


def location_tag(region: Region, decimals: int = 4) -> str:
    """Build the deterministic directory tag for a point or box."""
    if region.is_point:
        return f"{format_coordinate(region.north, 'N', decimals)}_{format_coordinate(region.east, 'E', decimals)}"
    return "_".join([
        format_coordinate(region.north, 'N', decimals),
        format_coordinate(region.east, 'E', decimals),
        format_coordinate(region.south, 'S', decimals),
        format_coordinate(region.west, 'W', decimals),
    ])


def _edges(lower: float, upper: float, max_span: Optional[float]) -> List[float]:
    """Edges of consecutive intervals of at most max_span covering [lower, upper]."""
    if max_span is None or upper - lower <= max_span + COORDINATE_TOLERANCE:
        return [lower, upper]
    if max_span <= 0:
        raise ValidationError(f"Maximum span must be positive. Got: {max_span}")

    count = int(math.ceil(round((upper - lower) / max_span, 9)))
    edges = [round(lower + i * max_span, 10) for i in range(count)]
    edges.append(upper)
    return edges


def split_region(region: Region,
                 max_lat_span: Optional[float] = None,
                 max_lon_span: Optional[float] = None) -> List[Region]:
    """
    Decompose a box into a grid of sub-boxes no larger than the given spans.

    The union of the sub-boxes is the original box. Shared edges are owned by
    exactly one sub-box: only sub-boxes touching the outer north (east) edge
    include their north (east) edge.

    Args:
        region: Box to split
        max_lat_span: Maximum latitude extent of a sub-box in degrees (None = no split)
        max_lon_span: Maximum longitude extent of a sub-box in degrees (None = no split)

    Returns:
        List of sub-boxes ordered south to north, then west to east
    """
    if region.is_point:
        return [region]

    lat_edges = _edges(region.south, region.north, max_lat_span)
    lon_edges = _edges(region.west, region.east, max_lon_span)

    if len(lat_edges) == 2 and len(lon_edges) == 2:
        return [region]

    sub_regions = []
    for i in range(len(lat_edges) - 1):
        top_row = i == len(lat_edges) - 2
        for j in range(len(lon_edges) - 1):
            right_column = j == len(lon_edges) - 2
            sub_regions.append(Region(
                north=lat_edges[i + 1],
                south=lat_edges[i],
                east=lon_edges[j + 1],
                west=lon_edges[j],
                north_inclusive=region.north_inclusive if top_row else False,
                east_inclusive=region.east_inclusive if right_column else False,
            ))
    return sub_regions


def round_to_step(value: float, step: float) -> float:
    """Snap a coordinate to the nearest multiple of step (ERA5 uses quarter degrees)."""
    return round(round(value / step) * step, 10)


def grid_points(region: Region, lat_step: float, lon_step: float,
                snap: bool = False) -> List[Region]:
    """
    Enumerate the grid nodes of a box as single-point regions.

    Args:
        region: Box (or point) to cover
        lat_step: Latitude spacing in degrees
        lon_step: Longitude spacing in degrees
        snap: Snap the box edges to the step first (ERA5 native grid)

    Returns:
        List of point regions, latitude-major. A point region returns itself.
    """
    if lat_step <= 0 or lon_step <= 0:
        raise ValidationError(f"Grid spacing must be positive. Got: {lat_step}, {lon_step}")

    if region.is_point:
        return [region]

    south, north, west, east = region.south, region.north, region.west, region.east
    if snap:
        south, north = round_to_step(south, lat_step), round_to_step(north, lat_step)
        west, east = round_to_step(west, lon_step), round_to_step(east, lon_step)

    latitudes = np.arange(south, north + lat_step / 2, lat_step)
    longitudes = np.arange(west, east + lon_step / 2, lon_step)

    points = []
    for latitude in latitudes:
        for longitude in longitudes:
            lat = float(np.clip(round(float(latitude), 10), -90, 90))
            lon = float(np.clip(round(float(longitude), 10), -180, 180))
            points.append(Region.point(lat, lon))
    return points


def nearest_stations(latitude: float, longitude: float,
                     stations: Iterable[Station], count: int = 5) -> List[Station]:
    """
    Rank stations by planar distance to a location.

    Stations without coordinates are ignored.

    Args:
        latitude: Query latitude
        longitude: Query longitude
        stations: Candidate stations
        count: Number of stations to return

    Returns:
        Up to ``count`` stations, nearest first
    """
    located: Sequence[Station] = [s for s in stations if s.latitude is not None and s.longitude is not None]
    if not located:
        return []

    lats = np.array([s.latitude for s in located], dtype=float)
    lons = np.array([s.longitude for s in located], dtype=float)
    distance = np.sqrt((latitude - lats) ** 2 + (longitude - lons) ** 2)
    order = np.argsort(distance, kind='stable')[:count]
    return [located[i] for i in order]
