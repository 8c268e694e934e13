"""
Chunk Planner

Turns a requested region, time window and optional depth mode into the ordered
sequence of fetch units that respects a source's per-request limits.

Ordering follows the way the archives are laid out on disk: location first,
then time, then variable. Depth levels are not planned here; a unit with
``depth_profile=True`` is expanded into levels by the fetch worker once the
number of valid levels at that point has been probed.
"""

import logging
from typing import Iterator, List, Optional, Sequence

from .coordinate_systems import Region, Station, grid_points, split_region
from .fetch_units import FetchUnit, RequestLimits
from .logging_utils import ValidationError
from .time_utils import TimeWindow, iter_time_chunks

logger = logging.getLogger(__name__)

SPATIAL_MODES = ('box', 'points')


class ChunkPlanner:
    """
    Stateless planner producing fetch units.

    The planner holds no state between calls; calling ``plan`` twice with the
    same arguments yields equal units in the same order, which is what lets a
    resumed run line up with the files written by an interrupted one.
    """

    def __init__(self, source: str):
        """
        Args:
            source: Source identifier stamped on every unit
        """
        self.source = source

    def plan(self,
             region: Region,
             time_window: TimeWindow,
             limits: RequestLimits,
             depth_mode: bool = False,
             variables: Optional[Sequence[str]] = None,
             stations: Optional[Sequence[Station]] = None) -> Iterator[FetchUnit]:
        """
        Lazily yield the fetch units for a request.

        Args:
            region: Requested box or point
            time_window: Requested (already clamped) window
            limits: Source per-request limits
            depth_mode: Emit adaptive depth-profile units at the box centre
            variables: Fan-out variables; one unit per variable per chunk
            stations: Fixed sites replacing the spatial decomposition

        Yields:
            FetchUnit objects, location-major then time then variable
        """
        if limits.spatial_mode not in SPATIAL_MODES:
            raise ValidationError(f"Unknown spatial mode: {limits.spatial_mode}. Available: {list(SPATIAL_MODES)}")

        locations = self.plan_locations(region, limits, depth_mode, stations)
        per_chunk: List[Optional[str]] = list(variables) if variables else [None]

        for location, station in locations:
            for chunk_start, chunk_end in iter_time_chunks(time_window, limits.time_chunk):
                for variable in per_chunk:
                    yield FetchUnit(
                        source=self.source,
                        location=location,
                        start=chunk_start,
                        end=chunk_end,
                        station=station,
                        depth_profile=depth_mode,
                        variable=variable,
                    )

    def plan_locations(self,
                       region: Region,
                       limits: RequestLimits,
                       depth_mode: bool = False,
                       stations: Optional[Sequence[Station]] = None) -> List[tuple]:
        """
        Resolve the spatial part of the plan.

        Returns:
            List of (Region, Station or None) pairs
        """
        if stations:
            resolved = []
            for station in stations:
                resolved.append((station.to_region() or region, station))
            return resolved

        if depth_mode:
            # Depth profiles are requested at a single water column
            latitude, longitude = region.center
            if not region.is_point:
                logger.info(
                    f"Depth profile requested for a box; using centre point "
                    f"({latitude:.4f}, {longitude:.4f})"
                )
            return [(Region.point(latitude, longitude) if not region.is_point else region, None)]

        if region.is_point:
            return [(region, None)]

        if limits.spatial_mode == 'points':
            if limits.lat_step is None or limits.lon_step is None:
                raise ValidationError("Point grid planning needs lat_step and lon_step")
            return [(point, None) for point in grid_points(region, limits.lat_step, limits.lon_step,
                                                            snap=limits.snap_to_grid)]

        return [(sub_region, None) for sub_region in split_region(region, limits.max_lat_span, limits.max_lon_span)]

    def count_units(self, *args, **kwargs) -> int:
        """Number of units ``plan`` would yield for the same arguments."""
        return sum(1 for _ in self.plan(*args, **kwargs))
