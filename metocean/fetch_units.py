"""
Fetch Units and Outcomes

A fetch unit is the smallest independently retryable piece of an extraction:
one time chunk, for one location, optionally at one depth level or for one
variable. Units are created by the chunk planner and never mutated; the fetch
worker turns each one into exactly one UnitOutcome.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Tuple, Union

from .coordinate_systems import Region, Station, location_tag
from .time_utils import format_time_tag


class UnitStatus(Enum):
    """Terminal status of a fetch unit within one run."""
    COMPLETED = 'completed'
    SKIPPED = 'skipped'
    TIMED_OUT = 'timed_out'
    ERRORED = 'errored'
    ABORTED = 'aborted'

    @property
    def is_failure(self) -> bool:
        return self in (UnitStatus.TIMED_OUT, UnitStatus.ERRORED, UnitStatus.ABORTED)

    @property
    def severity(self) -> int:
        """Ordering used to pick the worst status among depth levels."""
        return _SEVERITY[self]


_SEVERITY = {
    UnitStatus.SKIPPED: 0,
    UnitStatus.COMPLETED: 1,
    UnitStatus.TIMED_OUT: 2,
    UnitStatus.ERRORED: 3,
    UnitStatus.ABORTED: 4,
}


def depth_level_tag(level: int, total: Optional[int] = None) -> str:
    """
    Name component of a depth level: 'd03', or 'd03of12' when the level count is known.
    """
    if total is None:
        return f"d{level:02d}"
    return f"d{level:02d}of{total:02d}"


@dataclass(frozen=True)
class RequestLimits:
    """
    Per-request limits of a source, used by the chunk planner.

    Attributes:
        time_chunk: Calendar period ('year', 'month', 'day') or fixed timedelta
        spatial_mode: 'box' (sub-box decomposition) or 'points' (grid nodes)
        max_lat_span: Maximum latitude extent of a sub-box (box mode)
        max_lon_span: Maximum longitude extent of a sub-box (box mode)
        lat_step: Latitude spacing of grid nodes (points mode)
        lon_step: Longitude spacing of grid nodes (points mode)
        snap_to_grid: Snap box edges to the node spacing (points mode)
    """
    time_chunk: Union[str, timedelta] = 'year'
    spatial_mode: str = 'box'
    max_lat_span: Optional[float] = None
    max_lon_span: Optional[float] = None
    lat_step: Optional[float] = None
    lon_step: Optional[float] = None
    snap_to_grid: bool = False


@dataclass(frozen=True)
class FetchUnit:
    """
    Immutable work item produced by the chunk planner.

    Attributes:
        source: Source identifier (e.g. 'hycom')
        location: Point or box to request
        start: Inclusive start of the sub-range
        end: Exclusive end of the sub-range
        station: Optional fixed site, used instead of the location in names
        depth_level: Depth level index (1-based) once known
        depth_levels: Number of valid levels of the profile the level belongs to
        depth_profile: Depth levels are discovered at run time by probing
        variable: Variable for sources that fan out per variable
    """
    source: str
    location: Region
    start: datetime
    end: datetime
    station: Optional[Station] = None
    depth_level: Optional[int] = None
    depth_profile: bool = False
    variable: Optional[str] = None
    depth_levels: Optional[int] = None

    @property
    def location_tag(self) -> str:
        if self.station is not None:
            return str(self.station.station_id)
        return location_tag(self.location)

    @property
    def time_tag(self) -> str:
        return format_time_tag(self.start, self.end)

    @property
    def chunk_key(self) -> Tuple[str, str, str]:
        """Key shared by the variable fan-out siblings of one chunk."""
        return self.source, self.location_tag, self.time_tag

    @property
    def unit_id(self) -> str:
        parts = [self.source, self.location_tag, self.time_tag]
        if self.variable:
            parts.append(self.variable)
        if self.depth_level is not None:
            parts.append(depth_level_tag(self.depth_level, self.depth_levels))
        return "/".join(parts)

    def with_depth_level(self, level: int, total: Optional[int] = None) -> 'FetchUnit':
        """Return the concrete unit for level ``level`` of a ``total``-level profile."""
        return replace(self, depth_level=level, depth_levels=total, depth_profile=False)

    def __str__(self) -> str:
        return self.unit_id


@dataclass(frozen=True)
class UnitOutcome:
    """
    Result of executing one fetch unit.

    Attributes:
        unit: The unit that was executed
        status: Terminal status
        elapsed_seconds: Wall-clock time excluding backoff pauses
        backoff_seconds: Time spent sleeping before retries
        attempts: Number of fetch attempts made
        error_detail: Description of the failure, if any
        data_absent: The source reported that no data exists for the unit
        sub_outcomes: Outcomes of the depth levels of an adaptive unit
    """
    unit: FetchUnit
    status: UnitStatus
    elapsed_seconds: float = 0.0
    backoff_seconds: float = 0.0
    attempts: int = 0
    error_detail: Optional[str] = None
    data_absent: bool = False
    sub_outcomes: Tuple['UnitOutcome', ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        record = {
            'unit': self.unit.unit_id,
            'status': self.status.value,
            'elapsed_seconds': round(self.elapsed_seconds, 3),
            'backoff_seconds': round(self.backoff_seconds, 3),
            'attempts': self.attempts,
        }
        if self.error_detail:
            record['error'] = self.error_detail
        if self.data_absent:
            record['data_absent'] = True
        if self.sub_outcomes:
            record['levels'] = [sub.to_dict() for sub in self.sub_outcomes]
        return record
