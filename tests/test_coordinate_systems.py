"""
Basic tests for coordinate systems module.

Tests Region validation, sub-box decomposition with half-open ownership,
point grids and station ranking.
"""

import numpy as np
import pytest

from metocean.coordinate_systems import (
    Region,
    Station,
    grid_points,
    location_tag,
    nearest_stations,
    split_region,
)
from metocean.logging_utils import ValidationError


def test_region_validation():
    """Test that invalid regions are rejected at construction"""
    with pytest.raises(ValidationError):
        Region(north=40, south=41, east=-120, west=-125)

    with pytest.raises(ValidationError):
        Region(north=40, south=30, east=-130, west=-125)

    with pytest.raises(ValidationError):
        Region(north=95, south=30, east=-120, west=-125)

    with pytest.raises(ValidationError):
        Region(north=40, south=30, east=190, west=-125)


def test_single_point_region():
    point = Region.from_bounds(41, -124)
    assert point.is_point
    assert point.center == (41, -124)
    assert point.to_area() == [41, -124, 41, -124]


def test_location_tag_formatting():
    assert location_tag(Region.point(41, -124)) == '41p0000N_n124p0000E'
    box = Region(north=42, south=40.5, east=-123, west=-125)
    assert location_tag(box) == '42p0000N_n123p0000E_40p5000S_n125p0000W'


def test_split_region_without_limits_returns_box():
    box = Region(north=42, south=40, east=-123, west=-125)
    assert split_region(box) == [box]


def test_split_region_reconstructs_box():
    box = Region(north=43, south=40, east=-120, west=-125)
    sub_boxes = split_region(box, max_lat_span=1.0, max_lon_span=2.0)

    assert len(sub_boxes) == 3 * 3
    assert min(b.south for b in sub_boxes) == box.south
    assert max(b.north for b in sub_boxes) == box.north
    assert min(b.west for b in sub_boxes) == box.west
    assert max(b.east for b in sub_boxes) == box.east
    assert all(b.north - b.south <= 1.0 + 1e-9 for b in sub_boxes)
    assert all(b.east - b.west <= 2.0 + 1e-9 for b in sub_boxes)

    total_area = sum((b.north - b.south) * (b.east - b.west) for b in sub_boxes)
    assert total_area == pytest.approx((box.north - box.south) * (box.east - box.west))


def test_every_grid_node_owned_by_one_sub_box():
    box = Region(north=43, south=40, east=-120, west=-125)
    sub_boxes = split_region(box, max_lat_span=0.75, max_lon_span=1.5)

    for latitude in np.arange(40, 43.0001, 0.25):
        for longitude in np.arange(-125, -119.9999, 0.25):
            owners = [b for b in sub_boxes if b.contains(float(latitude), float(longitude))]
            assert len(owners) == 1, (latitude, longitude, owners)


def test_outer_edges_are_inclusive():
    box = Region(north=42, south=40, east=-123, west=-125)
    sub_boxes = split_region(box, max_lat_span=1.0, max_lon_span=1.0)

    north_east = [b for b in sub_boxes if b.north == 42 and b.east == -123][0]
    assert north_east.north_inclusive and north_east.east_inclusive
    south_west = [b for b in sub_boxes if b.south == 40 and b.west == -125][0]
    assert not south_west.north_inclusive and not south_west.east_inclusive
    assert south_west.contains(40, -125)
    assert not south_west.contains(41, -125)


def test_grid_points_latitude_major():
    box = Region(north=41, south=40, east=-124, west=-125)
    points = grid_points(box, lat_step=0.5, lon_step=1.0)

    assert [(p.north, p.east) for p in points] == [
        (40.0, -125.0), (40.0, -124.0),
        (40.5, -125.0), (40.5, -124.0),
        (41.0, -125.0), (41.0, -124.0),
    ]
    assert all(p.is_point for p in points)


def test_grid_points_snap_to_quarter_degree():
    box = Region(north=40.6, south=40.1, east=-124.4, west=-124.6)
    points = grid_points(box, 0.25, 0.25, snap=True)
    latitudes = sorted({p.north for p in points})
    longitudes = sorted({p.east for p in points})
    assert latitudes == [40.0, 40.25, 40.5]
    assert longitudes == [-124.5]


def test_nearest_stations():
    stations = [
        Station('46027', 41.85, -124.38),
        Station('46022', 40.72, -124.53),
        Station('46014', 39.22, -123.97),
        Station('nolocation'),
    ]
    ranked = nearest_stations(41.0, -124.5, stations, count=2)
    assert [s.station_id for s in ranked] == ['46022', '46027']
    assert nearest_stations(41.0, -124.5, [Station('x')]) == []


def test_station_region():
    assert Station('46027', 41.85, -124.38).to_region() == Region.point(41.85, -124.38)
    assert Station('46027').to_region() is None
