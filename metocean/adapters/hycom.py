"""
HYCOM Source Adapter

Reads ocean current fields (water_u, water_v) from the HYCOM GOFS 3.1
reanalysis (GLBv0.08 expt_53.X) over OPeNDAP with xarray. One yearly
aggregation exists per year on the THREDDS server, so a unit's URL is the
base URL followed by the year of its start.

Without a depth profile only the surface level is returned for the unit's
box. With a depth profile the unit is a single water column: the probe
counts the non-missing values in the first ``probe_levels`` levels at the
first time step and each level is then fetched as its own unit.
"""

from typing import Any, Callable, Dict, Optional

import numpy as np
import xarray as xr

from ..coordinate_systems import Region
from ..fetch_units import FetchUnit
from ..logging_utils import DataNotFoundError, MalformedResponseError
from .base import SourceAdapter

DEFAULT_BASE_URL = 'https://tds.hycom.org/thredds/dodsC/GLBv0.08/expt_53.X/data/'


class HYCOMAdapter(SourceAdapter):
    """HYCOM reanalysis adapter using xarray's OPeNDAP backend."""

    name = 'hycom'
    supports_depth_profile = True

    def __init__(self, source_config, context, open_dataset: Optional[Callable] = None, session=None):
        """
        Args:
            source_config: Resolved HYCOM settings
            context: Per-run extraction context
            open_dataset: Dataset opener (default: xarray.open_dataset)
            session: Unused; accepted for interface symmetry
        """
        super().__init__(source_config, context, session)
        self.open_dataset = open_dataset or xr.open_dataset
        self.base_url = self.options.get('base_url', DEFAULT_BASE_URL)
        self.variables = list(context.variables.get(self.name) or source_config.variables or ('water_u', 'water_v'))

    def url_for(self, unit: FetchUnit) -> str:
        return f"{self.base_url}{unit.start.year}"

    def build_request(self, unit: FetchUnit) -> Dict[str, Any]:
        return {
            'url': self.url_for(unit),
            'region': unit.location,
            'start': unit.start,
            'end': unit.end,
            'depth_index': (unit.depth_level - 1) if unit.depth_level is not None else 0,
            'unit_id': unit.unit_id,
        }

    def fetch(self, request: Dict[str, Any]) -> xr.Dataset:
        dataset = self.open_dataset(request['url'])
        try:
            subset = select_region(dataset[self.variables], request['region'])
            times = subset['time'].values
            time_mask = (times >= np.datetime64(request['start'])) & (times < np.datetime64(request['end']))
            subset = subset.isel(time=np.flatnonzero(time_mask))
            if 'depth' in subset.dims:
                subset = subset.isel(depth=[request['depth_index']])
            return subset.load()
        finally:
            dataset.close()

    def parse(self, raw: xr.Dataset, request: Dict[str, Any]) -> xr.Dataset:
        if raw.sizes.get('time', 0) == 0:
            raise DataNotFoundError(f"No HYCOM time steps in {request['unit_id']}")
        if raw.sizes.get('lat', 1) == 0 or raw.sizes.get('lon', 1) == 0:
            raise MalformedResponseError(f"Empty HYCOM spatial selection for {request['unit_id']}")
        raw.attrs['source_url'] = request['url']
        raw.attrs['unit_id'] = request['unit_id']
        return raw

    def probe_depth_levels(self, unit: FetchUnit) -> int:
        dataset = self.open_dataset(self.url_for(unit))
        try:
            latitude, longitude = unit.location.center
            sample = dataset[self.variables[0]].sel(lat=latitude, lon=longitude, method='nearest')
            sample = sample.isel(time=0, depth=slice(0, self.source_config.probe_levels)).load()
            return int(np.count_nonzero(~np.isnan(sample.values)))
        finally:
            dataset.close()


def select_region(dataset: xr.Dataset, region: Region) -> xr.Dataset:
    """
    Select the grid nodes of a region.

    A point selects the nearest node. A box selects the nodes the box owns,
    so adjacent sub-boxes never return the same node twice.
    """
    if region.is_point:
        return dataset.sel(lat=[region.north], lon=[region.east], method='nearest')

    lats = dataset['lat'].values
    lons = dataset['lon'].values
    lat_index = [i for i, lat in enumerate(lats) if region.contains(float(lat), region.west)]
    lon_index = [i for i, lon in enumerate(lons) if region.contains(region.south, float(lon))]
    return dataset.isel(lat=lat_index, lon=lon_index)
