"""
MetOcean Source Adapters Package

One adapter per dataset source. Each adapter translates fetch units into
requests against its remote service and validates what comes back; the
extraction core handles chunking, retries, storage and reporting.

Sources:
- era5: ECMWF ERA5 single-level reanalysis (cdsapi)
- hycom: HYCOM GOFS 3.1 ocean currents (OPeNDAP via xarray)
- nrel: NREL WPTO wave hindcast (requests)
- ndbc: NOAA NDBC buoy history (requests)
- ww3: NOAA WaveWatch III hindcast GRIB2 files (requests)
"""

from .base import SourceAdapter

__all__ = ['SourceAdapter']
