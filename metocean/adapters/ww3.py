"""
WaveWatch III Source Adapter

Downloads monthly GRIB2 files of the NOAA WW3 multi-grid hindcast (NOPP
phase 2, 1979-2009), one file per variable (hs, dp, tp, wind). The
orchestrator fans the variables of one month out over a thread pool.

Files hold the whole grid and are stored unchanged; decoding GRIB2 is left
to the processing step.
"""

from typing import Any, Dict

from ..fetch_units import FetchUnit
from ..logging_utils import MalformedRequestError, MalformedResponseError
from .base import SourceAdapter

DEFAULT_BASE_URL = 'https://polar.ncep.noaa.gov/waves/hindcasts/nopp-phase2/'
VARIABLES = ('hs', 'dp', 'tp', 'wind')
GRIB_MAGIC = b'GRIB'


class WW3Adapter(SourceAdapter):
    """WW3 hindcast adapter using requests."""

    name = 'ww3'

    def __init__(self, source_config, context, session=None):
        super().__init__(source_config, context, session)
        self.base_url = self.options.get('base_url', DEFAULT_BASE_URL)
        self.grid = self.options.get('grid', 'ecg_10m')

    def build_request(self, unit: FetchUnit) -> Dict[str, Any]:
        if unit.variable not in VARIABLES:
            raise MalformedRequestError(
                f"Unknown WW3 variable: {unit.variable}. Available: {list(VARIABLES)}"
            )
        stamp = f'{unit.start.year}{unit.start.month:02d}'
        return {
            'url': f'{self.base_url}{stamp}/gribs/multi_reanal.{self.grid}.{unit.variable}.{stamp}.grb2',
            'unit_id': unit.unit_id,
        }

    def fetch(self, request: Dict[str, Any]) -> bytes:
        return self._get(request['url']).content

    def parse(self, raw: bytes, request: Dict[str, Any]) -> bytes:
        if not raw or not raw.startswith(GRIB_MAGIC):
            raise MalformedResponseError(f"{request['unit_id']} is not a GRIB file", {'url': request['url']})
        return raw
