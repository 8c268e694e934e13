"""
NDBC Buoy Source Adapter

Downloads yearly standard meteorological (stdmet) history files of NOAA
National Data Buoy Center stations. Units are planned per station instead of
per sub-box; a missing station year is recorded as data absent and the
remaining years still run.

The station table published by NDBC lets callers pick the buoys nearest to a
location (``nearest_buoys``).
"""

import re
from typing import Any, Dict, List, Optional

from ..coordinate_systems import Station, nearest_stations
from ..fetch_units import FetchUnit
from ..logging_utils import DataNotFoundError, MalformedRequestError
from .base import SourceAdapter

DEFAULT_BASE_URL = 'https://www.ndbc.noaa.gov/view_text_file.php'
DEFAULT_ARCHIVE_DIR = 'data/historical/stdmet/'
DEFAULT_STATION_TABLE_URL = 'https://www.ndbc.noaa.gov/data/stations/station_table.txt'

_LOCATION_PATTERN = re.compile(r'([\d.]+)\s*([NS])\s+([\d.]+)\s*([EW])')
_MISSING_MARKERS = ('unable to access data file', 'no data', 'not found')


class NDBCAdapter(SourceAdapter):
    """NDBC historical stdmet adapter using requests."""

    name = 'ndbc'

    def __init__(self, source_config, context, session=None):
        super().__init__(source_config, context, session)
        self.base_url = self.options.get('base_url', DEFAULT_BASE_URL)
        self.archive_dir = self.options.get('archive_dir', DEFAULT_ARCHIVE_DIR)
        self.station_table_url = self.options.get('station_table_url', DEFAULT_STATION_TABLE_URL)
        self._station_table: Optional[List[Station]] = None

    def build_request(self, unit: FetchUnit) -> Dict[str, Any]:
        if unit.station is None:
            raise MalformedRequestError(f"NDBC units need a station: {unit.unit_id}")

        station_id = str(unit.station.station_id).lower()
        return {
            'url': self.base_url,
            'params': {
                'filename': f'{station_id}h{unit.start.year}.txt.gz',
                'dir': self.archive_dir,
            },
            'unit_id': unit.unit_id,
            'station_id': station_id,
            'year': unit.start.year,
        }

    def fetch(self, request: Dict[str, Any]) -> str:
        return self._get(request['url'], params=request['params']).text

    def parse(self, raw: str, request: Dict[str, Any]) -> str:
        text = (raw or '').strip()
        if not text or any(marker in text[:300].lower() for marker in _MISSING_MARKERS):
            raise DataNotFoundError(
                f"Missing data for buoy {request['station_id']} in {request['year']}"
            )
        return raw

    def station_table(self) -> List[Station]:
        """Download and cache the NDBC station table."""
        if self._station_table is None:
            response = self._get(self.station_table_url)
            self._station_table = parse_station_table(response.text)
            self.logger.info(f"Loaded {len(self._station_table)} NDBC stations")
        return self._station_table

    def nearest_buoys(self, latitude: float, longitude: float, count: int = 5) -> List[Station]:
        """Stations of the NDBC table nearest to a location."""
        return nearest_stations(latitude, longitude, self.station_table(), count=count)


def parse_station_table(text: str) -> List[Station]:
    """
    Parse the pipe-separated NDBC station table.

    Rows look like ``41001|NDBC|...|34.724 N 72.317 W (34°43'27" N 72°19'0" W)|...``;
    comment lines start with '#'. Rows without a parsable location are skipped.
    """
    stations = []
    for line in text.splitlines():
        if not line.strip() or line.startswith('#'):
            continue
        fields = line.split('|')
        if len(fields) < 7:
            continue
        match = _LOCATION_PATTERN.search(fields[6])
        if not match:
            continue
        latitude = float(match.group(1)) * (1 if match.group(2) == 'N' else -1)
        longitude = float(match.group(3)) * (1 if match.group(4) == 'E' else -1)
        stations.append(Station(fields[0].strip(), latitude, longitude))
    return stations
