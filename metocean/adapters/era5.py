"""
ERA5 Source Adapter

Retrieves hourly ERA5 single-level reanalysis fields from the Copernicus
Climate Data Store with cdsapi. Each unit is one grid point (snapped to the
quarter-degree ERA5 grid by the planner) for one time chunk.

The CDS limits the number of fields per request, so the variable list is
truncated to ``max_variables`` with a warning. Credentials come from the
extraction context (CDSAPI_URL / CDSAPI_KEY) or, when unset, from
~/.cdsapirc.
"""

import uuid
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List

import cdsapi

from ..fetch_units import FetchUnit
from ..logging_utils import AuthenticationError, MalformedResponseError
from .base import SourceAdapter

DEFAULT_MAX_VARIABLES = 6
HOURS = [f'{hour:02d}:00' for hour in range(24)]


class ERA5Adapter(SourceAdapter):
    """
    ERA5 reanalysis adapter backed by cdsapi.Client.retrieve().

    Attributes:
        variables (List[str]): Variables requested for every unit
    """

    name = 'era5'

    def __init__(self, source_config, context, client=None, session=None):
        """
        Args:
            source_config: Resolved ERA5 settings
            context: Per-run extraction context
            client: Optional cdsapi.Client (created lazily when omitted)
            session: Unused; accepted for interface symmetry
        """
        super().__init__(source_config, context, session)
        self._client = client

        variables = list(context.variables.get(self.name) or source_config.variables)
        max_variables = self.options.get('max_variables', DEFAULT_MAX_VARIABLES)
        if len(variables) > max_variables:
            self.logger.warning(
                f"ERA5 requests are limited to {max_variables} variables; "
                f"dropping {variables[max_variables:]}"
            )
            variables = variables[:max_variables]
        self.variables: List[str] = sorted(variables)

    @property
    def client(self):
        """cdsapi client, created on first use."""
        if self._client is None:
            url = self.context.credential('cdsapi_url')
            key = self.context.credential('cdsapi_key')
            try:
                if url and key:
                    self._client = cdsapi.Client(url=url, key=key, quiet=True)
                else:
                    self._client = cdsapi.Client(quiet=True)
            except Exception as e:
                raise AuthenticationError(
                    f"Failed to initialize CDS API client: {e}. "
                    "Set CDSAPI_URL and CDSAPI_KEY or configure ~/.cdsapirc."
                ) from e
            self.logger.info("Initialized CDS API client via cdsapi")
        return self._client

    def build_request(self, unit: FetchUnit) -> Dict[str, Any]:
        years, months, days = _calendar_fields(unit)
        body = {
            'product_type': [self.options.get('product_type', 'reanalysis')],
            'variable': self.variables,
            'year': years,
            'month': months,
            'day': days,
            'time': HOURS,
            'area': unit.location.to_area(),
            'data_format': self.options.get('data_format', 'netcdf'),
        }
        return {
            'dataset': self.options.get('dataset', 'reanalysis-era5-single-levels'),
            'body': body,
            'unit_id': unit.unit_id,
        }

    def fetch(self, request: Dict[str, Any]) -> Path:
        temp_dir = Path(self.context.temp_directory)
        temp_dir.mkdir(parents=True, exist_ok=True)
        target = temp_dir / f"era5_{uuid.uuid4().hex}.nc"

        self.logger.info(f"Requesting {request['unit_id']} from the CDS")
        # retrieve() blocks until the download completes
        try:
            self.client.retrieve(request['dataset'], request['body'], str(target))
        except Exception:
            if target.exists():
                target.unlink()
            raise
        return target

    def parse(self, raw: Path, request: Dict[str, Any]) -> Path:
        if not raw.exists() or raw.stat().st_size == 0:
            if raw.exists():
                raw.unlink()
            raise MalformedResponseError(
                f"CDS download for {request['unit_id']} produced no data", {'target': str(raw)}
            )
        return raw


def _calendar_fields(unit: FetchUnit):
    """Year, month and day lists covering [unit.start, unit.end)."""
    years, months, days = set(), set(), set()
    day = unit.start.replace(hour=0, minute=0, second=0, microsecond=0)
    while day < unit.end:
        years.add(f'{day.year}')
        months.add(f'{day.month:02d}')
        days.add(f'{day.day:02d}')
        day += timedelta(days=1)
    return sorted(years), sorted(months), sorted(days)
