"""
NREL Wave Hindcast Source Adapter

Downloads point time series from the WPTO US wave hindcast through the NREL
developer API as CSV text. Two datasets exist: a 3-hour unstructured-grid
hindcast and a 1-hour virtual-buoy set with fewer points; the configured
``time_step`` picks the dataset and interval.

Every request needs an API key and an e-mail address. The API answers 429 or
503 when the key's quota is exhausted; the retry policy waits the source's
rate-limit cooldown (120 s) and tries again.
"""

from typing import Any, Dict

from ..fetch_units import FetchUnit
from ..logging_utils import (
    AuthenticationError,
    ConfigurationError,
    DataNotFoundError,
    MalformedRequestError,
    MalformedResponseError,
)
from .base import SourceAdapter

DEFAULT_BASE_URL = 'https://developer.nrel.gov/api/wave/v2/wave/'
TIME_STEPS = {'1-hour': 60, '3-hour': 180}


class NRELAdapter(SourceAdapter):
    """NREL WPTO hindcast adapter using requests."""

    name = 'nrel'

    def __init__(self, source_config, context, session=None):
        super().__init__(source_config, context, session)

        self.api_key = context.credential('nrel_api_key')
        self.email = context.credential('nrel_api_email')
        if not self.api_key or not self.email:
            raise AuthenticationError(
                "NREL requests need an API key and e-mail. Set NREL_API_KEY and NREL_API_EMAIL."
            )

        self.time_step = self.options.get('time_step', '3-hour')
        if self.time_step not in TIME_STEPS:
            raise ConfigurationError(
                f"Unknown NREL time step: {self.time_step}. Available: {list(TIME_STEPS)}"
            )
        datasets = self.options.get('datasets', {})
        self.dataset = datasets.get(self.time_step, 'us-west-coast')
        self.base_url = self.options.get('base_url', DEFAULT_BASE_URL)
        self.variables = list(context.variables.get(self.name) or source_config.variables)

    def build_request(self, unit: FetchUnit) -> Dict[str, Any]:
        latitude, longitude = unit.location.center
        params = {
            'wkt': f'POINT({longitude:.4f} {latitude:.4f})',
            'names': str(unit.start.year),
            'interval': TIME_STEPS[self.time_step],
            'utc': 'true',
            'api_key': self.api_key,
            'email': self.email,
        }
        if self.variables:
            params['attributes'] = ','.join(self.variables)

        return {
            'url': f'{self.base_url}{self.dataset}-download.csv',
            'params': params,
            'unit_id': unit.unit_id,
            'location': (latitude, longitude),
            'year': unit.start.year,
        }

    def fetch(self, request: Dict[str, Any]) -> str:
        response = self._get(request['url'], params=request['params'])
        return response.text

    def parse(self, raw: str, request: Dict[str, Any]) -> str:
        text = (raw or '').strip()
        latitude, longitude = request['location']

        if not text:
            raise DataNotFoundError(
                f"Data might not exist for the chosen parameter(s) at <{latitude:.2f}, {longitude:.2f}> "
                f"for {request['year']}."
            )
        if text.startswith('{'):
            # The API reports request problems as a JSON body
            raise MalformedRequestError(f"NREL rejected {request['unit_id']}: {text[:500]}")
        if ',' not in text.splitlines()[0]:
            raise MalformedResponseError(f"Unexpected NREL response for {request['unit_id']}: {text[:200]}")
        return raw
