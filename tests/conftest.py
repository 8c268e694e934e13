"""
Shared fixtures for MetOcean extractor tests.

Provides a fake monotonic clock whose sleep advances time instantly and a
scripted adapter that fails in a predefined way before succeeding.
"""

from datetime import datetime
from pathlib import Path

import pytest

from metocean.adapters.base import SourceAdapter
from metocean.config_manager import ExtractionContext, SourceConfig
from metocean.fetch_units import RequestLimits


class FakeClock:
    """Monotonic clock for tests; ``sleep`` advances time without blocking."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedAdapter(SourceAdapter):
    """
    Adapter that raises scripted errors before returning a payload.

    Args:
        failures: Errors raised by successive fetch calls, per unit id or for all units
        payload: Payload returned once the script is exhausted
        clock: Optional FakeClock advanced by ``fetch_seconds`` per fetch
        depth_levels: Value returned by the depth probe
    """

    name = 'scripted'
    supports_depth_profile = True

    def __init__(self, source_config=None, context=None, failures=None, payload=b'payload',
                 clock=None, fetch_seconds=1.0, depth_levels=0, probe_failures=None):
        super().__init__(source_config, context)
        self.failures = failures if failures is not None else {}
        self.payload = payload
        self.clock = clock
        self.fetch_seconds = fetch_seconds
        self.depth_levels = depth_levels
        self.probe_failures = list(probe_failures or [])
        self.fetched = []
        self.probes = 0

    def _next_failure(self, unit_id):
        if isinstance(self.failures, dict):
            script = self.failures.get(unit_id, [])
        else:
            script = self.failures
        return script.pop(0) if script else None

    def build_request(self, unit):
        return {'unit': unit}

    def fetch(self, request):
        unit = request['unit']
        if self.clock is not None:
            self.clock.advance(self.fetch_seconds)
        self.fetched.append(unit.unit_id)
        failure = self._next_failure(unit.unit_id)
        if failure is not None:
            raise failure
        return self.payload

    def probe_depth_levels(self, unit):
        self.probes += 1
        if self.probe_failures:
            raise self.probe_failures.pop(0)
        return self.depth_levels


def make_source_config(name='hycom', **overrides) -> SourceConfig:
    settings = dict(
        name=name,
        valid_start=datetime(1994, 1, 1),
        valid_end=datetime(2016, 1, 1),
        limits=RequestLimits(time_chunk='month'),
        timeout_cooldown=60.0,
        server_cooldown=300.0,
        rate_limit_cooldown=120.0,
        file_suffix='.bin',
    )
    settings.update(overrides)
    return SourceConfig(**settings)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def context(tmp_path) -> ExtractionContext:
    return ExtractionContext(
        output_root=Path(tmp_path) / 'output',
        temp_directory=Path(tmp_path) / 'temp',
        credentials={'nrel_api_key': 'key', 'nrel_api_email': 'me@example.com'},
    )
