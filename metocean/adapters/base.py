"""
Base Source Adapter for MetOcean Extraction

This module provides the abstract base class that every dataset source
(ERA5, HYCOM, NREL, NDBC, WW3) implements. The extraction core only talks to
sources through this interface and never depends on a dataset's schema.

A request goes through three steps, each of which may raise:
1. build_request(unit): translate a fetch unit into source parameters
2. fetch(request): perform the network call and return the raw payload
3. parse(raw, request): validate the raw payload and return what the unit
   store should write

Adapters raise the typed errors from logging_utils wherever the failure is
known (rate limit, not found, ...); anything else is classified from its
message by the retry policy.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from ..config_manager import ExtractionContext, SourceConfig
from ..fetch_units import FetchUnit
from ..logging_utils import (
    AuthenticationError,
    ConfigurationError,
    DataNotFoundError,
    MalformedRequestError,
    RateLimitError,
    ServerUnavailableError,
    SourceTimeoutError,
)


class SourceAdapter(ABC):
    """
    Abstract base class for dataset source adapters.

    Attributes:
        name (str): Source identifier, matching the configuration key
        source_config (SourceConfig): Resolved settings of the source
        context (ExtractionContext): Per-run context (credentials, temp dir)
        session: HTTP session used for requests (requests.Session or compatible)
        supports_depth_profile (bool): Whether ``probe_depth_levels`` is implemented
    """

    name = ''
    supports_depth_profile = False

    def __init__(self, source_config: SourceConfig, context: ExtractionContext, session=None):
        """
        Initialize the adapter.

        Args:
            source_config: Resolved settings of the source
            context: Per-run extraction context
            session: Optional HTTP session; module-level ``requests`` is used when omitted
        """
        self.source_config = source_config
        self.context = context
        self.session = session
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def options(self) -> Dict[str, Any]:
        return self.source_config.options

    @abstractmethod
    def build_request(self, unit: FetchUnit) -> Dict[str, Any]:
        """Translate a fetch unit into the parameters of one source request."""

    @abstractmethod
    def fetch(self, request: Dict[str, Any]) -> Any:
        """Perform the request and return the raw payload."""

    def parse(self, raw: Any, request: Dict[str, Any]) -> Any:
        """Validate the raw payload; by default it is stored unchanged."""
        return raw

    def probe_depth_levels(self, unit: FetchUnit) -> int:
        """Count the depth levels holding valid data at the unit's location."""
        raise ConfigurationError(f"{self.name} does not support depth profiles")

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> requests.Response:
        """
        Issue a GET request and raise typed errors for failing status codes.

        Args:
            url: Request URL
            params: Query parameters
            **kwargs: Passed through to ``get``

        Returns:
            requests.Response with a successful status
        """
        kwargs.setdefault('timeout', self.source_config.request_timeout)
        client = self.session if self.session is not None else requests
        response = client.get(url, params=params, **kwargs)
        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response) -> None:
        """
        Map an HTTP error status to the matching typed error.

        429 and 503 are how the hindcast APIs report exhausted quotas.
        """
        status_code = response.status_code
        if status_code < 400:
            return

        reason = getattr(response, 'reason', '') or ''
        context = {'url': getattr(response, 'url', None), 'status_code': status_code}
        message = f"HTTP {status_code} {reason}".strip()

        if status_code in (429, 503):
            raise RateLimitError(f"{message}: Too Many Requests", context)
        if status_code in (401, 403):
            raise AuthenticationError(f"{message}: credentials rejected", context)
        if status_code == 404:
            raise DataNotFoundError(f"{message}: Not Found", context)
        if status_code in (408, 504):
            raise SourceTimeoutError(f"{message}: timed out", context)
        if status_code >= 500:
            raise ServerUnavailableError(message, context)
        detail = (getattr(response, 'text', '') or '')[:500]
        raise MalformedRequestError(f"{message}: {detail}", context)
