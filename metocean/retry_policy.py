"""
Retry Policy for MetOcean Sources

Classifies fetch failures and decides what the fetch worker should do next:
retry at once, retry after a cooldown, record the failure and move on, or
abort the whole run.

Classification looks at the exception type first (the adapters raise the
typed errors from logging_utils where they can), then at HTTP status codes
carried by ``requests`` exceptions, and finally at keywords in the error
message, since OPeNDAP and CDS clients only report failures as text.
"""

import logging
import re
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests

from .fetch_units import UnitStatus
from .logging_utils import (
    AuthenticationError,
    ConfigurationError,
    DataNotFoundError,
    MalformedRequestError,
    MalformedResponseError,
    RateLimitError,
    ServerUnavailableError,
    SourceTimeoutError,
)

logger = logging.getLogger(__name__)


class RetryAction(Enum):
    RETRY_IMMEDIATE = 'retry_immediate'
    RETRY_AFTER_BACKOFF = 'retry_after_backoff'
    SKIP_RECORD_ERROR = 'skip_record_error'
    FATAL_ABORT = 'fatal_abort'


@dataclass(frozen=True)
class RetryDecision:
    """
    What to do about one failed attempt.

    Attributes:
        action: Next step for the worker
        category: Error category that produced the decision
        reason: Human-readable explanation, copied into the unit outcome
        delay: Seconds to wait before retrying (backoff only)
        status: Outcome status when the unit is given up on
        data_absent: The failure means the source has no data for the unit
    """
    action: RetryAction
    category: str
    reason: str
    delay: float = 0.0
    status: Optional[UnitStatus] = None
    data_absent: bool = False

    @property
    def should_retry(self) -> bool:
        return self.action in (RetryAction.RETRY_IMMEDIATE, RetryAction.RETRY_AFTER_BACKOFF)


# Keyword table, checked in order; first match wins
_MESSAGE_CATEGORIES = (
    ('rate_limit', ('too many requests', 'rate limit', 'service unavailable', 'quota')),
    ('authentication', ('unauthorized', 'forbidden', 'api key', 'api_key', 'credential')),
    ('timeout', ('timed out', 'timeout', 'time out')),
    ('not_found', ('not found', 'does not exist', 'no data')),
    ('server', ('getvarsshort', 'server error', 'bad gateway', 'gateway', 'overload')),
    ('malformed_request', ('bad request',)),
    ('malformed_response', ('invalid format', 'corrupt', 'could not parse', 'malformed')),
    ('network', ('connection', 'network', 'dns', 'reset by peer')),
)

# Status codes quoted in text-only errors ("HTTP Error 429", "status code: 503").
# Bare digits are not enough; they occur in location tags and paths.
_STATUS_IN_MESSAGE = re.compile(r'\b(?:http(?: error)?|status(?: code)?)\s*:?\s*([1-5]\d\d)\b')


class RetryPolicy:
    """
    Source-configurable retry policy.

    Cooldowns are per source: HYCOM backs off 5 minutes on server errors and
    NREL 2 minutes on rate limits. The rate-limit loop is bounded by
    ``max_rate_limit_retries``; reaching the cap is treated as a broken
    credential or exhausted quota and aborts the run. ``None`` keeps retrying
    until the quota resets.
    """

    def __init__(self,
                 timeout_cooldown: float = 60.0,
                 server_cooldown: float = 300.0,
                 rate_limit_cooldown: float = 120.0,
                 max_transient_retries: int = 3,
                 max_rate_limit_retries: Optional[int] = 30,
                 max_immediate_retries: int = 3):
        """
        Args:
            timeout_cooldown: Seconds to wait after a network timeout
            server_cooldown: Seconds to wait after a 5xx/overload response
            rate_limit_cooldown: Seconds to wait after a rate-limit response
            max_transient_retries: Retries for timeouts and server errors before
                the unit is recorded as timed out
            max_rate_limit_retries: Retries for rate limits before aborting (None = no cap)
            max_immediate_retries: Immediate retries of idempotent operations
        """
        if min(timeout_cooldown, server_cooldown, rate_limit_cooldown) < 0:
            raise ValueError("Cooldowns must be non-negative")
        if max_transient_retries < 0 or max_immediate_retries < 0:
            raise ValueError("Retry caps must be non-negative")
        if max_rate_limit_retries is not None and max_rate_limit_retries < 0:
            raise ValueError("max_rate_limit_retries must be non-negative or None")

        self.timeout_cooldown = timeout_cooldown
        self.server_cooldown = server_cooldown
        self.rate_limit_cooldown = rate_limit_cooldown
        self.max_transient_retries = max_transient_retries
        self.max_rate_limit_retries = max_rate_limit_retries
        self.max_immediate_retries = max_immediate_retries

    @classmethod
    def from_source_config(cls, source_config) -> 'RetryPolicy':
        """Build the policy for a SourceConfig."""
        return cls(
            timeout_cooldown=source_config.timeout_cooldown,
            server_cooldown=source_config.server_cooldown,
            rate_limit_cooldown=source_config.rate_limit_cooldown,
            max_transient_retries=source_config.max_transient_retries,
            max_rate_limit_retries=source_config.max_rate_limit_retries,
            max_immediate_retries=source_config.max_immediate_retries,
        )

    def categorize(self, error: BaseException) -> str:
        """
        Categorize an error for retry decision making.

        Returns one of: 'timeout', 'server', 'rate_limit', 'not_found',
        'malformed_request', 'malformed_response', 'authentication',
        'configuration', 'network', 'unknown'.
        """
        if isinstance(error, AuthenticationError):
            return 'authentication'
        if isinstance(error, ConfigurationError):
            return 'configuration'
        if isinstance(error, RateLimitError):
            return 'rate_limit'
        if isinstance(error, SourceTimeoutError):
            return 'timeout'
        if isinstance(error, ServerUnavailableError):
            return 'server'
        if isinstance(error, DataNotFoundError):
            return 'not_found'
        if isinstance(error, MalformedRequestError):
            return 'malformed_request'
        if isinstance(error, MalformedResponseError):
            return 'malformed_response'
        if isinstance(error, (requests.Timeout, socket.timeout, TimeoutError)):
            return 'timeout'

        status_code = _status_code_of(error)
        if status_code is not None:
            return _categorize_status(status_code)

        if isinstance(error, requests.ConnectionError):
            return 'network'

        error_lower = str(error).lower()
        status_match = _STATUS_IN_MESSAGE.search(error_lower)
        if status_match:
            return _categorize_status(int(status_match.group(1)))

        for category, keywords in _MESSAGE_CATEGORIES:
            if any(keyword in error_lower for keyword in keywords):
                return category

        return 'unknown'

    def classify(self, error: BaseException, attempt: int = 0, idempotent: bool = False) -> RetryDecision:
        """
        Decide what to do about a failed attempt.

        Args:
            error: Exception raised by the adapter
            attempt: Number of retries already made for this error category
            idempotent: The failed operation is cheap and safe to repeat at once
                (e.g. the depth probe)

        Returns:
            RetryDecision
        """
        category = self.categorize(error)
        detail = f"{type(error).__name__}: {error}"

        if category in ('authentication', 'configuration'):
            return RetryDecision(RetryAction.FATAL_ABORT, category,
                                 f"Fatal {category} error: {detail}", status=UnitStatus.ABORTED)

        if category == 'rate_limit':
            if self.max_rate_limit_retries is not None and attempt >= self.max_rate_limit_retries:
                return RetryDecision(
                    RetryAction.FATAL_ABORT, category,
                    f"Rate limit persisted after {attempt} retries; check the API key or quota ({detail})",
                    status=UnitStatus.ABORTED,
                )
            return RetryDecision(RetryAction.RETRY_AFTER_BACKOFF, category,
                                 f"Request limit reached: {detail}", delay=self.rate_limit_cooldown)

        if category in ('timeout', 'server', 'network'):
            cooldown = self.server_cooldown if category == 'server' else self.timeout_cooldown
            if attempt >= self.max_transient_retries:
                return RetryDecision(
                    RetryAction.SKIP_RECORD_ERROR, category,
                    f"Gave up after {attempt} retries: {detail}", status=UnitStatus.TIMED_OUT,
                )
            return RetryDecision(RetryAction.RETRY_AFTER_BACKOFF, category, detail, delay=cooldown)

        if category == 'not_found':
            return RetryDecision(
                RetryAction.SKIP_RECORD_ERROR, category,
                f"Data might not exist for this unit: {detail}",
                status=UnitStatus.ERRORED, data_absent=True,
            )

        if category == 'malformed_request':
            return RetryDecision(RetryAction.SKIP_RECORD_ERROR, category,
                                 f"Request rejected by source: {detail}", status=UnitStatus.ERRORED)

        # malformed_response and unknown
        if idempotent:
            if attempt < self.max_immediate_retries:
                return RetryDecision(RetryAction.RETRY_IMMEDIATE, category, detail)
            return RetryDecision(
                RetryAction.SKIP_RECORD_ERROR, category,
                f"Maximum iterations ({self.max_immediate_retries}) reached: {detail}",
                status=UnitStatus.ERRORED,
            )
        return RetryDecision(RetryAction.SKIP_RECORD_ERROR, category, detail, status=UnitStatus.ERRORED)


def _status_code_of(error: BaseException) -> Optional[int]:
    response = getattr(error, 'response', None)
    status_code = getattr(response, 'status_code', None)
    if isinstance(status_code, int):
        return status_code
    return None


def _categorize_status(status_code: int) -> str:
    if status_code in (429, 503):
        return 'rate_limit'
    if status_code in (401, 403):
        return 'authentication'
    if status_code == 404:
        return 'not_found'
    if status_code in (408, 504):
        return 'timeout'
    if status_code >= 500:
        return 'server'
    if status_code >= 400:
        return 'malformed_request'
    return 'unknown'
