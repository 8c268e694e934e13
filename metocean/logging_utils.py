"""
Error Handling and Logging Infrastructure for MetOcean Extraction

Logging setup for long-running extraction runs, a run-level logger that
keeps per-status counters, and the exception taxonomy the retry policy uses
to choose between retrying, recording and aborting.

Error taxonomy:
- Transient-Recoverable: SourceTimeoutError, RateLimitError, ServerUnavailableError
- Data-Absent: DataNotFoundError
- Malformed-Request: MalformedRequestError (and MalformedResponseError for bad payloads)
- Fatal: AuthenticationError, ConfigurationError
"""

import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER_NAME = 'metocean'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
RULE = '-' * 60


def setup_metocean_logging(log_level: str = "INFO",
                           log_file: Optional[str] = None,
                           console_output: bool = True) -> logging.Logger:
    """
    Configure the ``metocean`` package logger.

    Handlers from a previous call are replaced, so repeated runs in one
    process do not duplicate output. The file handler records DEBUG messages
    whatever the console level is.

    Args:
        log_level: Console level name ('DEBUG' ... 'CRITICAL')
        log_file: Optional log file; parent directories are created
        console_output: Also log to stdout

    Returns:
        The package logger
    """
    level = getattr(logging, log_level.upper())
    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(logging.DEBUG if log_file else level)

    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    if console_output:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        console.setFormatter(formatter)
        package_logger.addHandler(console)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    return package_logger


class ProcessingLogger:
    """
    Run-level logger of an extraction.

    Writes a header with the run parameters, one error block per failed unit
    and a footer with per-status counters, so the end of a long log says what
    happened without scrolling through every request.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.started_at: Optional[datetime] = None
        self.source: Optional[str] = None
        self.counters: Dict[str, float] = {}
        self._reset_counters()

    def _reset_counters(self) -> None:
        self.counters = {
            'completed': 0,
            'skipped': 0,
            'timed_out': 0,
            'errored': 0,
            'aborted': 0,
            'backoff_seconds': 0.0,
        }

    def log_extraction_start(self, source: str, parameters: Dict[str, Any]) -> None:
        """Log the run header and reset the counters."""
        self.started_at = datetime.now()
        self.source = source
        self._reset_counters()

        self.logger.info(RULE)
        self.logger.info(f"{source.upper()} extraction started at {self.started_at.isoformat(timespec='seconds')}")
        for name, value in parameters.items():
            self.logger.info(f"  {name}: {value}")
        self.logger.info(RULE)

    def log_unit_outcome(self, outcome) -> None:
        """
        Count a finished unit; failed units are logged with their context.

        Args:
            outcome: UnitOutcome produced by the fetch worker
        """
        status = outcome.status.value
        self.counters[status] = self.counters.get(status, 0) + 1
        self.counters['backoff_seconds'] += outcome.backoff_seconds

        if outcome.status.is_failure:
            self.log_processing_error(status, outcome.error_detail or 'no detail', {
                'unit': outcome.unit.unit_id,
                'attempts': outcome.attempts,
                'data_absent': outcome.data_absent,
            })

    def log_processing_error(self, error_type: str, error_details: str, context: Optional[Dict] = None) -> None:
        """Log one failure as a headline followed by its context entries."""
        self.logger.error(f"[{error_type}] {error_details}")
        for key, value in (context or {}).items():
            self.logger.error(f"    {key} = {value}")

    def log_extraction_complete(self, summary_stats: Optional[Dict] = None) -> None:
        """
        Log the run footer.

        Args:
            summary_stats: Extra figures reported after the counters
        """
        label = (self.source or 'metocean').upper()
        self.logger.info(RULE)
        if self.started_at is not None:
            self.logger.info(f"{label} extraction finished after {datetime.now() - self.started_at}")
        else:
            self.logger.info(f"{label} extraction finished")

        counters = dict(self.counters)
        counters.update(summary_stats or {})
        for name, value in counters.items():
            self.logger.info(f"  {name}: {value}")
        self.logger.info(RULE)


class MetOceanError(Exception):
    """
    Base exception of the package.

    Carries a context dict (unit ids, URLs, status codes ...) that is merged
    into the log record and the JSON summary.
    """

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message)
        self.context = dict(context or {})
        self.timestamp = datetime.now()

    def get_full_error_info(self) -> Dict[str, Any]:
        """Error type, message, timestamp and context as a JSON-able dict."""
        return {
            'error_type': type(self).__name__,
            'message': str(self),
            'timestamp': self.timestamp.isoformat(),
            'context': self.context,
        }


class ConfigurationError(MetOceanError):
    """Invalid or incomplete configuration"""


class ValidationError(MetOceanError, ValueError):
    """Invalid region, time window or other caller-supplied input"""


class DataDownloadError(MetOceanError):
    """A request to a remote source failed"""


class SourceTimeoutError(DataDownloadError):
    """The remote server did not answer in time"""


class RateLimitError(DataDownloadError):
    """The remote quota is exhausted (HTTP 429 / Too Many Requests)"""


class ServerUnavailableError(DataDownloadError):
    """The remote server is overloaded or failing (HTTP 5xx)"""


class DataNotFoundError(DataDownloadError):
    """The source has no data for the requested unit"""


class MalformedRequestError(DataDownloadError):
    """The source rejected the request (HTTP 400 / unknown 4xx)"""


class MalformedResponseError(DataDownloadError):
    """The source answered with something that could not be parsed"""


class AuthenticationError(ConfigurationError):
    """Credentials are missing or rejected"""


class ExtractionAbortedError(MetOceanError):
    """
    A fatal error stopped the extraction run.

    Attributes:
        unit: FetchUnit that was being executed, if any
        summary: ExtractionSummary of the units finished before the abort,
            attached by the orchestrator
    """

    def __init__(self, message: str, unit=None, context: Optional[Dict] = None):
        super().__init__(message, context)
        self.unit = unit
        self.summary = None


# Operation-name keyword -> error raised for foreign exceptions
_OPERATION_ERRORS = (
    ('download', DataDownloadError),
    ('config', ConfigurationError),
    ('validat', ValidationError),
)


@contextmanager
def error_context(operation_name: str, logger: Optional[ProcessingLogger] = None, **context_info):
    """
    Attach operation context to errors raised inside the block.

    MetOcean errors get the context merged in and are re-raised. Any other
    exception is wrapped in the MetOceanError subclass matching the operation
    name ("loading configuration" -> ConfigurationError).

    Example:
        with error_context("loading configuration", config_file=path):
            config = ExtractionConfig(path)
    """
    started = datetime.now()
    if logger:
        logger.logger.debug(f"{operation_name}...")

    try:
        yield
    except Exception as e:
        context = {'operation': operation_name, 'duration': str(datetime.now() - started), **context_info}
        if logger:
            logger.log_processing_error(type(e).__name__, str(e), context)

        if isinstance(e, MetOceanError):
            e.context.update(context)
            raise

        lowered = operation_name.lower()
        error_class = next((cls for keyword, cls in _OPERATION_ERRORS if keyword in lowered), MetOceanError)
        raise error_class(str(e), context) from e

    if logger:
        logger.logger.debug(f"{operation_name} done in {datetime.now() - started}")


def create_processing_session_log(output_dir: str, source: str) -> str:
    """
    Path of a new session log: ``<output_dir>/logs/metocean_<source>_<timestamp>.log``.

    The logs directory is created.
    """
    log_path = Path(output_dir) / "logs" / f"metocean_{source}_{datetime.now():%Y%m%d_%H%M%S}.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return str(log_path)


def save_processing_session_summary(summary: Dict[str, Any], output_path: str) -> None:
    """
    Save an extraction summary as JSON.

    Args:
        summary: Summary dictionary (ExtractionSummary.to_dict())
        output_path: Destination file; parent directories are created
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        json.dump(summary, f, indent=2, default=str)

    logging.getLogger(LOGGER_NAME).info(f"Extraction summary saved: {output_path}")
