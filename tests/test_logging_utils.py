"""
Tests for logging setup, the run logger and the error taxonomy.
"""

import json
import logging
from datetime import datetime

import pytest

from metocean.coordinate_systems import Region
from metocean.fetch_units import FetchUnit, UnitOutcome, UnitStatus
from metocean.logging_utils import (
    LOGGER_NAME,
    AuthenticationError,
    ConfigurationError,
    DataDownloadError,
    MetOceanError,
    ProcessingLogger,
    ValidationError,
    create_processing_session_log,
    error_context,
    save_processing_session_summary,
    setup_metocean_logging,
)


@pytest.fixture
def package_logger():
    yield logging.getLogger(LOGGER_NAME)
    for handler in logging.getLogger(LOGGER_NAME).handlers[:]:
        handler.close()
        logging.getLogger(LOGGER_NAME).removeHandler(handler)


def test_setup_replaces_handlers(tmp_path, package_logger):
    log_file = tmp_path / 'logs' / 'run.log'
    setup_metocean_logging('INFO', str(log_file))
    setup_metocean_logging('INFO', str(log_file))

    assert len(package_logger.handlers) == 2
    package_logger.getChild('test').debug("debug detail")
    for handler in package_logger.handlers:
        handler.flush()
    assert 'debug detail' in log_file.read_text()


def test_console_only(package_logger):
    setup_metocean_logging('WARNING', console_output=True)
    assert len(package_logger.handlers) == 1
    assert package_logger.handlers[0].level == logging.WARNING


def test_processing_logger_counts_outcomes(caplog):
    processing_logger = ProcessingLogger(logging.getLogger('metocean.test'))
    unit = FetchUnit('hycom', Region.point(41, -124), datetime(2015, 1, 1), datetime(2015, 2, 1))

    with caplog.at_level(logging.INFO, logger='metocean.test'):
        processing_logger.log_extraction_start('hycom', {'units': 2})
        processing_logger.log_unit_outcome(UnitOutcome(unit, UnitStatus.COMPLETED, backoff_seconds=120))
        processing_logger.log_unit_outcome(UnitOutcome(unit, UnitStatus.ERRORED, error_detail="Not Found",
                                                       data_absent=True))
        processing_logger.log_extraction_complete({'elapsed': 3})

    assert processing_logger.counters['completed'] == 1
    assert processing_logger.counters['errored'] == 1
    assert processing_logger.counters['backoff_seconds'] == 120
    assert '[errored] Not Found' in caplog.text
    assert 'HYCOM extraction finished' in caplog.text


def test_error_context_wraps_foreign_errors():
    with pytest.raises(ConfigurationError) as excinfo:
        with error_context("loading configuration", config_file='absent.yaml'):
            raise FileNotFoundError("absent.yaml")

    assert excinfo.value.context['config_file'] == 'absent.yaml'
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)

    with pytest.raises(DataDownloadError):
        with error_context("download station table"):
            raise OSError("reset")

    with pytest.raises(MetOceanError):
        with error_context("planning"):
            raise RuntimeError("odd")


def test_error_context_keeps_metocean_errors():
    with pytest.raises(ValidationError) as excinfo:
        with error_context("planning", region='box'):
            raise ValidationError("South above north")
    assert excinfo.value.context['region'] == 'box'


def test_error_info():
    error = AuthenticationError("key rejected", {'status_code': 401})
    info = error.get_full_error_info()
    assert info['error_type'] == 'AuthenticationError'
    assert info['context'] == {'status_code': 401}
    assert isinstance(error, ConfigurationError)


def test_session_artefacts(tmp_path):
    log_path = create_processing_session_log(str(tmp_path), 'ndbc')
    assert log_path.startswith(str(tmp_path / 'logs' / 'metocean_ndbc_'))
    assert (tmp_path / 'logs').is_dir()

    summary_path = tmp_path / 'nested' / 'summary.json'
    save_processing_session_summary({'source': 'ndbc', 'when': datetime(2015, 1, 1)}, str(summary_path))
    with open(summary_path) as f:
        assert json.load(f) == {'source': 'ndbc', 'when': '2015-01-01 00:00:00'}
