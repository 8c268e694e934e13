"""
Tests for the layered configuration system.
"""

import json
from datetime import date, datetime, timedelta
from pathlib import Path

import pytest
import yaml

from metocean.config_manager import ExtractionConfig, SourceConfig
from metocean.logging_utils import ConfigurationError

TODAY = date(2024, 3, 15)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for env_var in ExtractionConfig.ENV_MAPPINGS:
        monkeypatch.delenv(env_var, raising=False)


class TestDefaults:
    """Test the built-in defaults"""

    def setup_method(self):
        self.config = ExtractionConfig(today=TODAY)

    def test_get_dotted_path(self):
        assert self.config.get('processing.output_directory') == './metocean_data/'
        assert self.config.get('processing.max_rate_limit_retries') == 30
        assert self.config.get('processing.missing', 'fallback') == 'fallback'
        assert self.config.get('sources.hycom.options.base_url').startswith('https://tds.hycom.org')

    def test_all_sources_configured(self):
        assert set(self.config.get_source_names()) == {'era5', 'hycom', 'nrel', 'ndbc', 'ww3'}

    def test_hycom_source_config(self):
        hycom = self.config.get_source_config('hycom')

        assert isinstance(hycom, SourceConfig)
        assert hycom.valid_range == (datetime(1994, 1, 1), datetime(2016, 1, 1))
        assert hycom.server_cooldown == 300
        assert hycom.limits.spatial_mode == 'box'
        assert hycom.variables == ('water_u', 'water_v')

    def test_relative_bounds_resolved_against_today(self):
        assert self.config.get_source_config('era5').valid_end == datetime(2024, 2, 15)
        assert self.config.get_source_config('ndbc').valid_end == datetime(2024, 3, 14)

    def test_nrel_spacing_sets_grid_steps(self):
        limits = self.config.get_source_config('nrel').limits
        assert limits.spatial_mode == 'points'
        assert limits.lat_step == 0.125
        assert limits.lon_step == 0.25

    def test_ww3_fans_out_per_variable(self):
        ww3 = self.config.get_source_config('ww3')
        assert ww3.fan_out_variables
        assert ww3.max_workers == 4
        assert ww3.limits.time_chunk == 'month'
        assert ww3.variables == ('hs', 'dp', 'tp', 'wind')

    def test_rate_limit_cap_inherited_from_processing(self):
        assert self.config.get_source_config('nrel').max_rate_limit_retries == 30

    def test_unknown_source(self):
        with pytest.raises(ConfigurationError):
            self.config.get_source_config('gfs')

    def test_build_context(self):
        context = self.config.build_context()
        assert context.output_root == Path('./metocean_data/')
        assert context.credential('nrel_api_key') is None
        assert context.variables['hycom'] == ('water_u', 'water_v')
        assert context.log_level == 'INFO'

    def test_to_dict_is_a_copy(self):
        snapshot = self.config.to_dict()
        snapshot['processing']['log_level'] = 'DEBUG'
        assert self.config.get('processing.log_level') == 'INFO'


class TestLayering:
    """Test file, environment and command-line precedence"""

    def test_yaml_file_overrides_defaults(self, tmp_path):
        config_file = tmp_path / 'config.yaml'
        config_file.write_text(yaml.safe_dump({
            'processing': {'output_directory': str(tmp_path / 'out')},
            'sources': {'hycom': {'valid_end': '2010-01-01', 'depth_profile': True}},
        }))

        config = ExtractionConfig(config_file=str(config_file), today=TODAY)
        hycom = config.get_source_config('hycom')

        assert config.get('processing.output_directory') == str(tmp_path / 'out')
        assert hycom.valid_end == datetime(2010, 1, 1)
        assert hycom.depth_profile
        # Untouched keys keep their defaults
        assert hycom.valid_start == datetime(1994, 1, 1)

    def test_json_file(self, tmp_path):
        config_file = tmp_path / 'config.json'
        config_file.write_text(json.dumps({'sources': {'ndbc': {'stations': ['46027', 46022]}}}))

        config = ExtractionConfig(config_file=str(config_file), today=TODAY)

        assert config.get_stations('ndbc') == ['46027', '46022']

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ExtractionConfig(config_file=str(tmp_path / 'absent.yaml'))

    def test_unsupported_file_format(self, tmp_path):
        config_file = tmp_path / 'config.ini'
        config_file.write_text('[processing]')
        with pytest.raises(ConfigurationError):
            ExtractionConfig(config_file=str(config_file))

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / 'config.yaml'
        config_file.write_text(yaml.safe_dump({'processing': {'log_level': 'WARNING'}}))
        monkeypatch.setenv('METOCEAN_LOG_LEVEL', 'DEBUG')
        monkeypatch.setenv('NREL_API_KEY', 'secret')
        monkeypatch.setenv('METOCEAN_MAX_RATE_LIMIT_RETRIES', '5')

        config = ExtractionConfig(config_file=str(config_file), today=TODAY)

        assert config.get('processing.log_level') == 'DEBUG'
        assert config.get('credentials.nrel_api_key') == 'secret'
        assert config.get_source_config('nrel').max_rate_limit_retries == 5

    def test_unbounded_rate_limit_from_environment(self, monkeypatch):
        monkeypatch.setenv('METOCEAN_MAX_RATE_LIMIT_RETRIES', 'null')
        config = ExtractionConfig(today=TODAY)
        assert config.get_source_config('nrel').max_rate_limit_retries is None

    def test_cli_overrides_environment(self, monkeypatch):
        monkeypatch.setenv('METOCEAN_OUTPUT_DIR', '/from/env')
        config = ExtractionConfig(cli_args={'processing': {'output_directory': '/from/cli'}}, today=TODAY)
        assert config.get('processing.output_directory') == '/from/cli'

    def test_numeric_time_chunk_is_hours(self):
        config = ExtractionConfig(cli_args={'sources': {'era5': {'time_chunk': 6}}}, today=TODAY)
        assert config.get_source_config('era5').limits.time_chunk == timedelta(hours=6)


class TestValidation:
    """Test rejection of invalid settings"""

    @pytest.mark.parametrize('overrides', [
        {'processing': {'log_level': 'LOUD'}},
        {'processing': {'max_rate_limit_retries': -1}},
        {'sources': {'hycom': {'time_chunk': 'fortnight'}}},
        {'sources': {'hycom': {'spatial_mode': 'hexagons'}}},
        {'sources': {'hycom': {'server_cooldown': -5}}},
        {'sources': {'ww3': {'max_workers': 0}}},
        {'sources': {'nrel': {'spacing': 0}}},
        {'sources': {'hycom': {'variables': 'water_u'}}},
        {'sources': {'hycom': {'valid_start': '2020-01-01'}}},
        {'sources': {'hycom': {'valid_end': 'someday'}}},
        {'sources': {'hycom': 'not a mapping'}},
    ])
    def test_invalid_configuration(self, overrides):
        with pytest.raises(ConfigurationError):
            ExtractionConfig(cli_args=overrides, today=TODAY)


@pytest.mark.parametrize('suffix', ['.yaml', '.json'])
def test_save_and_reload(tmp_path, suffix):
    config = ExtractionConfig(cli_args={'processing': {'log_level': 'DEBUG'}}, today=TODAY)
    output = tmp_path / f'saved{suffix}'

    config.save_config(str(output))
    reloaded = ExtractionConfig(config_file=str(output), today=TODAY)

    assert reloaded.get('processing.log_level') == 'DEBUG'
    assert reloaded.get_source_config('ww3').variables == ('hs', 'dp', 'tp', 'wind')


def test_save_unsupported_format(tmp_path):
    with pytest.raises(ConfigurationError):
        ExtractionConfig(today=TODAY).save_config(str(tmp_path / 'config.toml'))
