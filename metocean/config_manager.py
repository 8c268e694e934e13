"""
Unified Configuration System for MetOcean Extraction

This module provides centralized configuration management with clear hierarchy:
1. Built-in defaults (lowest priority)
2. Configuration files (YAML/JSON)
3. Environment variables
4. Command-line arguments (highest priority)

The loaded configuration is turned into two immutable objects used by a run:
a SourceConfig per dataset source (valid range, request limits, retry
settings) and one ExtractionContext (output root, credentials, variables)
that is passed to adapter construction.
"""

import copy
import json
import os
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .fetch_units import RequestLimits
from .logging_utils import ConfigurationError, ValidationError
from .time_utils import CALENDAR_PERIODS, resolve_time_bound


@dataclass(frozen=True)
class SourceConfig:
    """
    Resolved settings of one dataset source.

    Attributes:
        name: Source identifier ('era5', 'hycom', 'nrel', 'ndbc', 'ww3')
        valid_start: First timestamp the source serves
        valid_end: Exclusive end of the source's range
        limits: Per-request limits used by the chunk planner
        timeout_cooldown: Seconds to wait after a timeout
        server_cooldown: Seconds to wait after a server error
        rate_limit_cooldown: Seconds to wait after a rate-limit response
        max_transient_retries: Backoff retries before a unit is recorded as timed out
        max_rate_limit_retries: Rate-limit retries before the run aborts (None = unbounded)
        max_immediate_retries: Immediate retries of idempotent requests
        max_workers: Pool size for variable fan-out
        variables: Variables requested from the source
        fan_out_variables: Plan one unit per variable per chunk
        depth_profile: Fetch adaptive depth profiles
        probe_levels: Depth levels sampled by the depth probe
        max_iterations_per_level: Attempt budget per discovered depth level
        request_timeout: Network timeout of a single request in seconds
        file_suffix: Suffix of stored payloads
        options: Source-specific settings (URLs, dataset names, ...)
    """
    name: str
    valid_start: datetime
    valid_end: datetime
    limits: RequestLimits = field(default_factory=RequestLimits)
    timeout_cooldown: float = 60.0
    server_cooldown: float = 300.0
    rate_limit_cooldown: float = 120.0
    max_transient_retries: int = 3
    max_rate_limit_retries: Optional[int] = 30
    max_immediate_retries: int = 3
    max_workers: int = 1
    variables: Tuple[str, ...] = ()
    fan_out_variables: bool = False
    depth_profile: bool = False
    probe_levels: int = 40
    max_iterations_per_level: int = 100
    request_timeout: float = 60.0
    file_suffix: str = '.nc'
    options: Dict[str, Any] = field(default_factory=dict)

    @property
    def valid_range(self) -> Tuple[datetime, datetime]:
        return self.valid_start, self.valid_end


@dataclass(frozen=True)
class ExtractionContext:
    """
    Per-run context shared by the orchestrator and the adapters.

    Built once from ExtractionConfig; there is no module-level state.
    """
    output_root: Path
    temp_directory: Path
    credentials: Dict[str, Optional[str]] = field(default_factory=dict)
    variables: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    log_level: str = 'INFO'

    def credential(self, name: str) -> Optional[str]:
        return self.credentials.get(name)


class ExtractionConfig:
    """
    Unified configuration system for MetOcean extraction.

    Provides centralized configuration management with clear hierarchy:
    1. Built-in defaults
    2. Configuration files (YAML/JSON)
    3. Environment variables
    4. Command-line arguments (highest priority)
    """

    VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

    # Environment variable -> (config path, convert type)
    ENV_MAPPINGS = {
        'METOCEAN_OUTPUT_DIR': ('processing.output_directory', False),
        'METOCEAN_TEMP_DIR': ('processing.temp_directory', False),
        'METOCEAN_LOG_LEVEL': ('processing.log_level', False),
        'METOCEAN_MAX_RATE_LIMIT_RETRIES': ('processing.max_rate_limit_retries', True),
        'NREL_API_KEY': ('credentials.nrel_api_key', False),
        'NREL_API_EMAIL': ('credentials.nrel_api_email', False),
        'CDSAPI_URL': ('credentials.cdsapi_url', False),
        'CDSAPI_KEY': ('credentials.cdsapi_key', False),
    }

    def __init__(self, config_file: Optional[str] = None, cli_args: Optional[Dict] = None,
                 today: Optional[date] = None):
        """
        Initialize configuration system with proper precedence order.

        Args:
            config_file: Path to YAML or JSON configuration file
            cli_args: Dictionary of command-line arguments (highest priority)
            today: Reference date for relative source bounds (default: today)
        """
        self.config_file = config_file
        self.cli_args = cli_args or {}
        self.today = today
        self._config = {}
        self._load_configuration()

    def _load_configuration(self):
        """Load configuration with proper precedence order"""
        self._config = self._get_default_config()

        if self.config_file:
            file_config = self._load_config_file(self.config_file)
            self._merge_config(self._config, file_config)

        env_config = self._load_environment_config()
        self._merge_config(self._config, env_config)

        if self.cli_args:
            self._merge_config(self._config, self.cli_args)

        self._validate_configuration()

    def _get_default_config(self) -> Dict[str, Any]:
        """Built-in default configuration"""
        return {
            'processing': {
                'output_directory': './metocean_data/',
                'temp_directory': './temp/',
                'log_level': 'INFO',
                'max_rate_limit_retries': 30,
                'clean_partial_files': True,
            },
            'credentials': {
                'nrel_api_key': None,   # Set via environment
                'nrel_api_email': None,
                'cdsapi_url': None,     # Falls back to ~/.cdsapirc
                'cdsapi_key': None,
            },
            'sources': {
                'era5': {
                    'valid_start': '1940-01-01',
                    'valid_end': '-1M',
                    'time_chunk': 'year',
                    'spatial_mode': 'points',
                    'lat_step': 0.25,
                    'lon_step': 0.25,
                    'snap_to_grid': True,
                    'timeout_cooldown': 60,
                    'server_cooldown': 300,
                    'rate_limit_cooldown': 120,
                    'request_timeout': 3600,
                    'file_suffix': '.nc',
                    'variables': ['significant_height_of_combined_wind_waves_and_swell',
                                  'mean_wave_direction', 'peak_wave_period',
                                  '10m_u_component_of_wind', '10m_v_component_of_wind'],
                    'options': {
                        'dataset': 'reanalysis-era5-single-levels',
                        'product_type': 'reanalysis',
                        'max_variables': 6,
                        'data_format': 'netcdf',
                    },
                },
                'hycom': {
                    'valid_start': '1994-01-01',
                    'valid_end': '2016-01-01',
                    'time_chunk': 'year',
                    'spatial_mode': 'box',
                    'timeout_cooldown': 60,
                    'server_cooldown': 300,
                    'rate_limit_cooldown': 300,
                    'request_timeout': 600,
                    'probe_levels': 40,
                    'max_iterations_per_level': 100,
                    'file_suffix': '.nc',
                    'variables': ['water_u', 'water_v'],
                    'options': {
                        'base_url': 'https://tds.hycom.org/thredds/dodsC/GLBv0.08/expt_53.X/data/',
                    },
                },
                'nrel': {
                    'valid_start': '1979-01-01',
                    'valid_end': '2021-01-01',
                    'time_chunk': 'year',
                    'spatial_mode': 'points',
                    'spacing': 0.25,
                    'timeout_cooldown': 60,
                    'server_cooldown': 120,
                    'rate_limit_cooldown': 120,
                    'request_timeout': 300,
                    'file_suffix': '.csv',
                    'variables': ['significant_wave_height', 'energy_period', 'mean_wave_direction'],
                    'options': {
                        'base_url': 'https://developer.nrel.gov/api/wave/v2/wave/',
                        'time_step': '3-hour',
                        'datasets': {'1-hour': 'virtual-buoy', '3-hour': 'us-west-coast'},
                    },
                },
                'ndbc': {
                    'valid_start': '1979-01-01',
                    'valid_end': '-1d',
                    'time_chunk': 'year',
                    'spatial_mode': 'box',
                    'timeout_cooldown': 60,
                    'server_cooldown': 60,
                    'rate_limit_cooldown': 120,
                    'request_timeout': 120,
                    'file_suffix': '.txt',
                    'stations': [],
                    'options': {
                        'base_url': 'https://www.ndbc.noaa.gov/view_text_file.php',
                        'archive_dir': 'data/historical/stdmet/',
                        'station_table_url': 'https://www.ndbc.noaa.gov/data/stations/station_table.txt',
                    },
                },
                'ww3': {
                    'valid_start': '1979-01-01',
                    'valid_end': '2010-01-01',
                    'time_chunk': 'month',
                    'spatial_mode': 'box',
                    'timeout_cooldown': 60,
                    'server_cooldown': 300,
                    'rate_limit_cooldown': 120,
                    'request_timeout': 60,
                    'max_workers': 4,
                    'fan_out_variables': True,
                    'file_suffix': '.grb2',
                    'variables': ['hs', 'dp', 'tp', 'wind'],
                    'options': {
                        'base_url': 'https://polar.ncep.noaa.gov/waves/hindcasts/nopp-phase2/',
                        'grid': 'ecg_10m',
                    },
                },
            },
        }

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            if config_path.suffix.lower() in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif config_path.suffix.lower() == '.json':
                return json.load(f)
            else:
                raise ConfigurationError(f"Unsupported config file format: {config_path.suffix}")

    def _load_environment_config(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        env_config = {}

        for env_var, (config_path, convert) in self.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value is not None:
                self._set_nested_config(env_config, config_path, value, convert)

        return env_config

    def _set_nested_config(self, config_dict: Dict, path: str, value: Any, convert: bool = True):
        """Set nested configuration value using dot notation path"""
        keys = path.split('.')
        current = config_dict

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        if convert and isinstance(value, str):
            if value.lower() in ['none', 'null']:
                value = None
            elif value.lower() in ['true', 'false']:
                value = value.lower() == 'true'
            elif value.isdigit():
                value = int(value)
            elif value.replace('.', '', 1).isdigit():
                value = float(value)

        current[keys[-1]] = value

    def _merge_config(self, base_config: Dict, override_config: Dict):
        """Deep merge configuration dictionaries"""
        for key, value in override_config.items():
            if key in base_config and isinstance(base_config[key], dict) and isinstance(value, dict):
                self._merge_config(base_config[key], value)
            else:
                base_config[key] = value

    def _validate_configuration(self):
        """Validate final configuration"""
        for section in ['processing', 'credentials', 'sources']:
            if section not in self._config:
                raise ConfigurationError(f"Required configuration section missing: {section}")

        self._validate_processing_config()

        for source_name in self._config['sources']:
            self._validate_source_config(source_name)

    def _validate_processing_config(self):
        """Validate processing section configuration"""
        processing = self._config['processing']

        if processing.get('log_level', 'INFO') not in self.VALID_LOG_LEVELS:
            raise ConfigurationError(f"log_level must be one of: {self.VALID_LOG_LEVELS}")

        max_rate = processing.get('max_rate_limit_retries')
        if max_rate is not None and (not isinstance(max_rate, int) or max_rate < 0):
            raise ConfigurationError("max_rate_limit_retries must be a non-negative integer or null")

    def _validate_source_config(self, source_name: str):
        """Validate one entry of the sources section"""
        source = self._config['sources'][source_name]
        if not isinstance(source, dict):
            raise ConfigurationError(f"Source configuration for '{source_name}' must be a mapping")

        time_chunk = source.get('time_chunk', 'year')
        if time_chunk not in CALENDAR_PERIODS and not isinstance(time_chunk, (int, float)):
            raise ConfigurationError(
                f"{source_name}: time_chunk must be one of {list(CALENDAR_PERIODS)} or a number of hours"
            )

        if source.get('spatial_mode', 'box') not in ('box', 'points'):
            raise ConfigurationError(f"{source_name}: spatial_mode must be 'box' or 'points'")

        for key in ['timeout_cooldown', 'server_cooldown', 'rate_limit_cooldown']:
            if source.get(key, 0) < 0:
                raise ConfigurationError(f"{source_name}: {key} must be non-negative")

        for key in ['request_timeout', 'max_workers', 'probe_levels', 'max_iterations_per_level']:
            if key in source and source[key] <= 0:
                raise ConfigurationError(f"{source_name}: {key} must be positive")

        for key in ['lat_step', 'lon_step', 'spacing', 'max_lat_span', 'max_lon_span']:
            if source.get(key) is not None and source[key] <= 0:
                raise ConfigurationError(f"{source_name}: {key} must be positive")

        variables = source.get('variables', [])
        if not isinstance(variables, list):
            raise ConfigurationError(f"Variables for '{source_name}' must be a list")

        try:
            valid_start = resolve_time_bound(source.get('valid_start'), self.today)
            valid_end = resolve_time_bound(source.get('valid_end'), self.today)
        except ValidationError as e:
            raise ConfigurationError(f"{source_name}: {e}") from e
        if valid_start is None or valid_end is None:
            raise ConfigurationError(f"{source_name}: valid_start and valid_end are required")
        if valid_start >= valid_end:
            raise ConfigurationError(f"{source_name}: valid_start must be before valid_end")

    # Public interface methods
    def get(self, path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation path.

        Args:
            path: Dot-separated path to configuration value (e.g., 'processing.output_directory')
            default: Default value if path not found

        Returns:
            Configuration value or default if not found
        """
        keys = path.split('.')
        current = self._config

        try:
            for key in keys:
                current = current[key]
            return current
        except (KeyError, TypeError):
            return default

    def get_processing_config(self) -> Dict[str, Any]:
        """Get processing-specific configuration"""
        return self._config['processing']

    def get_source_names(self) -> List[str]:
        return list(self._config['sources'].keys())

    def get_source_config(self, source_name: str) -> SourceConfig:
        """
        Resolve the settings of one source into a SourceConfig.

        Args:
            source_name: Source identifier

        Returns:
            SourceConfig

        Raises:
            ConfigurationError: If the source is not configured
        """
        if source_name not in self._config['sources']:
            raise ConfigurationError(
                f"Unknown source: {source_name}. Available: {self.get_source_names()}"
            )
        source = self._config['sources'][source_name]

        time_chunk: Union[str, timedelta] = source.get('time_chunk', 'year')
        if isinstance(time_chunk, (int, float)):
            time_chunk = timedelta(hours=time_chunk)

        lat_step = source.get('lat_step')
        lon_step = source.get('lon_step')
        if source.get('spacing') is not None:
            # Hindcast nodes are twice as dense in latitude as in longitude
            lat_step = source['spacing'] / 2.0
            lon_step = source['spacing']

        limits = RequestLimits(
            time_chunk=time_chunk,
            spatial_mode=source.get('spatial_mode', 'box'),
            max_lat_span=source.get('max_lat_span'),
            max_lon_span=source.get('max_lon_span'),
            lat_step=lat_step,
            lon_step=lon_step,
            snap_to_grid=bool(source.get('snap_to_grid', False)),
        )

        max_rate = source.get('max_rate_limit_retries',
                              self._config['processing'].get('max_rate_limit_retries'))

        return SourceConfig(
            name=source_name,
            valid_start=resolve_time_bound(source['valid_start'], self.today),
            valid_end=resolve_time_bound(source['valid_end'], self.today),
            limits=limits,
            timeout_cooldown=float(source.get('timeout_cooldown', 60)),
            server_cooldown=float(source.get('server_cooldown', 300)),
            rate_limit_cooldown=float(source.get('rate_limit_cooldown', 120)),
            max_transient_retries=int(source.get('max_transient_retries', 3)),
            max_rate_limit_retries=max_rate,
            max_immediate_retries=int(source.get('max_immediate_retries', 3)),
            max_workers=int(source.get('max_workers', 1)),
            variables=tuple(source.get('variables', [])),
            fan_out_variables=bool(source.get('fan_out_variables', False)),
            depth_profile=bool(source.get('depth_profile', False)),
            probe_levels=int(source.get('probe_levels', 40)),
            max_iterations_per_level=int(source.get('max_iterations_per_level', 100)),
            request_timeout=float(source.get('request_timeout', 60)),
            file_suffix=source.get('file_suffix', '.nc'),
            options=copy.deepcopy(source.get('options', {})),
        )

    def get_stations(self, source_name: str) -> List[str]:
        """Configured station identifiers of a station-based source."""
        return [str(s) for s in self._config['sources'].get(source_name, {}).get('stations', [])]

    def build_context(self) -> ExtractionContext:
        """Build the per-run ExtractionContext."""
        processing = self._config['processing']
        return ExtractionContext(
            output_root=Path(processing['output_directory']),
            temp_directory=Path(processing['temp_directory']),
            credentials=dict(self._config['credentials']),
            variables={name: tuple(source.get('variables', []))
                       for name, source in self._config['sources'].items()},
            log_level=processing.get('log_level', 'INFO'),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Return complete configuration as dictionary"""
        return copy.deepcopy(self._config)

    def save_config(self, output_path: str):
        """
        Save current configuration to file.

        Args:
            output_path: Path where to save configuration file
        """
        output_path = Path(output_path)

        if output_path.suffix.lower() in ['.yaml', '.yml']:
            with open(output_path, 'w') as f:
                yaml.safe_dump(self._config, f, default_flow_style=False, indent=2)
        elif output_path.suffix.lower() == '.json':
            with open(output_path, 'w') as f:
                json.dump(self._config, f, indent=2, default=str)
        else:
            raise ConfigurationError(f"Unsupported output format: {output_path.suffix}")
