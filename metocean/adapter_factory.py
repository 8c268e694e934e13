"""
Source Adapter Factory for MetOcean Extraction

Provides a registry of source adapters with dependency checking, replacing
per-source branching in the callers.
"""

import importlib
import logging
from typing import Any, Dict, List, Optional

from .adapters.base import SourceAdapter
from .adapters.era5 import ERA5Adapter
from .adapters.hycom import HYCOMAdapter
from .adapters.ndbc import NDBCAdapter
from .adapters.nrel import NRELAdapter
from .adapters.ww3 import WW3Adapter
from .config_manager import ExtractionContext, SourceConfig
from .logging_utils import ConfigurationError, MetOceanError


class AdapterFactory:
    """
    Factory class for creating source adapter instances.

    Adapters are looked up by source name; additional adapters can be added
    with ``register``.
    """

    # Registry of available adapters
    ADAPTERS = {
        'era5': ERA5Adapter,
        'hycom': HYCOMAdapter,
        'nrel': NRELAdapter,
        'ndbc': NDBCAdapter,
        'ww3': WW3Adapter,
    }

    # Dependencies required for each adapter
    DEPENDENCIES = {
        'era5': ['cdsapi'],
        'hycom': ['xarray', 'netCDF4'],
        'nrel': ['requests'],
        'ndbc': ['requests'],
        'ww3': ['requests'],
    }

    @classmethod
    def register(cls, name: str, adapter_class, dependencies: Optional[List[str]] = None) -> None:
        """Register an adapter class under a source name."""
        if not issubclass(adapter_class, SourceAdapter):
            raise TypeError(f"{adapter_class.__name__} is not a SourceAdapter")
        cls.ADAPTERS[name] = adapter_class
        cls.DEPENDENCIES[name] = list(dependencies or [])

    @classmethod
    def create_adapter(cls, source: str, source_config: SourceConfig,
                       context: ExtractionContext, **kwargs) -> SourceAdapter:
        """
        Create adapter instance for a specific source.

        Args:
            source: Source identifier ('era5', 'hycom', 'nrel', 'ndbc', 'ww3')
            source_config: Resolved settings of the source
            context: Per-run extraction context
            **kwargs: Extra constructor arguments (e.g. an HTTP session)

        Returns:
            SourceAdapter: Configured adapter instance

        Raises:
            ConfigurationError: If the source is unknown or dependencies are missing
        """
        if source not in cls.ADAPTERS:
            raise ConfigurationError(f"Unknown source: {source}. Available: {list(cls.ADAPTERS.keys())}")

        missing_deps = cls.check_adapter_dependencies(source)
        if missing_deps:
            raise ConfigurationError(f"Missing dependencies for {source}: {missing_deps}")

        adapter_class = cls.ADAPTERS[source]
        if source_config.depth_profile and not adapter_class.supports_depth_profile:
            raise ConfigurationError(f"{source} does not support depth profiles")

        try:
            adapter = adapter_class(source_config, context, **kwargs)
        except MetOceanError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to create {source} adapter: {e}") from e

        logging.getLogger(__name__).info(f"Created {source} adapter successfully")
        return adapter

    @classmethod
    def check_adapter_dependencies(cls, source: str) -> List[str]:
        """
        Check dependencies for a specific adapter.

        Returns:
            list: Missing dependencies (empty if all available)
        """
        missing_deps = []
        for dep in cls.DEPENDENCIES.get(source, []):
            try:
                importlib.import_module(dep)
            except ImportError:
                missing_deps.append(dep)
        return missing_deps

    @classmethod
    def get_available_adapters(cls) -> Dict[str, Dict[str, Any]]:
        """
        Get information about available adapters and their status.

        Returns:
            dict: Available adapters with dependency status
        """
        adapters_info = {}

        for source, adapter_class in cls.ADAPTERS.items():
            missing_deps = cls.check_adapter_dependencies(source)
            adapters_info[source] = {
                'class': adapter_class.__name__,
                'dependencies': cls.DEPENDENCIES.get(source, []),
                'missing_dependencies': missing_deps,
                'available': len(missing_deps) == 0,
                'depth_profile': adapter_class.supports_depth_profile,
            }

        return adapters_info
