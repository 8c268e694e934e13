"""
MetOcean Extractor Command Line Interface

Usage:
    # HYCOM surface currents for a box, 2015 only
    metocean-extract hycom \
        --north 42 --south 40 --east -123 --west -125 \
        --start 2015-01-01 --end 2016-01-01 \
        --output ./metocean_data

    # HYCOM depth profile at a point
    metocean-extract hycom --north 41 --east -124 --depth-profile

    # NREL hindcast on a 0.5 degree grid (needs NREL_API_KEY and NREL_API_EMAIL)
    metocean-extract nrel --north 42 --south 40 --east -123 --west -125 --spacing 0.5

    # NDBC buoys by id
    metocean-extract ndbc --north 41 --east -124 --stations 46027,46022

    # List sources and their dependency status
    metocean-extract --list-sources

Exit codes: 0 when every unit completed or was already present, 1 when the
run finished with timed-out or errored units, 2 when the run was aborted or
the input was invalid.
"""

import argparse
import logging
import sys
from typing import Dict, List, Optional

from .adapter_factory import AdapterFactory
from .adapters.ndbc import NDBCAdapter
from .config_manager import ExtractionConfig
from .coordinate_systems import Region, Station
from .logging_utils import (
    ConfigurationError,
    ExtractionAbortedError,
    MetOceanError,
    ValidationError,
    create_processing_session_log,
    error_context,
    setup_metocean_logging,
)
from .orchestrator import ExtractionOrchestrator
from .time_utils import TimeWindow, resolve_time_bound

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_ABORTED = 2

DEFAULT_NEAREST_BUOYS = 5


def parse_variable_list(variables_str: str) -> List[str]:
    """Parse comma-separated variable list."""
    return [v.strip() for v in variables_str.split(',') if v.strip()]


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='metocean-extract',
        description='Resumable extraction of metocean datasets to local files',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  metocean-extract hycom --north 41 --east -124 --start 2015-01-01 --end 2015-02-01
  metocean-extract ww3 --north 45 --south 30 --east -115 --west -130 --start 2005-01-01 --end 2005-03-01
  metocean-extract --list-sources
        '''
    )

    parser.add_argument(
        'source',
        nargs='?',
        choices=sorted(AdapterFactory.ADAPTERS.keys()),
        help='Dataset source to extract'
    )

    parser.add_argument('--north', type=float, help='Northern latitude (or point latitude)')
    parser.add_argument('--south', type=float, help='Southern latitude (default: --north)')
    parser.add_argument('--east', type=float, help='Eastern longitude (or point longitude)')
    parser.add_argument('--west', type=float, help='Western longitude (default: --east)')

    parser.add_argument(
        '--start',
        help="Start of the time window, inclusive (YYYY-MM-DD, YYYYMMDD, 'today', '-1M'). "
             "Default: start of the source range"
    )
    parser.add_argument(
        '--end',
        help='End of the time window, exclusive. Default: end of the source range'
    )

    parser.add_argument('--output', help='Output root directory')
    parser.add_argument('--config', help='YAML or JSON configuration file')
    parser.add_argument(
        '--log-level',
        choices=ExtractionConfig.VALID_LOG_LEVELS,
        help='Logging level (default: from configuration, INFO)'
    )
    parser.add_argument('--log-file', help='Also write the log to this file')
    parser.add_argument('--summary-file', help='Write the run summary as JSON to this file')

    parser.add_argument(
        '--depth-profile',
        action='store_true',
        help='Fetch every valid depth level at the centre of the region (HYCOM)'
    )
    parser.add_argument(
        '--variables',
        type=parse_variable_list,
        help='Comma-separated variables overriding the configured list'
    )
    parser.add_argument(
        '--stations',
        type=parse_variable_list,
        help='Comma-separated station ids (NDBC). Default: buoys nearest to the region centre'
    )
    parser.add_argument(
        '--spacing',
        type=float,
        help='Grid spacing in degrees for point-grid sources (NREL)'
    )
    parser.add_argument(
        '--list-sources',
        action='store_true',
        help='List available sources and exit'
    )

    return parser


def build_cli_overrides(args) -> Dict:
    """Translate parsed arguments into configuration overrides."""
    overrides: Dict = {}
    processing = {}
    if args.output:
        processing['output_directory'] = args.output
    if args.log_level:
        processing['log_level'] = args.log_level
    if processing:
        overrides['processing'] = processing

    source = {}
    if args.depth_profile:
        source['depth_profile'] = True
    if args.variables:
        source['variables'] = args.variables
    if args.spacing is not None:
        source['spacing'] = args.spacing
    if source:
        overrides['sources'] = {args.source: source}

    return overrides


def list_sources() -> int:
    for source, info in AdapterFactory.get_available_adapters().items():
        status = 'available' if info['available'] else f"missing {', '.join(info['missing_dependencies'])}"
        depth = ', depth profiles' if info['depth_profile'] else ''
        print(f"{source:6s} {info['class']:14s} {status}{depth}")
    return EXIT_OK


def run_extraction(args) -> int:
    if args.north is None or args.east is None:
        logger.error("--north and --east are required")
        return EXIT_ABORTED

    with error_context("loading configuration", config_file=args.config):
        config = ExtractionConfig(args.config, build_cli_overrides(args))

    log_file = args.log_file or create_processing_session_log(
        config.get('processing.output_directory'), args.source
    )
    setup_metocean_logging(config.get('processing.log_level', 'INFO'), log_file)

    source_config = config.get_source_config(args.source)
    region = Region.from_bounds(args.north, args.east, args.south, args.west)

    time_window = None
    if args.start or args.end:
        start = resolve_time_bound(args.start) or source_config.valid_start
        end = resolve_time_bound(args.end) or source_config.valid_end
        time_window = TimeWindow(start, end)

    context = config.build_context()
    adapter = AdapterFactory.create_adapter(args.source, source_config, context)

    stations: Optional[List[Station]] = None
    station_ids = args.stations or config.get_stations(args.source)
    if station_ids:
        stations = [Station(station_id) for station_id in station_ids]
    elif isinstance(adapter, NDBCAdapter):
        latitude, longitude = region.center
        stations = adapter.nearest_buoys(latitude, longitude, count=DEFAULT_NEAREST_BUOYS)
        logger.info(f"Using nearest buoys: {[s.station_id for s in stations]}")
        if not stations:
            logger.error("No NDBC stations found near the requested region")
            return EXIT_ABORTED

    orchestrator = ExtractionOrchestrator(
        context, AdapterFactory,
        clean_partial_files=config.get('processing.clean_partial_files', True),
    )
    summary = orchestrator.run(region, time_window, source_config, adapter=adapter,
                               stations=stations, summary_file=args.summary_file)
    print(summary.message())
    return summary.exit_code


def main(argv: List[str] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.list_sources:
        return list_sources()

    if not args.source:
        parser.print_help()
        return EXIT_ABORTED

    try:
        return run_extraction(args)
    except ExtractionAbortedError as e:
        logger.error(f"Extraction aborted: {e}")
        if e.summary is not None:
            print(e.summary.message())
        return EXIT_ABORTED
    except (ValidationError, ConfigurationError, FileNotFoundError) as e:
        logger.error(f"Invalid input: {e}")
        return EXIT_ABORTED
    except MetOceanError as e:
        logger.error(f"Extraction failed before it started: {e}")
        return EXIT_ABORTED


if __name__ == '__main__':
    sys.exit(main())
