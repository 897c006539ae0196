"""
Command-line interface for the gribslicer package.

Provides an argparse-based CLI with subcommands for downloading forecast
fields and checking the optional GRIB/NetCDF collaborators.

Usage:
    gribslicer download --date 20251012 --cycle 00z --variable tp
    gribslicer download --date 20251012 --cycle 12z --variable 2t --variable msl --product hres
    gribslicer download --date 20251012 --cycle 00z --variable tp --member 5 --region EUROPE
    gribslicer check
"""

import argparse
import importlib
import json
import sys
from dataclasses import replace
from typing import Optional

from .api import download_forecast
from .config import Config, DATE_RE, parse_cycle
from .constants import CYCLES, KNOWN_VARIABLES, PRODUCTS, REGIONS
from .exceptions import GribSlicerError, InvalidParameterError
from .logging_config import setup_logging

# Python modules the default array transform relies on at runtime
COLLABORATOR_MODULES = ("xarray", "cfgrib", "netCDF4", "requests")


def setup_logging_from_args(args: argparse.Namespace) -> None:
    """
    Configure logging based on command-line arguments.

    Args:
        args: Parsed command-line arguments with verbose, quiet, log_file
    """
    if getattr(args, 'quiet', False):
        verbosity = -1  # WARNING
    elif getattr(args, 'verbose', False):
        verbosity = 1  # DEBUG
    else:
        verbosity = 0  # INFO

    setup_logging(verbosity=verbosity, log_file=getattr(args, 'log_file', None))


def validate_date(date_str: str) -> str:
    """
    Validate an initialization date.

    Raises:
        argparse.ArgumentTypeError: If the date is not YYYYMMDD
    """
    if not DATE_RE.match(date_str):
        raise argparse.ArgumentTypeError(
            f"Invalid date: {date_str}. Expected YYYYMMDD (e.g., 20251012)"
        )
    return date_str


def validate_cycle(cycle_str: str) -> int:
    """
    Validate a cycle such as 00z, 06z, 12, 18Z.

    Raises:
        argparse.ArgumentTypeError: If the cycle is not a synoptic hour
    """
    try:
        return parse_cycle(cycle_str)
    except InvalidParameterError as e:
        raise argparse.ArgumentTypeError(str(e))


def load_config(config_path: Optional[str]) -> Optional[Config]:
    """
    Load configuration from file.

    Args:
        config_path: Path to config file (YAML or JSON)

    Returns:
        Config object or None if no path provided
    """
    if config_path is None:
        return None

    try:
        return Config.load_from_file(config_path)
    except (OSError, ValueError, TypeError) as e:
        print(f"Error loading config from {config_path}: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_download(args: argparse.Namespace) -> int:
    """Handle 'download' subcommand."""
    config = load_config(args.config) or Config()

    overrides = {}
    if args.data_dir:
        overrides["data_dir"] = args.data_dir
    if args.workers:
        overrides["workers"] = args.workers
    if args.keep_intermediates:
        overrides["keep_intermediates"] = True
    if args.strict:
        overrides["fail_on_empty_selection"] = True
    if args.quiet:
        overrides["show_progress"] = False
    if overrides:
        config = replace(config, **overrides)

    print(
        f"Downloading {args.product.upper()} {args.date} {args.cycle:02d}z "
        f"{' '.join(args.variable)}"
    )

    try:
        report = download_forecast(
            date=args.date,
            cycle=args.cycle,
            variables=args.variable,
            product=args.product,
            member=args.member,
            region=args.region,
            config=config,
        )
    except GribSlicerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    summary = report.summary()
    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        print("\nDownload complete!")
        print(f"  Units produced: {summary['units_produced']}/{summary['units_total']}")
        print(f"  Slices: {summary['fetch']}")
        if summary["unavailable_lead_times"]:
            print(f"  Unavailable lead times: {summary['unavailable_lead_times']}")
        if summary["empty_variables"]:
            print(f"  Variables without records: {summary['empty_variables']}")
        print(f"  Total time: {summary['total_time']:.1f}s")
        print(f"  Output directory: {summary['output_dir']}")

    if not report.success:
        print("Error: no final artifacts were produced", file=sys.stderr)
        return 1
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Handle 'check' subcommand: report importable collaborators."""
    missing = []
    for name in COLLABORATOR_MODULES:
        try:
            module = importlib.import_module(name)
        except ImportError as e:
            missing.append(name)
            print(f"  MISSING: {name} ({e})")
            continue
        version = getattr(module, "__version__", "unknown")
        print(f"  OK: {name} {version}")

    if missing:
        print(f"\n{len(missing)} collaborator(s) unavailable: {', '.join(missing)}")
        return 1
    print("\nAll collaborators available")
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        prog="gribslicer",
        description="Fetch ECMWF open-data fields by byte range and assemble cropped time series",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    def _add_common_args(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "-v", "--verbose",
            action="store_true",
            help="Enable DEBUG logging"
        )
        p.add_argument(
            "-q", "--quiet",
            action="store_true",
            help="Suppress INFO logging and progress bars (WARNING+ only)"
        )
        p.add_argument(
            "--log-file",
            type=str,
            help="Write logs to file"
        )

    _add_common_args(parser)
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ========================================================================
    # download subcommand
    # ========================================================================
    parser_download = subparsers.add_parser(
        "download",
        help="Fetch, merge and crop forecast fields for one initialization"
    )
    _add_common_args(parser_download)
    parser_download.add_argument(
        "--date",
        type=validate_date,
        required=True,
        help="Initialization date (YYYYMMDD)"
    )
    parser_download.add_argument(
        "--cycle",
        type=validate_cycle,
        required=True,
        help="Initialization cycle (" + ", ".join(f"{c:02d}z" for c in CYCLES) + ")"
    )
    parser_download.add_argument(
        "--variable",
        action="append",
        required=True,
        help=f"Variable code, repeatable (known: {' '.join(KNOWN_VARIABLES)})"
    )
    parser_download.add_argument(
        "--product",
        choices=sorted(PRODUCTS),
        default="ens",
        help="Forecast product (default: ens)"
    )
    parser_download.add_argument(
        "--member",
        type=int,
        default=None,
        help="Single ensemble member (default: all members)"
    )
    parser_download.add_argument(
        "--region",
        type=str.upper,
        choices=sorted(REGIONS),
        default=None,
        help="Named crop region (default: config crop_bbox)"
    )
    parser_download.add_argument(
        "--config",
        type=str,
        help="Config file path (YAML/JSON)"
    )
    parser_download.add_argument(
        "--data-dir",
        type=str,
        help="Override data directory"
    )
    parser_download.add_argument(
        "--workers",
        type=int,
        help="Number of parallel workers (default: CPU count)"
    )
    parser_download.add_argument(
        "--keep-intermediates",
        action="store_true",
        help="Keep slices, series and index files after assembly"
    )
    parser_download.add_argument(
        "--strict",
        action="store_true",
        help="Fail when a variable matches no index record"
    )
    parser_download.add_argument(
        "--json",
        action="store_true",
        help="Print the run summary as JSON"
    )
    parser_download.set_defaults(func=cmd_download)

    # ========================================================================
    # check subcommand
    # ========================================================================
    parser_check = subparsers.add_parser(
        "check",
        help="Check that GRIB/NetCDF collaborators are importable"
    )
    _add_common_args(parser_check)
    parser_check.set_defaults(func=cmd_check)

    args = parser.parse_args(argv)

    if not hasattr(args, 'func'):
        parser.print_help()
        return 1

    setup_logging_from_args(args)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
