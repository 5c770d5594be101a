"""
Command line entry point.

    floodpeaks
        -> incremental update from lastProcessedTime (with buffer) to now

    floodpeaks --backfill-year=2000
        -> backfill exactly that calendar year (UTC)

    floodpeaks --backfill-from=2000 --backfill-to=2026
        -> backfill inclusive year range (UTC)

Use --site to restrict the run to one registered site (repeatable).
Exit status: 0 on success, 2 on configuration errors, 1 on upstream or
unexpected failures.
"""
import argparse
import logging
import sys
from typing import List, Optional, Sequence

from . import config
from .models import ConfigurationError, UpstreamDataError
from .pipeline import run_site
from .sites import SITES, get_site
from .windows import RunRequest

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='floodpeaks',
        description='Update the per-site flood peak caches.',
    )
    parser.add_argument(
        '--site',
        action='append',
        choices=sorted(SITES),
        help='Site to update (repeatable). Default: every registered site.',
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--backfill-year', type=int, metavar='YYYY', help='Backfill one calendar year (UTC)')
    mode.add_argument('--backfill-from', type=int, metavar='YYYY', help='First year of a backfill range')
    parser.add_argument('--backfill-to', type=int, metavar='YYYY', help='Last year of a backfill range (inclusive)')
    parser.add_argument('--data-dir', default=None, help=f'Cache directory (default: {config.DATA_DIR})')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def request_from_args(args: argparse.Namespace) -> RunRequest:
    """
    Turn parsed arguments into a run request.

    Raises:
        ConfigurationError: --backfill-from and --backfill-to not given together
    """
    if args.backfill_year is not None:
        if args.backfill_to is not None:
            raise ConfigurationError('--backfill-to cannot be combined with --backfill-year')
        return RunRequest.backfill_year(args.backfill_year)
    if args.backfill_from is not None or args.backfill_to is not None:
        if args.backfill_from is None or args.backfill_to is None:
            raise ConfigurationError('--backfill-from and --backfill-to must be given together')
        return RunRequest.backfill_range(args.backfill_from, args.backfill_to)
    return RunRequest.incremental()


def log_level(name: str) -> int:
    """Resolve a level name such as 'INFO' to its number."""
    level = logging.getLevelName(str(name).strip().upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level {name!r} (FLOODPEAKS_LOG_LEVEL)")
    return level


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        level = logging.DEBUG if args.verbose else log_level(config.LOG_LEVEL)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    site_keys: List[str] = args.site or sorted(SITES)

    try:
        request = request_from_args(args)
        for key in site_keys:
            report = run_site(get_site(key), request, data_dir=args.data_dir)
            logger.info(
                f"{key}: {report.new_events} new events, {report.total_events} total, "
                f"lastProcessedTime {report.last_processed.isoformat() if report.last_processed else 'unset'}"
            )
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except UpstreamDataError as e:
        print(f"Upstream data error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except Exception:
        logger.exception("Run failed")
        return EXIT_FAILURE

    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
