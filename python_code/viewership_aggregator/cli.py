"""Command-line entry point: `viewership-aggregator --from 20160601 --to 20160630`."""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from .app import configure_logging, logger, run
from .config import PipelineConfig, load_config, parse_date
from .exceptions import ConfigurationError

__version__ = "0.2.0"


def build_parser(defaults: PipelineConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="viewership-aggregator",
        description="Fetch per-provider viewership extracts and build daily aggregated reports.",
    )
    parser.add_argument("-r", "--region", default=defaults.region, help="AWS region")
    parser.add_argument("-b", "--bucket", default=defaults.bucket, help="Bucket name")
    parser.add_argument("-p", "--prefix", default=defaults.prefix, help="Key prefix of the provider extracts")
    parser.add_argument("--from", dest="date_from", default=defaults.date_from.strftime("%Y%m%d"), help="Date from")
    parser.add_argument("--to", dest="date_to", default=defaults.date_to.strftime("%Y%m%d"), help="Date to")
    parser.add_argument("-m", "--mso-list", dest="providers_path", default=str(defaults.providers_path),
                        help="Filename for the MSO list")
    parser.add_argument("-M", "--max-attempts", type=int, default=defaults.max_attempts,
                        help="Max attempts to retry each download")
    parser.add_argument("-c", "--concurrency", type=int, default=defaults.concurrency,
                        help="The number of files to process concurrently")
    parser.add_argument("-d", "--days-after", type=int, default=defaults.days_after,
                        help="Days of source files merged after each reporting day")
    parser.add_argument("--retry-delay", type=float, default=defaults.retry_delay_seconds,
                        help="Seconds to wait between download attempts")
    parser.add_argument("-w", "--work-dir", default=str(defaults.work_dir), help="Local mirror of the fetched keys")
    parser.add_argument("-o", "--output-dir", default=str(defaults.output_dir), help="Directory for the reports")
    parser.add_argument("-v", "--verbose", action=argparse.BooleanOptionalAction, default=defaults.verbose,
                        help="Verbose: debug output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_config(argv: Optional[List[str]] = None) -> PipelineConfig:
    """Builds the configuration from environment defaults overridden by the command line."""
    defaults = load_config()
    args = build_parser(defaults).parse_args(argv)
    return defaults.with_overrides(
        region=args.region,
        bucket=args.bucket,
        prefix=args.prefix,
        date_from=parse_date(args.date_from),
        date_to=parse_date(args.date_to),
        providers_path=Path(args.providers_path),
        max_attempts=args.max_attempts,
        concurrency=args.concurrency,
        days_after=args.days_after,
        retry_delay_seconds=args.retry_delay,
        work_dir=Path(args.work_dir),
        output_dir=Path(args.output_dir),
        verbose=args.verbose,
    )


def main(argv: Optional[List[str]] = None) -> int:
    try:
        config = parse_config(argv)
    except ConfigurationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    configure_logging(config.verbose)
    try:
        summary = run(config)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    return 0 if summary.ok else 1


if __name__ == "__main__":
    sys.exit(main())
