"""
Configuration for the Viewership Aggregation Pipeline.

All settings live in a single immutable `PipelineConfig` that is built once at
startup (from environment variables or the command line) and then passed to
every component that needs it. Nothing in the pipeline reads process-wide
state after startup.
"""

import os
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

from .exceptions import ConfigurationError

SERVICE_NAME = "viewership-aggregator"

DEFAULT_REGION = "us-west-2"
DEFAULT_BUCKET = "daap-viewership-reports"
DEFAULT_PREFIX = "cdw-viewership-reports"
DEFAULT_PROVIDERS_PATH = "mso-list.csv"
DEFAULT_REPORT_NAME = "viewership-report"
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_CONCURRENCY = 10
DEFAULT_DAYS_AFTER = 1
DEFAULT_RETRY_DELAY_SECONDS = 10.0
# Records held in memory per cursor between refills.
DEFAULT_BLOCK_SIZE = 1000
# Records buffered by the daily report before each append to disk.
DEFAULT_FLUSH_THRESHOLD = 10000


def get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Gets an environment variable or raises a ValueError for fast-failure.

    Args:
        name: The name of the environment variable.
        default: An optional default value. If not provided, the variable is required.

    Returns:
        The value of the environment variable.

    Raises:
        ValueError: If the required environment variable is not set.
    """
    value = os.environ.get(name, default)
    if value is None:
        raise ValueError(f"FATAL: Environment variable '{name}' is not set.")
    return value


def parse_date(value: str) -> date:
    """Parses `YYYYMMDD`, `YYYY-MM-DD` or `YYYY/MM/DD` into a date."""
    compact = value.strip().replace("/", "").replace("-", "")
    try:
        return datetime.strptime(compact, "%Y%m%d").date()
    except ValueError as e:
        raise ConfigurationError(f"Invalid date '{value}': expected YYYYMMDD") from e


def today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class PipelineConfig:
    """
    Immutable settings for one pipeline run.

    Attributes:
        region: AWS region of the source bucket.
        bucket: Name of the source bucket.
        prefix: Key prefix under which the provider extracts are listed. It is
                also the top-level directory of the local mirror.
        date_from: First reporting day (inclusive).
        date_to: Last reporting day (inclusive).
        providers_path: CSV file with the provider (MSO) `code, name` list.
        max_attempts: Attempts per fetch job before it is reported as failed.
        concurrency: Maximum number of fetch jobs in flight.
        days_after: Extra days of source files merged after each reporting day.
        retry_delay_seconds: Fixed delay between attempts of one fetch job.
        work_dir: Local directory that mirrors the fetched keys.
        output_dir: Directory for daily reports and household counts.
        report_name: Base name of the daily report files.
        block_size: Records read per cursor refill.
        flush_threshold: Report buffer size that triggers a flush to disk.
        day_workers: Reporting days aggregated in parallel.
        verbose: Enables debug logging.
        environment: Deployment environment, attached to emitted metrics.
    """

    date_from: date
    date_to: date
    region: str = DEFAULT_REGION
    bucket: str = DEFAULT_BUCKET
    prefix: str = DEFAULT_PREFIX
    providers_path: Path = Path(DEFAULT_PROVIDERS_PATH)
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    concurrency: int = DEFAULT_CONCURRENCY
    days_after: int = DEFAULT_DAYS_AFTER
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    work_dir: Path = Path(".")
    output_dir: Path = Path(".")
    report_name: str = DEFAULT_REPORT_NAME
    block_size: int = DEFAULT_BLOCK_SIZE
    flush_threshold: int = DEFAULT_FLUSH_THRESHOLD
    day_workers: int = 4
    verbose: bool = True
    environment: str = "dev"

    def validate(self) -> "PipelineConfig":
        """Returns self, or raises ConfigurationError on the first bad value."""
        for name in ("max_attempts", "concurrency", "block_size", "flush_threshold", "day_workers"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"'{name}' must be a positive integer, got {getattr(self, name)}")
        if self.days_after < 0:
            raise ConfigurationError(f"'days_after' must not be negative, got {self.days_after}")
        if self.retry_delay_seconds < 0:
            raise ConfigurationError(f"'retry_delay_seconds' must not be negative, got {self.retry_delay_seconds}")
        if self.date_from > self.date_to:
            raise ConfigurationError(f"Invalid date range: {self.date_from} is after {self.date_to}")
        if not self.bucket:
            raise ConfigurationError("'bucket' must not be empty")
        return self

    def with_overrides(self, **changes) -> "PipelineConfig":
        """Returns a validated copy with the given fields replaced."""
        return replace(self, **changes).validate()


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> PipelineConfig:
    """
    Builds a validated PipelineConfig from environment variables.

    Raises:
        ConfigurationError: If a value cannot be parsed or fails validation.
    """
    try:
        config = PipelineConfig(
            region=get_env_var("AWS_REGION", DEFAULT_REGION),
            bucket=get_env_var("SOURCE_BUCKET", DEFAULT_BUCKET),
            prefix=get_env_var("SOURCE_PREFIX", DEFAULT_PREFIX),
            date_from=parse_date(get_env_var("DATE_FROM", today().strftime("%Y%m%d"))),
            date_to=parse_date(get_env_var("DATE_TO", today().strftime("%Y%m%d"))),
            providers_path=Path(get_env_var("PROVIDERS_PATH", DEFAULT_PROVIDERS_PATH)),
            max_attempts=int(get_env_var("MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS))),
            concurrency=int(get_env_var("CONCURRENCY", str(DEFAULT_CONCURRENCY))),
            days_after=int(get_env_var("DAYS_AFTER", str(DEFAULT_DAYS_AFTER))),
            retry_delay_seconds=float(get_env_var("RETRY_DELAY_SECONDS", str(DEFAULT_RETRY_DELAY_SECONDS))),
            work_dir=Path(get_env_var("WORK_DIR", ".")),
            output_dir=Path(get_env_var("OUTPUT_DIR", ".")),
            report_name=get_env_var("REPORT_NAME", DEFAULT_REPORT_NAME),
            block_size=int(get_env_var("BLOCK_SIZE", str(DEFAULT_BLOCK_SIZE))),
            flush_threshold=int(get_env_var("FLUSH_THRESHOLD", str(DEFAULT_FLUSH_THRESHOLD))),
            day_workers=int(get_env_var("DAY_WORKERS", "4")),
            verbose=_env_bool(get_env_var("VERBOSE", "true")),
            environment=get_env_var("ENVIRONMENT", "dev"),
        )
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    return config.validate()
