"""
Main entry point and orchestrator for the Viewership Aggregation Pipeline.

This module wires the stages together. Its responsibilities include:
  - Setting up structured logging once per process.
  - Creating the S3 client and object store from the configuration.
  - Selecting the source keys for the requested dates and providers.
  - Running the bounded-concurrency fetch stage.
  - Running the per-day merge and aggregation stage.
  - Emitting the final metrics and summary.
"""

import json
import time
from typing import Any, Dict, Optional

from aws_lambda_powertools import Logger
from aws_lambda_powertools.logging.utils import copy_config_to_registered_loggers

from . import clients, core
from .config import SERVICE_NAME, PipelineConfig, load_config, parse_date
from .daily import generate_daily_aggregates
from .exceptions import ConfigurationError
from .fetch import FetchOrchestrator, report_failed_keys
from .model import RunSummary

logger = Logger(service=SERVICE_NAME)


def configure_logging(verbose: bool) -> None:
    """Applies the Powertools formatter and level to every module logger of the package."""
    logger.setLevel("DEBUG" if verbose else "INFO")
    copy_config_to_registered_loggers(source_logger=logger, include={__package__})


def run(config: PipelineConfig, store: Optional[clients.S3ObjectStore] = None) -> RunSummary:
    """
    Runs the whole pipeline for the configured date range.

    Args:
        config: The validated pipeline configuration.
        store: An object store to fetch from. Built from the configuration
               when not given.

    Returns:
        A RunSummary with the fetch report and one DayReport per reporting day.

    Raises:
        ConfigurationError: If the provider list cannot be loaded.
        botocore.exceptions.ClientError: If the source bucket cannot be listed.
    """
    start_time = time.monotonic()
    logger.info(
        "Provided parameters",
        extra={
            "region": config.region,
            "bucket": config.bucket,
            "date_from": config.date_from.isoformat(),
            "date_to": config.date_to.isoformat(),
            "providers_path": str(config.providers_path),
            "max_attempts": config.max_attempts,
            "concurrency": config.concurrency,
            "days_after": config.days_after,
        },
    )

    providers = core.load_providers(config.providers_path)
    reporting_days = core.date_range(config.date_from, config.date_to)
    source_days = core.fetch_days(config.date_from, config.date_to, config.days_after)
    logger.debug("Dates range", extra={"days": [day.isoformat() for day in reporting_days]})

    if store is None:
        store = clients.S3ObjectStore(clients.get_s3_client(config.region), config.bucket)

    keys = core.select_keys(store.list_keys(config.prefix), providers, source_days)
    logger.info("Selected source keys", extra={"count": len(keys)})

    fetch_report = FetchOrchestrator(store, config).run(keys)
    report_failed_keys(fetch_report)
    core.emit_metrics(
        config.environment,
        "Info",
        {"files_downloaded": fetch_report.succeeded_count, "files_failed": len(fetch_report.failed)},
    )

    summary = RunSummary(fetch=fetch_report)
    summary.days = generate_daily_aggregates(config, reporting_days, providers)
    summary.elapsed_seconds = time.monotonic() - start_time

    core.emit_metrics(
        config.environment,
        "Success" if summary.ok else "Failure",
        {
            "providers": len(providers),
            "days": len(reporting_days),
            "failed_days": sum(1 for day in summary.days if not day.ok),
            "latency_ms": int(summary.elapsed_seconds * 1000),
        },
    )
    logger.info(f"Processed {len(providers)} MSO's, {len(reporting_days)} days, in {summary.elapsed_seconds:.2f}s")
    return summary


def _build_response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    """Centralized helper to build the final Lambda response."""
    return {"statusCode": status_code, "body": json.dumps(body)}


def handler(event: Dict, context: Any):
    """
    Lambda-style entry point.

    Configuration comes from environment variables. The event may narrow the
    run with `date_from` and `date_to`. Exceptions are re-raised so the caller
    can retry the invocation.
    """
    try:
        config = load_config()
        overrides = {}
        for name in ("date_from", "date_to"):
            if event.get(name):
                overrides[name] = parse_date(event[name])
        if overrides:
            config = config.with_overrides(**overrides)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return _build_response(400, {"error_type": type(e).__name__, "error_message": str(e)})

    configure_logging(config.verbose)
    try:
        summary = run(config)
    except Exception as e:
        error_payload = {"error_type": type(e).__name__, "error_message": str(e)}
        core.emit_metrics(config.environment, "Failure", error_payload)
        logger.error(f"Processing failed: {json.dumps(error_payload)}", exc_info=True)
        raise

    body = {
        "files_downloaded": summary.fetch.succeeded_count,
        "failed_keys": summary.fetch.failed,
        "reports": [str(day.report_path) for day in summary.days if day.ok],
        "failed_days": [day.day.isoformat() for day in summary.days if not day.ok],
        "latency_ms": int(summary.elapsed_seconds * 1000),
    }
    return _build_response(200 if summary.ok else 207, body)
