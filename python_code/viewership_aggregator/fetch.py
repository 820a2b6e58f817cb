"""
Bounded-concurrency fetch stage.

Each requested key is downloaded from the object store, written under the
local work directory and normalized into a Canonical File. Jobs are retried
with a fixed delay and reported as failed once their attempts are exhausted;
a failed job never stops the rest of the batch.
"""

import logging
import os
import queue
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .clients import S3ObjectStore
from .config import PipelineConfig
from .exceptions import NormalizationError
from .model import FetchOutcome, FetchReport
from .normalize import canonical_path, normalize_file

logger = logging.getLogger(__name__)

# Errors that fail a single attempt. Any other error ends the job at once.
RETRYABLE_ERRORS = (ClientError, BotoCoreError, OSError, NormalizationError)

_SENTINEL = None


class FetchOrchestrator:
    """
    Runs fetch jobs on a bounded worker pool and collects their outcomes.

    This uses the producer-consumer pattern:
    - Producers (workers): a thread pool of `concurrency` workers. Each worker
      takes one job through all of its attempts before starting the next.
    - Consumers (collectors): one thread for succeeded jobs and one for failed
      jobs, each draining its own queue until it receives a sentinel.

    The sentinels are only enqueued after the pool has shut down, i.e. after
    every worker has exited, so no outcome can arrive once a collector has
    stopped listening, and each job is counted exactly once.
    """

    def __init__(
        self,
        store: S3ObjectStore,
        config: PipelineConfig,
        normalizer: Callable[[Path], Path] = normalize_file,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._config = config
        self._normalizer = normalizer
        self._sleep = sleep

    def local_path(self, key: str) -> Path:
        return self._config.work_dir / key

    def _attempt(self, key: str) -> Path:
        """One download-and-normalize attempt. Raises on failure."""
        path = self.local_path(key)
        # Rejects keys that are not archives before anything lands next to the Canonical Files.
        canonical_path(path)
        payload = self._store.fetch(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, staging = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".download")
        try:
            with os.fdopen(fd, "wb") as out:
                out.write(payload)
            os.replace(staging, path)
        except BaseException:
            try:
                os.unlink(staging)
            except FileNotFoundError:
                pass
            raise
        logger.debug("Downloaded file", extra={"key": key, "path": str(path), "bytes": len(payload)})
        return self._normalizer(path)

    def _discard_download(self, key: str) -> None:
        path = self.local_path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove failed download", extra={"path": str(path), "error": str(e)})

    def process_job(self, key: str) -> FetchOutcome:
        """Takes a single job to a terminal state."""
        max_attempts = self._config.max_attempts
        last_error: Optional[str] = None
        for attempt in range(1, max_attempts + 1):
            logger.info("Downloading", extra={"key": key, "attempt": attempt})
            try:
                self._attempt(key)
                logger.debug("Successfully downloaded", extra={"key": key, "attempt": attempt})
                return FetchOutcome(key=key, attempts=attempt, succeeded=True)
            except RETRYABLE_ERRORS as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "Fetch attempt failed.",
                    extra={"key": key, "attempt": attempt, "max_attempts": max_attempts, "error": last_error},
                )
            except Exception as e:
                logger.exception(f"Fetch worker failed for key {key}")
                self._discard_download(key)
                return FetchOutcome(key=key, attempts=attempt, succeeded=False, error=f"{type(e).__name__}: {e}")
            if attempt < max_attempts:
                logger.debug(
                    "Waiting before retrying.",
                    extra={"key": key, "retry_delay_seconds": self._config.retry_delay_seconds},
                )
                self._sleep(self._config.retry_delay_seconds)
        self._discard_download(key)
        return FetchOutcome(key=key, attempts=max_attempts, succeeded=False, error=last_error)

    def run(self, keys: Iterable[str]) -> FetchReport:
        """
        Fetches every key and blocks until each job has reached a terminal state.

        Args:
            keys: The object keys to fetch.

        Returns:
            A FetchReport listing succeeded and failed keys.
        """
        succeeded_queue: queue.Queue = queue.Queue()
        failed_queue: queue.Queue = queue.Queue()
        report = FetchReport()

        def _worker(key: str):
            outcome = self.process_job(key)
            (succeeded_queue if outcome.succeeded else failed_queue).put(outcome)

        def _collector(outcomes: queue.Queue, into: List[str]):
            while True:
                outcome = outcomes.get()
                if outcome is _SENTINEL:
                    break
                into.append(outcome.key)
                report.attempts[outcome.key] = outcome.attempts

        collectors = [
            threading.Thread(target=_collector, args=(succeeded_queue, report.succeeded), name="fetch-succeeded"),
            threading.Thread(target=_collector, args=(failed_queue, report.failed), name="fetch-failed"),
        ]
        for collector in collectors:
            collector.start()

        submitted = 0
        try:
            with ThreadPoolExecutor(max_workers=self._config.concurrency, thread_name_prefix="fetch") as executor:
                for key in keys:
                    executor.submit(_worker, key)
                    submitted += 1
                logger.debug("All files sent to be downloaded. Waiting for completion...", extra={"jobs": submitted})
        finally:
            # The pool has drained: every worker has exited. Only now close the outcome channels.
            succeeded_queue.put(_SENTINEL)
            failed_queue.put(_SENTINEL)
            for collector in collectors:
                collector.join()

        logger.info(
            "All download jobs completed",
            extra={"jobs": submitted, "succeeded": report.succeeded_count, "failed": len(report.failed)},
        )
        return report


def report_failed_keys(report: FetchReport) -> None:
    """Logs every failed key, or confirms that none failed."""
    if report.failed:
        for key in report.failed:
            logger.error("Failed downloading", extra={"key": key, "attempts": report.attempts.get(key)})
    else:
        logger.info("No failed downloads")
