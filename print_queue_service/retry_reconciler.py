"""
Retry Reconciler for failed print jobs.
Requeues failed jobs whose retry time has elapsed while they are under their
retry ceiling, and runs periodically in a background thread.
"""
import logging
import threading
from datetime import datetime
from typing import Optional

from .errors import StorageFailure
from .job_store import JobStore
from .models import PrintJobStatus, ReconcileResult, utcnow
from .runtime_settings import RuntimeSettings

logger = logging.getLogger(__name__)


class RetryReconciler:
    """
    Scans failed jobs and resets eligible ones to pending.
    Safe to run repeatedly: a requeued job no longer matches the failed filter.
    """

    def __init__(self, job_store: JobStore, runtime_settings: RuntimeSettings, batch_size: int = 100):
        self.job_store = job_store
        self.runtime_settings = runtime_settings
        self.batch_size = batch_size

    def run(self, now: Optional[datetime] = None) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Args:
            now: Reference time, defaults to the current UTC time

        Returns:
            ReconcileResult with requeued and skipped counts
        """
        result = ReconcileResult()

        if not self.runtime_settings.retry_enabled():
            logger.info("Print retry is disabled, reconciler run skipped")
            result.enabled = False
            return result

        now = now or utcnow()
        due_jobs = self.job_store.list_due_for_retry(now, self.batch_size)
        logger.info(f"Found {len(due_jobs)} failed print jobs due for retry")

        for job in due_jobs:
            if job.retry_exhausted:
                logger.warning(f"Print job {job.id} exceeded max retries ({job.retry_count}/{job.max_retries}), skipping")
                result.skipped += 1
                result.skipped_job_ids.append(job.id)
                continue

            try:
                requeued = self.job_store.transition(
                    job.id,
                    PrintJobStatus.FAILED,
                    PrintJobStatus.PENDING,
                    increment_retry=True,
                    enforce_retry_budget=True,
                    error_message=None,
                    next_retry_at=None,
                )
            except StorageFailure as e:
                logger.error(f"Error requeuing print job {job.id}: {e}")
                result.errors += 1
                continue

            if requeued is None:
                # Already requeued by an operator or a concurrent run
                logger.debug(f"Print job {job.id} changed since scan, not requeued")
                continue

            logger.info(f"Retrying print job {job.id} (attempt {requeued.retry_count}/{requeued.max_retries})")
            result.retried += 1
            result.retried_job_ids.append(job.id)

        logger.info(f"Queued {result.retried} print jobs for retry, skipped {result.skipped}")
        return result


class ReconcilerScheduler:
    """Invokes a RetryReconciler at a fixed interval on a daemon thread."""

    def __init__(self, reconciler: RetryReconciler, interval: float = 60.0):
        self.reconciler = reconciler
        self.interval = interval
        self.last_result: Optional[ReconcileResult] = None
        self.run_count = 0
        self._running = False
        self._worker_thread = None
        self._stop_event = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        """Start the background reconciler loop."""
        if self._running:
            logger.warning("Reconciler scheduler is already running")
            return

        self._running = True
        self._stop_event.clear()
        self._worker_thread = threading.Thread(target=self._worker_loop, name="retry-reconciler", daemon=True)
        self._worker_thread.start()
        logger.info(f"Reconciler scheduler started (interval {self.interval}s)")

    def stop(self):
        """Stop the background reconciler loop."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        if self._worker_thread and self._worker_thread.is_alive():
            self._worker_thread.join(timeout=10)

        logger.info("Reconciler scheduler stopped")

    def _worker_loop(self):
        while self._running and not self._stop_event.is_set():
            try:
                self.last_result = self.reconciler.run()
                self.run_count += 1
            except Exception as e:
                logger.error(f"Error in reconciler loop: {e}")

            # Wait for next iteration or stop signal
            self._stop_event.wait(timeout=self.interval)

        logger.info("Reconciler loop stopped")
