"""
Print Job Service implementing the CloudPRNT job lifecycle.
Handles job submission, printer polling, status callbacks and manual retries.
"""
import logging
from typing import Any, Dict, List, Optional

from .errors import InvalidRequest, InvalidState, InvalidStatus, JobNotFound, MissingDeviceId
from .job_store import JobStore
from .models import CALLBACK_STATUSES, PrintJob, PrintJobStatus, utcnow
from .retry_policy import BackoffPolicy
from .runtime_settings import RuntimeSettings

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Print failed"


class PrintJobService:
    """
    Stateless request handlers for the print job queue.
    Every call is independent; correctness rests on the JobStore's
    conditional updates.
    """

    def __init__(
        self,
        job_store: JobStore,
        runtime_settings: RuntimeSettings,
        retry_policy: Optional[BackoffPolicy] = None,
        media_types: Optional[List[str]] = None,
    ):
        """
        Initialize the print job service.

        Args:
            job_store: Store used for persistence and transitions
            runtime_settings: Operator settings (retry ceiling, retry delay)
            retry_policy: Backoff policy used to schedule retries after failures
            media_types: Media types announced to printers with each job
        """
        self.job_store = job_store
        self.runtime_settings = runtime_settings
        self.retry_policy = retry_policy or BackoffPolicy()
        self.media_types = media_types or ["application/vnd.star.starprnt"]

    def submit_job(self, device_id: Optional[str], payload: Any, max_retries: Optional[int] = None) -> PrintJob:
        """
        Create a pending print job for a device.

        Raises:
            InvalidRequest: device_id or payload missing or empty
            StorageFailure: the job could not be persisted
        """
        if not isinstance(device_id, str) or not device_id.strip():
            raise InvalidRequest("device_id and job_data required")
        if not isinstance(payload, dict) or not payload:
            raise InvalidRequest("device_id and job_data required")
        if max_retries is None:
            max_retries = self.runtime_settings.max_retries()
        elif isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 0:
            raise InvalidRequest("max_retries must be a non-negative integer")

        job = self.job_store.create_job(PrintJob(
            device_id=device_id.strip(),
            payload=payload,
            max_retries=max_retries,
        ))
        logger.info(f"Print job {job.id} queued for device {job.device_id} (max retries {max_retries})")
        return job

    def poll(self, device_id: Optional[str]) -> Dict[str, Any]:
        """
        Answer a printer poll with the oldest pending job for the device.

        Returns:
            CloudPRNT envelope; {"jobReady": False} when there is no work.
        """
        if not device_id or not device_id.strip():
            raise MissingDeviceId()

        job = self.job_store.claim_next_job(device_id.strip())
        if job is None:
            logger.debug(f"No jobs for printer {device_id}")
            return {"jobReady": False}

        logger.info(f"Sending job {job.id} to printer {device_id}")
        return {
            "jobReady": True,
            "mediaTypes": list(self.media_types),
            "jobToken": job.id,
            "request": self._printable_request(job.payload),
        }

    @staticmethod
    def _printable_request(payload: Dict[str, Any]) -> Any:
        # Renderers may wrap the printable data as {"request": ...}.
        if isinstance(payload, dict) and "request" in payload:
            return payload["request"]
        return payload

    def report_status(
        self,
        job_token: Optional[str],
        status: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> PrintJob:
        """
        Record the outcome a printer reports for a job it was printing.

        A missing status means success; a non-empty error forces failure.

        Raises:
            InvalidRequest: job_token missing
            InvalidStatus: status outside completed/failed
            JobNotFound: unknown job_token
            InvalidState: job is not printing and the report is not a duplicate
        """
        if not job_token:
            raise InvalidRequest("jobToken required")

        outcome = self._resolve_outcome(status, error_message)
        if outcome == PrintJobStatus.COMPLETED:
            return self._complete(job_token)
        return self._fail(job_token, error_message or DEFAULT_FAILURE_MESSAGE)

    def confirm_job(self, job_token: Optional[str]) -> PrintJob:
        """Printer confirmation that a job finished printing (CloudPRNT DELETE)."""
        if not job_token:
            raise InvalidRequest("Job token required")
        return self._complete(job_token)

    def retry_job(self, job_id: str) -> PrintJob:
        """
        Operator retry of a failed job.
        Ignores the retry ceiling on purpose.

        Raises:
            JobNotFound: unknown job id
            InvalidState: job is not currently failed
        """
        job = self.job_store.transition(
            job_id,
            PrintJobStatus.FAILED,
            PrintJobStatus.PENDING,
            increment_retry=True,
            error_message=None,
            next_retry_at=None,
        )
        if job is None:
            current = self._require_job(job_id)
            raise InvalidState(
                f"Print job {job_id} is {current.status.value}, only failed jobs can be retried"
            )

        logger.info(f"Print job {job_id} manually requeued (attempt {job.retry_count}/{job.max_retries})")
        return job

    def _resolve_outcome(self, status: Optional[str], error_message: Optional[str]) -> PrintJobStatus:
        if status is None or status == "":
            outcome = PrintJobStatus.COMPLETED
        else:
            try:
                outcome = PrintJobStatus(status)
            except ValueError:
                raise InvalidStatus(f"Invalid status {status!r}, expected completed or failed")
            if outcome not in CALLBACK_STATUSES:
                raise InvalidStatus(f"Invalid status {status!r}, expected completed or failed")
        if error_message:
            outcome = PrintJobStatus.FAILED
        return outcome

    def _complete(self, job_token: str) -> PrintJob:
        now = utcnow()
        job = self.job_store.transition(
            job_token,
            PrintJobStatus.PRINTING,
            PrintJobStatus.COMPLETED,
            printed_at=now,
            error_message=None,
            next_retry_at=None,
        )
        if job is not None:
            logger.info(f"Print job {job_token} completed")
            return job
        return self._handle_unmatched(job_token, PrintJobStatus.COMPLETED)

    def _fail(self, job_token: str, error_message: str) -> PrintJob:
        current = self._require_job(job_token)
        now = utcnow()
        next_retry_at = self.retry_policy.next_retry_at(
            now,
            current.retry_count,
            base_delay=self.runtime_settings.retry_delay_seconds(),
        )
        job = self.job_store.transition(
            job_token,
            PrintJobStatus.PRINTING,
            PrintJobStatus.FAILED,
            error_message=error_message,
            next_retry_at=next_retry_at,
        )
        if job is not None:
            logger.warning(
                f"Print job {job_token} failed: {error_message} "
                f"(retry {job.retry_count}/{job.max_retries}, next attempt after {next_retry_at.isoformat()})"
            )
            return job
        return self._handle_unmatched(job_token, PrintJobStatus.FAILED)

    def _handle_unmatched(self, job_token: str, outcome: PrintJobStatus) -> PrintJob:
        """Resolve a callback whose conditional update matched no row."""
        current = self._require_job(job_token)
        if current.status == outcome:
            # Printer resent its callback after a network blip
            logger.info(f"Duplicate {outcome.value} callback for print job {job_token} ignored")
            return current
        raise InvalidState(
            f"Print job {job_token} is {current.status.value}, cannot mark it {outcome.value}"
        )

    def _require_job(self, job_id: str) -> PrintJob:
        job = self.job_store.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job
