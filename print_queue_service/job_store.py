"""
Job Store for CloudPRNT print jobs.
Persists jobs and performs every status change as a conditional update
(compare-and-swap on the prior status) so concurrent polls, callbacks and
reconciler runs can never apply a transition twice.
"""
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .database import Database
from .errors import InvalidState
from .models import PrintJob, PrintJobEvent, PrintJobStatus, can_transition, utcnow

logger = logging.getLogger(__name__)

JOB_COLUMNS = (
    "id, device_id, payload, status, retry_count, max_retries, created_at, "
    "updated_at, printed_at, error_message, next_retry_at"
)


class JobStore:
    """
    Persisted collection of print jobs keyed by id.
    Publishes a PrintJobEvent to subscribers after every committed transition.
    """

    def __init__(self, database: Database, claim_candidates: int = 5, max_claim_rounds: int = 3):
        """
        Initialize the job store.

        Args:
            database: Database instance for job persistence
            claim_candidates: Pending jobs fetched per claim round
            max_claim_rounds: Claim rounds attempted before answering "no job"
        """
        self.database = database
        self.claim_candidates = claim_candidates
        self.max_claim_rounds = max_claim_rounds
        self._subscribers: List[Callable[[PrintJobEvent], None]] = []

    # --- Subscriptions ---

    def subscribe(self, callback: Callable[[PrintJobEvent], None]):
        """Register a callback invoked after each status transition."""
        self._subscribers.append(callback)
        logger.debug(f"Added print job subscriber: {getattr(callback, '__name__', callback)}")

    def unsubscribe(self, callback: Callable[[PrintJobEvent], None]):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _publish(self, event: PrintJobEvent):
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in print job subscriber {getattr(callback, '__name__', callback)}: {e}")

    # --- Writes ---

    def create_job(self, job: PrintJob) -> PrintJob:
        """Insert a new pending job and return it with its generated id."""
        if job.id is None:
            job.id = str(uuid.uuid4())
        now = utcnow()
        job.status = PrintJobStatus.PENDING
        job.created_at = now
        job.updated_at = now

        with self.database.cursor() as cursor:
            cursor.execute(f"""
                INSERT INTO print_jobs ({JOB_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """, (
                job.id, job.device_id, json.dumps(job.payload), job.status.value,
                job.retry_count, job.max_retries, job.created_at, job.updated_at,
                job.printed_at, job.error_message, job.next_retry_at,
            ))

        logger.info(f"Print job {job.id} created for device {job.device_id}")
        self._publish(PrintJobEvent(
            job_id=job.id,
            device_id=job.device_id,
            old_status=None,
            new_status=job.status,
            retry_count=job.retry_count,
            timestamp=now,
        ))
        return job

    def transition(
        self,
        job_id: str,
        expected: PrintJobStatus,
        new_status: PrintJobStatus,
        increment_retry: bool = False,
        enforce_retry_budget: bool = False,
        **fields: Any,
    ) -> Optional[PrintJob]:
        """
        Move a job from `expected` to `new_status` with one conditional update.

        Args:
            job_id: Job to update
            expected: Status the job must currently have
            new_status: Target status, must be an edge of the state machine
            increment_retry: Add one to retry_count in the same update
            enforce_retry_budget: Only match rows with retry_count < max_retries
            **fields: Extra columns to set (printed_at, error_message, next_retry_at)

        Returns:
            The updated job, or None when no row matched (missing job or
            status already changed by someone else).
        """
        if not can_transition(expected, new_status):
            raise InvalidState(f"Transition {expected.value} -> {new_status.value} is not allowed")

        now = utcnow()
        assignments = ["status = %s", "updated_at = %s"]
        params: List[Any] = [new_status.value, now]
        for column, value in fields.items():
            assignments.append(f"{column} = %s")
            params.append(value)
        if increment_retry:
            assignments.append("retry_count = retry_count + 1")

        where = "id = %s AND status = %s"
        params.extend([job_id, expected.value])
        if enforce_retry_budget:
            where += " AND retry_count < max_retries"

        with self.database.cursor() as cursor:
            cursor.execute(
                f"UPDATE print_jobs SET {', '.join(assignments)} WHERE {where}",
                params,
            )
            if cursor.rowcount != 1:
                return None
            cursor.execute(f"SELECT {JOB_COLUMNS} FROM print_jobs WHERE id = %s", (job_id,))
            job = self._row_to_print_job(cursor.fetchone())

        logger.info(f"Print job {job_id} {expected.value} -> {new_status.value}")
        self._publish(PrintJobEvent(
            job_id=job.id,
            device_id=job.device_id,
            old_status=expected,
            new_status=new_status,
            retry_count=job.retry_count,
            timestamp=now,
        ))
        return job

    def claim_next_job(self, device_id: str) -> Optional[PrintJob]:
        """
        Claim the oldest pending job for a device by marking it printing.

        Candidates are read oldest first and claimed with a compare-and-swap;
        a candidate taken by a concurrent poll is skipped for the next one.
        """
        for _ in range(self.max_claim_rounds):
            with self.database.cursor() as cursor:
                cursor.execute("""
                    SELECT id FROM print_jobs
                    WHERE device_id = %s AND status = %s
                    ORDER BY created_at ASC, id ASC
                    LIMIT %s
                """, (device_id, PrintJobStatus.PENDING.value, self.claim_candidates))
                candidate_ids = [row["id"] for row in cursor.fetchall()]

            if not candidate_ids:
                return None

            for job_id in candidate_ids:
                job = self.transition(job_id, PrintJobStatus.PENDING, PrintJobStatus.PRINTING)
                if job is not None:
                    return job
                logger.debug(f"Print job {job_id} claimed by a concurrent poll, trying next")

        with self.database.cursor() as cursor:
            cursor.execute(
                "SELECT COUNT(*) AS total FROM print_jobs WHERE device_id = %s AND status = %s",
                (device_id, PrintJobStatus.PENDING.value),
            )
            pending = int(cursor.fetchone()["total"])
        logger.warning(
            f"Could not claim a job for device {device_id} after {self.max_claim_rounds} rounds, "
            f"{pending} jobs still pending"
        )
        return None

    # --- Reads ---

    def get_job(self, job_id: str) -> Optional[PrintJob]:
        """Retrieve a print job by id."""
        with self.database.cursor() as cursor:
            cursor.execute(f"SELECT {JOB_COLUMNS} FROM print_jobs WHERE id = %s", (job_id,))
            row = cursor.fetchone()
        return self._row_to_print_job(row) if row else None

    def list_due_for_retry(self, now: datetime, limit: int) -> List[PrintJob]:
        """Failed jobs whose next_retry_at has elapsed, oldest schedule first."""
        with self.database.cursor() as cursor:
            cursor.execute(f"""
                SELECT {JOB_COLUMNS} FROM print_jobs
                WHERE status = %s AND next_retry_at IS NOT NULL AND next_retry_at <= %s
                ORDER BY next_retry_at ASC, created_at ASC
                LIMIT %s
            """, (PrintJobStatus.FAILED.value, now, limit))
            rows = cursor.fetchall()
        return [self._row_to_print_job(row) for row in rows]

    def list_jobs(
        self,
        limit: int = 50,
        status: Optional[PrintJobStatus] = None,
        device_id: Optional[str] = None,
    ) -> List[PrintJob]:
        """Most recent jobs first, optionally filtered by status and device."""
        query = f"SELECT {JOB_COLUMNS} FROM print_jobs WHERE 1 = 1"
        params: List[Any] = []
        if status is not None:
            query += " AND status = %s"
            params.append(status.value)
        if device_id:
            query += " AND device_id = %s"
            params.append(device_id)
        query += " ORDER BY created_at DESC, id DESC LIMIT %s"
        params.append(limit)

        with self.database.cursor() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [self._row_to_print_job(row) for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        """Number of jobs in each status."""
        counts = {status.value: 0 for status in PrintJobStatus}
        with self.database.cursor() as cursor:
            cursor.execute("SELECT status, COUNT(*) AS total FROM print_jobs GROUP BY status")
            for row in cursor.fetchall():
                counts[row["status"]] = int(row["total"])
        return counts

    def _row_to_print_job(self, row: Dict[str, Any]) -> PrintJob:
        """Convert a database row to a PrintJob instance."""
        # JSONB comes back decoded from PostgreSQL, as text from SQLite.
        payload = json.loads(row['payload']) if isinstance(row['payload'], str) else row['payload']
        return PrintJob(
            id=row['id'],
            device_id=row['device_id'],
            payload=payload,
            status=PrintJobStatus(row['status']),
            retry_count=row['retry_count'],
            max_retries=row['max_retries'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
            printed_at=row['printed_at'],
            error_message=row['error_message'],
            next_retry_at=row['next_retry_at'],
        )
