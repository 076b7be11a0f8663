"""
Print job history for operators.
Read-mostly projection of the job store with a live event feed and a
manual retry action.
"""
import logging
import threading
from collections import deque
from typing import Any, Dict, List, Optional

from .job_store import JobStore
from .models import PrintJobEvent, PrintJobStatus
from .print_job_service import PrintJobService

logger = logging.getLogger(__name__)


class PrintJobHistory:
    """
    Subscribes to the job store and keeps a bounded, sequence-numbered feed of
    status transitions that UIs can poll with events_since().
    """

    def __init__(self, job_store: JobStore, service: PrintJobService, max_events: int = 500):
        self.job_store = job_store
        self.service = service
        self._events = deque(maxlen=max_events)
        self._sequence = 0
        self._lock = threading.Lock()
        self.job_store.subscribe(self._on_event)

    def close(self):
        """Stop receiving store events."""
        self.job_store.unsubscribe(self._on_event)

    def _on_event(self, event: PrintJobEvent):
        with self._lock:
            self._sequence += 1
            entry = event.to_dict()
            entry["seq"] = self._sequence
            self._events.append(entry)

    @property
    def latest_sequence(self) -> int:
        with self._lock:
            return self._sequence

    def events_since(self, since: int = 0, limit: int = 100) -> Dict[str, Any]:
        """
        Events newer than `since`, oldest first.

        Callers page with `next_since`, the sequence number of the last
        returned event. `truncated` is true when events after `since` already
        fell out of the buffer and the caller should reload the job list.
        """
        with self._lock:
            events = [entry for entry in self._events if entry["seq"] > since]
            oldest = self._events[0]["seq"] if self._events else self._sequence + 1
            latest = self._sequence
        returned = events[:limit]
        next_since = returned[-1]["seq"] if returned else min(since, latest)
        return {
            "events": returned,
            "latest_seq": latest,
            "next_since": next_since,
            "has_more": next_since < latest,
            "truncated": since + 1 < oldest and since < latest,
        }

    def list_jobs(
        self,
        limit: int = 50,
        status: Optional[PrintJobStatus] = None,
        device_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Job summaries, newest first."""
        return [job.to_summary() for job in self.job_store.list_jobs(limit, status, device_id)]

    def status_counts(self) -> Dict[str, int]:
        return self.job_store.count_by_status()

    def retry(self, job_id: str) -> Dict[str, Any]:
        """Operator retry trigger; returns the updated job summary."""
        job = self.service.retry_job(job_id)
        logger.info(f"Operator retried print job {job_id}")
        return job.to_summary()
