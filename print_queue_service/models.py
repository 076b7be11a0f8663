"""
Data models for the Print Queue Service.
Defines the PrintJob model, its status state machine and reconciler results.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PrintJobStatus(Enum):
    """Print job status enumeration."""
    PENDING = "pending"
    PRINTING = "printing"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed status edges. COMPLETED has none.
ALLOWED_TRANSITIONS = {
    PrintJobStatus.PENDING: {PrintJobStatus.PRINTING},
    PrintJobStatus.PRINTING: {PrintJobStatus.COMPLETED, PrintJobStatus.FAILED},
    PrintJobStatus.FAILED: {PrintJobStatus.PENDING},
    PrintJobStatus.COMPLETED: set(),
}

# Outcomes a printer may report through the status callback.
CALLBACK_STATUSES = (PrintJobStatus.COMPLETED, PrintJobStatus.FAILED)


def can_transition(old: PrintJobStatus, new: PrintJobStatus) -> bool:
    """Check whether a status change follows the job state machine."""
    return new in ALLOWED_TRANSITIONS[old]


@dataclass
class PrintJob:
    """
    Represents a print job destined for one CloudPRNT device.
    Maps to the print_jobs table.
    """
    device_id: str
    payload: Dict[str, Any]
    id: Optional[str] = None
    status: PrintJobStatus = PrintJobStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    printed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    next_retry_at: Optional[datetime] = None

    @property
    def retry_exhausted(self) -> bool:
        """True once the reconciler may no longer requeue this job."""
        return self.retry_count >= self.max_retries

    @property
    def can_retry(self) -> bool:
        """Whether the operator view should offer a retry for this job.
        Manual retries ignore the ceiling, so every failed job qualifies.
        """
        return self.status == PrintJobStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        """Convert PrintJob to a JSON friendly dictionary."""
        return {
            'id': self.id,
            'device_id': self.device_id,
            'payload': self.payload,
            'status': self.status.value,
            'retry_count': self.retry_count,
            'max_retries': self.max_retries,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'printed_at': self.printed_at.isoformat() if self.printed_at else None,
            'error_message': self.error_message,
            'next_retry_at': self.next_retry_at.isoformat() if self.next_retry_at else None,
        }

    def to_summary(self) -> Dict[str, Any]:
        """Job summary for the history view, without the print payload."""
        summary = self.to_dict()
        summary.pop('payload')
        summary['can_retry'] = self.can_retry
        summary['retry_exhausted'] = self.retry_exhausted
        return summary


@dataclass
class PrintJobEvent:
    """A status transition published by the job store."""
    job_id: str
    device_id: str
    old_status: Optional[PrintJobStatus]
    new_status: PrintJobStatus
    retry_count: int
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'device_id': self.device_id,
            'old_status': self.old_status.value if self.old_status else None,
            'new_status': self.new_status.value,
            'retry_count': self.retry_count,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class ReconcileResult:
    """Summary of a single reconciler run."""
    enabled: bool = True
    retried: int = 0
    skipped: int = 0
    errors: int = 0
    retried_job_ids: List[str] = field(default_factory=list)
    skipped_job_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enabled': self.enabled,
            'retried': self.retried,
            'skipped': self.skipped,
            'errors': self.errors,
            'retried_job_ids': list(self.retried_job_ids),
            'skipped_job_ids': list(self.skipped_job_ids),
        }
