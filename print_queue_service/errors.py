"""
Error taxonomy for the Print Queue Service.
Each error carries the HTTP status the API layer answers with.
"""


class PrintQueueError(Exception):
    """Base class for all print queue errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(PrintQueueError):
    """A required field is missing or malformed."""
    status_code = 400


class MissingDeviceId(InvalidRequest):
    """A poll arrived without a device identifier."""

    def __init__(self, message: str = "device_id parameter required"):
        super().__init__(message)


class InvalidStatus(InvalidRequest):
    """A status callback reported a status outside the allowed set."""


class JobNotFound(PrintQueueError):
    """No job exists for the given id or job token."""
    status_code = 404

    def __init__(self, job_id: str):
        super().__init__(f"Print job {job_id} not found")
        self.job_id = job_id


class InvalidState(PrintQueueError):
    """The job's current status does not allow the requested operation."""
    status_code = 409


class StorageFailure(PrintQueueError):
    """The backing store is unreachable or returned an error."""
    status_code = 500
