"""CloudPRNT print job queue with retry reconciliation."""

__version__ = "1.0.0"
