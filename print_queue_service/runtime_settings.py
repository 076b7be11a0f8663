"""
Operator-controlled settings stored in app_settings.
Values are read from the database on every call so a toggle takes effect on
the next request or reconciler run without a restart.
"""
import logging
from typing import Optional

from .database import Database

logger = logging.getLogger(__name__)

RETRY_ENABLED_KEY = "print_retry_enabled"
RETRY_ATTEMPTS_KEY = "print_retry_attempts"
RETRY_DELAY_MINUTES_KEY = "print_retry_delay_minutes"


class RuntimeSettings:
    """Typed access to the print retry settings."""

    def __init__(self, database: Database, default_max_retries: int = 3, default_retry_enabled: bool = True):
        self.database = database
        self.default_max_retries = default_max_retries
        self.default_retry_enabled = default_retry_enabled

    def retry_enabled(self) -> bool:
        value = self.database.get_setting(RETRY_ENABLED_KEY)
        if value is None:
            return self.default_retry_enabled
        return value.strip().lower() == "true"

    def max_retries(self) -> int:
        """Retry ceiling given to newly submitted jobs."""
        value = self.database.get_setting(RETRY_ATTEMPTS_KEY)
        if value is None:
            return self.default_max_retries
        try:
            parsed = int(value)
        except ValueError:
            logger.warning(f"Invalid {RETRY_ATTEMPTS_KEY} value {value!r}, using {self.default_max_retries}")
            return self.default_max_retries
        if parsed < 0:
            logger.warning(f"Negative {RETRY_ATTEMPTS_KEY} value {parsed}, using {self.default_max_retries}")
            return self.default_max_retries
        return parsed

    def retry_delay_seconds(self) -> Optional[float]:
        """Operator override of the base retry delay, None when unset."""
        value = self.database.get_setting(RETRY_DELAY_MINUTES_KEY)
        if value is None:
            return None
        try:
            minutes = float(value)
        except ValueError:
            logger.warning(f"Invalid {RETRY_DELAY_MINUTES_KEY} value {value!r}, ignoring")
            return None
        if minutes <= 0:
            logger.warning(f"Non-positive {RETRY_DELAY_MINUTES_KEY} value {minutes}, ignoring")
            return None
        return minutes * 60

    def set_retry_enabled(self, enabled: bool):
        self.database.set_setting(RETRY_ENABLED_KEY, "true" if enabled else "false")

    def set_max_retries(self, max_retries: int):
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.database.set_setting(RETRY_ATTEMPTS_KEY, str(max_retries))

    def set_retry_delay_minutes(self, minutes: float):
        if minutes <= 0:
            raise ValueError("retry delay must be positive")
        self.database.set_setting(RETRY_DELAY_MINUTES_KEY, str(minutes))
