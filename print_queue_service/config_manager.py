"""
Configuration Manager for the Print Queue Service.
Loads config/print_queue.yaml and applies environment variable overrides.
"""
import os
import yaml
import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from .retry_policy import BackoffPolicy, RetryStrategy

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPES = ["application/vnd.star.starprnt"]


@dataclass
class DatabaseConfig:
    url: Optional[str] = None
    timeout: float = 10.0


@dataclass
class CloudPRNTConfig:
    media_types: List[str] = field(default_factory=lambda: list(DEFAULT_MEDIA_TYPES))
    default_max_retries: int = 3
    claim_candidates: int = 5


@dataclass
class ReconcilerConfig:
    enabled: bool = True
    interval: float = 60.0  # seconds between runs
    batch_size: int = 100


@dataclass
class ApiConfig:
    host: str = "0.0.0.0"
    port: int = 8000


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """Manages static configuration for the print queue."""

    def __init__(self, config_dir: Optional[str] = None, load_env_file: bool = True):
        """
        Initialize configuration manager.

        Args:
            config_dir: Directory containing print_queue.yaml. Defaults to ./config/
            load_env_file: Load a .env file into the environment first
        """
        self.config_dir = Path(config_dir or "config")

        # Default configurations
        self.database = DatabaseConfig()
        self.cloudprnt = CloudPRNTConfig()
        self.reconciler = ReconcilerConfig()
        self.api = ApiConfig()
        self.retry_policy = BackoffPolicy()

        if load_env_file:
            load_dotenv()

        self._load_configurations()

    def _load_configurations(self):
        """Load the YAML file then environment overrides."""
        try:
            self._load_yaml_config()
        except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
            logger.warning(f"Error loading configuration file: {e}. Using defaults.")

        self._load_env_overrides()
        logger.info(
            f"Configuration loaded: retry strategy {self.retry_policy.strategy.value}, "
            f"reconciler {'enabled' if self.reconciler.enabled else 'disabled'}"
        )

    def _load_yaml_config(self):
        config_file = self.config_dir / "print_queue.yaml"
        if not config_file.exists():
            logger.info("No print_queue.yaml found, using defaults")
            return

        with open(config_file, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}

        database_data = config.get('database', {})
        self.database.url = database_data.get('url', self.database.url)
        self.database.timeout = float(database_data.get('timeout', self.database.timeout))

        cloudprnt_data = config.get('cloudprnt', {})
        media_types = cloudprnt_data.get('media_types')
        if isinstance(media_types, str):
            self.cloudprnt.media_types = [media_types]
        elif isinstance(media_types, list) and media_types:
            self.cloudprnt.media_types = [str(m) for m in media_types]
        self.cloudprnt.default_max_retries = int(
            cloudprnt_data.get('default_max_retries', self.cloudprnt.default_max_retries)
        )
        self.cloudprnt.claim_candidates = int(
            cloudprnt_data.get('claim_candidates', self.cloudprnt.claim_candidates)
        )

        reconciler_data = config.get('reconciler', {})
        enabled = reconciler_data.get('enabled', self.reconciler.enabled)
        self.reconciler.enabled = _parse_bool(enabled) if isinstance(enabled, str) else bool(enabled)
        self.reconciler.interval = float(reconciler_data.get('interval', self.reconciler.interval))
        self.reconciler.batch_size = int(reconciler_data.get('batch_size', self.reconciler.batch_size))

        api_data = config.get('api', {})
        self.api.host = api_data.get('host', self.api.host)
        self.api.port = int(api_data.get('port', self.api.port))

        retry_data = config.get('retry', {})
        if retry_data:
            self.retry_policy = self._build_policy(retry_data)

    def _build_policy(self, overrides: Dict[str, Any]) -> BackoffPolicy:
        """Build a BackoffPolicy from the current one plus overrides."""
        strategy = overrides.get('strategy', self.retry_policy.strategy)
        return BackoffPolicy(
            strategy=strategy if isinstance(strategy, RetryStrategy) else RetryStrategy(strategy),
            initial_delay=float(overrides.get('initial_delay', self.retry_policy.initial_delay)),
            max_delay=float(overrides.get('max_delay', self.retry_policy.max_delay)),
            backoff_factor=float(overrides.get('backoff_factor', self.retry_policy.backoff_factor)),
            jitter_factor=float(overrides.get('jitter_factor', self.retry_policy.jitter_factor)),
        )

    def _load_env_overrides(self):
        """Override configuration with environment variables."""
        env_settings = [
            ("DATABASE_URL", lambda v: setattr(self.database, 'url', v)),
            ("DATABASE_TIMEOUT", lambda v: setattr(self.database, 'timeout', float(v))),
            ("PRINT_MEDIA_TYPES", lambda v: setattr(
                self.cloudprnt, 'media_types', [m.strip() for m in v.split(",") if m.strip()]
            )),
            ("PRINT_DEFAULT_MAX_RETRIES", lambda v: setattr(self.cloudprnt, 'default_max_retries', int(v))),
            ("PRINT_CLAIM_CANDIDATES", lambda v: setattr(self.cloudprnt, 'claim_candidates', int(v))),
            ("RECONCILER_ENABLED", lambda v: setattr(self.reconciler, 'enabled', _parse_bool(v))),
            ("RECONCILER_INTERVAL", lambda v: setattr(self.reconciler, 'interval', float(v))),
            ("RECONCILER_BATCH_SIZE", lambda v: setattr(self.reconciler, 'batch_size', int(v))),
            ("API_HOST", lambda v: setattr(self.api, 'host', v)),
            ("API_PORT", lambda v: setattr(self.api, 'port', int(v))),
        ]
        for name, apply in env_settings:
            value = os.getenv(name)
            if value is None or value == "":
                continue
            try:
                apply(value)
            except ValueError:
                logger.warning(f"Invalid value for {name}: {value!r}, keeping default")

        policy_env = {
            'strategy': os.getenv("PRINT_RETRY_STRATEGY"),
            'initial_delay': os.getenv("PRINT_RETRY_INITIAL_DELAY"),
            'max_delay': os.getenv("PRINT_RETRY_MAX_DELAY"),
            'backoff_factor': os.getenv("PRINT_RETRY_BACKOFF_FACTOR"),
            'jitter_factor': os.getenv("PRINT_RETRY_JITTER"),
        }
        policy_env = {key: value for key, value in policy_env.items() if value}
        if policy_env:
            try:
                self.retry_policy = self._build_policy(policy_env)
            except ValueError as e:
                logger.warning(f"Invalid retry policy override {policy_env}: {e}, keeping current policy")

    def get_summary(self) -> Dict[str, Any]:
        """Configuration summary without secrets."""
        return {
            "database": {
                "configured": bool(self.database.url),
                "dialect": "sqlite" if (self.database.url or "").startswith("sqlite:") else "postgresql",
            },
            "cloudprnt": {
                "media_types": list(self.cloudprnt.media_types),
                "default_max_retries": self.cloudprnt.default_max_retries,
            },
            "reconciler": {
                "enabled": self.reconciler.enabled,
                "interval": self.reconciler.interval,
                "batch_size": self.reconciler.batch_size,
            },
            "retry_policy": {
                "strategy": self.retry_policy.strategy.value,
                "initial_delay": self.retry_policy.initial_delay,
                "max_delay": self.retry_policy.max_delay,
                "backoff_factor": self.retry_policy.backoff_factor,
                "jitter_factor": self.retry_policy.jitter_factor,
            },
        }
