"""
Shared fixtures for the print queue tests.
Each test gets its own SQLite database file.
"""
import pytest

from print_queue_service.database import Database
from print_queue_service.job_store import JobStore
from print_queue_service.print_job_service import PrintJobService
from print_queue_service.retry_policy import BackoffPolicy, RetryStrategy
from print_queue_service.retry_reconciler import RetryReconciler
from print_queue_service.runtime_settings import RuntimeSettings


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite:///{tmp_path / 'print_queue.db'}"


@pytest.fixture
def database(sqlite_url):
    return Database(sqlite_url)


@pytest.fixture
def job_store(database):
    return JobStore(database)


@pytest.fixture
def runtime_settings(database):
    return RuntimeSettings(database, default_max_retries=3)


@pytest.fixture
def retry_policy():
    return BackoffPolicy(strategy=RetryStrategy.FIXED_DELAY, initial_delay=300.0)


@pytest.fixture
def service(job_store, runtime_settings, retry_policy):
    return PrintJobService(job_store, runtime_settings, retry_policy)


@pytest.fixture
def reconciler(job_store, runtime_settings):
    return RetryReconciler(job_store, runtime_settings, batch_size=100)


@pytest.fixture
def receipt_payload():
    return {"request": "\x1b@Order #1042\nCoffee x2\n\x1bd\x03"}
