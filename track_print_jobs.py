#!/usr/bin/env python3
"""
Print Job Tracking Utility
Displays print jobs and their retry state, traces single jobs and lets an
operator retry failed jobs or run the reconciler by hand.
"""

import os
import sys
import time
import argparse
from datetime import datetime, timezone

from tabulate import tabulate
from dotenv import load_dotenv

from print_queue_service.config_manager import ConfigManager
from print_queue_service.database import Database
from print_queue_service.errors import PrintQueueError
from print_queue_service.job_store import JobStore
from print_queue_service.models import PrintJobStatus
from print_queue_service.print_job_service import PrintJobService
from print_queue_service.retry_reconciler import RetryReconciler
from print_queue_service.runtime_settings import RuntimeSettings

load_dotenv()

STATUS_COLORS = {
    "completed": "\033[92m✓ {}\033[0m",  # Green
    "failed": "\033[91m✗ {}\033[0m",  # Red
    "printing": "\033[93m⟳ {}\033[0m",  # Yellow
    "pending": "\033[94m⋯ {}\033[0m",  # Blue
}


def build_components(config: ConfigManager):
    """Wire the store, settings and service from configuration."""
    if not config.database.url:
        print("ERROR: DATABASE_URL environment variable not set.")
        sys.exit(1)
    database = Database(config.database.url, timeout=config.database.timeout)
    store = JobStore(database, claim_candidates=config.cloudprnt.claim_candidates)
    settings = RuntimeSettings(database, default_max_retries=config.cloudprnt.default_max_retries)
    service = PrintJobService(store, settings, config.retry_policy, config.cloudprnt.media_types)
    return store, settings, service


def format_age(moment: datetime) -> str:
    seconds = int((datetime.now(timezone.utc) - moment).total_seconds())
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    return f"{seconds // 3600}h ago"


def display_print_jobs(store: JobStore, status_filter=None, device_id=None, limit=50):
    """Display print jobs with their current status."""
    status = PrintJobStatus(status_filter) if status_filter else None
    jobs = store.list_jobs(limit=limit, status=status, device_id=device_id)

    if not jobs:
        print("No print jobs found")
        return

    table_data = []
    for job in jobs:
        error = job.error_message or ""
        table_data.append([
            job.id[:8],
            job.device_id,
            STATUS_COLORS[job.status.value].format(job.status.value),
            f"{job.retry_count}/{job.max_retries}",
            format_age(job.updated_at),
            job.created_at.strftime("%H:%M:%S"),
            job.next_retry_at.strftime("%H:%M:%S") if job.next_retry_at else "",
            error[:30] + "..." if len(error) > 30 else error,
        ])

    headers = ["Job", "Device", "Status", "Retries", "Updated", "Created", "Next retry", "Error"]
    print(f"\n📋 Print Jobs (latest {limit}):")
    print(tabulate(table_data, headers=headers, tablefmt="grid"))
    show_statistics(store)


def show_statistics(store: JobStore):
    """Display print job statistics."""
    counts = store.count_by_status()
    total = sum(counts.values())

    print("\n📊 Statistics:")
    for status, count in counts.items():
        print(f"  {status.capitalize()}: {count} jobs")

    if total > 0:
        success_rate = counts["completed"] / total * 100
        print(f"\n  Success Rate: {success_rate:.1f}%")


def trace_job(store: JobStore, job_id: str):
    """Show the full state of a single print job."""
    job = store.get_job(job_id)
    if not job:
        print(f"❌ Print job {job_id} not found")
        return

    print(f"\n🔍 Print Job {job.id}")
    print("=" * 60)
    print(f"  Device: {job.device_id}")
    print(f"  Status: {job.status.value}")
    print(f"  Retries: {job.retry_count}/{job.max_retries}")
    print(f"\n⏱️  Timeline:")
    print(f"  Created: {job.created_at}")
    print(f"  Updated: {job.updated_at}")
    if job.printed_at:
        print(f"  Printed: {job.printed_at}")
    if job.next_retry_at:
        print(f"  Next retry: {job.next_retry_at}")
    if job.error_message:
        print(f"\n❌ Error:")
        print(f"  {job.error_message}")
    if job.status == PrintJobStatus.FAILED and job.retry_exhausted:
        print("\n⚠️  Retry limit reached, only a manual retry will requeue this job")


def monitor_print_jobs(store: JobStore, interval=5):
    """Monitor print jobs in real-time."""
    print(f"🔍 Monitoring print jobs (updating every {interval} seconds, press Ctrl+C to stop)...")

    try:
        while True:
            os.system('cls' if os.name == 'nt' else 'clear')
            print(f"🖨️  PRINT JOB MONITOR - {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
            print("=" * 80)
            display_print_jobs(store, limit=20)
            time.sleep(interval)
    except KeyboardInterrupt:
        print("\n\nMonitoring stopped.")


def main(argv=None):
    parser = argparse.ArgumentParser(description='Track and manage CloudPRNT print jobs')
    parser.add_argument('--status', choices=[s.value for s in PrintJobStatus], help='Filter by status')
    parser.add_argument('--device', help='Filter by device id')
    parser.add_argument('--limit', type=int, default=50, help='Number of jobs to show')
    parser.add_argument('--monitor', action='store_true', help='Monitor jobs in real-time')
    parser.add_argument('--interval', type=int, default=5, help='Monitor update interval in seconds')
    parser.add_argument('--trace', help='Show a specific job by id')
    parser.add_argument('--retry', help='Manually retry a failed job by id')
    parser.add_argument('--reconcile', action='store_true', help='Run the retry reconciler once')

    args = parser.parse_args(argv)

    config = ConfigManager()
    store, settings, service = build_components(config)

    try:
        if args.retry:
            job = service.retry_job(args.retry)
            print(f"✅ Print job {job.id} requeued (retry {job.retry_count}/{job.max_retries})")
        elif args.reconcile:
            result = RetryReconciler(store, settings, batch_size=config.reconciler.batch_size).run()
            if not result.enabled:
                print("Retry is disabled")
            else:
                print(f"✅ Queued {result.retried} jobs for retry, skipped {result.skipped}")
        elif args.trace:
            trace_job(store, args.trace)
        elif args.monitor:
            monitor_print_jobs(store, args.interval)
        else:
            display_print_jobs(store, args.status, args.device, args.limit)
    except PrintQueueError as e:
        print(f"❌ {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
