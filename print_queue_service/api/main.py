"""
FastAPI application for the Print Queue Service.
Provides the CloudPRNT polling endpoints, job submission and the operator
history and retry endpoints.
"""
import logging
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from fastapi import FastAPI, Request, Depends, Query, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config_manager import ConfigManager
from ..database import Database
from ..errors import InvalidRequest, PrintQueueError
from ..history import PrintJobHistory
from ..job_store import JobStore
from ..models import PrintJobStatus
from ..print_job_service import PrintJobService
from ..retry_reconciler import ReconcilerScheduler, RetryReconciler
from ..runtime_settings import RuntimeSettings

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - [%(name)s] - %(message)s')
logger = logging.getLogger(__name__)


# --- Pydantic Models for Request Bodies ---
class SubmitJobRequest(BaseModel):
    device_id: Optional[str] = Field(None, description="Target printer device identifier.")
    job_data: Optional[Dict[str, Any]] = Field(None, description="Rendering-ready print data.")
    max_retries: Optional[int] = Field(None, description="Per-job retry ceiling override.")


class StatusCallbackRequest(BaseModel):
    jobToken: Optional[str] = Field(None, description="Job token handed out by the poll endpoint.")
    status: Optional[str] = Field(None, description="completed or failed.")
    error: Optional[str] = Field(None, description="Printer error detail; forces failed.")


# --- Singleton Dependency Management ---
# Use a dictionary to hold singleton instances of our services
global_instances: Dict[str, Any] = {}


def get_config_manager() -> ConfigManager:
    """Dependency injection for ConfigManager."""
    if "config_manager" not in global_instances:
        global_instances["config_manager"] = ConfigManager()
    return global_instances["config_manager"]


def get_database(config: ConfigManager = Depends(get_config_manager)) -> Database:
    """Dependency injection for Database."""
    if "database" not in global_instances:
        # Creating an instance of Database automatically initializes the schema.
        global_instances["database"] = Database(config.database.url, timeout=config.database.timeout)
    return global_instances["database"]


def get_job_store(
    db: Database = Depends(get_database),
    config: ConfigManager = Depends(get_config_manager)
) -> JobStore:
    """Dependency injection for JobStore."""
    if "job_store" not in global_instances:
        global_instances["job_store"] = JobStore(db, claim_candidates=config.cloudprnt.claim_candidates)
    return global_instances["job_store"]


def get_runtime_settings(
    db: Database = Depends(get_database),
    config: ConfigManager = Depends(get_config_manager)
) -> RuntimeSettings:
    """Dependency injection for RuntimeSettings."""
    if "runtime_settings" not in global_instances:
        global_instances["runtime_settings"] = RuntimeSettings(
            db, default_max_retries=config.cloudprnt.default_max_retries
        )
    return global_instances["runtime_settings"]


def get_print_job_service(
    store: JobStore = Depends(get_job_store),
    settings: RuntimeSettings = Depends(get_runtime_settings),
    config: ConfigManager = Depends(get_config_manager)
) -> PrintJobService:
    """Dependency injection for PrintJobService."""
    if "print_job_service" not in global_instances:
        global_instances["print_job_service"] = PrintJobService(
            store,
            settings,
            retry_policy=config.retry_policy,
            media_types=config.cloudprnt.media_types,
        )
    return global_instances["print_job_service"]


def get_history(
    store: JobStore = Depends(get_job_store),
    service: PrintJobService = Depends(get_print_job_service)
) -> PrintJobHistory:
    """Dependency injection for PrintJobHistory."""
    if "history" not in global_instances:
        global_instances["history"] = PrintJobHistory(store, service)
    return global_instances["history"]


def get_reconciler(
    store: JobStore = Depends(get_job_store),
    settings: RuntimeSettings = Depends(get_runtime_settings),
    config: ConfigManager = Depends(get_config_manager)
) -> RetryReconciler:
    """Dependency injection for RetryReconciler."""
    if "reconciler" not in global_instances:
        global_instances["reconciler"] = RetryReconciler(store, settings, batch_size=config.reconciler.batch_size)
    return global_instances["reconciler"]


def _parse_status_filter(status: Optional[str]) -> Optional[PrintJobStatus]:
    if not status:
        return None
    try:
        return PrintJobStatus(status)
    except ValueError:
        raise InvalidRequest(f"Unknown status filter {status!r}")


# --- FastAPI App Creation ---
def create_app():
    app = FastAPI(
        title="Print Queue Service",
        description="CloudPRNT print job queue with retry reconciliation",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    @app.exception_handler(PrintQueueError)
    async def print_queue_error_handler(request: Request, exc: PrintQueueError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request body", "detail": jsonable_encoder(exc.errors())})

    @app.on_event("startup")
    async def startup_event():
        """Initializes the store and starts the reconciler schedule."""
        logger.info("Application startup...")
        config = get_config_manager()
        db = get_database(config)
        store = get_job_store(db, config)
        settings = get_runtime_settings(db, config)
        service = get_print_job_service(store, settings, config)
        get_history(store, service)

        if config.reconciler.enabled:
            reconciler = get_reconciler(store, settings, config)
            scheduler = ReconcilerScheduler(reconciler, interval=config.reconciler.interval)
            global_instances["reconciler_scheduler"] = scheduler
            scheduler.start()
        logger.info("Startup complete.")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stops background services gracefully."""
        logger.info("Application shutdown...")
        if "reconciler_scheduler" in global_instances:
            logger.info("Stopping reconciler scheduler...")
            global_instances.pop("reconciler_scheduler").stop()
        if "history" in global_instances:
            global_instances["history"].close()
        logger.info("Shutdown complete.")

    @app.get("/health", tags=["Monitoring"], response_model=dict)
    def health_check(store: JobStore = Depends(get_job_store)):
        """Health check endpoint to confirm the service is running."""
        scheduler = global_instances.get("reconciler_scheduler")
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "jobs": store.count_by_status(),
            "reconciler_running": bool(scheduler and scheduler.is_running),
        }

    @app.get("/print-jobs", tags=["CloudPRNT"])
    def poll_print_job(
        device_id: Optional[str] = Query(None),
        mac: Optional[str] = Query(None),
        service: PrintJobService = Depends(get_print_job_service)
    ):
        """Printer poll: claims and returns the oldest pending job for the device."""
        return service.poll(device_id or mac)

    @app.post("/print-jobs", tags=["CloudPRNT"])
    def submit_print_job(
        payload: SubmitJobRequest,
        service: PrintJobService = Depends(get_print_job_service)
    ):
        """Queues a rendering-ready job for a device."""
        job = service.submit_job(payload.device_id, payload.job_data, payload.max_retries)
        return {"success": True, "job_id": job.id}

    @app.put("/print-jobs", tags=["CloudPRNT"])
    def update_print_job_status(
        payload: StatusCallbackRequest,
        service: PrintJobService = Depends(get_print_job_service)
    ):
        """Printer status callback reporting completed or failed."""
        service.report_status(payload.jobToken, payload.status, payload.error)
        return {"success": True}

    @app.delete("/print-jobs", status_code=204, tags=["CloudPRNT"])
    def confirm_print_job(
        jobToken: Optional[str] = Query(None),
        token: Optional[str] = Query(None),
        service: PrintJobService = Depends(get_print_job_service)
    ):
        """Printer confirmation that a job was printed."""
        service.confirm_job(jobToken or token)
        return Response(status_code=204)

    @app.get("/print-jobs/history", tags=["History"])
    def print_job_history(
        limit: int = Query(50, ge=1, le=500),
        status: Optional[str] = Query(None),
        device_id: Optional[str] = Query(None),
        history: PrintJobHistory = Depends(get_history)
    ):
        """Recent jobs with status counts for the operator view."""
        return {
            "jobs": history.list_jobs(limit, _parse_status_filter(status), device_id),
            "counts": history.status_counts(),
            "latest_seq": history.latest_sequence,
        }

    @app.get("/print-jobs/events", tags=["History"])
    def print_job_events(
        since: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=500),
        history: PrintJobHistory = Depends(get_history)
    ):
        """Status transitions newer than the given sequence number."""
        return history.events_since(since, limit)

    @app.post("/print-jobs/{job_id}/retry", tags=["History"])
    def retry_print_job(job_id: str, history: PrintJobHistory = Depends(get_history)):
        """Operator retry of a failed job, ignoring the retry ceiling."""
        return {"success": True, "job": history.retry(job_id)}

    @app.post("/print-jobs/reconcile", tags=["History"])
    def reconcile_print_jobs(reconciler: RetryReconciler = Depends(get_reconciler)):
        """Runs the retry reconciler once."""
        return reconciler.run().to_dict()

    return app


app = create_app()
