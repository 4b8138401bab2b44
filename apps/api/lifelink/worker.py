"""
Background worker for processing scheduled jobs.

Usage:
    python -m lifelink.worker

The worker polls the jobs table and runs each due job through its
registered handler. It also schedules the hourly requisition expiry
sweep. Run it as a separate process (systemd service, container).
"""

import asyncio
import logging
import sys

from lifelink.core.config import settings
from lifelink.core.encryption import assert_encryption_configured
from lifelink.core.structured_logging import build_log_context
from lifelink.db.enums import JobType
from lifelink.db.session import SessionLocal
from lifelink.jobs.registry import resolve_job_handler
from lifelink.services import job_service
from lifelink.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = settings.WORKER_POLL_INTERVAL_SECONDS
BATCH_SIZE = settings.WORKER_BATCH_SIZE


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def init_error_tracking() -> bool:
    """Enable Sentry outside dev when a DSN is configured."""
    if not settings.SENTRY_DSN or settings.ENV == "dev":
        return False

    import sentry_sdk
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        release=settings.VERSION,
        integrations=[SqlalchemyIntegration()],
        traces_sample_rate=0.1,
        send_default_pii=False,  # Donor data is PHI
    )
    logger.info("Sentry initialized for error tracking")
    return True


def schedule_expiry_sweep(db, now=None):
    """Enqueue at most one expiry sweep per hour."""
    now = now or utc_now()
    return job_service.schedule_job(
        db,
        None,
        JobType.REQUISITION_EXPIRY_SWEEP,
        {},
        idempotency_key=f"requisition_expiry_sweep:{now:%Y%m%d%H}",
    )


async def process_job(db, job) -> None:
    """Process a single job based on its type."""
    logger.info(
        "Processing job %s (type=%s, attempt=%s)", job.id, job.job_type, job.attempts
    )
    handler = resolve_job_handler(job.job_type)
    await handler(db, job)


async def run_once(db, limit: int = BATCH_SIZE) -> int:
    """Run one batch of due jobs. Returns how many jobs were attempted."""
    jobs = job_service.claim_pending_jobs(db, limit=limit)
    if jobs:
        logger.info("Claimed %d pending jobs", len(jobs))

    for job in jobs:
        try:
            await process_job(db, job)
            job_service.mark_job_completed(db, job)
            logger.info("Job %s completed successfully", job.id)
        except Exception as e:
            db.rollback()
            job_service.mark_job_failed(db, job, f"{type(e).__name__}: {e}")
            logger.error(
                "Job %s failed: %s",
                job.id,
                type(e).__name__,
                extra=build_log_context(tenant_id=job.organization_id, job_id=job.id),
            )
    return len(jobs)


async def worker_loop() -> None:
    """Main worker loop - polls for and processes pending jobs."""
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s)",
        POLL_INTERVAL_SECONDS,
        BATCH_SIZE,
    )

    while True:
        with SessionLocal() as db:
            try:
                schedule_expiry_sweep(db)
                await run_once(db)
            except Exception:
                db.rollback()
                logger.exception("Error in worker loop")

        await asyncio.sleep(POLL_INTERVAL_SECONDS)


def main() -> None:
    """Entry point for the worker."""
    configure_logging()
    try:
        assert_encryption_configured()
    except RuntimeError as e:
        logger.error("Refusing to start: %s", e)
        sys.exit(1)

    init_error_tracking()
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed", extra=build_log_context(client="worker"))
        raise


if __name__ == "__main__":
    main()
