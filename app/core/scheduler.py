"""
APScheduler Setup for Background Jobs

Reconciles payments whose webhook never arrived:
- Pending status poll: every STATUS_POLL_INTERVAL_MINUTES (default 5)

Note: Jobs run with database connection from app context.
"""
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime

from app.core.config import Settings

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()

# Job status tracking
job_status = {
    "last_run": None,
    "status_poll": {"runs": 0, "last_result": None, "last_error": None},
}


async def run_status_poll(registry, min_age_minutes: int, batch_size: int):
    """Job: Poll the gateway for pending transactions older than min_age_minutes."""
    from app.database import Database
    from app.services.payment.payment_service import PaymentOrchestrator
    from app.services.payment.transaction_store import PaymentMethodStore, TransactionStore

    if Database.client is None:
        logger.warning("Database not connected, skipping status_poll")
        return

    try:
        db = Database.get_db()
        orchestrator = PaymentOrchestrator(registry, TransactionStore(db), PaymentMethodStore(db))
        result = await orchestrator.poll_pending_transactions(min_age_minutes, batch_size)

        job_status["status_poll"]["runs"] += 1
        job_status["status_poll"]["last_result"] = result
        job_status["status_poll"]["last_error"] = None
        job_status["last_run"] = datetime.utcnow().isoformat()

        if result.get("updated", 0) > 0:
            logger.info("status_poll: %s transactions updated", result["updated"])

    except Exception as e:
        job_status["status_poll"]["last_error"] = str(e)
        logger.exception("status_poll job failed")


def setup_scheduler(registry, settings: Settings):
    """
    Configure and setup all scheduled jobs.

    Job Schedule:
    - status_poll: Every status_poll_interval_minutes (pending transactions only)
    """
    # Clear any existing jobs
    scheduler.remove_all_jobs()

    scheduler.add_job(
        run_status_poll,
        IntervalTrigger(minutes=settings.status_poll_interval_minutes),
        kwargs={
            "registry": registry,
            "min_age_minutes": settings.status_poll_min_age_minutes,
            "batch_size": settings.status_poll_batch_size,
        },
        id="pending_status_poll",
        name="Poll pending transactions",
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    logger.info(
        "Payment scheduler configured: status poll every %s min (min age %s min)",
        settings.status_poll_interval_minutes, settings.status_poll_min_age_minutes,
    )


def start_scheduler():
    """Start the scheduler if not already running."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Background scheduler started")


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")


def get_scheduler_status() -> dict:
    """Get current scheduler status for monitoring."""
    return {
        "running": scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None
            }
            for job in scheduler.get_jobs()
        ],
        "job_status": job_status
    }
