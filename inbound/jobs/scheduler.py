"""
In-process background scheduler.

The API process owns one AsyncIOScheduler on its event loop. Jobs are kept
in memory and re-registered on every start, so nothing survives a restart
and nothing needs to.
"""

import logging

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from inbound.config import settings

logger = logging.getLogger(__name__)

SLA_JOB_ID = "flag_stale_receiving"

scheduler = AsyncIOScheduler(
    jobstores={"default": MemoryJobStore()},
    executors={"default": AsyncIOExecutor()},
    job_defaults={
        # A late tick is folded into the next one, never run twice in parallel
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": 60,
    },
    timezone=settings.SCHEDULER_TIMEZONE,
)


async def run_sla_check():
    from inbound.jobs.receiving_jobs import flag_stale_receiving

    try:
        result = await flag_stale_receiving()
    except Exception:
        # The next interval retries; the scheduler itself must keep running
        logger.exception(f"Job '{SLA_JOB_ID}' failed")
        return

    if result["asns_flagged"] or result["receipts_flagged"]:
        logger.info(
            f"SLA sweep: {result['asns_flagged']} ASN(s), "
            f"{result['receipts_flagged']} receipt session(s) newly flagged"
        )
    else:
        logger.debug(f"Job '{SLA_JOB_ID}' found nothing stale")


def start_scheduler():
    if scheduler.running:
        return

    scheduler.add_job(
        run_sla_check,
        "interval",
        minutes=settings.SLA_CHECK_INTERVAL_MINUTES,
        id=SLA_JOB_ID,
        name="Receiving SLA monitor",
        replace_existing=True,
    )
    scheduler.start()

    for job in scheduler.get_jobs():
        logger.info(f"Scheduler started: '{job.name}' next at {job.next_run_time}")


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")


def get_job_status() -> list[dict]:
    """Registered jobs with their next fire time, for the ops endpoint."""
    return [
        {
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
