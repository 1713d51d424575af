"""Background jobs run by APScheduler."""
from inbound.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status

__all__ = ["scheduler", "start_scheduler", "shutdown_scheduler", "get_job_status"]
