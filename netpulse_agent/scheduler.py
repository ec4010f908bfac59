import logging
from datetime import timedelta

import schedule

logger = logging.getLogger(__name__)


def discovery_job(services):
    try:
        services.discovery.discover(triggered_by="scheduled")
    except Exception as e:
        logger.error(f"discovery job failed: {e}")


def probe_job(services):
    try:
        services.collector.probe_all()
    except Exception as e:
        logger.error(f"probe job failed: {e}")


def diagnostics_job(services):
    try:
        services.diagnostics.run_diagnostics()
    except Exception as e:
        logger.error(f"diagnostics job failed: {e}")

    try:
        services.health.calculate_health_score()
    except Exception as e:
        logger.error(f"health score job failed: {e}")


def retention_job(services):
    try:
        cutoff = services.diagnostics.clock() - timedelta(days=services.config.metrics_retention_days)
        purged = services.repos.metrics.purge_older_than(cutoff)
        logger.info(f"Purged {purged} metrics older than {services.config.metrics_retention_days} days")
    except Exception as e:
        logger.error(f"retention job failed: {e}")


def schedule_jobs(services, scheduler=None):
    """Register the periodic agent jobs. Returns the scheduler they were added to."""
    scheduler = scheduler or schedule.default_scheduler
    config = services.config
    scheduler.every(config.scan_interval_sec).seconds.do(discovery_job, services)
    scheduler.every(config.ping_interval_sec).seconds.do(probe_job, services)
    scheduler.every(config.diagnostics_interval_sec).seconds.do(diagnostics_job, services)
    scheduler.every(config.retention_interval_sec).seconds.do(retention_job, services)
    return scheduler
