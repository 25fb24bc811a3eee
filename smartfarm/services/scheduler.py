"""
Periodic liveness sweep
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
import logging

from smartfarm.services.liveness import LivenessMonitor

logger = logging.getLogger(__name__)

LIVENESS_JOB_ID = "liveness_sweep"

def run_liveness_sweep(monitor: LivenessMonitor):
    """Scheduler entry point; a failing sweep must not kill the job"""
    try:
        offline = monitor.sweep()
        if offline:
            logger.info(f"Liveness sweep marked {len(offline)} device(s) offline: {', '.join(offline)}")
    except Exception as e:
        logger.exception(f"Error in liveness sweep: {e}")

def start_scheduler(scheduler: BackgroundScheduler, monitor: LivenessMonitor, interval_seconds: int = 30):
    """Start the liveness sweep scheduler"""
    if not scheduler.running:
        scheduler.add_job(
            run_liveness_sweep,
            IntervalTrigger(seconds=interval_seconds),
            args=[monitor],
            id=LIVENESS_JOB_ID,
            replace_existing=True,
            # a sweep still running when the next tick fires is skipped, not overlapped
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        logger.info(f"Liveness scheduler started (interval: {interval_seconds}s, timeout: {int(monitor.timeout.total_seconds())}s)")

def stop_scheduler(scheduler: BackgroundScheduler):
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Liveness scheduler stopped")
