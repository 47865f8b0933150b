# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Background Scheduler for the periodic multi-tenant auto sync (Central Time logging)
"""
import logging
import threading
import time
import schedule
from threading import Lock

import config
from utils.timezone import get_central_time, format_central_time

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs AutoSync every AUTO_SYNC_INTERVAL_MIN minutes in a daemon thread"""

    def __init__(self, auto_sync, interval_minutes: int = config.AUTO_SYNC_INTERVAL_MIN,
                 lookback_days: int = config.AUTO_SYNC_LOOKBACK_DAYS,
                 startup_delay_seconds: int = 120):
        self.auto_sync = auto_sync
        self.interval_minutes = interval_minutes
        self.lookback_days = lookback_days
        self.startup_delay_seconds = startup_delay_seconds
        self.scheduler = schedule.Scheduler()
        self.scheduler_lock = Lock()
        self.scheduler_running = False
        self.scheduler_thread = None
        self.last_result = None

    def start(self):
        """Start the scheduler"""
        with self.scheduler_lock:
            if self.scheduler_thread is None or not self.scheduler_thread.is_alive():
                logger.info(f"Starting scheduler thread at {format_central_time(get_central_time())}...")
                self.scheduler_running = True
                self.scheduler_thread = threading.Thread(target=self._run_scheduler, daemon=True)
                self.scheduler_thread.start()
            else:
                logger.info("Scheduler already running")

    def stop(self):
        """Stop the scheduler"""
        with self.scheduler_lock:
            self.scheduler_running = False
            self.scheduler.clear()

        logger.info(f"Stopping scheduler at {format_central_time(get_central_time())}...")

    def is_running(self):
        """Check if scheduler is running"""
        with self.scheduler_lock:
            return bool(self.scheduler_running and self.scheduler_thread and self.scheduler_thread.is_alive())

    def _running(self) -> bool:
        with self.scheduler_lock:
            return self.scheduler_running

    def _run_scheduler(self):
        """Run the scheduler loop"""
        self.scheduler.every(self.interval_minutes).minutes.do(self.run_scheduled_sync)
        logger.info(f"Scheduler started - auto sync every {self.interval_minutes} minutes (CT) "
                    f"- started at {format_central_time(get_central_time())}")

        # Let the deployment settle before the first sweep
        logger.info(f"⏳ Waiting {self.startup_delay_seconds}s before the first scheduled sync...")
        time.sleep(self.startup_delay_seconds)

        while self._running():
            self.scheduler.run_pending()
            time.sleep(60)

        logger.info(f"Scheduler stopped at {format_central_time(get_central_time())}")

    def run_scheduled_sync(self):
        """Function called by scheduler; sweep errors are logged, never raised into the loop"""
        logger.info(f"Running scheduled auto sync at {format_central_time(get_central_time())}")
        try:
            result = self.auto_sync.run(self.lookback_days)
        except Exception as e:
            logger.error(f"❌ Scheduled auto sync failed at {format_central_time(get_central_time())}: {e}",
                         exc_info=True)
            return None

        self.last_result = result
        failed = [r for r in result['results'] if r['errors']]
        if failed:
            logger.warning(f"⚠️ Scheduled auto sync finished with issues on {len(failed)} of "
                           f"{len(result['results'])} connections")
        else:
            logger.info(f"✅ Scheduled auto sync completed for {len(result['results'])} connections "
                        f"in {result['duration_ms']}ms")
        return result
