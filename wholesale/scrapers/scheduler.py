"""APScheduler-based audit scheduler.

Runs one periodic audit/heal sweep per platform. Jobs are staggered so
platforms do not all start at once, and a failing sweep is logged without
stopping the scheduler.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from wholesale.services.audit_service import AuditHealService, SweepReport

logger = structlog.get_logger(__name__)


class AuditScheduler:
    """Manages periodic audit sweeps using APScheduler.

    This scheduler:
    - Starts and stops background sweep jobs
    - Staggers platforms to avoid a thundering herd
    - Keeps the last sweep report per platform
    """

    def __init__(
        self,
        audit_service: AuditHealService,
        interval_minutes: int = 60,
        stagger_seconds: int = 30,
        max_listings: Optional[int] = None,
    ):
        """Initialize the audit scheduler.

        Args:
            audit_service: Service that performs the sweeps
            interval_minutes: Default interval between sweeps of one platform
            stagger_seconds: Delay added per platform before its first run
            max_listings: Per-sweep cap passed to the audit service
        """
        self.audit_service = audit_service
        self.interval_minutes = interval_minutes
        self.stagger_seconds = stagger_seconds
        self.max_listings = max_listings
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="audit_scheduler")
        self._job_ids: Dict[str, str] = {}  # platform -> job_id
        self.last_reports: Dict[str, SweepReport] = {}

    def start(self) -> None:
        """Start the scheduler. Jobs are added with ``add_platform_job``."""
        if not self.scheduler.running:
            self.scheduler.start()
            self.logger.info("scheduler_started")
        else:
            self.logger.warning("scheduler_already_running")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

    def load_platform_jobs(self, platforms: List[str]) -> int:
        """Schedule a sweep job for every platform, staggered by index.

        Returns:
            Number of jobs scheduled
        """
        jobs_added = 0
        for idx, platform in enumerate(platforms):
            if self.add_platform_job(platform, offset_seconds=idx * self.stagger_seconds):
                jobs_added += 1
        self.logger.info("platform_jobs_loaded", count=jobs_added)
        return jobs_added

    def add_platform_job(
        self,
        platform: str,
        interval_minutes: Optional[int] = None,
        offset_seconds: int = 0,
    ) -> Optional[Job]:
        """Add a periodic sweep job for a platform.

        Returns:
            APScheduler Job instance or None if already scheduled
        """
        if platform in self._job_ids:
            self.logger.warning("job_already_exists", platform=platform)
            return None

        interval = interval_minutes or self.interval_minutes
        first_run = datetime.now(timezone.utc) + timedelta(seconds=offset_seconds)
        trigger = IntervalTrigger(minutes=interval, start_date=first_run, timezone="UTC")

        job = self.scheduler.add_job(
            func=self._run_sweep_wrapper,
            trigger=trigger,
            args=[platform],
            id=f"audit_{platform}",
            name=f"Audit {platform}",
            replace_existing=True,
            max_instances=1,  # A sweep never overlaps itself
            next_run_time=first_run,
        )
        self._job_ids[platform] = job.id

        self.logger.info(
            "platform_job_added",
            platform=platform,
            interval_minutes=interval,
            offset_seconds=offset_seconds,
        )
        return job

    def remove_platform_job(self, platform: str) -> bool:
        job_id = self._job_ids.pop(platform, None)
        if not job_id:
            self.logger.warning("job_not_found", platform=platform)
            return False
        self.scheduler.remove_job(job_id)
        self.logger.info("platform_job_removed", platform=platform)
        return True

    async def _run_sweep_wrapper(self, platform: str) -> None:
        """Entry point called by APScheduler; a failed sweep must not kill the job."""
        try:
            await self.run_platform_sweep(platform)
        except Exception as e:
            self.logger.error("audit_job_failed", platform=platform, error=str(e), exc_info=True)

    async def run_platform_sweep(self, platform: str) -> SweepReport:
        self.logger.info("starting_audit_job", platform=platform)
        report = await self.audit_service.sweep([platform], max_listings=self.max_listings)
        self.last_reports[platform] = report
        return report

    def get_jobs_status(self) -> dict:
        """Status of all scheduled jobs keyed by platform."""
        jobs = {}
        for platform, job_id in self._job_ids.items():
            job = self.scheduler.get_job(job_id)
            if job:
                jobs[platform] = {
                    "job_id": job_id,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                    "trigger": str(job.trigger),
                }
        return jobs

    def is_running(self) -> bool:
        return self.scheduler.running
