"""
APScheduler jobs for background star sync and version tracking.

Two independent interval jobs, both first firing a startup delay after the
scheduler is started (so a restart does not hit GitHub for every user at once):

  - star_sync (hourly): start a star sync for each user that is due
  - version_tracking (every 6h): refresh releases of followed repositories
    carrying the version-tracking tag

The scheduler runs inside the API process (wired in api/main.py lifespan).
"""
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlmodel import Session, select

from starshelf.config import Settings, get_settings
from starshelf.github.errors import ErrorKind
from starshelf.models.repository import Repository
from starshelf.models.sync import SyncStatus
from starshelf.models.user import User
from starshelf.services.release_service import ReleaseService
from starshelf.services.sync_service import StarSyncService
from starshelf.timeutil import utcnow

logger = logging.getLogger(__name__)

# Fallback for failures recorded without an error kind
AUTH_ERROR_PATTERN = re.compile(r"bad credentials|requires authentication|401", re.IGNORECASE)


def is_auth_failure(status: SyncStatus) -> bool:
    """Whether a failed sync looks like a dead or revoked token."""
    if status.error_kind:
        return status.error_kind == ErrorKind.AUTH_FAILED.value
    return bool(AUTH_ERROR_PATTERN.search(status.error or ""))


class StarScheduler:
    """
    Owns the APScheduler instance and the per-tick re-entrancy flags.

    A tick that is still running when its next run comes up is skipped,
    not queued.
    """

    def __init__(
        self,
        engine,
        sync_service: StarSyncService,
        release_service: ReleaseService,
        settings: Optional[Settings] = None,
    ):
        self.engine = engine
        self.sync_service = sync_service
        self.release_service = release_service
        self.settings = settings or get_settings()

        self.star_sync_running = False
        self.version_tracking_running = False

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def get_jobs(self):
        return self._scheduler.get_jobs()

    def start(self) -> None:
        """Register both jobs, first firing a startup delay from now, and start."""
        self._register_jobs()
        self._scheduler.start()
        logger.info(
            "Scheduler will start in %.0fs (sync every %.0fs, version-tracking=%r every %.0fs)",
            self.settings.scheduler_startup_delay_seconds,
            self.settings.sync_tick_interval_seconds,
            self.settings.version_tracking_tag,
            self.settings.version_tracking_tick_interval_seconds,
        )

    def stop(self) -> None:
        """Cancel the pending first run and both intervals. In-flight ticks finish."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    # ─── Ticks ───────────────────────────────────────────────────────────────

    async def run_star_sync_tick(self) -> None:
        if self.star_sync_running:
            logger.info("Star sync tick still running; skipping")
            return
        self.star_sync_running = True
        try:
            for user_id in self._syncable_user_ids():
                try:
                    if self._is_sync_due(user_id):
                        await self.sync_service.sync_user_stars(user_id)
                except Exception as exc:
                    logger.warning("Star sync tick failed for user %s: %s", user_id, exc)
        finally:
            self.star_sync_running = False

    async def run_version_tracking_tick(self) -> None:
        if self.version_tracking_running:
            logger.info("Version tracking tick still running; skipping")
            return
        self.version_tracking_running = True
        min_fetch_age = timedelta(seconds=self.settings.version_tracking_tick_interval_seconds)
        try:
            for user_id in self._syncable_user_ids():
                try:
                    if self.sync_service.get_active_sync(user_id):
                        continue
                    repo_ids = self._tracked_repo_ids(user_id)
                    if not repo_ids:
                        continue
                    result = await self.release_service.bulk_fetch_releases(
                        user_id,
                        len(repo_ids),
                        repo_ids,
                        min_fetch_age=min_fetch_age,
                    )
                    logger.info(
                        "Version tracking for user %s: %d processed, %d failed, %d skipped",
                        user_id,
                        result.processed,
                        result.failed,
                        result.skipped_rate_limit,
                    )
                except Exception as exc:
                    logger.warning("Version tracking tick failed for user %s: %s", user_id, exc)
        finally:
            self.version_tracking_running = False

    # ─── Internal helpers ────────────────────────────────────────────────────

    def _register_jobs(self) -> None:
        first_run = datetime.now(timezone.utc) + timedelta(
            seconds=self.settings.scheduler_startup_delay_seconds
        )
        self._scheduler.add_job(
            self.run_star_sync_tick,
            trigger=IntervalTrigger(
                seconds=self.settings.sync_tick_interval_seconds,
                start_date=first_run,
                timezone=timezone.utc,
            ),
            id="star_sync",
            replace_existing=True,
            coalesce=True,
        )
        self._scheduler.add_job(
            self.run_version_tracking_tick,
            trigger=IntervalTrigger(
                seconds=self.settings.version_tracking_tick_interval_seconds,
                start_date=first_run,
                timezone=timezone.utc,
            ),
            id="version_tracking",
            replace_existing=True,
            coalesce=True,
        )

    def _syncable_user_ids(self) -> List[int]:
        """Users with a stored token; the rest are skipped silently."""
        with Session(self.engine) as s:
            users = s.exec(select(User).where(User.access_token.is_not(None))).all()
            return [u.id for u in users if u.access_token]

    def _is_sync_due(self, user_id: int) -> bool:
        if self.sync_service.get_active_sync(user_id):
            return False

        now = utcnow()
        last_completed = self.sync_service.get_last_completed(user_id)
        min_interval = timedelta(hours=self.settings.sync_min_interval_hours)
        if last_completed and now - last_completed.updated_at < min_interval:
            return False

        last_failed = self.sync_service.get_last_failed(user_id)
        if last_failed:
            backoff_seconds = (
                self.settings.sync_auth_failure_backoff_seconds
                if is_auth_failure(last_failed)
                else self.settings.sync_failure_backoff_seconds
            )
            if now - last_failed.updated_at < timedelta(seconds=backoff_seconds):
                return False

        return True

    def _tracked_repo_ids(self, user_id: int) -> List[int]:
        tag = self.settings.version_tracking_tag
        with Session(self.engine) as s:
            repos = s.exec(
                select(Repository).where(
                    Repository.user_id == user_id,
                    Repository.is_followed == True,  # noqa: E712
                )
            ).all()
            return [r.id for r in repos if tag in (r.custom_tags or [])]


def build_scheduler(
    engine,
    sync_service: StarSyncService,
    release_service: ReleaseService,
    settings: Optional[Settings] = None,
) -> StarScheduler:
    """Create the scheduler. Jobs are added when it starts."""
    return StarScheduler(engine, sync_service, release_service, settings=settings)


def start_schedulers(
    engine,
    sync_service: StarSyncService,
    release_service: ReleaseService,
    settings: Optional[Settings] = None,
) -> StarScheduler:
    """Build and start the scheduler. Call stop() on the result at shutdown."""
    scheduler = build_scheduler(engine, sync_service, release_service, settings=settings)
    scheduler.start()
    return scheduler
