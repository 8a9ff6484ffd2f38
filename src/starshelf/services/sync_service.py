"""
StarSyncService: reconciles a user's GitHub stars into the database.

Flow for one sync (sync_user_stars):
  1. One transaction: lock the user row, look for an active in_progress
     SyncStatus (stale ones are failed on sight), create a new one
  2. After commit, hand the work to a background asyncio task and return
  3. Background: fetch all stars → upsert in batches (one transaction per
     batch, progress after each) → delete repositories no longer starred
  4. Mark the SyncStatus completed, then kick off a best-effort release fetch

On any exception in 3-4: the SyncStatus row that this run created (matched
by id and user) is marked failed with the error, and the error is re-raised
for the task's done-callback to log.

reconcile_followed() is the cheap in-between: it flips is_followed on stored
repositories to match the current stars without deleting anything.

Terminal rows (completed/failed) are never modified again, so a run that was
declared stale and later finishes cannot overwrite the recorded failure.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from sqlmodel import Session, select

from starshelf.config import Settings, get_settings
from starshelf.errors import UserNotFoundError
from starshelf.github.client import GitHubClient
from starshelf.github.errors import GitHubAPIError
from starshelf.models.repository import Repository
from starshelf.models.sync import TERMINAL_STATES, SyncState, SyncStatus
from starshelf.models.user import User
from starshelf.services.release_service import ReleaseService
from starshelf.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SyncStartResult:
    started: bool
    sync_status: SyncStatus


@dataclass
class ReconcileResult:
    followed: int = 0
    unfollowed: int = 0


class StarSyncService:
    """Orchestrates GitHub stars → DB sync, at most one active run per user."""

    def __init__(
        self,
        engine,
        *,
        client_factory: Callable[..., GitHubClient] = GitHubClient,
        release_service: Optional[ReleaseService] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            client_factory: Builds a GitHub client from an access token
                            (returns an AsyncMock in tests).
            release_service: Used for the post-sync release fetch.
            settings: Overrides get_settings().
        """
        self.engine = engine
        self.client_factory = client_factory
        self.settings = settings or get_settings()
        self.release_service = release_service or ReleaseService(
            engine, client_factory=client_factory, settings=self.settings
        )
        self._tasks: Set[asyncio.Task] = set()

    @property
    def stale_after(self) -> timedelta:
        return timedelta(minutes=self.settings.sync_stale_after_minutes)

    # ─── Entry point ─────────────────────────────────────────────────────────

    async def sync_user_stars(self, user_id: int) -> SyncStartResult:
        """
        Start a background sync unless one is already running for the user.

        Returns:
            SyncStartResult(started=True, new status) when a sync was
            started, or SyncStartResult(started=False, active status).

        Raises:
            UserNotFoundError: if the user does not exist.
        """
        with Session(self.engine) as s:
            # Row lock on the user serializes concurrent check-and-create
            user = s.exec(
                select(User).where(User.id == user_id).with_for_update()
            ).first()
            if user is None:
                raise UserNotFoundError(f"User {user_id} not found")
            access_token = user.access_token

            active = self._find_active(s, user_id)
            if active is not None:
                s.commit()
                s.refresh(active)
                logger.info("Sync already running for user %s (status %s)", user_id, active.id)
                return SyncStartResult(started=False, sync_status=active)

            status = SyncStatus(
                user_id=user_id,
                status=SyncState.IN_PROGRESS.value,
                progress=0.0,
            )
            s.add(status)
            s.commit()
            s.refresh(status)

        # Committed: the row is visible to pollers before any work starts
        self._spawn(
            self._run_sync(user_id, access_token, status.id),
            name=f"star-sync-{user_id}-{status.id}",
        )
        logger.info("Started star sync for user %s (status %s)", user_id, status.id)
        return SyncStartResult(started=True, sync_status=status)

    # ─── Follow-state reconcile ──────────────────────────────────────────────

    async def reconcile_followed(self, user_id: int) -> ReconcileResult:
        """
        Mark stored repositories followed or unfollowed from the current stars.

        Lighter than a full sync: nothing is inserted, updated from GitHub or
        deleted, and no SyncStatus row is written. Repositories starred since
        the last sync are left for the next full sync.

        Raises:
            UserNotFoundError: if the user does not exist.
            GitHubAPIError: if the starred list cannot be fetched.
        """
        with Session(self.engine) as s:
            user = s.get(User, user_id)
            if user is None:
                raise UserNotFoundError(f"User {user_id} not found")
            access_token = user.access_token

        client = self.client_factory(access_token, settings=self.settings)
        try:
            stars = await client.fetch_all_starred_repositories()
        finally:
            await client.aclose()
        starred_ids = {star["github_id"] for star in stars}

        result = ReconcileResult()
        with Session(self.engine) as s:
            now = utcnow()
            for repo in s.exec(select(Repository).where(Repository.user_id == user_id)).all():
                followed = repo.github_id in starred_ids
                if followed:
                    result.followed += 1
                else:
                    result.unfollowed += 1
                if repo.is_followed != followed:
                    repo.is_followed = followed
                    repo.updated_at = now
                    s.add(repo)
            s.commit()
        logger.info(
            "Reconciled follow state for user %s: %d followed, %d unfollowed",
            user_id,
            result.followed,
            result.unfollowed,
        )
        return result

    # ─── Status queries ──────────────────────────────────────────────────────

    def get_active_sync(self, user_id: int) -> Optional[SyncStatus]:
        """Return the user's active in_progress row, failing stale ones."""
        with Session(self.engine) as s:
            active = self._find_active(s, user_id)
            s.commit()
            if active is not None:
                s.refresh(active)
            return active

    def get_latest_status(self, user_id: int) -> Optional[SyncStatus]:
        with Session(self.engine) as s:
            return s.exec(
                select(SyncStatus)
                .where(SyncStatus.user_id == user_id)
                .order_by(SyncStatus.created_at.desc(), SyncStatus.id.desc())
            ).first()

    def get_last_completed(self, user_id: int) -> Optional[SyncStatus]:
        return self._last_with_status(user_id, SyncState.COMPLETED)

    def get_last_failed(self, user_id: int) -> Optional[SyncStatus]:
        return self._last_with_status(user_id, SyncState.FAILED)

    async def wait_for_background(self) -> None:
        """Wait for spawned sync (and follow-up release) tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ─── Background work ─────────────────────────────────────────────────────

    async def _run_sync(self, user_id: int, access_token: Optional[str], status_id: int) -> None:
        client = None
        try:
            client = self.client_factory(access_token, settings=self.settings)
            stars = await client.fetch_all_starred_repositories()
            total = len(stars)
            logger.info("Fetched %d starred repositories for user %s", total, user_id)

            batch_size = max(1, self.settings.sync_batch_size)
            for start in range(0, total, batch_size):
                batch = stars[start:start + batch_size]
                self._upsert_batch(user_id, batch)
                processed = start + len(batch)
                self._set_progress(status_id, user_id, min(processed * 100 / total, 100.0))
                logger.info("Processed %d/%d repositories", processed, total)

            removed = self._remove_unstarred(user_id, {star["github_id"] for star in stars})
            if removed:
                logger.info("Removed %d unstarred repositories for user %s", removed, user_id)

            self._finish(status_id, user_id, SyncState.COMPLETED, progress=100.0)
            self._spawn(
                self._fetch_releases_after_sync(user_id),
                name=f"release-fetch-{user_id}",
            )
        except Exception as exc:
            error_kind = exc.kind.value if isinstance(exc, GitHubAPIError) else None
            self._finish(status_id, user_id, SyncState.FAILED, error=str(exc), error_kind=error_kind)
            raise
        finally:
            if client is not None:
                await client.aclose()

    async def _fetch_releases_after_sync(self, user_id: int) -> None:
        """Best-effort: failures here never touch the sync's status."""
        try:
            result = await self.release_service.bulk_fetch_releases(
                user_id, self.settings.sync_release_fetch_limit
            )
        except Exception as exc:
            logger.warning("Background release fetch failed for user %s: %s", user_id, exc)
            return
        logger.info(
            "Post-sync release fetch for user %s: %d ok, %d failed, %d skipped",
            user_id,
            result.successful,
            result.failed,
            result.skipped_rate_limit,
        )

    # ─── Internal helpers ────────────────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)

    def _find_active(self, s: Session, user_id: int) -> Optional[SyncStatus]:
        """Newest fresh in_progress row; stale ones are marked failed in `s`."""
        rows = s.exec(
            select(SyncStatus)
            .where(
                SyncStatus.user_id == user_id,
                SyncStatus.status == SyncState.IN_PROGRESS.value,
            )
            .order_by(SyncStatus.created_at.desc(), SyncStatus.id.desc())
            .with_for_update()
        ).all()

        now = utcnow()
        cutoff = now - self.stale_after
        active = None
        for row in rows:
            if row.created_at < cutoff:
                row.status = SyncState.FAILED.value
                row.error = (
                    "Sync timed out: no progress reported within "
                    f"{self.settings.sync_stale_after_minutes} minutes"
                )
                row.updated_at = now
                s.add(row)
                logger.warning("Marked stale sync %s for user %s as failed", row.id, user_id)
            elif active is None:
                active = row
        return active

    def _last_with_status(self, user_id: int, state: SyncState) -> Optional[SyncStatus]:
        with Session(self.engine) as s:
            return s.exec(
                select(SyncStatus)
                .where(SyncStatus.user_id == user_id, SyncStatus.status == state.value)
                .order_by(SyncStatus.updated_at.desc(), SyncStatus.id.desc())
            ).first()

    def _upsert_batch(self, user_id: int, batch: List[Dict[str, Any]]) -> None:
        """Insert or update one batch of repositories in a single transaction."""
        with Session(self.engine) as s:
            ids = [fields["github_id"] for fields in batch]
            existing = {
                repo.github_id: repo
                for repo in s.exec(
                    select(Repository).where(
                        Repository.user_id == user_id,
                        Repository.github_id.in_(ids),
                    )
                ).all()
            }
            now = utcnow()
            for fields in batch:
                repo = existing.get(fields["github_id"])
                if repo:
                    # Remote fields only; tags and version choice stay the user's
                    for k, v in fields.items():
                        setattr(repo, k, v)
                else:
                    repo = Repository(user_id=user_id, **fields)
                    existing[repo.github_id] = repo
                repo.is_followed = True
                repo.updated_at = now
                s.add(repo)
            s.commit()

    def _remove_unstarred(self, user_id: int, keep_ids: Set[str]) -> int:
        """Delete the user's repositories absent from the latest fetch."""
        removed = 0
        with Session(self.engine) as s:
            for repo in s.exec(select(Repository).where(Repository.user_id == user_id)).all():
                if repo.github_id not in keep_ids:
                    s.delete(repo)  # releases cascade
                    removed += 1
            s.commit()
        return removed

    def _set_progress(self, status_id: int, user_id: int, progress: float) -> None:
        with Session(self.engine) as s:
            row = self._get_own_status(s, status_id, user_id)
            if row is None or row.status in TERMINAL_STATES:
                return
            row.progress = max(row.progress, progress)
            row.updated_at = utcnow()
            s.add(row)
            s.commit()

    def _finish(
        self,
        status_id: int,
        user_id: int,
        state: SyncState,
        *,
        progress: Optional[float] = None,
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
    ) -> None:
        with Session(self.engine) as s:
            row = self._get_own_status(s, status_id, user_id)
            if row is None or row.status in TERMINAL_STATES:
                logger.warning(
                    "Sync status %s already finished; not marking %s",
                    status_id,
                    state.value,
                )
                return
            row.status = state.value
            if progress is not None:
                row.progress = progress
            row.error = error
            row.error_kind = error_kind
            row.updated_at = utcnow()
            s.add(row)
            s.commit()

    @staticmethod
    def _get_own_status(s: Session, status_id: int, user_id: int) -> Optional[SyncStatus]:
        return s.exec(
            select(SyncStatus).where(
                SyncStatus.id == status_id,
                SyncStatus.user_id == user_id,
            )
        ).first()
