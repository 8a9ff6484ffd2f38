"""
ReleaseService: keeps per-repository release history and version state.

Flow for a single repository (fetch_and_store_releases):
  1. Load the Repository and check it belongs to the user
  2. Fetch the newest releases from GitHub
  3. Upsert Release rows keyed by GitHub release id
  4. Recompute latest_version / currently_used_version / update_available
  5. Stamp releases_last_fetched

On a fetch error the timestamp is still stamped (so callers do not retry
in a tight loop) and the error is re-raised.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional

from sqlalchemy import nulls_first, nulls_last
from sqlmodel import Session, select

from starshelf.config import Settings, get_settings
from starshelf.errors import (
    RepositoryNotFoundError,
    UserNotFoundError,
    VersionNotFoundError,
)
from starshelf.github.client import GitHubClient
from starshelf.github.errors import ErrorKind, GitHubAPIError
from starshelf.models.repository import Release, Repository, VersionChoice
from starshelf.models.user import User
from starshelf.services.versions import (
    compute_update_available,
    get_effective_version,
    pick_latest_stable,
)
from starshelf.timeutil import utcnow

logger = logging.getLogger(__name__)

DEFAULT_MIN_FETCH_AGE = timedelta(hours=24)


@dataclass
class BulkFetchError:
    repo_id: int
    repo_name: str
    error: str


@dataclass
class BulkFetchResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped_rate_limit: int = 0
    errors: List[BulkFetchError] = field(default_factory=list)


class ReleaseService:
    """Fetches releases from GitHub and maintains repository version fields."""

    def __init__(
        self,
        engine,
        *,
        client_factory: Callable[..., GitHubClient] = GitHubClient,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            client_factory: Builds a GitHub client from an access token.
            settings: Overrides get_settings().
        """
        self.engine = engine
        self.client_factory = client_factory
        self.settings = settings or get_settings()

    # ─── Single repository ───────────────────────────────────────────────────

    async def fetch_and_store_releases(
        self,
        repo_id: int,
        user: User,
        client: Optional[GitHubClient] = None,
    ) -> List[Release]:
        """
        Fetch a repository's releases from GitHub and persist them.

        Args:
            repo_id: Internal Repository id.
            user: Owner of the repository; its token is used unless a
                  shared `client` is passed.
            client: Shared GitHubClient (bulk fetch) so rate-limit tracking
                    spans many repositories. Not closed here.

        Returns:
            The stored Release rows, newest first. Empty if the repository
            has no releases.

        Raises:
            RepositoryNotFoundError: repository missing or owned by someone else.
            GitHubAPIError: fetch failed (after stamping releases_last_fetched).
        """
        with Session(self.engine) as s:
            repo = self._get_owned_repository(s, repo_id, user.id)
            owner, name, full_name = repo.owner, repo.name, repo.full_name

        own_client = client is None
        if own_client:
            client = self.client_factory(user.access_token, settings=self.settings)

        try:
            fetched = await client.fetch_releases(
                owner, name, self.settings.release_page_size
            )
        except Exception:
            logger.warning("Error fetching releases for %s", full_name)
            self._stamp_fetched(repo_id)
            raise
        finally:
            if own_client:
                await client.aclose()

        with Session(self.engine) as s:
            repo = s.get(Repository, repo_id)
            if repo is None:
                # Removed by a concurrent sync cleanup while we were fetching
                raise RepositoryNotFoundError("Repository not found or access denied")
            now = utcnow()

            if not fetched:
                repo.has_releases = False
                repo.releases_last_fetched = now
                repo.updated_at = now
                s.add(repo)
                s.commit()
                return []

            stored = self._upsert_releases(s, repo, fetched)
            self._apply_latest(repo, fetched)
            repo.has_releases = True
            repo.releases_last_fetched = now
            repo.updated_at = now
            s.add(repo)
            s.commit()
            for release in stored:
                s.refresh(release)
            return stored

    async def get_repository_releases(
        self, repo_id: int, user: User, force_refresh: bool = False
    ) -> List[Release]:
        """Return stored releases, refreshing from GitHub when stale or forced."""
        with Session(self.engine) as s:
            repo = self._get_owned_repository(s, repo_id, user.id)
            last_fetched = repo.releases_last_fetched

        max_age = timedelta(hours=self.settings.release_cache_hours)
        should_refresh = (
            force_refresh
            or last_fetched is None
            or utcnow() - last_fetched > max_age
        )
        if should_refresh:
            await self.fetch_and_store_releases(repo_id, user)

        with Session(self.engine) as s:
            return list(s.exec(
                select(Release)
                .where(Release.repository_id == repo_id)
                .order_by(nulls_last(Release.published_at.desc()), Release.id.desc())
            ).all())

    async def get_newer_releases(self, repo_id: int, user_id: int) -> List[Release]:
        """Releases published after the version the user currently runs.

        Returns every release when the current tag is not among the stored
        ones, and nothing when the user tracks no version.
        """
        with Session(self.engine) as s:
            repo = self._get_owned_repository(s, repo_id, user_id)
            if not repo.has_releases or not repo.currently_used_version:
                return []
            releases = list(s.exec(
                select(Release)
                .where(Release.repository_id == repo_id)
                .order_by(nulls_first(Release.published_at.asc()), Release.id.asc())
            ).all())

        tags = [r.tag_name for r in releases]
        if repo.currently_used_version not in tags:
            return releases
        return releases[tags.index(repo.currently_used_version) + 1:]

    async def update_currently_used_version(
        self, repo_id: int, user_id: int, version: Optional[str]
    ) -> Repository:
        """
        Set the version the user runs. Empty/None means "not using any".

        Raises:
            RepositoryNotFoundError: repository missing or owned by someone else.
            VersionNotFoundError: `version` is not a stored release tag.
        """
        with Session(self.engine) as s:
            repo = self._get_owned_repository(s, repo_id, user_id)
            never_fetched = not repo.has_releases and repo.releases_last_fetched is None
            user = s.get(User, user_id)

        if never_fetched and user is not None:
            try:
                await self.fetch_and_store_releases(repo_id, user)
            except Exception as exc:
                # Best effort: the update below still runs
                logger.warning("Failed to fetch releases for repo %s: %s", repo_id, exc)

        version = version or None
        with Session(self.engine) as s:
            repo = s.get(Repository, repo_id)
            if version is not None:
                match = s.exec(
                    select(Release).where(
                        Release.repository_id == repo_id,
                        Release.tag_name == version,
                    )
                ).first()
                if match is None:
                    raise VersionNotFoundError(f"Selected version not found: {version}")
                repo.version_choice = VersionChoice.PINNED.value
            else:
                repo.version_choice = VersionChoice.NOT_USING.value

            repo.currently_used_version = version
            repo.update_available = compute_update_available(version, repo.latest_version)
            repo.updated_at = utcnow()
            s.add(repo)
            s.commit()
            s.refresh(repo)
            return repo

    def get_repository(self, repo_id: int, user_id: int) -> Repository:
        """Load a repository the user owns (RepositoryNotFoundError otherwise)."""
        with Session(self.engine) as s:
            return self._get_owned_repository(s, repo_id, user_id)

    @staticmethod
    def get_effective_version(repo: Repository) -> Optional[str]:
        return get_effective_version(repo)

    # ─── Bulk ────────────────────────────────────────────────────────────────

    async def bulk_fetch_releases(
        self,
        user_id: int,
        limit: int = 20,
        repo_ids: Optional[List[int]] = None,
        *,
        min_fetch_age: timedelta = DEFAULT_MIN_FETCH_AGE,
        force: bool = False,
    ) -> BulkFetchResult:
        """
        Refresh releases for up to min(limit, bulk_fetch_max) repositories.

        Repositories are processed one at a time with a single GitHub client
        so its rate-limit view covers the whole batch. Stops early, counting
        the rest as skipped, when quota runs low or GitHub reports a rate
        limit. Individual failures are collected, never raised.

        Raises:
            UserNotFoundError: `user_id` does not resolve.
        """
        with Session(self.engine) as s:
            user = s.get(User, user_id)
            if user is None:
                raise UserNotFoundError(f"User {user_id} not found")

            query = select(Repository).where(Repository.user_id == user_id)
            if repo_ids:
                query = query.where(Repository.id.in_(repo_ids))
            if not force:
                cutoff = utcnow() - min_fetch_age
                query = query.where(
                    (Repository.releases_last_fetched.is_(None))
                    | (Repository.releases_last_fetched < cutoff)
                )
            query = query.order_by(
                nulls_first(Repository.releases_last_fetched.asc()), Repository.id
            ).limit(max(0, min(limit, self.settings.bulk_fetch_max)))
            targets = [(r.id, r.full_name) for r in s.exec(query).all()]

        result = BulkFetchResult()
        if not targets:
            return result

        client = self.client_factory(user.access_token, settings=self.settings)
        try:
            for index, (repo_id, full_name) in enumerate(targets):
                remaining = client.rate_limit_remaining
                if remaining is not None and remaining < self.settings.bulk_fetch_rate_limit_margin:
                    result.skipped_rate_limit = len(targets) - index
                    logger.info(
                        "Stopping bulk release fetch for user %s: %d requests left, %d repos skipped",
                        user_id,
                        remaining,
                        result.skipped_rate_limit,
                    )
                    break

                if index > 0:
                    await asyncio.sleep(self.settings.bulk_fetch_delay_seconds)

                try:
                    await self.fetch_and_store_releases(repo_id, user, client=client)
                    result.successful += 1
                except Exception as exc:
                    result.failed += 1
                    result.errors.append(
                        BulkFetchError(repo_id=repo_id, repo_name=full_name, error=str(exc))
                    )
                    if isinstance(exc, GitHubAPIError) and exc.kind is ErrorKind.RATE_LIMITED:
                        result.processed += 1
                        result.skipped_rate_limit = len(targets) - index - 1
                        logger.warning(
                            "GitHub rate limit hit during bulk fetch for user %s; %d repos skipped",
                            user_id,
                            result.skipped_rate_limit,
                        )
                        break
                result.processed += 1
        finally:
            await client.aclose()

        return result

    # ─── Internal helpers ────────────────────────────────────────────────────

    @staticmethod
    def _get_owned_repository(s: Session, repo_id: int, user_id: int) -> Repository:
        repo = s.get(Repository, repo_id)
        if repo is None or repo.user_id != user_id:
            raise RepositoryNotFoundError("Repository not found or access denied")
        return repo

    def _stamp_fetched(self, repo_id: int) -> None:
        with Session(self.engine) as s:
            repo = s.get(Repository, repo_id)
            if repo is None:
                return
            repo.releases_last_fetched = utcnow()
            s.add(repo)
            s.commit()

    @staticmethod
    def _upsert_releases(s: Session, repo: Repository, fetched: List[dict]) -> List[Release]:
        existing = {
            r.github_release_id: r
            for r in s.exec(select(Release).where(Release.repository_id == repo.id)).all()
        }
        stored = []
        now = utcnow()
        for fields in fetched:
            release = existing.get(fields["github_release_id"])
            if release:
                # Update in place: tag renames and edited notes keep the same row
                for k, v in fields.items():
                    setattr(release, k, v)
                release.updated_at = now
            else:
                release = Release(repository_id=repo.id, **fields)
            s.add(release)
            stored.append(release)
        return stored

    @staticmethod
    def _apply_latest(repo: Repository, fetched: List[dict]) -> None:
        """Recompute version fields from a newest-first release list."""
        latest = pick_latest_stable(fetched)
        if latest is None:
            repo.latest_version = None
        else:
            repo.latest_version = latest["tag_name"]
            if repo.version_choice == VersionChoice.USE_LATEST.value:
                # First stable release seen: default to it, once
                repo.currently_used_version = latest["tag_name"]
                repo.version_choice = VersionChoice.PINNED.value
        repo.update_available = compute_update_available(
            repo.currently_used_version, repo.latest_version
        )
