"""Release history and version tracking routes."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from starshelf.api.deps import get_current_user, get_release_service
from starshelf.errors import RepositoryNotFoundError, UserNotFoundError, VersionNotFoundError
from starshelf.github.errors import GitHubAPIError
from starshelf.models.repository import Release, Repository
from starshelf.models.user import User
from starshelf.services.release_service import BulkFetchResult, ReleaseService
from starshelf.services.versions import get_effective_version

router = APIRouter()


class ReleaseOut(BaseModel):
    id: int
    tag_name: str
    name: Optional[str]
    body: Optional[str]
    published_at: Optional[datetime]
    is_prerelease: bool
    is_draft: bool


class RepoVersionOut(BaseModel):
    id: int
    latest_version: Optional[str]
    currently_used_version: Optional[str]
    version_choice: str
    update_available: bool
    has_releases: bool
    releases_last_fetched: Optional[datetime]
    effective_version: Optional[str]


class ReleasesResponse(BaseModel):
    releases: List[ReleaseOut]
    repo: RepoVersionOut


class NewerVersionsResponse(BaseModel):
    releases: List[ReleaseOut]
    current_version: Optional[str]


class VersionUpdateRequest(BaseModel):
    currently_used_version: Optional[str] = None


class BulkFetchRequest(BaseModel):
    limit: int = 20
    repo_ids: Optional[List[int]] = None
    force: bool = False


def _release_out(release: Release) -> ReleaseOut:
    return ReleaseOut(
        id=release.id,
        tag_name=release.tag_name,
        name=release.name,
        body=release.body,
        published_at=release.published_at,
        is_prerelease=release.is_prerelease,
        is_draft=release.is_draft,
    )


def _repo_out(repo: Repository) -> RepoVersionOut:
    return RepoVersionOut(
        id=repo.id,
        latest_version=repo.latest_version,
        currently_used_version=repo.currently_used_version,
        version_choice=repo.version_choice,
        update_available=repo.update_available,
        has_releases=repo.has_releases,
        releases_last_fetched=repo.releases_last_fetched,
        effective_version=get_effective_version(repo),
    )


@router.get("/repo/{repo_id}", response_model=ReleasesResponse)
async def repository_releases(
    repo_id: int,
    refresh: bool = False,
    user: User = Depends(get_current_user),
    service: ReleaseService = Depends(get_release_service),
):
    """Cached releases for a repository; refreshed when stale or ?refresh=true."""
    try:
        releases = await service.get_repository_releases(repo_id, user, force_refresh=refresh)
        repo = service.get_repository(repo_id, user.id)
    except RepositoryNotFoundError:
        raise HTTPException(status_code=404, detail="Repository not found")
    except GitHubAPIError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return ReleasesResponse(
        releases=[_release_out(r) for r in releases],
        repo=_repo_out(repo),
    )


@router.get("/repo/{repo_id}/newer-versions", response_model=NewerVersionsResponse)
async def newer_versions(
    repo_id: int,
    user: User = Depends(get_current_user),
    service: ReleaseService = Depends(get_release_service),
):
    """Release notes for versions published after the one in use."""
    try:
        releases = await service.get_newer_releases(repo_id, user.id)
        repo = service.get_repository(repo_id, user.id)
    except RepositoryNotFoundError:
        raise HTTPException(status_code=404, detail="Repository not found")
    return NewerVersionsResponse(
        releases=[_release_out(r) for r in releases],
        current_version=repo.currently_used_version,
    )


@router.patch("/repo/{repo_id}/version", response_model=RepoVersionOut)
async def update_version(
    repo_id: int,
    request: VersionUpdateRequest,
    user: User = Depends(get_current_user),
    service: ReleaseService = Depends(get_release_service),
):
    """Set the version in use. null/empty means not using any version."""
    try:
        repo = await service.update_currently_used_version(
            repo_id, user.id, request.currently_used_version
        )
    except RepositoryNotFoundError:
        raise HTTPException(status_code=404, detail="Repository not found")
    except VersionNotFoundError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _repo_out(repo)


@router.post("/bulk-fetch")
async def bulk_fetch(
    request: BulkFetchRequest,
    user: User = Depends(get_current_user),
    service: ReleaseService = Depends(get_release_service),
):
    """Refresh releases for the user's least recently fetched repositories."""
    try:
        result: BulkFetchResult = await service.bulk_fetch_releases(
            user.id, request.limit, request.repo_ids, force=request.force
        )
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {
        "processed": result.processed,
        "successful": result.successful,
        "failed": result.failed,
        "skipped_rate_limit": result.skipped_rate_limit,
        "errors": [
            {"repo_id": e.repo_id, "repo_name": e.repo_name, "error": e.error}
            for e in result.errors
        ],
    }
