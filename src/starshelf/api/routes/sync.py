"""Sync trigger and status routes."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from starshelf.api.deps import get_current_user, get_sync_service
from starshelf.errors import UserNotFoundError
from starshelf.github.errors import GitHubAPIError
from starshelf.models.sync import SyncStatus
from starshelf.models.user import User
from starshelf.services.sync_service import StarSyncService

router = APIRouter()


class SyncStatusResponse(BaseModel):
    id: Optional[int]
    status: str
    progress: float
    error: Optional[str]
    started_at: Optional[datetime]
    updated_at: Optional[datetime]
    last_completed_at: Optional[datetime] = None


def _to_response(status: SyncStatus) -> SyncStatusResponse:
    return SyncStatusResponse(
        id=status.id,
        status=status.status,
        progress=status.progress,
        error=status.error,
        started_at=status.created_at,
        updated_at=status.updated_at,
    )


@router.post("")
async def trigger_sync(
    user: User = Depends(get_current_user),
    service: StarSyncService = Depends(get_sync_service),
):
    """
    Start a star sync. Returns immediately; the sync runs in background.

    202 when a new sync started, 200 with the running one otherwise.
    """
    try:
        result = await service.sync_user_stars(user.id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return JSONResponse(
        status_code=202 if result.started else 200,
        content={
            "started": result.started,
            "status": _to_response(result.sync_status).model_dump(mode="json"),
        },
    )


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(
    user: User = Depends(get_current_user),
    service: StarSyncService = Depends(get_sync_service),
):
    """Return the most recent sync attempt plus when the last one succeeded."""
    # Lazily fails a stale in_progress row before reporting
    service.get_active_sync(user.id)
    latest = service.get_latest_status(user.id)
    last_completed = service.get_last_completed(user.id)
    if not latest:
        return SyncStatusResponse(
            id=None,
            status="never_run",
            progress=0.0,
            error=None,
            started_at=None,
            updated_at=None,
        )
    response = _to_response(latest)
    response.last_completed_at = last_completed.updated_at if last_completed else None
    return response


class ReconcileResponse(BaseModel):
    followed: int
    unfollowed: int


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_followed(
    user: User = Depends(get_current_user),
    service: StarSyncService = Depends(get_sync_service),
):
    """Mark repositories the user no longer stars as unfollowed, without deleting them."""
    try:
        result = await service.reconcile_followed(user.id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except GitHubAPIError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return ReconcileResponse(followed=result.followed, unfollowed=result.unfollowed)
