"""Request-scoped dependencies shared by the routes."""
from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from starshelf.db.engine import get_session
from starshelf.models.user import User
from starshelf.services.release_service import ReleaseService
from starshelf.services.sync_service import StarSyncService


def get_current_user(request: Request, session: Session = Depends(get_session)) -> User:
    """Resolve the signed-in user.

    Session auth runs in front of this app; single-user deployments pin the
    user with USER_ID in the app's settings. Tests override this dependency.
    """
    user_id = request.app.state.settings.user_id
    user = session.get(User, user_id) if user_id is not None else None
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def get_sync_service(request: Request) -> StarSyncService:
    return request.app.state.sync_service


def get_release_service(request: Request) -> ReleaseService:
    return request.app.state.release_service
