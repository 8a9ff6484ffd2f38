"""Repository listing routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from starshelf.api.deps import get_current_user
from starshelf.db.engine import get_session
from starshelf.models.repository import Repository
from starshelf.models.user import User

router = APIRouter()


@router.get("", response_model=List[Repository])
def list_repositories(
    tag: Optional[str] = None,
    followed: Optional[bool] = None,
    limit: int = 100,
    offset: int = 0,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """List the user's starred repositories, most recently starred first."""
    query = select(Repository).where(Repository.user_id == user.id)
    if followed is not None:
        query = query.where(Repository.is_followed == followed)
    repos = session.exec(
        query.order_by(Repository.starred_at.desc(), Repository.id.desc())
    ).all()
    if tag:
        # custom_tags is a JSON list; filtered here to stay database-agnostic
        repos = [r for r in repos if tag in (r.custom_tags or [])]
    return repos[offset:offset + limit]
