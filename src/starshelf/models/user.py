"""GitHub-authenticated user."""
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

from starshelf.timeutil import utcnow

if TYPE_CHECKING:
    from starshelf.models.repository import Repository
    from starshelf.models.sync import SyncStatus


class User(SQLModel, table=True):
    """One row per GitHub account that has logged in."""

    id: Optional[int] = Field(default=None, primary_key=True)
    github_id: str = Field(unique=True, index=True)
    username: str
    email: Optional[str] = None
    avatar_url: Optional[str] = None

    # Revocable OAuth token. NULL means the user cannot be synced.
    access_token: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    repositories: List["Repository"] = Relationship(
        back_populates="user",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )
    sync_statuses: List["SyncStatus"] = Relationship(
        back_populates="user",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )
