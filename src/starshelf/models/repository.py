"""Starred repositories and their release history."""
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from starshelf.timeutil import utcnow

if TYPE_CHECKING:
    from starshelf.models.user import User


class VersionChoice(str, Enum):
    """What the user has said about the version they run.

    USE_LATEST is the untouched default: the first stable release seen
    becomes the pinned version. NOT_USING is an explicit "none" and is never
    replaced by a fetch.
    """

    USE_LATEST = "use_latest"
    NOT_USING = "not_using"
    PINNED = "pinned"


class Repository(SQLModel, table=True):
    """One row per (user, starred GitHub repository)."""

    __table_args__ = (UniqueConstraint("user_id", "github_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    # Stable numeric GitHub id as a string; owner/name can be renamed.
    github_id: str = Field(index=True)
    name: str
    full_name: str
    owner: str
    description: Optional[str] = None
    url: Optional[str] = None
    language: Optional[str] = None
    topics: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    custom_tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    fork: bool = False
    forks_count: int = 0
    stargazers_count: int = 0
    watchers_count: int = 0
    default_branch: Optional[str] = None
    is_template: bool = False
    archived: bool = False
    visibility: Optional[str] = None
    pushed_at: Optional[datetime] = None
    github_created_at: Optional[datetime] = None
    github_updated_at: Optional[datetime] = None
    starred_at: Optional[datetime] = None

    # False once the user unstars it remotely but before the next full sync
    is_followed: bool = True

    # Version tracking
    latest_version: Optional[str] = None  # newest stable tag, system-maintained
    currently_used_version: Optional[str] = None  # user-controlled
    version_choice: str = Field(default=VersionChoice.USE_LATEST.value)
    update_available: bool = False
    has_releases: bool = False
    releases_last_fetched: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    user: Optional["User"] = Relationship(back_populates="repositories")
    releases: List["Release"] = Relationship(
        back_populates="repository",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class Release(SQLModel, table=True):
    """
    One row per GitHub release of a repository.

    Keyed by the release's GitHub id, never by tag: tags can be moved or
    renamed and a retag must update the existing row.
    """

    __table_args__ = (UniqueConstraint("repository_id", "github_release_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    repository_id: int = Field(foreign_key="repository.id", index=True)
    github_release_id: str
    tag_name: str
    name: Optional[str] = None
    body: Optional[str] = None
    published_at: Optional[datetime] = None
    is_prerelease: bool = False
    is_draft: bool = False

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    repository: Optional[Repository] = Relationship(back_populates="releases")
