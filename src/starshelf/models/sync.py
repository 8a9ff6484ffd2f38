"""Star-sync status model."""
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlmodel import Field, Relationship, SQLModel

from starshelf.timeutil import utcnow

if TYPE_CHECKING:
    from starshelf.models.user import User


class SyncState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = (SyncState.COMPLETED.value, SyncState.FAILED.value)


class SyncStatus(SQLModel, table=True):
    """Records each star-sync attempt. Terminal rows are never modified."""

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    status: str = Field(default=SyncState.PENDING.value, index=True)
    progress: float = 0.0  # 0-100, non-decreasing within one attempt
    error: Optional[str] = None
    error_kind: Optional[str] = None  # ErrorKind value when GitHub caused the failure
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    user: Optional["User"] = Relationship(back_populates="sync_statuses")
