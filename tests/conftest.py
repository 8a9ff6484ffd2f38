"""Shared test fixtures."""
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from starshelf.config import Settings

# Import all models so SQLModel.metadata knows about them
from starshelf.models.repository import Release, Repository  # noqa: F401
from starshelf.models.sync import SyncStatus  # noqa: F401
from starshelf.models.user import User  # noqa: F401


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    """Settings with every pause set to zero and the scheduler off."""
    return Settings(
        database_url="sqlite:///:memory:",
        github_api_url="https://api.github.test",
        github_retry_delay_seconds=2.0,
        github_page_delay_seconds=0.0,
        bulk_fetch_delay_seconds=0.0,
        scheduler_enabled=False,
        scheduler_startup_delay_seconds=30.0,
    )


@pytest.fixture(name="user")
def user_fixture(test_session: Session) -> User:
    """A persisted user with a token."""
    user = User(github_id="1001", username="octocat", access_token="gho_test")
    test_session.add(user)
    test_session.commit()
    test_session.refresh(user)
    return user


@pytest.fixture(name="other_user")
def other_user_fixture(test_session: Session) -> User:
    user = User(github_id="2002", username="hubot", access_token="gho_other")
    test_session.add(user)
    test_session.commit()
    test_session.refresh(user)
    return user
