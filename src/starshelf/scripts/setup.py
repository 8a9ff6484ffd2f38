"""
Interactive setup: register a GitHub account with starshelf.

Prompts for a GitHub token (classic PAT or OAuth token with `read:user`),
fetches the profile it belongs to, and creates or updates the matching
User row. This stands in for the OAuth login when running headless.

Usage:
    python -m starshelf setup
    python -m starshelf.scripts.setup   (direct invocation)

Re-run any time the token is revoked or rotated.
"""
import asyncio
import getpass
import sys
from typing import Optional

from sqlmodel import Session, select

from starshelf.github.client import GitHubClient
from starshelf.models.user import User
from starshelf.timeutil import utcnow


async def register_user(engine, access_token: str, client: Optional[GitHubClient] = None) -> User:
    """Create or update the User owning `access_token`.

    Args:
        engine: SQLAlchemy engine.
        access_token: GitHub token to store.
        client: Optional client (tests pass a mock); otherwise one is built.

    Returns:
        The persisted User.
    """
    own_client = client is None
    if own_client:
        client = GitHubClient(access_token)
    try:
        profile = await client.fetch_user_profile()
    finally:
        if own_client:
            await client.aclose()

    with Session(engine) as s:
        user = s.exec(select(User).where(User.github_id == profile["github_id"])).first()
        if user is None:
            user = User(github_id=profile["github_id"], username=profile["username"])
        user.username = profile["username"]
        user.avatar_url = profile["avatar_url"]
        # Keep a known email when the profile hides it
        user.email = profile["email"] or user.email
        user.access_token = access_token
        user.updated_at = utcnow()
        s.add(user)
        s.commit()
        s.refresh(user)
        return user


def run_setup() -> None:
    from starshelf.db.engine import get_engine

    print("\nstarshelf: GitHub setup\n")
    token = getpass.getpass("GitHub token: ").strip()
    if not token:
        print("Error: token cannot be empty.")
        sys.exit(1)

    print("\nFetching GitHub profile...")
    try:
        user = asyncio.run(register_user(get_engine(), token))
    except Exception as exc:
        print(f"\nSetup failed: {exc}")
        print("Check the token and its scopes and try again.")
        sys.exit(1)

    print(f"\nRegistered {user.username} as user {user.id}.")
    print(f"Set USER_ID={user.id} to serve this account from the API.\n")


if __name__ == "__main__":
    run_setup()
