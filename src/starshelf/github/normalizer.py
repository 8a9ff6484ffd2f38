"""
GitHub API response normalizer.

Converts raw dicts from the REST API into clean field dicts that map
directly onto SQLModel columns. No DB access here; callers (the sync and
release services) handle persistence.

The starred-repositories endpoint answers in two shapes depending on the
Accept header:

  application/vnd.github.star+json:
    - {"starred_at": "...", "repo": {...repository...}}

  application/vnd.github+json (default):
    - the repository object itself, no starred_at

Both are handled by normalize_starred_repository().
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _parse_github_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse GitHub's ISO 8601 timestamps ("2024-03-20T10:00:00Z") to naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def normalize_starred_repository(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize one item of GET /user/starred into Repository field dict.

    Args:
        raw: Either a star wrapper ({"starred_at", "repo"}) or a bare repository.

    Returns:
        Dict keyed by Repository column names (user-owned fields excluded).
    """
    repo = raw.get("repo") if isinstance(raw.get("repo"), dict) else raw
    owner = repo.get("owner") or {}

    return {
        "github_id": str(repo["id"]),
        "name": repo.get("name") or "",
        "full_name": repo.get("full_name") or "",
        "owner": owner.get("login") or "",
        "description": repo.get("description"),
        "url": repo.get("html_url"),
        "language": repo.get("language"),
        "topics": list(repo.get("topics") or []),
        "fork": bool(repo.get("fork")),
        "forks_count": repo.get("forks_count") or 0,
        "stargazers_count": repo.get("stargazers_count") or 0,
        "watchers_count": repo.get("watchers_count") or 0,
        "default_branch": repo.get("default_branch"),
        "is_template": bool(repo.get("is_template")),
        "archived": bool(repo.get("archived")),
        "visibility": repo.get("visibility"),
        "pushed_at": _parse_github_datetime(repo.get("pushed_at")),
        "github_created_at": _parse_github_datetime(repo.get("created_at")),
        "github_updated_at": _parse_github_datetime(repo.get("updated_at")),
        "starred_at": _parse_github_datetime(raw.get("starred_at")),
    }


def normalize_release(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a release object into Release field dict."""
    return {
        "github_release_id": str(raw["id"]),
        "tag_name": raw.get("tag_name") or "",
        "name": raw.get("name"),
        "body": raw.get("body"),
        "published_at": _parse_github_datetime(raw.get("published_at")),
        "is_prerelease": bool(raw.get("prerelease")),
        "is_draft": bool(raw.get("draft")),
    }


def normalize_profile(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize GET /user. The email is what the OAuth callback usually lacks."""
    return {
        "github_id": str(raw["id"]),
        "username": raw.get("login") or "",
        "name": raw.get("name"),
        "email": raw.get("email"),
        "avatar_url": raw.get("avatar_url"),
    }
