"""Pure version-tracking rules shared by the release service and the API."""
from typing import Any, Dict, Iterable, Optional

from starshelf.models.repository import Repository, VersionChoice


def compute_update_available(current: Optional[str], latest: Optional[str]) -> bool:
    """True iff the user runs a specific version and it is not the latest."""
    return current is not None and current != latest


def pick_latest_stable(releases: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """First release (newest-first input) that is neither prerelease nor draft."""
    for release in releases:
        if not release.get("is_prerelease") and not release.get("is_draft"):
            return release
    return None


def get_effective_version(repo: Repository) -> Optional[str]:
    """Version to display as "in use" for a repository.

    Once releases have been fetched, or the user has made a choice, the
    stored version is returned as-is, including None for "not using".
    Before any of that, the latest known version is the best guess.
    """
    if repo.has_releases or repo.version_choice != VersionChoice.USE_LATEST.value:
        return repo.currently_used_version
    return repo.latest_version
