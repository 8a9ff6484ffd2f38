"""Tests for the pure version-tracking rules."""
import pytest

from starshelf.models.repository import Repository, VersionChoice
from starshelf.services.versions import (
    compute_update_available,
    get_effective_version,
    pick_latest_stable,
)


def make_repo(**fields) -> Repository:
    return Repository(user_id=1, github_id="1", name="tool", full_name="octo/tool", owner="octo", **fields)


class TestComputeUpdateAvailable:
    @pytest.mark.parametrize("current,latest,expected", [
        ("v1", "v2", True),
        ("v2", "v2", False),
        (None, "v2", False),
        (None, None, False),
        ("v1", None, True),
    ])
    def test_rule(self, current, latest, expected):
        assert compute_update_available(current, latest) is expected


class TestPickLatestStable:
    def test_skips_prereleases_and_drafts(self):
        releases = [
            {"tag_name": "v4", "is_draft": True, "is_prerelease": False},
            {"tag_name": "v3-rc", "is_draft": False, "is_prerelease": True},
            {"tag_name": "v2", "is_draft": False, "is_prerelease": False},
            {"tag_name": "v1", "is_draft": False, "is_prerelease": False},
        ]
        assert pick_latest_stable(releases)["tag_name"] == "v2"

    def test_none_when_no_stable(self):
        assert pick_latest_stable([{"tag_name": "v1-beta", "is_prerelease": True}]) is None

    def test_empty(self):
        assert pick_latest_stable([]) is None


class TestGetEffectiveVersion:
    def test_untouched_repo_shows_latest(self):
        repo = make_repo(latest_version="v3")
        assert get_effective_version(repo) == "v3"

    def test_after_fetch_shows_stored(self):
        repo = make_repo(latest_version="v3", currently_used_version="v3",
                         version_choice=VersionChoice.PINNED.value, has_releases=True)
        assert get_effective_version(repo) == "v3"

    def test_pinned_older(self):
        repo = make_repo(latest_version="v3", currently_used_version="v1",
                         version_choice=VersionChoice.PINNED.value, has_releases=True)
        assert get_effective_version(repo) == "v1"

    def test_not_using_is_none_even_without_releases(self):
        repo = make_repo(latest_version="v3", version_choice=VersionChoice.NOT_USING.value)
        assert get_effective_version(repo) is None

    def test_has_releases_without_stable(self):
        repo = make_repo(has_releases=True)
        assert get_effective_version(repo) is None
