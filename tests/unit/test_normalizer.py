"""Tests for GitHub response normalization."""
from datetime import datetime

from starshelf.github.normalizer import (
    normalize_profile,
    normalize_release,
    normalize_starred_repository,
)

REPO = {
    "id": 1296269,
    "name": "Hello-World",
    "full_name": "octocat/Hello-World",
    "owner": {"login": "octocat", "id": 1},
    "description": "This your first repo!",
    "html_url": "https://github.com/octocat/Hello-World",
    "language": "Ruby",
    "topics": ["octocat", "api"],
    "fork": False,
    "forks_count": 9,
    "stargazers_count": 80,
    "watchers_count": 80,
    "default_branch": "master",
    "is_template": False,
    "archived": False,
    "visibility": "public",
    "pushed_at": "2011-01-26T19:06:43Z",
    "created_at": "2011-01-26T19:01:12Z",
    "updated_at": "2011-01-26T19:14:43Z",
}


class TestNormalizeStarredRepository:
    def test_star_wrapper(self):
        result = normalize_starred_repository({"starred_at": "2024-03-20T10:00:00Z", "repo": REPO})
        assert result["github_id"] == "1296269"
        assert result["full_name"] == "octocat/Hello-World"
        assert result["owner"] == "octocat"
        assert result["url"] == "https://github.com/octocat/Hello-World"
        assert result["starred_at"] == datetime(2024, 3, 20, 10, 0)

    def test_bare_repository_has_no_starred_at(self):
        result = normalize_starred_repository(REPO)
        assert result["github_id"] == "1296269"
        assert result["starred_at"] is None

    def test_timestamps_are_naive_utc(self):
        result = normalize_starred_repository(REPO)
        assert result["pushed_at"] == datetime(2011, 1, 26, 19, 6, 43)
        assert result["pushed_at"].tzinfo is None
        assert result["github_created_at"] == datetime(2011, 1, 26, 19, 1, 12)

    def test_offset_timestamp_converted_to_utc(self):
        raw = dict(REPO, pushed_at="2024-03-20T12:00:00+02:00")
        assert normalize_starred_repository(raw)["pushed_at"] == datetime(2024, 3, 20, 10, 0)

    def test_missing_optional_fields(self):
        result = normalize_starred_repository({"id": 5, "name": "x", "full_name": "a/x", "owner": {"login": "a"}})
        assert result["description"] is None
        assert result["topics"] == []
        assert result["stargazers_count"] == 0
        assert result["pushed_at"] is None
        assert result["archived"] is False

    def test_user_owned_fields_not_emitted(self):
        result = normalize_starred_repository(REPO)
        for key in ("custom_tags", "currently_used_version", "version_choice", "is_followed"):
            assert key not in result


class TestNormalizeRelease:
    def test_fields(self):
        result = normalize_release({
            "id": 1,
            "tag_name": "v1.0.0",
            "name": "v1.0.0",
            "body": "Description of the release",
            "published_at": "2013-02-27T19:35:32Z",
            "prerelease": False,
            "draft": False,
        })
        assert result == {
            "github_release_id": "1",
            "tag_name": "v1.0.0",
            "name": "v1.0.0",
            "body": "Description of the release",
            "published_at": datetime(2013, 2, 27, 19, 35, 32),
            "is_prerelease": False,
            "is_draft": False,
        }

    def test_draft_without_publish_date(self):
        result = normalize_release({"id": 2, "tag_name": "v2", "draft": True, "published_at": None})
        assert result["is_draft"] is True
        assert result["published_at"] is None

    def test_unparseable_timestamp_is_none(self):
        result = normalize_release({"id": 3, "tag_name": "v3", "published_at": "yesterday"})
        assert result["published_at"] is None


class TestNormalizeProfile:
    def test_hidden_email(self):
        result = normalize_profile({"id": 42, "login": "hubot", "email": None})
        assert result["github_id"] == "42"
        assert result["username"] == "hubot"
        assert result["email"] is None
