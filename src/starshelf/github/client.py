"""
Async client for the GitHub REST API.

All calls go through _request(), which applies the same policy to every
endpoint:

  - pacing: if the last response said fewer than `github_rate_limit_buffer`
    requests remain, sleep until the reported reset (capped) before sending;
  - retry: transient failures (5xx, gateway timeouts, network errors) are
    retried with exponential backoff; everything else raises immediately;
  - classification: failures surface as GitHubAPIError with an ErrorKind.

One instance tracks quota for one token. Do not share an instance between
unrelated call graphs; its rate-limit bookkeeping would be meaningless.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from starshelf.config import Settings, get_settings
from starshelf.github.errors import (
    ErrorKind,
    GitHubAPIError,
    classify_response,
    classify_transport_error,
)
from starshelf.github.normalizer import (
    normalize_profile,
    normalize_release,
    normalize_starred_repository,
)

logger = logging.getLogger(__name__)

STARRED_PAGE_SIZE = 100
STAR_MEDIA_TYPE = "application/vnd.github.star+json"


class GitHubClient:
    """
    Thin async wrapper over the GitHub REST endpoints starshelf needs.

    Call aclose() when done; the underlying httpx.AsyncClient holds a
    connection pool.
    """

    def __init__(
        self,
        access_token: str,
        *,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            access_token: OAuth token of the user whose data is fetched.
            settings: Overrides get_settings() (tests pass zero delays).
            transport: Optional httpx transport (httpx.MockTransport in tests).
        """
        self._settings = settings or get_settings()
        self._http = httpx.AsyncClient(
            base_url=self._settings.github_api_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "starshelf",
            },
            timeout=self._settings.github_timeout_seconds,
            transport=transport,
        )
        self.rate_limit_remaining: Optional[int] = None
        self.rate_limit_reset: Optional[float] = None  # epoch seconds

    async def aclose(self) -> None:
        await self._http.aclose()

    # ─── Rate limit bookkeeping ──────────────────────────────────────────────

    def _record_rate_limit(self, response: httpx.Response) -> None:
        remaining = response.headers.get("x-ratelimit-remaining")
        reset = response.headers.get("x-ratelimit-reset")
        if remaining is not None and remaining.isdigit():
            self.rate_limit_remaining = int(remaining)
        if reset is not None and reset.isdigit():
            self.rate_limit_reset = float(reset)

    async def _wait_for_rate_limit(self) -> None:
        """Sleep until the quota resets when it is nearly spent."""
        if self.rate_limit_remaining is None:
            return
        if self.rate_limit_remaining >= self._settings.github_rate_limit_buffer:
            return
        now = time.time()
        if not self.rate_limit_reset or self.rate_limit_reset <= now:
            return
        wait = min(
            self.rate_limit_reset - now + 1,
            self._settings.github_rate_limit_max_wait_seconds,
        )
        logger.info(
            "Rate limit low (%d remaining), waiting %.0fs",
            self.rate_limit_remaining,
            wait,
        )
        await asyncio.sleep(wait)

    # ─── Request core ────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        context: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        attempts = max(1, self._settings.github_retry_attempts)
        last_error: Optional[GitHubAPIError] = None

        for attempt in range(1, attempts + 1):
            await self._wait_for_rate_limit()
            try:
                response = await self._http.request(
                    method, path, params=params, headers=headers
                )
            except httpx.TransportError as exc:
                error = classify_transport_error(exc, context)
            else:
                self._record_rate_limit(response)
                if response.is_success:
                    return response
                error = classify_response(response, context)

            last_error = error
            if not error.retryable:
                raise error
            if attempt < attempts:
                delay = self._settings.github_retry_delay_seconds * 2 ** (attempt - 1)
                logger.info(
                    "%s failed (attempt %d/%d, status=%s), retrying in %.1fs",
                    context,
                    attempt,
                    attempts,
                    error.status_code,
                    delay,
                )
                await asyncio.sleep(delay)

        logger.error("%s failed after %d attempts", context, attempts)
        raise last_error

    # ─── Endpoints ───────────────────────────────────────────────────────────

    async def fetch_all_starred_repositories(self) -> List[Dict[str, Any]]:
        """Fetch every starred repository, oldest page first.

        Follows pagination until a page shorter than 100 items comes back.
        Sleeps between full pages to stay under GitHub's secondary limits.
        """
        stars: List[Dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                "/user/starred",
                params={"per_page": STARRED_PAGE_SIZE, "page": page},
                headers={"Accept": STAR_MEDIA_TYPE},
                context=f"fetch starred repos page {page}",
            )
            items = response.json()
            stars.extend(normalize_starred_repository(item) for item in items)

            if len(items) < STARRED_PAGE_SIZE:
                break
            page += 1
            await asyncio.sleep(self._settings.github_page_delay_seconds)

        return stars

    async def fetch_user_profile(self) -> Dict[str, Any]:
        """Fetch the authenticated user's profile."""
        response = await self._request("GET", "/user", context="fetch user profile")
        return normalize_profile(response.json())

    async def fetch_releases(
        self, owner: str, name: str, page_size: int = 30
    ) -> List[Dict[str, Any]]:
        """Fetch the newest `page_size` releases of a repository.

        Returns an empty list when GitHub answers 404 (no releases, or
        releases disabled).
        """
        try:
            response = await self._request(
                "GET",
                f"/repos/{owner}/{name}/releases",
                params={"per_page": page_size, "page": 1},
                context=f"fetch releases for {owner}/{name}",
            )
        except GitHubAPIError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return []
            raise
        return [normalize_release(item) for item in response.json()]

    async def fetch_latest_release(
        self, owner: str, name: str
    ) -> Optional[Dict[str, Any]]:
        """Fetch the newest stable release, or None if the repo has none."""
        try:
            response = await self._request(
                "GET",
                f"/repos/{owner}/{name}/releases/latest",
                context=f"fetch latest release for {owner}/{name}",
            )
        except GitHubAPIError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return None
            raise
        return normalize_release(response.json())
