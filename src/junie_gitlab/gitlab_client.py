"""GitLab REST v4 client for junie-gitlab.

Handles token authentication, pagination, rate limit tracking, and the
handful of async read/write operations the pipeline needs via httpx.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

PER_PAGE = 100


def is_forbidden(error: httpx.HTTPStatusError) -> bool:
    return error.response.status_code == 403


class GitLabClient:
    """Async GitLab API client authenticated with a project/personal token."""

    def __init__(self, *, api_v4_url: str, token: str):
        self.api_v4_url = api_v4_url.rstrip("/")
        self.token = token

        # Rate limit tracking
        self._rate_limit_remaining: int = 2000
        self._rate_limit_reset: float = 0
        self._rate_limit_reserve: int = 20
        self._rate_limit_lock: asyncio.Lock | None = None

        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self.api_v4_url,
            headers={
                "Accept": "application/json",
                "User-Agent": "junie-gitlab/0.1.0",
                "PRIVATE-TOKEN": self.token,
            },
            timeout=30.0,
        )
        self._rate_limit_lock = asyncio.Lock()
        logger.info("GitLab client started (%s)", self.api_v4_url)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> GitLabClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("GitLab client not started")
        return self._client

    # ── Rate Limit Tracking ──────────────────────────────────────────────

    def _update_rate_limit(self, response: httpx.Response) -> None:
        """Track rate limits from response headers."""
        remaining = response.headers.get("RateLimit-Remaining")
        reset = response.headers.get("RateLimit-Reset")
        if remaining:
            self._rate_limit_remaining = int(remaining)
        if reset:
            self._rate_limit_reset = float(reset)

        if self._rate_limit_remaining < 100:
            logger.warning(
                "GitLab API rate limit low: %d remaining (resets at %s)",
                self._rate_limit_remaining,
                datetime.fromtimestamp(self._rate_limit_reset, tz=timezone.utc).isoformat(),
            )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Make an API request with rate limit throttling.

        When remaining quota drops below the reserve threshold, requests
        are serialized through a lock; an exhausted quota sleeps until reset.
        """
        if self._rate_limit_lock and self._rate_limit_remaining <= self._rate_limit_reserve:
            async with self._rate_limit_lock:
                await self._wait_for_rate_limit_reset()
                return await self._do_request(method, path, **kwargs)
        return await self._do_request(method, path, **kwargs)

    async def _do_request(self, method: str, path: str, **kwargs) -> httpx.Response:
        resp = await self.client.request(method, path, **kwargs)
        self._update_rate_limit(resp)
        resp.raise_for_status()
        return resp

    async def _wait_for_rate_limit_reset(self) -> None:
        if self._rate_limit_remaining > 0:
            return
        wait = max(0, self._rate_limit_reset - time.time()) + 1
        logger.warning("Rate limit exhausted, sleeping %.1fs until reset", wait)
        await asyncio.sleep(wait)
        self._rate_limit_remaining = 100  # optimistic reset

    async def _get(self, path: str, **params) -> dict:
        resp = await self._request("GET", path, params=params or None)
        return resp.json()

    async def _get_all(self, path: str, resource: str, **params) -> list[dict]:
        """Collect every page of a list endpoint (stops on a short page)."""
        items: list[dict] = []
        page = 1
        while True:
            resp = await self._request(
                "GET", path, params={**params, "page": page, "per_page": PER_PAGE}
            )
            batch = resp.json()
            if not batch:
                break
            items.extend(batch)
            if len(batch) < PER_PAGE:
                break
            page += 1
        logger.debug("Retrieved %d %s", len(items), resource)
        return items

    # ── Projects, Groups, Users ──────────────────────────────────────────

    async def get_project(self, project_id: int) -> dict:
        logger.debug("Fetching project %s", project_id)
        return await self._get(f"/projects/{project_id}")

    async def get_group(self, group_id: int) -> dict | None:
        """Fetch a group, or ``None`` when the token may not see it (403)."""
        logger.debug("Fetching group %s", group_id)
        try:
            return await self._get(f"/groups/{group_id}")
        except httpx.HTTPStatusError as e:
            if is_forbidden(e):
                return None
            raise

    async def get_user(self, user_id: int) -> dict:
        logger.debug("Fetching user %s", user_id)
        return await self._get(f"/users/{user_id}")

    async def list_project_access_tokens(self, project_id: int) -> list[dict]:
        return await self._get_all(
            f"/projects/{project_id}/access_tokens", "project access tokens"
        )

    async def list_group_access_tokens(self, group_id: int) -> list[dict] | None:
        """List group access tokens, or ``None`` when access is denied (403)."""
        try:
            return await self._get_all(f"/groups/{group_id}/access_tokens", "group access tokens")
        except httpx.HTTPStatusError as e:
            if is_forbidden(e):
                return None
            raise

    # ── Issues ───────────────────────────────────────────────────────────

    async def get_issue(self, project_id: int, issue_iid: int) -> dict:
        logger.debug("Fetching issue %s from project %s", issue_iid, project_id)
        return await self._get(f"/projects/{project_id}/issues/{issue_iid}")

    async def list_issue_discussions(self, project_id: int, issue_iid: int) -> list[dict]:
        return await self._get_all(
            f"/projects/{project_id}/issues/{issue_iid}/discussions", "issue discussions"
        )

    async def create_issue_note(self, project_id: int, issue_iid: int, body: str) -> dict:
        logger.debug("Adding note to issue %s in project %s", issue_iid, project_id)
        resp = await self._request(
            "POST",
            f"/projects/{project_id}/issues/{issue_iid}/notes",
            json={"body": body},
        )
        return resp.json()

    async def award_issue_note_emoji(
        self, project_id: int, issue_iid: int, note_id: int, emoji: str
    ) -> dict:
        resp = await self._request(
            "POST",
            f"/projects/{project_id}/issues/{issue_iid}/notes/{note_id}/award_emoji",
            json={"name": emoji},
        )
        return resp.json()

    # ── Merge Requests ───────────────────────────────────────────────────

    async def get_merge_request(self, project_id: int, mr_iid: int) -> dict:
        logger.debug("Fetching merge request %s from project %s", mr_iid, project_id)
        return await self._get(f"/projects/{project_id}/merge_requests/{mr_iid}")

    async def list_merge_request_commits(self, project_id: int, mr_iid: int) -> list[dict]:
        return await self._get_all(
            f"/projects/{project_id}/merge_requests/{mr_iid}/commits", "merge request commits"
        )

    async def list_merge_request_discussions(self, project_id: int, mr_iid: int) -> list[dict]:
        return await self._get_all(
            f"/projects/{project_id}/merge_requests/{mr_iid}/discussions",
            "merge request discussions",
        )

    async def list_merge_request_diffs(self, project_id: int, mr_iid: int) -> list[dict]:
        return await self._get_all(
            f"/projects/{project_id}/merge_requests/{mr_iid}/diffs", "merge request diffs"
        )

    async def list_merge_request_pipelines(self, project_id: int, mr_iid: int) -> list[dict]:
        """Pipelines for a merge request, newest first."""
        return await self._get_all(
            f"/projects/{project_id}/merge_requests/{mr_iid}/pipelines",
            "merge request pipelines",
        )

    async def get_last_failed_pipeline(self, project_id: int, mr_iid: int) -> dict | None:
        """Most recent failed pipeline of a merge request.

        Running and pending pipelines are skipped: one of them is usually the
        pipeline executing this job.
        """
        pipelines = await self.list_merge_request_pipelines(project_id, mr_iid)
        for pipeline in pipelines:
            if pipeline.get("status") == "failed":
                logger.debug("Found failed pipeline %s", pipeline.get("id"))
                return pipeline
        logger.warning("No failed pipelines found for MR !%s", mr_iid)
        return None

    async def create_merge_request_note(self, project_id: int, mr_iid: int, body: str) -> dict:
        logger.debug("Adding note to merge request %s in project %s", mr_iid, project_id)
        resp = await self._request(
            "POST",
            f"/projects/{project_id}/merge_requests/{mr_iid}/notes",
            json={"body": body},
        )
        return resp.json()

    async def add_merge_request_discussion_note(
        self, project_id: int, mr_iid: int, discussion_id: str, body: str
    ) -> dict:
        logger.debug(
            "Adding note to discussion %s in merge request %s of project %s",
            discussion_id,
            mr_iid,
            project_id,
        )
        resp = await self._request(
            "POST",
            f"/projects/{project_id}/merge_requests/{mr_iid}"
            f"/discussions/{quote(discussion_id, safe='')}/notes",
            json={"body": body},
        )
        return resp.json()

    # ── Uploads ──────────────────────────────────────────────────────────

    async def download_upload(self, host: str, project_id: int, upload_path: str) -> bytes:
        """Download a markdown upload (``/uploads/<hash>/<file>``) as raw bytes.

        Uploads are served from the web host, not the API base, so the full
        URL is built from *host*.
        """
        url = f"{host.rstrip('/')}/-/project/{project_id}{upload_path}"
        logger.debug("Downloading %s", url)
        resp = await self.client.get(url)
        resp.raise_for_status()
        return resp.content
