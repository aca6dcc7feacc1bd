"""Contract tests for GitLabClient: verify HTTP request shapes.

Uses `respx` to intercept httpx requests at the transport level, so every
method is checked for its HTTP method, URL path, JSON payload and auth
header without talking to a real GitLab instance.
"""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from gitlab_payloads import API
from junie_gitlab.gitlab_client import PER_PAGE, GitLabClient

# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
async def gitlab():
    client = GitLabClient(api_v4_url=API + "/", token="glpat-test-token")
    await client.start()
    yield client
    await client.close()


# ── Lifecycle ────────────────────────────────────────────────────────────────


class TestLifecycle:
    def test_not_started_raises(self):
        client = GitLabClient(api_v4_url=API, token="t")
        with pytest.raises(RuntimeError):
            _ = client.client

    async def test_context_manager(self):
        async with GitLabClient(api_v4_url=API, token="t") as client:
            assert client.client is not None
        assert client._client is None


# ── Reads ────────────────────────────────────────────────────────────────────


class TestGetProject:
    @respx.mock
    async def test_request_shape(self, gitlab):
        route = respx.get(f"{API}/projects/42").mock(
            return_value=httpx.Response(200, json={"id": 42, "namespace": {"id": 5}})
        )

        result = await gitlab.get_project(42)

        assert result["id"] == 42
        request = route.calls[0].request
        assert request.headers["PRIVATE-TOKEN"] == "glpat-test-token"

    @respx.mock
    async def test_tracks_rate_limit(self, gitlab):
        respx.get(f"{API}/projects/42").mock(
            return_value=httpx.Response(
                200, json={"id": 42}, headers={"RateLimit-Remaining": "50", "RateLimit-Reset": "0"}
            )
        )

        await gitlab.get_project(42)

        assert gitlab._rate_limit_remaining == 50

    @respx.mock
    async def test_error_propagates(self, gitlab):
        respx.get(f"{API}/projects/42").mock(return_value=httpx.Response(404))

        with pytest.raises(httpx.HTTPStatusError):
            await gitlab.get_project(42)


class TestPagination:
    @respx.mock
    async def test_follows_pages_until_short_page(self, gitlab):
        token = {"id": 1, "name": "junie", "user_id": 9}
        route = respx.get(f"{API}/projects/42/access_tokens").mock(
            side_effect=[
                httpx.Response(200, json=[token] * PER_PAGE),
                httpx.Response(200, json=[token]),
            ]
        )

        tokens = await gitlab.list_project_access_tokens(42)

        assert len(tokens) == PER_PAGE + 1
        assert route.call_count == 2
        params = route.calls[1].request.url.params
        assert params["page"] == "2"
        assert params["per_page"] == str(PER_PAGE)

    @respx.mock
    async def test_empty_list(self, gitlab):
        respx.get(f"{API}/projects/42/merge_requests/3/commits").mock(
            return_value=httpx.Response(200, json=[])
        )

        assert await gitlab.list_merge_request_commits(42, 3) == []


class TestGroups:
    @respx.mock
    async def test_group_tokens_forbidden_returns_none(self, gitlab):
        respx.get(f"{API}/groups/10/access_tokens").mock(return_value=httpx.Response(403))

        assert await gitlab.list_group_access_tokens(10) is None

    @respx.mock
    async def test_group_forbidden_returns_none(self, gitlab):
        respx.get(f"{API}/groups/10").mock(return_value=httpx.Response(403))

        assert await gitlab.get_group(10) is None

    @respx.mock
    async def test_group_server_error_raises(self, gitlab):
        respx.get(f"{API}/groups/10").mock(return_value=httpx.Response(500))

        with pytest.raises(httpx.HTTPStatusError):
            await gitlab.get_group(10)


class TestPipelines:
    @respx.mock
    async def test_last_failed_skips_running(self, gitlab):
        respx.get(f"{API}/projects/42/merge_requests/12/pipelines").mock(
            return_value=httpx.Response(
                200,
                json=[
                    {"id": 9, "status": "running"},
                    {"id": 7, "status": "failed"},
                    {"id": 3, "status": "failed"},
                ],
            )
        )

        pipeline = await gitlab.get_last_failed_pipeline(42, 12)

        assert pipeline["id"] == 7

    @respx.mock
    async def test_no_failed_pipeline(self, gitlab):
        respx.get(f"{API}/projects/42/merge_requests/12/pipelines").mock(
            return_value=httpx.Response(200, json=[{"id": 9, "status": "success"}])
        )

        assert await gitlab.get_last_failed_pipeline(42, 12) is None


# ── Writes ───────────────────────────────────────────────────────────────────


class TestNotes:
    @respx.mock
    async def test_create_issue_note(self, gitlab):
        route = respx.post(f"{API}/projects/42/issues/7/notes").mock(
            return_value=httpx.Response(201, json={"id": 500})
        )

        result = await gitlab.create_issue_note(42, 7, "Hello")

        assert result["id"] == 500
        assert json.loads(route.calls[0].request.content) == {"body": "Hello"}

    @respx.mock
    async def test_award_emoji(self, gitlab):
        route = respx.post(f"{API}/projects/42/issues/7/notes/301/award_emoji").mock(
            return_value=httpx.Response(201, json={"id": 1, "name": "thumbsup"})
        )

        await gitlab.award_issue_note_emoji(42, 7, 301, "thumbsup")

        assert json.loads(route.calls[0].request.content) == {"name": "thumbsup"}

    @respx.mock
    async def test_create_merge_request_note(self, gitlab):
        route = respx.post(f"{API}/projects/42/merge_requests/12/notes").mock(
            return_value=httpx.Response(201, json={"id": 501})
        )

        await gitlab.create_merge_request_note(42, 12, "Done")

        assert json.loads(route.calls[0].request.content) == {"body": "Done"}

    @respx.mock
    async def test_discussion_reply(self, gitlab):
        route = respx.post(
            f"{API}/projects/42/merge_requests/12/discussions/6a9c1750b37d51/notes"
        ).mock(return_value=httpx.Response(201, json={"id": 502}))

        await gitlab.add_merge_request_discussion_note(42, 12, "6a9c1750b37d51", "On it")

        assert route.called
        assert json.loads(route.calls[0].request.content) == {"body": "On it"}


# ── Uploads ──────────────────────────────────────────────────────────────────


class TestDownloadUpload:
    @respx.mock
    async def test_downloads_from_web_host(self, gitlab):
        route = respx.get(
            "https://gitlab.example.com/-/project/42/uploads/abc123/screen.png"
        ).mock(return_value=httpx.Response(200, content=b"\x89PNG"))

        content = await gitlab.download_upload(
            "https://gitlab.example.com", 42, "/uploads/abc123/screen.png"
        )

        assert content == b"\x89PNG"
        assert route.calls[0].request.headers["PRIVATE-TOKEN"] == "glpat-test-token"
