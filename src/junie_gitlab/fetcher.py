"""Gathers the GitLab context a prompt is built from.

The primary entity (issue or merge request) must be reachable; its failure
propagates and aborts the run. Secondary reads (commits, discussions, diffs)
that come back 403/404 degrade to ``None`` so a partially visible entity
still yields a useful prompt. All reads for one entity run concurrently,
and a failed read cancels the others.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import httpx

from junie_gitlab.models import Commit, Discussion, FetchedData, FileChange, Issue, MergeRequest

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from junie_gitlab.gitlab_client import GitLabClient

logger = logging.getLogger(__name__)

# Status codes that mean "this part is not available", not "the run failed".
_DEGRADABLE_STATUSES = {403, 404}


async def _gather(*calls: Awaitable[Any]) -> list[Any]:
    """Run *calls* concurrently; on the first failure cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(call) for call in calls]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _optional(label: str, call: Awaitable[list[dict]]) -> list[dict] | None:
    try:
        return await call
    except httpx.HTTPStatusError as e:
        if e.response.status_code in _DEGRADABLE_STATUSES:
            logger.warning(
                "Could not fetch %s (%d), continuing without it", label, e.response.status_code
            )
            return None
        raise


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def filter_discussions_by_time(
    discussions: list[Discussion], trigger_time: datetime
) -> list[Discussion]:
    """Keep only notes created at or before *trigger_time*.

    Discussions left without notes are dropped. Notes written while the run
    was being scheduled must not leak into the prompt as if the user had
    seen them. Comparison is at whole seconds: webhook timestamps carry no
    fraction, while API note timestamps carry milliseconds.
    """
    cutoff = _as_utc(trigger_time).replace(microsecond=0)
    filtered = []
    for discussion in discussions:
        notes = [
            n for n in discussion.notes if _as_utc(n.created_at).replace(microsecond=0) <= cutoff
        ]
        if notes:
            filtered.append(discussion.model_copy(update={"notes": notes}))
    return filtered


class DataFetcher:
    """Fetches issue / merge request context via a :class:`GitLabClient`."""

    def __init__(self, client: GitLabClient):
        self.client = client

    async def fetch_merge_request_data(
        self,
        project_id: int,
        mr_iid: int,
        trigger_time: datetime | None = None,
    ) -> FetchedData:
        """Merge request plus its commits, discussions and diffs."""
        logger.debug("Fetching MR data for project %s, MR !%s", project_id, mr_iid)

        results = await _gather(
            self.client.get_merge_request(project_id, mr_iid),
            _optional("commits", self.client.list_merge_request_commits(project_id, mr_iid)),
            _optional(
                "discussions", self.client.list_merge_request_discussions(project_id, mr_iid)
            ),
            _optional("diffs", self.client.list_merge_request_diffs(project_id, mr_iid)),
        )
        raw_mr, raw_commits, raw_discussions, raw_changes = results

        commits = None if raw_commits is None else [Commit.model_validate(c) for c in raw_commits]
        discussions = self._discussions(raw_discussions, trigger_time)
        changes = (
            None if raw_changes is None else [FileChange.model_validate(c) for c in raw_changes]
        )

        logger.debug(
            "Fetched MR data: %s commits, %s discussions, %s changed files",
            "n/a" if commits is None else len(commits),
            "n/a" if discussions is None else len(discussions),
            "n/a" if changes is None else len(changes),
        )
        return FetchedData(
            merge_request=MergeRequest.model_validate(raw_mr),
            commits=commits,
            discussions=discussions,
            changes=changes,
        )

    async def fetch_issue_data(
        self,
        project_id: int,
        issue_iid: int,
        trigger_time: datetime | None = None,
    ) -> FetchedData:
        """Issue plus its discussions."""
        logger.debug("Fetching issue data for project %s, issue #%s", project_id, issue_iid)

        raw_issue, raw_discussions = await _gather(
            self.client.get_issue(project_id, issue_iid),
            _optional("discussions", self.client.list_issue_discussions(project_id, issue_iid)),
        )
        discussions = self._discussions(raw_discussions, trigger_time)

        logger.debug(
            "Fetched issue data: %s discussions",
            "n/a" if discussions is None else len(discussions),
        )
        return FetchedData(issue=Issue.model_validate(raw_issue), discussions=discussions)

    @staticmethod
    def _discussions(
        raw: list[dict] | None, trigger_time: datetime | None
    ) -> list[Discussion] | None:
        if raw is None:
            return None
        discussions = [Discussion.model_validate(d) for d in raw]
        if trigger_time is not None:
            discussions = filter_discussions_by_time(discussions, trigger_time)
        return discussions
