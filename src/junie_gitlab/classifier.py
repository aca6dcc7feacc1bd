"""Event Classifier: decides whether and how the agent should act on an event.

Maps an :data:`~junie_gitlab.models.EventContext` to a
:data:`~junie_gitlab.tasks.TaskExtractionResult`. Comments must mention the
agent; merge request lifecycle events need an operator-configured prompt.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from junie_gitlab import prompts
from junie_gitlab.fetcher import DataFetcher
from junie_gitlab.formatter import detect_trigger
from junie_gitlab.mention import MentionDetector
from junie_gitlab.models import (
    EventContext,
    IssueCommentContext,
    MergeRequestCommentContext,
    MergeRequestEventContext,
)
from junie_gitlab.tasks import (
    Failed,
    FixCITask,
    IssueCommentTask,
    MergeRequestCommentTask,
    MergeRequestEventTask,
    TaskExtractionResult,
)

if TYPE_CHECKING:
    from junie_gitlab.config import JunieConfig
    from junie_gitlab.gitlab_client import GitLabClient

logger = logging.getLogger(__name__)

NO_MENTION_REASON = "Comment doesn't contain mention to Junie"


class TaskExtractor:
    """Classifies one event into a task or a :class:`~junie_gitlab.tasks.Failed`."""

    def __init__(
        self,
        config: JunieConfig,
        client: GitLabClient,
        detector: MentionDetector | None = None,
        fetcher: DataFetcher | None = None,
    ):
        self.config = config
        self.client = client
        self.detector = detector or MentionDetector(client, config.literal_mentions)
        self.fetcher = fetcher or DataFetcher(client)

    async def extract(self, context: EventContext) -> TaskExtractionResult:
        if isinstance(context, IssueCommentContext):
            result = await self._from_issue_comment(context)
        elif isinstance(context, MergeRequestCommentContext):
            result = await self._from_merge_request_comment(context)
        elif isinstance(context, MergeRequestEventContext):
            result = await self._from_merge_request_event(context)
        else:
            raise TypeError(f"Unhandled event context: {type(context).__name__}")

        if isinstance(result, Failed):
            logger.info("No task for %s event: %s", context.event_kind, result.reason)
        else:
            logger.info("Extracted %s", type(result).__name__)
        return result

    async def _mentioned(self, context: EventContext, text: str) -> bool:
        return await self.detector.is_mentioned(context.project_id, text, self.config.tag_regex)

    async def _from_issue_comment(self, context: IssueCommentContext) -> TaskExtractionResult:
        if not await self._mentioned(context, context.comment_text):
            return Failed(NO_MENTION_REASON)

        data = await self.fetcher.fetch_issue_data(
            context.project_id, context.issue_id, trigger_time=context.created_at
        )
        return IssueCommentTask(context=context, fetched_data=data)

    async def _from_merge_request_comment(
        self, context: MergeRequestCommentContext
    ) -> TaskExtractionResult:
        if not await self._mentioned(context, context.comment_text):
            return Failed(NO_MENTION_REASON)

        requested = detect_trigger(context, context.custom_prompt)
        if requested == prompts.FIX_CI_ACTION:
            pipeline = await self.client.get_last_failed_pipeline(
                context.project_id, context.merge_request_id
            )
            if pipeline is not None:
                return FixCITask(context=context, pipeline_id=pipeline["id"])
            logger.warning(
                "fix-ci requested on MR !%s without a failed pipeline, "
                "handling as a regular comment",
                context.merge_request_id,
            )

        data = await self.fetcher.fetch_merge_request_data(
            context.project_id, context.merge_request_id, trigger_time=context.created_at
        )
        return MergeRequestCommentTask(context=context, fetched_data=data)

    async def _from_merge_request_event(
        self, context: MergeRequestEventContext
    ) -> TaskExtractionResult:
        if not context.custom_prompt:
            return Failed(f"MR event action '{context.action}' has no custom prompt set")

        data = await self.fetcher.fetch_merge_request_data(
            context.project_id, context.merge_request_id
        )
        return MergeRequestEventTask(context=context, fetched_data=data)
