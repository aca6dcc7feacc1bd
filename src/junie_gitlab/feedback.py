"""Feedback Generator: the notes and reactions posted back to GitLab.

Each task variant has a fixed place where the user expects to hear back:
the issue itself, the discussion thread that mentioned the agent, or the
merge request timeline. Requests are plain values so they can be asserted
on without a client; :func:`submit_feedback` performs them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from junie_gitlab.prompts import (
    FINISHED_PREFIX,
    MR_INTRO_HEADER,
    MR_LINK_PREFIX,
    NO_CHANGES_MESSAGE,
    STARTED_MESSAGE,
    STARTED_REACTION,
)
from junie_gitlab.tasks import (
    FixCITask,
    IssueCommentTask,
    MergeRequestCommentTask,
    MergeRequestEventTask,
    Task,
)

if TYPE_CHECKING:
    from junie_gitlab.gitlab_client import GitLabClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssueNoteRequest:
    project_id: int
    issue_id: int
    body: str


@dataclass(frozen=True)
class IssueNoteReactionRequest:
    project_id: int
    issue_id: int
    note_id: int
    emoji: str


@dataclass(frozen=True)
class MergeRequestNoteRequest:
    project_id: int
    merge_request_id: int
    body: str


@dataclass(frozen=True)
class MergeRequestDiscussionNoteRequest:
    project_id: int
    merge_request_id: int
    discussion_id: str
    body: str


FeedbackRequest = Union[
    IssueNoteRequest,
    IssueNoteReactionRequest,
    MergeRequestNoteRequest,
    MergeRequestDiscussionNoteRequest,
]


def finish_message(
    outcome: str | None,
    task_name: str | None = None,
    created_mr_url: str | None = None,
) -> str:
    """Final status message.

    A created merge request link wins over the agent's outcome text, which
    wins over the fixed no-changes message.
    """
    message = FINISHED_PREFIX
    if created_mr_url:
        message += MR_LINK_PREFIX + created_mr_url
    elif outcome:
        if task_name:
            message += f"**Task:** {task_name}\n\n"
        message += outcome
    else:
        message += NO_CHANGES_MESSAGE
    return message.strip()


def merge_request_intro(outcome: str | None) -> str:
    """Description for a merge request created from the agent's changes."""
    return MR_INTRO_HEADER + (outcome or "")


def _reply(task: MergeRequestCommentTask, body: str) -> FeedbackRequest:
    ctx = task.context
    if ctx.discussion_id:
        return MergeRequestDiscussionNoteRequest(
            ctx.project_id, ctx.merge_request_id, ctx.discussion_id, body
        )
    return MergeRequestNoteRequest(ctx.project_id, ctx.merge_request_id, body)


def started_feedback(task: Task) -> list[FeedbackRequest]:
    """Acknowledge that the agent picked the task up."""
    if isinstance(task, IssueCommentTask):
        ctx = task.context
        return [
            IssueNoteRequest(ctx.project_id, ctx.issue_id, STARTED_MESSAGE),
            IssueNoteReactionRequest(
                ctx.project_id, ctx.issue_id, ctx.comment_id, STARTED_REACTION
            ),
        ]
    if isinstance(task, MergeRequestCommentTask):
        return [_reply(task, STARTED_MESSAGE)]
    if isinstance(task, (MergeRequestEventTask, FixCITask)):
        ctx = task.context
        return [MergeRequestNoteRequest(ctx.project_id, ctx.merge_request_id, STARTED_MESSAGE)]
    raise TypeError(f"Unhandled task variant: {type(task).__name__}")


def finished_feedback(
    task: Task,
    outcome: str | None,
    task_name: str | None = None,
    created_mr_url: str | None = None,
) -> list[FeedbackRequest]:
    """Report the agent's result where the start message went."""
    body = finish_message(outcome, task_name, created_mr_url)
    if isinstance(task, IssueCommentTask):
        ctx = task.context
        return [IssueNoteRequest(ctx.project_id, ctx.issue_id, body)]
    if isinstance(task, MergeRequestCommentTask):
        return [_reply(task, body)]
    if isinstance(task, (MergeRequestEventTask, FixCITask)):
        ctx = task.context
        return [MergeRequestNoteRequest(ctx.project_id, ctx.merge_request_id, body)]
    raise TypeError(f"Unhandled task variant: {type(task).__name__}")


async def submit_feedback(client: GitLabClient, request: FeedbackRequest) -> None:
    if isinstance(request, IssueNoteRequest):
        await client.create_issue_note(request.project_id, request.issue_id, request.body)
    elif isinstance(request, IssueNoteReactionRequest):
        await client.award_issue_note_emoji(
            request.project_id, request.issue_id, request.note_id, request.emoji
        )
    elif isinstance(request, MergeRequestNoteRequest):
        await client.create_merge_request_note(
            request.project_id, request.merge_request_id, request.body
        )
    elif isinstance(request, MergeRequestDiscussionNoteRequest):
        await client.add_merge_request_discussion_note(
            request.project_id, request.merge_request_id, request.discussion_id, request.body
        )
    else:
        raise TypeError(f"Unhandled feedback request: {type(request).__name__}")
    logger.debug("Submitted %s", type(request).__name__)
