"""Tests for start/finish feedback generation and submission."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from junie_gitlab.feedback import (
    IssueNoteReactionRequest,
    IssueNoteRequest,
    MergeRequestDiscussionNoteRequest,
    MergeRequestNoteRequest,
    finish_message,
    finished_feedback,
    merge_request_intro,
    started_feedback,
    submit_feedback,
)
from junie_gitlab.models import (
    IssueCommentContext,
    MergeRequestCommentContext,
    MergeRequestEventContext,
)
from junie_gitlab.prompts import (
    FINISHED_PREFIX,
    MR_INTRO_HEADER,
    NO_CHANGES_MESSAGE,
    STARTED_MESSAGE,
)
from junie_gitlab.tasks import (
    FixCITask,
    IssueCommentTask,
    MergeRequestCommentTask,
    MergeRequestEventTask,
)

ISSUE_TASK = IssueCommentTask(
    IssueCommentContext(
        project_id=42, project_name="acme/widgets", issue_id=7, comment_id=301, comment_text="@junie"
    )
)


def mr_comment_task(discussion_id: str | None = "d-abc") -> MergeRequestCommentTask:
    return MergeRequestCommentTask(
        MergeRequestCommentContext(
            project_id=42,
            project_name="acme/widgets",
            merge_request_id=12,
            comment_id=302,
            comment_text="@junie",
            discussion_id=discussion_id,
            source_branch="feature/reset",
        )
    )


MR_EVENT_TASK = MergeRequestEventTask(
    MergeRequestEventContext(
        project_id=42,
        project_name="acme/widgets",
        merge_request_id=12,
        action="open",
        source_branch="feature/reset",
        target_branch="main",
        title="Add password reset",
        custom_prompt="Review",
    )
)


class TestFinishMessage:
    def test_merge_request_url_wins(self):
        message = finish_message("X", "Some task", "https://y")

        assert "https://y" in message
        assert "X" not in message.replace(FINISHED_PREFIX.strip(), "")
        assert "**Task:**" not in message

    def test_nothing_to_report(self):
        assert finish_message(None, None, None) == FINISHED_PREFIX + NO_CHANGES_MESSAGE

    def test_outcome_with_task_name(self):
        assert finish_message("Fixed the crash.", "Fix login") == (
            "✅ Junie finished\n\n**Task:** Fix login\n\nFixed the crash."
        )

    def test_outcome_without_task_name(self):
        assert finish_message("Done.\n\n") == "✅ Junie finished\n\nDone."

    def test_empty_outcome_is_no_changes(self):
        assert finish_message("", "Fix login").endswith(NO_CHANGES_MESSAGE)


class TestStartedFeedback:
    def test_issue_note_and_reaction(self):
        assert started_feedback(ISSUE_TASK) == [
            IssueNoteRequest(42, 7, STARTED_MESSAGE),
            IssueNoteReactionRequest(42, 7, 301, "thumbsup"),
        ]

    def test_merge_request_comment_replies_in_thread(self):
        assert started_feedback(mr_comment_task()) == [
            MergeRequestDiscussionNoteRequest(42, 12, "d-abc", STARTED_MESSAGE)
        ]

    def test_merge_request_comment_without_thread(self):
        assert started_feedback(mr_comment_task(None)) == [
            MergeRequestNoteRequest(42, 12, STARTED_MESSAGE)
        ]

    def test_lifecycle_and_fix_ci_post_merge_request_note(self):
        fix_ci = FixCITask(mr_comment_task().context, pipeline_id=99)

        assert started_feedback(MR_EVENT_TASK) == [MergeRequestNoteRequest(42, 12, STARTED_MESSAGE)]
        assert started_feedback(fix_ci) == [MergeRequestNoteRequest(42, 12, STARTED_MESSAGE)]

    def test_unknown_variant(self):
        with pytest.raises(TypeError):
            started_feedback(object())


class TestFinishedFeedback:
    def test_issue(self):
        assert finished_feedback(ISSUE_TASK, None) == [
            IssueNoteRequest(42, 7, FINISHED_PREFIX + NO_CHANGES_MESSAGE)
        ]

    def test_merge_request_comment_thread(self):
        [request] = finished_feedback(mr_comment_task(), "All good", "Check")

        assert isinstance(request, MergeRequestDiscussionNoteRequest)
        assert request.discussion_id == "d-abc"
        assert request.body.endswith("**Task:** Check\n\nAll good")

    def test_fix_ci(self):
        fix_ci = FixCITask(mr_comment_task().context, pipeline_id=99)

        [request] = finished_feedback(fix_ci, "Analysis")

        assert request == MergeRequestNoteRequest(42, 12, FINISHED_PREFIX + "Analysis")


def test_merge_request_intro():
    assert merge_request_intro("Fixed it") == MR_INTRO_HEADER + "Fixed it"
    assert merge_request_intro(None) == MR_INTRO_HEADER


class TestSubmitFeedback:
    async def test_dispatch(self):
        client = AsyncMock()

        await submit_feedback(client, IssueNoteRequest(42, 7, "a"))
        await submit_feedback(client, IssueNoteReactionRequest(42, 7, 301, "thumbsup"))
        await submit_feedback(client, MergeRequestNoteRequest(42, 12, "b"))
        await submit_feedback(client, MergeRequestDiscussionNoteRequest(42, 12, "d-abc", "c"))

        client.create_issue_note.assert_awaited_once_with(42, 7, "a")
        client.award_issue_note_emoji.assert_awaited_once_with(42, 7, 301, "thumbsup")
        client.create_merge_request_note.assert_awaited_once_with(42, 12, "b")
        client.add_merge_request_discussion_note.assert_awaited_once_with(42, 12, "d-abc", "c")

    async def test_unknown_request(self):
        with pytest.raises(TypeError):
            await submit_feedback(AsyncMock(), "not a request")
