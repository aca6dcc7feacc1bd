"""Tests for event contexts and GitLab entity models."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from gitlab_payloads import discussion_payload, diff_payload, merge_request_payload, note_payload
from junie_gitlab.models import (
    Discussion,
    FileChange,
    IssueCommentContext,
    MergeRequest,
    MergeRequestCommentContext,
    MergeRequestEventContext,
    context_from_env,
    context_from_webhook,
    parse_event_context,
)

PROJECT = {"id": 42, "name": "widgets", "path_with_namespace": "acme/widgets"}


def note_hook(noteable_type: str, **extra) -> dict:
    return {
        "object_kind": "note",
        "project": PROJECT,
        "object_attributes": {
            "id": 301,
            "note": "@junie fix the login bug",
            "noteable_type": noteable_type,
            "discussion_id": "d-abc",
            "created_at": "2024-05-17 18:21:36 UTC",
        },
        **extra,
    }


class TestContextFromWebhook:
    def test_issue_note(self):
        context = context_from_webhook(note_hook("Issue", issue={"iid": 7}), pipeline_id=555)

        assert isinstance(context, IssueCommentContext)
        assert context.issue_id == 7
        assert context.comment_id == 301
        assert context.project_name == "acme/widgets"
        assert context.pipeline_id == 555
        assert context.created_at == datetime(2024, 5, 17, 18, 21, 36, tzinfo=timezone.utc)
        assert context.event_kind == "note"

    def test_merge_request_note(self):
        payload = note_hook(
            "MergeRequest",
            merge_request={"iid": 12, "source_branch": "feature/reset", "target_branch": "main"},
        )

        context = context_from_webhook(payload, custom_prompt="Be brief")

        assert isinstance(context, MergeRequestCommentContext)
        assert context.merge_request_id == 12
        assert context.discussion_id == "d-abc"
        assert context.source_branch == "feature/reset"
        assert context.custom_prompt == "Be brief"

    def test_merge_request_event(self):
        payload = {
            "object_kind": "merge_request",
            "project": PROJECT,
            "object_attributes": {
                "iid": 12,
                "action": "reopen",
                "source_branch": "feature/reset",
                "target_branch": "main",
                "title": "Add password reset",
            },
        }

        context = context_from_webhook(payload)

        assert isinstance(context, MergeRequestEventContext)
        assert context.action == "reopen"
        assert context.event_kind == "merge_request"

    def test_unsupported_kind(self):
        with pytest.raises(ValueError, match="Unsupported webhook object kind"):
            context_from_webhook({"object_kind": "push", "project": PROJECT})

    def test_unsupported_note_target(self):
        with pytest.raises(ValueError, match="Unsupported note target"):
            context_from_webhook(note_hook("Commit"))


class TestContextFromEnv:
    def test_issue_comment(self):
        env = {
            "JUNIE_EVENT_KIND": "note",
            "JUNIE_NOTEABLE_TYPE": "Issue",
            "JUNIE_PROJECT_ID": "42",
            "JUNIE_PROJECT_NAME": "acme/widgets",
            "JUNIE_ISSUE_IID": "7",
            "JUNIE_COMMENT_ID": "301",
            "JUNIE_COMMENT_TEXT": "@junie fix it",
            "JUNIE_COMMENT_CREATED_AT": "2024-05-17T18:21:36Z",
            "CI_PIPELINE_ID": "555",
        }

        context = context_from_env(env)

        assert isinstance(context, IssueCommentContext)
        assert context.project_id == 42
        assert context.issue_id == 7
        assert context.pipeline_id == 555
        assert context.created_at.tzinfo is not None

    def test_merge_request_comment(self):
        env = {
            "JUNIE_EVENT_KIND": "note",
            "JUNIE_NOTEABLE_TYPE": "MergeRequest",
            "JUNIE_PROJECT_ID": "42",
            "JUNIE_MR_IID": "12",
            "JUNIE_COMMENT_ID": "302",
            "JUNIE_COMMENT_TEXT": "@junie",
            "JUNIE_DISCUSSION_ID": "d-abc",
            "JUNIE_MR_SOURCE_BRANCH": "feature/reset",
        }

        context = context_from_env(env, custom_prompt="Be brief")

        assert isinstance(context, MergeRequestCommentContext)
        assert context.discussion_id == "d-abc"
        assert context.target_branch is None
        assert context.pipeline_id is None
        assert context.custom_prompt == "Be brief"

    def test_merge_request_event(self):
        env = {
            "JUNIE_EVENT_KIND": "merge_request",
            "JUNIE_PROJECT_ID": "42",
            "JUNIE_MR_IID": "12",
            "JUNIE_MR_ACTION": "update",
            "JUNIE_MR_SOURCE_BRANCH": "feature/reset",
            "JUNIE_MR_TARGET_BRANCH": "main",
            "JUNIE_MR_TITLE": "Add password reset",
        }

        context = context_from_env(env)

        assert isinstance(context, MergeRequestEventContext)
        assert context.action == "update"

    def test_missing_variable(self):
        env = {"JUNIE_EVENT_KIND": "note", "JUNIE_NOTEABLE_TYPE": "Issue", "JUNIE_PROJECT_ID": "42"}

        with pytest.raises(ValueError, match="JUNIE_COMMENT_ID"):
            context_from_env(env)

    def test_unsupported_event_kind(self):
        with pytest.raises(ValueError, match="Unsupported event kind"):
            context_from_env({"JUNIE_EVENT_KIND": "push", "JUNIE_PROJECT_ID": "42"})


class TestEventContext:
    def test_discriminated_parse(self):
        context = parse_event_context(
            {
                "kind": "merge_request_comment",
                "project_id": 42,
                "project_name": "acme/widgets",
                "merge_request_id": 12,
                "comment_id": 302,
                "comment_text": "@junie",
                "source_branch": "feature/reset",
            }
        )

        assert isinstance(context, MergeRequestCommentContext)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            parse_event_context({"kind": "push", "project_id": 42, "project_name": "x"})

    def test_frozen(self):
        context = IssueCommentContext(
            project_id=42, project_name="x", issue_id=7, comment_id=1, comment_text="hi"
        )

        with pytest.raises(ValidationError):
            context.comment_text = "changed"


class TestEntities:
    def test_merge_request_ignores_unknown_fields(self):
        mr = MergeRequest.model_validate(merge_request_payload(reviewers=[], squash=True))

        assert mr.iid == 12
        assert mr.is_draft is False

    def test_work_in_progress_counts_as_draft(self):
        mr = MergeRequest.model_validate(merge_request_payload(work_in_progress=True))

        assert mr.is_draft is True

    @pytest.mark.parametrize(
        "flags, status",
        [
            ({}, "modified"),
            ({"new_file": True}, "added"),
            ({"deleted_file": True}, "deleted"),
            ({"renamed_file": True}, "renamed"),
        ],
    )
    def test_file_change_status(self, flags, status):
        assert FileChange.model_validate(diff_payload("a.py", **flags)).status == status

    def test_user_notes_drop_system_notes(self):
        discussion = Discussion.model_validate(
            discussion_payload(
                "d1",
                note_payload(1, "assigned to @bob", system=True),
                note_payload(2, "Please review"),
            )
        )

        assert [n.id for n in discussion.user_notes] == [2]
