"""Core data models for junie-gitlab.

Two families live here:

- Event contexts: what triggered this pipeline run. A closed, discriminated
  union of three variants, built from a GitLab webhook payload or from the
  environment variables the webhook template forwards into CI.
- GitLab entities: the subset of REST v4 resources the prompt needs. Unknown
  API fields are ignored so that GitLab version drift never breaks a run.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

# ── Event Contexts ───────────────────────────────────────────────────────────


class _BaseContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: int
    project_name: str = Field(description="Path with namespace, e.g. 'acme/widgets'")
    pipeline_id: int | None = Field(default=None, description="CI pipeline running this job")
    custom_prompt: str | None = Field(
        default=None, description="Operator instruction overriding the comment text"
    )

    @field_validator("created_at", mode="before", check_fields=False)
    @classmethod
    def _normalize_webhook_timestamp(cls, v):
        # Webhook payloads use "2024-05-17 18:21:36 UTC"
        if isinstance(v, str) and v.endswith(" UTC"):
            return v[: -len(" UTC")].replace(" ", "T") + "+00:00"
        return v


class IssueCommentContext(_BaseContext):
    """A note posted on an issue."""

    kind: Literal["issue_comment"] = "issue_comment"
    issue_id: int = Field(description="Issue IID within the project")
    comment_id: int
    comment_text: str
    created_at: datetime | None = None

    @property
    def event_kind(self) -> str:
        return "note"


class MergeRequestCommentContext(_BaseContext):
    """A note posted on a merge request, optionally inside a discussion thread."""

    kind: Literal["merge_request_comment"] = "merge_request_comment"
    merge_request_id: int = Field(description="Merge request IID within the project")
    comment_id: int
    comment_text: str
    discussion_id: str | None = None
    source_branch: str
    target_branch: str | None = None
    created_at: datetime | None = None

    @property
    def event_kind(self) -> str:
        return "note"


class MergeRequestEventContext(_BaseContext):
    """A merge request lifecycle event (open, update, reopen, ...)."""

    kind: Literal["merge_request_event"] = "merge_request_event"
    merge_request_id: int
    action: str
    source_branch: str
    target_branch: str
    title: str

    @property
    def event_kind(self) -> str:
        return "merge_request"


EventContext = Annotated[
    Union[IssueCommentContext, MergeRequestCommentContext, MergeRequestEventContext],
    Field(discriminator="kind"),
]

_event_context_adapter: TypeAdapter[EventContext] = TypeAdapter(EventContext)


def parse_event_context(data: Mapping) -> EventContext:
    """Validate a ``kind``-tagged mapping into the matching context variant."""
    return _event_context_adapter.validate_python(dict(data))


def context_from_webhook(
    payload: dict,
    *,
    pipeline_id: int | None = None,
    custom_prompt: str | None = None,
) -> EventContext:
    """Build an event context from a GitLab webhook payload.

    Supports ``note`` events on issues and merge requests and
    ``merge_request`` events. Anything else raises ``ValueError``.
    """
    object_kind = payload.get("object_kind")
    project = payload.get("project") or {}
    attrs = payload.get("object_attributes") or {}
    common = {
        "project_id": project.get("id"),
        "project_name": project.get("path_with_namespace") or project.get("name", ""),
        "pipeline_id": pipeline_id,
        "custom_prompt": custom_prompt,
    }

    if object_kind == "note":
        noteable_type = attrs.get("noteable_type")
        if noteable_type == "Issue":
            issue = payload.get("issue") or {}
            return IssueCommentContext(
                **common,
                issue_id=issue.get("iid"),
                comment_id=attrs.get("id"),
                comment_text=attrs.get("note") or "",
                created_at=attrs.get("created_at"),
            )
        if noteable_type == "MergeRequest":
            mr = payload.get("merge_request") or {}
            return MergeRequestCommentContext(
                **common,
                merge_request_id=mr.get("iid"),
                comment_id=attrs.get("id"),
                comment_text=attrs.get("note") or "",
                discussion_id=attrs.get("discussion_id"),
                source_branch=mr.get("source_branch", ""),
                target_branch=mr.get("target_branch"),
                created_at=attrs.get("created_at"),
            )
        raise ValueError(f"Unsupported note target: {noteable_type!r}")

    if object_kind == "merge_request":
        return MergeRequestEventContext(
            **common,
            merge_request_id=attrs.get("iid"),
            action=attrs.get("action") or "unknown",
            source_branch=attrs.get("source_branch", ""),
            target_branch=attrs.get("target_branch", ""),
            title=attrs.get("title", ""),
        )

    raise ValueError(f"Unsupported webhook object kind: {object_kind!r}")


# Environment variables forwarded by the webhook template into the CI job.
ENV_EVENT_KIND = "JUNIE_EVENT_KIND"
ENV_NOTEABLE_TYPE = "JUNIE_NOTEABLE_TYPE"
ENV_PROJECT_ID = "JUNIE_PROJECT_ID"
ENV_PROJECT_NAME = "JUNIE_PROJECT_NAME"
ENV_ISSUE_ID = "JUNIE_ISSUE_IID"
ENV_MR_ID = "JUNIE_MR_IID"
ENV_COMMENT_ID = "JUNIE_COMMENT_ID"
ENV_COMMENT_TEXT = "JUNIE_COMMENT_TEXT"
ENV_COMMENT_CREATED_AT = "JUNIE_COMMENT_CREATED_AT"
ENV_DISCUSSION_ID = "JUNIE_DISCUSSION_ID"
ENV_MR_ACTION = "JUNIE_MR_ACTION"
ENV_MR_SOURCE_BRANCH = "JUNIE_MR_SOURCE_BRANCH"
ENV_MR_TARGET_BRANCH = "JUNIE_MR_TARGET_BRANCH"
ENV_MR_TITLE = "JUNIE_MR_TITLE"
ENV_PIPELINE_ID = "CI_PIPELINE_ID"


def _require(env: Mapping[str, str], key: str) -> str:
    value = env.get(key)
    if not value:
        raise ValueError(f"Missing required environment variable {key}")
    return value


def context_from_env(
    env: Mapping[str, str] | None = None,
    *,
    custom_prompt: str | None = None,
) -> EventContext:
    """Build an event context from CI environment variables.

    ``JUNIE_EVENT_KIND`` selects the variant: ``note`` (with
    ``JUNIE_NOTEABLE_TYPE`` = ``Issue`` or ``MergeRequest``) or
    ``merge_request``.
    """
    env = os.environ if env is None else env
    event_kind = _require(env, ENV_EVENT_KIND)
    pipeline_id = env.get(ENV_PIPELINE_ID)
    common = {
        "project_id": _require(env, ENV_PROJECT_ID),
        "project_name": env.get(ENV_PROJECT_NAME, ""),
        "pipeline_id": pipeline_id or None,
        "custom_prompt": custom_prompt or None,
    }

    if event_kind == "note":
        noteable_type = _require(env, ENV_NOTEABLE_TYPE)
        note = {
            "comment_id": _require(env, ENV_COMMENT_ID),
            "comment_text": env.get(ENV_COMMENT_TEXT, ""),
            "created_at": env.get(ENV_COMMENT_CREATED_AT) or None,
        }
        if noteable_type == "Issue":
            return IssueCommentContext(**common, **note, issue_id=_require(env, ENV_ISSUE_ID))
        if noteable_type == "MergeRequest":
            return MergeRequestCommentContext(
                **common,
                **note,
                merge_request_id=_require(env, ENV_MR_ID),
                discussion_id=env.get(ENV_DISCUSSION_ID) or None,
                source_branch=_require(env, ENV_MR_SOURCE_BRANCH),
                target_branch=env.get(ENV_MR_TARGET_BRANCH) or None,
            )
        raise ValueError(f"Unsupported note target: {noteable_type!r}")

    if event_kind == "merge_request":
        return MergeRequestEventContext(
            **common,
            merge_request_id=_require(env, ENV_MR_ID),
            action=env.get(ENV_MR_ACTION) or "unknown",
            source_branch=_require(env, ENV_MR_SOURCE_BRANCH),
            target_branch=env.get(ENV_MR_TARGET_BRANCH, ""),
            title=env.get(ENV_MR_TITLE, ""),
        )

    raise ValueError(f"Unsupported event kind: {event_kind!r}")


# ── GitLab Entities ──────────────────────────────────────────────────────────


class _Entity(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Author(_Entity):
    id: int | None = None
    username: str


class DiffRefs(_Entity):
    base_sha: str | None = None
    head_sha: str | None = None
    start_sha: str | None = None


class MergeRequest(_Entity):
    iid: int
    title: str
    author: Author
    state: str
    source_branch: str
    target_branch: str
    diff_refs: DiffRefs | None = None
    changes_count: str | int | None = None
    user_notes_count: int = 0
    upvotes: int = 0
    downvotes: int = 0
    draft: bool = False
    work_in_progress: bool = False
    web_url: str | None = None

    @property
    def is_draft(self) -> bool:
        return self.draft or self.work_in_progress


class Issue(_Entity):
    iid: int
    title: str
    author: Author
    state: str
    labels: list[str] = Field(default_factory=list)
    user_notes_count: int = 0
    web_url: str | None = None


class Commit(_Entity):
    id: str
    short_id: str
    title: str
    created_at: datetime


class Note(_Entity):
    id: int
    body: str = ""
    author: Author
    created_at: datetime
    system: bool = False
    resolvable: bool = False
    resolved: bool = False


class Discussion(_Entity):
    id: str
    individual_note: bool = False
    notes: list[Note] = Field(default_factory=list)

    @property
    def user_notes(self) -> list[Note]:
        """Notes written by people, with system-generated notes dropped."""
        return [n for n in self.notes if not n.system]


class FileChange(_Entity):
    old_path: str | None = None
    new_path: str
    new_file: bool = False
    deleted_file: bool = False
    renamed_file: bool = False

    @property
    def status(self) -> str:
        if self.new_file:
            return "added"
        if self.deleted_file:
            return "deleted"
        if self.renamed_file:
            return "renamed"
        return "modified"


class AccessToken(_Entity):
    """A project or group access token, used only as a bot identity lookup key."""

    id: int | None = None
    name: str
    user_id: int
    active: bool = True
    revoked: bool = False


class FetchedData(BaseModel):
    """Context fetched for one event. ``None`` means not applicable, not failure."""

    merge_request: MergeRequest | None = None
    issue: Issue | None = None
    commits: list[Commit] | None = None
    discussions: list[Discussion] | None = None
    changes: list[FileChange] | None = None
