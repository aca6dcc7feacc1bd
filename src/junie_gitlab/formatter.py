"""Renders one natural-language task for the agent.

The output is either a specialized task selected by a trigger phrase
(``code-review``, ``fix-ci``, ``minor-fix``) or the generic template: a set
of tagged sections describing the instruction, repository, entity, commits,
discussions, changed files and actor. Sections without backing data are left
out entirely. The assembled string is sanitized once, as the last step.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from junie_gitlab import prompts
from junie_gitlab.models import (
    Discussion,
    EventContext,
    FetchedData,
    IssueCommentContext,
    MergeRequestCommentContext,
    MergeRequestEventContext,
)
from junie_gitlab.sanitizer import sanitize

logger = logging.getLogger(__name__)

DISCUSSION_SEPARATOR = "\n\n---\n\n"


def _utc_date(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date().isoformat()


def _section(tag: str, body: str) -> str:
    return f"<{tag}>\n{body}\n</{tag}>"


def effective_instruction(context: EventContext, custom_prompt: str | None = None) -> str | None:
    """The text trigger phrases are tested against: custom prompt, else comment.

    Sanitized, so a phrase hidden in an HTML comment selects nothing.
    """
    if custom_prompt:
        return sanitize(custom_prompt)
    if isinstance(context, (IssueCommentContext, MergeRequestCommentContext)):
        return sanitize(context.comment_text)
    return None


def detect_trigger(
    context: EventContext,
    custom_prompt: str | None = None,
    *,
    fix_ci_available: bool = True,
) -> str | None:
    """Which specialized task the instruction asks for, if any.

    Precedence is code-review, fix-ci, minor-fix. ``code-review`` applies to
    merge requests only; ``fix-ci`` to merge request comments only, and only
    when a failed pipeline is available.
    """
    instruction = effective_instruction(context, custom_prompt)
    if not instruction:
        return None

    is_merge_request = isinstance(
        context, (MergeRequestCommentContext, MergeRequestEventContext)
    )
    if is_merge_request and prompts.contains_trigger(instruction, prompts.CODE_REVIEW_ACTION):
        return prompts.CODE_REVIEW_ACTION
    if (
        isinstance(context, MergeRequestCommentContext)
        and fix_ci_available
        and prompts.contains_trigger(instruction, prompts.FIX_CI_ACTION)
    ):
        return prompts.FIX_CI_ACTION
    if prompts.contains_trigger(instruction, prompts.MINOR_FIX_ACTION):
        return prompts.MINOR_FIX_ACTION
    return None


def mcp_note_for(context: EventContext, *, in_thread: bool = True) -> str:
    """Integration note for *context*.

    With ``in_thread=False`` the comment id is left out, so the agent is not
    told its answer will be posted as a reply in the comment's thread.
    """
    if isinstance(context, IssueCommentContext):
        return prompts.mcp_note(
            context.project_id, issue_id=context.issue_id, comment_id=context.comment_id
        )
    if isinstance(context, MergeRequestCommentContext):
        return prompts.mcp_note(
            context.project_id,
            merge_request_id=context.merge_request_id,
            comment_id=context.comment_id if in_thread else None,
        )
    if isinstance(context, MergeRequestEventContext):
        return prompts.mcp_note(context.project_id, merge_request_id=context.merge_request_id)
    raise TypeError(f"Unhandled event context: {type(context).__name__}")


class PromptFormatter:
    """Builds the agent task text for an event."""

    def format(
        self,
        context: EventContext,
        fetched_data: FetchedData,
        custom_prompt: str | None = None,
        use_mcp: bool = False,
        failed_pipeline_id: int | None = None,
    ) -> str:
        """Render the task string for *context*.

        Args:
            context: The triggering event.
            fetched_data: GitLab context for the event's issue / merge request.
            custom_prompt: Operator instruction; overrides the comment text as
                the trigger-phrase source.
            use_mcp: Append the integration note for the agent's GitLab tools.
            failed_pipeline_id: Failed pipeline resolved by the caller; enables
                the ``fix-ci`` task for merge request comments.
        """
        action = detect_trigger(
            context, custom_prompt, fix_ci_available=failed_pipeline_id is not None
        )
        if action is not None:
            special = self._specialized(action, context, custom_prompt, failed_pipeline_id)
            # fix-ci results are posted as a merge request note, not a thread reply
            in_thread = action != prompts.FIX_CI_ACTION
            mcp = mcp_note_for(context, in_thread=in_thread) if use_mcp else ""
            return sanitize(special + mcp + prompts.GIT_OPERATIONS_NOTE)

        if isinstance(context, IssueCommentContext):
            sections = [
                self.user_instruction_for_issue_comment(context, custom_prompt),
                self.repository_info(context),
                self.issue_info(fetched_data),
                self.discussions_info(fetched_data),
            ]
        elif isinstance(context, MergeRequestCommentContext):
            sections = [
                self.user_instruction_for_mr_comment(context, custom_prompt),
                self.repository_info(context),
                self.merge_request_info(fetched_data),
                self.commits_info(fetched_data),
                self.discussions_info(fetched_data),
                self.changed_files_info(fetched_data),
            ]
        elif isinstance(context, MergeRequestEventContext):
            sections = [
                self.user_instruction_for_mr_event(context, custom_prompt),
                self.repository_info(context),
                self.merge_request_info(fetched_data),
                self.commits_info(fetched_data),
                self.discussions_info(fetched_data),
                self.changed_files_info(fetched_data),
            ]
        else:
            raise TypeError(f"Unhandled event context: {type(context).__name__}")

        sections.append(self.actor_info(context))
        body = "\n".join(s for s in sections if s)
        mcp = mcp_note_for(context) if use_mcp else ""

        prompt = (
            f"You were triggered as a GitLab AI Assistant by {context.event_kind} event. "
            f"Your task is to:\n\n{body}\n{mcp}{prompts.GIT_OPERATIONS_NOTE}\n"
        )
        return sanitize(prompt)

    # ── Trigger Phrases ──────────────────────────────────────────────────

    def _specialized(
        self,
        action: str,
        context: EventContext,
        custom_prompt: str | None,
        failed_pipeline_id: int | None,
    ) -> str:
        if action == prompts.CODE_REVIEW_ACTION:
            logger.info("Code review requested for MR !%s", context.merge_request_id)
            return prompts.code_review_prompt(context.merge_request_id)

        if action == prompts.FIX_CI_ACTION:
            logger.info("CI fix requested for pipeline %s", failed_pipeline_id)
            return prompts.fix_ci_prompt(
                context.project_id, failed_pipeline_id, context.merge_request_id
            )

        request = prompts.extract_minor_fix_request(effective_instruction(context, custom_prompt))
        if isinstance(context, IssueCommentContext):
            entity = f"Issue #{context.issue_id}"
        else:
            entity = f"Merge Request !{context.merge_request_id}"
        logger.info("Minor fix requested on %s", entity)
        return prompts.minor_fix_prompt(request, entity=entity)

    # ── Sections ─────────────────────────────────────────────────────────

    def user_instruction_for_mr_comment(
        self, context: MergeRequestCommentContext, custom_prompt: str | None
    ) -> str:
        discussion_prefix = (
            f"Discussion #{context.discussion_id}:\n" if context.discussion_id else ""
        )
        if custom_prompt:
            instruction = f"{custom_prompt}\n\n{discussion_prefix}Comment: {context.comment_text}"
        else:
            instruction = discussion_prefix + context.comment_text
        return _section("user_instruction", instruction)

    def user_instruction_for_issue_comment(
        self, context: IssueCommentContext, custom_prompt: str | None
    ) -> str:
        if custom_prompt:
            instruction = f"{custom_prompt}\n\nComment: {context.comment_text}"
        else:
            instruction = context.comment_text
        return _section("user_instruction", instruction)

    def user_instruction_for_mr_event(
        self, context: MergeRequestEventContext, custom_prompt: str | None
    ) -> str:
        instruction = custom_prompt or f"Handle merge request {context.action}"
        return _section("user_instruction", instruction)

    def repository_info(self, context: EventContext) -> str:
        return _section(
            "repository", f"Project ID: {context.project_id}\nProject: {context.project_name}"
        )

    def actor_info(self, context: EventContext) -> str:
        pipeline = context.pipeline_id if context.pipeline_id is not None else "unknown"
        return _section("actor", f"Event: {context.event_kind}\nPipeline ID: {pipeline}")

    def merge_request_info(self, fetched_data: FetchedData) -> str | None:
        mr = fetched_data.merge_request
        if mr is None:
            return None

        lines = [
            f"MR !{mr.iid}",
            f"Title: {mr.title}",
            f"Author: @{mr.author.username}",
            f"State: {mr.state}",
            f"Branch: {mr.source_branch} -> {mr.target_branch}",
        ]
        if mr.diff_refs is not None:
            lines.append(f"Base SHA: {mr.diff_refs.base_sha}")
            lines.append(f"Head SHA: {mr.diff_refs.head_sha}")
        lines.extend(
            [
                f"Changes: {mr.changes_count if mr.changes_count is not None else 0}",
                f"Discussions: {mr.user_notes_count}",
                f"Upvotes: {mr.upvotes} / Downvotes: {mr.downvotes}",
            ]
        )
        if mr.is_draft:
            lines.append("Draft: Yes")
        return _section("merge_request_info", "\n".join(lines))

    def issue_info(self, fetched_data: FetchedData) -> str | None:
        issue = fetched_data.issue
        if issue is None:
            return None

        labels = ", ".join(issue.labels) or "none"
        return _section(
            "issue_info",
            f"Issue #{issue.iid}\n"
            f"Title: {issue.title}\n"
            f"Author: @{issue.author.username}\n"
            f"State: {issue.state}\n"
            f"Labels: {labels}\n"
            f"Discussions: {issue.user_notes_count}",
        )

    def commits_info(self, fetched_data: FetchedData) -> str | None:
        if not fetched_data.commits:
            return None

        # Newest-first, as GitLab returns them
        lines = [
            f"[{_utc_date(c.created_at)}] {c.short_id} - {c.title}"
            for c in fetched_data.commits
        ]
        return _section("commits", "\n".join(lines))

    def discussions_info(self, fetched_data: FetchedData) -> str | None:
        if not fetched_data.discussions:
            return None

        formatted = [self.format_discussion(d) for d in fetched_data.discussions]
        formatted = [f for f in formatted if f.strip()]
        if not formatted:
            return None
        return _section("discussions", DISCUSSION_SEPARATOR.join(formatted))

    def format_discussion(self, discussion: Discussion) -> str:
        """One discussion; empty when it holds only system notes."""
        notes = discussion.user_notes
        if not notes:
            return ""

        header = "" if discussion.individual_note else f"Discussion #{discussion.id}:\n"
        rendered = []
        for note in notes:
            date = note.created_at.strftime("%b %d, %Y, %I:%M %p")
            resolved = " [RESOLVED]" if note.resolvable and note.resolved else ""
            rendered.append(f"[{date}] @{note.author.username}{resolved}:\n{note.body}")
        return header + "\n\n".join(rendered)

    def changed_files_info(self, fetched_data: FetchedData) -> str | None:
        if not fetched_data.changes:
            return None

        lines = [f"{change.new_path} ({change.status})" for change in fetched_data.changes]
        return _section("changed_files", "\n".join(lines))
