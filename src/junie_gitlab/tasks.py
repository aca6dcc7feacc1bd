"""What kind of work item an event produced.

A :data:`TaskExtractionResult` is either :class:`Failed` (no action warranted,
with a reason) or one of a closed set of task variants. Every consumer
(prompt rendering here, feedback in :mod:`junie_gitlab.feedback`) dispatches
over the full variant set and raises ``TypeError`` on anything else, so a new
variant cannot be added without teaching every consumer about it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Union

from junie_gitlab.formatter import PromptFormatter
from junie_gitlab.models import (
    FetchedData,
    IssueCommentContext,
    MergeRequestCommentContext,
    MergeRequestEventContext,
)


@dataclass(frozen=True)
class Failed:
    """Classification decided no action is warranted."""

    reason: str


@dataclass(frozen=True)
class IssueCommentTask:
    """Agent mentioned in an issue comment. Work lands on a new branch."""

    context: IssueCommentContext
    fetched_data: FetchedData = field(default_factory=FetchedData)

    @property
    def checkout_branch(self) -> str | None:
        return None


@dataclass(frozen=True)
class MergeRequestCommentTask:
    """Agent mentioned in a merge request comment. Works on the MR branch."""

    context: MergeRequestCommentContext
    fetched_data: FetchedData = field(default_factory=FetchedData)

    @property
    def checkout_branch(self) -> str | None:
        return self.context.source_branch


@dataclass(frozen=True)
class MergeRequestEventTask:
    """Operator-configured instruction for a merge request lifecycle event."""

    context: MergeRequestEventContext
    fetched_data: FetchedData = field(default_factory=FetchedData)

    @property
    def checkout_branch(self) -> str | None:
        return self.context.source_branch


@dataclass(frozen=True)
class FixCITask:
    """Analyze the merge request's latest failed pipeline."""

    context: MergeRequestCommentContext
    pipeline_id: int

    @property
    def checkout_branch(self) -> str | None:
        return self.context.source_branch


Task = Union[IssueCommentTask, MergeRequestCommentTask, MergeRequestEventTask, FixCITask]
TaskExtractionResult = Union[Failed, Task]

TASK_TYPES = (IssueCommentTask, MergeRequestCommentTask, MergeRequestEventTask, FixCITask)


def is_successful(result: TaskExtractionResult) -> bool:
    return isinstance(result, TASK_TYPES)


def _unhandled(task: object) -> TypeError:
    return TypeError(f"Unhandled task variant: {type(task).__name__}")


def task_text(task: Task, *, use_mcp: bool, formatter: PromptFormatter | None = None) -> str:
    """The sanitized task string for the agent."""
    formatter = formatter or PromptFormatter()
    if isinstance(task, (IssueCommentTask, MergeRequestCommentTask, MergeRequestEventTask)):
        return formatter.format(
            task.context, task.fetched_data, task.context.custom_prompt, use_mcp
        )
    if isinstance(task, FixCITask):
        return formatter.format(
            task.context,
            FetchedData(),
            task.context.custom_prompt,
            use_mcp,
            failed_pipeline_id=task.pipeline_id,
        )
    raise _unhandled(task)


def task_payload(task: Task, *, use_mcp: bool, formatter: PromptFormatter | None = None) -> str:
    """JSON payload for the agent's input contract: ``{"textTask": {"text": ...}}``."""
    text = task_text(task, use_mcp=use_mcp, formatter=formatter)
    return json.dumps({"textTask": {"text": text}})


def task_title(task: Task) -> str:
    """Display title, e.g. for a merge request created from the agent's changes."""
    if isinstance(task, IssueCommentTask):
        issue = task.fetched_data.issue
        return issue.title if issue else "Issue"
    if isinstance(task, MergeRequestCommentTask):
        mr = task.fetched_data.merge_request
        return mr.title if mr else "Merge Request"
    if isinstance(task, MergeRequestEventTask):
        mr = task.fetched_data.merge_request
        return mr.title if mr else task.context.title
    if isinstance(task, FixCITask):
        return f"Fix CI failures in pipeline #{task.pipeline_id}"
    raise _unhandled(task)

