"""Pipeline run orchestration.

One CI job runs ``prepare`` before the agent and ``report`` after it. The
agent itself, and the git work around it, happen between the two steps and
outside this package; they communicate through files in ``cache_dir``:

- ``junie_input.json``: the task payload handed to the agent.
- ``wrapper-outputs.env``: ``KEY=value`` lines sourced by the CI script
  (``DELETE_PIPELINE``, ``CHECKOUT_BRANCH``, ``TASK_TITLE``).
"""

from __future__ import annotations

import dataclasses
import json
import logging
import shlex
from pathlib import Path
from typing import TYPE_CHECKING

from junie_gitlab.attachments import process_markdown_attachments
from junie_gitlab.classifier import TaskExtractor
from junie_gitlab.feedback import finished_feedback, started_feedback, submit_feedback
from junie_gitlab.models import IssueCommentContext, MergeRequestCommentContext
from junie_gitlab.sanitizer import sanitize
from junie_gitlab.tasks import (
    Failed,
    IssueCommentTask,
    MergeRequestCommentTask,
    Task,
    TaskExtractionResult,
    task_payload,
    task_title,
)

if TYPE_CHECKING:
    from junie_gitlab.config import JunieConfig
    from junie_gitlab.gitlab_client import GitLabClient
    from junie_gitlab.models import EventContext

logger = logging.getLogger(__name__)

INPUT_FILENAME = "junie_input.json"
OUTPUTS_FILENAME = "wrapper-outputs.env"


def write_outputs(cache_dir: Path, values: dict[str, str]) -> Path:
    """Write ``KEY=value`` lines for the CI script to source.

    Values are flattened to one line and shell-quoted: titles and branch
    names come from users and must never expand when sourced.
    """
    cache_dir.mkdir(parents=True, exist_ok=True)
    path = cache_dir / OUTPUTS_FILENAME
    lines = [
        f"{key}={shlex.quote(' '.join(str(value).split()))}" for key, value in values.items()
    ]
    path.write_text("\n".join(lines) + "\n")
    return path


def read_agent_output(path: Path) -> tuple[str | None, str | None]:
    """The agent's ``(result, taskName)`` from its JSON output file."""
    data = json.loads(path.read_text())
    if not isinstance(data, dict):
        raise ValueError(f"Agent output {path} must be a JSON object")
    return data.get("result") or None, data.get("taskName") or None


class Runner:
    """Runs the ``prepare`` and ``report`` steps for one event."""

    def __init__(
        self,
        config: JunieConfig,
        client: GitLabClient,
        extractor: TaskExtractor | None = None,
    ):
        self.config = config
        self.client = client
        self.extractor = extractor or TaskExtractor(config, client)

    async def prepare(self, context: EventContext) -> TaskExtractionResult:
        """Classify, acknowledge, and hand the task to the agent."""
        result = await self.extractor.extract(context)
        if isinstance(result, Failed):
            logger.info("No task detected: %s", result.reason)
            write_outputs(self.config.cache_dir, {"DELETE_PIPELINE": "true"})
            return result

        if self.config.download_attachments:
            result = await self._with_local_attachments(result)

        for request in started_feedback(result):
            await submit_feedback(self.client, request)

        self.config.cache_dir.mkdir(parents=True, exist_ok=True)
        input_path = self.config.cache_dir / INPUT_FILENAME
        input_path.write_text(task_payload(result, use_mcp=self.config.use_mcp))
        logger.info("Task written to %s", input_path)

        write_outputs(
            self.config.cache_dir,
            {
                "CHECKOUT_BRANCH": result.checkout_branch or "",
                "TASK_TITLE": sanitize(task_title(result)),
            },
        )
        return result

    async def report(
        self,
        context: EventContext,
        agent_output: Path,
        created_mr_url: str | None = None,
    ) -> TaskExtractionResult:
        """Post the agent's result where the start message went."""
        result = await self.extractor.extract(context)
        if isinstance(result, Failed):
            logger.info("Nothing to report: %s", result.reason)
            return result

        outcome, task_name = read_agent_output(agent_output)
        for request in finished_feedback(result, outcome, task_name, created_mr_url):
            await submit_feedback(self.client, request)
        logger.info("Reported result for %s", type(result).__name__)
        return result

    async def _with_local_attachments(self, task: Task) -> Task:
        if not isinstance(task, (IssueCommentTask, MergeRequestCommentTask)):
            return task

        context: IssueCommentContext | MergeRequestCommentContext = task.context
        text = await process_markdown_attachments(
            self.client,
            context.comment_text,
            project_id=context.project_id,
            host=self.config.gitlab_host,
            download_dir=self.config.attachments_dir,
        )
        if text == context.comment_text:
            return task
        return dataclasses.replace(task, context=context.model_copy(update={"comment_text": text}))
