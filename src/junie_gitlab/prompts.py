"""Fixed messages and specialized task templates.

Trigger phrases select a specialized, fully pre-rendered task instead of the
generic context template built by :mod:`junie_gitlab.formatter`.
"""

from __future__ import annotations

import re

# ── Trigger Phrases ──────────────────────────────────────────────────────────

CODE_REVIEW_ACTION = "code-review"
FIX_CI_ACTION = "fix-ci"
MINOR_FIX_ACTION = "minor-fix"


def contains_trigger(text: str | None, action: str) -> bool:
    """Case-insensitive substring test for a trigger phrase."""
    return bool(text) and action.lower() in text.lower()


def extract_minor_fix_request(text: str) -> str | None:
    """The free text following the ``minor-fix`` keyword, stripped.

    ``"@junie minor-fix rename foo to bar"`` → ``"rename foo to bar"``.
    Returns ``None`` when nothing follows the keyword.
    """
    match = re.search(re.escape(MINOR_FIX_ACTION), text, re.IGNORECASE)
    if match is None:
        return None
    remainder = text[match.end() :].lstrip(":").strip()
    return remainder or None


# ── Feedback Messages ────────────────────────────────────────────────────────

STARTED_MESSAGE = "Hey, it's Junie by JetBrains! I started processing your request"
FINISHED_PREFIX = "✅ Junie finished\n\n"
NO_CHANGES_MESSAGE = "Task completed. No changes were made."
MR_LINK_PREFIX = "📝 Merge Request link: "
STARTED_REACTION = "thumbsup"

MR_INTRO_HEADER = (
    "## Hey! This MR was made for you with Junie, the coding agent by JetBrains "
    "Early Access Preview\n\n"
    "It's still learning, developing, and might make mistakes. Please make sure you "
    "review the changes before you accept them.\n"
    "We'd love your feedback, join our Discord to share bugs, ideas: "
    "[here](https://jb.gg/junie/github).\n\n"
)

# ── System Notes ─────────────────────────────────────────────────────────────

GIT_OPERATIONS_NOTE = (
    "\n\nIMPORTANT: Do NOT commit or push changes. The system will handle all git "
    "operations (staging, committing, and pushing) automatically."
)

_SUMMARY_POSTING_NOTE = (
    "\n\nIMPORTANT: Do NOT post your summary as a comment. The summary will be posted "
    "automatically by the system."
)

_THREAD_REPLY_NOTE = (
    "\n\nIMPORTANT: If you are responding to a question in an existing discussion thread "
    "(user tagged you in <user_instruction> in Discussion #...), DO NOT use MCP tools to "
    "create new comments - your response will be automatically posted as a reply in that "
    "thread."
)


def mcp_note(
    project_id: int,
    *,
    issue_id: int | None = None,
    merge_request_id: int | None = None,
    comment_id: int | None = None,
) -> str:
    """Identifiers the agent's GitLab tools need, plus posting rules."""
    lines = ["\nContent for MCP usage (if needed):", f"current project ID: {project_id}"]
    if issue_id is not None:
        lines.append(f"current issue ID: {issue_id}")
    if merge_request_id is not None:
        lines.append(f"current merge request ID: {merge_request_id}")
    if comment_id is not None:
        lines.append(f"current comment ID: {comment_id}")

    note = "\n".join(lines) + _SUMMARY_POSTING_NOTE
    if merge_request_id is not None and comment_id is not None:
        note += _THREAD_REPLY_NOTE
    return note


# ── Specialized Tasks ────────────────────────────────────────────────────────


def code_review_prompt(merge_request_id: int) -> str:
    return f"""
Your task is to review Merge Request #{merge_request_id}:

1. Use the 'gitlab.get_merge_request_diffs' MCP tool with mergeRequestIid={merge_request_id} to get the diff.
2. Review this diff according to the criteria below.
3. For each specific finding, use the 'gitlab.create_merge_request_thread' MCP tool (if available) to provide feedback directly on the code with suggestions.
4. Once all findings are posted (or if the tool is unavailable), submit with your review as a bullet point list.

Additional instructions:
1. Review ONLY the changed lines against the Core Review Areas below, prioritizing repository style/guidelines adherence and avoiding overcomplication.
2. You may open files or search the project to understand context. Do NOT run tests, build, or make any modifications.
3. Do NOT create any new files. Do NOT commit or push any changes. This is a read-only code review and you don't have write access to the repository.

### Core Review Areas

1. **Adherence with this repository style and guidelines**
   - Naming, formatting, and package structure consistency with existing code and modules.
   - Reuse of existing utilities/patterns; avoiding introduction of new dependencies.

2. **Avoiding overcomplications**
   - Avoid new abstractions, frameworks, premature generalization, or unnecessarily complicated solutions.
   - Avoid touching of unrelated files.
   - Avoid unnecessary indirection (wrappers, flags, configuration) and ensure straightforward control flow.
   - Do not allow duplicate logic.

### If obviously applicable to the CHANGED lines only
- Security: newly introduced unsafe input handling, command execution, or data exposure.
- Performance: unnecessary allocations/loops/heavy work introduced by the change.
- Error handling: swallowing exceptions or deviating from existing error-handling patterns.

### Output Format
- If the 'gitlab.create_merge_request_thread' MCP tool is available, use it for each specific finding with inline comments on code lines.
- **To create inline comments on specific lines, use the `position` parameter**:
    - `position.position_type`: Set to "text"
    - `position.base_sha`: Base commit SHA (from diff metadata)
    - `position.head_sha`: Head commit SHA (from diff metadata)
    - `position.start_sha`: Start commit SHA (usually same as base_sha)
    - `position.new_path`: Path to the file (e.g., "src/file.py")
    - `position.old_path`: Path to the file (usually same as new_path)
    - `position.new_line`: Line number for added/changed lines
    - `position.old_line`: Line number for removed lines
    - Note: For unchanged lines, include both new_line and old_line
- `commentBody`: Your explanation. Use native GitLab suggestions syntax for code changes.
- Once all inline comments are posted, also submit your overall review as a bullet point list ONLY, with each comment following the format: - `File:Line: Comment`. Do NOT include any summary, introduction, conclusion, notes, or any other text, ONLY the bullet points.
- Comment ONLY on the actual modifications in this diff. Never comment on pre-existing code.
- Ensure that your suggestions are not already implemented, or equivalent to existing code.
- Keep it concise (15-25 words per comment). No praise, questions, or speculation; omit low-impact nits.
- If unsure whether a comment applies, omit it. If no feedback is warranted, submit `LGTM` only.
- Only make comments of medium or high impact and only if you have high confidence in your findings.
- For small changes, max 3 comments; medium 6-8; large 8-12.

Merge Request ID: {merge_request_id}
"""


def fix_ci_prompt(project_id: int, pipeline_id: int, merge_request_id: int | None = None) -> str:
    """Analyze a failed pipeline and suggest (not apply) a fix."""
    if merge_request_id is not None:
        diff_step = (
            f"   - Use 'gitlab.get_merge_request_diffs' tool with projectId={project_id} "
            f"and mergeRequestIid={merge_request_id} to get the MR diff\n"
        )
        correlation_steps = (
            "   - Correlate the error with changes in the MR diff.\n"
            "   - Determine if the failure is related to the MR diff or a pre-existing issue\n"
        )
        correlation_section = (
            "### Correlation with MR Changes\n"
            "[Explain which files/changes in this MR likely caused the failure, "
            "or state if it appears unrelated]\n"
        )
    else:
        diff_step = ""
        correlation_steps = (
            "   - Determine if the failure is related to recent changes or a pre-existing issue\n"
        )
        correlation_section = (
            "### Analysis\n"
            "[Explain the likely cause and whether this is related to recent changes]\n"
        )

    return f"""
Your task is to analyze CI failures and suggest fixes WITHOUT implementing them. Follow these steps:

### Steps to follow
1. Gather Information
   - Use 'gitlab.list_pipeline_jobs' tool with projectId={project_id} and pipelineId={pipeline_id} to get all jobs
   - Identify which jobs have failed (status: 'failed')
   - For each failed job, use 'gitlab.get_pipeline_job_output' tool with projectId={project_id} and jobId to retrieve the job logs
{diff_step}
2. If NO failed jobs were found:
   - Submit ONLY the following message:
   ---
   ## ✅ CI Status

   No failed checks found for this pipeline. All CI checks have passed or are still running.
   ---

3. If failed jobs WERE found, analyze each failure:
   - Open and explore relevant source files to understand the context
   - Do NOT run tests, build, or make any modifications to the codebase.
   - Identify the failing step and error message.
   - Determine the root cause (test failure, build error, linting issue, timeout, flaky test, etc.)
{correlation_steps}   - Do not use the 'gitlab.create_merge_request_thread' tool. Suggest changes only as shown in the template below.

4. Submit your analysis using EXACTLY the output format described below. You MUST always follow this template structure precisely, do not add an extra section or change the format.

### Output Format
---
## 🔴 CI Failure Analysis

**Failed Job:** [job name]
**Pipeline:** {pipeline_id}
**Failed Stage:** [stage name if identifiable]
**Error Type:** [test failure / build error / lint error / timeout / other]

### Error Details
```
[relevant error message/stack trace - keep concise]
```

### Root Cause
[1-3 sentences explaining why this failed]

{correlation_section}
## 🔧 Suggested Fix

### What needs to change
[Clear description of the fix approach]

### Files to modify
- `File:Line:`: [what needs to change and why]

### Code changes
```[language]
// Suggested code snippet or pseudocode
```
---
"""


def minor_fix_prompt(user_request: str | None, *, entity: str) -> str:
    """Apply one narrowly-scoped change.

    Args:
        user_request: The text after the ``minor-fix`` keyword, if any.
        entity: Human-readable reference, e.g. ``"Merge Request !12"``.
    """
    if user_request:
        request_block = f"<user_request>\n{user_request}\n</user_request>"
    else:
        request_block = (
            "<user_request>\n"
            f"No explicit request was given. Read the latest comments on {entity} and apply "
            "the single small change they ask for.\n"
            "</user_request>"
        )

    return f"""
Your task is to apply ONE minor, narrowly-scoped change requested on {entity}.

{request_block}

Rules:
1. Change only what the request asks for. Do NOT refactor, reformat, or touch unrelated code.
2. Keep the diff as small as possible; prefer editing existing lines over adding new files.
3. Follow the existing code style of the files you edit.
4. If the request is ambiguous or would require a large change, make no changes and explain why in your summary.
5. Finish with a one or two sentence summary of the change you made.
"""
