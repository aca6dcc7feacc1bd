"""Does a comment address the agent?

Two ways to address the agent:

- A literal marker (``@junie``), matched case-insensitively. This is the
  fast path and never touches the API.
- A GitLab-native reference to the agent's bot user. Project and group access
  tokens each create a bot user whose handle looks like
  ``@project_123_bot_<hash>`` / ``@group_45_bot_<hash>``. The bot may be
  scoped to the project or to any enclosing group, so tokens are collected
  from the project and every ancestor group, filtered to those whose name
  matches the configured tagging pattern, and their owners' handles are
  compared against the references found in the text.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from junie_gitlab.models import AccessToken

if TYPE_CHECKING:
    from collections.abc import Iterable

    from junie_gitlab.gitlab_client import GitLabClient

logger = logging.getLogger(__name__)

IDENTITY_REFERENCE_RE = re.compile(r"@(project|group)_[-a-zA-Z0-9_]+")

# GitLab caps subgroup nesting at 20 levels.
MAX_GROUP_DEPTH = 20


def find_literal_mention(text: str, markers: Iterable[str]) -> str | None:
    """Return the first literal marker contained in *text* (case-insensitive)."""
    lowered = text.lower()
    for marker in markers:
        if marker.lower() in lowered:
            return marker
    return None


def extract_identity_references(text: str) -> list[str]:
    """All ``@project_...`` / ``@group_...`` substrings in *text*."""
    return [m.group(0) for m in IDENTITY_REFERENCE_RE.finditer(text)]


class MentionDetector:
    """Decides whether a comment mentions the agent."""

    def __init__(
        self,
        client: GitLabClient,
        literal_mentions: Iterable[str],
        *,
        max_group_depth: int = MAX_GROUP_DEPTH,
    ):
        self.client = client
        self.literal_mentions = tuple(literal_mentions)
        self.max_group_depth = max_group_depth
        self._usernames: dict[int, str] = {}

    async def is_mentioned(self, project_id: int, text: str, tag_pattern: re.Pattern[str]) -> bool:
        marker = find_literal_mention(text, self.literal_mentions)
        if marker:
            logger.info("Detected literal mention %r", marker)
            return True

        references = extract_identity_references(text)
        if not references:
            return False

        tokens = await self.collect_tokens(project_id)
        candidates = [
            t for t in tokens if t.active and not t.revoked and tag_pattern.search(t.name)
        ]
        logger.debug(
            "%d of %d tokens match tagging pattern %r",
            len(candidates),
            len(tokens),
            tag_pattern.pattern,
        )

        for token in candidates:
            username = await self._username(token.user_id)
            if any(username in ref for ref in references):
                logger.info("Detected mention of '%s' (token '%s')", username, token.name)
                return True
        return False

    async def collect_tokens(self, project_id: int) -> list[AccessToken]:
        """Project tokens plus the tokens of every visible ancestor group.

        Walks the namespace ``parent_id`` chain one group at a time. A 403 at
        any level ends the walk: the remaining ancestors are simply not
        visible to this token. The walk is bounded by ``max_group_depth`` and
        stops on a repeated group id.
        """
        raw_tokens = await self.client.list_project_access_tokens(project_id)
        logger.debug("Found %d project tokens", len(raw_tokens))

        project = await self.client.get_project(project_id)
        namespace = project.get("namespace") or {}
        group_id: int | None = namespace.get("id") if namespace.get("kind") == "group" else None
        if group_id is None:
            logger.debug("Project %s has no parent group", project_id)

        visited: set[int] = set()
        while group_id is not None:
            if group_id in visited:
                logger.warning("Group hierarchy cycle at group %s, stopping traversal", group_id)
                break
            if len(visited) >= self.max_group_depth:
                logger.warning(
                    "Group hierarchy deeper than %d levels, stopping traversal",
                    self.max_group_depth,
                )
                break
            visited.add(group_id)

            group_tokens = await self.client.list_group_access_tokens(group_id)
            if group_tokens is None:
                logger.debug("No permission to read tokens of group %s, stopping", group_id)
                break
            raw_tokens.extend(group_tokens)
            logger.debug("Found %d tokens in group %s", len(group_tokens), group_id)

            group = await self.client.get_group(group_id)
            if group is None:
                logger.debug("No permission to read group %s, stopping", group_id)
                break
            group_id = group.get("parent_id")

        logger.debug("Total tokens collected: %d", len(raw_tokens))
        return [AccessToken.model_validate(t) for t in raw_tokens]

    async def _username(self, user_id: int) -> str:
        if user_id not in self._usernames:
            user = await self.client.get_user(user_id)
            self._usernames[user_id] = user["username"]
        return self._usernames[user_id]
