"""Configuration loading for junie-gitlab.

Configuration is a single immutable :class:`JunieConfig` value that the CLI
builds once and threads explicitly through the classifier, formatter and
runner. Nothing downstream reads the environment on its own.

Sources, lowest precedence first:

1. Optional YAML file (``--config`` or ``JUNIE_CONFIG``).
2. Environment variables (the CI job's variables).
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# The one documented literal marker set. Identity-token mentions cover
# every other way of addressing the bot.
DEFAULT_LITERAL_MENTIONS: tuple[str, ...] = ("@junie",)

DEFAULT_BOT_TAGGING_PATTERN = r"junie"


class JunieConfig(BaseModel):
    """Process-wide settings for one pipeline run."""

    model_config = ConfigDict(frozen=True)

    api_v4_url: str = Field(description="GitLab REST base, e.g. https://gitlab.com/api/v4")
    gitlab_token: str = Field(repr=False)
    bot_tagging_pattern: str = Field(
        default=DEFAULT_BOT_TAGGING_PATTERN,
        description="Regex matched against access token names to find the bot identity",
    )
    literal_mentions: tuple[str, ...] = DEFAULT_LITERAL_MENTIONS
    use_mcp: bool = False
    custom_prompt: str | None = None
    cache_dir: Path = Path("/junieCache")
    download_attachments: bool = True
    attachments_dir: Path = Path("/tmp/gitlab-attachments")

    @field_validator("api_v4_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("bot_tagging_pattern")
    @classmethod
    def _validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid bot tagging pattern {v!r}: {e}") from e
        return v

    @field_validator("custom_prompt")
    @classmethod
    def _blank_prompt_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @property
    def tag_regex(self) -> re.Pattern[str]:
        return re.compile(self.bot_tagging_pattern)

    @property
    def gitlab_host(self) -> str:
        """Origin of the GitLab instance (scheme + host), without ``/api/v4``."""
        parts = urlsplit(self.api_v4_url)
        return f"{parts.scheme}://{parts.netloc}"


# env var → config field
ENV_OVERRIDES: dict[str, str] = {
    "JUNIE_API_V4_URL": "api_v4_url",
    "CI_API_V4_URL": "api_v4_url",
    "JUNIE_GITLAB_TOKEN": "gitlab_token",
    "JUNIE_BOT_TAGGING_PATTERN": "bot_tagging_pattern",
    "JUNIE_USE_MCP": "use_mcp",
    "JUNIE_PROMPT": "custom_prompt",
    "JUNIE_CACHE_DIR": "cache_dir",
    "JUNIE_DOWNLOAD_ATTACHMENTS": "download_attachments",
    "JUNIE_ATTACHMENTS_DIR": "attachments_dir",
}

_BOOL_FIELDS = {"use_mcp", "download_attachments"}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
    **overrides,
) -> JunieConfig:
    """Load configuration from an optional YAML file plus the environment.

    Args:
        path: YAML file. Falls back to ``JUNIE_CONFIG`` when not given.
        env: Environment mapping (defaults to ``os.environ``).
        **overrides: Explicit values (e.g. from CLI flags); highest precedence.
            ``None`` values are ignored.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist.
        ValueError: If required settings are missing or invalid.
    """
    env = os.environ if env is None else env
    raw: dict = {}

    config_path = path or (Path(env["JUNIE_CONFIG"]) if env.get("JUNIE_CONFIG") else None)
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")

    # JUNIE_* wins over CI_* for the same field, so apply CI_* first.
    for key in sorted(ENV_OVERRIDES, key=lambda k: k.startswith("JUNIE_")):
        value = env.get(key)
        if value is None or value == "":
            continue
        field = ENV_OVERRIDES[key]
        raw[field] = _parse_bool(value) if field in _BOOL_FIELDS else value

    if "literal_mentions" in raw and isinstance(raw["literal_mentions"], list):
        raw["literal_mentions"] = tuple(raw["literal_mentions"])

    raw.update({k: v for k, v in overrides.items() if v is not None})

    missing = [name for name in ("api_v4_url", "gitlab_token") if not raw.get(name)]
    if missing:
        raise ValueError(f"Missing required configuration: {', '.join(missing)}")

    config = JunieConfig(**raw)
    logger.info(
        "Loaded config: api=%s, mcp=%s, custom_prompt=%s",
        config.api_v4_url,
        config.use_mcp,
        "set" if config.custom_prompt else "none",
    )
    return config
