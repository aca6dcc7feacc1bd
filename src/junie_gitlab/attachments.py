"""Download files attached to GitLab markdown so the agent can read them.

Comment text references uploads as ``/uploads/<hash>/<filename>``. Those are
served from the web host (``<host>/-/project/<id>/uploads/...``) rather than
the API, need the same ``PRIVATE-TOKEN`` and are unreachable from inside the
agent's sandbox, so they are fetched up front and the references rewritten to
local paths.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from junie_gitlab.gitlab_client import GitLabClient

logger = logging.getLogger(__name__)

UPLOAD_RE = re.compile(r"/uploads/[a-zA-Z0-9]+/[^)\s\"']+", re.IGNORECASE)


def extract_uploads(text: str) -> list[str]:
    """Unique upload paths in *text*, in order of first appearance."""
    return list(dict.fromkeys(m.group(0) for m in UPLOAD_RE.finditer(text)))


def replace_attachments_in_text(text: str, replacements: dict[str, str]) -> str:
    for original, local in replacements.items():
        text = text.replace(original, local)
    return text


async def download_attachments(
    client: GitLabClient,
    text: str,
    *,
    project_id: int,
    host: str,
    download_dir: Path,
) -> dict[str, str]:
    """Download every upload referenced in *text*.

    Returns a mapping of upload path to local file path. Uploads that fail to
    download are logged and left out of the mapping.
    """
    uploads = extract_uploads(text)
    if not uploads:
        return {}
    logger.debug("Found %d unique upload(s)", len(uploads))

    downloaded: dict[str, str] = {}
    for upload_path in uploads:
        try:
            content = await client.download_upload(host, project_id, upload_path)
        except httpx.HTTPError as e:
            logger.warning("Could not download %s: %s", upload_path, e)
            continue

        download_dir.mkdir(parents=True, exist_ok=True)
        local_path = download_dir / upload_path.rsplit("/", 1)[-1]
        local_path.write_bytes(content)
        downloaded[upload_path] = str(local_path)
        logger.debug("Downloaded %s -> %s", upload_path, local_path)

    if downloaded:
        logger.info("Downloaded %d attachment(s)", len(downloaded))
    return downloaded


async def process_markdown_attachments(
    client: GitLabClient,
    text: str | None,
    *,
    project_id: int,
    host: str,
    download_dir: Path,
) -> str:
    """Download attachments referenced in *text* and point the text at them."""
    if not text:
        return ""
    replacements = await download_attachments(
        client, text, project_id=project_id, host=host, download_dir=download_dir
    )
    if not replacements:
        return text
    return replace_attachments_in_text(text, replacements)
