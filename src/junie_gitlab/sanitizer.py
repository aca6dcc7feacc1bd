"""Prompt-injection hardening for untrusted GitLab text.

Everything that reaches the agent (comment bodies, titles, discussion notes,
the assembled prompt itself) passes through :func:`sanitize`. The stages run
in a fixed order because each one assumes the output of the previous one:

1. HTML comments (``<!-- ... -->``), the usual hidden-instruction vector.
2. Invisible characters: zero-width, control (tab/newline/CR kept), soft
   hyphen, bidirectional overrides.
3. Markdown image alt text: ``![alt](url)`` → ``![](url)``.
4. Markdown link titles: ``[text](url "title")`` → ``[text](url)``.
5. HTML attributes that carry hidden text: alt, title, aria-label, data-*,
   placeholder.
6. Numeric/hex HTML entities, decoded only inside printable ASCII (32-126).
   Anything else is dropped.
7. GitLab token literals → ``[REDACTED_TOKEN]``.

Entity decoding can reassemble something an earlier stage would have removed
(``&#60;!-- --&#62;``), so the pipeline is re-applied until the text stops
changing. Every stage only ever shortens the text, so this terminates.
"""

from __future__ import annotations

import re

REDACTED_TOKEN = "[REDACTED_TOKEN]"

_HTML_COMMENT_RE = re.compile(r"<!--[\s\S]*?-->")

_ZERO_WIDTH_RE = re.compile("[\u200b\u200c\u200d\ufeff]")
# Control characters except \t (0x09), \n (0x0A) and \r (0x0D)
_CONTROL_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_SOFT_HYPHEN_RE = re.compile("\u00ad")
_BIDI_RE = re.compile("[\u202a-\u202e\u2066-\u2069]")

_IMAGE_ALT_RE = re.compile(r"!\[[^\]]*\]\(")

_LINK_TITLE_DOUBLE_RE = re.compile(r'(\[[^\]]*\]\([^)]+)\s+"[^"]*"\)')
_LINK_TITLE_SINGLE_RE = re.compile(r"(\[[^\]]*\]\([^)]+)\s+'[^']*'\)")

_HIDDEN_ATTRIBUTES = ("alt", "title", "aria-label", r"data-[a-zA-Z0-9-]+", "placeholder")
_HIDDEN_ATTRIBUTE_RES = [
    pattern
    for name in _HIDDEN_ATTRIBUTES
    for pattern in (
        re.compile(rf"""\s{name}\s*=\s*["'][^"']*["']""", re.IGNORECASE),
        re.compile(rf"\s{name}\s*=\s*[^\s>]+", re.IGNORECASE),
    )
]

_DECIMAL_ENTITY_RE = re.compile(r"&#(\d+);")
_HEX_ENTITY_RE = re.compile(r"&#x([0-9a-fA-F]+);")

_TOKEN_RES = (
    re.compile(r"glpat-[A-Za-z0-9_-]{20,}"),  # personal access tokens
    re.compile(r"gldt-[A-Za-z0-9_-]{20,}"),  # deploy tokens
    re.compile(r"GR13[A-Za-z0-9]{20,}"),  # runner registration tokens
)


def strip_html_comments(content: str) -> str:
    return _HTML_COMMENT_RE.sub("", content)


def strip_invisible_characters(content: str) -> str:
    content = _ZERO_WIDTH_RE.sub("", content)
    content = _CONTROL_RE.sub("", content)
    content = _SOFT_HYPHEN_RE.sub("", content)
    return _BIDI_RE.sub("", content)


def strip_markdown_image_alt_text(content: str) -> str:
    return _IMAGE_ALT_RE.sub("![](", content)


def strip_markdown_link_titles(content: str) -> str:
    content = _LINK_TITLE_DOUBLE_RE.sub(r"\1)", content)
    return _LINK_TITLE_SINGLE_RE.sub(r"\1)", content)


def strip_hidden_attributes(content: str) -> str:
    for pattern in _HIDDEN_ATTRIBUTE_RES:
        content = pattern.sub("", content)
    return content


def _printable_or_empty(code: int) -> str:
    if 32 <= code <= 126:
        return chr(code)
    return ""


def normalize_html_entities(content: str) -> str:
    """Decode ``&#72;`` / ``&#x48;`` into ASCII, dropping non-printable ones."""
    content = _DECIMAL_ENTITY_RE.sub(lambda m: _printable_or_empty(int(m.group(1))), content)
    return _HEX_ENTITY_RE.sub(lambda m: _printable_or_empty(int(m.group(1), 16)), content)


def redact_gitlab_tokens(content: str) -> str:
    for pattern in _TOKEN_RES:
        content = pattern.sub(REDACTED_TOKEN, content)
    return content


_STAGES = (
    strip_html_comments,
    strip_invisible_characters,
    strip_markdown_image_alt_text,
    strip_markdown_link_titles,
    strip_hidden_attributes,
    normalize_html_entities,
    redact_gitlab_tokens,
)


def _apply_stages(content: str) -> str:
    for stage in _STAGES:
        content = stage(content)
    return content


def sanitize(content: str | None) -> str:
    """Return *content* with hidden and adversarial payloads removed.

    Total: never raises, and ``None`` or empty input yields ``""``.
    """
    if not content:
        return ""

    current = content
    while True:
        cleaned = _apply_stages(current)
        if cleaned == current:
            return cleaned
        current = cleaned
