"""Reduce raw page markup to the content an extraction prompt needs."""

import re
from typing import Optional

from selectolax.parser import HTMLParser

from catalog_pipeline.config import settings

# Removed together with everything inside them
NOISE_TAGS = [
    "script",
    "style",
    "noscript",
    "svg",
    "iframe",
    "header",
    "footer",
    "nav",
    "aside",
    "form",
    "button",
    "input",
    "select",
    "textarea",
]

KEPT_ATTRIBUTES = ("href", "src")

TRUNCATION_MARKER = "\n[TRUNCATED]"

_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")
_EMPTY_TAG_RE = re.compile(r"<(\w+)>\s*</\1>", re.IGNORECASE)


def sanitize_html(raw_html: str, max_chars: Optional[int] = None) -> str:
    """
    Strip scripts, chrome and attributes from a page.

    Keeps headings, paragraphs, tables, links and images, which is what the
    extraction prompts rely on.

    Args:
        raw_html: Page markup as returned by the fetcher
        max_chars: Output ceiling (defaults to settings.sanitized_html_max_chars)

    Returns:
        Cleaned markup, suffixed with a truncation marker if it was cut
    """
    if not raw_html:
        return ""

    max_chars = max_chars or settings.sanitized_html_max_chars

    parser = HTMLParser(_COMMENT_RE.sub("", raw_html))
    parser.strip_tags(NOISE_TAGS)

    root = parser.root
    if root is not None:
        for node in root.traverse(include_text=False):
            tag = node.tag or ""
            if tag.startswith(("_", "-")):
                continue
            for name in list(node.attributes):
                if name.lower() not in KEPT_ATTRIBUTES:
                    del node.attrs[name]

    html = parser.html or ""
    html = _WHITESPACE_RE.sub(" ", html)
    html = _EMPTY_TAG_RE.sub("", html)

    if len(html) > max_chars:
        html = html[:max_chars] + TRUNCATION_MARKER

    return html.strip()
