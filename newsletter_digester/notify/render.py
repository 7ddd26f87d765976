from __future__ import annotations

import re
from typing import Any

from newsletter_digester.storage.types import DigestItem, Post


UNKNOWN_SOURCE = "Unknown Source"

_BULLET_RE = re.compile(r"^[-*]\s+", re.MULTILINE)
_DOUBLE_STAR_RE = re.compile(r"\*\*([^*]+)\*\*")
_DOUBLE_UNDERSCORE_RE = re.compile(r"__([^_]+)__")


def to_slack_mrkdwn(text: str | None) -> str:
    """Convert common Markdown (bullets, **bold**, __bold__) to Slack mrkdwn."""
    if not text:
        return text or ""
    text = _BULLET_RE.sub("• ", text)
    text = _DOUBLE_STAR_RE.sub(r"*\1*", text)
    text = _DOUBLE_UNDERSCORE_RE.sub(r"*\1*", text)
    return text


def group_by_source(items: list[DigestItem]) -> dict[str, list[DigestItem]]:
    groups: dict[str, list[DigestItem]] = {}
    for item in items:
        groups.setdefault(item.source_title or UNKNOWN_SOURCE, []).append(item)
    return groups


def render_digest(items: list[DigestItem]) -> str:
    lines: list[str] = [f"*📬 New Posts Digest* ({len(items)} new posts)", ""]
    for source_title, group in group_by_source(items).items():
        lines.append(f"*{source_title}* ({len(group)})")
        for item in group:
            lines.append(f"• <{item.url}|{item.title}>")
            if item.summary:
                lines.append(f"  _{item.summary}_")
        lines.append("")
    return "\n".join(lines)


def render_post_blocks(post: Post | DigestItem) -> dict[str, Any]:
    text = f"*<{post.url}|{post.title}>*"
    if post.summary:
        text += "\n\n" + to_slack_mrkdwn(post.summary)
    return {
        "blocks": [
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": text},
            }
        ],
        "text": f"{post.title} - {post.url}",
    }
