from __future__ import annotations

import dataclasses
from urllib.parse import unquote_plus, urlsplit, urlunsplit
import re

from newsletter_digester.storage.types import RawPost


TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "ref",
        "reflink",
        "mod",
    }
)

# "(7 minute read)", "(3-minute read)", "(10 min read)", "(15 minutes read)"
_READ_TIME_RE = re.compile(
    r"\s*\(\s*\d+\s*(?:-\s*)?(?:mins?|minutes?)\s+read\s*\)\s*$",
    flags=re.IGNORECASE,
)


def clean_title(title: str | None) -> str | None:
    if not title:
        return title
    return _READ_TIME_RE.sub("", title)


def clean_url(url: str) -> str:
    """Drop tracking query parameters, keeping everything else byte-for-byte.

    Anything that does not parse as an absolute URL is returned unchanged.
    """
    if not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    if not parts.query:
        return url

    kept: list[str] = []
    for pair in parts.query.split("&"):
        if not pair:
            continue
        key = unquote_plus(pair.split("=", 1)[0])
        if key in TRACKING_PARAMS:
            continue
        kept.append(pair)

    return urlunsplit(parts._replace(query="&".join(kept)))


def normalize_post(post: RawPost) -> RawPost:
    return dataclasses.replace(
        post,
        title=clean_title(post.title) or post.title,
        url=clean_url(post.url),
    )
