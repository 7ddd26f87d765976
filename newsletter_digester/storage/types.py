from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


SOURCE_RSS = "rss"
SOURCE_HTML_RULES = "html_rules"
SOURCE_HTML_LLM = "html_llm"

SOURCE_TYPES = (SOURCE_RSS, SOURCE_HTML_RULES, SOURCE_HTML_LLM)


@dataclass(frozen=True)
class Source:
    id: int | None
    url: str
    title: str
    type: str = SOURCE_RSS
    extraction_rules: str | None = None
    extraction_instructions: str | None = None
    is_active: bool = True
    last_checked: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class RawPost:
    title: str
    url: str
    content: str = ""
    date: datetime | None = None
    source_rule: str | None = None


@dataclass(frozen=True)
class PostCandidate:
    source_id: int
    url: str
    title: str
    content: str
    date: datetime | None = None


@dataclass(frozen=True)
class Post:
    id: int
    source_id: int
    url: str
    title: str
    content: str | None
    full_content: str | None
    summary: str | None
    date: str | None
    notified: bool
    flagged: bool
    created_at: str
    source_title: str | None = None


@dataclass(frozen=True)
class Inserted:
    post: Post


@dataclass(frozen=True)
class Duplicate:
    url: str
    title: str


CreateResult = Inserted | Duplicate


@dataclass(frozen=True)
class CleanupResult:
    content_cleared: int
    posts_deleted: int


@dataclass
class DigestItem:
    """In-memory copy of a new post carried from persist to notification."""

    post_id: int
    title: str
    url: str
    source_title: str
    content: str = ""
    summary: str | None = None
