from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from pathlib import Path

import aiosqlite

from newsletter_digester.storage.schema import SCHEMA_SQL
from newsletter_digester.storage.types import (
    CleanupResult,
    CreateResult,
    Duplicate,
    Inserted,
    Post,
    PostCandidate,
    Source,
    SOURCE_RSS,
    SOURCE_TYPES,
)
from newsletter_digester.utils import now_utc


logger = logging.getLogger(__name__)


CONF_SCHEDULE = "schedule"
CONF_OPENAI_API_KEY = "openai_api_key"
CONF_OPENAI_BASE_URL = "openai_base_url"
CONF_OPENAI_MODEL = "openai_model"
CONF_OPENAI_TEMPERATURE = "openai_temperature"
CONF_OPENAI_MAX_TOKENS = "openai_max_tokens"
CONF_SUMMARY_MAX_TOKENS = "summary_max_tokens"
CONF_SLACK_WEBHOOK_URL = "slack_webhook_url"
CONF_SLACK_CHANNELS = "slack_channels"
CONF_SLACK_BOT_NAME = "slack_bot_name"
CONF_SLACK_BOT_ICON = "slack_bot_icon"
CONF_ENABLE_DIGEST = "enable_cron_slack_digest"
CONF_PROMPT_SUMMARIZATION = "prompt_summarization"
CONF_PROMPT_HTML_EXTRACT = "prompt_html_extract_base"
CONF_RSS_RECENCY_DAYS = "rss_recency_days"
CONF_CLEANUP_CONTENT_DAYS = "cleanup_content_days"
CONF_CLEANUP_DELETE_DAYS = "cleanup_delete_days"


DEFAULT_SUMMARIZATION_PROMPT = (
    "You are a content summarizer. Summarize the following article content in 2-3 concise "
    "sentences. Focus on the main points and key takeaways."
)

DEFAULT_HTML_EXTRACT_PROMPT = """You are an HTML parser. Extract all posts/articles/links from the provided HTML.
Return ONLY a JSON array with this exact structure, no additional text:

[
  {
    "title": "Post title",
    "url": "https://full-url.com/post",
    "content": "Post content or description"
  }
]

Rules:
- Convert relative URLs to absolute URLs using the base domain
- Extract all distinct posts, articles, or links
- If content is not available, use an empty string
- Ensure all URLs are complete and valid"""


CONFIG_DEFAULTS: dict[str, str] = {
    CONF_SCHEDULE: "0 9 * * *",
    CONF_OPENAI_API_KEY: "",
    CONF_OPENAI_BASE_URL: "https://api.openai.com/v1",
    CONF_OPENAI_MODEL: "gpt-3.5-turbo",
    CONF_OPENAI_TEMPERATURE: "0.3",
    CONF_OPENAI_MAX_TOKENS: "",
    CONF_SUMMARY_MAX_TOKENS: "200",
    CONF_SLACK_WEBHOOK_URL: "",
    CONF_SLACK_CHANNELS: "",
    CONF_SLACK_BOT_NAME: "",
    CONF_SLACK_BOT_ICON: "",
    CONF_ENABLE_DIGEST: "0",
    CONF_PROMPT_SUMMARIZATION: DEFAULT_SUMMARIZATION_PROMPT,
    CONF_PROMPT_HTML_EXTRACT: DEFAULT_HTML_EXTRACT_PROMPT,
    CONF_RSS_RECENCY_DAYS: "7",
    CONF_CLEANUP_CONTENT_DAYS: "7",
    CONF_CLEANUP_DELETE_DAYS: "365",
}


_SOURCE_FIELDS = (
    "url",
    "title",
    "type",
    "extraction_rules",
    "extraction_instructions",
    "is_active",
    "last_checked",
)

_POST_FIELDS = (
    "summary",
    "notified",
    "flagged",
    "content",
    "full_content",
)

_POST_SELECT = "SELECT p.*, s.title AS source_title FROM posts p LEFT JOIN sources s ON s.id=p.source_id"


def _row_to_source(row: aiosqlite.Row) -> Source:
    return Source(
        id=int(row["id"]),
        url=row["url"],
        title=row["title"],
        type=row["type"],
        extraction_rules=row["extraction_rules"],
        extraction_instructions=row["extraction_instructions"],
        is_active=bool(row["is_active"]),
        last_checked=row["last_checked"],
        created_at=row["created_at"],
    )


def _row_to_post(row: aiosqlite.Row) -> Post:
    return Post(
        id=int(row["id"]),
        source_id=int(row["source_id"]),
        url=row["url"],
        title=row["title"],
        content=row["content"],
        full_content=row["full_content"],
        summary=row["summary"],
        date=row["date"],
        notified=bool(row["notified"]),
        flagged=bool(row["flagged"]),
        created_at=row["created_at"],
        source_title=row["source_title"],
    )


def _to_db_value(value):
    if isinstance(value, bool):
        return 1 if value else 0
    return value


class Storage:
    def __init__(self, sqlite_path: Path):
        self._path = sqlite_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._path.as_posix())
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA_SQL)
        await self._db.executemany(
            "INSERT OR IGNORE INTO config(key, value) VALUES(?, ?)",
            list(CONFIG_DEFAULTS.items()),
        )
        await self._db.commit()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("storage not connected")
        return self._db

    # Sources

    async def create_source(self, source: Source) -> Source:
        if source.type not in SOURCE_TYPES:
            raise ValueError(f"invalid source type: {source.type}")
        async with self._lock:
            conn = self._conn()
            cursor = await conn.execute(
                "INSERT INTO sources(url, title, type, extraction_rules, extraction_instructions, is_active, created_at) "
                "VALUES(?, ?, ?, ?, ?, ?, ?)",
                (
                    source.url,
                    source.title,
                    source.type or SOURCE_RSS,
                    source.extraction_rules,
                    source.extraction_instructions,
                    1 if source.is_active else 0,
                    now_utc().isoformat(),
                ),
            )
            source_id = cursor.lastrowid
            await conn.commit()
            return await self._get_source_locked(int(source_id))

    async def _get_source_locked(self, source_id: int) -> Source | None:
        cursor = await self._conn().execute("SELECT * FROM sources WHERE id=?", (source_id,))
        row = await cursor.fetchone()
        return _row_to_source(row) if row is not None else None

    async def get_source(self, source_id: int) -> Source | None:
        async with self._lock:
            return await self._get_source_locked(source_id)

    async def list_sources(self) -> list[Source]:
        async with self._lock:
            cursor = await self._conn().execute("SELECT * FROM sources ORDER BY created_at DESC, id DESC")
            rows = await cursor.fetchall()
            return [_row_to_source(r) for r in rows]

    async def get_active_sources(self) -> list[Source]:
        async with self._lock:
            cursor = await self._conn().execute(
                "SELECT * FROM sources WHERE is_active=1 ORDER BY created_at DESC, id DESC"
            )
            rows = await cursor.fetchall()
            return [_row_to_source(r) for r in rows]

    async def update_source(self, source_id: int, **fields) -> Source | None:
        unknown = set(fields) - set(_SOURCE_FIELDS)
        if unknown:
            raise ValueError(f"unknown source fields: {sorted(unknown)}")
        if "type" in fields and fields["type"] not in SOURCE_TYPES:
            raise ValueError(f"invalid source type: {fields['type']}")

        async with self._lock:
            conn = self._conn()
            if fields:
                assignments = ", ".join(f"{k}=?" for k in fields)
                await conn.execute(
                    f"UPDATE sources SET {assignments} WHERE id=?",
                    (*(_to_db_value(v) for v in fields.values()), source_id),
                )
                await conn.commit()
            return await self._get_source_locked(source_id)

    async def delete_source(self, source_id: int) -> bool:
        async with self._lock:
            conn = self._conn()
            cursor = await conn.execute("DELETE FROM sources WHERE id=?", (source_id,))
            await conn.commit()
            return cursor.rowcount > 0

    # Posts

    async def create_post(self, candidate: PostCandidate) -> CreateResult:
        """Insert a post unless (url, title) already exists.

        The UNIQUE(url, title) constraint is the only dedup check; a conflict
        yields Duplicate rather than an error.
        """
        date = (candidate.date or now_utc()).isoformat()
        async with self._lock:
            conn = self._conn()
            cursor = await conn.execute(
                "INSERT INTO posts(source_id, date, url, title, content, notified, flagged, created_at) "
                "VALUES(?, ?, ?, ?, ?, 0, 0, ?) "
                "ON CONFLICT(url, title) DO NOTHING",
                (
                    candidate.source_id,
                    date,
                    candidate.url,
                    candidate.title,
                    candidate.content or None,
                    now_utc().isoformat(),
                ),
            )
            if cursor.rowcount == 0:
                await conn.commit()
                return Duplicate(url=candidate.url, title=candidate.title)

            post_id = int(cursor.lastrowid)
            await conn.commit()
            post = await self._get_post_locked(post_id)
            return Inserted(post=post)

    async def _get_post_locked(self, post_id: int) -> Post | None:
        cursor = await self._conn().execute(f"{_POST_SELECT} WHERE p.id=?", (post_id,))
        row = await cursor.fetchone()
        return _row_to_post(row) if row is not None else None

    async def get_post(self, post_id: int) -> Post | None:
        async with self._lock:
            return await self._get_post_locked(post_id)

    async def list_posts(
        self,
        source_id: int | None = None,
        search: str | None = None,
        notified: bool | None = None,
        limit: int | None = None,
    ) -> list[Post]:
        sql = f"{_POST_SELECT} WHERE 1=1"
        args: list = []
        if source_id is not None:
            sql += " AND p.source_id=?"
            args.append(source_id)
        if search:
            sql += " AND p.title LIKE ?"
            args.append(f"%{search}%")
        if notified is not None:
            sql += " AND p.notified=?"
            args.append(1 if notified else 0)
        sql += " ORDER BY p.created_at DESC, p.id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            args.append(int(limit))

        async with self._lock:
            cursor = await self._conn().execute(sql, tuple(args))
            rows = await cursor.fetchall()
            return [_row_to_post(r) for r in rows]

    async def update_post(self, post_id: int, **fields) -> Post | None:
        unknown = set(fields) - set(_POST_FIELDS)
        if unknown:
            raise ValueError(f"unknown post fields: {sorted(unknown)}")

        async with self._lock:
            conn = self._conn()
            if fields:
                assignments = ", ".join(f"{k}=?" for k in fields)
                await conn.execute(
                    f"UPDATE posts SET {assignments} WHERE id=?",
                    (*(_to_db_value(v) for v in fields.values()), post_id),
                )
                await conn.commit()
            return await self._get_post_locked(post_id)

    async def delete_post(self, post_id: int) -> bool:
        async with self._lock:
            conn = self._conn()
            cursor = await conn.execute("DELETE FROM posts WHERE id=?", (post_id,))
            await conn.commit()
            return cursor.rowcount > 0

    # Config

    async def get_config(self, key: str) -> str | None:
        async with self._lock:
            cursor = await self._conn().execute("SELECT value FROM config WHERE key=?", (key,))
            row = await cursor.fetchone()
            return row["value"] if row is not None else None

    async def set_config(self, key: str, value: str) -> None:
        async with self._lock:
            conn = self._conn()
            await conn.execute(
                "INSERT INTO config(key, value) VALUES(?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, str(value)),
            )
            await conn.commit()

    async def get_all_config(self) -> dict[str, str]:
        async with self._lock:
            cursor = await self._conn().execute("SELECT key, value FROM config")
            rows = await cursor.fetchall()
            return {r["key"]: r["value"] for r in rows}

    async def get_config_int(self, key: str) -> int:
        value = await self.get_config(key)
        try:
            return int(value)
        except (TypeError, ValueError):
            return int(CONFIG_DEFAULTS[key])

    # Retention

    async def cleanup(self, content_days: int, delete_days: int) -> CleanupResult:
        """Clear bodies of posts older than content_days, delete posts older than delete_days.

        Both windows are in days.
        """
        async with self._lock:
            conn = self._conn()
            now = now_utc()
            content_cutoff = (now - timedelta(days=content_days)).isoformat()
            delete_cutoff = (now - timedelta(days=delete_days)).isoformat()

            cursor = await conn.execute(
                "UPDATE posts SET content=NULL WHERE created_at < ? AND content IS NOT NULL",
                (content_cutoff,),
            )
            cleared = cursor.rowcount
            cursor = await conn.execute("DELETE FROM posts WHERE created_at < ?", (delete_cutoff,))
            deleted = cursor.rowcount
            await conn.commit()

        logger.info("cleanup: content cleared=%s posts deleted=%s", cleared, deleted)
        return CleanupResult(content_cleared=cleared, posts_deleted=deleted)
