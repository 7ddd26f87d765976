from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

import feedparser

from newsletter_digester.errors import ParseError
from newsletter_digester.extract.http_fetcher import HttpFetcher
from newsletter_digester.storage.types import RawPost, Source
from newsletter_digester.utils import now_utc, parse_date


logger = logging.getLogger(__name__)


DEFAULT_RECENCY_DAYS = 7

_DATE_FIELDS = ("published", "updated", "created")


def _entry_content(entry: dict) -> str:
    for part in entry.get("content") or []:
        value = part.get("value") if isinstance(part, dict) else None
        if value:
            return str(value)
    return str(entry.get("summary") or entry.get("description") or "")


def _entry_date(entry: dict, now: datetime) -> datetime:
    # feedparser provides time_struct as entry.<field>_parsed when it understood the value
    for name in _DATE_FIELDS:
        raw = entry.get(name)
        ts = entry.get(f"{name}_parsed")
        if not raw and not ts:
            continue
        if ts:
            return datetime(*ts[:6], tzinfo=timezone.utc)
        parsed = parse_date(str(raw))
        if parsed is not None:
            return parsed
        logger.warning("rss invalid date %r, using now", raw)
        return now

    logger.warning("rss item without date (%s), using now", entry.get("title") or entry.get("link"))
    return now


class RssExtractor:
    def __init__(
        self,
        fetcher: HttpFetcher,
        recency_days: int = DEFAULT_RECENCY_DAYS,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._fetcher = fetcher
        self._recency = timedelta(days=recency_days)
        self._clock = clock

    async def extract(self, source: Source) -> list[RawPost]:
        text = await self._fetcher.fetch(source.url)
        feed = feedparser.parse(text)
        if getattr(feed, "bozo", 0):
            if not feed.entries:
                raise ParseError(f"unparseable feed {source.url}: {getattr(feed, 'bozo_exception', None)}")
            logger.warning("rss parse bozo=%s error=%s", feed.bozo, getattr(feed, "bozo_exception", None))

        now = self._clock()
        cutoff = now - self._recency

        items: list[RawPost] = []
        for entry in feed.entries:
            items.append(
                RawPost(
                    title=str(entry.get("title") or "Untitled"),
                    url=str(entry.get("link") or entry.get("id") or entry.get("guid") or ""),
                    content=_entry_content(entry),
                    date=_entry_date(entry, now),
                )
            )

        recent = [it for it in items if it.date >= cutoff]
        recent.sort(key=lambda it: it.date, reverse=True)

        logger.info("rss feed %s: %s total posts, %s within %s days", source.url, len(items), len(recent), self._recency.days)
        return recent
