from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable

from selectolax.lexbor import LexborHTMLParser

from newsletter_digester.ai.client import TextGenerationClient
from newsletter_digester.extract.http_fetcher import HttpFetcher
from newsletter_digester.storage.db import CONF_PROMPT_HTML_EXTRACT, DEFAULT_HTML_EXTRACT_PROMPT, Storage
from newsletter_digester.storage.types import RawPost, Source
from newsletter_digester.utils import parse_date, to_absolute_url


logger = logging.getLogger(__name__)


MAX_HTML_CHARS = 10000

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")


def strip_scripts(html: str) -> str:
    tree = LexborHTMLParser(html or "")
    for node in tree.css("script, style"):
        node.decompose()
    return tree.html or ""


def build_system_prompt(base_prompt: str, instructions: str | None) -> str:
    prompt = base_prompt
    if instructions and instructions.strip():
        prompt += "\n\nAdditional instructions for this site:\n" + instructions
    return prompt


def strip_code_fence(text: str) -> str:
    text = (text or "").strip()
    text = _FENCE_OPEN_RE.sub("", text)
    text = _FENCE_CLOSE_RE.sub("", text)
    return text.strip()


def _bare_list(data: Any) -> list | None:
    return data if isinstance(data, list) else None


def _posts_key(data: Any) -> list | None:
    if isinstance(data, dict) and isinstance(data.get("posts"), list):
        return data["posts"]
    return None


def _first_list_value(data: Any) -> list | None:
    if isinstance(data, dict):
        for value in data.values():
            if isinstance(value, list):
                return value
    return None


def _single_object(data: Any) -> list | None:
    return [data] if isinstance(data, dict) else None


# checked in order; the first shape that matches wins
_RESPONSE_SHAPES: tuple[Callable[[Any], list | None], ...] = (
    _bare_list,
    _posts_key,
    _first_list_value,
    _single_object,
)


def parse_llm_response(text: str, base_url: str) -> list[RawPost]:
    try:
        data = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        logger.error("failed to parse LLM response as JSON: %s", e)
        return []

    items: list = []
    for shape in _RESPONSE_SHAPES:
        found = shape(data)
        if found is not None:
            items = found
            break

    posts: list[RawPost] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        url = str(item.get("url") or "").strip()
        if not title or not url:
            continue
        posts.append(
            RawPost(
                title=title,
                url=to_absolute_url(url, base_url),
                content=str(item.get("content") or ""),
                date=parse_date(str(item.get("date") or "")),
            )
        )
    return posts


class LlmExtractor:
    def __init__(self, fetcher: HttpFetcher, store: Storage, client: TextGenerationClient) -> None:
        self._fetcher = fetcher
        self._store = store
        self._client = client

    async def extract(self, source: Source) -> list[RawPost]:
        html = await self._fetcher.fetch(source.url)
        cleaned = strip_scripts(html)

        base_prompt = await self._store.get_config(CONF_PROMPT_HTML_EXTRACT) or DEFAULT_HTML_EXTRACT_PROMPT
        system = build_system_prompt(base_prompt, source.extraction_instructions)
        user = f"Base URL: {source.url}\n\nHTML (truncated to first {MAX_HTML_CHARS} chars):\n{cleaned[:MAX_HTML_CHARS]}"

        text = await self._client.complete(
            [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ]
        )

        posts = parse_llm_response(text, source.url)
        logger.info("llm extracted %s posts from %s", len(posts), source.title)
        return posts
