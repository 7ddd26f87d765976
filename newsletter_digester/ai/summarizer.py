from __future__ import annotations

import logging
import re

from newsletter_digester.ai.client import TextGenerationClient
from newsletter_digester.storage.db import (
    CONF_PROMPT_SUMMARIZATION,
    CONF_SUMMARY_MAX_TOKENS,
    DEFAULT_SUMMARIZATION_PROMPT,
    Storage,
)


logger = logging.getLogger(__name__)


MAX_INPUT_CHARS = 10000

_EXTRA_BLANK_LINES_RE = re.compile(r"\n(?:[ \t]*\n){3,}")
# blank lines sitting between two list items ("- a\n\n- b", "1. a\n\n2. b")
_LIST_GAP_RE = re.compile(
    r"^([ \t]*(?:[-*•]|\d+[.)])[ \t]+.*)\n(?:[ \t]*\n)+(?=[ \t]*(?:[-*•]|\d+[.)])[ \t]+)",
    re.MULTILINE,
)


def tidy_summary(text: str) -> str:
    text = (text or "").strip()
    text = _EXTRA_BLANK_LINES_RE.sub("\n\n", text)
    return _LIST_GAP_RE.sub(r"\1\n", text)


class Summarizer:
    def __init__(self, store: Storage, client: TextGenerationClient) -> None:
        self._store = store
        self._client = client

    async def summarize(self, content: str) -> str:
        prompt = await self._store.get_config(CONF_PROMPT_SUMMARIZATION) or DEFAULT_SUMMARIZATION_PROMPT
        max_tokens = await self._store.get_config_int(CONF_SUMMARY_MAX_TOKENS)

        text = await self._client.complete(
            [
                {"role": "system", "content": prompt},
                {"role": "user", "content": (content or "")[:MAX_INPUT_CHARS]},
            ],
            max_tokens=max_tokens,
        )
        return tidy_summary(text)
