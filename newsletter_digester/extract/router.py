from __future__ import annotations

import logging
from typing import Protocol

from newsletter_digester.storage.types import RawPost, Source


logger = logging.getLogger(__name__)


class Extractor(Protocol):
    async def extract(self, source: Source) -> list[RawPost]: ...


class ExtractionRouter:
    def __init__(self, extractors: dict[str, Extractor]) -> None:
        self._extractors = dict(extractors)

    def get(self, source_type: str) -> Extractor | None:
        return self._extractors.get(source_type)

    async def extract(self, source: Source) -> list[RawPost]:
        extractor = self._extractors.get(source.type)
        if extractor is None:
            logger.warning("unknown source type %r for source %s", source.type, source.id)
            return []
        return await extractor.extract(source)
