from __future__ import annotations

import pytest

from newsletter_digester.errors import FetchError
from newsletter_digester.extract.router import ExtractionRouter
from newsletter_digester.storage.types import SOURCE_HTML_RULES, SOURCE_RSS, RawPost, Source


class StubExtractor:
    def __init__(self, posts=None, error: Exception | None = None):
        self.posts = posts or []
        self.error = error
        self.calls: list[Source] = []

    async def extract(self, source: Source) -> list[RawPost]:
        self.calls.append(source)
        if self.error is not None:
            raise self.error
        return self.posts


class TestExtractionRouter:
    @pytest.mark.asyncio
    async def test_dispatches_by_type(self):
        rss = StubExtractor([RawPost(title="From feed", url="https://a.example.com/1")])
        rules = StubExtractor([RawPost(title="From page", url="https://b.example.com/1")])
        router = ExtractionRouter({SOURCE_RSS: rss, SOURCE_HTML_RULES: rules})

        posts = await router.extract(Source(id=1, url="https://b.example.com", title="B", type=SOURCE_HTML_RULES))

        assert [p.title for p in posts] == ["From page"]
        assert rss.calls == []
        assert len(rules.calls) == 1

    @pytest.mark.asyncio
    async def test_unknown_type_yields_nothing(self):
        router = ExtractionRouter({SOURCE_RSS: StubExtractor()})

        posts = await router.extract(Source(id=1, url="https://x.example.com", title="X", type="gopher"))

        assert posts == []

    @pytest.mark.asyncio
    async def test_strategy_errors_propagate(self):
        router = ExtractionRouter({SOURCE_RSS: StubExtractor(error=FetchError("TIMEOUT", "slow"))})

        with pytest.raises(FetchError):
            await router.extract(Source(id=1, url="https://x.example.com", title="X"))

    def test_get_returns_registered_strategy(self):
        rss = StubExtractor()
        router = ExtractionRouter({SOURCE_RSS: rss})
        assert router.get(SOURCE_RSS) is rss
        assert router.get(SOURCE_HTML_RULES) is None
