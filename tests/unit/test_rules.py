from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from conftest import mock_fetcher
from newsletter_digester.errors import ParseError
from newsletter_digester.extract.rules import (
    ExtractionRule,
    RuleExtractor,
    extract_with_rules,
    load_rules_file,
    parse_rules,
)
from newsletter_digester.storage.types import SOURCE_HTML_RULES, Source


PAGE_URL = "https://blog.example.com/posts/"

PAGE = """
<html><body>
  <div class="post">
    <h2><a href="/posts/first">First   post</a></h2>
    <time>2024-05-01</time>
    <p class="excerpt">Opening words</p>
  </div>
  <div class="post">
    <h2><a href="https://other.example.com/second">Second post</a></h2>
    <p class="excerpt">More words</p>
  </div>
  <div class="post">
    <h2>No link here</h2>
  </div>
  <ul class="links">
    <li><a class="item" href="third">Third link</a></li>
  </ul>
</body></html>
"""


class TestParseRules:
    def test_list_of_rules(self):
        rules = parse_rules(json.dumps([{"name": "posts", "container": ".post", "title": "h2 a", "url": "h2 a"}]))
        assert rules == [ExtractionRule(name="posts", container=".post", title="h2 a", url="h2 a")]

    def test_selector_builder_object_becomes_default_rule(self):
        rules = parse_rules({"postContainer": ".post", "title": "h2", "link": "a", "date": "time"})
        assert rules == [ExtractionRule(name="default", container=".post", title="h2", url="a", date="time")]

    def test_rule_without_container_is_skipped(self):
        rules = parse_rules([{"name": "broken", "title": "h2"}, {"container": "li"}])
        assert [r.name for r in rules] == ["rule2"]

    def test_malformed_json_raises(self):
        with pytest.raises(ParseError):
            parse_rules("[{not json")

    def test_scalar_raises(self):
        with pytest.raises(ParseError):
            parse_rules("42")

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "- name: posts\n  container: .post\n  title: h2 a\n  url: h2 a\n",
            encoding="utf-8",
        )
        assert load_rules_file(path) == [ExtractionRule(name="posts", container=".post", title="h2 a", url="h2 a")]


class TestExtractWithRules:
    def test_fields_and_absolute_urls(self):
        rule = ExtractionRule(name="posts", container=".post", title="h2 a", url="h2 a", date="time", content=".excerpt")

        posts = extract_with_rules(PAGE, [rule], PAGE_URL)

        assert [p.title for p in posts] == ["First post", "Second post"]
        assert posts[0].url == "https://blog.example.com/posts/first"
        assert posts[1].url == "https://other.example.com/second"
        assert posts[0].content == "Opening words"
        assert posts[0].date == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert all(p.source_rule == "posts" for p in posts)

    def test_self_selector_uses_container(self):
        rule = ExtractionRule(name="links", container="a.item", title=".", url=".")

        posts = extract_with_rules(PAGE, [rule], PAGE_URL)

        assert len(posts) == 1
        assert posts[0].title == "Third link"
        assert posts[0].url == "https://blog.example.com/posts/third"

    def test_multiple_rules_concatenate(self):
        rules = [
            ExtractionRule(name="posts", container=".post", title="h2 a", url="h2 a"),
            ExtractionRule(name="links", container="a.item", title=".", url="."),
        ]

        posts = extract_with_rules(PAGE, rules, PAGE_URL)

        assert [(p.source_rule, p.title) for p in posts] == [
            ("posts", "First post"),
            ("posts", "Second post"),
            ("links", "Third link"),
        ]

    def test_missing_date_defaults_to_now(self):
        rule = ExtractionRule(name="posts", container=".post", title="h2 a", url="h2 a", date="time")
        before = datetime.now(timezone.utc)

        posts = extract_with_rules(PAGE, [rule], PAGE_URL)

        assert posts[1].date >= before


class TestRuleExtractor:
    @pytest.mark.asyncio
    async def test_extract_from_source(self):
        source = Source(
            id=3,
            url=PAGE_URL,
            title="Blog",
            type=SOURCE_HTML_RULES,
            extraction_rules=json.dumps({"postContainer": ".post", "title": "h2 a", "link": "h2 a"}),
        )

        posts = await RuleExtractor(mock_fetcher({PAGE_URL: PAGE})).extract(source)

        assert [p.title for p in posts] == ["First post", "Second post"]
        assert all(p.source_rule == "default" for p in posts)

    @pytest.mark.asyncio
    async def test_malformed_rules_yield_nothing(self):
        source = Source(id=3, url=PAGE_URL, title="Blog", type=SOURCE_HTML_RULES, extraction_rules="{oops")

        posts = await RuleExtractor(mock_fetcher({PAGE_URL: PAGE})).extract(source)

        assert posts == []
