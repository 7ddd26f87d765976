from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

import yaml
from selectolax.lexbor import LexborHTMLParser, LexborNode, SelectolaxError

from newsletter_digester.errors import ParseError
from newsletter_digester.extract.http_fetcher import HttpFetcher
from newsletter_digester.storage.types import RawPost, Source
from newsletter_digester.utils import collapse_ws, now_utc, parse_date, to_absolute_url


logger = logging.getLogger(__name__)


SELF_SELECTOR = "."


@dataclass(frozen=True)
class ExtractionRule:
    name: str
    container: str
    title: str | None = None
    url: str | None = None
    date: str | None = None
    content: str | None = None


def _rule_from_dict(data: dict, default_name: str) -> ExtractionRule | None:
    container = str(data.get("container") or "").strip()
    name = str(data.get("name") or default_name)
    if not container:
        logger.warning("rule %r missing container selector, skipped", name)
        return None
    return ExtractionRule(
        name=name,
        container=container,
        title=data.get("title") or None,
        url=data.get("url") or data.get("link") or None,
        date=data.get("date") or None,
        content=data.get("content") or None,
    )


def parse_rules(raw: str | dict | list | None) -> list[ExtractionRule]:
    """Accept a list of rule objects or a single selector-builder object.

    The selector-builder form uses ``postContainer``/``title``/``link`` and
    becomes a single rule named ``default``.
    """
    data = raw
    if isinstance(raw, str) or raw is None:
        try:
            data = json.loads(raw or "{}")
        except json.JSONDecodeError as e:
            raise ParseError(f"invalid extraction rules: {e}") from e

    if isinstance(data, list):
        rules: list[ExtractionRule] = []
        for idx, item in enumerate(data, start=1):
            if not isinstance(item, dict):
                raise ParseError(f"extraction rule #{idx} must be an object")
            rule = _rule_from_dict(item, default_name=f"rule{idx}")
            if rule is not None:
                rules.append(rule)
        return rules

    if isinstance(data, dict):
        if data.get("postContainer"):
            rule = _rule_from_dict(
                {
                    "name": "default",
                    "container": data.get("postContainer"),
                    "title": data.get("title"),
                    "url": data.get("link") or data.get("url"),
                    "date": data.get("date"),
                    "content": data.get("content"),
                },
                default_name="default",
            )
            return [rule] if rule is not None else []
        return []

    raise ParseError(f"extraction rules must be a list or object, got {type(data).__name__}")


def load_rules_file(path: Path) -> list[ExtractionRule]:
    """Load rules from a YAML (or JSON) file."""
    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ParseError(f"invalid rules file {path}: {e}") from e
    if data is None:
        return []
    return parse_rules(data)


def _select(container: LexborNode, selector: str | None) -> LexborNode | None:
    if not selector:
        return None
    if selector == SELF_SELECTOR:
        return container
    return container.css_first(selector)


def _node_text(node: LexborNode | None) -> str:
    if node is None:
        return ""
    return collapse_ws(node.text())


def extract_with_rules(html: str, rules: list[ExtractionRule], base_url: str) -> list[RawPost]:
    tree = LexborHTMLParser(html or "")
    posts: list[RawPost] = []

    for rule in rules:
        try:
            containers = tree.css(rule.container)
        except SelectolaxError:
            logger.warning("rule %r has invalid container selector %r", rule.name, rule.container)
            continue

        for container in containers:
            try:
                title = _node_text(_select(container, rule.title))
                link = _select(container, rule.url)
                content = _node_text(_select(container, rule.content))
                date_text = _node_text(_select(container, rule.date))
            except SelectolaxError:
                logger.warning("rule %r has an invalid field selector", rule.name)
                break

            url = ""
            if link is not None:
                url = to_absolute_url(link.attributes.get("href") or "", base_url)

            if not title or not url:
                continue

            posts.append(
                RawPost(
                    title=title,
                    url=url,
                    content=content,
                    date=parse_date(date_text) or now_utc(),
                    source_rule=rule.name,
                )
            )

    return posts


class RuleExtractor:
    def __init__(self, fetcher: HttpFetcher) -> None:
        self._fetcher = fetcher

    async def extract(self, source: Source) -> list[RawPost]:
        html = await self._fetcher.fetch(source.url)

        try:
            rules = parse_rules(source.extraction_rules)
        except ParseError as e:
            logger.error("failed to parse extraction rules for source %s: %s", source.id, e)
            return []

        if not rules:
            logger.warning("no extraction rules defined for source %s", source.title)
            return []

        posts = extract_with_rules(html, rules, source.url)
        logger.info("rules extracted %s posts from %s using %s rule(s)", len(posts), source.title, len(rules))
        return posts
