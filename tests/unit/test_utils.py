from __future__ import annotations

from datetime import datetime, timezone

import pytest

from newsletter_digester.errors import redact_detail
from newsletter_digester.utils import collapse_ws, parse_date, to_absolute_url


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2024-05-01T10:30:00Z", datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc)),
        ("2024-05-01T12:30:00+02:00", datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc)),
        ("Wed, 01 May 2024 10:30:00 GMT", datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc)),
        ("May 1, 2024", datetime(2024, 5, 1, tzinfo=timezone.utc)),
        ("1 May 2024", datetime(2024, 5, 1, tzinfo=timezone.utc)),
    ],
)
def test_parse_date_formats(text, expected):
    assert parse_date(text) == expected


@pytest.mark.parametrize("text", ["", None, "yesterday-ish", "13/45/2024"])
def test_parse_date_unparseable(text):
    assert parse_date(text) is None


def test_to_absolute_url():
    base = "https://example.com/blog/index.html"
    assert to_absolute_url("/about", base) == "https://example.com/about"
    assert to_absolute_url("post-1", base) == "https://example.com/blog/post-1"
    assert to_absolute_url("https://other.example.com/x", base) == "https://other.example.com/x"
    assert to_absolute_url("  ", base) == ""


def test_collapse_ws():
    assert collapse_ws("  a \t b\r\n\n\n\nc  ") == "a b\n\nc"


def test_redact_detail_truncates():
    assert redact_detail("x" * 300) == "x" * 240 + "…"
    assert redact_detail("  short  ") == "short"
