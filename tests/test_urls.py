from __future__ import annotations

from urllib.parse import quote

import allure
import pytest

from alert_catalog.ingestion.urls import (
    extract_domain,
    is_absolute_http_url,
    normalize,
    report_key,
    unwrap,
    wrap,
)

pytestmark = [
    allure.epic("Catalog pipeline"),
    allure.feature("URL identity"),
]

DESTINATION = "https://Research.Example/Blog/Post?id=7&utm_source=alerts"


@pytest.mark.parametrize(
    "wrapped",
    [
        f"https://www.google.com/url?rct=j&sa=t&url={quote(DESTINATION, safe='')}&ct=ga",
        f"https://www.google.co.uk/url?q={quote(DESTINATION, safe='')}",
        f"https://l.facebook.com/l.php?u={quote(DESTINATION, safe='')}&h=AT0",
        f"https://eur01.safelinks.protection.outlook.com/?url={quote(DESTINATION, safe='')}",
        f"https://www.linkedin.com/redir/redirect?url={quote(DESTINATION, safe='')}",
        f"https://slack-redir.net/link?url={quote(DESTINATION, safe='')}",
        f"https://out.reddit.com/t3_abc?url={quote(DESTINATION, safe='')}&token=x",
    ],
)
def test_unwrap_recognizes_known_redirectors(wrapped: str) -> None:
    assert unwrap(wrapped) == DESTINATION


def test_unwrap_follows_nested_redirectors() -> None:
    inner = f"https://slack-redir.net/link?url={quote(DESTINATION, safe='')}"
    outer = wrap(inner)

    assert unwrap(outer) == DESTINATION


def test_unwrap_leaves_non_redirector_unchanged() -> None:
    plain = "https://news.example/url?url=https://elsewhere.example"

    assert unwrap(plain) == plain
    assert unwrap("https://www.google.com/search?q=prompt+injection") == (
        "https://www.google.com/search?q=prompt+injection"
    )


def test_unwrap_ignores_relative_destination() -> None:
    wrapped = "https://www.google.com/url?url=/relative/path"

    assert unwrap(wrapped) == wrapped


def test_wrap_round_trips_through_unwrap() -> None:
    for destination in (
        "https://example.com/a b?x=1&y=2#frag",
        "http://example.org/",
        DESTINATION,
    ):
        assert unwrap(wrap(destination)) == destination


def test_normalize_drops_tracking_fragment_and_trailing_slash() -> None:
    url = "HTTPS://Example.COM:443//news//item/?utm_source=x&b=2&fbclid=abc&a=1#section"

    assert normalize(url) == "https://example.com/news/item?a=1&b=2"


def test_normalize_is_idempotent_and_order_independent() -> None:
    first = normalize("https://example.com/post?b=2&a=1&utm_medium=mail")
    second = normalize("https://example.com/post/?a=1&b=2")

    assert first == second
    assert normalize(first) == first


def test_normalize_strips_default_http_port_only() -> None:
    assert normalize("http://example.com:80/a") == "http://example.com/a"
    assert normalize("http://example.com:8080/a") == "http://example.com:8080/a"


def test_normalize_lowercases_non_urls() -> None:
    assert normalize("Not A URL") == "not a url"


def test_report_key_granularity() -> None:
    normalized = normalize("https://vendor.example/advisories/17?lang=en")

    assert report_key(normalized) == normalized
    assert report_key(normalized, "domain") == "https://vendor.example"
    with pytest.raises(ValueError, match="granularity"):
        report_key(normalized, "path")


def test_url_helpers() -> None:
    assert is_absolute_http_url("https://example.com/x")
    assert not is_absolute_http_url("ftp://example.com/x")
    assert not is_absolute_http_url("/relative")
    assert not is_absolute_http_url(None)
    assert extract_domain("https://Sub.Example.com/path") == "sub.example.com"
    assert extract_domain("not a url") == "unknown"
