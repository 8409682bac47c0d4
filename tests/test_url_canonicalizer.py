import pytest

import src.utils.url_canonicalizer as url_canonicalizer
from src.utils.url_canonicalizer import InvalidFeedUrl, normalize_feed_url


EQUIVALENT_CASES = [
    (
        "HTTPS://Feeds.Example.COM:443/Show/Feed.xml",
        "https://feeds.example.com/Show/Feed.xml",
    ),
    (
        "https://feeds.example.com/show/rss/",
        "https://feeds.example.com/show/rss",
    ),
    (
        "feeds.example.com/show.xml",
        "https://feeds.example.com/show.xml",
    ),
    (
        "https://feeds.example.com/show.xml?utm_source=apple&utm_medium=podcast#latest",
        "https://feeds.example.com/show.xml",
    ),
    (
        "http://feeds.example.com:80/show.xml?b=2&a=1&fbclid=xyz",
        "http://feeds.example.com/show.xml?a=1&b=2",
    ),
]


PRESERVED_CASES = [
    "https://feeds.example.com/Show/Feed.xml",
    "https://feeds.example.com:8443/show.xml",
    "https://feeds.example.com/show.xml?format=mp3",
]


@pytest.mark.parametrize("raw, expected", EQUIVALENT_CASES)
def test_normalize_feed_url_equivalent_forms(raw: str, expected: str) -> None:
    assert normalize_feed_url(raw) == expected


@pytest.mark.parametrize("url", PRESERVED_CASES)
def test_normalize_feed_url_keeps_meaningful_parts(url: str) -> None:
    assert normalize_feed_url(url) == url


def test_trailing_slash_and_case_variants_share_identity() -> None:
    variants = [
        "https://Feeds.Example.com/show",
        "https://feeds.example.com/show/",
        "HTTPS://FEEDS.EXAMPLE.COM/show?utm_campaign=x",
    ]
    assert len({normalize_feed_url(v) for v in variants}) == 1


@pytest.mark.parametrize(
    "url",
    ["", "   ", "ftp://feeds.example.com/show.xml", "https:///show.xml"],
)
def test_invalid_feed_urls_raise(url: str) -> None:
    with pytest.raises(InvalidFeedUrl):
        normalize_feed_url(url)


def test_cache_can_be_disabled_and_restored() -> None:
    url_canonicalizer.configure_normalization_cache(0)
    try:
        assert not hasattr(url_canonicalizer.normalize_feed_url, "cache_clear")
        assert (
            url_canonicalizer.normalize_feed_url("https://EXAMPLE.com/a/")
            == "https://example.com/a"
        )
    finally:
        url_canonicalizer.configure_normalization_cache(4096)
    assert hasattr(url_canonicalizer.normalize_feed_url, "cache_clear")
    url_canonicalizer.clear_normalization_cache()
