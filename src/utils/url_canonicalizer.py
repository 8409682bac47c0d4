"""Deterministic feed URL normalization.

Rules implemented:
- Lower-case scheme/host and remove default ports (80/443).
- Strip common tracking parameters (utm_*, fbclid, gclid, etc.).
- Remove fragments and trailing slashes on the path.
- Sort query parameters; drop empty values and duplicate pairs.
- Default scheme to https when missing.

The normalized form is the identity of a show: two submissions that only
differ by these cosmetic details map to the same catalog row. Path case and
meaningful query parameters are preserved because feed hosts treat them as
distinct resources.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Callable, Iterable, Tuple
from urllib.parse import parse_qsl, quote, urlparse, urlunparse

TRACKING_PARAM_PREFIXES: Tuple[str, ...] = (
    "utm_",
    "icid",
)

TRACKING_PARAMS: Tuple[str, ...] = (
    "fbclid",
    "gclid",
    "yclid",
    "mc_cid",
    "mc_eid",
    "mkt_tok",
    "igshid",
    "ref",
)

SUPPORTED_SCHEMES: Tuple[str, ...] = ("http", "https")

DEFAULT_PORTS = {"http": "80", "https": "443"}


class InvalidFeedUrl(ValueError):
    """Raised when a string cannot be turned into an http(s) feed URL."""


def _filter_query_params(pairs: Iterable[Tuple[str, str]]) -> Iterable[Tuple[str, str]]:
    seen = set()
    for key, value in pairs:
        key_lower = key.lower()
        if not key_lower:
            continue
        if any(key_lower.startswith(prefix) for prefix in TRACKING_PARAM_PREFIXES):
            continue
        if key_lower in TRACKING_PARAMS:
            continue
        if value == "":
            continue
        pair = (key, value)
        if pair in seen:
            continue
        seen.add(pair)
        yield pair


def _normalize_feed_url_impl(url: str) -> str:
    """Normalize a feed URL string as per the rule set."""
    if not url or not url.strip():
        raise InvalidFeedUrl("feed URL is empty")

    url = url.strip()
    parsed = urlparse(url)

    scheme = parsed.scheme.lower() if parsed.scheme else "https"
    netloc = parsed.netloc
    path = parsed.path

    # Handle scheme-less URLs like example.com/feed.xml
    if not parsed.scheme and not netloc and path:
        netloc, _, remainder = path.partition("/")
        path = f"/{remainder}" if remainder else ""

    if scheme not in SUPPORTED_SCHEMES:
        raise InvalidFeedUrl(f"unsupported scheme {scheme!r} in {url!r}")

    userinfo, _, hostport = netloc.rpartition("@")
    hostport = hostport.lower()
    if ":" in hostport and not hostport.endswith("]"):
        host, port = hostport.rsplit(":", 1)
        if port == DEFAULT_PORTS[scheme] or not port:
            hostport = host
    if not hostport:
        raise InvalidFeedUrl(f"feed URL has no host: {url!r}")
    netloc = f"{userinfo}@{hostport}" if userinfo else hostport

    path = path.rstrip("/")

    query_pairs = parse_qsl(parsed.query, keep_blank_values=False)
    filtered = sorted(_filter_query_params(query_pairs))
    normalized_query = "&".join(
        f"{quote(key, safe='')}={quote(value, safe='')}" for key, value in filtered
    )

    return urlunparse((scheme, netloc, path, parsed.params, normalized_query, ""))


_CACHE_SIZE = -1


def configure_normalization_cache(size: int) -> None:
    """Configure the LRU cache used by :func:`normalize_feed_url`."""

    global normalize_feed_url, _CACHE_SIZE
    if size == _CACHE_SIZE:
        return
    if size <= 0:
        normalize_feed_url = _normalize_feed_url_impl
    else:
        normalize_feed_url = lru_cache(maxsize=size)(_normalize_feed_url_impl)
    _CACHE_SIZE = size


def clear_normalization_cache() -> None:
    """Clear the active normalization cache if enabled."""

    if hasattr(normalize_feed_url, "cache_clear"):
        normalize_feed_url.cache_clear()


normalize_feed_url: Callable[[str], str] = _normalize_feed_url_impl


configure_normalization_cache(4096)


__all__ = [
    "InvalidFeedUrl",
    "normalize_feed_url",
    "configure_normalization_cache",
    "clear_normalization_cache",
]
