"""
Feed acquisition: HTTP fetching and RSS/Atom parsing.
"""

from .feed_fetcher import FeedFetcher, FetchFailure, FetchResult, Fresh, NotModified
from .feed_parser import AtomVariant, FeedParser, RssVariant, parse_feed, sniff_variant

__all__ = [
    "AtomVariant",
    "FeedFetcher",
    "FeedParser",
    "FetchFailure",
    "FetchResult",
    "Fresh",
    "NotModified",
    "RssVariant",
    "parse_feed",
    "sniff_variant",
]
