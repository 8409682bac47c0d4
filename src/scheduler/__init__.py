"""
Crawl scheduling: backoff policy, the single-show crawl pipeline and the
concurrent scheduler loop.
"""

from .backoff import BackoffPolicy, backoff_delay, jitter_fraction
from .context import CrawlContext
from .pipeline import CrawlPipeline, CrawlResult, crawl_show
from .scheduler import CrawlScheduler

__all__ = [
    "BackoffPolicy",
    "CrawlContext",
    "CrawlPipeline",
    "CrawlResult",
    "CrawlScheduler",
    "backoff_delay",
    "crawl_show",
    "jitter_fraction",
]
