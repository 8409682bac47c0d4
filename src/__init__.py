"""
Main package of the podcast catalog engine.

Holds the functional subpackages: feed collectors, reconciliation, catalog
storage, crawl scheduling, the read API and shared utilities.
"""

from config.version import PROJECT_VERSION, PYTHON_REQUIRES_SPECIFIER

from .collectors import FeedFetcher, FeedParser, parse_feed
from .reconcile import reconcile
from .scheduler import CrawlContext, CrawlScheduler
from .serving import create_app
from .storage import DatabaseManager, get_database_manager
from .utils import get_logger, get_metrics, setup_logging

__version__ = PROJECT_VERSION
__description__ = "Podcast feed ingestion and catalog reconciliation engine"

__package_info__ = {
    "name": "podcatalog",
    "version": __version__,
    "description": __description__,
    "license": "MIT",
    "python_requires": PYTHON_REQUIRES_SPECIFIER,
}

__all__ = [
    "CrawlContext",
    "CrawlScheduler",
    "DatabaseManager",
    "FeedFetcher",
    "FeedParser",
    "create_app",
    "get_database_manager",
    "get_logger",
    "get_metrics",
    "parse_feed",
    "reconcile",
    "setup_logging",
]
