"""
Shared utilities of the catalog engine.
"""

from .logger import StructuredLogger, get_logger, log_timed, setup_logging
from .observability import CatalogMetrics, get_metrics

__all__ = [
    "StructuredLogger",
    "get_logger",
    "log_timed",
    "setup_logging",
    "get_metrics",
    "CatalogMetrics",
]
