# src/utils/logger.py
# Logging setup for the catalog engine
# ====================================

"""
Centralized loguru configuration.

Every component asks the shared :class:`CatalogLogger` for a module logger
(``create_module_logger("collectors.fetcher")``) and emits structured
payload dicts carrying an ``event`` key, so console and file sinks stay
consistent across the fetcher, parser, store and scheduler.
"""

import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from loguru import logger


class CatalogLogger:
    """
    Owns the loguru sinks for the whole process.

    Configuration happens once; later calls are ignored unless ``force`` is
    passed, which tests use to point the file sink at a temporary directory.
    """

    def __init__(self) -> None:
        self.is_configured = False
        self.log_file_path: Optional[Path] = None
        self.debug = False

    def configure_logging(
        self, config: Optional[Dict[str, Any]] = None, *, force: bool = False
    ) -> None:
        """
        Install console and file sinks.

        Args:
            config: Mapping shaped like ``config.settings.LOGGING_CONFIG``.
                When omitted the project settings are used.
            force: Reconfigure even if sinks were already installed.
        """
        if self.is_configured and not force:
            return

        if config is None:
            from config.settings import LOGGING_CONFIG

            config = LOGGING_CONFIG

        self.debug = bool(config.get("debug", False))
        logger.remove()
        self._configure_console_handler(config)
        if config.get("file_path"):
            self._configure_file_handler(config)

        self.is_configured = True
        logger.debug({"event": "logging.configured", "details": dict(config)})

    def _configure_console_handler(self, config: Dict[str, Any]) -> None:
        if self.debug:
            console_format = (
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{extra[module]}</cyan> | "
                "<level>{message}</level>"
            )
            console_level = "DEBUG"
        else:
            console_format = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"
            console_level = config.get("level", "INFO")

        logger.configure(extra={"module": "-"})
        logger.add(
            sys.stderr,
            format=console_format,
            level=console_level,
            colorize=self.debug,
            backtrace=self.debug,
            diagnose=self.debug,
        )

    def _configure_file_handler(self, config: Dict[str, Any]) -> None:
        """
        Rotating file sink, structured for later grepping.

        ``enqueue=True`` keeps the sink safe for the worker threads that run
        parsing and store transactions.
        """
        self.log_file_path = Path(config["file_path"])
        self.log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_format = (
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{process.id: <6} | "
            "{extra[module]}:{function}:{line} | "
            "{message}"
        )

        logger.add(
            str(self.log_file_path),
            format=file_format,
            level=config.get("level", "INFO"),
            rotation=config.get("max_file_size", "10 MB"),
            retention=config.get("retention", "30 days"),
            compression="gz",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    def create_module_logger(self, module_name: str) -> Any:
        """Return a loguru logger bound to ``module_name``."""
        if not self.is_configured:
            self.configure_logging()
        return logger.bind(module=module_name)

    def log_system_startup(
        self, version: str, config_summary: Optional[Dict[str, Any]] = None
    ) -> None:
        """Record one startup line with the effective settings summary."""
        payload: Dict[str, Any] = {"event": "system.startup", "version": version}
        if config_summary:
            payload["details"] = config_summary
        if self.log_file_path:
            payload["log_file"] = str(self.log_file_path)
        logger.bind(module="system").info(payload)


_logger_instance: Optional[CatalogLogger] = None


def get_logger() -> CatalogLogger:
    """Return the process-wide :class:`CatalogLogger`, configuring it on first use."""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = CatalogLogger()
        _logger_instance.configure_logging()
    return _logger_instance


def setup_logging(config: Optional[Dict[str, Any]] = None) -> CatalogLogger:
    """Configure logging at process start, honouring an explicit config."""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = CatalogLogger()
    _logger_instance.configure_logging(config, force=config is not None)
    return _logger_instance


class StructuredLogger:
    """
    Emits payload dicts with consistent correlation fields.

    ``component`` is stamped on every record; ``feed_url``, ``show_id``,
    ``latency`` and ``details`` are included only when given.
    """

    def __init__(self, module_logger: Any, component: str) -> None:
        self.module_logger = module_logger
        self.component = component

    @classmethod
    def for_module(
        cls,
        module_name: str,
        logger_factory: Optional[CatalogLogger] = None,
    ) -> "StructuredLogger":
        factory = logger_factory or get_logger()
        return cls(factory.create_module_logger(module_name), module_name.rsplit(".", 1)[-1])

    def build_payload(
        self,
        event: str,
        *,
        feed_url: Optional[str] = None,
        show_id: Optional[int] = None,
        latency: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "event": event,
            "component": self.component,
            "feed_url": feed_url,
            "show_id": show_id,
            "latency": latency,
        }
        if details:
            payload["details"] = details
        return {key: value for key, value in payload.items() if value is not None}

    def emit(self, level: str, event: str, **fields: Any) -> None:
        payload = self.build_payload(event, **fields)
        getattr(self.module_logger, level)(payload)


@contextmanager
def log_timed(
    structured: StructuredLogger,
    event: str,
    *,
    feed_url: Optional[str] = None,
    show_id: Optional[int] = None,
) -> Iterator[Dict[str, Any]]:
    """
    Log ``event`` at debug level with its latency once the block finishes.

    The yielded dict becomes the payload ``details`` so callers can attach
    results computed inside the block.
    """
    details: Dict[str, Any] = {}
    start = time.perf_counter()
    try:
        yield details
    finally:
        structured.emit(
            "debug",
            event,
            feed_url=feed_url,
            show_id=show_id,
            latency=round(time.perf_counter() - start, 6),
            details=details,
        )


__all__ = [
    "CatalogLogger",
    "StructuredLogger",
    "get_logger",
    "log_timed",
    "setup_logging",
]
