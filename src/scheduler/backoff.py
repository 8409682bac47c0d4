"""Backoff and polling intervals for per-show crawl scheduling."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Mapping, Optional

_HASH_SPACE = float(1 << 64)


def jitter_fraction(key: str, jitter_ratio: float) -> float:
    """Deterministic fraction in ``[0, jitter_ratio]`` derived from ``key``."""
    if jitter_ratio <= 0:
        return 0.0
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / _HASH_SPACE * jitter_ratio


def backoff_delay(
    failures: int,
    *,
    base_seconds: float,
    max_seconds: float,
    jitter_ratio: float = 0.0,
    key: str = "",
) -> float:
    """
    Seconds to wait after ``failures`` consecutive failed attempts.

    ``min(max, base * 2**(failures - 1))`` scaled by ``1 - jitter`` where the
    jitter is fixed per ``key``: for one show the delay never decreases as
    failures accumulate and never exceeds ``max_seconds``.
    """
    if failures <= 0:
        return 0.0
    exponent = min(failures - 1, 62)
    raw = min(float(max_seconds), float(base_seconds) * (2**exponent))
    return raw * (1.0 - jitter_fraction(key, jitter_ratio))


@dataclass(frozen=True)
class BackoffPolicy:
    base_seconds: float = 60.0
    max_seconds: float = 86_400.0
    jitter_ratio: float = 0.1
    poll_interval_seconds: float = 3_600.0
    disable_threshold: int = 10

    @classmethod
    def from_config(cls, scheduler_config: Mapping[str, Any]) -> "BackoffPolicy":
        return cls(
            base_seconds=scheduler_config["base_backoff_seconds"],
            max_seconds=scheduler_config["max_backoff_seconds"],
            jitter_ratio=scheduler_config["jitter_ratio"],
            poll_interval_seconds=scheduler_config["poll_interval_seconds"],
            disable_threshold=scheduler_config["failure_disable_threshold"],
        )

    def retry_delay(
        self, failures: int, key: str, retry_after: Optional[float] = None
    ) -> float:
        """Backoff delay, raised to the server's ``Retry-After`` up to the cap."""
        delay = backoff_delay(
            failures,
            base_seconds=self.base_seconds,
            max_seconds=self.max_seconds,
            jitter_ratio=self.jitter_ratio,
            key=key,
        )
        if retry_after is not None and retry_after > delay:
            delay = min(float(retry_after), float(self.max_seconds))
        return delay

    def poll_delay(self, key: str, override: Optional[float] = None) -> float:
        interval = float(override or self.poll_interval_seconds)
        return interval * (1.0 - jitter_fraction(key, self.jitter_ratio))

    def should_disable(self, failures: int) -> bool:
        return failures > self.disable_threshold


__all__ = ["BackoffPolicy", "backoff_delay", "jitter_fraction"]
