# src/collectors/feed_fetcher.py
"""Conditional, size-capped feed downloads over httpx.

The fetcher never raises for HTTP or network problems and never touches the
catalog: every call ends in :class:`Fresh`, :class:`NotModified` or
:class:`FetchFailure`, and the scheduler decides what the outcome means for
the show.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional, Union

import httpx

from src.contracts.catalog import CacheTokens
from src.errors import FailureKind
from src.utils.logger import CatalogLogger, StructuredLogger

BODY_SAMPLE_BYTES = 200

DEFAULT_HEADERS = {
    "Accept": (
        "application/rss+xml, application/atom+xml, application/xml;q=0.9, "
        "text/xml;q=0.9, */*;q=0.5"
    ),
    "Accept-Encoding": "gzip, deflate",
}


@dataclass(frozen=True)
class Fresh:
    body: bytes
    tokens: CacheTokens
    status_code: int
    final_url: str

    @property
    def byte_count(self) -> int:
        return len(self.body)


@dataclass(frozen=True)
class NotModified:
    status_code: int
    tokens: CacheTokens


@dataclass(frozen=True)
class FetchFailure:
    kind: FailureKind
    reason: str
    status_code: Optional[int] = None
    retry_after: Optional[float] = None
    byte_count: Optional[int] = None

    @property
    def is_transient(self) -> bool:
        return self.kind is FailureKind.TRANSIENT


FetchResult = Union[Fresh, NotModified, FetchFailure]


def parse_retry_after(value: Optional[str], *, now: Optional[datetime] = None) -> Optional[float]:
    """Seconds encoded by a ``Retry-After`` header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    text = value.strip()
    if text.isdigit():
        return float(text)
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (when - current).total_seconds())


def _declared_length(response: httpx.Response) -> Optional[int]:
    raw = response.headers.get("Content-Length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class FeedFetcher:
    """Download feeds with validators, timeouts, a byte cap and bounded redirects."""

    def __init__(
        self,
        fetch_config: Optional[Dict[str, Any]] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger_factory: Optional[CatalogLogger] = None,
    ) -> None:
        if fetch_config is None:
            from config.settings import FETCH_CONFIG

            fetch_config = FETCH_CONFIG
        self.config = fetch_config
        self.max_bytes: int = fetch_config["max_bytes"]
        self.total_timeout: float = fetch_config["total_timeout_seconds"]
        self.log = StructuredLogger.for_module("collectors.fetcher", logger_factory)

        timeout = httpx.Timeout(
            fetch_config["read_timeout_seconds"],
            connect=fetch_config["connect_timeout_seconds"],
        )
        headers = {"User-Agent": fetch_config["user_agent"], **DEFAULT_HEADERS}
        self.client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout,
            follow_redirects=True,
            max_redirects=fetch_config["max_redirects"],
            transport=transport,
        )

    async def __aenter__(self) -> "FeedFetcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def fetch(self, url: str, tokens: Optional[CacheTokens] = None) -> FetchResult:
        """Fetch ``url``, sending validators from ``tokens`` when present."""
        tokens = tokens or CacheTokens()
        headers: Dict[str, str] = {}
        if tokens.etag:
            headers["If-None-Match"] = tokens.etag
        if tokens.last_modified:
            headers["If-Modified-Since"] = tokens.last_modified

        try:
            return await asyncio.wait_for(
                self._fetch(url, headers, tokens), timeout=self.total_timeout
            )
        except asyncio.TimeoutError:
            return self._failure(
                url, FailureKind.TRANSIENT, "deadline_exceeded"
            )

    async def _fetch(
        self, url: str, headers: Dict[str, str], prior: CacheTokens
    ) -> FetchResult:
        try:
            async with self.client.stream("GET", url, headers=headers) as response:
                return await self._handle_response(url, response, prior)
        except httpx.TooManyRedirects as exc:
            return self._failure(
                url, FailureKind.PERMANENT, "too_many_redirects", error=exc
            )
        except httpx.TimeoutException as exc:
            return self._failure(url, FailureKind.TRANSIENT, "timeout", error=exc)
        except httpx.UnsupportedProtocol as exc:
            return self._failure(
                url, FailureKind.PERMANENT, "unsupported_protocol", error=exc
            )
        except httpx.TransportError as exc:
            return self._failure(url, FailureKind.TRANSIENT, "network_error", error=exc)
        except httpx.DecodingError as exc:
            return self._failure(url, FailureKind.TRANSIENT, "decoding_error", error=exc)
        except httpx.RequestError as exc:
            return self._failure(url, FailureKind.TRANSIENT, "request_error", error=exc)
        except httpx.InvalidURL as exc:
            return self._failure(url, FailureKind.PERMANENT, "invalid_url", error=exc)

    async def _handle_response(
        self, url: str, response: httpx.Response, prior: CacheTokens
    ) -> FetchResult:
        status = response.status_code

        if status == 304:
            return NotModified(
                status_code=status,
                tokens=CacheTokens(
                    etag=response.headers.get("ETag") or prior.etag,
                    last_modified=response.headers.get("Last-Modified")
                    or prior.last_modified,
                ),
            )

        if status == 429 or status >= 500:
            await self._log_body_sample(url, response)
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            reason = "rate_limited" if status == 429 else "server_error"
            return self._failure(
                url,
                FailureKind.TRANSIENT,
                reason,
                status_code=status,
                retry_after=retry_after,
            )

        if status >= 400 or not 200 <= status < 300:
            await self._log_body_sample(url, response)
            reason = "client_error" if status >= 400 else "unexpected_status"
            return self._failure(url, FailureKind.PERMANENT, reason, status_code=status)

        declared = _declared_length(response)
        if declared is not None and declared > self.max_bytes:
            return self._failure(
                url,
                FailureKind.PERMANENT,
                "oversized",
                status_code=status,
                byte_count=declared,
            )

        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk)
            if len(body) > self.max_bytes:
                return self._failure(
                    url,
                    FailureKind.PERMANENT,
                    "oversized",
                    status_code=status,
                    byte_count=len(body),
                )

        final_url = str(response.url)
        if response.history:
            self.log.emit(
                "info",
                "fetcher.feed.redirected",
                feed_url=url,
                details={"final_url": final_url, "hops": len(response.history)},
            )

        content_type = response.headers.get("content-type", "").lower()
        if content_type and not any(
            marker in content_type for marker in ("xml", "rss", "atom")
        ):
            self.log.emit(
                "debug",
                "fetcher.feed.suspicious_content_type",
                feed_url=url,
                details={"content_type": content_type},
            )

        return Fresh(
            body=bytes(body),
            tokens=CacheTokens(
                etag=response.headers.get("ETag"),
                last_modified=response.headers.get("Last-Modified"),
            ),
            status_code=status,
            final_url=final_url,
        )

    async def _log_body_sample(self, url: str, response: httpx.Response) -> None:
        sample = bytearray()
        async for chunk in response.aiter_bytes():
            sample.extend(chunk)
            if len(sample) >= BODY_SAMPLE_BYTES:
                break
        self.log.emit(
            "debug",
            "fetcher.feed.body_sample",
            feed_url=url,
            details={
                "status_code": response.status_code,
                "sample": bytes(sample[:BODY_SAMPLE_BYTES]).decode("utf-8", "replace"),
            },
        )

    def _failure(
        self,
        url: str,
        kind: FailureKind,
        reason: str,
        *,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        byte_count: Optional[int] = None,
        error: Optional[BaseException] = None,
    ) -> FetchFailure:
        details: Dict[str, Any] = {"kind": kind.value, "reason": reason}
        if status_code is not None:
            details["status_code"] = status_code
        if error is not None:
            details["error"] = str(error)
        self.log.emit("warning", "fetcher.feed.failed", feed_url=url, details=details)
        return FetchFailure(
            kind=kind,
            reason=reason,
            status_code=status_code,
            retry_after=retry_after,
            byte_count=byte_count,
        )


__all__ = [
    "FeedFetcher",
    "FetchFailure",
    "FetchResult",
    "Fresh",
    "NotModified",
    "parse_retry_after",
]
