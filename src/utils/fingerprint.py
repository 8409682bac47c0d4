"""Content fingerprints and fallback identifiers for shows and episodes."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any, Mapping, Optional

from src.contracts.feed import EpisodeMeta, FeedDocument, ShowMeta
from src.utils.datetime_utils import isoformat_utc
from src.utils.text_cleaner import normalize_text, normalize_title

# Bump when the canonical form changes; every stored fingerprint then
# differs once and the catalog is rewritten on the next crawl.
FINGERPRINT_VERSION = 1
FALLBACK_GUID_PREFIX = "fallback:"


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonical_value(value: Any) -> Any:
    """Project a field value onto the form that is hashed and compared."""
    if isinstance(value, datetime):
        return isoformat_utc(value)
    if isinstance(value, str):
        return normalize_text(value)
    return value


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def fingerprint_fields(kind: str, fields: Mapping[str, Any]) -> str:
    """Digest over ``fields`` that ignores key order and cosmetic whitespace."""
    payload = {
        "v": FINGERPRINT_VERSION,
        "kind": kind,
        "fields": {name: canonical_value(value) for name, value in fields.items()},
    }
    return sha256_hex(canonical_json(payload))


def fingerprint_show(show: ShowMeta) -> str:
    return fingerprint_fields("show", show.content_fields())


def fingerprint_episode(episode: EpisodeMeta) -> str:
    return fingerprint_fields("episode", episode.content_fields())


def fallback_guid(
    enclosure_url: str, published_at: Optional[datetime], title: str
) -> str:
    """Identifier for entries without a GUID, stable across parses."""
    material = [enclosure_url.strip(), isoformat_utc(published_at), normalize_title(title)]
    return FALLBACK_GUID_PREFIX + sha256_hex(canonical_json(material))


def tag_document(document: FeedDocument) -> FeedDocument:
    """Return a copy of ``document`` whose show and episodes carry fingerprints."""
    show = document.show.model_copy(
        update={"content_fingerprint": fingerprint_show(document.show)}
    )
    episodes = tuple(
        episode.model_copy(update={"content_fingerprint": fingerprint_episode(episode)})
        for episode in document.episodes
    )
    return document.model_copy(update={"show": show, "episodes": episodes})


__all__ = [
    "FALLBACK_GUID_PREFIX",
    "FINGERPRINT_VERSION",
    "canonical_json",
    "canonical_value",
    "fallback_guid",
    "fingerprint_episode",
    "fingerprint_fields",
    "fingerprint_show",
    "sha256_hex",
    "tag_document",
]
