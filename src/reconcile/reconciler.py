# src/reconcile/reconciler.py
"""
Diff a parsed feed against the persisted catalog state of one show.

Everything here is pure: the snapshot comes in, a :class:`ReconcilePlan`
goes out, and nothing touches the network or the database. The store
applies the plan; the pipeline re-reads the snapshot and calls
:func:`reconcile` again when the store reports a uniqueness race.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from src.contracts.catalog import (
    CatalogSnapshot,
    EpisodeInsert,
    EpisodeUpdate,
    EpisodeUpsert,
    ReconcilePlan,
    ShowFields,
)
from src.contracts.feed import EpisodeMeta, FeedDocument
from src.utils.fingerprint import canonical_value, tag_document


def changed_fields(
    current: Mapping[str, Any], incoming: Mapping[str, Any]
) -> Dict[str, Any]:
    """Fields of ``incoming`` whose canonical value differs from ``current``."""
    return {
        name: value
        for name, value in incoming.items()
        if canonical_value(value) != canonical_value(current.get(name))
    }


def _show_update(snapshot: CatalogSnapshot, document: FeedDocument) -> Optional[ShowFields]:
    fields = document.show.content_fields()
    fingerprint = document.show.content_fingerprint
    existing = snapshot.show

    if existing is None:
        return ShowFields(fields=fields, content_fingerprint=fingerprint, is_new=True)

    delta = changed_fields(existing.fields, fields)
    if existing.content_fingerprint == fingerprint and not delta:
        return None
    return ShowFields(
        fields=delta,
        content_fingerprint=fingerprint,
        expected_fingerprint=existing.content_fingerprint,
    )


def _episode_upsert(
    snapshot: CatalogSnapshot, episode: EpisodeMeta
) -> Optional[EpisodeUpsert]:
    existing = snapshot.episode(episode.guid)
    if existing is None:
        return EpisodeInsert(
            guid=episode.guid,
            fields=episode.content_fields(),
            content_fingerprint=episode.content_fingerprint,
        )
    if existing.content_fingerprint == episode.content_fingerprint:
        return None
    return EpisodeUpdate(
        guid=episode.guid,
        episode_id=existing.id,
        changed_fields=changed_fields(existing.fields, episode.content_fields()),
        content_fingerprint=episode.content_fingerprint,
        expected_fingerprint=existing.content_fingerprint,
    )


def reconcile(snapshot: CatalogSnapshot, document: FeedDocument) -> ReconcilePlan:
    """
    Produce the writes needed to bring ``snapshot`` in line with ``document``.

    Episodes are visited in feed order. Unknown GUIDs become inserts,
    known GUIDs with a different fingerprint become updates carrying only
    the changed fields, and matching fingerprints are counted as unchanged.
    Episodes missing from the feed are never touched.
    """
    if not document.is_fingerprinted:
        document = tag_document(document)

    upserts: List[EpisodeUpsert] = []
    unchanged = 0
    for episode in document.episodes:
        upsert = _episode_upsert(snapshot, episode)
        if upsert is None:
            unchanged += 1
        else:
            upserts.append(upsert)

    return ReconcilePlan(
        show_update=_show_update(snapshot, document),
        episode_upserts=tuple(upserts),
        unchanged=unchanged,
    )


__all__ = ["changed_fields", "reconcile"]
