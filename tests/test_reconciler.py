from src.collectors.feed_parser import parse_feed
from src.contracts.catalog import (
    CatalogSnapshot,
    EpisodeInsert,
    EpisodeSnapshot,
    EpisodeUpdate,
    ShowSnapshot,
    ShowState,
)
from src.reconcile import changed_fields, reconcile
from src.utils.fingerprint import tag_document

from conftest import rss_feed, rss_item, two_episode_feed

FEED_URL = "https://example.com/feed.xml"


def _document(body: bytes):
    return tag_document(parse_feed(body, FEED_URL))


def _snapshot_of(document, *, extra_guids=()) -> CatalogSnapshot:
    """Catalog state as it would look right after applying ``document``."""
    show = ShowSnapshot(
        id=1,
        feed_url=FEED_URL,
        fetch_url=FEED_URL,
        state=ShowState.ACTIVE,
        content_fingerprint=document.show.content_fingerprint,
        fields=document.show.content_fields(),
    )
    episodes = {
        episode.guid: EpisodeSnapshot(
            id=index,
            guid=episode.guid,
            content_fingerprint=episode.content_fingerprint,
            fields=episode.content_fields(),
        )
        for index, episode in enumerate(document.episodes, start=1)
    }
    for offset, guid in enumerate(extra_guids, start=100):
        episodes[guid] = EpisodeSnapshot(
            id=offset, guid=guid, content_fingerprint="old", fields={"title": guid}
        )
    return CatalogSnapshot(show=show, episodes=episodes)


def test_new_show_inserts_everything():
    document = _document(two_episode_feed())

    plan = reconcile(CatalogSnapshot.empty(), document)

    assert plan.show_update.is_new
    assert plan.show_update.fields["title"] == "Science Hour"
    assert [op.guid for op in plan.inserts] == ["ep-1", "ep-2"]
    assert all(isinstance(op, EpisodeInsert) for op in plan.episode_upserts)
    assert plan.updates == ()
    assert plan.write_count == 3


def test_reconciling_same_document_twice_is_a_no_op():
    document = _document(two_episode_feed())

    plan = reconcile(_snapshot_of(document), document)

    assert plan.is_empty
    assert plan.unchanged == 2
    assert plan.write_count == 0


def test_changed_episode_carries_only_changed_fields():
    before = _document(two_episode_feed())
    after = _document(two_episode_feed(second_description="All about neutron stars"))

    plan = reconcile(_snapshot_of(before), after)

    assert plan.show_update is None
    assert plan.inserts == ()
    (update,) = plan.updates
    assert isinstance(update, EpisodeUpdate)
    assert update.guid == "ep-2"
    assert update.changed_fields == {"description": "All about neutron stars"}
    assert update.expected_fingerprint == before.episodes[1].content_fingerprint
    assert update.content_fingerprint == after.episodes[1].content_fingerprint
    assert plan.unchanged == 1


def test_episodes_missing_from_feed_are_left_alone():
    full = _document(two_episode_feed())
    shorter = _document(
        rss_feed(
            [
                rss_item(
                    "Episode 1: Stars",
                    "https://cdn.example.com/ep1.mp3",
                    guid="ep-1",
                    description="All about stars",
                    duration="00:31:05",
                )
            ]
        )
    )

    plan = reconcile(_snapshot_of(full, extra_guids=["ancient"]), shorter)

    assert plan.is_empty
    assert plan.unchanged == 1


def test_show_metadata_change_produces_guarded_delta():
    before = _document(two_episode_feed())
    after = _document(
        rss_feed(
            [],
            title="Science Hour",
            description="Daily science conversations",
        )
    )

    plan = reconcile(_snapshot_of(before), after)

    assert not plan.show_update.is_new
    assert plan.show_update.fields == {"description": "Daily science conversations"}
    assert plan.show_update.expected_fingerprint == before.show.content_fingerprint


def test_untagged_documents_are_fingerprinted_on_the_fly():
    document = parse_feed(two_episode_feed(), FEED_URL)

    plan = reconcile(CatalogSnapshot.empty(), document)

    assert all(op.content_fingerprint for op in plan.inserts)
    assert plan.show_update.content_fingerprint


def test_changed_fields_ignores_cosmetic_differences():
    current = {"title": "Hello world", "explicit": None}
    incoming = {"title": " Hello   world ", "explicit": False}
    assert changed_fields(current, incoming) == {"explicit": False}
