from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy import select

from story_engine.core.errors import ImportErrorReason, ImportValidationError
from story_engine.core.options import OptionCache
from story_engine.core.types import CharacterPosition, GridSnapshot
from story_engine.persistence.mapper import StoryMapper
from story_engine.persistence.rows import message_row
from story_engine.persistence.sqlalchemy.models import (
    CharacterRow,
    GridSnapshotRow,
    MessageRow,
    OptionCacheRow,
    StoryRow,
)
from story_engine.persistence.stores import SQLOptionCacheStore, SpatialSnapshotStore

from conftest import BASE_TIME


def test_save_load_round_trip(uow_factory, make_story, scheduled):
    story = make_story()
    mapper = StoryMapper(uow_factory, scheduler=scheduled)
    mapper.save(story)

    loaded = mapper.load("story-1")
    assert loaded.title == story.title
    assert loaded.config == story.config
    assert loaded.characters == story.characters
    assert loaded.locations == story.locations
    assert loaded.messages == story.messages
    assert loaded.events == story.events
    assert loaded.heavy_context == story.heavy_context
    assert loaded.turn_count == 2
    assert scheduled.tasks == []


def test_load_missing_story_returns_none(uow_factory):
    assert StoryMapper(uow_factory).load("nope") is None


def test_save_is_idempotent_and_mirrors_removals(uow_factory, session_factory, make_story):
    story = make_story()
    mapper = StoryMapper(uow_factory)
    mapper.save(story)
    mapper.save(story)
    del story.characters["npc-kai"]
    story.messages = story.messages[:2]
    mapper.save(story)

    with session_factory() as session:
        assert [r.id for r in session.execute(select(CharacterRow)).scalars()] == ["player-1"]
        assert len(session.execute(select(MessageRow)).scalars().all()) == 2
        assert len(session.execute(select(StoryRow)).scalars().all()) == 1


def test_duplicate_messages_collapse_and_schedule_resave(uow_factory, session_factory, make_story, scheduled):
    story = make_story()
    mapper = StoryMapper(uow_factory, scheduler=scheduled)
    mapper.save(story)
    last = story.messages[-1]
    echo = replace(last, id="msg-echo", page_number=4, timestamp=last.timestamp + timedelta(milliseconds=300))
    with uow_factory() as uow:
        uow.messages.upsert_many([message_row("story-1", echo)])
        uow.commit()

    loaded = mapper.load("story-1")
    assert [m.id for m in loaded.messages] == ["msg-1", "msg-2", "msg-3"]
    assert [m.page_number for m in loaded.messages] == [1, 2, 3]
    assert len(scheduled.tasks) == 1

    scheduled.tasks[0]()
    with session_factory() as session:
        assert len(session.execute(select(MessageRow)).scalars().all()) == 3


def _save_with_echo(mapper, uow_factory, story):
    mapper.save(story)
    last = story.messages[-1]
    echo = replace(last, id="msg-echo", page_number=4, timestamp=last.timestamp + timedelta(milliseconds=300))
    with uow_factory() as uow:
        uow.messages.upsert_many([message_row(story.id, echo)])
        uow.commit()


def test_queued_resave_does_not_resurrect_deleted_story(uow_factory, session_factory, make_story, scheduled):
    mapper = StoryMapper(uow_factory, scheduler=scheduled)
    _save_with_echo(mapper, uow_factory, make_story())

    assert mapper.load("story-1") is not None
    assert len(scheduled.tasks) == 1
    assert mapper.delete("story-1")

    scheduled.tasks[0]()

    assert mapper.load("story-1") is None
    with session_factory() as session:
        assert session.execute(select(MessageRow)).scalars().all() == []


def test_queued_resave_yields_to_newer_turn(uow_factory, make_story, scheduled):
    mapper = StoryMapper(uow_factory, scheduler=scheduled)
    _save_with_echo(mapper, uow_factory, make_story())

    loaded = mapper.load("story-1")
    loaded.turn_count = 3
    loaded.title = "Renamed"
    mapper.save(loaded)

    scheduled.tasks[0]()

    current = mapper.load("story-1")
    assert (current.turn_count, current.title) == (3, "Renamed")


def test_queued_resave_writes_the_story_as_loaded(uow_factory, make_story, scheduled):
    mapper = StoryMapper(uow_factory, scheduler=scheduled)
    _save_with_echo(mapper, uow_factory, make_story())

    loaded = mapper.load("story-1")
    loaded.title = "Edited in memory"
    scheduled.tasks[0]()

    assert mapper.load("story-1").title == "Neon Harbor - Ada"

def test_legacy_character_payload_is_migrated_on_load(uow_factory, make_story, scheduled):
    story = make_story()
    story.characters["npc-kai"].stats = {"hp": 80}
    mapper = StoryMapper(uow_factory, scheduler=scheduled)
    mapper.save(story)

    loaded = mapper.load("story-1")
    assert loaded.characters["npc-kai"].stats == {"hp": 80, "maxHp": 100, "gold": 0}
    assert len(scheduled.tasks) == 1


def test_list_summaries_has_meta_only(uow_factory, make_story):
    mapper = StoryMapper(uow_factory)
    mapper.save(make_story("story-1"))
    mapper.save(make_story("story-2", last_played=BASE_TIME + timedelta(days=1)))

    summaries = mapper.list_summaries()
    assert [s.id for s in summaries] == ["story-2", "story-1"]
    assert all(s.characters == {} and s.messages == [] for s in summaries)


def test_delete_cascades_every_category(uow_factory, session_factory, make_story):
    story = make_story()
    mapper = StoryMapper(uow_factory)
    mapper.save(story)
    SpatialSnapshotStore(uow_factory).append(
        GridSnapshot(
            id="g1",
            story_id="story-1",
            turn=0,
            timestamp=BASE_TIME,
            location_id="loc-pier",
            location_name="Pier 9",
            positions=[CharacterPosition(character_id="player-1", character_name="Ada", x=5, y=5, is_player=True)],
        )
    )
    OptionCache(SQLOptionCacheStore(uow_factory)).save("story-1", "k", "msg-3", [])

    assert mapper.delete("story-1") is True
    assert mapper.delete("story-1") is False
    with session_factory() as session:
        for model in (StoryRow, CharacterRow, MessageRow, GridSnapshotRow, OptionCacheRow):
            assert session.execute(select(model)).scalars().all() == []


def test_export_import_rekeys_story(uow_factory, make_story):
    story = make_story()
    mapper = StoryMapper(uow_factory, clock=lambda: BASE_TIME + timedelta(days=2))
    mapper.save(story)
    SpatialSnapshotStore(uow_factory).append(
        GridSnapshot(
            id="g1",
            story_id="story-1",
            turn=1,
            timestamp=BASE_TIME,
            location_id="loc-pier",
            location_name="Pier 9",
            positions=[CharacterPosition(character_id="player-1", character_name="Ada", x=5, y=5, is_player=True)],
        )
    )

    envelope = mapper.export_story("story-1")
    assert envelope["version"] == 1
    assert envelope["exportedAt"] == "2024-05-03T12:00:00Z"
    assert envelope["story"]["playerCharacterId"] == "player-1"

    new_id = mapper.import_story(envelope)
    assert new_id != "story-1"
    imported = mapper.load(new_id)
    new_player = f"player_{new_id}"
    assert imported.player_character_id == new_player
    assert imported.player.name == "Ada"
    assert imported.characters["npc-kai"].relationships == {new_player: 10}
    assert [m.id for m in imported.messages] == [f"msg_{new_id}_{i}" for i in range(3)]
    assert imported.messages[1].sender_id == new_player
    assert imported.messages[0].sender_id == "GM"
    assert [e.id for e in imported.events] == [f"evt_{new_id}_0"]
    assert imported.last_played == BASE_TIME + timedelta(days=2)
    snapshot = imported.grid_snapshots[0]
    assert snapshot.story_id == new_id
    assert snapshot.positions[0].character_id == new_player

    original = mapper.load("story-1")
    assert original.player_character_id == "player-1"


@pytest.mark.parametrize(
    "data,reason",
    [
        ("not a dict", ImportErrorReason.INVALID_FORMAT),
        ({"story": {}}, ImportErrorReason.BAD_VERSION),
        ({"version": 99, "story": {}}, ImportErrorReason.BAD_VERSION),
        ({"version": 1}, ImportErrorReason.MISSING_FIELD),
        ({"version": 1, "story": {"id": "x"}}, ImportErrorReason.MISSING_FIELD),
    ],
)
def test_validate_import_rejects_bad_envelopes(uow_factory, data, reason):
    with pytest.raises(ImportValidationError) as excinfo:
        StoryMapper(uow_factory).validate_import(data)
    assert excinfo.value.reason is reason


def test_validate_import_checks_collections(uow_factory, make_story):
    mapper = StoryMapper(uow_factory)
    mapper.save(make_story())
    envelope = mapper.export_story("story-1")
    envelope["story"]["messages"] = {"not": "a list"}
    with pytest.raises(ImportValidationError) as excinfo:
        mapper.import_story(envelope)
    assert excinfo.value.reason is ImportErrorReason.INVALID_COLLECTION
    assert len(mapper.list_summaries()) == 1


def test_legacy_game_envelope_imports(uow_factory, make_story):
    mapper = StoryMapper(uow_factory)
    mapper.save(make_story())
    envelope = mapper.export_story("story-1")
    legacy = {"version": 1, "exportedAt": 1714564800000, "game": envelope["story"]}
    new_id = mapper.import_story(legacy)
    assert mapper.load(new_id).title == "Neon Harbor - Ada"
