from __future__ import annotations

import asyncio
from datetime import datetime

from story_engine.core.grid import GridAnalyzer, create_initial_snapshot, query_as_of, snapshot_from_grid_reply
from story_engine.core.types import CharacterPosition, GridSnapshot, NormalizedTurn
from story_engine.persistence.mapper import StoryMapper
from story_engine.persistence.stores import SpatialSnapshotStore

from conftest import ScriptedOracle

T0 = datetime(2024, 5, 1, 12, 0, 0)


def _snap(sid, turn, story_id="story-1"):
    return GridSnapshot(
        id=sid,
        story_id=story_id,
        turn=turn,
        timestamp=T0,
        location_id="loc-pier",
        location_name="Pier 9",
        positions=[CharacterPosition(character_id="player-1", character_name="Ada", x=5, y=5, is_player=True)],
    )


def test_initial_snapshot_centres_player_and_rings_npcs(make_story):
    snapshot = create_initial_snapshot(make_story())
    by_id = {p.character_id: p for p in snapshot.positions}
    assert (by_id["player-1"].x, by_id["player-1"].y) == (5, 5)
    assert by_id["player-1"].is_player
    assert (by_id["npc-kai"].x, by_id["npc-kai"].y) == (7, 5)
    assert snapshot.turn == 2
    assert snapshot.location_name == "Pier 9"


def test_initial_snapshot_skips_npcs_elsewhere(make_story):
    story = make_story()
    story.characters["npc-kai"].location_id = "loc-market"
    snapshot = create_initial_snapshot(story, turn=0)
    assert [p.character_id for p in snapshot.positions] == ["player-1"]
    assert snapshot.turn == 0


def test_query_as_of_pure():
    history = [_snap("a", 0), _snap("b", 3), _snap("c", 3), _snap("d", 7)]
    assert query_as_of(history, 5).id == "c"
    assert query_as_of(history, 7).id == "d"
    assert query_as_of(history, 0).id == "a"
    assert query_as_of([_snap("x", 2)], 1) is None
    assert query_as_of([], 10) is None


def test_grid_reply_is_clamped_and_enriched(make_story):
    story = make_story()
    story.characters["npc-kai"].portrait = "kai.png"
    reply = (
        '{"shouldUpdate": true, "reasoning": "Kai ran", "characterPositions": ['
        '{"characterId": "npc-kai", "x": 15, "y": -2},'
        '{"characterId": "player-1", "x": 4.6, "y": 3, "isPlayer": true},'
        '{"x": 1, "y": 1}]}'
    )
    snapshot = snapshot_from_grid_reply(story, reply, turn=3)
    by_id = {p.character_id: p for p in snapshot.positions}
    assert set(by_id) == {"npc-kai", "player-1"}
    assert (by_id["npc-kai"].x, by_id["npc-kai"].y) == (9, 0)
    assert by_id["npc-kai"].character_name == "Kai Moreno"
    assert by_id["npc-kai"].portrait == "kai.png"
    assert (by_id["player-1"].x, by_id["player-1"].y) == (5, 3)
    assert snapshot.turn == 3


def test_grid_reply_without_update(make_story):
    assert snapshot_from_grid_reply(make_story(), '{"shouldUpdate": false}', turn=1) is None
    assert snapshot_from_grid_reply(make_story(), '{"shouldUpdate": true, "characterPositions": []}', 1) is None


def test_analyzer_swallows_oracle_failure(make_story):
    analyzer = GridAnalyzer(ScriptedOracle({"grid_update": RuntimeError("down")}))
    assert asyncio.run(analyzer.analyze(make_story(), NormalizedTurn(), None)) is None


def test_store_is_append_only_and_queries_as_of(uow_factory, make_story):
    StoryMapper(uow_factory).save(make_story())
    store = SpatialSnapshotStore(uow_factory)

    assert store.append(_snap("g0", 0))
    assert store.append(_snap("g3a", 3))
    assert store.append(_snap("g3b", 3))
    assert store.append(_snap("g8", 8))
    duplicate = _snap("g0", 5)
    assert store.append(duplicate) is False

    assert store.query_as_of("story-1", 4).id == "g3b"
    assert store.query_as_of("story-1", 0).id == "g0"
    assert store.query_as_of("story-1", 100).id == "g8"
    assert store.latest("story-1").id == "g8"
    assert [s.id for s in store.history("story-1")] == ["g0", "g3a", "g3b", "g8"]
    assert store.query_as_of("missing", 10) is None


def test_store_never_peeks_forward(uow_factory, make_story):
    StoryMapper(uow_factory).save(make_story())
    store = SpatialSnapshotStore(uow_factory)
    store.append(_snap("g5", 5))
    assert store.query_as_of("story-1", 4) is None
