from __future__ import annotations

import asyncio
from datetime import datetime

from story_engine.core.initialization import StoryInitializer, build_story, snapshot_from_seed
from story_engine.core.types import StoryConfig

from conftest import ScriptedOracle, StubAvatar

NOW = datetime(2024, 5, 1, 12, 0, 0)

PHASES = ["blueprint", "starting_location", "player_sheet", "supporting_npcs", "opening_narration", "quest_hooks"]


def _config(**overrides):
    values = dict(
        universe_name="Western Frontier",
        player_name="Rosa",
        player_description="A tired marshal.",
        start_situation="a dusty saloon, at noon",
    )
    values.update(overrides)
    return StoryConfig(**values)


BLUEPRINT = {
    "locationSeeds": [{"id": "seed_saloon", "name": "Last Chance Saloon", "hook": "A standoff brews."}],
    "playerSeed": {"id": "seed_rosa", "name": "Rosa"},
    "npcSeeds": [{"id": "seed_bart", "name": "Bart", "role": "bartender"}],
    "toneDirectives": ["Gritty"],
    "questDifficultyTier": "hardcore",
}


def _full_oracle():
    return ScriptedOracle(
        {
            "blueprint": BLUEPRINT,
            "starting_location": {
                "id": "loc_saloon",
                "name": "Last Chance Saloon",
                "description": "Smoke hangs over the card tables.",
                "connectedExits": [{"id": "loc_street", "name": "Main Street"}],
            },
            "player_sheet": {
                "id": "player_rosa",
                "seedId": "seed_rosa",
                "name": "Rosa",
                "stats": [{"key": "hp", "value": 90}],
                "inventory": ["Revolver", {"name": "Whiskey flask", "quantity": 2}],
                "avatarPrompt": "weathered marshal",
            },
            "supporting_npcs": {
                "npcs": [
                    {"id": "npc_bart", "seedId": "seed_bart", "name": "Bart", "relationshipScore": 132.4},
                    {"id": "player_rosa", "name": "Impostor"},
                ]
            },
            "opening_narration": {
                "messages": [
                    {"type": "narration", "text": "The piano stops."},
                    {"type": "dialogue", "characterName": "Bart", "dialogue": "Trouble, marshal."},
                    {"type": "dialogue", "characterName": "Rosa", "dialogue": "I said nothing."},
                ]
            },
            "quest_hooks": {
                "eventLog": "Rosa enters the saloon.",
                "mainMission": "Bring the Dalton gang to justice",
                "activeProblems": ["Low ammo", "low ammo", "Angry mob"],
                "importantNotes": ["Bart knows things"],
                "startingOpportunities": ["Reward poster"],
            },
            "grid_seed": {
                "playerPosition": {"x": 12, "y": 3},
                "characters": [{"id": "seed_bart", "x": 4, "y": -1}],
                "elements": [{"symbol": "#", "name": "Bar counter", "x": 2, "y": 2}],
            },
        }
    )


def test_all_phases_failing_still_yields_playable_story():
    oracle = ScriptedOracle({})
    result = asyncio.run(StoryInitializer(oracle, clock=lambda: NOW).run(_config()))

    assert {t.phase for t in result.telemetry} == set(PHASES)
    assert not any(t.success for t in result.telemetry)
    assert result.location.name == "a dusty saloon"
    assert result.player.is_player
    assert result.player.name == "Rosa"
    assert result.player.stats == {"hp": 100, "maxHp": 100, "gold": 40}
    assert [i.name for i in result.player.inventory] == ["Worn travel cloak"]
    npcs = [c for c in result.updates.new_characters if not c.is_player]
    assert [n.name for n in npcs] == ["Early Ally"]
    assert npcs[0].stats == {"hp": 100, "maxHp": 100, "gold": 0}
    assert len(result.messages) >= 1
    assert result.updates.event_log == "Rosa steps into a dusty saloon, at noon."
    assert result.heavy_context.main_mission == "Discover why the world summoned you here."
    assert result.grid_seed is None

    story = build_story(_config(), result, now=NOW)
    assert story.title == "Western Frontier - Rosa"
    assert story.player.id == result.player.id
    assert story.current_location is not None
    assert story.turn_count == 0
    assert story.messages[0].page_number == 1
    assert story.events[0].turn == 0


def test_tactical_failure_uses_fallback_grid():
    result = asyncio.run(StoryInitializer(ScriptedOracle({})).run(_config(combat_style="tactical")))
    assert "grid_seed" in {t.phase for t in result.telemetry}
    player_positions = [p for p in result.grid_seed.positions if p.is_player]
    assert len(player_positions) == 1
    assert (player_positions[0].x, player_positions[0].y) == (5, 5)
    assert result.grid_seed.elements[0]["name"] == "Glowing console"


def test_successful_phases_are_merged():
    oracle = _full_oracle()
    avatar = StubAvatar()
    result = asyncio.run(
        StoryInitializer(oracle, avatar=avatar, clock=lambda: NOW).run(_config(combat_style="tactical"))
    )

    assert all(t.success for t in result.telemetry)
    assert oracle.purposes()[0] == "blueprint"
    assert set(oracle.purposes()) == set(PHASES) | {"grid_seed"}

    assert result.location.id == "loc_saloon"
    assert result.location.connected_location_ids == ["loc_street"]

    player = result.player
    assert player.id == "player_rosa"
    assert player.stats == {"hp": 90, "maxHp": 100, "gold": 40}
    assert [i.name for i in player.inventory] == ["Revolver", "Whiskey flask"]
    assert player.portrait == avatar.portrait
    assert avatar.requests[0].description == "weathered marshal"

    npcs = [c for c in result.updates.new_characters if not c.is_player]
    assert [n.id for n in npcs] == ["npc_bart"]
    assert npcs[0].relationships == {"player_rosa": 100}
    assert npcs[0].stats["gold"] == 20

    assert result.heavy_context.active_problems == ["Low ammo", "Angry mob"]
    assert result.heavy_context.important_notes == ["Bart knows things", "Reward poster"]
    assert result.heavy_context.last_updated == NOW

    grid = result.grid_seed
    assert (grid.player_x, grid.player_y) == (9, 3)
    by_id = {p.character_id: p for p in grid.positions}
    assert (by_id["npc_bart"].x, by_id["npc_bart"].y) == (4, 0)
    assert by_id["player_rosa"].is_player
    assert grid.location_name == "Last Chance Saloon"

    story = build_story(_config(), result, now=NOW)
    senders = [m.sender_id for m in story.messages]
    assert senders == ["GM", "npc_bart"]
    assert [m.page_number for m in story.messages] == [1, 2]
    assert story.events[0].description == "Rosa enters the saloon."

    snapshot = snapshot_from_seed(story, grid, now=NOW)
    assert snapshot.story_id == story.id
    assert snapshot.turn == 0
    assert (snapshot.location_id, snapshot.location_name) == ("loc_saloon", "Last Chance Saloon")


def test_avatar_failure_does_not_fail_sheet():
    class BrokenAvatar:
        async def generate(self, request):
            raise RuntimeError("gpu on fire")

    result = asyncio.run(StoryInitializer(_full_oracle(), avatar=BrokenAvatar()).run(_config()))
    assert result.player.id == "player_rosa"
    assert result.player.portrait is None
    avatar_entries = [t for t in result.telemetry if t.phase == "avatar"]
    assert avatar_entries and not avatar_entries[0].success


def test_player_voiced_opening_falls_back_to_narration():
    oracle = ScriptedOracle(
        {"opening_narration": {"messages": [{"type": "dialogue", "characterName": "Rosa", "dialogue": "Where am I?"}]}}
    )
    result = asyncio.run(StoryInitializer(oracle, clock=lambda: NOW).run(_config()))
    assert len(result.messages) == 1

    story = build_story(_config(), result, now=NOW)

    assert len(story.messages) == 1
    opening = story.messages[0]
    assert (opening.sender_id, opening.type, opening.page_number) == ("GM", "narration", 1)
    assert opening.text == (result.location.description or f"You arrive at {result.location.name}.")
