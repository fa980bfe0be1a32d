from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel

from .context import context_to_prompt_dict
from .normalize import dump_json
from .phases import (
    GridSeed,
    OpeningNarration,
    PlayerSheetDetail,
    QuestHooks,
    StartingLocationDetail,
    StoryBlueprint,
    SupportingNPCs,
    phase_json_schema,
)
from .serialization import config_to_dict
from .types import FateResult, OracleRequest, Story, StoryConfig

PHASE_SYSTEM_PROMPTS: dict[str, str] = {
    "blueprint": "You are a senior narrative architect. Respond with canonical seeds.",
    "starting_location": "You are an environment artist describing the opening scene.",
    "player_sheet": "You are crafting the canonical player sheet.",
    "supporting_npcs": "You are designing supporting NPC dossiers.",
    "opening_narration": "You are the GM voice writing the first cards.",
    "quest_hooks": "You are a narrative strategist summarizing missions.",
    "grid_seed": "You are mapping a 10x10 tactical grid.",
}

PHASE_MODELS: dict[str, type[BaseModel]] = {
    "blueprint": StoryBlueprint,
    "starting_location": StartingLocationDetail,
    "player_sheet": PlayerSheetDetail,
    "supporting_npcs": SupportingNPCs,
    "opening_narration": OpeningNarration,
    "quest_hooks": QuestHooks,
    "grid_seed": GridSeed,
}


def phase_request(phase: str, payload: dict[str, Any], language: str) -> OracleRequest:
    return OracleRequest(
        purpose=phase,
        system_prompt=(
            f"{PHASE_SYSTEM_PROMPTS[phase]} Write all prose in language '{language}'. "
            "Always respond with a single valid JSON object matching the schema."
        ),
        prompt=dump_json(payload),
        response_schema=phase_json_schema(PHASE_MODELS[phase]),
        temperature=0.9 if phase == "blueprint" else 0.8,
    )


def blueprint_request(config: StoryConfig) -> OracleRequest:
    return phase_request("blueprint", {"config": config_to_dict(config)}, config.language)


def detail_request(phase: str, config: StoryConfig, blueprint: StoryBlueprint) -> OracleRequest:
    payload = {
        "config": config_to_dict(config),
        "blueprint": blueprint.model_dump(by_alias=True),
    }
    return phase_request(phase, payload, config.language)


TURN_REPLY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "messages": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": ["narration", "dialogue", "system"]},
                    "text": {"type": "string"},
                    "characterName": {"type": "string"},
                    "dialogue": {"type": "string"},
                    "voiceTone": {"type": "string"},
                    "newCharacterData": {"type": "object"},
                },
                "required": ["type"],
            },
        },
        "stateUpdates": {
            "type": "object",
            "properties": {
                "newLocations": {"type": "array"},
                "newCharacters": {"type": "array"},
                "updatedCharacters": {"type": "array"},
                "locationChange": {"type": "string"},
                "eventLog": {"type": "string"},
            },
        },
    },
    "required": ["messages", "stateUpdates"],
}


def _recent_history(story: Story, window: int) -> list[dict[str, Any]]:
    names = {cid: c.name for cid, c in story.characters.items()}
    return [
        {"sender": names.get(m.sender_id, m.sender_id), "type": m.type, "text": m.text}
        for m in story.messages[-window:]
    ]


def turn_request(
    story: Story,
    action: str,
    fate: Optional[FateResult],
    history_window: int,
) -> OracleRequest:
    location = story.current_location
    payload: dict[str, Any] = {
        "universe": story.config.universe_name,
        "universeContext": story.universe_context,
        "location": {"id": location.id, "name": location.name, "description": location.description}
        if location
        else None,
        "player": {"id": story.player_character_id, "name": story.player.name if story.player else ""},
        "characters": [
            {"id": c.id, "name": c.name, "locationId": c.location_id, "state": c.state}
            for c in story.characters.values()
        ],
        "heavyContext": context_to_prompt_dict(story.heavy_context),
        "history": _recent_history(story, history_window),
        "playerAction": action,
    }
    if fate is not None and fate.outcome != "neutral":
        payload["fate"] = {"outcome": fate.outcome, "hint": fate.hint}
    return OracleRequest(
        purpose="turn",
        system_prompt=(
            "You are the game master of an interactive role-playing story. Never speak for the "
            f"player character. Write in language '{story.config.language}'. Respond with JSON only."
        ),
        prompt=dump_json(payload),
        response_schema=TURN_REPLY_SCHEMA,
    )


OPTIONS_REPLY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "options": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "text": {"type": "string"},
                    "goodChance": {"type": "number"},
                    "badChance": {"type": "number"},
                    "goodHint": {"type": "string"},
                    "badHint": {"type": "string"},
                },
                "required": ["text"],
            },
        }
    },
    "required": ["options"],
}


def options_request(story: Story, count: int, history_window: int) -> OracleRequest:
    payload = {
        "heavyContext": context_to_prompt_dict(story.heavy_context),
        "history": _recent_history(story, history_window),
        "count": count,
    }
    return OracleRequest(
        purpose="action_options",
        system_prompt=(
            f"Suggest {count} short next actions for the player, each with the chance (0-50) "
            "that something good or bad happens. Respond with JSON only."
        ),
        prompt=dump_json(payload),
        response_schema=OPTIONS_REPLY_SCHEMA,
        temperature=0.7,
    )
