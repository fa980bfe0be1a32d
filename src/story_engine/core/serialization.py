"""Conversion between domain dataclasses and their camelCase wire dicts.

The same dict shapes are used for export envelopes, the ``*_json`` payload
columns and the option cache record.
"""

from __future__ import annotations

from typing import Any

from .normalize import coerce_int, coerce_number, coerce_str, format_timestamp, parse_timestamp, utcnow
from .response import normalize_character, normalize_location
from .types import (
    ActionOption,
    CachedOptions,
    Character,
    CharacterPosition,
    ChatMessage,
    GameEvent,
    GridSnapshot,
    HeavyContext,
    Item,
    Location,
    Story,
    StoryConfig,
)


def item_to_dict(item: Item) -> dict[str, Any]:
    return {
        "name": item.name,
        "category": item.category,
        "quantity": item.quantity,
        "stackable": item.stackable,
        "consumable": item.consumable,
        "sellable": item.sellable,
        "description": item.description,
        "baseValue": item.base_value,
        "effects": [
            {"stat": e.stat, "value": e.value, "duration": e.duration} for e in item.effects
        ],
    }


def character_to_dict(character: Character) -> dict[str, Any]:
    return {
        "id": character.id,
        "name": character.name,
        "description": character.description,
        "isPlayer": character.is_player,
        "locationId": character.location_id,
        "stats": dict(character.stats),
        "inventory": [item_to_dict(item) for item in character.inventory],
        "relationships": dict(character.relationships),
        "state": character.state,
        "avatarColor": character.avatar_color,
        "avatarBase64": character.portrait,
    }


def character_from_dict(data: dict[str, Any]) -> Character | None:
    return normalize_character(data)


def location_to_dict(location: Location) -> dict[str, Any]:
    return {
        "id": location.id,
        "name": location.name,
        "description": location.description,
        "connectedLocationIds": list(location.connected_location_ids),
        "backgroundImage": location.background_image,
    }


def location_from_dict(data: dict[str, Any]) -> Location | None:
    return normalize_location(data)


def message_to_dict(message: ChatMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "senderId": message.sender_id,
        "text": message.text,
        "type": message.type,
        "pageNumber": message.page_number,
        "timestamp": format_timestamp(message.timestamp),
        "voiceTone": message.voice_tone,
    }


def message_from_dict(data: Any) -> ChatMessage | None:
    if not isinstance(data, dict):
        return None
    message_id = coerce_str(data.get("id"))
    if not message_id:
        return None
    return ChatMessage(
        id=message_id,
        sender_id=coerce_str(data.get("senderId")) or "GM",
        text=coerce_str(data.get("text")),
        type=coerce_str(data.get("type")) or "narration",
        page_number=coerce_int(data.get("pageNumber"), 0),
        timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
        voice_tone=coerce_str(data.get("voiceTone")) or None,
    )


def event_to_dict(event: GameEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "turn": event.turn,
        "description": event.description,
        "importance": event.importance,
    }


def event_from_dict(data: Any) -> GameEvent | None:
    if not isinstance(data, dict):
        return None
    event_id = coerce_str(data.get("id"))
    if not event_id:
        return None
    importance = coerce_str(data.get("importance")).lower()
    return GameEvent(
        id=event_id,
        turn=coerce_int(data.get("turn"), 0),
        description=coerce_str(data.get("description")),
        importance=importance if importance in ("low", "medium", "high") else "medium",
    )


def context_to_dict(context: HeavyContext | None) -> dict[str, Any] | None:
    if context is None:
        return None
    return {
        "mainMission": context.main_mission,
        "currentMission": context.current_mission,
        "activeProblems": list(context.active_problems),
        "currentConcerns": list(context.current_concerns),
        "importantNotes": list(context.important_notes),
        "lastUpdated": format_timestamp(context.last_updated),
    }


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [coerce_str(entry) for entry in value if coerce_str(entry)]


def context_from_dict(data: Any) -> HeavyContext | None:
    if not isinstance(data, dict):
        return None
    return HeavyContext(
        main_mission=coerce_str(data.get("mainMission")) or None,
        current_mission=coerce_str(data.get("currentMission")) or None,
        active_problems=_str_list(data.get("activeProblems")),
        current_concerns=_str_list(data.get("currentConcerns")),
        important_notes=_str_list(data.get("importantNotes")),
        last_updated=parse_timestamp(data.get("lastUpdated")),
    )


def position_to_dict(position: CharacterPosition) -> dict[str, Any]:
    return {
        "characterId": position.character_id,
        "characterName": position.character_name,
        "x": position.x,
        "y": position.y,
        "isPlayer": position.is_player,
        "avatarBase64": position.portrait,
    }


def snapshot_to_dict(snapshot: GridSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "storyId": snapshot.story_id,
        "turn": snapshot.turn,
        "timestamp": format_timestamp(snapshot.timestamp),
        "locationId": snapshot.location_id,
        "locationName": snapshot.location_name,
        "characterPositions": [position_to_dict(p) for p in snapshot.positions],
    }


def position_from_dict(data: Any) -> CharacterPosition | None:
    if not isinstance(data, dict):
        return None
    character_id = coerce_str(data.get("characterId"))
    if not character_id:
        return None
    return CharacterPosition(
        character_id=character_id,
        character_name=coerce_str(data.get("characterName")) or character_id,
        x=coerce_int(data.get("x"), 0),
        y=coerce_int(data.get("y"), 0),
        is_player=data.get("isPlayer") is True,
        portrait=coerce_str(data.get("avatarBase64")) or None,
    )


def snapshot_from_dict(data: Any, story_id: str | None = None) -> GridSnapshot | None:
    if not isinstance(data, dict):
        return None
    snapshot_id = coerce_str(data.get("id"))
    if not snapshot_id:
        return None
    positions = [
        position
        for position in (position_from_dict(p) for p in (data.get("characterPositions") or []))
        if position is not None
    ]
    return GridSnapshot(
        id=snapshot_id,
        story_id=story_id or coerce_str(data.get("storyId")),
        turn=coerce_int(data.get("turn"), 0),
        timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
        location_id=coerce_str(data.get("locationId")),
        location_name=coerce_str(data.get("locationName")) or "Unknown",
        positions=positions,
    )


def config_to_dict(config: StoryConfig) -> dict[str, Any]:
    return {
        "universeName": config.universe_name,
        "playerName": config.player_name,
        "playerDescription": config.player_description,
        "universeType": config.universe_type,
        "combatStyle": config.combat_style,
        "dialogueHeavy": config.dialogue_heavy,
        "language": config.language,
        "background": config.background,
        "startSituation": config.start_situation,
        "genre": config.genre,
        "visualStyle": config.visual_style,
        "title": config.title,
    }


def config_from_dict(data: Any) -> StoryConfig:
    data = data if isinstance(data, dict) else {}
    return StoryConfig(
        universe_name=coerce_str(data.get("universeName")),
        player_name=coerce_str(data.get("playerName")),
        player_description=coerce_str(data.get("playerDescription")),
        universe_type=coerce_str(data.get("universeType")) or "original",
        combat_style=coerce_str(data.get("combatStyle")) or "descriptive",
        dialogue_heavy=data.get("dialogueHeavy") is True,
        language=coerce_str(data.get("language")) or "en",
        background=coerce_str(data.get("background")),
        start_situation=coerce_str(data.get("startSituation")),
        genre=coerce_str(data.get("genre")) or None,
        visual_style=coerce_str(data.get("visualStyle")) or None,
        title=coerce_str(data.get("title")) or None,
    )


def option_to_dict(option: ActionOption) -> dict[str, Any]:
    return {
        "text": option.text,
        "goodChance": option.good_chance,
        "badChance": option.bad_chance,
        "goodHint": option.good_hint,
        "badHint": option.bad_hint,
    }


def option_from_dict(data: Any) -> ActionOption | None:
    if not isinstance(data, dict):
        return None
    text = coerce_str(data.get("text"))
    if not text:
        return None
    return ActionOption(
        text=text,
        good_chance=coerce_number(data.get("goodChance")) or 0,
        bad_chance=coerce_number(data.get("badChance")) or 0,
        good_hint=coerce_str(data.get("goodHint")) or None,
        bad_hint=coerce_str(data.get("badHint")) or None,
    )


def cached_options_to_dict(record: CachedOptions) -> dict[str, Any]:
    return {
        "cacheKey": record.cache_key,
        "lastMessageId": record.last_message_id,
        "options": [option_to_dict(o) for o in record.options],
    }


def cached_options_from_dict(data: Any) -> CachedOptions | None:
    """Decode a stored option record; legacy records fall back to the message id."""
    if not isinstance(data, dict) or not isinstance(data.get("options"), list):
        return None
    last_message_id = data.get("lastMessageId")
    last_message_id = last_message_id if isinstance(last_message_id, str) else ""
    cache_key = data.get("cacheKey")
    cache_key = cache_key if isinstance(cache_key, str) else last_message_id
    options = [o for o in (option_from_dict(entry) for entry in data["options"]) if o is not None]
    return CachedOptions(cache_key=cache_key, last_message_id=last_message_id, options=options)


def story_to_dict(story: Story) -> dict[str, Any]:
    return {
        "id": story.id,
        "title": story.title,
        "config": config_to_dict(story.config),
        "playerCharacterId": story.player_character_id,
        "currentLocationId": story.current_location_id,
        "turnCount": story.turn_count,
        "lastPlayed": format_timestamp(story.last_played),
        "characters": {cid: character_to_dict(c) for cid, c in story.characters.items()},
        "locations": {lid: location_to_dict(loc) for lid, loc in story.locations.items()},
        "messages": [message_to_dict(m) for m in story.messages],
        "events": [event_to_dict(e) for e in story.events],
        "heavyContext": context_to_dict(story.heavy_context),
        "gridSnapshots": [snapshot_to_dict(s) for s in story.grid_snapshots],
        "universeContext": story.universe_context,
    }


def story_from_dict(data: dict[str, Any]) -> Story:
    """Rebuild a story from an already migrated wire dict."""
    story_id = coerce_str(data.get("id"))
    characters: dict[str, Character] = {}
    raw_characters = data.get("characters")
    for key, raw in (raw_characters.items() if isinstance(raw_characters, dict) else []):
        if isinstance(raw, dict) and "id" not in raw:
            raw = {**raw, "id": key}
        character = character_from_dict(raw)
        if character is not None:
            characters[character.id] = character

    locations: dict[str, Location] = {}
    raw_locations = data.get("locations")
    for key, raw in (raw_locations.items() if isinstance(raw_locations, dict) else []):
        if isinstance(raw, dict) and "id" not in raw:
            raw = {**raw, "id": key}
        location = location_from_dict(raw)
        if location is not None:
            locations[location.id] = location

    raw_messages = data.get("messages") if isinstance(data.get("messages"), list) else []
    raw_events = data.get("events") if isinstance(data.get("events"), list) else []
    raw_snapshots = data.get("gridSnapshots") if isinstance(data.get("gridSnapshots"), list) else []

    return Story(
        id=story_id,
        title=coerce_str(data.get("title")),
        config=config_from_dict(data.get("config")),
        player_character_id=coerce_str(data.get("playerCharacterId")),
        current_location_id=coerce_str(data.get("currentLocationId")),
        turn_count=coerce_int(data.get("turnCount"), 0),
        last_played=parse_timestamp(data.get("lastPlayed")),
        characters=characters,
        locations=locations,
        messages=[m for m in (message_from_dict(r) for r in raw_messages) if m is not None],
        events=[e for e in (event_from_dict(r) for r in raw_events) if e is not None],
        heavy_context=context_from_dict(data.get("heavyContext")),
        grid_snapshots=[
            s for s in (snapshot_from_dict(r, story_id) for r in raw_snapshots) if s is not None
        ],
        universe_context=coerce_str(data.get("universeContext")) or None,
    )


__all__ = [
    "cached_options_from_dict",
    "cached_options_to_dict",
    "character_from_dict",
    "character_to_dict",
    "config_from_dict",
    "config_to_dict",
    "context_from_dict",
    "context_to_dict",
    "event_from_dict",
    "event_to_dict",
    "item_to_dict",
    "location_from_dict",
    "location_to_dict",
    "message_from_dict",
    "message_to_dict",
    "option_from_dict",
    "option_to_dict",
    "snapshot_from_dict",
    "snapshot_to_dict",
    "story_from_dict",
    "story_to_dict",
]
