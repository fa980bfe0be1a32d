"""Mapping between domain dataclasses and SQLAlchemy rows."""

from __future__ import annotations

import json
from typing import Any

from ..core.normalize import dump_json, parse_json_dict, utcnow
from ..core.serialization import (
    character_to_dict,
    config_from_dict,
    config_to_dict,
    context_from_dict,
    context_to_dict,
    location_from_dict,
    location_to_dict,
    position_from_dict,
    position_to_dict,
)
from ..core.types import Character, ChatMessage, GameEvent, GridSnapshot, Location, Story
from .sqlalchemy.models import (
    CharacterRow,
    EventRow,
    GridSnapshotRow,
    LocationRow,
    MessageRow,
    StoryRow,
)


def story_row(story: Story) -> StoryRow:
    return StoryRow(
        id=story.id,
        title=story.title,
        config_json=dump_json(config_to_dict(story.config)),
        player_character_id=story.player_character_id,
        current_location_id=story.current_location_id,
        turn_count=story.turn_count,
        last_played=story.last_played,
        heavy_context_json=dump_json(context_to_dict(story.heavy_context)) if story.heavy_context else None,
        universe_context=story.universe_context,
    )


def story_from_row(row: StoryRow) -> Story:
    """Meta fields only; child collections come back empty."""
    context_data = parse_json_dict(row.heavy_context_json)
    return Story(
        id=row.id,
        title=row.title,
        config=config_from_dict(parse_json_dict(row.config_json)),
        player_character_id=row.player_character_id,
        current_location_id=row.current_location_id,
        turn_count=row.turn_count,
        last_played=row.last_played,
        heavy_context=context_from_dict(context_data) if context_data else None,
        universe_context=row.universe_context,
    )


def character_row(story_id: str, character: Character) -> CharacterRow:
    return CharacterRow(
        story_id=story_id,
        id=character.id,
        name=character.name,
        is_player=character.is_player,
        location_id=character.location_id,
        payload_json=dump_json(character_to_dict(character)),
    )


def location_row(story_id: str, location: Location) -> LocationRow:
    return LocationRow(
        story_id=story_id,
        id=location.id,
        name=location.name,
        payload_json=dump_json(location_to_dict(location)),
    )


def location_from_row(row: LocationRow) -> Location | None:
    data = parse_json_dict(row.payload_json)
    data.setdefault("id", row.id)
    return location_from_dict(data)


def message_row(story_id: str, message: ChatMessage) -> MessageRow:
    return MessageRow(
        story_id=story_id,
        id=message.id,
        sender_id=message.sender_id,
        type=message.type,
        text=message.text,
        page_number=message.page_number,
        timestamp=message.timestamp,
        voice_tone=message.voice_tone,
    )


def message_from_row(row: MessageRow) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        sender_id=row.sender_id,
        text=row.text,
        type=row.type,
        page_number=row.page_number,
        timestamp=row.timestamp,
        voice_tone=row.voice_tone,
    )


def event_row(story_id: str, event: GameEvent) -> EventRow:
    return EventRow(
        story_id=story_id,
        id=event.id,
        turn=event.turn,
        description=event.description,
        importance=event.importance,
    )


def event_from_row(row: EventRow) -> GameEvent:
    return GameEvent(id=row.id, turn=row.turn, description=row.description, importance=row.importance)


def snapshot_row(snapshot: GridSnapshot) -> GridSnapshotRow:
    return GridSnapshotRow(
        story_id=snapshot.story_id,
        id=snapshot.id,
        turn=snapshot.turn,
        timestamp=snapshot.timestamp or utcnow(),
        location_id=snapshot.location_id,
        location_name=snapshot.location_name,
        positions_json=dump_json([position_to_dict(p) for p in snapshot.positions]),
    )


def _json_list(text: str | None) -> list[Any]:
    if not text:
        return []
    try:
        data = json.loads(text)
    except ValueError:
        return []
    return data if isinstance(data, list) else []


def snapshot_from_row(row: GridSnapshotRow) -> GridSnapshot:
    positions = [p for p in (position_from_dict(entry) for entry in _json_list(row.positions_json)) if p]
    return GridSnapshot(
        id=row.id,
        story_id=row.story_id,
        turn=row.turn,
        timestamp=row.timestamp,
        location_id=row.location_id,
        location_name=row.location_name,
        positions=positions,
    )
