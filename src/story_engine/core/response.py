from __future__ import annotations

from typing import Any

from .inventory import normalize_inventory
from .normalize import clamp, coerce_number, coerce_str, parse_oracle_json, round_half_up
from .types import (
    CHARACTER_STATES,
    Character,
    CharacterPatch,
    DialogueMessage,
    Location,
    NarrationMessage,
    NormalizedTurn,
    StateUpdates,
    SystemMessage,
    TurnMessage,
)

NARRATOR_SENDERS = frozenset({"narrator", "gm", "game master"})
SYSTEM_SENDERS = frozenset({"system"})


def normalize_stats(raw: Any) -> dict[str, float]:
    """Accept ``[{key, value}]`` pairs or a mapping; keep numeric values only."""
    stats: dict[str, float] = {}
    if isinstance(raw, list):
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            key = coerce_str(entry.get("key"))
            value = coerce_number(entry.get("value"))
            if key and value is not None:
                stats[key] = value
    elif isinstance(raw, dict):
        for key, value in raw.items():
            number = coerce_number(value)
            if number is not None:
                stats[str(key)] = number
    return stats


def _affinity(value: object) -> int | None:
    number = coerce_number(value)
    if number is None:
        return None
    return int(clamp(round_half_up(number), -100, 100))


def normalize_relationships(raw: Any) -> dict[str, int]:
    relationships: dict[str, int] = {}
    if isinstance(raw, list):
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            target = coerce_str(entry.get("targetId", entry.get("characterId")))
            score = _affinity(entry.get("score", entry.get("value")))
            if target and score is not None:
                relationships[target] = score
    elif isinstance(raw, dict):
        for target, value in raw.items():
            score = _affinity(value)
            if score is not None:
                relationships[str(target)] = score
    return relationships


def normalize_state(raw: object) -> str:
    value = coerce_str(raw).lower()
    return value if value in CHARACTER_STATES else "idle"


def normalize_character(raw: Any) -> Character | None:
    if not isinstance(raw, dict):
        return None
    character_id = coerce_str(raw.get("id"))
    if not character_id:
        return None
    return Character(
        id=character_id,
        name=coerce_str(raw.get("name")) or character_id,
        description=coerce_str(raw.get("description")),
        is_player=raw.get("isPlayer") is True,
        location_id=coerce_str(raw.get("locationId")),
        stats=normalize_stats(raw.get("stats")),
        inventory=normalize_inventory(raw.get("inventory")),
        relationships=normalize_relationships(raw.get("relationships")),
        state=normalize_state(raw.get("state")),
        avatar_color=coerce_str(raw.get("avatarColor")) or None,
        portrait=coerce_str(raw.get("avatarBase64", raw.get("portrait"))) or None,
    )


def normalize_character_patch(raw: Any) -> CharacterPatch | None:
    if not isinstance(raw, dict):
        return None
    character_id = coerce_str(raw.get("id"))
    if not character_id:
        return None
    patch = CharacterPatch(id=character_id)
    for source_key, attr in (
        ("name", "name"),
        ("description", "description"),
        ("locationId", "location_id"),
    ):
        if source_key in raw:
            value = coerce_str(raw.get(source_key))
            if value:
                setattr(patch, attr, value)
    if "state" in raw:
        patch.state = normalize_state(raw.get("state"))
    if raw.get("stats") is not None:
        patch.stats = normalize_stats(raw.get("stats"))
    if raw.get("relationships") is not None:
        patch.relationships = normalize_relationships(raw.get("relationships"))
    if raw.get("inventory") is not None:
        patch.inventory = normalize_inventory(raw.get("inventory"))
    return patch


def normalize_location(raw: Any) -> Location | None:
    if not isinstance(raw, dict):
        return None
    location_id = coerce_str(raw.get("id"))
    if not location_id:
        return None
    connected = raw.get("connectedLocationIds")
    return Location(
        id=location_id,
        name=coerce_str(raw.get("name")) or location_id,
        description=coerce_str(raw.get("description")),
        connected_location_ids=[coerce_str(c) for c in connected if coerce_str(c)] if isinstance(connected, list) else [],
        background_image=coerce_str(raw.get("backgroundImage")) or None,
    )


def _new_character_from_dialogue(data: Any) -> Character | None:
    character = normalize_character(data)
    if character is None:
        return None
    character.is_player = False
    character.relationships = {}
    return character


def _infer_kind(declared: str, sender: str) -> str:
    if declared in ("narration", "dialogue", "system"):
        return declared
    if sender.lower() in SYSTEM_SENDERS:
        return "system"
    if not sender or sender.lower() in NARRATOR_SENDERS:
        return "narration"
    return "dialogue"


def decode_message(raw: Any) -> TurnMessage | None:
    """Decode either wire shape into the canonical tagged message.

    Legacy replies carry ``senderName``/``text``; current replies carry
    ``type`` with ``characterName``/``dialogue`` for speech. Both are first
    coerced into one flat shape, then validated into a tagged dataclass.
    """
    if isinstance(raw, str):
        raw = {"type": "narration", "text": raw}
    if not isinstance(raw, dict):
        return None

    legacy = "senderName" in raw and "characterName" not in raw
    declared = coerce_str(raw.get("type")).lower()
    sender = coerce_str(raw.get("senderName") if legacy else raw.get("characterName"))
    text = coerce_str(raw.get("dialogue")) or coerce_str(raw.get("text"))
    tone = coerce_str(raw.get("voiceTone")) or "neutral"

    kind = _infer_kind(declared, sender)
    if legacy:
        # Legacy narrator/system senders override a mislabelled discriminant.
        if sender.lower() in SYSTEM_SENDERS:
            kind = "system"
        elif kind == "dialogue" and (not sender or sender.lower() in NARRATOR_SENDERS):
            kind = "narration"

    if kind == "dialogue":
        return DialogueMessage(
            character_name=sender,
            dialogue=text,
            voice_tone=tone,
            new_character=_new_character_from_dialogue(raw.get("newCharacterData")),
        )
    if kind == "system":
        return SystemMessage(text=text, voice_tone=tone)
    return NarrationMessage(text=text, voice_tone=tone)


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def message_text(message: TurnMessage) -> str:
    if isinstance(message, DialogueMessage):
        return message.dialogue
    return message.text


def normalize_turn_payload(raw: Any) -> NormalizedTurn:
    """Normalize an already-decoded oracle payload; never raises on shape."""
    if not isinstance(raw, dict):
        raw = {}
    updates_raw = raw.get("stateUpdates")
    if not isinstance(updates_raw, dict):
        updates_raw = {}

    updates = StateUpdates()
    for entry in _as_list(updates_raw.get("newLocations")):
        location = normalize_location(entry)
        if location is not None:
            updates.new_locations.append(location)

    seen_ids: set[str] = set()
    for entry in _as_list(updates_raw.get("newCharacters")):
        character = normalize_character(entry)
        if character is not None and character.id not in seen_ids:
            seen_ids.add(character.id)
            updates.new_characters.append(character)

    for entry in _as_list(updates_raw.get("updatedCharacters")):
        patch = normalize_character_patch(entry)
        if patch is not None:
            updates.updated_characters.append(patch)

    updates.location_change = coerce_str(updates_raw.get("locationChange")) or None
    updates.event_log = coerce_str(updates_raw.get("eventLog")) or None

    messages: list[TurnMessage] = []
    for entry in _as_list(raw.get("messages")):
        message = decode_message(entry)
        if message is None:
            continue
        if isinstance(message, DialogueMessage) and message.new_character is not None:
            lifted = message.new_character
            if lifted.id not in seen_ids:
                seen_ids.add(lifted.id)
                updates.new_characters.append(lifted)
        if message_text(message):
            messages.append(message)

    return NormalizedTurn(messages=messages, updates=updates)


def parse_turn_response(text: str | None) -> NormalizedTurn:
    """Parse raw oracle text; raises ``OracleResponseError`` on total failure."""
    return normalize_turn_payload(parse_oracle_json(text))
