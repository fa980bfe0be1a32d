"""Upgrades of legacy story payloads, applied once at the load boundary.

Everything that reads a stored or imported story dict passes it through
``migrate_story_payload`` first; nothing downstream knows about older shapes.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from .inventory import DEFAULT_PLAYER_STATS, create_item, starting_gold
from .normalize import format_timestamp, parse_timestamp
from .serialization import item_to_dict

logger = logging.getLogger(__name__)

_TIMESTAMP_KEYS = ("timestamp", "lastPlayed", "lastUpdated", "exportedAt")


@dataclass
class MigrationResult:
    migrated: bool
    payload: dict[str, Any]
    changes: list[str] = field(default_factory=list)


def _rename(data: dict[str, Any], old: str, new: str) -> bool:
    if old not in data:
        return False
    value = data.pop(old)
    data.setdefault(new, value)
    return True


def _epoch_timestamps(data: dict[str, Any]) -> bool:
    changed = False
    for key in _TIMESTAMP_KEYS:
        value = data.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            data[key] = format_timestamp(parse_timestamp(value))
            changed = True
    return changed


def _migrate_inventory(character: dict[str, Any]) -> bool:
    inventory = character.get("inventory")
    if isinstance(inventory, str):
        inventory = [inventory]
    if not isinstance(inventory, list) or not any(isinstance(i, str) for i in inventory):
        return False
    character["inventory"] = [
        item_to_dict(create_item(entry.strip())) if isinstance(entry, str) else entry
        for entry in inventory
        if not (isinstance(entry, str) and not entry.strip())
    ]
    return True


def _migrate_stats(character: dict[str, Any], is_player: bool, universe_name: str) -> bool:
    stats = character.get("stats")
    if isinstance(stats, list):
        stats = {
            entry.get("key"): entry.get("value")
            for entry in stats
            if isinstance(entry, dict) and entry.get("key")
        }
    if not isinstance(stats, dict):
        stats = {}
    if isinstance(stats.get("gold"), (int, float)) and not isinstance(stats.get("gold"), bool):
        character["stats"] = stats
        return False
    defaults = {
        "hp": DEFAULT_PLAYER_STATS["hp"],
        "maxHp": DEFAULT_PLAYER_STATS["maxHp"],
        "gold": starting_gold(universe_name) if is_player else 0,
    }
    character["stats"] = {**defaults, **{k: v for k, v in stats.items() if k != "gold"}}
    return True


def _migrate_snapshot(snapshot: dict[str, Any]) -> None:
    _rename(snapshot, "gameId", "storyId")
    _rename(snapshot, "atMessageNumber", "turn")
    _epoch_timestamps(snapshot)
    positions = snapshot.get("characterPositions")
    if not isinstance(positions, list):
        return
    for entry in positions:
        if isinstance(entry, dict) and isinstance(entry.get("position"), dict):
            position = entry.pop("position")
            entry.setdefault("x", position.get("x"))
            entry.setdefault("y", position.get("y"))


def migrate_story_payload(data: dict[str, Any]) -> MigrationResult:
    """Bring a story dict up to the current wire shape.

    Returns a deep copy; the input is never modified.
    """
    payload = copy.deepcopy(data)
    changes: list[str] = []

    if _rename(payload, "gameId", "storyId"):
        changes.append("renamed gameId to storyId")
    if _epoch_timestamps(payload):
        changes.append("converted epoch timestamps")

    config = payload.get("config") if isinstance(payload.get("config"), dict) else {}
    universe_name = config.get("universeName") or ""
    player_id = payload.get("playerCharacterId")

    characters = payload.get("characters")
    if isinstance(characters, dict):
        for key, character in characters.items():
            if not isinstance(character, dict):
                continue
            _rename(character, "gameId", "storyId")
            name = character.get("name") or key
            if _migrate_inventory(character):
                changes.append(f"{name}: inventory upgraded to items")
            is_player = key == player_id or character.get("isPlayer") is True
            if _migrate_stats(character, is_player, universe_name):
                changes.append(f"{name}: added gold to stats")

    locations = payload.get("locations")
    if isinstance(locations, dict):
        for entry in locations.values():
            if isinstance(entry, dict):
                _rename(entry, "gameId", "storyId")

    for collection in ("messages", "events"):
        entries = payload.get(collection)
        if isinstance(entries, list):
            for entry in entries:
                if isinstance(entry, dict):
                    _rename(entry, "gameId", "storyId")
                    if _epoch_timestamps(entry) and "converted message timestamps" not in changes:
                        changes.append("converted message timestamps")

    snapshots = payload.get("gridSnapshots")
    if isinstance(snapshots, list):
        for snapshot in snapshots:
            if isinstance(snapshot, dict):
                _migrate_snapshot(snapshot)

    context = payload.get("heavyContext")
    if isinstance(context, dict):
        _epoch_timestamps(context)

    if changes:
        logger.info("Migrated story %s: %s", payload.get("id"), "; ".join(changes))
    return MigrationResult(migrated=bool(changes), payload=payload, changes=changes)


def migrate_envelope(data: dict[str, Any]) -> dict[str, Any]:
    """Normalize an export envelope: legacy ``game`` key, epoch ``exportedAt``."""
    envelope = dict(data)
    _rename(envelope, "game", "story")
    _epoch_timestamps(envelope)
    story = envelope.get("story")
    if isinstance(story, dict):
        envelope["story"] = migrate_story_payload(story).payload
    return envelope
