from __future__ import annotations

import logging
import math
import uuid
from typing import Any, Optional

from .config import DEFAULT_CONFIG, EngineConfig
from .normalize import clamp_coordinate, coerce_str, dump_json, parse_oracle_json, utcnow
from .ports import OraclePort
from .response import message_text
from .serialization import position_to_dict
from .types import CharacterPosition, GridSnapshot, NormalizedTurn, OracleRequest, Story

logger = logging.getLogger(__name__)

NPC_RING_RADIUS = 2


def new_snapshot_id(story_id: str) -> str:
    return f"grid_{story_id}_{uuid.uuid4().hex[:12]}"


def create_initial_snapshot(
    story: Story,
    turn: int | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> GridSnapshot:
    """Place the player at the centre and co-located NPCs on a ring around it."""
    centre = config.grid_center
    here = [c for c in story.characters.values() if c.location_id == story.current_location_id]
    player = story.player
    if player is not None and player not in here:
        here.insert(0, player)
    npcs = [c for c in here if not c.is_player]

    positions: list[CharacterPosition] = []
    for character in here:
        if character.is_player:
            x = y = centre
        else:
            index = npcs.index(character)
            angle = index * 2 * math.pi / max(len(npcs), 1)
            x = clamp_coordinate(centre + NPC_RING_RADIUS * math.cos(angle), config.grid_max)
            y = clamp_coordinate(centre + NPC_RING_RADIUS * math.sin(angle), config.grid_max)
        positions.append(
            CharacterPosition(
                character_id=character.id,
                character_name=character.name,
                x=x,
                y=y,
                is_player=character.is_player,
                portrait=character.portrait,
            )
        )

    location = story.current_location
    return GridSnapshot(
        id=new_snapshot_id(story.id),
        story_id=story.id,
        turn=story.turn_count if turn is None else turn,
        timestamp=utcnow(),
        location_id=story.current_location_id,
        location_name=location.name if location else "Unknown",
        positions=positions,
    )


def query_as_of(snapshots: list[GridSnapshot], turn: int) -> GridSnapshot | None:
    """Return the snapshot captured at the greatest turn not after ``turn``.

    Later entries win ties, so callers pass history in append order.
    """
    best: GridSnapshot | None = None
    for snapshot in snapshots:
        if snapshot.turn > turn:
            continue
        if best is None or snapshot.turn >= best.turn:
            best = snapshot
    return best


def snapshot_from_grid_reply(
    story: Story,
    reply: str | None,
    turn: int,
    config: EngineConfig = DEFAULT_CONFIG,
) -> GridSnapshot | None:
    """Turn a positioning analysis reply into a snapshot; ``None`` when unchanged.

    Raises ``OracleResponseError`` when the reply holds no JSON object.
    """
    data = parse_oracle_json(reply)
    raw_positions = data.get("characterPositions")
    if not data.get("shouldUpdate") or not isinstance(raw_positions, list):
        return None

    positions: list[CharacterPosition] = []
    for entry in raw_positions:
        if not isinstance(entry, dict):
            continue
        character_id = coerce_str(entry.get("characterId"))
        if not character_id:
            continue
        known = story.characters.get(character_id)
        positions.append(
            CharacterPosition(
                character_id=character_id,
                character_name=coerce_str(entry.get("characterName")) or (known.name if known else character_id),
                x=clamp_coordinate(entry.get("x"), config.grid_max),
                y=clamp_coordinate(entry.get("y"), config.grid_max),
                is_player=entry.get("isPlayer") is True,
                portrait=known.portrait if known else None,
            )
        )
    if not positions:
        return None

    reasoning = coerce_str(data.get("reasoning"))
    logger.debug("Grid updated for %s at turn %s: %s", story.id, turn, reasoning or "no reason given")
    location = story.current_location
    return GridSnapshot(
        id=new_snapshot_id(story.id),
        story_id=story.id,
        turn=turn,
        timestamp=utcnow(),
        location_id=story.current_location_id,
        location_name=location.name if location else "Unknown",
        positions=positions,
    )


GRID_REPLY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "shouldUpdate": {"type": "boolean"},
        "characterPositions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "characterId": {"type": "string"},
                    "characterName": {"type": "string"},
                    "x": {"type": "integer"},
                    "y": {"type": "integer"},
                    "isPlayer": {"type": "boolean"},
                },
                "required": ["characterId", "x", "y"],
            },
        },
        "reasoning": {"type": "string"},
    },
    "required": ["shouldUpdate"],
}


class GridAnalyzer:
    """Asks the oracle whether a turn moved anyone on the tactical grid."""

    def __init__(self, oracle: OraclePort, config: EngineConfig = DEFAULT_CONFIG):
        self._oracle = oracle
        self._config = config
        self._logger = logging.getLogger(__name__)

    def build_request(
        self,
        story: Story,
        turn: NormalizedTurn,
        current: Optional[GridSnapshot],
    ) -> OracleRequest:
        prompt = dump_json(
            {
                "gridSize": self._config.grid_size,
                "location": story.current_location_id,
                "characters": [
                    {"id": c.id, "name": c.name, "isPlayer": c.is_player}
                    for c in story.characters.values()
                    if c.location_id == story.current_location_id
                ],
                "currentPositions": [position_to_dict(p) for p in current.positions] if current else [],
                "recentMessages": [{"kind": m.kind, "text": message_text(m)} for m in turn.messages],
                "eventLog": turn.updates.event_log,
            }
        )
        return OracleRequest(
            purpose="grid_update",
            system_prompt=(
                "You are a spatial positioning analyzer for a role-playing game. "
                "Decide whether characters moved and give their grid positions."
            ),
            prompt=prompt,
            response_schema=GRID_REPLY_SCHEMA,
            temperature=0.2,
        )

    async def analyze(
        self,
        story: Story,
        turn: NormalizedTurn,
        current: Optional[GridSnapshot],
    ) -> GridSnapshot | None:
        try:
            reply = await self._oracle.complete(self.build_request(story, turn, current))
            return snapshot_from_grid_reply(story, reply, story.turn_count, self._config)
        except Exception as exc:
            self._logger.warning("Grid update skipped for %s: %s", story.id, exc)
            return None
