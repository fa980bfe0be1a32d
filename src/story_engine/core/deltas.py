from __future__ import annotations

import logging
import re
import unicodedata
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from .config import DEFAULT_CONFIG, EngineConfig
from .types import (
    GM_SENDER_ID,
    SYSTEM_SENDER_ID,
    Character,
    ChatMessage,
    DialogueMessage,
    NormalizedTurn,
    Story,
    SystemMessage,
    TurnMessage,
)

logger = logging.getLogger(__name__)

NPC_COLORS = ("#ef4444", "#f59e0b", "#10b981", "#3b82f6", "#8b5cf6")

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9\s]")


def normalize_speaker_name(value: Optional[str]) -> str:
    if not value:
        return ""
    stripped = "".join(
        ch for ch in unicodedata.normalize("NFD", value) if not unicodedata.combining(ch)
    )
    return _NON_ALNUM.sub(" ", stripped).lower().strip()


BASE_PROHIBITED_SPEAKERS = frozenset(
    normalize_speaker_name(name)
    for name in (
        "player", "the player", "you", "yourself",
        "jogador", "jogadora", "o jogador", "a jogadora",
        "tu", "tú", "voce", "você", "usted", "ustedes",
        "jugador", "jugadora", "el jugador", "la jugadora",
    )
)


def _words(value: str) -> list[str]:
    return [w for w in value.split() if len(w) > 2]


def find_character_by_name(characters: dict[str, Character], name: str) -> Character | None:
    """Exact, then accent-insensitive, then partial, then word-level match."""
    if not name:
        return None
    wanted = normalize_speaker_name(name)
    pool = list(characters.values())

    for character in pool:
        if character.name.lower() == name.lower():
            return character
    for character in pool:
        if normalize_speaker_name(character.name) == wanted:
            return character
    if wanted:
        for character in pool:
            candidate = normalize_speaker_name(character.name)
            if candidate and (wanted in candidate or candidate in wanted):
                return character
    search_words = _words(wanted)
    if search_words:
        for character in pool:
            char_words = _words(normalize_speaker_name(character.name))
            if any(sw == cw or sw in cw or cw in sw for sw in search_words for cw in char_words):
                return character
    return None


def is_player_speaker(story: Story, speaker: Optional[str]) -> bool:
    """True when a dialogue line would put words in the player's mouth."""
    normalized = normalize_speaker_name(speaker)
    if not normalized:
        return False
    player = story.player
    player_name = normalize_speaker_name(player.name if player else "")
    tokens = player_name.split()
    if normalized in BASE_PROHIBITED_SPEAKERS or normalized == player_name or normalized in tokens:
        return True
    if player_name and (normalized in player_name or player_name in normalized):
        return True
    return any(normalized in token or token in normalized for token in tokens if len(token) > 2)


def _npc_color(character_id: str) -> str:
    return NPC_COLORS[sum(map(ord, character_id)) % len(NPC_COLORS)]


def apply_state_updates(story: Story, turn: NormalizedTurn, config: EngineConfig = DEFAULT_CONFIG) -> None:
    """Apply a turn's delta bundle to ``story`` in place."""
    updates = turn.updates
    for location in updates.new_locations:
        story.locations[location.id] = location

    for character in updates.new_characters:
        if character.id == story.player_character_id:
            logger.warning("Ignoring attempt to recreate player character %s", character.id)
            continue
        story.characters[character.id] = replace(
            character,
            is_player=False,
            stats=dict(character.stats) if character.stats else dict(config.default_npc_stats),
            avatar_color=character.avatar_color or _npc_color(character.id),
        )

    for patch in updates.updated_characters:
        existing = story.characters.get(patch.id)
        if existing is None:
            continue
        story.characters[patch.id] = replace(
            existing,
            name=patch.name if patch.name is not None else existing.name,
            description=patch.description if patch.description is not None else existing.description,
            location_id=patch.location_id if patch.location_id is not None else existing.location_id,
            state=patch.state if patch.state is not None else existing.state,
            stats={**existing.stats, **patch.stats} if patch.stats is not None else existing.stats,
            relationships=(
                {**existing.relationships, **patch.relationships}
                if patch.relationships is not None
                else existing.relationships
            ),
            inventory=patch.inventory if patch.inventory is not None else existing.inventory,
        )

    if updates.location_change:
        story.current_location_id = updates.location_change
        player = story.player
        if player is not None:
            player.location_id = updates.location_change


def materialize_messages(
    story: Story,
    messages: list[TurnMessage],
    now: datetime,
    first_page: Optional[int] = None,
) -> list[ChatMessage]:
    """Convert oracle messages into chat records addressed to known senders.

    Dialogue attributed to the player is dropped. Speakers resolve by name;
    unknown speakers keep their name as sender id.
    """
    page = len(story.messages) + 1 if first_page is None else first_page
    batch = uuid.uuid4().hex[:8]
    out: list[ChatMessage] = []
    for message in messages:
        if isinstance(message, DialogueMessage):
            if is_player_speaker(story, message.character_name):
                logger.warning("Blocked dialogue attributed to the player: %s", message.character_name)
                continue
            speaker = find_character_by_name(story.characters, message.character_name)
            sender_id = speaker.id if speaker else (message.character_name or GM_SENDER_ID)
            text = message.dialogue
        elif isinstance(message, SystemMessage):
            sender_id = SYSTEM_SENDER_ID
            text = message.text
        else:
            sender_id = GM_SENDER_ID
            text = message.text
        index = len(out)
        out.append(
            ChatMessage(
                id=f"msg_{batch}_{index}",
                sender_id=sender_id,
                text=text,
                type=message.kind,
                page_number=page + index,
                timestamp=now + timedelta(milliseconds=100 * index),
                voice_tone=message.voice_tone or "neutral",
            )
        )
    return out
