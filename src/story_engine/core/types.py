from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional, Union

ItemCategory = Literal["weapon", "armor", "consumable", "material", "quest", "valuable", "currency", "misc"]
CharacterState = Literal["idle", "talking", "fighting", "unconscious", "dead"]
MessageKind = Literal["narration", "dialogue", "system"]
FateOutcome = Literal["good", "bad", "neutral"]

ITEM_CATEGORIES: tuple[str, ...] = (
    "weapon",
    "armor",
    "consumable",
    "material",
    "quest",
    "valuable",
    "currency",
    "misc",
)
CHARACTER_STATES: tuple[str, ...] = ("idle", "talking", "fighting", "unconscious", "dead")
MESSAGE_KINDS: tuple[str, ...] = ("narration", "dialogue", "system")

GM_SENDER_ID = "GM"
SYSTEM_SENDER_ID = "SYSTEM"


@dataclass
class ItemEffect:
    stat: str
    value: float
    duration: Optional[int] = None


@dataclass
class Item:
    name: str
    category: str = "misc"
    quantity: int = 1
    stackable: bool = False
    consumable: bool = False
    sellable: bool = True
    description: Optional[str] = None
    base_value: Optional[int] = None
    effects: list[ItemEffect] = field(default_factory=list)


@dataclass
class Character:
    id: str
    name: str
    description: str = ""
    is_player: bool = False
    location_id: str = ""
    stats: dict[str, float] = field(default_factory=dict)
    inventory: list[Item] = field(default_factory=list)
    relationships: dict[str, int] = field(default_factory=dict)
    state: str = "idle"
    avatar_color: Optional[str] = None
    portrait: Optional[str] = None


@dataclass
class CharacterPatch:
    """Partial character update proposed by the oracle; ``None`` means untouched."""

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    location_id: Optional[str] = None
    state: Optional[str] = None
    stats: Optional[dict[str, float]] = None
    relationships: Optional[dict[str, int]] = None
    inventory: Optional[list[Item]] = None


@dataclass
class Location:
    id: str
    name: str
    description: str = ""
    connected_location_ids: list[str] = field(default_factory=list)
    background_image: Optional[str] = None


@dataclass
class ChatMessage:
    id: str
    sender_id: str
    text: str
    type: str
    page_number: int
    timestamp: datetime
    voice_tone: Optional[str] = None


@dataclass
class GameEvent:
    id: str
    turn: int
    description: str
    importance: str = "medium"


@dataclass
class HeavyContext:
    main_mission: Optional[str] = None
    current_mission: Optional[str] = None
    active_problems: list[str] = field(default_factory=list)
    current_concerns: list[str] = field(default_factory=list)
    important_notes: list[str] = field(default_factory=list)
    last_updated: Optional[datetime] = None


@dataclass
class ActionOption:
    text: str
    good_chance: float = 0
    bad_chance: float = 0
    good_hint: Optional[str] = None
    bad_hint: Optional[str] = None


@dataclass(frozen=True)
class FateResult:
    outcome: str
    hint: Optional[str] = None


@dataclass
class CharacterPosition:
    character_id: str
    character_name: str
    x: int
    y: int
    is_player: bool = False
    portrait: Optional[str] = None


@dataclass
class GridSnapshot:
    id: str
    story_id: str
    turn: int
    timestamp: datetime
    location_id: str
    location_name: str
    positions: list[CharacterPosition] = field(default_factory=list)


@dataclass
class CachedOptions:
    cache_key: str
    last_message_id: str
    options: list[ActionOption] = field(default_factory=list)


@dataclass
class StoryConfig:
    universe_name: str
    player_name: str
    player_description: str = ""
    universe_type: str = "original"
    combat_style: str = "descriptive"
    dialogue_heavy: bool = False
    language: str = "en"
    background: str = ""
    start_situation: str = ""
    genre: Optional[str] = None
    visual_style: Optional[str] = None
    title: Optional[str] = None

    @property
    def tactical(self) -> bool:
        return self.combat_style == "tactical"


@dataclass
class Story:
    id: str
    title: str
    config: StoryConfig
    player_character_id: str
    current_location_id: str
    turn_count: int = 0
    last_played: Optional[datetime] = None
    characters: dict[str, Character] = field(default_factory=dict)
    locations: dict[str, Location] = field(default_factory=dict)
    messages: list[ChatMessage] = field(default_factory=list)
    events: list[GameEvent] = field(default_factory=list)
    heavy_context: Optional[HeavyContext] = None
    grid_snapshots: list[GridSnapshot] = field(default_factory=list)
    universe_context: Optional[str] = None

    @property
    def player(self) -> Optional[Character]:
        return self.characters.get(self.player_character_id)

    @property
    def current_location(self) -> Optional[Location]:
        return self.locations.get(self.current_location_id)


# Oracle turn output: tagged union of message shapes plus a delta bundle.


@dataclass
class NarrationMessage:
    text: str
    voice_tone: str = "neutral"
    kind: Literal["narration"] = "narration"


@dataclass
class DialogueMessage:
    character_name: str
    dialogue: str
    voice_tone: str = "neutral"
    new_character: Optional[Character] = None
    kind: Literal["dialogue"] = "dialogue"


@dataclass
class SystemMessage:
    text: str
    voice_tone: str = "neutral"
    kind: Literal["system"] = "system"


TurnMessage = Union[NarrationMessage, DialogueMessage, SystemMessage]


@dataclass
class StateUpdates:
    new_locations: list[Location] = field(default_factory=list)
    new_characters: list[Character] = field(default_factory=list)
    updated_characters: list[CharacterPatch] = field(default_factory=list)
    location_change: Optional[str] = None
    event_log: Optional[str] = None


@dataclass
class NormalizedTurn:
    messages: list[TurnMessage] = field(default_factory=list)
    updates: StateUpdates = field(default_factory=StateUpdates)


@dataclass
class OracleRequest:
    purpose: str
    system_prompt: str
    prompt: str
    response_schema: dict[str, Any] = field(default_factory=dict)
    temperature: float = 0.8


@dataclass
class AvatarRequest:
    name: str
    description: str
    prompt: Optional[str] = None


@dataclass
class PhaseTelemetry:
    phase: str
    duration_ms: float
    success: bool
    error: Optional[str] = None


@dataclass
class TurnResult:
    status: str
    messages: list[ChatMessage] = field(default_factory=list)
    fate: Optional[FateResult] = None
    context_updated: bool = False
    snapshot: Optional[GridSnapshot] = None
    reason: Optional[str] = None
