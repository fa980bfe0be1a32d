"""
Reply schemas for the story initialization phases.

Each phase validates the oracle's JSON against one of these models. Keys
arrive in camelCase; unknown keys are ignored.
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PhaseModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# =============================================================================
# BLUEPRINT
# =============================================================================

class LocationSeed(PhaseModel):
    id: str = Field(description="Stable seed id for the location")
    name: str = Field(description="Location name")
    environment: str = Field(default="", description="Kind of place")
    hook: str = Field(default="", description="Why the story starts here")
    tone: str = Field(default="", description="Mood of the place")


class PlayerSeed(PhaseModel):
    id: str = Field(description="Stable seed id for the player")
    name: str = Field(description="Player character name")
    archetype: str = Field(default="", description="Role or class")
    motivation: str = Field(default="", description="What drives them")
    visual_traits: str = Field(default="", description="Appearance cues")
    gear_focus: str = Field(default="", description="Kind of equipment they carry")


class NPCSeed(PhaseModel):
    id: str = Field(description="Stable seed id for the NPC")
    name: str = Field(description="NPC name")
    role: str = Field(default="", description="Narrative role")
    agenda: str = Field(default="", description="What they want")
    relationship: str = Field(default="", description="Stance toward the player")


class StoryBlueprint(PhaseModel):
    """Canonical seeds every later phase builds on."""
    location_seeds: List[LocationSeed] = Field(min_length=1)
    player_seed: PlayerSeed
    npc_seeds: List[NPCSeed] = Field(default_factory=list)
    tone_directives: List[str] = Field(default_factory=list)
    economy_preset: str = Field(default="standard")
    quest_difficulty_tier: Literal["casual", "balanced", "hardcore"] = Field(default="balanced")


# =============================================================================
# PARALLEL DETAIL PHASES
# =============================================================================

class ConnectedExit(PhaseModel):
    id: str
    name: str = ""
    reason: str = ""


class StartingLocationDetail(PhaseModel):
    id: str
    name: str
    description: str
    connected_exits: List[ConnectedExit] = Field(default_factory=list)
    hazards: List[str] = Field(default_factory=list)
    sensory_notes: List[str] = Field(default_factory=list)
    background_prompt: Optional[str] = None


class PlayerSheetDetail(PhaseModel):
    id: str
    seed_id: Optional[str] = None
    name: str
    description: str = ""
    stats: Any = Field(default_factory=dict, description="Mapping or list of {key, value}")
    inventory: List[Any] = Field(default_factory=list, description="Item objects or bare names")
    relationships: List[dict] = Field(default_factory=list)
    state: Optional[str] = None
    avatar_prompt: Optional[str] = None


class SupportingNPC(PhaseModel):
    id: str
    seed_id: Optional[str] = None
    name: str
    description: str = ""
    location_id: Optional[str] = None
    stats: Any = None
    inventory: List[Any] = Field(default_factory=list)
    relationship_score: Optional[float] = None
    state: Optional[str] = None


class SupportingNPCs(PhaseModel):
    npcs: List[SupportingNPC] = Field(default_factory=list)


class OpeningMessage(PhaseModel):
    type: Literal["narration", "dialogue", "system"] = "narration"
    text: Optional[str] = None
    dialogue: Optional[str] = None
    character_name: Optional[str] = None
    voice_tone: Optional[str] = None


class OpeningNarration(PhaseModel):
    messages: List[OpeningMessage]


class QuestHooks(PhaseModel):
    event_log: str
    main_mission: Optional[str] = None
    current_mission: Optional[str] = None
    active_problems: List[str] = Field(default_factory=list)
    current_concerns: List[str] = Field(default_factory=list)
    important_notes: List[str] = Field(default_factory=list)
    starting_opportunities: List[str] = Field(default_factory=list)


# =============================================================================
# GRID SEED
# =============================================================================

class GridPoint(PhaseModel):
    x: float = 5
    y: float = 5


class GridSeedCharacter(PhaseModel):
    id: str
    name: str = ""
    x: float = 0
    y: float = 0
    is_player: Optional[bool] = None


class GridElement(PhaseModel):
    symbol: str = ""
    name: str = ""
    description: str = ""
    x: float = 0
    y: float = 0


class GridSeed(PhaseModel):
    location_id: Optional[str] = None
    location_name: Optional[str] = None
    player_position: Optional[GridPoint] = None
    characters: List[GridSeedCharacter] = Field(default_factory=list)
    elements: List[GridElement] = Field(default_factory=list)


def phase_json_schema(model: type[BaseModel]) -> dict[str, Any]:
    return model.model_json_schema(by_alias=True)
