from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel

from .config import DEFAULT_CONFIG, EngineConfig
from .deltas import materialize_messages
from .inventory import DEFAULT_PLAYER_STATS, default_player_stats, normalize_inventory, starting_gold
from .normalize import clamp, clamp_coordinate, dedupe_casefold, parse_oracle_json, round_half_up, utcnow
from .phases import (
    GridSeed,
    GridElement,
    GridSeedCharacter,
    LocationSeed,
    NPCSeed,
    OpeningMessage,
    OpeningNarration,
    PlayerSeed,
    PlayerSheetDetail,
    QuestHooks,
    StartingLocationDetail,
    StoryBlueprint,
    SupportingNPCs,
)
from .ports import AvatarPort, OraclePort
from .prompts import PHASE_MODELS, blueprint_request, detail_request
from .grid import new_snapshot_id
from .response import decode_message, message_text, normalize_relationships, normalize_state, normalize_stats
from .types import (
    AvatarRequest,
    Character,
    CharacterPosition,
    GameEvent,
    GridSnapshot,
    HeavyContext,
    Location,
    OracleRequest,
    PhaseTelemetry,
    StateUpdates,
    Story,
    StoryConfig,
    TurnMessage,
)

PhaseT = TypeVar("PhaseT", bound=BaseModel)

PLAYER_COLOR = "#57534e"
NPC_COLOR = "#44403c"


@dataclass
class InitialGrid:
    location_id: str
    location_name: str
    player_x: int
    player_y: int
    positions: list[CharacterPosition] = field(default_factory=list)
    elements: list[dict] = field(default_factory=list)


@dataclass
class InitializationResult:
    blueprint: StoryBlueprint
    location: Location
    player: Character
    updates: StateUpdates
    messages: list[TurnMessage]
    heavy_context: Optional[HeavyContext] = None
    grid_seed: Optional[InitialGrid] = None
    telemetry: list[PhaseTelemetry] = field(default_factory=list)


# =============================================================================
# FALLBACKS
# =============================================================================

def fallback_blueprint(config: StoryConfig) -> StoryBlueprint:
    first_clause = config.start_situation.split(",")[0].strip() if config.start_situation else ""
    return StoryBlueprint(
        location_seeds=[
            LocationSeed(
                id="loc_start_seed",
                name=first_clause or f"{config.universe_name} Gateway",
                environment="familiar landmark" if config.universe_type == "existing" else "original landmark",
                hook=config.start_situation or "The story ignites in a liminal space.",
                tone="anticipatory",
            )
        ],
        player_seed=PlayerSeed(
            id="player_seed",
            name=config.player_name,
            archetype="adventurer",
            motivation=config.background or "Seeks purpose.",
            visual_traits=config.player_description or "Undefined hero silhouette.",
            gear_focus="travel kit",
        ),
        npc_seeds=[],
        tone_directives=["Cinematic", "Player-focused"],
        economy_preset="standard",
        quest_difficulty_tier="balanced",
    )


def default_npc_seed() -> NPCSeed:
    return NPCSeed(
        id="npc_seed_1",
        name="Early Ally",
        role="guide",
        agenda="Keeps the player alive long enough to learn the ropes.",
        relationship="protective",
    )


def fallback_location(blueprint: StoryBlueprint) -> StartingLocationDetail:
    seed = blueprint.location_seeds[0] if blueprint.location_seeds else None
    return StartingLocationDetail(
        id=seed.id if seed else "loc_start",
        name=seed.name if seed else "Starting Point",
        description=(seed.hook if seed else "") or "The air crackles as reality assembles around you.",
        connected_exits=[],
        hazards=[],
        sensory_notes=["air smells like ozone", "dull hum under the floor"],
    )


def fallback_player_sheet(config: StoryConfig, blueprint: StoryBlueprint) -> PlayerSheetDetail:
    seed_id = blueprint.player_seed.id or "player_1"
    return PlayerSheetDetail(
        id=seed_id,
        seed_id=seed_id,
        name=config.player_name,
        description=config.player_description,
        stats=default_player_stats(config.universe_name),
        inventory=[
            {
                "name": "Worn travel cloak",
                "description": "A reliable layer against unpredictable weather.",
                "quantity": 1,
                "category": "armor",
                "stackable": False,
                "consumable": False,
            }
        ],
        avatar_prompt=config.player_description or None,
    )


def fallback_npcs() -> SupportingNPCs:
    return SupportingNPCs(npcs=[])


def fallback_narration(location: StartingLocationDetail) -> OpeningNarration:
    return OpeningNarration(
        messages=[OpeningMessage(type="narration", text=location.description, voice_tone="mysterious")]
    )


def fallback_quest_hooks(config: StoryConfig) -> QuestHooks:
    return QuestHooks(
        event_log=f"{config.player_name} steps into {config.start_situation or 'an unknown frontier'}.",
        main_mission="Discover why the world summoned you here.",
        current_mission="Survey the immediate surroundings and identify allies or threats.",
        active_problems=["Resources are scarce", "Motivations of locals unknown"],
        current_concerns=["Trust is unearned"],
        important_notes=[],
    )


def fallback_grid_seed(blueprint: StoryBlueprint) -> GridSeed:
    seed = blueprint.location_seeds[0] if blueprint.location_seeds else None
    return GridSeed(
        location_id=seed.id if seed else "loc_start",
        location_name=seed.name if seed else "Starting Point",
        player_position={"x": 5, "y": 5},
        characters=[
            GridSeedCharacter(
                id=blueprint.player_seed.id or "player_1",
                name=blueprint.player_seed.name or "Protagonist",
                x=5,
                y=5,
                is_player=True,
            )
        ],
        elements=[GridElement(symbol="\u0394", name="Glowing console", description="Hums with dormant power.", x=7, y=4)],
    )


# =============================================================================
# ORCHESTRATOR
# =============================================================================

def ensure_stats(raw: object, gold: float) -> dict[str, float]:
    stats = normalize_stats(raw)
    stats.setdefault("hp", DEFAULT_PLAYER_STATS["hp"])
    stats.setdefault("maxHp", DEFAULT_PLAYER_STATS["maxHp"])
    stats.setdefault("gold", gold)
    return stats


class StoryInitializer:
    """Runs the phase graph that turns a ``StoryConfig`` into an opening state.

    Every phase degrades to a deterministic fallback, so ``run`` always
    returns something playable even when the oracle is down.
    """

    def __init__(
        self,
        oracle: OraclePort,
        avatar: Optional[AvatarPort] = None,
        config: EngineConfig = DEFAULT_CONFIG,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._oracle = oracle
        self._avatar = avatar
        self._config = config
        self._clock = clock or utcnow
        self._logger = logging.getLogger(__name__)

    async def _run_phase(
        self,
        phase: str,
        request: OracleRequest,
        model: type[PhaseT],
        fallback: Callable[[], PhaseT],
        telemetry: list[PhaseTelemetry],
    ) -> PhaseT:
        start = time.perf_counter()
        try:
            reply = await self._oracle.complete(request)
            result = model.model_validate(parse_oracle_json(reply))
        except Exception as exc:
            elapsed = (time.perf_counter() - start) * 1000
            telemetry.append(PhaseTelemetry(phase=phase, duration_ms=elapsed, success=False, error=str(exc)))
            self._logger.warning("Initialization phase %s failed, using fallback: %s", phase, exc)
            return fallback()
        elapsed = (time.perf_counter() - start) * 1000
        telemetry.append(PhaseTelemetry(phase=phase, duration_ms=elapsed, success=True))
        return result

    async def _run_avatar(
        self,
        config: StoryConfig,
        sheet_task: "asyncio.Future[PlayerSheetDetail]",
        telemetry: list[PhaseTelemetry],
    ) -> Optional[str]:
        sheet = await sheet_task
        if self._avatar is None:
            return None
        start = time.perf_counter()
        try:
            portrait = await self._avatar.generate(
                AvatarRequest(
                    name=sheet.name or config.player_name,
                    description=sheet.avatar_prompt or sheet.description or config.player_description,
                    prompt=sheet.avatar_prompt,
                )
            )
        except Exception as exc:
            elapsed = (time.perf_counter() - start) * 1000
            telemetry.append(PhaseTelemetry(phase="avatar", duration_ms=elapsed, success=False, error=str(exc)))
            self._logger.warning("Avatar generation failed: %s", exc)
            return None
        elapsed = (time.perf_counter() - start) * 1000
        telemetry.append(PhaseTelemetry(phase="avatar", duration_ms=elapsed, success=True))
        return portrait or None

    async def run(self, config: StoryConfig) -> InitializationResult:
        telemetry: list[PhaseTelemetry] = []
        blueprint = await self._run_phase(
            "blueprint",
            blueprint_request(config),
            StoryBlueprint,
            lambda: fallback_blueprint(config),
            telemetry,
        )
        if not blueprint.npc_seeds:
            blueprint.npc_seeds = [default_npc_seed()]

        def detail(phase: str, fallback: Callable[[], PhaseT]) -> "asyncio.Future[PhaseT]":
            request = detail_request(phase, config, blueprint)
            return asyncio.ensure_future(
                self._run_phase(phase, request, PHASE_MODELS[phase], fallback, telemetry)
            )

        location_task = detail("starting_location", lambda: fallback_location(blueprint))
        sheet_task = detail("player_sheet", lambda: fallback_player_sheet(config, blueprint))
        npc_task = detail("supporting_npcs", fallback_npcs)
        narration_task = detail("opening_narration", lambda: fallback_narration(fallback_location(blueprint)))
        quest_task = detail("quest_hooks", lambda: fallback_quest_hooks(config))
        avatar_task = asyncio.ensure_future(self._run_avatar(config, sheet_task, telemetry))

        if config.tactical:
            grid_task = detail("grid_seed", lambda: fallback_grid_seed(blueprint))
        else:
            grid_task = asyncio.ensure_future(asyncio.sleep(0, result=None))

        location, sheet, npcs, narration, quests, grid_raw, portrait = await asyncio.gather(
            location_task, sheet_task, npc_task, narration_task, quest_task, grid_task, avatar_task
        )
        result = self._merge(config, blueprint, location, sheet, npcs, narration, quests, grid_raw, portrait)
        result.telemetry = telemetry
        failed = [t.phase for t in telemetry if not t.success]
        self._logger.info(
            "Initialized story for %s with %d fallback phase(s)%s",
            config.universe_name,
            len(failed),
            f": {', '.join(failed)}" if failed else "",
        )
        return result

    def _merge(
        self,
        config: StoryConfig,
        blueprint: StoryBlueprint,
        detail: StartingLocationDetail,
        sheet: PlayerSheetDetail,
        npc_reply: SupportingNPCs,
        narration: OpeningNarration,
        quests: QuestHooks,
        grid_raw: Optional[GridSeed],
        portrait: Optional[str],
    ) -> InitializationResult:
        seed = blueprint.location_seeds[0] if blueprint.location_seeds else None
        location = Location(
            id=detail.id or (seed.id if seed else "loc_start"),
            name=detail.name or (seed.name if seed else "Starting Point"),
            description=detail.description or (seed.hook if seed else "") or "A blank space awaiting detail.",
            connected_location_ids=[exit.id for exit in detail.connected_exits if exit.id],
        )

        gold = starting_gold(config.universe_name)
        player = Character(
            id=sheet.id or sheet.seed_id or blueprint.player_seed.id or "player_1",
            name=sheet.name or config.player_name,
            description=sheet.description or config.player_description,
            is_player=True,
            location_id=location.id,
            stats=ensure_stats(sheet.stats, gold),
            inventory=normalize_inventory(sheet.inventory),
            relationships=normalize_relationships(sheet.relationships),
            state=normalize_state(sheet.state),
            avatar_color=PLAYER_COLOR,
            portrait=portrait,
        )

        npcs: list[Character] = []
        taken = {player.id}
        for index, npc in enumerate(npc_reply.npcs):
            npc_id = npc.id or npc.seed_id or f"npc_{index}"
            if npc_id in taken:
                continue
            taken.add(npc_id)
            relationships: dict[str, int] = {}
            if npc.relationship_score is not None:
                relationships[player.id] = int(clamp(round_half_up(npc.relationship_score), -100, 100))
            npcs.append(
                Character(
                    id=npc_id,
                    name=npc.name or f"NPC {index + 1}",
                    description=npc.description or "An undefined companion.",
                    location_id=npc.location_id or location.id,
                    stats=ensure_stats(npc.stats, gold / 2),
                    inventory=normalize_inventory(npc.inventory),
                    relationships=relationships,
                    state=normalize_state(npc.state),
                    avatar_color=NPC_COLOR,
                )
            )
        if not npcs:
            ally = blueprint.npc_seeds[0] if blueprint.npc_seeds else default_npc_seed()
            npcs.append(
                Character(
                    id=ally.id if ally.id not in taken else f"{ally.id}_npc",
                    name=ally.name,
                    description=". ".join(part for part in (ally.role, ally.agenda) if part),
                    location_id=location.id,
                    stats=dict(self._config.default_npc_stats),
                    avatar_color=NPC_COLOR,
                )
            )

        messages: list[TurnMessage] = []
        for entry in narration.messages:
            message = decode_message(entry.model_dump(by_alias=True, exclude_none=True))
            if message is not None and message_text(message):
                messages.append(message)
        if not messages:
            messages.append(opening_fallback(location))

        limit = self._config.context_list_limit
        heavy_context = HeavyContext(
            main_mission=(quests.main_mission or "").strip() or None,
            current_mission=(quests.current_mission or "").strip() or None,
            active_problems=dedupe_casefold(quests.active_problems, limit),
            current_concerns=dedupe_casefold(quests.current_concerns, limit),
            important_notes=dedupe_casefold(quests.important_notes + quests.starting_opportunities, limit),
            last_updated=self._clock(),
        )

        characters = {player.id: player, **{npc.id: npc for npc in npcs}}
        id_map = {blueprint.player_seed.id: player.id}
        for npc_seed in blueprint.npc_seeds:
            match = next((n for n in npcs if n.id == npc_seed.id or n.name == npc_seed.name), None)
            if match is not None:
                id_map[npc_seed.id] = match.id

        grid_seed = self._grid_seed(grid_raw, location, player, characters, id_map) if grid_raw else None

        updates = StateUpdates(
            new_locations=[location],
            new_characters=[player, *npcs],
            event_log=quests.event_log or None,
        )
        return InitializationResult(
            blueprint=blueprint,
            location=location,
            player=player,
            updates=updates,
            messages=messages,
            heavy_context=heavy_context,
            grid_seed=grid_seed,
        )

    def _grid_seed(
        self,
        raw: GridSeed,
        location: Location,
        player: Character,
        characters: dict[str, Character],
        id_map: dict[str, str],
    ) -> InitialGrid:
        upper = self._config.grid_max
        centre = self._config.grid_center
        if raw.player_position is not None:
            px = clamp_coordinate(raw.player_position.x, upper)
            py = clamp_coordinate(raw.player_position.y, upper)
        else:
            px = py = centre

        positions: list[CharacterPosition] = []
        seen: set[str] = set()
        for entry in raw.characters:
            resolved_id = id_map.get(entry.id, entry.id)
            if resolved_id in seen:
                continue
            seen.add(resolved_id)
            known = characters.get(resolved_id)
            is_player = entry.is_player if entry.is_player is not None else bool(known and known.is_player)
            positions.append(
                CharacterPosition(
                    character_id=resolved_id,
                    character_name=known.name if known else (entry.name or resolved_id),
                    x=clamp_coordinate(entry.x, upper),
                    y=clamp_coordinate(entry.y, upper),
                    is_player=is_player or resolved_id == player.id,
                    portrait=known.portrait if known else None,
                )
            )
        if not any(p.character_id == player.id for p in positions):
            positions.append(
                CharacterPosition(
                    character_id=player.id,
                    character_name=player.name,
                    x=px,
                    y=py,
                    is_player=True,
                    portrait=player.portrait,
                )
            )
        elements = [
            {
                "symbol": el.symbol,
                "name": el.name,
                "description": el.description,
                "x": clamp_coordinate(el.x, upper),
                "y": clamp_coordinate(el.y, upper),
            }
            for el in raw.elements
        ]
        return InitialGrid(
            location_id=raw.location_id or location.id,
            location_name=raw.location_name or location.name,
            player_x=px,
            player_y=py,
            positions=positions,
            elements=elements,
        )


def opening_fallback(location: Location) -> TurnMessage:
    text = location.description or f"You arrive at {location.name}."
    return decode_message({"type": "narration", "text": text, "voiceTone": "neutral"})


def build_story(
    config: StoryConfig,
    result: InitializationResult,
    story_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Story:
    """Assemble a playable story at turn 0 from an initialization result."""
    now = now or utcnow()
    story = Story(
        id=story_id or str(uuid.uuid4()),
        title=config.title or f"{config.universe_name} - {config.player_name}",
        config=config,
        player_character_id=result.player.id,
        current_location_id=result.location.id,
        turn_count=0,
        last_played=now,
        characters={c.id: c for c in result.updates.new_characters},
        locations={loc.id: loc for loc in result.updates.new_locations},
        heavy_context=result.heavy_context,
    )
    story.messages = materialize_messages(story, result.messages, now, first_page=1)
    if not story.messages:
        # every opening line was player-voiced and got blocked
        story.messages = materialize_messages(story, [opening_fallback(result.location)], now, first_page=1)
    if result.updates.event_log:
        story.events.append(
            GameEvent(id=f"evt_{story.id}_0", turn=0, description=result.updates.event_log, importance="high")
        )
    return story


def snapshot_from_seed(story: Story, seed: InitialGrid, now: Optional[datetime] = None) -> GridSnapshot:
    return GridSnapshot(
        id=new_snapshot_id(story.id),
        story_id=story.id,
        turn=story.turn_count,
        timestamp=now or utcnow(),
        location_id=seed.location_id,
        location_name=seed.location_name,
        positions=list(seed.positions),
    )
