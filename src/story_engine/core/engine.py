from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from ..persistence.interfaces import UnitOfWork
from ..persistence.mapper import StoryMapper
from ..persistence.stores import SpatialSnapshotStore, SQLOptionCacheStore
from .config import DEFAULT_CONFIG, EngineConfig
from .context import ContextReconciler
from .deltas import apply_state_updates, materialize_messages
from .errors import OracleResponseError
from .fate import RandomSource, roll_fate
from .grid import GridAnalyzer, create_initial_snapshot
from .initialization import StoryInitializer, build_story, snapshot_from_seed
from .normalize import utcnow
from .options import OptionCache, default_action_options, parse_action_options
from .ports import AvatarPort, OptionCacheStore, OraclePort, Scheduler
from .prompts import options_request, turn_request
from .response import parse_turn_response
from .types import (
    ActionOption,
    ChatMessage,
    GameEvent,
    GridSnapshot,
    NormalizedTurn,
    Story,
    StoryConfig,
    TurnResult,
)


class StoryEngine:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        oracle: OraclePort,
        avatar: AvatarPort | None = None,
        option_store: OptionCacheStore | None = None,
        config: EngineConfig = DEFAULT_CONFIG,
        rng: RandomSource | None = None,
        clock: Callable[[], datetime] | None = None,
        scheduler: Scheduler | None = None,
    ):
        self._oracle = oracle
        self._config = config
        self._rng = rng
        self._clock = clock or utcnow
        self._mapper = StoryMapper(uow_factory, config=config, scheduler=scheduler, clock=self._clock)
        self._snapshots = SpatialSnapshotStore(uow_factory)
        self._options = OptionCache(option_store or SQLOptionCacheStore(uow_factory, clock=self._clock))
        self._initializer = StoryInitializer(oracle, avatar=avatar, config=config, clock=self._clock)
        self._context = ContextReconciler(oracle, config=config, clock=self._clock)
        self._grid = GridAnalyzer(oracle, config=config)
        self._logger = logging.getLogger(__name__)

    @property
    def mapper(self) -> StoryMapper:
        return self._mapper

    @property
    def snapshots(self) -> SpatialSnapshotStore:
        return self._snapshots

    async def create_story(self, config: StoryConfig) -> Story:
        result = await self._initializer.run(config)
        now = self._clock()
        story = build_story(config, result, now=now)
        self._mapper.save(story)

        if result.grid_seed is not None:
            snapshot = snapshot_from_seed(story, result.grid_seed, now=now)
        else:
            snapshot = create_initial_snapshot(story, turn=0, config=self._config)
        self._snapshots.append(snapshot)
        story.grid_snapshots = [snapshot]

        self._logger.info("Created story %s (%s)", story.id, story.title)
        return story

    def load_story(self, story_id: str) -> Story | None:
        return self._mapper.load(story_id)

    async def play_turn(
        self,
        story_id: str,
        action: str,
        option: ActionOption | None = None,
    ) -> TurnResult:
        story = self._mapper.load(story_id)
        if story is None:
            return TurnResult(status="error", reason="story_not_found")

        fate = roll_fate(option, self._rng) if option is not None else None
        request = turn_request(story, action, fate, self._config.history_window)
        try:
            reply = await self._oracle.complete(request)
            turn = parse_turn_response(reply)
        except OracleResponseError as exc:
            self._logger.warning("Turn for story %s aborted: %s", story_id, exc)
            return TurnResult(status="error", fate=fate, reason=f"invalid_response: {exc}")
        except Exception as exc:
            self._logger.warning("Oracle call failed for story %s: %s", story_id, exc)
            return TurnResult(status="error", fate=fate, reason=f"oracle_failed: {exc}")

        now = self._clock()
        apply_state_updates(story, turn, self._config)
        player_message = ChatMessage(
            id=f"msg_{uuid.uuid4().hex[:12]}",
            sender_id=story.player_character_id,
            text=action,
            type="dialogue",
            page_number=len(story.messages) + 1,
            timestamp=now,
        )
        story.messages.append(player_message)
        narrated = materialize_messages(story, turn.messages, now + timedelta(milliseconds=100))
        story.messages.extend(narrated)
        if turn.updates.event_log:
            story.events.append(
                GameEvent(
                    id=f"evt_{uuid.uuid4().hex[:12]}",
                    turn=story.turn_count + 1,
                    description=turn.updates.event_log,
                )
            )
        story.turn_count += 1
        story.last_played = now
        self._mapper.save(story)

        context_updated, snapshot = await self._after_turn(story, turn)
        self._logger.info(
            "Resolved turn %d for story %s (%d message(s), fate=%s)",
            story.turn_count,
            story.id,
            len(narrated),
            fate.outcome if fate else "none",
        )
        return TurnResult(
            status="ok",
            messages=[player_message, *narrated],
            fate=fate,
            context_updated=context_updated,
            snapshot=snapshot,
        )

    async def _after_turn(self, story: Story, turn: NormalizedTurn) -> tuple[bool, GridSnapshot | None]:
        current = self._snapshots.latest(story.id)

        async def grid_update() -> GridSnapshot | None:
            if current is None:
                return create_initial_snapshot(story, config=self._config)
            return await self._grid.analyze(story, turn, current)

        context, snapshot = await asyncio.gather(self._context.update(story, turn), grid_update())

        if context is not None:
            story.heavy_context = context
            self._mapper.save(story)
        if snapshot is not None:
            self._snapshots.append(snapshot)
        return context is not None, snapshot

    async def action_options(self, story_id: str) -> list[ActionOption]:
        story = self._mapper.load(story_id)
        if story is None:
            return default_action_options()
        last_message_id = story.messages[-1].id if story.messages else ""
        cache_key = f"{story.turn_count}:{last_message_id}"

        async def generate() -> list[ActionOption]:
            request = options_request(story, self._config.option_count, self._config.history_window)
            return parse_action_options(await self._oracle.complete(request), self._config)

        try:
            options = await self._options.resolve(story_id, cache_key, last_message_id, generate)
        except Exception as exc:
            self._logger.warning("Action options fell back to defaults for %s: %s", story_id, exc)
            return default_action_options()
        return options or default_action_options()

    def grid_as_of(self, story_id: str, turn: int) -> GridSnapshot | None:
        return self._snapshots.query_as_of(story_id, turn)

    def delete_story(self, story_id: str) -> bool:
        return self._mapper.delete(story_id)

    def export_story(self, story_id: str) -> Optional[dict[str, Any]]:
        return self._mapper.export_story(story_id)

    def import_story(self, data: Any) -> str:
        return self._mapper.import_story(data)
