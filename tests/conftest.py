from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest

from story_engine.core.types import (
    Character,
    ChatMessage,
    GameEvent,
    HeavyContext,
    Item,
    Location,
    Story,
    StoryConfig,
)
from story_engine.persistence.sqlalchemy.db import build_engine, build_session_factory, create_schema
from story_engine.persistence.sqlalchemy.uow import SQLAlchemyUnitOfWork

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)


class ScriptedOracle:
    """Replies keyed by request purpose.

    A dict or list is served as JSON, an exception is raised, a callable is
    called with the request, and a missing purpose yields ``None``.
    """

    def __init__(self, replies=None):
        self.replies = dict(replies or {})
        self.requests = []

    def purposes(self):
        return [r.purpose for r in self.requests]

    async def complete(self, request):
        self.requests.append(request)
        reply = self.replies.get(request.purpose)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(request)
        if isinstance(reply, (dict, list)):
            return json.dumps(reply)
        return reply


class StubAvatar:
    def __init__(self, portrait="data:image/png;base64,AAAA"):
        self.portrait = portrait
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        return self.portrait


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    return build_session_factory(engine)


@pytest.fixture()
def uow_factory(session_factory):
    def _factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _factory


@pytest.fixture()
def scheduled():
    """Scheduler that records tasks instead of running them."""
    tasks = []

    def _schedule(task):
        tasks.append(task)

    _schedule.tasks = tasks
    return _schedule


@pytest.fixture()
def make_story():
    def _make(story_id: str = "story-1", **overrides) -> Story:
        config = StoryConfig(
            universe_name="Neon Harbor",
            player_name="Ada",
            player_description="A courier with a scarred jacket.",
            start_situation="a rain-soaked pier",
        )
        player = Character(
            id="player-1",
            name="Ada",
            description="A courier with a scarred jacket.",
            is_player=True,
            location_id="loc-pier",
            stats={"hp": 100, "maxHp": 100, "gold": 150},
            inventory=[Item(name="Data chip", category="quest", sellable=False)],
            avatar_color="#57534e",
        )
        npc = Character(
            id="npc-kai",
            name="Kai Moreno",
            description="Dockmaster who owes nobody.",
            location_id="loc-pier",
            stats={"hp": 80, "maxHp": 100, "gold": 20},
            relationships={"player-1": 10},
        )
        locations = {
            "loc-pier": Location(id="loc-pier", name="Pier 9", description="Rain hammers the planks."),
            "loc-market": Location(id="loc-market", name="Night Market", connected_location_ids=["loc-pier"]),
        }
        messages = [
            ChatMessage(
                id=f"msg-{i}",
                sender_id="GM" if i % 2 else "player-1",
                text=f"line {i}",
                type="narration" if i % 2 else "dialogue",
                page_number=i,
                timestamp=BASE_TIME + timedelta(seconds=10 * i),
            )
            for i in range(1, 4)
        ]
        story = Story(
            id=story_id,
            title="Neon Harbor - Ada",
            config=config,
            player_character_id=player.id,
            current_location_id="loc-pier",
            turn_count=2,
            last_played=BASE_TIME,
            characters={player.id: player, npc.id: npc},
            locations=locations,
            messages=messages,
            events=[GameEvent(id="evt-1", turn=1, description="Ada reached the pier.", importance="high")],
            heavy_context=HeavyContext(
                main_mission="Deliver the chip",
                active_problems=["Patrol drones"],
                last_updated=BASE_TIME,
            ),
        )
        for key, value in overrides.items():
            setattr(story, key, value)
        return story

    return _make
