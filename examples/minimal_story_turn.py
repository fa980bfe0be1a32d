from __future__ import annotations

import asyncio
import json

from story_engine.core.engine import StoryEngine
from story_engine.core.types import StoryConfig
from story_engine.persistence.sqlalchemy import (
    SQLAlchemyUnitOfWork,
    build_engine,
    build_session_factory,
    create_schema,
)


class DemoOracle:
    async def complete(self, request):
        if request.purpose == "turn":
            return json.dumps(
                {
                    "messages": [
                        {"type": "narration", "text": "You scout the old road as the sun sinks."},
                        {"type": "dialogue", "characterName": "Early Ally", "dialogue": "The gate closes at dusk."},
                    ],
                    "stateUpdates": {
                        "newLocations": [{"id": "loc_gate", "name": "City Gate"}],
                        "locationChange": "loc_gate",
                        "eventLog": "The party reached the city gate.",
                    },
                }
            )
        if request.purpose == "heavy_context":
            return json.dumps(
                {
                    "shouldUpdate": True,
                    "changes": {"currentMission": {"action": "set", "value": "Get inside before dusk"}},
                }
            )
        # Every initialization phase falls back to its default.
        return None


def make_uow_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    session_factory = build_session_factory(engine)

    def _uow_factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _uow_factory


async def main() -> None:
    engine = StoryEngine(uow_factory=make_uow_factory(), oracle=DemoOracle())
    story = await engine.create_story(StoryConfig(universe_name="Old Kingdom", player_name="Wren"))
    print("created:", story.title)

    result = await engine.play_turn(story.id, "head toward the city")
    print("play_turn status:", result.status)
    for message in result.messages:
        print(f"  [{message.sender_id}] {message.text}")

    loaded = engine.load_story(story.id)
    print("turn count:", loaded.turn_count)
    print("current mission:", loaded.heavy_context.current_mission)
    print("options:", [o.text for o in await engine.action_options(story.id)])


if __name__ == "__main__":
    asyncio.run(main())
