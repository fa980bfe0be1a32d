from __future__ import annotations

import asyncio
import copy
import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Optional

from ..core.config import DEFAULT_CONFIG, EngineConfig
from ..core.errors import ImportErrorReason, ImportValidationError
from ..core.messages import sanitize_messages
from ..core.migration import migrate_envelope, migrate_story_payload
from ..core.normalize import format_timestamp, parse_json_dict, utcnow
from ..core.ports import Scheduler
from ..core.serialization import character_from_dict, story_from_dict, story_to_dict
from ..core.types import GridSnapshot, Story
from .interfaces import UnitOfWork
from .rows import (
    character_row,
    event_from_row,
    event_row,
    location_from_row,
    location_row,
    message_from_row,
    message_row,
    snapshot_from_row,
    snapshot_row,
    story_from_row,
    story_row,
)

REQUIRED_STORY_FIELDS = ("id", "title", "config", "playerCharacterId", "currentLocationId")


def default_scheduler(task: Callable[[], None]) -> None:
    """Run ``task`` off the caller's path: the loop's executor, else a daemon thread."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        threading.Thread(target=task, name="story-resave", daemon=True).start()
        return
    loop.run_in_executor(None, task)


class StoryMapper:
    """Splits a story into per-category rows on save and reassembles it on load."""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        config: EngineConfig = DEFAULT_CONFIG,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._uow_factory = uow_factory
        self._config = config
        self._scheduler = scheduler or default_scheduler
        self._clock = clock or utcnow
        self._logger = logging.getLogger(__name__)

    def _write(self, uow: UnitOfWork, story: Story, snapshots: list[GridSnapshot] | None = None) -> None:
        messages = sanitize_messages(story.messages, self._config.message_dedup_window_ms)
        uow.stories.upsert(story_row(story))

        uow.characters.upsert_many(character_row(story.id, c) for c in story.characters.values())
        uow.characters.delete_missing(story.id, story.characters.keys())
        uow.locations.upsert_many(location_row(story.id, loc) for loc in story.locations.values())
        uow.locations.delete_missing(story.id, story.locations.keys())
        uow.messages.upsert_many(message_row(story.id, m) for m in messages)
        uow.messages.delete_missing(story.id, [m.id for m in messages])
        uow.events.upsert_many(event_row(story.id, e) for e in story.events)
        uow.events.delete_missing(story.id, [e.id for e in story.events])

        for snapshot in snapshots or []:
            uow.grid_snapshots.append(snapshot_row(snapshot))

    def save(self, story: Story) -> None:
        with self._uow_factory() as uow:
            self._write(uow, story)
            uow.commit()

    def load(self, story_id: str) -> Story | None:
        with self._uow_factory() as uow:
            row = uow.stories.get(story_id)
            if row is None:
                return None
            story = story_from_row(row)
            character_rows = uow.characters.list_by_story(story_id)
            location_rows = uow.locations.list_by_story(story_id)
            message_rows = uow.messages.list_by_story(story_id)
            event_rows = uow.events.list_by_story(story_id)
            snapshot_rows = uow.grid_snapshots.list_by_story(story_id)

            migration = migrate_story_payload(
                {
                    "id": story.id,
                    "config": parse_json_dict(row.config_json),
                    "playerCharacterId": story.player_character_id,
                    "characters": {r.id: parse_json_dict(r.payload_json) for r in character_rows},
                }
            )
            for character_id, payload in migration.payload["characters"].items():
                character = character_from_dict({**payload, "id": payload.get("id") or character_id})
                if character is not None:
                    story.characters[character.id] = character

            for loc_row in location_rows:
                location = location_from_row(loc_row)
                if location is not None:
                    story.locations[location.id] = location
            ordered = [message_from_row(r) for r in message_rows]
            story.messages = sanitize_messages(ordered, self._config.message_dedup_window_ms)
            story.events = [event_from_row(r) for r in event_rows]
            story.grid_snapshots = [snapshot_from_row(r) for r in snapshot_rows]

        had_duplicates = len(story.messages) != len(ordered)
        if had_duplicates or migration.migrated:
            self._schedule_resave(story)
        return story

    def _schedule_resave(self, story: Story) -> None:
        """Queue a write-back of the cleaned story.

        The task works on a private copy and only writes while the stored story
        still exists at the same turn, so a delete or a newer save wins.
        """
        pending = copy.deepcopy(story)

        def resave() -> None:
            try:
                with self._uow_factory() as uow:
                    row = uow.stories.get(pending.id)
                    if row is None or row.turn_count != pending.turn_count:
                        self._logger.info("Skipping stale re-save of story %s", pending.id)
                        return
                    self._write(uow, pending)
                    uow.commit()
            except Exception as exc:
                self._logger.warning("Corrective re-save of story %s failed: %s", pending.id, exc)

        self._logger.info("Scheduling corrective re-save of story %s", story.id)
        self._scheduler(resave)

    def list_summaries(self) -> list[Story]:
        with self._uow_factory() as uow:
            return [story_from_row(row) for row in uow.stories.list_all()]

    def delete(self, story_id: str) -> bool:
        with self._uow_factory() as uow:
            for repo in (
                uow.characters,
                uow.locations,
                uow.messages,
                uow.events,
                uow.grid_snapshots,
                uow.option_cache,
            ):
                repo.delete_for_story(story_id)
            deleted = uow.stories.delete(story_id) > 0
            uow.commit()
        if deleted:
            self._logger.info("Deleted story %s", story_id)
        return deleted

    def export_story(self, story_id: str) -> dict[str, Any] | None:
        story = self.load(story_id)
        if story is None:
            return None
        return {
            "version": self._config.export_version,
            "exportedAt": format_timestamp(self._clock()),
            "story": story_to_dict(story),
        }

    def validate_import(self, data: Any) -> dict[str, Any]:
        """Check an export envelope and return it in the current shape.

        Raises ``ImportValidationError`` describing the first problem found.
        """
        if not isinstance(data, dict):
            raise ImportValidationError(ImportErrorReason.INVALID_FORMAT, "Invalid data format")
        envelope = migrate_envelope(data)

        version = envelope.get("version")
        if (
            not isinstance(version, int)
            or isinstance(version, bool)
            or version < 1
            or version > self._config.export_version
        ):
            raise ImportValidationError(ImportErrorReason.BAD_VERSION, f"Unsupported version: {version!r}")

        story = envelope.get("story")
        if not isinstance(story, dict):
            raise ImportValidationError(ImportErrorReason.MISSING_FIELD, "Missing story data")
        for field_name in REQUIRED_STORY_FIELDS:
            if field_name not in story:
                raise ImportValidationError(
                    ImportErrorReason.MISSING_FIELD,
                    f"Missing required field: {field_name}",
                )
        for field_name in ("characters", "locations"):
            if not isinstance(story.get(field_name), dict):
                raise ImportValidationError(
                    ImportErrorReason.INVALID_COLLECTION,
                    f"Invalid {field_name} data",
                )
        if not isinstance(story.get("messages"), list):
            raise ImportValidationError(ImportErrorReason.INVALID_COLLECTION, "Invalid messages data")
        return envelope

    def import_story(self, data: Any) -> str:
        """Import an export envelope as a brand new story and return its id."""
        envelope = self.validate_import(data)
        story = self._rekey(envelope["story"])
        with self._uow_factory() as uow:
            self._write(uow, story, story.grid_snapshots)
            uow.commit()
        self._logger.info("Imported story %s as %s", envelope["story"].get("id"), story.id)
        return story.id

    def _rekey(self, source: dict[str, Any]) -> Story:
        new_id = str(uuid.uuid4())
        old_player_id = source.get("playerCharacterId")
        new_player_id = f"player_{new_id}"

        def repoint(value: Any) -> Any:
            return new_player_id if value == old_player_id else value

        payload = dict(source)
        payload["id"] = new_id
        payload["playerCharacterId"] = new_player_id
        payload["lastPlayed"] = format_timestamp(self._clock())

        characters: dict[str, Any] = {}
        for key, character in source["characters"].items():
            if not isinstance(character, dict):
                continue
            new_key = repoint(key)
            relationships = character.get("relationships")
            if isinstance(relationships, dict):
                relationships = {repoint(k): v for k, v in relationships.items()}
            characters[new_key] = {**character, "id": new_key, "relationships": relationships}
        payload["characters"] = characters

        payload["messages"] = [
            {**message, "id": f"msg_{new_id}_{idx}", "senderId": repoint(message.get("senderId"))}
            for idx, message in enumerate(source["messages"])
            if isinstance(message, dict)
        ]
        events = source.get("events") if isinstance(source.get("events"), list) else []
        payload["events"] = [
            {**event, "id": f"evt_{new_id}_{idx}"}
            for idx, event in enumerate(events)
            if isinstance(event, dict)
        ]
        snapshots = source.get("gridSnapshots") if isinstance(source.get("gridSnapshots"), list) else []
        payload["gridSnapshots"] = [
            {
                **snapshot,
                "id": f"grid_{new_id}_{idx}",
                "storyId": new_id,
                "characterPositions": [
                    {**position, "characterId": repoint(position.get("characterId"))}
                    for position in (snapshot.get("characterPositions") or [])
                    if isinstance(position, dict)
                ],
            }
            for idx, snapshot in enumerate(snapshots)
            if isinstance(snapshot, dict)
        ]
        return story_from_dict(payload)
