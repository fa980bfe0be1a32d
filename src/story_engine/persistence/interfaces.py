from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Protocol


class StoryRepo(Protocol):
    def get(self, story_id: str): ...
    def upsert(self, row: Any): ...
    def list_all(self) -> list: ...
    def delete(self, story_id: str) -> int: ...


class ChildRepo(Protocol):
    def list_by_story(self, story_id: str) -> list: ...
    def upsert_many(self, rows: Iterable[Any]) -> int: ...
    def delete_missing(self, story_id: str, keep_ids: Iterable[str]) -> int: ...
    def delete_for_story(self, story_id: str) -> int: ...


class GridSnapshotRepo(Protocol):
    def append(self, row: Any) -> bool: ...
    def latest_as_of(self, story_id: str, turn: int): ...
    def latest(self, story_id: str): ...
    def list_by_story(self, story_id: str) -> list: ...
    def delete_for_story(self, story_id: str) -> int: ...


class OptionCacheRepo(Protocol):
    def get(self, story_id: str): ...
    def put(self, story_id: str, payload_json: str, now: datetime) -> None: ...
    def delete_for_story(self, story_id: str) -> int: ...


class UnitOfWork(Protocol):
    stories: StoryRepo
    characters: ChildRepo
    locations: ChildRepo
    messages: ChildRepo
    events: ChildRepo
    grid_snapshots: GridSnapshotRepo
    option_cache: OptionCacheRepo

    def commit(self) -> None: ...
    def rollback(self) -> None: ...

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
