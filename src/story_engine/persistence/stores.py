from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from ..core.normalize import utcnow
from ..core.types import GridSnapshot
from .interfaces import UnitOfWork
from .rows import snapshot_from_row, snapshot_row

logger = logging.getLogger(__name__)


class SpatialSnapshotStore:
    """Append-only grid snapshot history, queried by turn."""

    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self._uow_factory = uow_factory

    def append(self, snapshot: GridSnapshot) -> bool:
        with self._uow_factory() as uow:
            inserted = uow.grid_snapshots.append(snapshot_row(snapshot))
            uow.commit()
        if not inserted:
            logger.info("Snapshot %s already recorded for %s", snapshot.id, snapshot.story_id)
        return inserted

    def query_as_of(self, story_id: str, turn: int) -> GridSnapshot | None:
        with self._uow_factory() as uow:
            row = uow.grid_snapshots.latest_as_of(story_id, turn)
            return snapshot_from_row(row) if row is not None else None

    def latest(self, story_id: str) -> GridSnapshot | None:
        with self._uow_factory() as uow:
            row = uow.grid_snapshots.latest(story_id)
            return snapshot_from_row(row) if row is not None else None

    def history(self, story_id: str) -> list[GridSnapshot]:
        with self._uow_factory() as uow:
            return [snapshot_from_row(row) for row in uow.grid_snapshots.list_by_story(story_id)]


class SQLOptionCacheStore:
    """``OptionCacheStore`` backed by the ``se_option_cache`` table."""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._uow_factory = uow_factory
        self._clock = clock or utcnow

    def read(self, story_id: str) -> str | None:
        with self._uow_factory() as uow:
            row = uow.option_cache.get(story_id)
            return row.payload_json if row is not None else None

    def write(self, story_id: str, serialized: str) -> None:
        with self._uow_factory() as uow:
            uow.option_cache.put(story_id, serialized, self._clock())
            uow.commit()
