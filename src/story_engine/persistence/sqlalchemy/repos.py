from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import (
    CharacterRow,
    EventRow,
    GridSnapshotRow,
    LocationRow,
    MessageRow,
    OptionCacheRow,
    StoryRow,
)


class StoryRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, story_id: str) -> StoryRow | None:
        return self.session.get(StoryRow, story_id)

    def upsert(self, row: StoryRow) -> StoryRow:
        merged = self.session.merge(row)
        # Child rows reference the story; make sure it exists first.
        self.session.flush()
        return merged

    def list_all(self) -> list[StoryRow]:
        stmt = select(StoryRow).order_by(StoryRow.last_played.desc(), StoryRow.id)
        return list(self.session.execute(stmt).scalars().all())

    def delete(self, story_id: str) -> int:
        stmt = delete(StoryRow).where(StoryRow.id == story_id)
        return self.session.execute(stmt).rowcount or 0


class _ChildRepo:
    """Rows keyed by ``(story_id, id)`` and owned by one story."""

    model: type = None  # type: ignore[assignment]

    def __init__(self, session: Session):
        self.session = session

    def list_by_story(self, story_id: str) -> list:
        stmt = select(self.model).where(self.model.story_id == story_id)
        return list(self.session.execute(stmt).scalars().all())

    def upsert_many(self, rows: Iterable) -> int:
        count = 0
        for row in rows:
            self.session.merge(row)
            count += 1
        return count

    def delete_missing(self, story_id: str, keep_ids: Iterable[str]) -> int:
        keep = list(keep_ids)
        stmt = delete(self.model).where(self.model.story_id == story_id)
        if keep:
            stmt = stmt.where(self.model.id.not_in(keep))
        return self.session.execute(stmt).rowcount or 0

    def delete_for_story(self, story_id: str) -> int:
        stmt = delete(self.model).where(self.model.story_id == story_id)
        return self.session.execute(stmt).rowcount or 0


class CharacterRepo(_ChildRepo):
    model = CharacterRow


class LocationRepo(_ChildRepo):
    model = LocationRow


class MessageRepo(_ChildRepo):
    model = MessageRow

    def list_by_story(self, story_id: str) -> list[MessageRow]:
        stmt = (
            select(MessageRow)
            .where(MessageRow.story_id == story_id)
            .order_by(MessageRow.timestamp, MessageRow.id)
        )
        return list(self.session.execute(stmt).scalars().all())


class EventRepo(_ChildRepo):
    model = EventRow

    def list_by_story(self, story_id: str) -> list[EventRow]:
        stmt = (
            select(EventRow)
            .where(EventRow.story_id == story_id)
            .order_by(EventRow.turn, EventRow.id)
        )
        return list(self.session.execute(stmt).scalars().all())


class GridSnapshotRepo:
    def __init__(self, session: Session):
        self.session = session

    def append(self, row: GridSnapshotRow) -> bool:
        try:
            with self.session.begin_nested():
                self.session.add(row)
                self.session.flush()
                return True
        except IntegrityError as exc:
            message = str(exc).lower()
            if (
                "uq_se_grid_snapshot_story_id" in message
                or "se_grid_snapshots.story_id, se_grid_snapshots.id" in message
            ):
                # History is append-only; re-appending a known snapshot is a no-op.
                return False
            raise

    def latest_as_of(self, story_id: str, turn: int) -> GridSnapshotRow | None:
        stmt = (
            select(GridSnapshotRow)
            .where(GridSnapshotRow.story_id == story_id)
            .where(GridSnapshotRow.turn <= turn)
            .order_by(GridSnapshotRow.turn.desc(), GridSnapshotRow.seq.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def latest(self, story_id: str) -> GridSnapshotRow | None:
        stmt = (
            select(GridSnapshotRow)
            .where(GridSnapshotRow.story_id == story_id)
            .order_by(GridSnapshotRow.seq.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_by_story(self, story_id: str) -> list[GridSnapshotRow]:
        stmt = (
            select(GridSnapshotRow)
            .where(GridSnapshotRow.story_id == story_id)
            .order_by(GridSnapshotRow.seq)
        )
        return list(self.session.execute(stmt).scalars().all())

    def delete_for_story(self, story_id: str) -> int:
        stmt = delete(GridSnapshotRow).where(GridSnapshotRow.story_id == story_id)
        return self.session.execute(stmt).rowcount or 0


class OptionCacheRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, story_id: str) -> OptionCacheRow | None:
        return self.session.get(OptionCacheRow, story_id)

    def put(self, story_id: str, payload_json: str, now: datetime) -> None:
        row = self.session.get(OptionCacheRow, story_id)
        if row is None:
            self.session.add(OptionCacheRow(story_id=story_id, payload_json=payload_json))
        else:
            row.payload_json = payload_json
            row.updated_at = now
        self.session.flush()

    def delete_for_story(self, story_id: str) -> int:
        stmt = delete(OptionCacheRow).where(OptionCacheRow.story_id == story_id)
        return self.session.execute(stmt).rowcount or 0
