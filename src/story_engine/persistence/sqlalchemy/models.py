from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


SeqIDType = BigInteger().with_variant(Integer, "sqlite")


class StoryRow(TimestampMixin, Base):
    __tablename__ = "se_stories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    config_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    player_character_id: Mapped[str] = mapped_column(String(128), nullable=False)
    current_location_id: Mapped[str] = mapped_column(String(128), nullable=False)
    turn_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_played: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    heavy_context_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    universe_context: Mapped[str | None] = mapped_column(Text, nullable=True)


class CharacterRow(Base):
    __tablename__ = "se_characters"

    story_id: Mapped[str] = mapped_column(String(64), ForeignKey("se_stories.id"), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    is_player: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    location_id: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")


class LocationRow(Base):
    __tablename__ = "se_locations"

    story_id: Mapped[str] = mapped_column(String(64), ForeignKey("se_stories.id"), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")


class MessageRow(Base):
    __tablename__ = "se_messages"

    story_id: Mapped[str] = mapped_column(String(64), ForeignKey("se_stories.id"), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    sender_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="narration")
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    page_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    voice_tone: Mapped[str | None] = mapped_column(String(64), nullable=True)


Index("ix_se_message_story_timestamp", MessageRow.story_id, MessageRow.timestamp)


class EventRow(Base):
    __tablename__ = "se_events"

    story_id: Mapped[str] = mapped_column(String(64), ForeignKey("se_stories.id"), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    turn: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    importance: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")


class GridSnapshotRow(Base):
    __tablename__ = "se_grid_snapshots"

    seq: Mapped[int] = mapped_column(SeqIDType, primary_key=True, autoincrement=True)
    story_id: Mapped[str] = mapped_column(String(64), ForeignKey("se_stories.id"), nullable=False)
    id: Mapped[str] = mapped_column(String(128), nullable=False)
    turn: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    location_id: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    location_name: Mapped[str] = mapped_column(String(256), nullable=False, default="Unknown")
    positions_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    __table_args__ = (
        UniqueConstraint("story_id", "id", name="uq_se_grid_snapshot_story_id"),
    )


Index("ix_se_grid_snapshot_story_turn", GridSnapshotRow.story_id, GridSnapshotRow.turn.desc())


class OptionCacheRow(TimestampMixin, Base):
    __tablename__ = "se_option_cache"

    story_id: Mapped[str] = mapped_column(String(64), ForeignKey("se_stories.id"), primary_key=True)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
