from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Optional

from .config import DEFAULT_CONFIG, EngineConfig
from .normalize import coerce_str, dedupe_casefold, dump_json, parse_oracle_json, utcnow
from .ports import OraclePort
from .response import message_text
from .types import HeavyContext, NormalizedTurn, OracleRequest, Story

logger = logging.getLogger(__name__)

SCALAR_FIELDS: tuple[tuple[str, str], ...] = (
    ("mainMission", "main_mission"),
    ("currentMission", "current_mission"),
)
LIST_FIELDS: tuple[tuple[str, str], ...] = (
    ("activeProblems", "active_problems"),
    ("currentConcerns", "current_concerns"),
    ("importantNotes", "important_notes"),
)


def sanitize_context(context: HeavyContext | None, limit: int = 5) -> HeavyContext:
    context = context or HeavyContext()
    return HeavyContext(
        main_mission=coerce_str(context.main_mission) or None,
        current_mission=coerce_str(context.current_mission) or None,
        active_problems=dedupe_casefold(context.active_problems, limit),
        current_concerns=dedupe_casefold(context.current_concerns, limit),
        important_notes=dedupe_casefold(context.important_notes, limit),
        last_updated=context.last_updated,
    )


def _apply_scalar(current: str | None, change: Any) -> str | None:
    if not isinstance(change, dict):
        return current
    action = coerce_str(change.get("action")).lower()
    if action == "set":
        value = coerce_str(change.get("value"))
        return value or current
    if action == "clear":
        return None
    return current


def _apply_list(current: list[str], changes: Any, limit: int) -> list[str]:
    if not isinstance(changes, list):
        return current
    updated = list(current)
    for change in changes:
        if not isinstance(change, dict):
            continue
        value = coerce_str(change.get("value"))
        if not value:
            continue
        key = value.lower()
        action = coerce_str(change.get("action")).lower()
        if action == "add":
            if not any(entry.lower() == key for entry in updated):
                updated.append(value)
        elif action == "remove":
            updated = [entry for entry in updated if entry.lower() != key]
    return dedupe_casefold(updated, limit)


def reconcile_context(
    prior: HeavyContext | None,
    changes: dict[str, Any] | None,
    now: datetime | None = None,
    limit: int = 5,
) -> HeavyContext | None:
    """Apply an oracle change set to the prior context.

    Returns the new context, or ``None`` when nothing actually changed.
    Lists keep their first ``limit`` entries after the merge.
    """
    if not changes or not isinstance(changes, dict):
        return None

    base = sanitize_context(prior, limit)
    values: dict[str, Any] = {}
    for wire_key, attr in SCALAR_FIELDS:
        values[attr] = _apply_scalar(getattr(base, attr), changes.get(wire_key))
    for wire_key, attr in LIST_FIELDS:
        values[attr] = _apply_list(getattr(base, attr), changes.get(wire_key), limit)

    if all(values[attr] == getattr(base, attr) for attr in values):
        return None
    return replace(base, last_updated=now or utcnow(), **values)


def context_changes_from_reply(text: str | None) -> dict[str, Any] | None:
    """Extract the change set from an analyzer reply; ``None`` if it declines."""
    data = parse_oracle_json(text)
    if not data.get("shouldUpdate"):
        return None
    changes = data.get("changes")
    return changes if isinstance(changes, dict) else None


def context_to_prompt_dict(context: HeavyContext | None) -> dict[str, Any]:
    context = context or HeavyContext()
    return {
        "mainMission": context.main_mission,
        "currentMission": context.current_mission,
        "activeProblems": list(context.active_problems),
        "currentConcerns": list(context.current_concerns),
        "importantNotes": list(context.important_notes),
    }


CONTEXT_REPLY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "shouldUpdate": {"type": "boolean"},
        "changes": {
            "type": "object",
            "properties": {
                "mainMission": {"type": "object"},
                "currentMission": {"type": "object"},
                "activeProblems": {"type": "array"},
                "currentConcerns": {"type": "array"},
                "importantNotes": {"type": "array"},
            },
        },
    },
    "required": ["shouldUpdate"],
}


class ContextReconciler:
    """Runs the post-turn narrative memory analysis against the oracle."""

    def __init__(
        self,
        oracle: OraclePort,
        config: EngineConfig = DEFAULT_CONFIG,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._oracle = oracle
        self._config = config
        self._clock = clock or utcnow
        self._logger = logging.getLogger(__name__)

    def build_request(self, story: Story, turn: NormalizedTurn) -> OracleRequest:
        recent = [{"kind": m.kind, "text": message_text(m)} for m in turn.messages]
        prompt = dump_json(
            {
                "currentContext": context_to_prompt_dict(story.heavy_context),
                "recentMessages": recent,
                "eventLog": turn.updates.event_log,
            }
        )
        return OracleRequest(
            purpose="heavy_context",
            system_prompt=(
                "You maintain the persistent narrative context of a role-playing story. "
                "Only propose changes when something meaningful happened."
            ),
            prompt=prompt,
            response_schema=CONTEXT_REPLY_SCHEMA,
            temperature=0.3,
        )

    async def update(self, story: Story, turn: NormalizedTurn) -> HeavyContext | None:
        try:
            reply = await self._oracle.complete(self.build_request(story, turn))
            changes = context_changes_from_reply(reply)
        except Exception as exc:
            self._logger.warning("Heavy context update skipped for %s: %s", story.id, exc)
            return None
        return reconcile_context(
            story.heavy_context,
            changes,
            now=self._clock(),
            limit=self._config.context_list_limit,
        )
