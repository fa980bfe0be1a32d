from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from .config import DEFAULT_CONFIG, EngineConfig
from .normalize import clamp, coerce_number, coerce_str, dump_json, parse_oracle_json
from .ports import OptionCacheStore
from .serialization import cached_options_from_dict, cached_options_to_dict
from .types import ActionOption, CachedOptions

logger = logging.getLogger(__name__)

OptionGenerator = Callable[[], Awaitable[list[ActionOption]]]

DEFAULT_OPTION_TEXTS: tuple[str, ...] = (
    "Look around",
    "Talk to someone",
    "Move forward",
    "Check inventory",
    "Wait and observe",
)


def default_action_options() -> list[ActionOption]:
    return [ActionOption(text=text, good_chance=10, bad_chance=5) for text in DEFAULT_OPTION_TEXTS]


def _chance(value: object, ceiling: int) -> float:
    number = coerce_number(value)
    if number is None:
        return 0
    return clamp(number, 0, ceiling)


def parse_action_options(text: str | None, config: EngineConfig = DEFAULT_CONFIG) -> list[ActionOption]:
    """Parse an option menu reply.

    Accepts ``{"options": [...]}`` where each entry is an object or a bare
    string. Keeps at most ``config.option_count`` entries with chances
    clamped to ``0..config.max_option_chance``. Raises
    ``OracleResponseError`` when the reply holds no JSON object.
    """
    data = parse_oracle_json(text)
    raw = data.get("options")
    if not isinstance(raw, list):
        return []

    options: list[ActionOption] = []
    for entry in raw:
        if isinstance(entry, str):
            entry = {"text": entry}
        if not isinstance(entry, dict):
            continue
        option_text = coerce_str(entry.get("text"))
        if not option_text:
            continue
        options.append(
            ActionOption(
                text=option_text,
                good_chance=_chance(entry.get("goodChance"), config.max_option_chance),
                bad_chance=_chance(entry.get("badChance"), config.max_option_chance),
                good_hint=coerce_str(entry.get("goodHint")) or None,
                bad_hint=coerce_str(entry.get("badHint")) or None,
            )
        )
        if len(options) == config.option_count:
            break
    return options


class MemoryOptionStore:
    """Dict-backed ``OptionCacheStore``; useful for tests and single-process use."""

    def __init__(self) -> None:
        self.records: dict[str, str] = {}

    def read(self, story_id: str) -> str | None:
        return self.records.get(story_id)

    def write(self, story_id: str, serialized: str) -> None:
        self.records[story_id] = serialized


class OptionCache:
    """Per-story option menu cache with request coalescing.

    The store holds one serialized record per story. A decoded copy is kept
    in memory together with the raw string it came from, and is only
    re-decoded when the stored string changes. Concurrent ``resolve`` calls
    for the same story and cache key share one generator call.
    """

    def __init__(self, store: OptionCacheStore):
        self._store = store
        self._memory: dict[str, CachedOptions] = {}
        self._mirror: dict[str, str | None] = {}
        self._pending: dict[str, asyncio.Task[list[ActionOption]]] = {}
        self._logger = logging.getLogger(__name__)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _forget(self, story_id: str, raw: str | None) -> None:
        self._memory.pop(story_id, None)
        self._mirror[story_id] = raw

    def get(self, story_id: str) -> CachedOptions | None:
        try:
            raw = self._store.read(story_id)
        except Exception as exc:
            self._logger.warning("Option cache read failed for %s: %s", story_id, exc)
            self._forget(story_id, None)
            return None

        if not raw:
            self._forget(story_id, None)
            return None
        if story_id in self._memory and self._mirror.get(story_id) == raw:
            return self._memory[story_id]

        try:
            payload: Any = json.loads(raw)
        except ValueError as exc:
            self._logger.warning("Option cache record for %s is corrupt: %s", story_id, exc)
            self._forget(story_id, None)
            return None

        record = cached_options_from_dict(payload)
        if record is None:
            self._forget(story_id, raw)
            return None
        self._memory[story_id] = record
        self._mirror[story_id] = raw
        return record

    def save(self, story_id: str, cache_key: str, message_id: str, options: list[ActionOption]) -> None:
        record = CachedOptions(cache_key=cache_key, last_message_id=message_id, options=list(options))
        serialized = dump_json(cached_options_to_dict(record))
        self._memory[story_id] = record
        self._mirror[story_id] = serialized
        try:
            self._store.write(story_id, serialized)
        except Exception as exc:
            self._logger.warning("Option cache write failed for %s: %s", story_id, exc)

    async def _generate(
        self,
        story_id: str,
        cache_key: str,
        message_id: str,
        generator: OptionGenerator,
    ) -> list[ActionOption]:
        options = await generator()
        if options:
            self.save(story_id, cache_key, message_id, options)
        return options

    async def resolve(
        self,
        story_id: str,
        cache_key: str,
        message_id: str,
        generator: OptionGenerator,
    ) -> list[ActionOption]:
        cached = self.get(story_id)
        if cached is not None and cached.cache_key == cache_key and cached.options:
            self._logger.debug("Option cache hit for %s (%s)", story_id, cache_key)
            return cached.options

        pending_key = f"{story_id}:{cache_key}"
        task = self._pending.get(pending_key)
        if task is None:
            task = asyncio.ensure_future(self._generate(story_id, cache_key, message_id, generator))
            self._pending[pending_key] = task
            task.add_done_callback(lambda done: self._drop_pending(pending_key, done))
        return await asyncio.shield(task)

    def _drop_pending(self, pending_key: str, task: asyncio.Task[list[ActionOption]]) -> None:
        if self._pending.get(pending_key) is task:
            del self._pending[pending_key]
        if not task.cancelled() and task.exception() is not None:
            self._logger.debug("Option generation for %s failed: %s", pending_key, task.exception())
