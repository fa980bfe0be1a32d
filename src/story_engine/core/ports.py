from __future__ import annotations

from typing import Callable, Protocol

from .types import AvatarRequest, OracleRequest


class OraclePort(Protocol):
    async def complete(self, request: OracleRequest) -> str | None:
        ...


class AvatarPort(Protocol):
    async def generate(self, request: AvatarRequest) -> str | None:
        ...


class OptionCacheStore(Protocol):
    """Keyed string storage for one serialized option record per story."""

    def read(self, story_id: str) -> str | None:
        ...

    def write(self, story_id: str, serialized: str) -> None:
        ...


Scheduler = Callable[[Callable[[], None]], None]
