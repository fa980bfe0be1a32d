from __future__ import annotations

import re
from dataclasses import replace
from datetime import datetime

from .types import ChatMessage

_WHITESPACE = re.compile(r"\s+")


def _content_key(message: ChatMessage) -> str:
    text = _WHITESPACE.sub(" ", message.text or "").strip()
    return f"{message.sender_id}|{message.type}|{text}"


def _elapsed_ms(a: datetime, b: datetime) -> float:
    return abs((a - b).total_seconds()) * 1000


def sanitize_messages(messages: list[ChatMessage], window_ms: int = 2_000) -> list[ChatMessage]:
    """Drop duplicate messages and renumber pages 1..n.

    A message is a duplicate when its id was already seen, or when the same
    sender posted the same kind and text less than ``window_ms`` after the
    last kept copy. Survivors are ordered by page, timestamp, then id.
    """
    seen_ids: set[str] = set()
    recent: dict[str, datetime] = {}
    kept: list[ChatMessage] = []

    for message in messages or []:
        if message is None:
            continue
        if message.id and message.id in seen_ids:
            continue
        key = _content_key(message)
        last = recent.get(key)
        if last is not None and _elapsed_ms(message.timestamp, last) < window_ms:
            if message.id:
                seen_ids.add(message.id)
            continue
        if message.id:
            seen_ids.add(message.id)
        recent[key] = message.timestamp
        kept.append(message)

    kept.sort(key=lambda m: (m.page_number, m.timestamp, m.id))
    return [
        message if message.page_number == index else replace(message, page_number=index)
        for index, message in enumerate(kept, start=1)
    ]
