from __future__ import annotations

from enum import Enum


class StoryEngineError(Exception):
    pass


class OracleResponseError(StoryEngineError):
    """The oracle reply could not be parsed into a turn at all."""


class PersistenceError(StoryEngineError):
    pass


class ImportErrorReason(str, Enum):
    INVALID_FORMAT = "invalid_format"
    BAD_VERSION = "bad_version"
    MISSING_FIELD = "missing_field"
    INVALID_COLLECTION = "invalid_collection"


class ImportValidationError(StoryEngineError):
    def __init__(self, reason: ImportErrorReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)
