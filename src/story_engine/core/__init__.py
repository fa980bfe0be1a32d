from .engine import StoryEngine
from .config import DEFAULT_CONFIG, EngineConfig
from .context import ContextReconciler, reconcile_context, sanitize_context
from .errors import (
    ImportErrorReason,
    ImportValidationError,
    OracleResponseError,
    PersistenceError,
    StoryEngineError,
)
from .fate import resolve_fate, roll_fate
from .grid import GridAnalyzer, create_initial_snapshot, query_as_of, snapshot_from_grid_reply
from .initialization import InitializationResult, StoryInitializer, build_story
from .migration import migrate_story_payload
from .options import MemoryOptionStore, OptionCache, default_action_options, parse_action_options
from .ports import AvatarPort, OptionCacheStore, OraclePort
from .response import decode_message, parse_turn_response
from .types import (
    ActionOption,
    CachedOptions,
    Character,
    CharacterPosition,
    ChatMessage,
    FateResult,
    GameEvent,
    GridSnapshot,
    HeavyContext,
    Item,
    Location,
    NormalizedTurn,
    OracleRequest,
    Story,
    StoryConfig,
    TurnResult,
)

__all__ = [
    "StoryEngine",
    "DEFAULT_CONFIG",
    "EngineConfig",
    "ContextReconciler",
    "reconcile_context",
    "sanitize_context",
    "ImportErrorReason",
    "ImportValidationError",
    "OracleResponseError",
    "PersistenceError",
    "StoryEngineError",
    "resolve_fate",
    "roll_fate",
    "GridAnalyzer",
    "create_initial_snapshot",
    "query_as_of",
    "snapshot_from_grid_reply",
    "InitializationResult",
    "StoryInitializer",
    "build_story",
    "migrate_story_payload",
    "MemoryOptionStore",
    "OptionCache",
    "default_action_options",
    "parse_action_options",
    "AvatarPort",
    "OptionCacheStore",
    "OraclePort",
    "decode_message",
    "parse_turn_response",
    "ActionOption",
    "CachedOptions",
    "Character",
    "CharacterPosition",
    "ChatMessage",
    "FateResult",
    "GameEvent",
    "GridSnapshot",
    "HeavyContext",
    "Item",
    "Location",
    "NormalizedTurn",
    "OracleRequest",
    "Story",
    "StoryConfig",
    "TurnResult",
]
