from .core.engine import StoryEngine
from .core.config import DEFAULT_CONFIG, EngineConfig
from .core.initialization import StoryInitializer
from .core.options import OptionCache
from .core.ports import AvatarPort, OptionCacheStore, OraclePort
from .core.types import ActionOption, Story, StoryConfig, TurnResult
from .persistence.mapper import StoryMapper
from .persistence.stores import SpatialSnapshotStore

__all__ = [
    "StoryEngine",
    "StoryInitializer",
    "StoryMapper",
    "SpatialSnapshotStore",
    "OptionCache",
    "DEFAULT_CONFIG",
    "EngineConfig",
    "OraclePort",
    "AvatarPort",
    "OptionCacheStore",
    "ActionOption",
    "Story",
    "StoryConfig",
    "TurnResult",
]
