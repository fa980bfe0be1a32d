from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class EngineConfig:
    grid_size: int = 10
    context_list_limit: int = 5
    export_version: int = 1
    message_dedup_window_ms: int = 2_000
    history_window: int = 100
    option_count: int = 5
    max_option_chance: int = 50
    default_npc_stats: dict[str, float] = field(
        default_factory=lambda: {"hp": 100, "maxHp": 100, "gold": 0}
    )

    @property
    def grid_max(self) -> int:
        return self.grid_size - 1

    @property
    def grid_center(self) -> int:
        return self.grid_size // 2


DEFAULT_CONFIG = EngineConfig()
