from __future__ import annotations

import random
from typing import Protocol

from .types import ActionOption, FateResult


class RandomSource(Protocol):
    def random(self) -> float:
        ...


def resolve_fate(option: ActionOption, draw: float) -> FateResult:
    """Map one uniform draw in ``[0, 100)`` onto the option's fate bands.

    The bad band is ``[0, bad)``, the good band ``[bad, bad + good)``, and
    everything above is neutral.
    """
    if draw < option.bad_chance:
        return FateResult(outcome="bad", hint=option.bad_hint or None)
    if draw < option.bad_chance + option.good_chance:
        return FateResult(outcome="good", hint=option.good_hint or None)
    return FateResult(outcome="neutral")


def roll_fate(option: ActionOption, rng: RandomSource | None = None) -> FateResult:
    source = rng or random
    return resolve_fate(option, source.random() * 100)
