"""Per-move time allocation."""

import time
from dataclasses import dataclass, field
from typing import Optional

from xewali.config import CONFIG, TimeConfig


@dataclass
class ClockState:
    """What the controller told us about the clock for this move (all ms)."""
    remaining_ms: Optional[int] = None
    increment_ms: int = 0
    moves_to_go: Optional[int] = None
    movetime_ms: Optional[int] = None
    depth: Optional[int] = None
    infinite: bool = False


@dataclass(frozen=True)
class TimeBudget:
    limit_ms: int
    soft_ratio: float = 0.5
    start: float = field(default_factory=time.monotonic)

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start) * 1000.0

    def expired(self) -> bool:
        return self.elapsed_ms() >= self.limit_ms

    def can_start_iteration(self) -> bool:
        # The next iteration usually costs more than everything before it.
        return self.elapsed_ms() < self.limit_ms * self.soft_ratio


class TimeManager:
    def __init__(self, cfg: TimeConfig = None):
        self.cfg = cfg or CONFIG.time

    def moves_left(self, clock: ClockState, fullmove_number: int) -> int:
        if clock.moves_to_go and clock.moves_to_go > 0:
            return clock.moves_to_go
        return max(self.cfg.min_moves_to_go,
                   self.cfg.default_moves_to_go - fullmove_number // 2)

    def allocate(self, clock: ClockState, fullmove_number: int = 1) -> Optional[TimeBudget]:
        """
        Compute the budget for one move, or None when the search has no
        time limit (fixed depth, infinite, or no clock given).
        """
        cfg = self.cfg
        if clock.infinite:
            return None

        if clock.movetime_ms is not None:
            limit = max(1, clock.movetime_ms - cfg.overhead_ms)
            return TimeBudget(limit, cfg.soft_ratio)

        if clock.remaining_ms is None:
            return None

        remaining = clock.remaining_ms
        inc = clock.increment_ms or 0
        target = remaining / self.moves_left(clock, fullmove_number) + inc * cfg.increment_fraction
        target = min(target, remaining * cfg.max_fraction)
        target = min(max(target, cfg.min_ms), cfg.max_ms)
        # never plan past the real clock
        target = min(target, remaining - cfg.overhead_ms)
        return TimeBudget(max(1, int(target)), cfg.soft_ratio)
