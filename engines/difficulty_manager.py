"""Dynamic difficulty adjustment for optimal learning challenge.

A slow-moving control loop over the trailing window of outcomes: it nudges
the live difficulty up when the learner is coasting and down when they are
struggling, by at most one level per completed activity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence

from engines.elo import balanced_difficulty
from schemas import MAX_DIFFICULTY, MIN_DIFFICULTY

Direction = Literal["increase", "decrease", "maintain"]


@dataclass(frozen=True)
class DifficultyAdjustment:
    previous: int
    next: int
    direction: Direction
    reason: str
    success_rate: Optional[float]
    window_size: int


def _clamp(value: int) -> int:
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, int(value)))


def _trailing_streak(outcomes: Sequence[bool]) -> tuple[int, int]:
    """Return (consecutive successes, consecutive failures) counted from the end."""

    successes = 0
    failures = 0
    for outcome in reversed(outcomes):
        if outcome:
            if failures:
                break
            successes += 1
        else:
            if successes:
                break
            failures += 1
    return successes, failures


def _outcomes_since_streak(outcomes: Sequence[bool], outcome: bool, threshold: int) -> Optional[int]:
    """Count outcomes after the latest run of `threshold` equal outcomes; None if there is no such run."""

    run = 0
    for index in range(len(outcomes) - 1, -1, -1):
        if outcomes[index] == outcome:
            run += 1
            continue
        if run >= threshold:
            return len(outcomes) - 1 - (index + run)
        run = 0
    return len(outcomes) - run if run >= threshold else None


class DifficultyManager:
    def __init__(
        self,
        *,
        window: int = 10,
        streak_threshold: int = 3,
        min_rate_samples: int = 5,
        raise_rate: float = 0.8,
        lower_rate: float = 0.4,
        elo_gap: int = 2,
    ):
        self.window = window
        self.streak_threshold = streak_threshold
        self.min_rate_samples = min_rate_samples
        self.raise_rate = raise_rate
        self.lower_rate = lower_rate
        self.elo_gap = elo_gap

    def assess(
        self,
        current_difficulty: int,
        recent_outcomes: Sequence[bool],
        current_elo: float,
    ) -> DifficultyAdjustment:
        """Decide the next difficulty and explain why."""

        current = _clamp(current_difficulty)
        outcomes: List[bool] = [bool(o) for o in recent_outcomes][-self.window:] if self.window > 0 else []

        if not outcomes:
            return DifficultyAdjustment(current, current, "maintain", "no recent outcomes", None, 0)

        success_rate = sum(outcomes) / len(outcomes)
        successes, failures = _trailing_streak(outcomes)
        last_success = outcomes[-1]
        rate_reliable = len(outcomes) >= self.min_rate_samples

        coasting = successes >= self.streak_threshold or (rate_reliable and success_rate >= self.raise_rate)
        struggling = failures >= self.streak_threshold or (rate_reliable and success_rate <= self.lower_rate)

        # A streak always moved the difficulty; the opposite move waits
        # until `streak_threshold` outcomes have followed it.
        since_raise = _outcomes_since_streak(outcomes, True, self.streak_threshold)
        since_lower = _outcomes_since_streak(outcomes, False, self.streak_threshold)
        may_raise = since_lower is None or since_lower >= self.streak_threshold
        may_lower = since_raise is None or since_raise >= self.streak_threshold

        # A failure means the rating just dropped, so never raise on one.
        if coasting and last_success and may_raise:
            return self._step(current, +1, "learner is coasting", success_rate, len(outcomes))
        if struggling and not last_success and may_lower:
            return self._step(current, -1, "learner is struggling", success_rate, len(outcomes))

        target = balanced_difficulty(current_elo)
        if target - current >= self.elo_gap and last_success and may_raise:
            return self._step(current, +1, f"rating suggests difficulty {target}", success_rate, len(outcomes))
        if current - target >= self.elo_gap and not last_success and may_lower:
            return self._step(current, -1, f"rating suggests difficulty {target}", success_rate, len(outcomes))

        return DifficultyAdjustment(
            current, current, "maintain", "performance within optimal challenge range", success_rate, len(outcomes)
        )

    @staticmethod
    def _step(current: int, delta: int, reason: str, success_rate: float, window_size: int) -> DifficultyAdjustment:
        proposed = _clamp(current + delta)
        if proposed == current:
            bound = "maximum" if delta > 0 else "minimum"
            return DifficultyAdjustment(current, current, "maintain", f"{reason}; already at {bound}", success_rate, window_size)
        direction: Direction = "increase" if delta > 0 else "decrease"
        return DifficultyAdjustment(current, proposed, direction, reason, success_rate, window_size)

    def next_difficulty(
        self,
        current_difficulty: int,
        recent_outcomes: Sequence[bool],
        current_elo: float,
    ) -> int:
        return self.assess(current_difficulty, recent_outcomes, current_elo).next


_DEFAULT_MANAGER = DifficultyManager()


def calculate_next_difficulty(
    current_difficulty: int,
    recent_outcomes: Sequence[bool],
    new_overall_elo: float,
) -> int:
    """Recommended difficulty after the latest outcome; always an int in [1, 10]."""

    return _DEFAULT_MANAGER.next_difficulty(current_difficulty, recent_outcomes, new_overall_elo)
