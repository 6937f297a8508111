"""ELO-style rating updates for learning activities.

Each activity is treated as a match against an "opponent" whose rating is
implied by the activity difficulty (difficulty 5 == rating 1000, one level
per 100 points). The standard logistic expectation drives the update and a
bounded time factor nudges it by at most ten percent either way.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from schemas import MAX_DIFFICULTY, MIN_DIFFICULTY, ActivityType, SkillCluster

INITIAL_ELO = 1000.0
K_FACTOR = 32.0
TIME_ADJUSTMENT_FACTOR = 0.1
DEFAULT_EXPECTED_TIME_SECONDS = 300

EXPECTED_TIME_BY_TYPE: Dict[ActivityType, int] = {
    ActivityType.MCQ: 120,
    ActivityType.CONCEPT_EXPLANATION: 300,
    ActivityType.DEBUGGING_TASK: 600,
    ActivityType.CODING_CHALLENGE: 900,
    ActivityType.MINI_CASE_STUDY: 1200,
    ActivityType.REAL_WORLD_ASSIGNMENT: 1800,
}


@dataclass(frozen=True)
class EloUpdateResult:
    elo_change: float
    new_overall_elo: float
    new_skill_scores: Dict[SkillCluster, float]


def expected_time_for(activity_type: Optional[ActivityType]) -> int:
    if activity_type is None:
        return DEFAULT_EXPECTED_TIME_SECONDS
    return EXPECTED_TIME_BY_TYPE.get(activity_type, DEFAULT_EXPECTED_TIME_SECONDS)


def difficulty_to_opponent_elo(difficulty: int) -> float:
    """Rating of the imaginary opponent an activity of ``difficulty`` represents."""

    return INITIAL_ELO + (difficulty - 5) * 100.0


def expected_score(player_elo: float, opponent_elo: float) -> float:
    """Standard ELO expectation: E = 1 / (1 + 10^((Rb - Ra) / 400))."""

    return 1.0 / (1.0 + 10.0 ** ((opponent_elo - player_elo) / 400.0))


def time_adjustment(time_taken_seconds: float, expected_time_seconds: float) -> float:
    """Multiplier in [0.9, 1.1]; faster than expected earns the bonus."""

    if expected_time_seconds <= 0:
        return 1.0

    ratio = max(0.0, float(time_taken_seconds)) / float(expected_time_seconds)
    if ratio <= 0.5:
        return 1.0 + TIME_ADJUSTMENT_FACTOR
    if ratio >= 2.0:
        return 1.0 - TIME_ADJUSTMENT_FACTOR
    if ratio < 1.0:
        # 0.5 -> +10%, 1.0 -> 0%
        return 1.0 + TIME_ADJUSTMENT_FACTOR * (1.0 - ratio) * 2.0
    # 1.0 -> 0%, 2.0 -> -10%
    return 1.0 - TIME_ADJUSTMENT_FACTOR * (ratio - 1.0)


def calculate_elo_change(
    current_elo: float,
    difficulty: int,
    success: bool,
    time_taken_seconds: float = DEFAULT_EXPECTED_TIME_SECONDS,
    expected_time_seconds: float = DEFAULT_EXPECTED_TIME_SECONDS,
) -> float:
    opponent = difficulty_to_opponent_elo(difficulty)
    expected = expected_score(current_elo, opponent)
    actual = 1.0 if success else 0.0
    change = K_FACTOR * (actual - expected) * time_adjustment(time_taken_seconds, expected_time_seconds)
    rounded = float(round(change))
    # rounding must never flip the sign of the outcome
    if success:
        return max(0.0, rounded)
    return min(0.0, rounded)


def update_scores(
    overall_elo: float,
    skill_scores: Mapping[SkillCluster, float],
    skill_cluster: SkillCluster,
    activity_difficulty: int,
    success: bool,
    time_taken_seconds: float,
    expected_time_seconds: float = DEFAULT_EXPECTED_TIME_SECONDS,
) -> EloUpdateResult:
    """Apply one activity outcome to the overall and per-cluster ratings.

    Pure and deterministic. The same delta moves the overall rating and the
    cluster rating, so global and per-skill progress never desync. The
    overall rating is floored at zero by clamping the delta itself, which
    keeps ``new_overall_elo == overall_elo + elo_change``.
    """

    change = calculate_elo_change(
        overall_elo,
        activity_difficulty,
        success,
        time_taken_seconds,
        expected_time_seconds,
    )
    if overall_elo + change < 0:
        change = -float(overall_elo)
    new_overall = overall_elo + change

    new_skill_scores: Dict[SkillCluster, float] = dict(skill_scores)
    current_skill = new_skill_scores.get(skill_cluster, INITIAL_ELO)
    new_skill_scores[skill_cluster] = max(0.0, current_skill + change)

    return EloUpdateResult(
        elo_change=change,
        new_overall_elo=new_overall,
        new_skill_scores=new_skill_scores,
    )


def expected_success_rate(difficulty: int, player_elo: float = INITIAL_ELO) -> float:
    """Probability of success at ``difficulty`` for a learner rated ``player_elo``."""

    return expected_score(player_elo, difficulty_to_opponent_elo(difficulty))


def balanced_difficulty(current_elo: float) -> int:
    """Difficulty at which the learner's expected success is roughly 50%."""

    level = round((current_elo - 500.0) / 100.0)
    return int(max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, level)))


def placement_band(current_elo: float) -> str:
    """Coarsely categorise ability for reporting/analytics."""

    if current_elo < 900:
        return "intro"
    if current_elo > 1100:
        return "stretch"
    return "core"
