"""Activity type selection with variety constraints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from schemas import ActivityType, LearningPath, LearningTopic, SkillCluster

# Ordered by how well each type exercises the cluster.
CLUSTER_ACTIVITY_TYPES: Dict[SkillCluster, List[ActivityType]] = {
    SkillCluster.DSA: [
        ActivityType.CODING_CHALLENGE,
        ActivityType.MCQ,
        ActivityType.DEBUGGING_TASK,
        ActivityType.CONCEPT_EXPLANATION,
    ],
    SkillCluster.OOP: [
        ActivityType.CODING_CHALLENGE,
        ActivityType.MCQ,
        ActivityType.DEBUGGING_TASK,
        ActivityType.CONCEPT_EXPLANATION,
        ActivityType.REAL_WORLD_ASSIGNMENT,
    ],
    SkillCluster.SYSTEM_DESIGN: [
        ActivityType.CONCEPT_EXPLANATION,
        ActivityType.MINI_CASE_STUDY,
        ActivityType.MCQ,
        ActivityType.REAL_WORLD_ASSIGNMENT,
    ],
    SkillCluster.DEBUGGING: [
        ActivityType.DEBUGGING_TASK,
        ActivityType.CODING_CHALLENGE,
        ActivityType.MCQ,
        ActivityType.CONCEPT_EXPLANATION,
    ],
    SkillCluster.DATABASES: [
        ActivityType.CODING_CHALLENGE,
        ActivityType.MCQ,
        ActivityType.CONCEPT_EXPLANATION,
        ActivityType.DEBUGGING_TASK,
        ActivityType.MINI_CASE_STUDY,
    ],
    SkillCluster.API_DESIGN: [
        ActivityType.CODING_CHALLENGE,
        ActivityType.CONCEPT_EXPLANATION,
        ActivityType.MCQ,
        ActivityType.REAL_WORLD_ASSIGNMENT,
        ActivityType.MINI_CASE_STUDY,
    ],
    SkillCluster.TESTING: [
        ActivityType.CODING_CHALLENGE,
        ActivityType.DEBUGGING_TASK,
        ActivityType.MCQ,
        ActivityType.CONCEPT_EXPLANATION,
    ],
    SkillCluster.DEVOPS: [
        ActivityType.CONCEPT_EXPLANATION,
        ActivityType.MCQ,
        ActivityType.DEBUGGING_TASK,
        ActivityType.REAL_WORLD_ASSIGNMENT,
    ],
    SkillCluster.FRONTEND: [
        ActivityType.CODING_CHALLENGE,
        ActivityType.DEBUGGING_TASK,
        ActivityType.MCQ,
        ActivityType.CONCEPT_EXPLANATION,
        ActivityType.REAL_WORLD_ASSIGNMENT,
    ],
    SkillCluster.BACKEND: [
        ActivityType.CODING_CHALLENGE,
        ActivityType.DEBUGGING_TASK,
        ActivityType.MCQ,
        ActivityType.CONCEPT_EXPLANATION,
        ActivityType.REAL_WORLD_ASSIGNMENT,
    ],
    SkillCluster.SECURITY: [
        ActivityType.MCQ,
        ActivityType.CONCEPT_EXPLANATION,
        ActivityType.DEBUGGING_TASK,
        ActivityType.MINI_CASE_STUDY,
    ],
    SkillCluster.PERFORMANCE: [
        ActivityType.DEBUGGING_TASK,
        ActivityType.CODING_CHALLENGE,
        ActivityType.CONCEPT_EXPLANATION,
        ActivityType.MINI_CASE_STUDY,
    ],
}

INTRODUCTORY_TYPES = frozenset({ActivityType.MCQ, ActivityType.CONCEPT_EXPLANATION})
VARIETY_WINDOW = 2
INTRO_MAX_DIFFICULTY = 3
APPLIED_MIN_DIFFICULTY = 7


@dataclass(frozen=True)
class ActivityGenerationContext:
    goal: str
    topic: LearningTopic
    difficulty: int
    skill_cluster: SkillCluster
    previous_activity_types: List[ActivityType] = field(default_factory=list)


def build_generation_context(
    path: LearningPath,
    topic: LearningTopic,
    recent_types: Sequence[ActivityType],
) -> ActivityGenerationContext:
    return ActivityGenerationContext(
        goal=path.goal,
        topic=topic,
        difficulty=path.current_difficulty,
        skill_cluster=topic.skill_cluster,
        previous_activity_types=list(recent_types),
    )


def candidate_types(skill_cluster: SkillCluster) -> List[ActivityType]:
    return list(CLUSTER_ACTIVITY_TYPES.get(skill_cluster) or list(ActivityType))


def _difficulty_rank(activity_type: ActivityType, difficulty: int) -> int:
    introductory = activity_type in INTRODUCTORY_TYPES
    if difficulty <= INTRO_MAX_DIFFICULTY:
        return 0 if introductory else 1
    if difficulty >= APPLIED_MIN_DIFFICULTY:
        return 1 if introductory else 0
    return 0


def select_activity_type(
    context: ActivityGenerationContext,
    recent_types: Optional[Sequence[ActivityType]] = None,
) -> ActivityType:
    """Choose the next activity type for ``context``.

    Types used in the last two entries are skipped; if that empties the
    pool only the immediately preceding type is skipped, and if that still
    empties it every candidate is allowed again. Among the allowed types the
    least recently used wins, then the difficulty-appropriate kind, then the
    cluster's own preference order.
    """

    history = list(context.previous_activity_types if recent_types is None else recent_types)
    candidates = candidate_types(context.skill_cluster)

    blocked = set(history[-VARIETY_WINDOW:])
    allowed = [t for t in candidates if t not in blocked]
    if not allowed and history:
        allowed = [t for t in candidates if t != history[-1]]
    if not allowed:
        allowed = candidates

    last_seen = {activity_type: index for index, activity_type in enumerate(history)}

    def sort_key(activity_type: ActivityType) -> tuple[int, int, int]:
        return (
            last_seen.get(activity_type, -1),
            _difficulty_rank(activity_type, context.difficulty),
            candidates.index(activity_type),
        )

    return min(allowed, key=sort_key)
