"""Read helpers over the append-only activity timeline.

Insertion order is chronological order. Mastery counts and the recent-N
windows are always recomputed from the entries, never cached.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Set
from uuid import uuid4

from engines.elo import EloUpdateResult
from schemas import Activity, ActivityType, LearningTopic, Reflection, TimelineEntry

MASTERY_THRESHOLD = 3


def completed_topic_ids(timeline: Iterable[TimelineEntry]) -> Set[str]:
    """Topics with at least one success; used for prerequisite unlocking only."""

    return {entry.topic_id for entry in timeline if entry.success}


def topic_success_count(timeline: Iterable[TimelineEntry], topic_id: Optional[str]) -> int:
    if topic_id is None:
        return 0
    return sum(1 for entry in timeline if entry.topic_id == topic_id and entry.success)


def is_topic_mastered(
    timeline: Iterable[TimelineEntry],
    topic_id: Optional[str],
    threshold: int = MASTERY_THRESHOLD,
) -> bool:
    return topic_success_count(timeline, topic_id) >= threshold


def recent_outcomes(timeline: Sequence[TimelineEntry], count: int = 10) -> List[bool]:
    if count <= 0:
        return []
    return [entry.success for entry in timeline[-count:]]


def recent_activity_types(timeline: Sequence[TimelineEntry], count: int = 5) -> List[ActivityType]:
    if count <= 0:
        return []
    return [entry.activity_type for entry in timeline[-count:]]


def build_timeline_entry(
    activity: Activity,
    topic: LearningTopic,
    reflection: Reflection,
    elo_before: float,
    elo_result: EloUpdateResult,
    *,
    timestamp: Optional[datetime] = None,
) -> TimelineEntry:
    return TimelineEntry(
        id=f"timeline_{uuid4().hex}",
        activity_id=activity.id,
        topic_id=topic.id,
        topic_title=topic.title,
        activity_type=activity.type,
        success=reflection.completed,
        elo_change=elo_result.elo_change,
        elo_before=elo_before,
        elo_after=elo_result.new_overall_elo,
        time_taken_seconds=reflection.time_taken_seconds,
        reflection=reflection,
        timestamp=timestamp or datetime.now(timezone.utc),
    )
