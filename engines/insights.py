"""Learning insights derived from a path's timeline and ratings."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from engines.elo import INITIAL_ELO, placement_band
from schemas import ActivityType, LearningPath, SkillCluster, TimelineEntry

STUCK_THRESHOLD = 3
CONFIDENCE_WINDOW = 10
RADAR_MAX_SCORE = 2000.0
WEAK_TYPE_MIN_ATTEMPTS = 3

CLUSTER_SUGGESTIONS: Dict[SkillCluster, str] = {
    SkillCluster.DSA: "Practice more data structure and algorithm problems. Focus on understanding time/space complexity.",
    SkillCluster.OOP: "Review object-oriented design principles. Practice implementing design patterns.",
    SkillCluster.SYSTEM_DESIGN: "Study system design fundamentals. Practice designing scalable architectures.",
    SkillCluster.DEBUGGING: "Work on debugging exercises. Learn to use debugging tools effectively.",
    SkillCluster.DATABASES: "Review database concepts. Practice SQL queries and schema design.",
    SkillCluster.API_DESIGN: "Study RESTful API design principles. Practice designing clean API interfaces.",
    SkillCluster.TESTING: "Learn testing strategies. Practice writing unit and integration tests.",
    SkillCluster.DEVOPS: "Study CI/CD pipelines and deployment strategies. Practice with containerization.",
    SkillCluster.FRONTEND: "Review frontend fundamentals. Practice building responsive UIs.",
    SkillCluster.BACKEND: "Study backend architecture patterns. Practice building scalable services.",
    SkillCluster.SECURITY: "Learn common security vulnerabilities. Practice secure coding techniques.",
    SkillCluster.PERFORMANCE: "Study performance optimization techniques. Practice profiling and optimization.",
}

TYPE_SUGGESTIONS: Dict[ActivityType, str] = {
    ActivityType.MCQ: "Review theoretical concepts to improve MCQ performance.",
    ActivityType.CODING_CHALLENGE: "Practice more coding problems. Focus on problem decomposition.",
    ActivityType.DEBUGGING_TASK: "Improve debugging skills by practicing systematic error identification.",
    ActivityType.REAL_WORLD_ASSIGNMENT: "Work on practical projects to improve real-world problem solving.",
    ActivityType.CONCEPT_EXPLANATION: "Strengthen conceptual understanding through documentation and teaching.",
    ActivityType.MINI_CASE_STUDY: "Practice analyzing case studies and making design decisions.",
}

DEFAULT_SUGGESTION = "Keep up the good work! Continue practicing to maintain your skills."


@dataclass
class SkillRadarPoint:
    cluster: SkillCluster
    score: float
    max_score: float
    percentile: int
    band: str


@dataclass
class StuckArea:
    topic_id: str
    topic_title: str
    failure_count: int
    last_attempt: datetime


@dataclass
class TypePerformance:
    attempts: int
    success_rate: float


@dataclass
class EloPoint:
    date: datetime
    elo: float


@dataclass
class LearningInsights:
    strengths: List[SkillCluster] = field(default_factory=list)
    weaknesses: List[SkillCluster] = field(default_factory=list)
    skill_radar: List[SkillRadarPoint] = field(default_factory=list)
    stuck_areas: List[StuckArea] = field(default_factory=list)
    suggested_improvements: List[str] = field(default_factory=list)
    confidence_score: int = 50
    elo_trend: List[EloPoint] = field(default_factory=list)
    performance_by_type: Dict[ActivityType, TypePerformance] = field(default_factory=dict)


def elo_to_percentile(elo: float) -> int:
    """ELO 1000 is the 50th percentile; the tails flatten towards 0 and 100."""

    percentile = 50 + 50 * math.tanh((elo - INITIAL_ELO) / 400)
    return int(round(max(0.0, min(100.0, percentile))))


def active_clusters(path: LearningPath) -> List[SkillCluster]:
    """Clusters with at least one timeline entry, in first-practised order."""

    seen: List[SkillCluster] = []
    for entry in path.timeline:
        topic = path.topic(entry.topic_id)
        if topic is not None and topic.skill_cluster not in seen:
            seen.append(topic.skill_cluster)
    return seen


def _cluster_scores(path: LearningPath) -> Dict[SkillCluster, float]:
    return {cluster: path.skill_scores.get(cluster, INITIAL_ELO) for cluster in active_clusters(path)}


def identify_strengths(path: LearningPath) -> List[SkillCluster]:
    scores = _cluster_scores(path)
    if not scores:
        return []
    average = sum(scores.values()) / len(scores)
    return [cluster for cluster, score in scores.items() if score > average]


def identify_weaknesses(path: LearningPath) -> List[SkillCluster]:
    scores = _cluster_scores(path)
    if not scores:
        return []
    average = sum(scores.values()) / len(scores)
    return [cluster for cluster, score in scores.items() if score < average]


def skill_radar(path: LearningPath) -> List[SkillRadarPoint]:
    return [
        SkillRadarPoint(
            cluster=cluster,
            score=score,
            max_score=RADAR_MAX_SCORE,
            percentile=elo_to_percentile(score),
            band=placement_band(score),
        )
        for cluster, score in _cluster_scores(path).items()
    ]


def detect_stuck_areas(timeline: Sequence[TimelineEntry], threshold: int = STUCK_THRESHOLD) -> List[StuckArea]:
    """Topics whose latest attempts are ``threshold`` or more failures in a row."""

    streaks: Dict[str, StuckArea] = {}
    for entry in timeline:
        if entry.success:
            streaks.pop(entry.topic_id, None)
            continue
        current = streaks.get(entry.topic_id)
        streaks[entry.topic_id] = StuckArea(
            topic_id=entry.topic_id,
            topic_title=entry.topic_title,
            failure_count=(current.failure_count if current else 0) + 1,
            last_attempt=entry.timestamp,
        )

    stuck = [area for area in streaks.values() if area.failure_count >= threshold]
    return sorted(stuck, key=lambda area: area.failure_count, reverse=True)


def confidence_score(path: LearningPath) -> int:
    """0-100 blend of recent success rate (40), consistency (30) and trend (30)."""

    recent = path.timeline[-CONFIDENCE_WINDOW:]
    if not recent:
        return 50

    success_points = sum(1 for e in recent if e.success) / len(recent) * 40

    changes = [e.elo_change for e in recent]
    mean_change = sum(changes) / len(changes)
    std_dev = math.sqrt(sum((c - mean_change) ** 2 for c in changes) / len(changes))
    consistency_points = max(0.0, 30 - std_dev)

    half = len(recent) // 2
    first = recent[:half]
    second = recent[half:]
    first_elo = sum(e.elo_after for e in first) / len(first) if first else path.overall_elo
    second_elo = sum(e.elo_after for e in second) / len(second) if second else path.overall_elo
    trend_points = max(0.0, min(30.0, 15 + (second_elo - first_elo) / 10))

    total = success_points + consistency_points + trend_points
    return int(round(max(0.0, min(100.0, total))))


def elo_trend(path: LearningPath) -> List[EloPoint]:
    if not path.timeline:
        return []
    trend = [EloPoint(date=path.created_at, elo=INITIAL_ELO)]
    trend.extend(EloPoint(date=entry.timestamp, elo=entry.elo_after) for entry in path.timeline)
    return trend


def performance_by_type(timeline: Sequence[TimelineEntry]) -> Dict[ActivityType, TypePerformance]:
    attempts: Dict[ActivityType, int] = {}
    successes: Dict[ActivityType, int] = {}
    for entry in timeline:
        attempts[entry.activity_type] = attempts.get(entry.activity_type, 0) + 1
        if entry.success:
            successes[entry.activity_type] = successes.get(entry.activity_type, 0) + 1
    return {
        activity_type: TypePerformance(attempts=count, success_rate=successes.get(activity_type, 0) / count)
        for activity_type, count in attempts.items()
    }


def suggest_improvements(
    weaknesses: Sequence[SkillCluster],
    stuck_areas: Sequence[StuckArea],
    by_type: Dict[ActivityType, TypePerformance],
) -> List[str]:
    suggestions = [CLUSTER_SUGGESTIONS[cluster] for cluster in weaknesses[:3] if cluster in CLUSTER_SUGGESTIONS]

    if stuck_areas:
        suggestions.append(
            f'You seem stuck on "{stuck_areas[0].topic_title}". '
            "Consider reviewing foundational concepts or trying easier related topics first."
        )

    weak_types = sorted(
        (
            (activity_type, stats)
            for activity_type, stats in by_type.items()
            if stats.attempts >= WEAK_TYPE_MIN_ATTEMPTS and stats.success_rate < 0.5
        ),
        key=lambda item: item[1].success_rate,
    )
    suggestions.extend(TYPE_SUGGESTIONS[activity_type] for activity_type, _ in weak_types[:2])

    return suggestions or [DEFAULT_SUGGESTION]


def generate_insights(path: LearningPath) -> LearningInsights:
    weaknesses = identify_weaknesses(path)
    stuck = detect_stuck_areas(path.timeline)
    by_type = performance_by_type(path.timeline)
    return LearningInsights(
        strengths=identify_strengths(path),
        weaknesses=weaknesses,
        skill_radar=skill_radar(path),
        stuck_areas=stuck,
        suggested_improvements=suggest_improvements(weaknesses, stuck, by_type),
        confidence_score=confidence_score(path),
        elo_trend=elo_trend(path),
        performance_by_type=by_type,
    )


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment


def generate_weekly_summary(path: LearningPath, week_start: datetime, week_end: Optional[datetime] = None) -> str:
    # naive datetimes are read as UTC
    start = _as_utc(week_start)
    end = _as_utc(week_end) if week_end is not None else start + timedelta(days=7)
    entries = [entry for entry in path.timeline if start <= _as_utc(entry.timestamp) < end]
    if not entries:
        return "No learning activities recorded this week. Start learning to track your progress!"

    successes = sum(1 for entry in entries if entry.success)
    success_rate = round(successes / len(entries) * 100)
    total_change = sum(entry.elo_change for entry in entries)
    direction = "gained" if total_change >= 0 else "lost"
    topics = list(dict.fromkeys(entry.topic_title for entry in entries))

    return (
        f"This week: {len(entries)} activities completed with {success_rate}% success rate. "
        f"You {direction} {abs(total_change):g} ELO points. "
        f"Topics covered: {', '.join(topics)}."
    )
