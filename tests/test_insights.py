from datetime import datetime, timedelta, timezone

from engines.insights import (
    DEFAULT_SUGGESTION,
    detect_stuck_areas,
    elo_to_percentile,
    generate_insights,
    generate_weekly_summary,
)
from schemas import ActivityType, LearningPath, LearningTopic, SkillCluster, TimelineEntry

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def topic(topic_id, cluster):
    return LearningTopic(
        id=topic_id, title=topic_id.title(), description="desc", skill_cluster=cluster, difficulty=5
    )


def entry(index, topic_id, success, elo_before, activity_type=ActivityType.MCQ, hours=0):
    change = 16.0 if success else -16.0
    return TimelineEntry(
        id=f"timeline_{index}",
        activity_id=f"activity_{index}",
        topic_id=topic_id,
        topic_title=topic_id.title(),
        activity_type=activity_type,
        success=success,
        elo_change=change,
        elo_before=elo_before,
        elo_after=elo_before + change,
        time_taken_seconds=60,
        timestamp=START + timedelta(hours=hours or index),
    )


def build_path(timeline, skill_scores):
    return LearningPath(
        id="p",
        user_id="u",
        goal="Become a well rounded engineer",
        skill_clusters=[SkillCluster.DSA, SkillCluster.SECURITY],
        baseline_difficulty=5,
        current_difficulty=5,
        overall_elo=timeline[-1].elo_after if timeline else 1000.0,
        skill_scores=skill_scores,
        topics=[topic("arrays", SkillCluster.DSA), topic("xss", SkillCluster.SECURITY)],
        timeline=timeline,
        created_at=START,
    )


def test_empty_path_has_neutral_insights():
    insights = generate_insights(build_path([], {}))
    assert insights.confidence_score == 50
    assert insights.strengths == []
    assert insights.elo_trend == []
    assert insights.suggested_improvements == [DEFAULT_SUGGESTION]


def test_percentile_is_centred_on_initial_rating():
    assert elo_to_percentile(1000) == 50
    assert elo_to_percentile(1400) == 88
    assert elo_to_percentile(600) == 12


def test_strengths_weaknesses_and_stuck_topics():
    timeline = [
        entry(1, "arrays", True, 1000.0),
        entry(2, "xss", False, 1016.0, ActivityType.CONCEPT_EXPLANATION),
        entry(3, "xss", False, 1000.0, ActivityType.CONCEPT_EXPLANATION),
        entry(4, "xss", False, 984.0, ActivityType.CONCEPT_EXPLANATION),
    ]
    path = build_path(timeline, {SkillCluster.DSA: 1016.0, SkillCluster.SECURITY: 952.0})

    insights = generate_insights(path)

    assert insights.strengths == [SkillCluster.DSA]
    assert insights.weaknesses == [SkillCluster.SECURITY]
    assert [area.topic_id for area in insights.stuck_areas] == ["xss"]
    assert insights.stuck_areas[0].failure_count == 3
    assert any("Xss" in text for text in insights.suggested_improvements)
    assert any("conceptual understanding" in text for text in insights.suggested_improvements)
    assert insights.performance_by_type[ActivityType.MCQ].success_rate == 1.0
    assert insights.performance_by_type[ActivityType.CONCEPT_EXPLANATION].attempts == 3
    assert [point.elo for point in insights.elo_trend] == [1000.0, 1016.0, 1000.0, 984.0, 968.0]
    radar = {point.cluster: point for point in insights.skill_radar}
    assert radar[SkillCluster.SECURITY].band == "core"
    assert 0 <= insights.confidence_score <= 100


def test_success_resets_stuck_streak():
    timeline = [
        entry(1, "xss", False, 1000.0),
        entry(2, "xss", False, 984.0),
        entry(3, "xss", True, 968.0),
        entry(4, "xss", False, 984.0),
    ]
    assert detect_stuck_areas(timeline) == []


def test_weekly_summary():
    timeline = [
        entry(1, "arrays", True, 1000.0),
        entry(2, "arrays", True, 1016.0),
        entry(3, "xss", False, 1032.0),
        entry(4, "xss", True, 1016.0, hours=24 * 8),
    ]
    path = build_path(timeline, {SkillCluster.DSA: 1032.0, SkillCluster.SECURITY: 1000.0})

    summary = generate_weekly_summary(path, START)

    assert summary == (
        "This week: 3 activities completed with 67% success rate. "
        "You gained 16 ELO points. Topics covered: Arrays, Xss."
    )
    assert generate_weekly_summary(path, START - timedelta(days=30)).startswith("No learning activities")


def test_weekly_summary_reads_naive_bounds_as_utc():
    timeline = [entry(1, "arrays", True, 1000.0), entry(2, "arrays", False, 1016.0)]
    path = build_path(timeline, {SkillCluster.DSA: 1000.0})
    naive_start = START.replace(tzinfo=None)

    summary = generate_weekly_summary(path, naive_start, naive_start + timedelta(days=1))

    assert summary.startswith("This week: 2 activities completed with 50% success rate.")
    assert generate_weekly_summary(path, naive_start + timedelta(days=2)).startswith("No learning activities")
