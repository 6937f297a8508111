import pytest

from engines.activity_policy import (
    CLUSTER_ACTIVITY_TYPES,
    ActivityGenerationContext,
    build_generation_context,
    select_activity_type,
)
from schemas import ActivityType, LearningPath, LearningTopic, SkillCluster

A = ActivityType


def context(cluster=SkillCluster.DSA, difficulty=5, previous=()):
    topic = LearningTopic(
        id="t1", title="Topic", description="Topic body", skill_cluster=cluster, difficulty=difficulty
    )
    return ActivityGenerationContext(
        goal="Learn things properly",
        topic=topic,
        difficulty=difficulty,
        skill_cluster=cluster,
        previous_activity_types=list(previous),
    )


def test_every_cluster_has_candidates():
    assert set(CLUSTER_ACTIVITY_TYPES) == set(SkillCluster)
    assert all(len(types) >= 2 for types in CLUSTER_ACTIVITY_TYPES.values())


def test_no_history_follows_cluster_preference():
    assert select_activity_type(context(SkillCluster.DEBUGGING), []) == A.DEBUGGING_TASK


def test_low_difficulty_prefers_introductory_types():
    assert select_activity_type(context(SkillCluster.DSA, difficulty=2), []) == A.MCQ


def test_high_difficulty_prefers_applied_types():
    assert select_activity_type(context(SkillCluster.SECURITY, difficulty=8), []) == A.DEBUGGING_TASK


def test_last_two_types_are_skipped():
    chosen = select_activity_type(context(SkillCluster.DSA), [A.CODING_CHALLENGE, A.MCQ])
    assert chosen == A.DEBUGGING_TASK


def test_least_recently_used_wins():
    history = [A.DEBUGGING_TASK, A.CONCEPT_EXPLANATION, A.CODING_CHALLENGE, A.MCQ]
    assert select_activity_type(context(SkillCluster.DSA), history) == A.DEBUGGING_TASK


def test_defaults_to_context_history():
    ctx = context(SkillCluster.DSA, previous=[A.CODING_CHALLENGE, A.MCQ])
    assert select_activity_type(ctx) == A.DEBUGGING_TASK


@pytest.mark.parametrize("cluster", list(SkillCluster))
def test_never_repeats_previous_type(cluster):
    history = []
    for difficulty in [1, 3, 5, 7, 10] * 4:
        chosen = select_activity_type(context(cluster, difficulty), history[-5:])
        assert chosen in CLUSTER_ACTIVITY_TYPES[cluster]
        if history:
            assert chosen != history[-1]
        history.append(chosen)


def test_relaxes_variety_when_candidates_run_out(monkeypatch):
    import engines.activity_policy as policy

    monkeypatch.setitem(policy.CLUSTER_ACTIVITY_TYPES, SkillCluster.DSA, [A.MCQ, A.CODING_CHALLENGE])
    assert select_activity_type(context(SkillCluster.DSA), [A.CODING_CHALLENGE, A.MCQ]) == A.CODING_CHALLENGE

    monkeypatch.setitem(policy.CLUSTER_ACTIVITY_TYPES, SkillCluster.DSA, [A.MCQ])
    assert select_activity_type(context(SkillCluster.DSA), [A.MCQ, A.MCQ]) == A.MCQ


def test_build_generation_context_uses_path_difficulty():
    topic = LearningTopic(
        id="t1", title="Joins", description="SQL joins", skill_cluster=SkillCluster.DATABASES, difficulty=4
    )
    path = LearningPath(
        id="p",
        user_id="u",
        goal="Become fluent with SQL",
        skill_clusters=[SkillCluster.DATABASES],
        baseline_difficulty=4,
        current_difficulty=6,
        topics=[topic],
        current_topic_id="t1",
    )
    ctx = build_generation_context(path, topic, [A.MCQ])
    assert ctx.difficulty == 6
    assert ctx.skill_cluster == SkillCluster.DATABASES
    assert ctx.previous_activity_types == [A.MCQ]
    assert ctx.goal == path.goal
