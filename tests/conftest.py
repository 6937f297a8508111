import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas import (  # noqa: E402
    ACTIVITY_CONTENT_MODELS,
    ActivityType,
    GeneratedTopic,
    ParsedGoal,
    SkillCluster,
)

TEST_ENV = {"MODEL_ID": "test-model", "LLM_API_URL": "https://llm.invalid/v1/chat/completions"}

SAMPLE_CONTENT = {
    ActivityType.MCQ: {
        "question": "Which structure gives O(1) average lookup by key?",
        "options": ["Array", "Hash map", "Linked list", "Binary heap"],
        "correct_answer": "Hash map",
        "explanation": "Hashing maps keys straight to buckets.",
    },
    ActivityType.CODING_CHALLENGE: {
        "problem_description": "Return the indices of two numbers that add up to target.",
        "input_format": "A list of ints and a target int",
        "output_format": "Two indices",
        "evaluation_criteria": ["Correct output", "Linear time"],
        "sample_input": "[2, 7, 11, 15], 9",
        "sample_output": "[0, 1]",
    },
    ActivityType.DEBUGGING_TASK: {
        "buggy_code": "def first(xs):\n    return xs[1]",
        "expected_behavior": "Return the first element",
    },
    ActivityType.CONCEPT_EXPLANATION: {
        "content": "A hash map stores key/value pairs in buckets.",
        "key_points": ["Hash functions", "Collisions"],
    },
    ActivityType.REAL_WORLD_ASSIGNMENT: {
        "scenario": "Your team needs a rate limiter.",
        "requirements": ["Token bucket"],
        "deliverables": ["Design doc"],
        "evaluation_criteria": ["Correctness"],
    },
    ActivityType.MINI_CASE_STUDY: {
        "scenario": "A checkout service times out under load.",
        "questions": ["Where would you look first?"],
    },
}


def sample_content(activity_type):
    return ACTIVITY_CONTENT_MODELS[activity_type].model_validate(SAMPLE_CONTENT[activity_type])


def generated_topic(topic_id=None, *, title="Hash maps", cluster=SkillCluster.DSA, difficulty=5, prerequisites=()):
    return GeneratedTopic(
        id=topic_id,
        title=title,
        description=f"{title} in practice",
        skill_cluster=cluster,
        difficulty=difficulty,
        prerequisites=list(prerequisites),
    )


class StubGenerator:
    """In-memory stand-in for the content generator; records every call."""

    def __init__(self, parsed=None, topics=None):
        self.parsed = parsed or ParsedGoal(
            skill_clusters=[SkillCluster.DSA],
            suggested_difficulty=5,
            initial_topic=generated_topic("t1", title="Arrays"),
        )
        self.topics = list(topics or [])
        self.calls = []
        self.content_override = None
        self.topic_error = None
        self.activity_error = None

    async def parse_goal(self, goal, config):
        self.calls.append(("parse_goal", goal, config))
        return self.parsed

    async def generate_topic(self, context, config):
        self.calls.append(("generate_topic", context, config))
        if self.topic_error is not None:
            raise self.topic_error
        if not self.topics:
            raise AssertionError("StubGenerator has no queued topics")
        return self.topics.pop(0)

    async def generate_activity(self, context, activity_type, config):
        self.calls.append(("generate_activity", context, activity_type, config))
        if self.activity_error is not None:
            raise self.activity_error
        if self.content_override is not None:
            return self.content_override
        return sample_content(activity_type)


@pytest.fixture
def anyio_backend():
    """Force anyio to use asyncio backend for async tests."""

    return "asyncio"


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))
    # Reset the connection pool for each test
    monkeypatch.setattr(db, "_pool", db.SQLiteConnectionPool(str(db_path), max_connections=10))
    db.init()
    yield str(db_path)
    db._pool.close_all()


@pytest.fixture
def stub_generator():
    return StubGenerator()


@pytest.fixture
def orchestrator(temp_db, stub_generator):
    import db
    from engines.learning_path_orchestrator import LearningPathOrchestrator
    from settings import LearningPathSettings

    return LearningPathOrchestrator(
        db.LearningPathRepository(),
        stub_generator,
        LearningPathSettings(),
        env=TEST_ENV,
    )
