"""Pydantic schemas for learning paths, generated content and helper utilities."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

__all__ = [
    "SkillCluster",
    "ActivityType",
    "DifficultyLevel",
    "MIN_DIFFICULTY",
    "MAX_DIFFICULTY",
    "LearningTopic",
    "GeneratedTopic",
    "MCQContent",
    "CodingChallengeContent",
    "DebuggingTaskContent",
    "ConceptExplanationContent",
    "RealWorldAssignmentContent",
    "MiniCaseStudyContent",
    "ActivityContent",
    "ACTIVITY_CONTENT_MODELS",
    "Activity",
    "Reflection",
    "TimelineEntry",
    "LearningPath",
    "ParsedGoal",
    "GoalValidation",
    "PathCreationResult",
    "parse_json_safe",
    "dump_json",
    "load_json",
]

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SkillCluster(str, Enum):
    """Skill domains a learning path can cover."""

    DSA = "dsa"
    OOP = "oop"
    SYSTEM_DESIGN = "system-design"
    DEBUGGING = "debugging"
    DATABASES = "databases"
    API_DESIGN = "api-design"
    TESTING = "testing"
    DEVOPS = "devops"
    FRONTEND = "frontend"
    BACKEND = "backend"
    SECURITY = "security"
    PERFORMANCE = "performance"


class ActivityType(str, Enum):
    """Closed set of practice activity kinds."""

    MCQ = "mcq"
    CODING_CHALLENGE = "coding-challenge"
    DEBUGGING_TASK = "debugging-task"
    CONCEPT_EXPLANATION = "concept-explanation"
    REAL_WORLD_ASSIGNMENT = "real-world-assignment"
    MINI_CASE_STUDY = "mini-case-study"


DifficultyLevel = Annotated[int, Field(ge=MIN_DIFFICULTY, le=MAX_DIFFICULTY)]


class LearningTopic(BaseModel):
    """A unit of curriculum; immutable once attached to a path."""

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    skill_cluster: SkillCluster
    difficulty: DifficultyLevel
    prerequisites: List[str] = Field(
        default_factory=list,
        description="Topic ids that must be completed first. Unknown ids keep the topic locked.",
    )

    model_config = {"frozen": True}


class GeneratedTopic(BaseModel):
    """Topic shape returned by the content generator; the id may be minted later."""

    id: str | None = None
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    skill_cluster: SkillCluster
    difficulty: DifficultyLevel
    prerequisites: List[str] = Field(default_factory=list)

    def to_topic(self, topic_id: str) -> LearningTopic:
        return LearningTopic(
            id=topic_id,
            title=self.title,
            description=self.description,
            skill_cluster=self.skill_cluster,
            difficulty=self.difficulty,
            prerequisites=list(self.prerequisites),
        )


# ---------------------------------------------------------------------------
# Activity content contracts, one per activity type
# ---------------------------------------------------------------------------


class MCQContent(BaseModel):
    type: Literal["mcq"] = "mcq"
    question: str = Field(min_length=1)
    options: List[str] = Field(min_length=4, max_length=4)
    correct_answer: str = Field(min_length=1)
    explanation: str = Field(min_length=1)


class CodingChallengeContent(BaseModel):
    type: Literal["coding-challenge"] = "coding-challenge"
    problem_description: str = Field(min_length=1)
    input_format: str = Field(min_length=1)
    output_format: str = Field(min_length=1)
    evaluation_criteria: List[str] = Field(min_length=1)
    starter_code: str | None = None
    sample_input: str
    sample_output: str


class DebuggingTaskContent(BaseModel):
    type: Literal["debugging-task"] = "debugging-task"
    buggy_code: str = Field(min_length=1)
    expected_behavior: str = Field(min_length=1)
    hints: List[str] | None = None


class ConceptExplanationContent(BaseModel):
    type: Literal["concept-explanation"] = "concept-explanation"
    content: str = Field(min_length=1)
    key_points: List[str] = Field(min_length=1)
    examples: List[str] | None = None


class RealWorldAssignmentContent(BaseModel):
    type: Literal["real-world-assignment"] = "real-world-assignment"
    scenario: str = Field(min_length=1)
    requirements: List[str] = Field(min_length=1)
    deliverables: List[str] = Field(min_length=1)
    evaluation_criteria: List[str] = Field(min_length=1)


class MiniCaseStudyContent(BaseModel):
    type: Literal["mini-case-study"] = "mini-case-study"
    scenario: str = Field(min_length=1)
    questions: List[str] = Field(min_length=1)
    key_considerations: List[str] | None = None


ActivityContent = Annotated[
    Union[
        MCQContent,
        CodingChallengeContent,
        DebuggingTaskContent,
        ConceptExplanationContent,
        RealWorldAssignmentContent,
        MiniCaseStudyContent,
    ],
    Field(discriminator="type"),
]

ACTIVITY_CONTENT_MODELS: Dict[ActivityType, Type[BaseModel]] = {
    ActivityType.MCQ: MCQContent,
    ActivityType.CODING_CHALLENGE: CodingChallengeContent,
    ActivityType.DEBUGGING_TASK: DebuggingTaskContent,
    ActivityType.CONCEPT_EXPLANATION: ConceptExplanationContent,
    ActivityType.REAL_WORLD_ASSIGNMENT: RealWorldAssignmentContent,
    ActivityType.MINI_CASE_STUDY: MiniCaseStudyContent,
}


class Activity(BaseModel):
    id: str = Field(min_length=1)
    topic_id: str = Field(min_length=1)
    type: ActivityType
    content: ActivityContent
    difficulty: DifficultyLevel = Field(
        description="Difficulty the activity was generated at; a snapshot, not a live reference.",
    )
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _content_matches_type(self) -> "Activity":
        if self.content.type != self.type.value:
            raise ValueError(
                f"Activity content type '{self.content.type}' does not match activity type '{self.type.value}'"
            )
        return self


class Reflection(BaseModel):
    """Learner-submitted outcome for one activity."""

    completed: bool
    time_taken_seconds: int = Field(ge=0)
    difficulty_rating: int | None = Field(default=None, ge=1, le=5)
    user_answer: str | None = None
    struggle_points: str | None = None


class TimelineEntry(BaseModel):
    """Immutable record of one completed activity."""

    id: str = Field(min_length=1)
    activity_id: str = Field(min_length=1)
    topic_id: str = Field(min_length=1)
    topic_title: str = Field(min_length=1)
    activity_type: ActivityType
    success: bool
    elo_change: float
    elo_before: float
    elo_after: float
    time_taken_seconds: int = Field(ge=0)
    reflection: Reflection | None = None
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _elo_balances(self) -> "TimelineEntry":
        if abs(self.elo_after - (self.elo_before + self.elo_change)) > 1e-9:
            raise ValueError("elo_after must equal elo_before + elo_change")
        return self


class LearningPath(BaseModel):
    """Root aggregate: one per (user, goal)."""

    id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    goal: str = Field(min_length=1)
    skill_clusters: List[SkillCluster] = Field(min_length=1)
    current_topic_id: str | None = None
    current_activity: Activity | None = None
    baseline_difficulty: DifficultyLevel
    current_difficulty: DifficultyLevel
    overall_elo: float = 1000.0
    skill_scores: Dict[SkillCluster, float] = Field(default_factory=dict)
    topics: List[LearningTopic] = Field(default_factory=list)
    timeline: List[TimelineEntry] = Field(default_factory=list)
    is_active: bool = True
    version: int = Field(default=0, ge=0, description="Bumped on every write; used for stale-read detection.")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _check_references(self) -> "LearningPath":
        if self.current_topic_id is not None and self.topic(self.current_topic_id) is None:
            raise ValueError(f"current_topic_id '{self.current_topic_id}' is not a topic of this path")
        unknown = set(self.skill_scores) - set(self.skill_clusters)
        if unknown:
            names = ", ".join(sorted(cluster.value for cluster in unknown))
            raise ValueError(f"skill_scores reference clusters outside the path: {names}")
        return self

    def topic(self, topic_id: str | None) -> Optional[LearningTopic]:
        if topic_id is None:
            return None
        return next((topic for topic in self.topics if topic.id == topic_id), None)

    @property
    def current_topic(self) -> Optional[LearningTopic]:
        return self.topic(self.current_topic_id)


class ParsedGoal(BaseModel):
    skill_clusters: List[SkillCluster] = Field(min_length=1)
    suggested_difficulty: DifficultyLevel
    initial_topic: GeneratedTopic


class GoalValidation(BaseModel):
    valid: bool
    error: str | None = None


class PathCreationResult(BaseModel):
    success: bool
    path: LearningPath | None = None
    error: str | None = None
    error_code: Literal["VALIDATION_ERROR", "ACTIVE_PATH_EXISTS"] | None = None


_T = TypeVar("_T", bound=BaseModel)


def _find_first_json_object(text: str) -> tuple[str, int, int]:
    start = text.find("{")
    while start != -1:
        depth = 0
        for idx in range(start, len(text)):
            char = text[idx]
            if char == "{" and (idx == 0 or text[idx - 1] != "\\"):
                depth += 1
            elif char == "}" and (idx == 0 or text[idx - 1] != "\\"):
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except ValueError:
                        break
                    return candidate, start, idx + 1
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        if first_newline != -1:
            stripped = stripped[first_newline + 1 :]
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def parse_json_safe(text: str, model: Type[_T]) -> _T:
    """Parse ``text`` into ``model`` with a fallback JSON extraction pass."""

    first_error: Exception | None = None
    cleaned = _strip_code_fence(text)
    try:
        return model.model_validate_json(cleaned)
    except (ValidationError, ValueError, TypeError) as exc:
        first_error = exc

    try:
        snippet, _, end = _find_first_json_object(cleaned)
    except ValueError:
        if first_error:
            raise first_error
        raise

    trailing = cleaned[end:]
    if trailing.strip():
        if isinstance(first_error, ValidationError):
            raise first_error
        raise ValueError("Trailing content detected after JSON object")

    try:
        return model.model_validate_json(snippet)
    except Exception:
        if first_error:
            raise first_error
        raise


def dump_json(model: BaseModel) -> str:
    """Serialise ``model`` for storage."""

    return json.dumps(model.model_dump(mode="json"), ensure_ascii=False, sort_keys=True)


def load_json(payload: Any) -> Any:
    if payload in (None, ""):
        return None
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    return json.loads(payload)
