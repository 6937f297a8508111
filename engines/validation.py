"""Goal intake validation and the learning path error taxonomy."""

from typing import Any

from schemas import GoalValidation

MIN_GOAL_LENGTH = 10


class ValidationError(Exception):
    """Base class for validation errors."""
    pass


class GoalValidationError(ValidationError):
    """Raised when a goal is rejected during path initialisation."""

    def __init__(self, validation: GoalValidation):
        super().__init__(validation.error or "Invalid learning goal")
        self.validation = validation


class LearningPathIntegrityError(Exception):
    """A reference that should be structurally impossible to break is broken."""
    pass


class LearningPathNotFoundError(LearningPathIntegrityError):
    def __init__(self, path_id: str):
        super().__init__(f"Learning path not found: {path_id}")
        self.path_id = path_id


class TopicNotFoundError(LearningPathIntegrityError):
    def __init__(self, path_id: str, topic_id: str | None):
        super().__init__(f"Topic not found in learning path {path_id}: {topic_id}")
        self.path_id = path_id
        self.topic_id = topic_id


class ActivityNotFoundError(LearningPathIntegrityError):
    def __init__(self, path_id: str, activity_id: str):
        super().__init__(f"Activity {activity_id} is not the current activity of learning path {path_id}")
        self.path_id = path_id
        self.activity_id = activity_id


class InactiveLearningPathError(Exception):
    def __init__(self, path_id: str):
        super().__init__(f"Learning path is not active: {path_id}")
        self.path_id = path_id


class StaleLearningPathError(Exception):
    """Raised when a write was computed against an outdated read of the path."""

    def __init__(self, path_id: str, expected_version: int, actual_version: int | None):
        super().__init__(
            f"Learning path {path_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.path_id = path_id
        self.expected_version = expected_version
        self.actual_version = actual_version


def validate_goal(goal: Any, min_length: int = MIN_GOAL_LENGTH) -> GoalValidation:
    """Check a raw goal string; never raises."""
    if not goal or not isinstance(goal, str):
        return GoalValidation(valid=False, error="Goal is required")

    trimmed = goal.strip()
    if not trimmed:
        return GoalValidation(valid=False, error="Goal cannot be empty")

    if len(trimmed) < min_length:
        return GoalValidation(
            valid=False,
            error=f"Goal must be at least {min_length} characters",
        )

    return GoalValidation(valid=True)
