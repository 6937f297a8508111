"""Adaptive learning path orchestration.

Ties the pure engines (rating, difficulty loop, topic graph, activity
policy) to the repository and the content generator. Each operation re-reads
the path; read-modify-write sequences on one path run under the
repository's per-path lock and the timeline append carries the version the
computation was based on.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

import db
from engines.activity_policy import build_generation_context, select_activity_type
from engines.content_generator import ContentGenerator, ContentValidationError, LLMContentGenerator
from engines.difficulty_manager import DifficultyManager
from engines.elo import expected_time_for, update_scores
from engines.insights import LearningInsights, generate_insights
from engines.timeline import build_timeline_entry, is_topic_mastered, recent_activity_types, recent_outcomes
from engines.topic_graph import TopicGraphResolver, mint_topic_id
from engines.validation import (
    ActivityNotFoundError,
    GoalValidationError,
    InactiveLearningPathError,
    LearningPathNotFoundError,
    TopicNotFoundError,
    validate_goal,
)
from env_validation import validate_environment
from schemas import (
    Activity,
    GoalValidation,
    LearningPath,
    LearningTopic,
    ParsedGoal,
    PathCreationResult,
    Reflection,
    TimelineEntry,
)
from settings import LearningPathSettings, ModelOverrides, ModelTierConfig, resolve_model_config

_LOGGER = logging.getLogger(__name__)


def _log_json(event: str, payload: Dict[str, Any]) -> None:
    """Emit structured JSON logs for path state transitions."""

    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    _LOGGER.info(message)


class LearningPathOrchestrator:
    def __init__(
        self,
        repository: db.LearningPathRepository,
        generator: ContentGenerator,
        settings: Optional[LearningPathSettings] = None,
        *,
        difficulty_manager: Optional[DifficultyManager] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.repository = repository
        self.generator = generator
        self.settings = settings or LearningPathSettings.from_env()
        self.difficulty_manager = difficulty_manager or DifficultyManager(window=self.settings.recent_results_count)
        self.resolver = TopicGraphResolver(repository, generator)
        self._env = env

    def _config(self, task: str, overrides: Optional[ModelOverrides]) -> ModelTierConfig:
        return resolve_model_config(task, overrides, self._env)

    async def _require_path(self, path_id: str) -> LearningPath:
        path = await self.repository.get(path_id)
        if path is None:
            raise LearningPathNotFoundError(path_id)
        return path

    # ------------------------------------------------------------------
    # Goal intake
    # ------------------------------------------------------------------
    def validate_goal(self, goal: Any) -> GoalValidation:
        return validate_goal(goal, self.settings.min_goal_length)

    async def parse_goal(self, goal: str, overrides: Optional[ModelOverrides] = None) -> ParsedGoal:
        return await self.generator.parse_goal(goal, self._config("parse_learning_goal", overrides))

    async def initialize_path(
        self,
        user_id: str,
        goal: str,
        overrides: Optional[ModelOverrides] = None,
    ) -> LearningPath:
        """Validate ``goal``, parse it and persist a new path with its seed topic."""

        validation = self.validate_goal(goal)
        if not validation.valid:
            _log_json("learning_path.goal_rejected", {"user_id": user_id, "error": validation.error})
            raise GoalValidationError(validation)

        goal = goal.strip()
        parsed = await self.parse_goal(goal, overrides)
        seed = parsed.initial_topic
        if seed.skill_cluster not in parsed.skill_clusters:
            raise ContentValidationError(
                f"Seed topic cluster '{seed.skill_cluster.value}' is not one of the parsed clusters"
            )

        path = await self.repository.create(
            user_id,
            goal,
            parsed.skill_clusters,
            parsed.suggested_difficulty,
            parsed.suggested_difficulty,
        )
        topic = seed.to_topic(seed.id or mint_topic_id())
        await self.repository.add_topic(path.id, topic)
        await self.repository.set_current_topic(path.id, topic.id)

        _log_json(
            "learning_path.created",
            {
                "path_id": path.id,
                "user_id": user_id,
                "skill_clusters": [cluster.value for cluster in parsed.skill_clusters],
                "difficulty": parsed.suggested_difficulty,
                "seed_topic_id": topic.id,
            },
        )
        return await self._require_path(path.id)

    async def create_learning_path(
        self,
        user_id: str,
        goal: Any,
        overrides: Optional[ModelOverrides] = None,
    ) -> PathCreationResult:
        validation = self.validate_goal(goal)
        if not validation.valid:
            return PathCreationResult(success=False, error=validation.error, error_code="VALIDATION_ERROR")

        async with self.repository.path_lock(f"user:{user_id}"):
            active = await self.repository.find_active_for_user(user_id)
            if active is not None:
                return PathCreationResult(
                    success=False,
                    error="You already have an active learning path. Deactivate it before starting a new one.",
                    error_code="ACTIVE_PATH_EXISTS",
                )
            path = await self.initialize_path(user_id, goal, overrides)
        return PathCreationResult(success=True, path=path)

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------
    async def select_next_topic(
        self,
        path: LearningPath,
        overrides: Optional[ModelOverrides] = None,
    ) -> LearningTopic:
        return await self.resolver.select_next_topic(path, lambda: self._config("generate_topic", overrides))

    async def check_and_advance_topic(
        self,
        path_id: str,
        overrides: Optional[ModelOverrides] = None,
    ) -> Optional[LearningTopic]:
        """Point the path at a new topic when it has none or the current one is mastered.

        Returns the newly current topic, or ``None`` when nothing changed.
        """

        async with self.repository.path_lock(path_id):
            path = await self._require_path(path_id)
            current = path.current_topic
            if current is not None and not is_topic_mastered(
                path.timeline, current.id, self.settings.mastery_threshold
            ):
                return None

            topic = await self.select_next_topic(path, overrides)
            await self.repository.set_current_topic(path_id, topic.id)
            _log_json(
                "learning_path.topic_advanced",
                {
                    "path_id": path_id,
                    "from_topic_id": current.id if current else None,
                    "to_topic_id": topic.id,
                },
            )
            return topic

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    async def generate_next_activity(
        self,
        path: LearningPath,
        overrides: Optional[ModelOverrides] = None,
    ) -> Activity:
        topic = path.current_topic
        if topic is None:
            raise TopicNotFoundError(path.id, path.current_topic_id)

        recent_types = recent_activity_types(path.timeline, self.settings.recent_types_count)
        context = build_generation_context(path, topic, recent_types)
        activity_type = select_activity_type(context, recent_types)
        content = await self.generator.generate_activity(
            context, activity_type, self._config("generate_activity", overrides)
        )
        if content.type != activity_type.value:
            raise ContentValidationError(
                f"Generator returned '{content.type}' content for a '{activity_type.value}' request"
            )

        return Activity(
            id=f"activity_{uuid4().hex}",
            topic_id=topic.id,
            type=activity_type,
            content=content,
            difficulty=path.current_difficulty,
        )

    async def get_next_activity(
        self,
        path_id: str,
        overrides: Optional[ModelOverrides] = None,
    ) -> Activity:
        path = await self._require_path(path_id)
        if not path.is_active:
            raise InactiveLearningPathError(path_id)

        await self.check_and_advance_topic(path_id, overrides)
        path = await self._require_path(path_id)
        activity = await self.generate_next_activity(path, overrides)
        await self.repository.set_current_activity(path_id, activity)

        _log_json(
            "learning_path.activity_generated",
            {
                "path_id": path_id,
                "activity_id": activity.id,
                "topic_id": activity.topic_id,
                "activity_type": activity.type.value,
                "difficulty": activity.difficulty,
            },
        )
        return activity

    async def _record_completion(
        self,
        path: LearningPath,
        activity: Activity,
        reflection: Reflection,
    ) -> TimelineEntry:
        topic = path.topic(activity.topic_id)
        if topic is None:
            raise TopicNotFoundError(path.id, activity.topic_id)

        elo_before = path.overall_elo
        result = update_scores(
            path.overall_elo,
            path.skill_scores,
            topic.skill_cluster,
            activity.difficulty,
            reflection.completed,
            reflection.time_taken_seconds,
            expected_time_for(activity.type),
        )
        entry = build_timeline_entry(activity, topic, reflection, elo_before, result)

        # timeline first: it is the audit log every derived value is rebuilt from
        await self.repository.add_timeline_entry(path.id, entry, expected_version=path.version)
        await self.repository.update_elo_scores(path.id, result.new_overall_elo, result.new_skill_scores)

        outcomes = recent_outcomes([*path.timeline, entry], self.settings.recent_results_count)
        adjustment = self.difficulty_manager.assess(path.current_difficulty, outcomes, result.new_overall_elo)
        if adjustment.next != path.current_difficulty:
            await self.repository.update_difficulty(path.id, adjustment.next)

        _log_json(
            "learning_path.activity_completed",
            {
                "path_id": path.id,
                "entry_id": entry.id,
                "topic_id": topic.id,
                "activity_type": activity.type.value,
                "success": entry.success,
                "elo_before": entry.elo_before,
                "elo_change": entry.elo_change,
                "elo_after": entry.elo_after,
                "difficulty_previous": adjustment.previous,
                "difficulty_next": adjustment.next,
                "difficulty_reason": adjustment.reason,
            },
        )
        return entry

    async def process_activity_completion(
        self,
        path_id: str,
        activity: Activity,
        reflection: Reflection,
    ) -> TimelineEntry:
        async with self.repository.path_lock(path_id):
            path = await self._require_path(path_id)
            return await self._record_completion(path, activity, reflection)

    async def submit_reflection(
        self,
        path_id: str,
        activity_id: str,
        reflection: Reflection,
    ) -> TimelineEntry:
        """Complete the path's outstanding activity and clear it."""

        async with self.repository.path_lock(path_id):
            path = await self._require_path(path_id)
            activity = path.current_activity
            if activity is None or activity.id != activity_id:
                raise ActivityNotFoundError(path_id, activity_id)
            entry = await self._record_completion(path, activity, reflection)
            await self.repository.clear_current_activity(path_id)
            return entry

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------
    async def deactivate_path(self, path_id: str) -> None:
        async with self.repository.path_lock(path_id):
            await self._require_path(path_id)
            await self.repository.deactivate(path_id)
        _log_json("learning_path.deactivated", {"path_id": path_id})

    async def list_paths(self, user_id: str) -> List[LearningPath]:
        return await self.repository.list_for_user(user_id)

    async def get_insights(self, path_id: str) -> LearningInsights:
        path = await self._require_path(path_id)
        return generate_insights(path)


def build_orchestrator(settings: Optional[LearningPathSettings] = None) -> LearningPathOrchestrator:
    """Wire the orchestrator against the SQLite store and the LLM generator."""

    validate_environment()
    db.init()
    return LearningPathOrchestrator(
        db.LearningPathRepository(),
        LLMContentGenerator(),
        settings or LearningPathSettings.from_env(),
    )
