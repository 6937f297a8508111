"""Prerequisite-aware topic selection over a learning path's topic graph."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, List, Sequence
from uuid import uuid4

from engines.content_generator import ContentValidationError
from engines.timeline import completed_topic_ids
from schemas import LearningPath, LearningTopic, SkillCluster
from settings import ModelTierConfig

if TYPE_CHECKING:  # pragma: no cover
    from db import LearningPathRepository
    from engines.content_generator import ContentGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TopicGenerationContext:
    """What the generator is told when the graph has nothing left to offer."""

    goal: str
    skill_clusters: List[SkillCluster]
    overall_elo: float
    current_difficulty: int
    completed_topic_titles: List[str] = field(default_factory=list)


def available_topics(path: LearningPath) -> List[LearningTopic]:
    """Topics not yet completed whose prerequisites are all completed.

    A prerequisite id that names no topic is never completed, so the topic
    holding it stays locked.
    """

    completed = completed_topic_ids(path.timeline)
    return [
        topic
        for topic in path.topics
        if topic.id not in completed and all(req in completed for req in topic.prerequisites)
    ]


def rank_topics(topics: Sequence[LearningTopic], current_difficulty: int) -> List[LearningTopic]:
    # sorted() is stable: ties keep insertion order
    return sorted(topics, key=lambda topic: abs(topic.difficulty - current_difficulty))


def build_topic_context(path: LearningPath) -> TopicGenerationContext:
    completed = completed_topic_ids(path.timeline)
    return TopicGenerationContext(
        goal=path.goal,
        skill_clusters=list(path.skill_clusters),
        overall_elo=path.overall_elo,
        current_difficulty=path.current_difficulty,
        completed_topic_titles=[topic.title for topic in path.topics if topic.id in completed],
    )


def mint_topic_id(existing: Sequence[str] = ()) -> str:
    taken = set(existing)
    while True:
        candidate = f"topic_{uuid4().hex[:12]}"
        if candidate not in taken:
            return candidate


class TopicGraphResolver:
    """Pick the next topic, extending the graph through the generator if needed."""

    def __init__(self, repository: "LearningPathRepository", generator: "ContentGenerator") -> None:
        self.repository = repository
        self.generator = generator

    async def select_next_topic(
        self,
        path: LearningPath,
        generation_config: Callable[[], ModelTierConfig],
    ) -> LearningTopic:
        """Return the best available topic, or generate and persist a new one.

        ``generation_config`` is only invoked on the generation branch so a
        path with topics left never needs a configured model.
        """

        candidates = rank_topics(available_topics(path), path.current_difficulty)
        if candidates:
            topic = candidates[0]
            logger.debug("Selected existing topic %s for path %s", topic.id, path.id)
            return topic

        context = build_topic_context(path)
        generated = await self.generator.generate_topic(context, generation_config())
        if generated.skill_cluster not in path.skill_clusters:
            raise ContentValidationError(
                f"Generated topic cluster '{generated.skill_cluster.value}' is not part of path {path.id}"
            )

        existing_ids = [topic.id for topic in path.topics]
        topic_id = generated.id if generated.id and generated.id not in existing_ids else mint_topic_id(existing_ids)
        topic = generated.to_topic(topic_id)
        await self.repository.add_topic(path.id, topic)
        logger.info(
            "Generated topic %s (%s, difficulty %d) for path %s",
            topic.id,
            topic.skill_cluster.value,
            topic.difficulty,
            path.id,
        )
        return topic
