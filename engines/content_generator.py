"""LLM-backed generation of goals, topics and activity content."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Type, TypeVar

import httpx
from pydantic import BaseModel

from env_validation import get_env_bool
from prompts.generation import get_prompt
from schemas import (
    ACTIVITY_CONTENT_MODELS,
    ActivityContent,
    ActivityType,
    GeneratedTopic,
    ParsedGoal,
    parse_json_safe,
)
from settings import ModelTierConfig

if TYPE_CHECKING:  # pragma: no cover
    from engines.activity_policy import ActivityGenerationContext
    from engines.topic_graph import TopicGenerationContext

logger = logging.getLogger(__name__)

_T = TypeVar("_T", bound=BaseModel)


class ContentGenerationError(RuntimeError):
    """Raised when the content-generation backend cannot produce a reply."""


class ContentValidationError(ContentGenerationError):
    """Raised when generated content violates its structural contract."""


class ContentGenerator(Protocol):
    async def parse_goal(self, goal: str, config: ModelTierConfig) -> ParsedGoal:
        ...

    async def generate_topic(self, context: "TopicGenerationContext", config: ModelTierConfig) -> GeneratedTopic:
        ...

    async def generate_activity(
        self,
        context: "ActivityGenerationContext",
        activity_type: ActivityType,
        config: ModelTierConfig,
    ) -> ActivityContent:
        ...


def schema_hint(model: Type[BaseModel]) -> str:
    lines: List[str] = []
    for name, info in model.model_fields.items():
        if name == "type":
            continue
        suffix = "" if info.is_required() else " (optional)"
        lines.append(f"- {name}{suffix}")
    return "\n".join(lines)


def validate_reply(text: str, model: Type[_T]) -> _T:
    try:
        return parse_json_safe(text, model)
    except (ValueError, TypeError) as exc:
        raise ContentValidationError(f"Reply does not match {model.__name__}: {exc}") from exc


class LLMContentGenerator:
    """Talks to an OpenAI-compatible chat completions endpoint."""

    def __init__(self, *, json_mode: Optional[bool] = None) -> None:
        self.json_mode = get_env_bool("LLM_JSON_MODE", False) if json_mode is None else json_mode

    async def parse_goal(self, goal: str, config: ModelTierConfig) -> ParsedGoal:
        system, user = get_prompt("parse_learning_goal").render(goal=goal)
        reply = await self._complete("parse_learning_goal", system, user, config)
        return validate_reply(reply, ParsedGoal)

    async def generate_topic(self, context: "TopicGenerationContext", config: ModelTierConfig) -> GeneratedTopic:
        system, user = get_prompt("generate_topic").render(
            goal=context.goal,
            skill_clusters=", ".join(cluster.value for cluster in context.skill_clusters),
            overall_elo=round(context.overall_elo),
            current_difficulty=context.current_difficulty,
            completed_topics=", ".join(context.completed_topic_titles) or "none yet",
        )
        reply = await self._complete("generate_topic", system, user, config)
        return validate_reply(reply, GeneratedTopic)

    async def generate_activity(
        self,
        context: "ActivityGenerationContext",
        activity_type: ActivityType,
        config: ModelTierConfig,
    ) -> ActivityContent:
        content_model = ACTIVITY_CONTENT_MODELS[activity_type]
        system, user = get_prompt("generate_activity").render(
            goal=context.goal,
            topic_title=context.topic.title,
            topic_description=context.topic.description,
            skill_cluster=context.skill_cluster.value,
            difficulty=context.difficulty,
            activity_type=activity_type.value,
            previous_types=", ".join(t.value for t in context.previous_activity_types) or "none",
            schema_hint=schema_hint(content_model),
        )
        reply = await self._complete("generate_activity", system, user, config)
        return validate_reply(reply, content_model)

    # ------------------------------------------------------------------
    async def _complete(self, task: str, system: str, user: str, config: ModelTierConfig) -> str:
        models = [config.model]
        if config.fallback_model and config.fallback_model != config.model:
            models.append(config.fallback_model)

        last_exception: Optional[ContentGenerationError] = None
        for model_id in models:
            try:
                return await self._complete_with_model(task, model_id, system, user, config)
            except ContentGenerationError as exc:
                last_exception = exc
                if model_id != models[-1]:
                    logger.warning("Model %s exhausted for %s; trying fallback %s", model_id, task, models[-1])
        assert last_exception is not None
        raise last_exception

    async def _complete_with_model(
        self,
        task: str,
        model_id: str,
        system: str,
        user: str,
        config: ModelTierConfig,
    ) -> str:
        headers: Dict[str, str] = {}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        payload: Dict[str, Any] = {
            "model": model_id,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
        }
        if self.json_mode:
            payload["response_format"] = {"type": "json_object"}

        last_exception: Optional[Exception] = None
        attempt_count = max(0, config.max_retries) + 1

        for attempt_index in range(attempt_count):
            attempt_number = attempt_index + 1
            start_time = perf_counter()
            client = httpx.AsyncClient(timeout=config.timeout)
            try:
                response = await client.post(config.api_url, json=payload, headers=headers or None)
                response.raise_for_status()
                data = response.json()
                content = data["choices"][0]["message"]["content"]
                if not isinstance(content, str) or not content.strip():
                    raise ValueError("completion has no message content")
                latency_ms = int((perf_counter() - start_time) * 1000)
                logger.info(
                    "%s completed in %d ms using model %s (attempt %d/%d)",
                    task,
                    latency_ms,
                    model_id,
                    attempt_number,
                    attempt_count,
                )
                return content
            except httpx.HTTPStatusError as exc:
                latency_ms = int((perf_counter() - start_time) * 1000)
                status = getattr(getattr(exc, "response", None), "status_code", "unknown")
                logger.warning(
                    "%s HTTP error %s for model %s (attempt %d/%d, %d ms): %s",
                    task,
                    status,
                    model_id,
                    attempt_number,
                    attempt_count,
                    latency_ms,
                    exc,
                )
                last_exception = exc
            except (httpx.TimeoutException, httpx.RequestError, ValueError, TypeError, KeyError, IndexError) as exc:
                latency_ms = int((perf_counter() - start_time) * 1000)
                logger.warning(
                    "%s request failed for model %s (attempt %d/%d, %d ms): %s",
                    task,
                    model_id,
                    attempt_number,
                    attempt_count,
                    latency_ms,
                    exc,
                )
                last_exception = exc
            finally:
                await client.aclose()

            if attempt_index < attempt_count - 1:
                await asyncio.sleep(config.retry_backoff * (2 ** attempt_index))

        raise ContentGenerationError(
            f"{task} failed after {attempt_count} attempts for model {model_id}."
        ) from last_exception
