"""Runtime configuration: orchestrator knobs and per-task model tiers.

Model configuration is resolved per call through a short priority chain
(caller override -> system tier from the environment -> ``MODEL_ID``) and
handed to the content generator as a parameter.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, Literal, Mapping, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ModelTier = Literal["high", "medium", "low"]

DEFAULT_LLM_API_URL = "http://localhost:4891/v1/chat/completions"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096

TASK_TIERS: Dict[str, ModelTier] = {
    "parse_learning_goal": "medium",
    "generate_topic": "high",
    "generate_activity": "high",
}


class ModelConfigurationError(RuntimeError):
    """Raised when no model is configured for the tier a task needs."""


def _safe_int(env_name: str, default: int, env: Optional[Mapping[str, str]] = None) -> int:
    raw = (env if env is not None else os.environ).get(env_name, "")
    try:
        return int(raw) if raw else default
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s: %r; using %s", env_name, raw, default)
        return default


def _safe_float(env_name: str, default: float, env: Optional[Mapping[str, str]] = None) -> float:
    raw = (env if env is not None else os.environ).get(env_name, "")
    try:
        return float(raw) if raw else default
    except (TypeError, ValueError):
        logger.warning("Invalid float for %s: %r; using %s", env_name, raw, default)
        return default


@dataclass(frozen=True)
class LearningPathSettings:
    min_goal_length: int = 10
    mastery_threshold: int = 3
    recent_results_count: int = 10
    recent_types_count: int = 5

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "LearningPathSettings":
        defaults = cls()
        return cls(
            min_goal_length=max(1, _safe_int("LEARNING_MIN_GOAL_LENGTH", defaults.min_goal_length, env)),
            mastery_threshold=max(1, _safe_int("LEARNING_MASTERY_THRESHOLD", defaults.mastery_threshold, env)),
            recent_results_count=max(1, _safe_int("LEARNING_RECENT_RESULTS", defaults.recent_results_count, env)),
            recent_types_count=max(1, _safe_int("LEARNING_RECENT_TYPES", defaults.recent_types_count, env)),
        )


class TierOverride(BaseModel):
    """Caller-supplied model choice for one tier (bring-your-own-key)."""

    model: str | None = None
    fallback: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)


class ModelOverrides(BaseModel):
    api_key: str | None = None
    tiers: Dict[ModelTier, TierOverride] = Field(default_factory=dict)


@dataclass(frozen=True)
class ModelTierConfig:
    tier: ModelTier
    model: str
    fallback_model: Optional[str] = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    api_url: str = DEFAULT_LLM_API_URL
    api_key: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 2
    retry_backoff: float = 0.5


def resolve_model_config(
    task: str,
    overrides: Optional[ModelOverrides] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ModelTierConfig:
    """Return the effective model configuration for ``task``."""

    source = env if env is not None else os.environ
    tier: ModelTier = TASK_TIERS.get(task, "high")
    prefix = f"LEARNING_MODEL_TIER_{tier.upper()}"

    api_url = source.get("LLM_API_URL") or DEFAULT_LLM_API_URL
    api_key = (overrides.api_key if overrides else None) or source.get("LLM_API_KEY") or None
    transport = {
        "api_url": api_url,
        "api_key": api_key,
        "timeout": _safe_float("LLM_TIMEOUT", 60.0, source),
        "max_retries": max(0, _safe_int("LLM_MAX_RETRIES", 2, source)),
        "retry_backoff": max(0.0, _safe_float("LLM_RETRY_BACKOFF", 0.5, source)),
    }

    override = overrides.tiers.get(tier) if overrides else None
    if override is not None and override.model:
        return ModelTierConfig(
            tier=tier,
            model=override.model,
            fallback_model=override.fallback or None,
            temperature=override.temperature if override.temperature is not None else DEFAULT_TEMPERATURE,
            max_tokens=override.max_tokens or DEFAULT_MAX_TOKENS,
            **transport,
        )

    model = source.get(prefix) or source.get("MODEL_ID")
    if not model:
        raise ModelConfigurationError(
            f'Model tier "{tier}" is not configured. Set {prefix} or MODEL_ID.'
        )

    return ModelTierConfig(
        tier=tier,
        model=model,
        fallback_model=source.get(f"{prefix}_FALLBACK") or None,
        temperature=_safe_float(f"{prefix}_TEMPERATURE", DEFAULT_TEMPERATURE, source),
        max_tokens=_safe_int(f"{prefix}_MAX_TOKENS", DEFAULT_MAX_TOKENS, source),
        **transport,
    )
