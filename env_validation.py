"""Environment variable validation and management."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)


class EnvironmentConfigError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


def validate_environment() -> None:
    """Validate the environment the orchestrator reads at call time.

    Raises EnvironmentConfigError if validation fails.
    """
    optional_vars: Dict[str, str] = {
        "LLM_API_URL": "OpenAI-compatible chat completions endpoint",
        "LLM_API_KEY": "API key for the completions endpoint",
        "MODEL_ID": "Default model used when a tier is not configured",
    }

    for var in ("LLM_API_URL",):
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentConfigError(f"Invalid URL format for {var}: {value}")

    for var in (
        "LEARNING_MIN_GOAL_LENGTH",
        "LEARNING_MASTERY_THRESHOLD",
        "LEARNING_RECENT_RESULTS",
        "LEARNING_RECENT_TYPES",
    ):
        value = os.getenv(var)
        if value and not value.strip().isdigit():
            raise EnvironmentConfigError(f"{var} must be a positive integer, got {value!r}")

    tier_vars = [f"LEARNING_MODEL_TIER_{tier}" for tier in ("HIGH", "MEDIUM", "LOW")]
    if not os.getenv("MODEL_ID") and not all(os.getenv(var) for var in tier_vars):
        logger.warning(
            "No MODEL_ID and not every tier is configured (%s); callers must supply overrides",
            ", ".join(tier_vars),
        )

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}
