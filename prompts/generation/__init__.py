"""Loading of the JSON prompt templates used for content generation."""
from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Any, Dict, Iterable, Mapping

_PROMPT_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class GenerationPrompt:
    """One task prompt: a system message plus a ``$placeholder`` user template."""

    task: str
    prompt_version: str
    system_template: str
    user_template: str
    json_instructions: str

    def render(self, **values: Any) -> tuple[str, str]:
        """Return ``(system, user)`` messages with ``values`` substituted."""

        system = f"{self.system_template}\n\n{self.json_instructions}".strip()
        user = Template(self.user_template).substitute({k: str(v) for k, v in values.items()})
        return system, user


def _load_prompt(path: Path) -> GenerationPrompt:
    payload = json.loads(path.read_text(encoding="utf-8"))
    required = {"task", "prompt_version", "system_template", "user_template", "json_instructions"}
    missing = sorted(required - payload.keys())
    if missing:
        raise ValueError(f"Prompt file {path.name} missing keys: {', '.join(missing)}")
    return GenerationPrompt(
        task=str(payload["task"]),
        prompt_version=str(payload["prompt_version"]),
        system_template=str(payload["system_template"]),
        user_template=str(payload["user_template"]),
        json_instructions=str(payload["json_instructions"]),
    )


def _iter_prompt_files(directory: Path) -> Iterable[Path]:
    for path in sorted(directory.glob("*.json")):
        if path.is_file():
            yield path


@lru_cache(maxsize=4)
def load_prompts(directory: Path | None = None) -> Mapping[str, GenerationPrompt]:
    base_dir = Path(directory) if directory else _PROMPT_DIR
    prompts: Dict[str, GenerationPrompt] = {}
    for file_path in _iter_prompt_files(base_dir):
        prompt = _load_prompt(file_path)
        if prompt.task in prompts:
            raise ValueError(f"Duplicate generation prompt for task: {prompt.task}")
        prompts[prompt.task] = prompt
    if not prompts:
        raise RuntimeError(f"No generation prompt definitions found in {base_dir}")
    return prompts


def get_prompt(task: str) -> GenerationPrompt:
    prompts = load_prompts()
    if task not in prompts:
        raise KeyError(f"Unknown generation prompt '{task}'. Available: {', '.join(sorted(prompts))}")
    return prompts[task]


__all__ = ["GenerationPrompt", "load_prompts", "get_prompt"]
