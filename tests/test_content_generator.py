"""Tests for the httpx-backed content generator."""

from __future__ import annotations

import json
import types

import pytest

from conftest import SAMPLE_CONTENT
from engines import content_generator as generator_module
from engines.activity_policy import ActivityGenerationContext
from engines.content_generator import ContentGenerationError, ContentValidationError, LLMContentGenerator
from engines.topic_graph import TopicGenerationContext
from schemas import ActivityType, LearningTopic, SkillCluster
from settings import ModelTierConfig


@pytest.fixture
def llm_stub(monkeypatch):
    """Patch the httpx client with a controllable stub."""

    calls = []
    responses: list[tuple[int, dict]] = []

    class _StubHTTPStatusError(Exception):
        def __init__(self, message: str, *, request=None, response=None):
            super().__init__(message)
            self.request = request
            self.response = response

    class _StubTimeoutError(Exception):
        pass

    class _StubRequestError(Exception):
        pass

    class _StubResponse:
        def __init__(self, status_code: int, payload: dict):
            self.status_code = status_code
            self._payload = payload

        def raise_for_status(self):
            if self.status_code >= 400:
                raise _StubHTTPStatusError(f"HTTP {self.status_code}", response=self)

        def json(self):
            return self._payload

    class _StubAsyncClient:
        def __init__(self, *args, **kwargs):
            self.kwargs = kwargs

        async def post(self, url, json=None, headers=None):
            if not responses:
                raise AssertionError("LLM stub has no queued responses")
            calls.append({"url": url, "json": json, "headers": headers, "client_kwargs": self.kwargs})
            status_code, payload = responses.pop(0)
            return _StubResponse(status_code, payload)

        async def aclose(self):
            return None

    stub_module = types.SimpleNamespace(
        AsyncClient=_StubAsyncClient,
        HTTPStatusError=_StubHTTPStatusError,
        TimeoutException=_StubTimeoutError,
        RequestError=_StubRequestError,
    )
    monkeypatch.setattr(generator_module, "httpx", stub_module)
    return {"responses": responses, "calls": calls}


def completion(content) -> dict:
    if not isinstance(content, str):
        content = json.dumps(content)
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def config(**overrides) -> ModelTierConfig:
    values = {
        "tier": "high",
        "model": "primary-model",
        "api_url": "https://llm.invalid/v1/chat/completions",
        "api_key": "secret",
        "timeout": 5.0,
        "max_retries": 0,
        "retry_backoff": 0.0,
    }
    values.update(overrides)
    return ModelTierConfig(**values)


def activity_context() -> ActivityGenerationContext:
    topic = LearningTopic(
        id="t1", title="Hash maps", description="Buckets and collisions", skill_cluster=SkillCluster.DSA, difficulty=4
    )
    return ActivityGenerationContext(
        goal="Prepare for algorithm interviews",
        topic=topic,
        difficulty=4,
        skill_cluster=SkillCluster.DSA,
        previous_activity_types=[ActivityType.MCQ],
    )


@pytest.mark.anyio("asyncio")
async def test_parse_goal_posts_chat_completion(llm_stub):
    llm_stub["responses"].append(
        (
            200,
            completion(
                {
                    "skill_clusters": ["dsa", "databases"],
                    "suggested_difficulty": 4,
                    "initial_topic": {
                        "title": "Arrays",
                        "description": "Indexing and slicing",
                        "skill_cluster": "dsa",
                        "difficulty": 3,
                    },
                }
            ),
        )
    )

    parsed = await LLMContentGenerator(json_mode=True).parse_goal("Get hired as a backend engineer", config())

    assert parsed.skill_clusters == [SkillCluster.DSA, SkillCluster.DATABASES]
    assert parsed.initial_topic.id is None
    call = llm_stub["calls"][0]
    assert call["url"] == "https://llm.invalid/v1/chat/completions"
    assert call["headers"] == {"Authorization": "Bearer secret"}
    assert call["json"]["model"] == "primary-model"
    assert call["json"]["response_format"] == {"type": "json_object"}
    assert "Get hired as a backend engineer" in call["json"]["messages"][1]["content"]
    assert call["client_kwargs"]["timeout"] == 5.0


@pytest.mark.anyio("asyncio")
async def test_generate_topic_accepts_fenced_json(llm_stub):
    reply = "```json\n" + json.dumps(
        {"title": "Graphs", "description": "BFS and DFS", "skill_cluster": "dsa", "difficulty": 6}
    ) + "\n```"
    llm_stub["responses"].append((200, completion(reply)))
    context = TopicGenerationContext(
        goal="Prepare for algorithm interviews",
        skill_clusters=[SkillCluster.DSA],
        overall_elo=1040.0,
        current_difficulty=6,
        completed_topic_titles=["Arrays"],
    )

    topic = await LLMContentGenerator().generate_topic(context, config())

    assert topic.title == "Graphs"
    assert "Arrays" in llm_stub["calls"][0]["json"]["messages"][1]["content"]
    assert "response_format" not in llm_stub["calls"][0]["json"]


@pytest.mark.anyio("asyncio")
async def test_generate_activity_validates_requested_type(llm_stub):
    llm_stub["responses"].append((200, completion(SAMPLE_CONTENT[ActivityType.CODING_CHALLENGE])))

    content = await LLMContentGenerator().generate_activity(
        activity_context(), ActivityType.CODING_CHALLENGE, config()
    )

    assert content.type == "coding-challenge"
    prompt = llm_stub["calls"][0]["json"]["messages"][1]["content"]
    assert "problem_description" in prompt
    assert "starter_code (optional)" in prompt


@pytest.mark.anyio("asyncio")
async def test_schema_violation_raises_validation_error(llm_stub):
    bad = dict(SAMPLE_CONTENT[ActivityType.MCQ], options=["only", "three", "options"])
    llm_stub["responses"].append((200, completion(bad)))

    with pytest.raises(ContentValidationError):
        await LLMContentGenerator().generate_activity(activity_context(), ActivityType.MCQ, config())


@pytest.mark.anyio("asyncio")
async def test_retries_then_succeeds(llm_stub):
    llm_stub["responses"].extend(
        [
            (503, {"error": "busy"}),
            (200, {"choices": []}),
            (200, completion(SAMPLE_CONTENT[ActivityType.DEBUGGING_TASK])),
        ]
    )

    content = await LLMContentGenerator().generate_activity(
        activity_context(), ActivityType.DEBUGGING_TASK, config(max_retries=2)
    )

    assert content.type == "debugging-task"
    assert len(llm_stub["calls"]) == 3


@pytest.mark.anyio("asyncio")
async def test_fallback_model_used_after_primary_exhausted(llm_stub):
    llm_stub["responses"].extend(
        [
            (500, {"error": "down"}),
            (200, completion(SAMPLE_CONTENT[ActivityType.MCQ])),
        ]
    )

    await LLMContentGenerator().generate_activity(
        activity_context(), ActivityType.MCQ, config(fallback_model="backup-model")
    )

    assert [call["json"]["model"] for call in llm_stub["calls"]] == ["primary-model", "backup-model"]


@pytest.mark.anyio("asyncio")
async def test_exhausted_attempts_raise_generation_error(llm_stub):
    llm_stub["responses"].extend([(500, {}), (502, {})])

    with pytest.raises(ContentGenerationError) as excinfo:
        await LLMContentGenerator().generate_activity(
            activity_context(), ActivityType.MCQ, config(max_retries=1)
        )

    assert not isinstance(excinfo.value, ContentValidationError)
    assert len(llm_stub["calls"]) == 2
