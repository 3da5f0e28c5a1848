"""
Tests for the advice inference client.

These tests avoid real API calls by patching the underlying Agent.run, either
with a pre-constructed result carrying `.output` or with a coroutine that
raises the provider error under test. The SDK-level tests route the OpenAI
client through an httpx MockTransport that counts upstream requests.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest
from pydantic_ai.exceptions import ModelHTTPError

from bpcare.domain.models import (
    Gender,
    InferenceFailed,
    InferenceRateLimited,
    InferenceSuccess,
    UserProfile,
)
from bpcare.services.inference import (
    InferenceConfig,
    PydanticAIInferenceClient,
    build_advice_prompt,
    build_openai_model,
)


class _FakeAgentResult:
    """Minimal stand-in for pydantic-ai AgentRunResult with .output"""

    def __init__(self, output: Any) -> None:
        self.output = output


@pytest.fixture
def user() -> UserProfile:
    return UserProfile(
        user_id=1234,
        name="Ana",
        age=45,
        gender=Gender.FEMALE,
        language="Spanish",
        problem="type 2 diabetes",
    )


@pytest.fixture
def client() -> PydanticAIInferenceClient:
    return PydanticAIInferenceClient(InferenceConfig(timeout_seconds=0.05))


def _patch_run(client: PydanticAIInferenceClient, behaviour: Any) -> list[str]:
    prompts: list[str] = []

    async def fake_run(*args, **kwargs):
        prompts.append(kwargs.get("user_prompt", args[0] if args else ""))
        if isinstance(behaviour, Exception):
            raise behaviour
        if callable(behaviour):
            return await behaviour()
        return _FakeAgentResult(behaviour)

    client.agent.run = fake_run  # type: ignore[assignment]
    return prompts


class TestBuildAdvicePrompt:
    def test_includes_patient_context(self, user: UserProfile) -> None:
        prompt = build_advice_prompt(user, 180, 110)

        assert "Age: 45" in prompt
        assert "Gender: Female" in prompt
        assert "Known health problems: type 2 diabetes" in prompt
        assert "Blood pressure reading: 180/110 mmHg" in prompt
        assert "Respond in Spanish." in prompt

    def test_includes_category(self, user: UserProfile) -> None:
        assert "Category: Crisis" in build_advice_prompt(user, 190, 100)
        assert "Category: Normal" in build_advice_prompt(user, 110, 70)

    def test_blank_problem_reads_as_none(self, user: UserProfile) -> None:
        blank = user.model_copy(update={"problem": "   "})

        assert "Known health problems: none" in build_advice_prompt(blank, 120, 80)


@pytest.mark.asyncio
async def test_success_returns_stripped_text(client: PydanticAIInferenceClient) -> None:
    prompts = _patch_run(client, "  Your reading is high. Please rest and re-measure.\n")

    outcome = await client.complete("prompt text")

    assert outcome == InferenceSuccess(text="Your reading is high. Please rest and re-measure.")
    assert prompts == ["prompt text"]


@pytest.mark.asyncio
async def test_http_429_is_rate_limited(client: PydanticAIInferenceClient) -> None:
    _patch_run(client, ModelHTTPError(status_code=429, model_name="gpt-4o-mini"))

    outcome = await client.complete("prompt")

    assert isinstance(outcome, InferenceRateLimited)


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [400, 500, 503])
async def test_other_http_errors_fail(
    client: PydanticAIInferenceClient, status_code: int
) -> None:
    _patch_run(client, ModelHTTPError(status_code=status_code, model_name="gpt-4o-mini"))

    outcome = await client.complete("prompt")

    assert isinstance(outcome, InferenceFailed)
    assert outcome.error_type == "ModelHTTPError"


@pytest.mark.asyncio
async def test_timeout_fails(client: PydanticAIInferenceClient) -> None:
    async def slow() -> _FakeAgentResult:
        await asyncio.sleep(1.0)
        return _FakeAgentResult("too late")

    _patch_run(client, slow)

    outcome = await client.complete("prompt")

    assert isinstance(outcome, InferenceFailed)
    assert outcome.error_type == "TimeoutError"


@pytest.mark.asyncio
async def test_network_error_fails(client: PydanticAIInferenceClient) -> None:
    _patch_run(client, ConnectionError("connection reset by peer"))

    outcome = await client.complete("prompt")

    assert isinstance(outcome, InferenceFailed)
    assert outcome.error_type == "ConnectionError"


@pytest.mark.asyncio
@pytest.mark.parametrize("output", ["", "   \n", None])
async def test_empty_output_fails(client: PydanticAIInferenceClient, output: Any) -> None:
    _patch_run(client, output)

    outcome = await client.complete("prompt")

    assert isinstance(outcome, InferenceFailed)
    assert outcome.error_type == "EmptyOutput"


def test_agent_is_built_without_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    client = PydanticAIInferenceClient(InferenceConfig(model_name="openai:gpt-4o-mini"))

    assert client.agent is not None
    assert client.config.max_tokens == 400


class FakeOpenAIEndpoint:
    """Answers every request with a fixed status, counting what reaches it."""

    def __init__(self, status_code: int, body: dict[str, Any]) -> None:
        self.status_code = status_code
        self.body = body
        self.paths: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        return httpx.Response(self.status_code, json=self.body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def _endpoint_client(endpoint: FakeOpenAIEndpoint) -> PydanticAIInferenceClient:
    config = InferenceConfig(
        model_name="openai:gpt-4o-mini",
        api_key="sk-test",
        base_url="https://llm.test/v1",
        timeout_seconds=5.0,
    )
    return PydanticAIInferenceClient(config, http_client=endpoint.client())


@pytest.mark.asyncio
async def test_throttled_endpoint_is_called_once_per_complete() -> None:
    endpoint = FakeOpenAIEndpoint(
        429, {"error": {"message": "Rate limit reached", "type": "requests"}}
    )
    client = _endpoint_client(endpoint)

    outcome = await client.complete("hi")

    assert isinstance(outcome, InferenceRateLimited)
    assert endpoint.paths == ["/v1/chat/completions"]


@pytest.mark.asyncio
async def test_server_error_is_not_retried_by_the_sdk() -> None:
    endpoint = FakeOpenAIEndpoint(500, {"error": {"message": "boom", "type": "server_error"}})
    client = _endpoint_client(endpoint)

    outcome = await client.complete("hi")

    assert isinstance(outcome, InferenceFailed)
    assert len(endpoint.paths) == 1


@pytest.mark.asyncio
async def test_chat_completion_text_is_returned() -> None:
    endpoint = FakeOpenAIEndpoint(
        200,
        {
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 1_700_000_000,
            "model": "gpt-4o-mini",
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": "Rest and re-measure."},
                    "finish_reason": "stop",
                }
            ],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        },
    )
    client = _endpoint_client(endpoint)

    outcome = await client.complete("hi")

    assert outcome == InferenceSuccess(text="Rest and re-measure.")
    assert len(endpoint.paths) == 1


def test_sdk_retries_disabled_by_default() -> None:
    model = build_openai_model(InferenceConfig(api_key="sk-test"))

    assert model.model_name == "gpt-4o-mini"
    assert model.client.max_retries == 0


def test_unsupported_provider_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported"):
        build_openai_model(InferenceConfig(model_name="anthropic:claude-x", api_key="sk-test"))
