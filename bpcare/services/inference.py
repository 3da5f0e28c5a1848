"""
Inference client for blood pressure advice using Pydantic AI.

The client never raises for provider failures. Every call resolves to one of
the outcome variants the retry controller switches on:

- ``InferenceSuccess``: advice text was produced
- ``InferenceRateLimited``: the provider answered HTTP 429
- ``InferenceFailed``: timeout, network error, empty output, anything else
"""

import asyncio
import os
from datetime import UTC, datetime
from typing import Any, Protocol, cast

import httpx
import structlog
from openai import AsyncOpenAI
from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from bpcare.domain.models import (
    InferenceFailed,
    InferenceOutcome,
    InferenceRateLimited,
    InferenceSuccess,
    UserProfile,
    classify_bp,
)

logger = structlog.get_logger(__name__)

RATE_LIMIT_STATUS = 429


class InferenceClient(Protocol):
    """Anything that can turn a prompt into an inference outcome."""

    async def complete(self, prompt: str) -> InferenceOutcome: ...


class InferenceConfig(BaseModel):
    """Model selection and call limits for the advice agent."""

    model_name: str = "openai:gpt-4o-mini"
    api_key: str | None = Field(default=None, description="Falls back to OPENAI_API_KEY")
    base_url: str | None = Field(default=None, description="Falls back to OPENAI_BASE_URL")
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    max_tokens: int = Field(default=400, gt=0)
    timeout_seconds: float = Field(default=30.0, gt=0.0)


SYSTEM_PROMPT = """You are a careful health assistant helping people understand their
home blood pressure readings.

Key principles:
1. Be brief: at most five short sentences or bullet points
2. Explain what the reading means for this person, given their age and health notes
3. Give practical lifestyle suggestions where appropriate
4. If the reading is in the crisis range, tell the person to seek medical care immediately
5. Never diagnose and never suggest changing prescribed medication

Always answer in the language the user asks for."""


def build_advice_prompt(user: UserProfile, systolic: int, diastolic: int) -> str:
    """Build the user prompt from patient context and the two pressure values."""
    category = classify_bp(systolic, diastolic)
    problem = user.problem.strip() or "none"

    return f"""Patient profile:
- Age: {user.age}
- Gender: {user.gender.value}
- Known health problems: {problem}

Blood pressure reading: {systolic}/{diastolic} mmHg
Systolic: {systolic} mmHg
Diastolic: {diastolic} mmHg
Category: {category.value}

Please give short, practical advice about this reading.
Respond in {user.language}."""


def build_openai_model(
    config: InferenceConfig, http_client: httpx.AsyncClient | None = None
) -> OpenAIChatModel:
    """
    Chat model whose SDK client never retries on its own.

    SDK retries are disabled: each ``complete()`` is exactly one upstream
    request under one limiter permit, and only the RetryController retries.
    """
    provider_name, _, model_name = config.model_name.rpartition(":")
    if provider_name not in ("", "openai"):
        raise ValueError(f"Unsupported advice model provider: {provider_name!r}")

    openai_client = AsyncOpenAI(
        api_key=config.api_key or os.getenv("OPENAI_API_KEY", ""),
        base_url=config.base_url,
        max_retries=0,
        timeout=config.timeout_seconds,
        http_client=http_client,
    )
    return OpenAIChatModel(model_name, provider=OpenAIProvider(openai_client=openai_client))


class PydanticAIInferenceClient:
    """Advice generation through a Pydantic AI agent with free-form text output."""

    def __init__(
        self,
        config: InferenceConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or InferenceConfig()
        self.logger = logger.bind(component="advice_inference_client")

        self.model = build_openai_model(self.config, http_client)
        self.agent = Agent(
            model=self.model,
            output_type=str,
            system_prompt=SYSTEM_PROMPT,
            model_settings={
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
            },
        )

    async def complete(self, prompt: str) -> InferenceOutcome:
        start_time = datetime.now(UTC)

        try:
            result = await asyncio.wait_for(
                self.agent.run(user_prompt=prompt),
                timeout=self.config.timeout_seconds,
            )
        except TimeoutError:
            self.logger.error("inference_timeout", timeout_seconds=self.config.timeout_seconds)
            return InferenceFailed(
                error=f"Inference timed out after {self.config.timeout_seconds}s",
                error_type="TimeoutError",
            )
        except ModelHTTPError as e:
            if e.status_code == RATE_LIMIT_STATUS:
                self.logger.warning("inference_provider_throttled", model=e.model_name)
                return InferenceRateLimited(detail=str(e))
            self.logger.error("inference_http_error", status_code=e.status_code, error=str(e))
            return InferenceFailed.from_exception(e)
        except Exception as e:
            self.logger.error("inference_failed", error=str(e))
            return InferenceFailed.from_exception(e)

        text = cast(str, cast(Any, result).output or "").strip()
        duration = (datetime.now(UTC) - start_time).total_seconds()

        if not text:
            self.logger.warning("inference_empty_output", duration_seconds=round(duration, 3))
            return InferenceFailed(error="Model returned empty advice", error_type="EmptyOutput")

        self.logger.info(
            "inference_completed", duration_seconds=round(duration, 3), characters=len(text)
        )
        return InferenceSuccess(text=text)
