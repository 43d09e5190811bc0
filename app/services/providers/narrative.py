"""Narrative enrichment via an LLM.

Enrichment is optional: callers treat any failure here as non-fatal.
"""

import json
from dataclasses import dataclass, field, replace
from typing import Any

import openai
import structlog
from openai import AsyncOpenAI

from app.services.engine.errors import ExternalProviderError
from app.services.providers.retry import RetryPolicy

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a sports betting analyst. Given a model's pick and the factors "
    "behind it, respond with JSON: {\"predictions\": [short strings], "
    "\"narrative\": \"two or three sentences\"}. Do not change the pick."
)


@dataclass(frozen=True)
class Narrative:
    """Supplementary narrative for a pick."""

    predictions: list[str] = field(default_factory=list)
    narrative: str = ""


@dataclass(frozen=True)
class NarrativeRequest:
    """Prompt input. ``detailed`` includes the per-factor breakdown."""

    context: dict[str, Any]
    detailed: bool = True

    def user_prompt(self) -> str:
        context = self.context
        if not self.detailed:
            context = {k: v for k, v in context.items() if k != "factors"}
        return json.dumps(context, default=str, sort_keys=True)


def shorten(request: NarrativeRequest) -> NarrativeRequest:
    """Fallback: drop the factor breakdown to cut prompt size."""
    return replace(request, detailed=False)


class NarrativeClient:
    """Generate pick narratives with the OpenAI chat API."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "gpt-4o-mini",
        max_tokens: int = 600,
        timeout: float = 6.0,
        retry_policy: RetryPolicy | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.retry_policy = retry_policy or RetryPolicy()
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """Get or create OpenAI client."""
        if self._client is None:
            if not self._api_key:
                raise ExternalProviderError("OPENAI_API_KEY not configured", retryable=False)
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def _complete(self, request: NarrativeRequest) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": request.user_prompt()},
                ],
                max_tokens=self.max_tokens,
                temperature=0.4,
                response_format={"type": "json_object"},
            )
        except openai.RateLimitError as e:
            raise ExternalProviderError(f"Narrative rate limited: {e}") from e
        except openai.APIStatusError as e:
            raise ExternalProviderError(
                f"Narrative provider returned {e.status_code}",
                retryable=e.status_code >= 500,
            ) from e
        except openai.APIError as e:
            raise ExternalProviderError(f"Narrative request failed: {e}") from e

        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError, TypeError) as e:
            raise ExternalProviderError(
                f"Malformed narrative response: {e}", retryable=False
            ) from e

    async def generate_narrative(self, context: dict[str, Any]) -> Narrative:
        """Generate predictions and narrative for a pick context."""
        content = await self.retry_policy.run(
            "generate_narrative",
            self._complete,
            NarrativeRequest(context=context),
            fallback=shorten,
        )
        try:
            data = json.loads(content)
        except ValueError as e:
            raise ExternalProviderError("Narrative was not valid JSON", retryable=False) from e
        if not isinstance(data, dict):
            raise ExternalProviderError("Narrative JSON was not an object", retryable=False)

        predictions = data.get("predictions") or []
        if not isinstance(predictions, list):
            predictions = [str(predictions)]
        narrative = Narrative(
            predictions=[str(p) for p in predictions],
            narrative=str(data.get("narrative") or ""),
        )
        logger.info("narrative_generated", model=self.model, predictions=len(narrative.predictions))
        return narrative
