"""
LLM client abstraction over OpenAI, Anthropic and Google (Gemini).

Every provider is called with a system prompt and a single user message and
returns plain text; structure is enforced afterwards by llm.response_parser.
SDK exceptions are normalized into the analysis error taxonomy so the retry
loop and the HTTP layer never need to know which SDK raised them.

Timeouts (seconds) come from LLM_TIMEOUT_SECONDS, overridable per provider
with OPENAI_TIMEOUT_SECONDS, ANTHROPIC_TIMEOUT_SECONDS, GOOGLE_TIMEOUT_SECONDS.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from analysis.errors import (
    AuthError,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
    Timeout,
)

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))


class LLMProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


_DEFAULT_MODELS = {
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.ANTHROPIC: "claude-sonnet-4-6",
    LLMProvider.GOOGLE: "gemini-2.5-flash",
}


def timeout_for(provider: LLMProvider | str) -> float:
    """Per-call timeout for ``provider`` in seconds."""
    name = LLMProvider(provider).value.upper()
    override = os.getenv(f"{name}_TIMEOUT_SECONDS")
    if override:
        return float(override)
    return _DEFAULT_TIMEOUT


@dataclass
class LLMResponse:
    """Raw response from an LLM API call."""

    provider: LLMProvider
    text: str
    model: str
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMClient:
    """Unified LLM client. Instantiated per-run with the stage settings."""

    def __init__(
        self,
        provider: LLMProvider | str,
        api_key: str,
        model: Optional[str] = None,
    ):
        self.provider = LLMProvider(provider)
        self.api_key = api_key
        self.model = model or _DEFAULT_MODELS[self.provider]

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 4000,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Send a prompt and return the provider's text answer."""
        try:
            if self.provider == LLMProvider.ANTHROPIC:
                return await self._call_anthropic(
                    system_prompt, user_prompt, max_tokens, temperature,
                )
            elif self.provider == LLMProvider.GOOGLE:
                return await self._call_google(
                    system_prompt, user_prompt, max_tokens, temperature,
                )
            else:
                return await self._call_openai(
                    system_prompt, user_prompt, max_tokens, temperature,
                )
        except ProviderError:
            raise
        except Exception as e:
            raise self._normalize_error(e) from e

    async def _call_openai(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        import openai

        client = openai.AsyncOpenAI(
            api_key=self.api_key,
            timeout=timeout_for(self.provider),
            max_retries=0,
        )
        response = await client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )

        choice = response.choices[0]
        usage = response.usage
        return LLMResponse(
            provider=LLMProvider.OPENAI,
            text=choice.message.content or "",
            model=response.model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )

    async def _call_anthropic(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        import anthropic

        client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            timeout=timeout_for(self.provider),
            max_retries=0,
        )
        response = await client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            # Anthropic caps temperature at 1.0
            temperature=min(temperature, 1.0),
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )

        raw_text = ""
        for block in response.content:
            if block.type == "text":
                raw_text += block.text

        return LLMResponse(
            provider=LLMProvider.ANTHROPIC,
            text=raw_text,
            model=response.model,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
        )

    async def _call_google(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        from google import genai
        from google.genai import types

        client = genai.Client(api_key=self.api_key)
        response = await client.aio.models.generate_content(
            model=self.model,
            contents=user_prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=temperature,
                max_output_tokens=max_tokens,
            ),
        )

        usage = response.usage_metadata
        return LLMResponse(
            provider=LLMProvider.GOOGLE,
            text=response.text or "",
            model=self.model,
            prompt_tokens=(usage.prompt_token_count or 0) if usage else 0,
            completion_tokens=(usage.candidates_token_count or 0) if usage else 0,
        )

    def _normalize_error(self, exc: Exception) -> ProviderError:
        """Map an SDK exception onto the provider error taxonomy."""
        provider = self.provider.value
        message = f"{provider}: {type(exc).__name__}: {exc}"

        status = getattr(exc, "status_code", None)
        if status is None:
            status = getattr(exc, "code", None)
        name = type(exc).__name__

        if name in ("APITimeoutError", "TimeoutException", "ReadTimeout") or isinstance(
            exc, TimeoutError,
        ):
            return Timeout(message, provider=provider)
        if name == "RateLimitError" or status == 429:
            return RateLimited(message, provider=provider)
        if name in ("AuthenticationError", "PermissionDeniedError") or status in (401, 403):
            return AuthError(message, provider=provider)
        if name in ("APIConnectionError", "InternalServerError", "ServerError") or (
            isinstance(status, int) and status >= 500
        ):
            return ProviderUnavailable(message, provider=provider)

        logger.warning("Unclassified %s error: %s", provider, name)
        return ProviderError(message, provider=provider)


async def check_provider(
    provider: LLMProvider | str,
    api_key: str,
    model: Optional[str] = None,
) -> tuple[bool, str, int, Optional[str]]:
    """Send a one-line prompt. Returns (success, model, elapsed_ms, error)."""
    client = LLMClient(provider=provider, api_key=api_key, model=model)
    start = time.monotonic()
    try:
        response = await client.complete(
            system_prompt="You are a connectivity check. Reply with the single word OK.",
            user_prompt="Reply with OK.",
            max_tokens=100,
            temperature=0.0,
        )
    except ProviderError as e:
        elapsed = int((time.monotonic() - start) * 1000)
        logger.info("Provider test failed for %s (%s)", client.provider.value, e.category)
        return False, client.model, elapsed, e.message
    elapsed = int((time.monotonic() - start) * 1000)
    return True, response.model or client.model, elapsed, None
