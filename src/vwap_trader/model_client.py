"""Anthropic AsyncClient wrapper for the primary and secondary decision models."""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog
from anthropic import AsyncAnthropic
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from vwap_trader.config import Settings
from vwap_trader.errors import ModelCallError

logger = structlog.get_logger()


class DecisionModel(Protocol):
    async def propose(self, system_prompt: str, user_prompt: str) -> str: ...


class ModelClient:
    def __init__(
        self,
        settings: Settings,
        model: str,
        max_tokens: int,
        attempts: int = 1,
        temperature: float = 0.2,
    ) -> None:
        self.settings = settings
        self.model = model
        self.max_tokens = max_tokens
        self.attempts = max(1, attempts)
        self.temperature = temperature

    @classmethod
    def primary(cls, settings: Settings) -> ModelClient:
        """Decision model. Retries transient failures."""
        return cls(
            settings,
            model=settings.PRIMARY_MODEL,
            max_tokens=settings.PRIMARY_MAX_TOKENS,
            attempts=settings.PRIMARY_MODEL_ATTEMPTS,
        )

    @classmethod
    def secondary(cls, settings: Settings) -> ModelClient:
        """Confirmation model. One attempt: a failure is a rejection."""
        return cls(
            settings,
            model=settings.SECONDARY_MODEL,
            max_tokens=settings.SECONDARY_MAX_TOKENS,
            attempts=1,
            temperature=0.0,
        )

    async def propose(self, system_prompt: str, user_prompt: str) -> str:
        """Return the reply text. Raises ModelCallError on any failure."""
        try:
            text = await self._call(system_prompt, user_prompt)
        except asyncio.TimeoutError as e:
            logger.warning("model_timeout", model=self.model, timeout=self.settings.MAX_MODEL_TIMEOUT_SECONDS)
            raise ModelCallError(f"{self.model} timed out after {self.settings.MAX_MODEL_TIMEOUT_SECONDS}s") from e
        except Exception as e:
            logger.warning("model_error", model=self.model, error=str(e))
            raise ModelCallError(f"{self.model} call failed: {e}") from e

        if not text.strip():
            logger.warning("model_empty_response", model=self.model)
            raise ModelCallError(f"{self.model} returned an empty response")
        return text

    async def _call(self, system: str, user: str) -> str:
        """Low-level Anthropic API call with timeout and retry."""
        client = AsyncAnthropic(api_key=self.settings.ANTHROPIC_API_KEY)
        kwargs = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": user}],
        }
        if system:
            kwargs["system"] = system

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.settings.MODEL_RETRY_BACKOFF_SECONDS, max=10),
            reraise=True,
        ):
            with attempt:
                response = await asyncio.wait_for(
                    client.messages.create(**kwargs),
                    timeout=self.settings.MAX_MODEL_TIMEOUT_SECONDS,
                )
                text = response.content[0].text if response.content else ""
                logger.info(
                    "model_call",
                    model=self.model,
                    chars=len(text),
                    attempt=attempt.retry_state.attempt_number,
                )
                return text
        return ""
