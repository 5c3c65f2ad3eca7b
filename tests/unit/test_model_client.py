"""Unit tests for ModelClient — Anthropic AsyncClient wrapper with retries."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from vwap_trader.errors import ModelCallError
from vwap_trader.model_client import ModelClient


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _response(text: str) -> MagicMock:
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    return response


@pytest.fixture
def primary(settings):
    return ModelClient.primary(settings)


@pytest.fixture
def secondary(settings):
    return ModelClient.secondary(settings)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestFactories:
    def test_primary_uses_settings(self, primary, settings):
        assert primary.model == settings.PRIMARY_MODEL
        assert primary.max_tokens == settings.PRIMARY_MAX_TOKENS
        assert primary.attempts == settings.PRIMARY_MODEL_ATTEMPTS

    def test_secondary_single_attempt(self, secondary, settings):
        assert secondary.model == settings.SECONDARY_MODEL
        assert secondary.attempts == 1


# ---------------------------------------------------------------------------
# propose() with a mocked AsyncAnthropic
# ---------------------------------------------------------------------------


class TestPropose:
    async def test_returns_text(self, primary):
        with patch("vwap_trader.model_client.AsyncAnthropic") as MockClient:
            mock_api = AsyncMock()
            mock_api.messages.create = AsyncMock(return_value=_response("reasoning [ ]"))
            MockClient.return_value = mock_api

            result = await primary.propose("system prompt", "user prompt")

        assert result == "reasoning [ ]"
        kwargs = mock_api.messages.create.call_args.kwargs
        assert kwargs["system"] == "system prompt"
        assert kwargs["messages"] == [{"role": "user", "content": "user prompt"}]

    async def test_empty_system_prompt_omitted(self, secondary):
        with patch("vwap_trader.model_client.AsyncAnthropic") as MockClient:
            mock_api = AsyncMock()
            mock_api.messages.create = AsyncMock(return_value=_response("APPROVE"))
            MockClient.return_value = mock_api

            await secondary.propose("", "validate this")

        assert "system" not in mock_api.messages.create.call_args.kwargs

    async def test_retries_then_succeeds(self, primary):
        """Primary retries transient errors up to PRIMARY_MODEL_ATTEMPTS."""
        with patch("vwap_trader.model_client.AsyncAnthropic") as MockClient:
            mock_api = AsyncMock()
            mock_api.messages.create = AsyncMock(
                side_effect=[Exception("overloaded"), Exception("overloaded"), _response("ok [ ]")]
            )
            MockClient.return_value = mock_api

            result = await primary.propose("s", "u")

        assert result == "ok [ ]"
        assert mock_api.messages.create.await_count == 3

    async def test_exhausted_retries_raise(self, primary):
        with patch("vwap_trader.model_client.AsyncAnthropic") as MockClient:
            mock_api = AsyncMock()
            mock_api.messages.create = AsyncMock(side_effect=Exception("API Error"))
            MockClient.return_value = mock_api

            with pytest.raises(ModelCallError, match="API Error"):
                await primary.propose("s", "u")

        assert mock_api.messages.create.await_count == 3

    async def test_secondary_does_not_retry(self, secondary):
        with patch("vwap_trader.model_client.AsyncAnthropic") as MockClient:
            mock_api = AsyncMock()
            mock_api.messages.create = AsyncMock(side_effect=Exception("API Error"))
            MockClient.return_value = mock_api

            with pytest.raises(ModelCallError):
                await secondary.propose("", "u")

        assert mock_api.messages.create.await_count == 1

    async def test_timeout_raises_model_call_error(self, secondary):
        with patch("vwap_trader.model_client.AsyncAnthropic") as MockClient:
            mock_api = AsyncMock()
            mock_api.messages.create = AsyncMock(side_effect=asyncio.TimeoutError())
            MockClient.return_value = mock_api

            with pytest.raises(ModelCallError, match="timed out"):
                await secondary.propose("", "u")

    async def test_empty_response_raises(self, secondary):
        with patch("vwap_trader.model_client.AsyncAnthropic") as MockClient:
            mock_api = AsyncMock()
            mock_api.messages.create = AsyncMock(return_value=_response("   "))
            MockClient.return_value = mock_api

            with pytest.raises(ModelCallError, match="empty"):
                await secondary.propose("", "u")
