"""
Tests for SupportAssistant.

The OpenAI client is replaced by an AsyncMock; no API calls are made.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from storefront.services.support_assistant import FALLBACK_ANSWER, SupportAssistant


def _client_returning(content: str | None) -> MagicMock:
    completion = MagicMock()
    completion.choices = [MagicMock(message=MagicMock(content=content))]
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion)
    return client


def _client_raising(exc: Exception) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=exc)
    return client


class TestAnswer:
    @pytest.mark.asyncio
    async def test_parses_structured_reply(self):
        reply = {
            "response": "Recarga el Dashboard para ver tu compra.",
            "nextSteps": ["Recarga la página", "Cierra sesión y vuelve a entrar"],
            "severity": "high",
            "category": "payment",
        }
        assistant = SupportAssistant(api_key="sk-test", client=_client_returning(json.dumps(reply)))

        answer = await assistant.answer("Pagué y no veo mi GPT", has_purchases=False)

        assert answer.response == reply["response"]
        assert answer.next_steps == reply["nextSteps"]
        assert answer.severity == "high"
        assert answer.category == "payment"

    @pytest.mark.asyncio
    async def test_prompt_carries_catalog_and_context(self):
        client = _client_returning(json.dumps({"response": "ok"}))
        assistant = SupportAssistant(api_key="sk-test", model="gpt-4o", client=client)

        await assistant.answer("¿Qué GPTs hay?", has_purchases=True)

        kwargs = client.chat.completions.create.call_args.kwargs
        system, question = kwargs["messages"]
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "Generador de Sermones" in system["content"]
        assert "tiene compras: True" in system["content"]
        assert question == {"role": "user", "content": "¿Qué GPTs hay?"}

    @pytest.mark.asyncio
    async def test_defaults_for_missing_fields(self):
        assistant = SupportAssistant(
            api_key="sk-test", client=_client_returning(json.dumps({"response": "Hola"}))
        )

        answer = await assistant.answer("hola")

        assert answer.severity == "medium"
        assert answer.category == "general"
        assert answer.next_steps == []


class TestFallback:
    @pytest.mark.asyncio
    async def test_not_configured(self):
        assert await SupportAssistant(api_key="").answer("hola") == FALLBACK_ANSWER

    @pytest.mark.asyncio
    async def test_api_error(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        assistant = SupportAssistant(
            api_key="sk-test", client=_client_raising(openai.APIConnectionError(request=request))
        )

        assert await assistant.answer("hola") == FALLBACK_ANSWER

    @pytest.mark.asyncio
    async def test_non_json_reply(self):
        assistant = SupportAssistant(api_key="sk-test", client=_client_returning("no es JSON"))
        assert await assistant.answer("hola") == FALLBACK_ANSWER

    @pytest.mark.asyncio
    async def test_reply_with_unknown_severity(self):
        reply = {"response": "x", "severity": "catastrophic"}
        assistant = SupportAssistant(api_key="sk-test", client=_client_returning(json.dumps(reply)))
        assert await assistant.answer("hola") == FALLBACK_ANSWER

    @pytest.mark.asyncio
    async def test_empty_reply(self):
        assistant = SupportAssistant(api_key="sk-test", client=_client_returning(None))
        assert await assistant.answer("hola") == FALLBACK_ANSWER
