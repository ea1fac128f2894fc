"""
Support Assistant - answers customer questions with an LLM.

Replies in Spanish and classifies each question by severity and category so
the support page can suggest next steps.
"""

import json
from typing import Literal

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError
from structlog import get_logger

from storefront.models.domain import SupportAnswer
from storefront.services.catalog import list_products

logger = get_logger(__name__)


class _AssistantReply(BaseModel):
    """Shape the model is asked to return."""

    response: str = Field(..., min_length=1)
    next_steps: list[str] = Field(default_factory=list, alias="nextSteps")
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    category: Literal["access", "payment", "technical", "account", "general"] = "general"


FALLBACK_ANSWER = SupportAnswer(
    response=(
        "Disculpa, estoy experimentando problemas técnicos temporales. Por favor intenta "
        "nuevamente en unos minutos o contacta directamente al equipo de soporte."
    ),
    next_steps=[
        "Intenta nuevamente en 2-3 minutos",
        "Si persiste, usa el formulario de contacto",
        "Incluye detalles específicos de tu problema",
    ],
    severity="medium",
    category="technical",
)


def _platform_knowledge() -> str:
    products = "\n".join(
        f"- **{p.name}** (${p.price} {p.currency.upper()}): {p.description}"
        for p in list_products()
    )
    return f"""
# Ministerio AI - Plataforma de GPTs Especializados

Tienda de acceso de pago único a GPTs especializados para ministerios cristianos.

## GPTs disponibles
{products}

## Cómo funciona
1. El usuario se registra con email y contraseña (o con Google)
2. Compra acceso individual a cada GPT con tarjeta (Stripe)
3. En el Dashboard aparece el GPT como "Comprado" con el botón "Usar GPT"

## Problemas comunes
- Pago no reflejado: el acceso se activa al confirmarse el pago; recargar el Dashboard.
- Error al pagar: verificar datos de tarjeta y fondos, o probar otra tarjeta.
- No puedo iniciar sesión: usar "Olvidé mi contraseña".
- El GPT no abre: iniciar sesión en ChatGPT con una suscripción que permita GPTs.
"""


def _system_prompt(has_purchases: bool | None) -> str:
    context = "No disponible" if has_purchases is None else f"tiene compras: {has_purchases}"
    return f"""Eres un asistente de soporte técnico especializado en Ministerio AI.

CONOCIMIENTO DE LA PLATAFORMA:
{_platform_knowledge()}

INSTRUCCIONES:
1. Responde SOLO sobre Ministerio AI y sus GPTs
2. Ofrece soluciones claras paso a paso
3. Si no sabes algo, admítelo y sugiere contactar al equipo técnico
4. Severidad: low (consulta), medium (problema funcional), high (pago/acceso), critical (cuenta bloqueada)
5. Categoría: access, payment, technical, account, general
6. Responde siempre en español, máximo 300 palabras

CONTEXTO DEL USUARIO: {context}

Responde en JSON:
{{"response": "...", "nextSteps": ["..."], "severity": "...", "category": "..."}}"""


class SupportAssistant:
    """LLM-backed support answers with a canned fallback."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self._client = client
        self._api_key = api_key

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def answer(self, question: str, has_purchases: bool | None = None) -> SupportAnswer:
        """
        Answer a support question.

        Never raises for model or network trouble; the customer gets the
        fallback answer and the failure is logged.
        """
        if not self._api_key and self._client is None:
            logger.warning("support_assistant_not_configured")
            return FALLBACK_ANSWER

        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": _system_prompt(has_purchases)},
                    {"role": "user", "content": question},
                ],
                response_format={"type": "json_object"},
                max_tokens=800,
            )
            content = completion.choices[0].message.content or "{}"
            reply = _AssistantReply.model_validate(json.loads(content))
        except OpenAIError as exc:
            logger.error("support_assistant_failed", error=str(exc), error_type=type(exc).__name__)
            return FALLBACK_ANSWER
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.error("support_assistant_bad_reply", error=str(exc))
            return FALLBACK_ANSWER

        logger.info(
            "support_question_answered", severity=reply.severity, category=reply.category
        )
        return SupportAnswer(
            response=reply.response,
            next_steps=reply.next_steps,
            severity=reply.severity,
            category=reply.category,
        )
