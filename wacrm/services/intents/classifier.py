"""Intent classification for chatbot condition nodes.

A chatbot flow branches on what the user meant. Either a list of candidate
intents is given (the model answers with one intent id or NONE) or a single
intent description is given (the model answers SIM or NÃO).
"""

import re
from dataclasses import dataclass
from typing import Any

import structlog

from wacrm.core.exceptions import ValidationFailed
from wacrm.models import AIAgentConfig
from wacrm.services.llm.provider import LLMProvider, get_llm_provider

logger = structlog.get_logger()

MULTI_INTENT_SYSTEM_PROMPT = """Você é um analisador de intenções. Sua tarefa é identificar qual intenção melhor corresponde à mensagem do usuário.

Regras:
- Analise o significado e a intenção da mensagem, não apenas palavras-chave
- Considere sinônimos, gírias, abreviações e erros de digitação
- Se nenhuma intenção corresponder claramente, responda "NONE"
- Responda APENAS com o ID da intenção correspondente ou "NONE\""""

SINGLE_INTENT_SYSTEM_PROMPT = """Você é um analisador de intenções. Sua tarefa é determinar se a mensagem do usuário corresponde à intenção descrita.

Regras:
- Analise o significado e a intenção da mensagem, não apenas palavras-chave
- Considere sinônimos, gírias, abreviações e erros de digitação
- Responda APENAS com "SIM" ou "NÃO\""""

_NUMBER = re.compile(r"\d+")

NO_MATCH = "NONE"


@dataclass(frozen=True)
class Intent:
    id: str
    description: str


@dataclass
class IntentMatch:
    """Outcome of one classification."""

    match: bool
    matched_intent_id: str
    ai_response: str
    intent_description: str | None = None
    user_message_preview: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "match": self.match,
            "matchedIntentId": self.matched_intent_id,
            "aiResponse": self.ai_response,
            "userMessagePreview": self.user_message_preview,
        }
        if self.intent_description is not None:
            data["intentDescription"] = self.intent_description
        return data


def agent_context(config: AIAgentConfig | None) -> str:
    """Extra system context describing the assistant the flow belongs to."""
    if config is None:
        return ""
    return (
        f'Contexto do Assistente "{config.agent_name}":\n'
        f"{config.personality_prompt or ''}\n\n"
        f"Regras de comportamento:\n{config.behavior_rules or ''}\n\n"
        "Use este contexto para entender melhor as possíveis intenções do usuário.\n"
    )


def match_intent_response(response: str, intents: list[Intent]) -> Intent | None:
    """Pick the intent named by a model answer.

    NONE means no match. Otherwise the first intent whose id appears in the
    answer wins, and a bare number is read as a 1-based position.
    """
    if NO_MATCH in response.upper():
        return None
    for intent in intents:
        if intent.id in response:
            return intent
    number = _NUMBER.search(response)
    if number:
        index = int(number.group()) - 1
        if 0 <= index < len(intents):
            return intents[index]
    return None


def parse_intents(raw: list[dict[str, Any]] | None) -> list[Intent]:
    intents = []
    for item in raw or []:
        intent_id = str(item.get("id") or "").strip()
        description = str(item.get("description") or "").strip()
        if intent_id and description:
            intents.append(Intent(id=intent_id, description=description))
    return intents


class IntentClassifier:
    """Classifies user messages against chatbot intents through the AI gateway."""

    def __init__(self, llm: LLMProvider | None = None) -> None:
        self.llm = llm or get_llm_provider()

    async def classify(
        self,
        user_message: str | None,
        intents: list[Intent] | None = None,
        intent_description: str | None = None,
        agent: AIAgentConfig | None = None,
    ) -> IntentMatch:
        """Classify a message.

        Raises:
            ValidationFailed: If the message or both intent inputs are missing
            RateLimitExceeded: If the gateway rate limits the request
            PaymentRequired: If the gateway account ran out of credits
        """
        if not user_message or not user_message.strip():
            raise ValidationFailed("userMessage is required")
        if not intents and not (intent_description and intent_description.strip()):
            raise ValidationFailed("intents array or intentDescription is required")

        context = agent_context(agent)
        if intents:
            return await self._classify_multi(user_message, intents, context)
        return await self._classify_single(user_message, intent_description or "", context)

    async def _classify_multi(self, user_message: str, intents: list[Intent], context: str) -> IntentMatch:
        listing = "\n".join(f"{i + 1}. ID: {intent.id} - {intent.description}" for i, intent in enumerate(intents))
        prompt = (
            f"Intenções disponíveis:\n{listing}\n\n"
            f'Mensagem do usuário: "{user_message}"\n\n'
            'Qual intenção corresponde melhor? Responda APENAS com o ID ou "NONE".'
        )
        system_prompt = f"{context}\n{MULTI_INTENT_SYSTEM_PROMPT}" if context else MULTI_INTENT_SYSTEM_PROMPT

        response = await self.llm.complete(
            messages=[{"role": "user", "content": prompt}],
            system_prompt=system_prompt,
            temperature=0.1,
            max_tokens=50,
        )
        answer = response.content.strip()
        matched = match_intent_response(answer, intents)

        logger.info(
            "Multi-intent classification",
            intents=len(intents),
            answer=answer,
            matched=matched.id if matched else None,
        )
        return IntentMatch(
            match=matched is not None,
            matched_intent_id=matched.id if matched else NO_MATCH,
            ai_response=answer,
            user_message_preview=user_message[:100],
        )

    async def _classify_single(self, user_message: str, description: str, context: str) -> IntentMatch:
        prompt = (
            f'Intenção: "{description}"\n\n'
            f'Mensagem do usuário: "{user_message}"\n\n'
            'A mensagem corresponde à intenção? Responda APENAS "SIM" ou "NÃO".'
        )
        system_prompt = f"{context}\n{SINGLE_INTENT_SYSTEM_PROMPT}" if context else SINGLE_INTENT_SYSTEM_PROMPT

        response = await self.llm.complete(
            messages=[{"role": "user", "content": prompt}],
            system_prompt=system_prompt,
            temperature=0.1,
            max_tokens=10,
        )
        answer = response.content.strip().upper()
        is_match = "SIM" in answer

        logger.info("Single-intent classification", answer=answer, match=is_match)
        return IntentMatch(
            match=is_match,
            matched_intent_id="yes" if is_match else "no",
            ai_response=answer,
            intent_description=description,
            user_message_preview=user_message[:100],
        )
