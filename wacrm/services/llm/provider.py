"""LLM Provider using LiteLLM for multi-provider abstraction."""

import time
from dataclasses import dataclass, field
from typing import Any

import litellm
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from wacrm.core.config import settings
from wacrm.core.exceptions import LLMError, PaymentRequired, RateLimitExceeded

logger = structlog.get_logger()

# Configure LiteLLM
litellm.set_verbose = settings.app_debug

# Set API keys from settings
if settings.openai_api_key:
    litellm.openai_key = settings.openai_api_key
if settings.anthropic_api_key:
    litellm.anthropic_key = settings.anthropic_api_key
if settings.google_api_key:
    litellm.google_key = settings.google_api_key


@dataclass
class LLMResponse:
    """Response from LLM completion."""

    content: str
    model: str
    tokens_input: int = 0
    tokens_output: int = 0
    finish_reason: str = "stop"
    latency_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


def _status_of(error: Exception) -> int | None:
    if isinstance(error, litellm.RateLimitError):
        return 429
    return getattr(error, "status_code", None)


class LLMProvider:
    """Chat-completion gateway with a primary model and fallbacks.

    Transient connection errors are retried on the same model. Any other
    failure moves on to the next fallback. When every model fails, a 429 or
    402 from the primary surfaces as RateLimitExceeded / PaymentRequired.
    """

    def __init__(
        self,
        primary_model: str | None = None,
        fallback_models: list[str] | None = None,
        default_temperature: float = 0.7,
        default_max_tokens: int = 500,
    ) -> None:
        self.primary_model = primary_model or settings.litellm_primary_model
        self.fallback_models = (
            fallback_models if fallback_models is not None else [settings.litellm_fallback_model]
        )
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens

        logger.info(
            "LLM Provider initialized",
            primary=self.primary_model,
            fallbacks=self.fallback_models,
        )

    @retry(
        retry=retry_if_exception_type((litellm.APIConnectionError, litellm.Timeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _acompletion(self, **params: Any) -> Any:
        return await litellm.acompletion(**params)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion using the LLM.

        Args:
            messages: List of message dicts with 'role' and 'content'
            system_prompt: Optional system prompt to prepend
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens to generate
            model: Override model selection
            **kwargs: Additional parameters passed to LiteLLM

        Returns:
            LLMResponse with generated content and metadata
        """
        full_messages = []
        if system_prompt:
            full_messages.append({"role": "system", "content": system_prompt})
        full_messages.extend(messages)

        primary = model or self.primary_model
        candidates = [primary, *[m for m in self.fallback_models if m and m != primary]]
        first_error: Exception | None = None

        for model_to_use in candidates:
            start_time = time.perf_counter()
            try:
                response = await self._acompletion(
                    model=model_to_use,
                    messages=full_messages,
                    temperature=temperature if temperature is not None else self.default_temperature,
                    max_tokens=max_tokens or self.default_max_tokens,
                    **kwargs,
                )
            except Exception as e:
                first_error = first_error or e
                logger.warning("LLM completion failed", model=model_to_use, error=str(e))
                continue

            latency_ms = (time.perf_counter() - start_time) * 1000
            usage = getattr(response, "usage", None)
            tokens_input = getattr(usage, "prompt_tokens", 0) or 0
            tokens_output = getattr(usage, "completion_tokens", 0) or 0
            choice = response.choices[0]

            logger.info(
                "LLM completion successful",
                model=model_to_use,
                tokens_in=tokens_input,
                tokens_out=tokens_output,
                latency_ms=round(latency_ms, 2),
            )

            return LLMResponse(
                content=(choice.message.content or "").strip(),
                model=model_to_use,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                finish_reason=choice.finish_reason or "stop",
                latency_ms=latency_ms,
                metadata={"raw_response_id": getattr(response, "id", None)},
            )

        status = _status_of(first_error) if first_error else None
        if status == 429:
            raise RateLimitExceeded()
        if status == 402:
            raise PaymentRequired()
        raise LLMError(f"All LLM providers failed: {first_error}", provider=primary)


# Singleton instance
_llm_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """Get or create the LLM provider singleton."""
    global _llm_provider
    if _llm_provider is None:
        _llm_provider = LLMProvider()
    return _llm_provider
