"""Tests for the LLM provider fallback chain."""

from types import SimpleNamespace

import litellm
import pytest

from wacrm.core.exceptions import LLMError, PaymentRequired, RateLimitExceeded
from wacrm.services.llm import LLMProvider


def completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(
        id="resp-1",
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason="stop")],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3),
    )


class PaymentError(Exception):
    status_code = 402


@pytest.fixture
def calls(monkeypatch):
    """Patch the gateway call; tests push answers or exceptions per model."""
    recorded: list[dict] = []
    answers: dict[str, object] = {}

    async def fake_acompletion(**params):
        recorded.append(params)
        answer = answers.get(params["model"], completion("ok"))
        if isinstance(answer, Exception):
            raise answer
        return answer

    monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
    return SimpleNamespace(recorded=recorded, answers=answers)


@pytest.fixture
def provider():
    return LLMProvider(primary_model="primary", fallback_models=["fallback"])


@pytest.mark.asyncio
async def test_complete_prepends_system_prompt(provider, calls):
    calls.answers["primary"] = completion("  SIM  ")

    response = await provider.complete(
        [{"role": "user", "content": "oi"}],
        system_prompt="Responda SIM ou NÃO",
        temperature=0.1,
        max_tokens=10,
    )

    assert response.content == "SIM"
    assert response.model == "primary"
    assert response.tokens_input == 12
    assert response.tokens_output == 3
    params = calls.recorded[0]
    assert params["messages"][0] == {"role": "system", "content": "Responda SIM ou NÃO"}
    assert params["temperature"] == 0.1
    assert params["max_tokens"] == 10


@pytest.mark.asyncio
async def test_falls_back_to_next_model(provider, calls):
    calls.answers["primary"] = ValueError("model overloaded")
    calls.answers["fallback"] = completion("from fallback")

    response = await provider.complete([{"role": "user", "content": "oi"}])

    assert response.model == "fallback"
    assert [c["model"] for c in calls.recorded] == ["primary", "fallback"]


@pytest.mark.asyncio
async def test_rate_limit_surfaces_when_all_fail(provider, calls):
    calls.answers["primary"] = litellm.RateLimitError(message="slow down", llm_provider="openai", model="primary")
    calls.answers["fallback"] = ValueError("down")

    with pytest.raises(RateLimitExceeded):
        await provider.complete([{"role": "user", "content": "oi"}])


@pytest.mark.asyncio
async def test_payment_required_surfaces_when_all_fail(provider, calls):
    calls.answers["primary"] = PaymentError("no credits")
    calls.answers["fallback"] = PaymentError("no credits")

    with pytest.raises(PaymentRequired):
        await provider.complete([{"role": "user", "content": "oi"}])


@pytest.mark.asyncio
async def test_all_models_fail(provider, calls):
    calls.answers["primary"] = ValueError("bad")
    calls.answers["fallback"] = ValueError("worse")

    with pytest.raises(LLMError) as exc:
        await provider.complete([{"role": "user", "content": "oi"}])
    assert exc.value.details == {"provider": "primary"}


@pytest.mark.asyncio
async def test_model_override_is_not_repeated(calls):
    provider = LLMProvider(primary_model="primary", fallback_models=["primary", "fallback"])
    calls.answers["primary"] = ValueError("bad")

    await provider.complete([{"role": "user", "content": "oi"}])

    assert [c["model"] for c in calls.recorded] == ["primary", "fallback"]
