"""Chat-model access for the builder agent.

Every completion goes through the ``llm`` circuit breaker and
:func:`~openflow.resilience.retry.with_retry`, so a flaky provider is retried
with backoff and a dead one fails fast.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from openflow.config import settings
from openflow.db.models import ProviderConfig
from openflow.errors import CircuitOpenError, ProviderError
from openflow.resilience.circuit_breaker import get_circuit_breaker
from openflow.resilience.retry import RetryOptions, is_retryable_error, with_retry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# LLM helper
# ---------------------------------------------------------------------------

def _get_llm(
    config: Optional[ProviderConfig] = None,
    model: Optional[str] = None,
    provider: Optional[str] = None,
) -> Any:
    """Return a LangChain chat model from a user's provider config or ``settings``."""
    provider = provider or (config.provider if config else settings.llm_provider)
    chosen = model or (config.model if config else None)

    if provider == "openai":
        from langchain_openai import ChatOpenAI

        kwargs: dict[str, Any] = {
            "model": chosen or settings.openai_chat_model,
            "temperature": settings.llm_temperature,
        }
        if config and config.api_key:
            kwargs["api_key"] = config.api_key
        if config and config.base_url:
            kwargs["base_url"] = config.base_url
        return ChatOpenAI(**kwargs)

    from langchain_ollama import ChatOllama

    return ChatOllama(
        model=chosen or settings.ollama_chat_model,
        base_url=(config.base_url if config and config.base_url else settings.ollama_base_url),
        temperature=settings.llm_temperature,
    )


def _to_langchain(messages: list[dict[str, str]]) -> list[Any]:
    from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

    converted: list[Any] = []
    for message in messages:
        role = message.get("role", "user")
        content = message.get("content", "")
        if role == "system":
            converted.append(SystemMessage(content=content))
        elif role == "assistant":
            converted.append(AIMessage(content=content))
        else:
            converted.append(HumanMessage(content=content))
    return converted


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def chat_completion(
    messages: list[dict[str, str]],
    llm: Any = None,
    retry_options: Optional[RetryOptions] = None,
) -> str:
    """Send *messages* (``{"role", "content"}`` dicts) and return the reply text.

    Raises:
        CircuitOpenError: The ``llm`` breaker is open.
        ProviderError: Every attempt failed; carries attempts and elapsed time.
    """
    model = llm if llm is not None else _get_llm()
    lc_messages = _to_langchain(messages)
    breaker = get_circuit_breaker("llm")

    def _attempt() -> str:
        def _invoke() -> str:
            response = model.invoke(lc_messages)
            return response.content if hasattr(response, "content") else str(response)

        return breaker.execute(_invoke)

    def _should_retry(exc: BaseException, attempt: int) -> bool:
        # An open breaker will not close within a retry window.
        return not isinstance(exc, CircuitOpenError) and is_retryable_error(exc)

    options = retry_options or RetryOptions(should_retry=_should_retry)
    result = with_retry(_attempt, options)
    if result.success:
        return result.value  # type: ignore[return-value]

    if isinstance(result.error, CircuitOpenError):
        raise result.error
    logger.error(
        "[Agent] LLM call failed after %d attempt(s) in %.1fs: %s",
        result.attempts,
        result.elapsed,
        result.error,
    )
    raise ProviderError(
        f"LLM request failed: {result.error}",
        attempts=result.attempts,
        elapsed=result.elapsed,
    ) from result.error
