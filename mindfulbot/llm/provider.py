from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from ..config import settings

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"


class ProviderError(RuntimeError):
    pass


class ConfigurationError(RuntimeError):
    pass


class ProviderNotConfiguredError(RuntimeError):
    pass


class CompletionProvider(Protocol):
    name: str

    async def generate_chat(
        self,
        messages: list[dict[str, str]],
        system_prompt: str | None = None,
        **kwargs: Any
    ) -> str:
        ...


def _with_system_prompt(messages: list[dict[str, str]], system_prompt: str | None) -> list[dict[str, str]]:
    payload_messages = list(messages)
    if system_prompt:
        payload_messages.insert(0, {"role": "system", "content": system_prompt})
    return payload_messages


class OpenAICompatibleProvider:
    """Chat-completions client for SEA-LION, OpenAI and other compatible hosts."""

    def __init__(
        self,
        api_key: str | None,
        chat_model: str,
        base_url: str = OPENAI_BASE_URL,
        name: str = "openai",
        transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        if not api_key:
            raise ConfigurationError(f"An API key is required when LLM_PROVIDER is {name}.")
        self.api_key = api_key
        self.chat_model = chat_model
        self.base_url = base_url.rstrip("/")
        self.name = name
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    async def generate_chat(
        self,
        messages: list[dict[str, str]],
        system_prompt: str | None = None,
        **kwargs: Any
    ) -> str:
        timeout = kwargs.pop("timeout", settings.llm_timeout_seconds)
        payload: dict[str, Any] = {
            "model": self.chat_model,
            "messages": _with_system_prompt(messages, system_prompt),
            "max_tokens": kwargs.pop("max_tokens", settings.llm_max_tokens),
            "temperature": kwargs.pop("temperature", settings.llm_temperature),
            "top_p": kwargs.pop("top_p", settings.llm_top_p),
        }
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=self._headers()
                )
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ProviderError(f"{self.name} chat request timed out.") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.name} chat request failed.") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(f"{self.name} chat response is not JSON.") from exc
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ProviderError(f"{self.name} chat response missing choices.")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise ProviderError(f"{self.name} chat response has a malformed message.")
        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ProviderError(f"{self.name} chat response missing content.")
        return content


class OllamaProvider:
    name = "ollama"

    def __init__(
        self,
        base_url: str,
        chat_model: str,
        transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.chat_model = chat_model
        self._transport = transport

    async def generate_chat(
        self,
        messages: list[dict[str, str]],
        system_prompt: str | None = None,
        **kwargs: Any
    ) -> str:
        timeout = kwargs.pop("timeout", settings.llm_timeout_seconds)
        payload = {
            "model": self.chat_model,
            "stream": False,
            "keep_alive": kwargs.pop("keep_alive", "10m"),
            "messages": _with_system_prompt(messages, system_prompt),
            "options": {
                "num_predict": settings.llm_max_tokens,
                "temperature": settings.llm_temperature,
                "top_p": settings.llm_top_p,
            },
        }
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                response = await client.post(f"{self.base_url}/api/chat", json=payload)
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ProviderError("Ollama chat request timed out.") from exc
        except httpx.HTTPError as exc:
            raise ProviderError("Ollama chat request failed.") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError("Ollama chat response is not JSON.") from exc
        if not isinstance(data, dict):
            raise ProviderError("Ollama chat response is malformed.")
        message = data.get("message")
        if message is not None and not isinstance(message, dict):
            raise ProviderError("Ollama chat response has a malformed message.")
        content = (message or {}).get("content") or data.get("response")
        if not isinstance(content, str) or not content.strip():
            raise ProviderError("Ollama chat response missing content.")
        return content


class MockProvider:
    name = "mock"

    async def generate_chat(
        self,
        messages: list[dict[str, str]],
        system_prompt: str | None = None,
        **kwargs: Any
    ) -> str:
        user_message = ""
        for message in reversed(messages):
            if message.get("role") == "user":
                user_message = str(message.get("content") or "")
                break
        safe_echo = user_message.strip() or "your last message"
        return (
            f"Mock reply: thank you for telling me about \"{safe_echo}\". "
            "Here are some resources you may find helpful."
        )


def validate_provider_configuration() -> None:
    if settings.dev_mode:
        return
    if settings.llm_provider == "sealion" and not settings.sealion_api_key:
        raise ConfigurationError("LLM_PROVIDER=sealion requires SEALION_API_KEY.")
    if settings.llm_provider == "openai" and not settings.openai_api_key:
        raise ConfigurationError("LLM_PROVIDER=openai requires OPENAI_API_KEY.")


def get_llm_provider() -> CompletionProvider:
    if settings.llm_provider == "mock":
        return MockProvider()
    if settings.llm_provider in ("sealion", "openai"):
        if settings.llm_provider == "sealion":
            api_key, model, base_url = settings.sealion_api_key, settings.sealion_model, settings.sealion_base_url
        else:
            api_key, model, base_url = settings.openai_api_key, settings.openai_chat_model, OPENAI_BASE_URL
        if not api_key and settings.dev_mode:
            raise ProviderNotConfiguredError(
                "LLM not configured. Set an API key or use LLM_PROVIDER=mock."
            )
        return OpenAICompatibleProvider(
            api_key=api_key,
            chat_model=model,
            base_url=base_url,
            name=settings.llm_provider
        )
    return OllamaProvider(
        base_url=settings.ollama_base_url,
        chat_model=settings.ollama_model
    )


async def generate_chat(
    provider: CompletionProvider,
    messages: list[dict[str, str]],
    system_prompt: str | None = None,
    **kwargs: Any
) -> str:
    """Single entrypoint for chat completions.

    The provider is called exactly once; a failed call is never retried so the
    caller can fall back straight away. Any exception other than
    ``ProviderError`` is logged and re-raised as ``ProviderError``.
    """
    try:
        return await provider.generate_chat(
            messages=messages,
            system_prompt=system_prompt,
            **kwargs
        )
    except ProviderError:
        raise
    except Exception as exc:
        name = getattr(provider, "name", type(provider).__name__)
        logger.exception("Unexpected error from %s provider", name)
        raise ProviderError(f"{name} chat call raised {type(exc).__name__}.") from exc
