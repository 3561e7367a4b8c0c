from .provider import (
    CompletionProvider,
    ConfigurationError,
    MockProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
    ProviderError,
    ProviderNotConfiguredError,
    generate_chat,
    get_llm_provider,
    validate_provider_configuration,
)

__all__ = [
    "CompletionProvider",
    "ConfigurationError",
    "MockProvider",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "ProviderError",
    "ProviderNotConfiguredError",
    "generate_chat",
    "get_llm_provider",
    "validate_provider_configuration",
]
