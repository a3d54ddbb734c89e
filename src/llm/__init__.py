"""Pluggable LLM scoring backends.

Provider modules are imported on first use so that SDKs stay optional::

    provider = get_provider("anthropic", timeout_s=10)
    score, reasoning = parse_score_response(provider.complete(prompt))
"""

import importlib

from src.llm.base import LLMProvider, parse_score_response

__all__ = ["LLMProvider", "available_providers", "get_provider", "parse_score_response"]

_PROVIDERS: dict[str, str] = {
    "anthropic": "src.llm.anthropic:AnthropicProvider",
    "gemini": "src.llm.gemini:GeminiProvider",
    "ollama": "src.llm.ollama:OllamaProvider",
    "openai": "src.llm.openai:OpenAIProvider",
}


def get_provider(name: str, **options: float | int) -> LLMProvider:
    """Build a provider by name; options go to its constructor.

    Raises:
        ValueError: If the provider name is unknown.
    """
    target = _PROVIDERS.get(name)
    if target is None:
        msg = f"Unknown LLM provider '{name}'. Available: {', '.join(available_providers())}"
        raise ValueError(msg)

    module_path, class_name = target.split(":")
    cls: type[LLMProvider] = getattr(importlib.import_module(module_path), class_name)
    return cls(**options)  # type: ignore[arg-type]


def available_providers() -> list[str]:
    return sorted(_PROVIDERS)
