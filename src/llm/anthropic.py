"""Anthropic Claude scoring backend."""

from typing import Any

from src.llm.base import LLMProvider


class AnthropicProvider(LLMProvider):
    provider_id = "anthropic"
    default_model = "claude-sonnet-4-20250514"
    env_var = "ANTHROPIC_API_KEY"
    install_extra = "anthropic"

    def _build_client(self, api_key: str | None) -> Any:
        try:
            import anthropic
        except ImportError:
            raise self._missing_sdk("anthropic") from None
        return anthropic.Anthropic(api_key=api_key, timeout=self.timeout_s)

    def _send(self, client: Any, prompt: str, model: str, system: str) -> str | None:
        message = client.messages.create(
            model=model,
            max_tokens=self.max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        # Concatenate text blocks; tool-use or thinking blocks carry no text
        return "".join(getattr(block, "text", "") for block in message.content)
