"""OpenAI chat-completions scoring backend.

Also the base for any OpenAI-compatible server (see ``src.llm.ollama``).
"""

from typing import Any

from src.llm.base import LLMProvider


class OpenAIProvider(LLMProvider):
    provider_id = "openai"
    default_model = "gpt-4o-mini"
    env_var = "OPENAI_API_KEY"
    install_extra = "openai"

    def base_url(self) -> str | None:
        """Endpoint override; None uses the SDK default."""
        return None

    def _build_client(self, api_key: str | None) -> Any:
        try:
            import openai
        except ImportError:
            raise self._missing_sdk("openai") from None
        return openai.OpenAI(
            api_key=api_key or self.provider_id,
            base_url=self.base_url(),
            timeout=self.timeout_s,
        )

    def _send(self, client: Any, prompt: str, model: str, system: str) -> str | None:
        response = client.chat.completions.create(
            model=model,
            max_tokens=self.max_tokens,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        )
        if not response.choices:
            return None
        return response.choices[0].message.content  # type: ignore[no-any-return]
