"""Google Gemini scoring backend (google-genai SDK)."""

from typing import Any

from src.llm.base import LLMProvider


class GeminiProvider(LLMProvider):
    provider_id = "gemini"
    default_model = "gemini-2.5-flash"
    env_var = "GOOGLE_API_KEY"
    install_extra = "gemini"

    def _build_client(self, api_key: str | None) -> Any:
        try:
            from google import genai
            from google.genai import types
        except ImportError:
            raise self._missing_sdk("google-genai") from None
        self._types = types
        return genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(self.timeout_s * 1000)),
        )

    def _send(self, client: Any, prompt: str, model: str, system: str) -> str | None:
        response = client.models.generate_content(
            model=model,
            contents=prompt,
            config=self._types.GenerateContentConfig(
                system_instruction=system,
                max_output_tokens=self.max_tokens,
                response_mime_type="application/json",
            ),
        )
        return response.text  # type: ignore[no-any-return]
