"""Local Ollama scoring backend, spoken to over its OpenAI-compatible API."""

import os

from src.llm.openai import OpenAIProvider

DEFAULT_BASE_URL = "http://localhost:11434/v1"


class OllamaProvider(OpenAIProvider):
    provider_id = "ollama"
    default_model = "llama3"
    env_var = None

    def base_url(self) -> str:
        return os.environ.get("OLLAMA_BASE_URL", DEFAULT_BASE_URL)
