"""LLM provider base class and shared response parsing.

A provider turns one scoring prompt into raw response text. The base class
resolves credentials, builds the SDK client once and reuses it for every
listing of a run; subclasses only say how to build the client and send a
request.
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a senior recruiter evaluating whether a job listing matches a saved search.\n\n"
    "Given the search criteria and a job listing, score the match on a 0-100 scale:\n"
    "  90-100: Perfect match - title, seniority, location, and compensation all align\n"
    "  70-89:  Strong match - minor gaps in 1-2 areas\n"
    "  50-69:  Moderate match - relevant but with notable mismatches\n"
    "  30-49:  Weak match - partial overlap only\n"
    "  0-29:   Poor match - fundamentally different role\n\n"
    'Return ONLY a JSON object (no markdown, no explanation):\n'
    '{"score": <integer 0-100>, "reasoning": "<1-2 sentence explanation>"}'
)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def parse_score_response(raw_text: str) -> tuple[float, str]:
    """Parse an LLM JSON response into (score, reasoning).

    Accepts markdown-fenced JSON and clamps the score to 0-100.

    Raises:
        ValueError: If the text is not a JSON object with a numeric score.
    """
    cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", raw_text.strip()))

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        msg = f"Failed to parse LLM score response as JSON: {e}"
        raise ValueError(msg) from e

    if not isinstance(data, dict) or "score" not in data:
        msg = "LLM response missing 'score' field"
        raise ValueError(msg)

    try:
        score = float(data["score"])
    except (TypeError, ValueError) as e:
        msg = f"LLM score is not a number: {data['score']!r}"
        raise ValueError(msg) from e

    return max(0.0, min(100.0, score)), str(data.get("reasoning", ""))


class LLMProvider(ABC):
    """Base class for LLM scoring backends.

    Class attributes describe the backend; ``timeout_s`` and ``max_tokens``
    bound every request.
    """

    provider_id: str = ""
    default_model: str = ""
    env_var: str | None = None
    install_extra: str = "llm"

    def __init__(self, *, timeout_s: float = 30.0, max_tokens: int = 256) -> None:
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self._client: Any = None

    def api_key(self) -> str | None:
        """Read the API key from the environment. None if the backend needs none.

        Raises:
            ValueError: If the backend needs a key and it is not set.
        """
        if self.env_var is None:
            return None
        key = os.environ.get(self.env_var)
        if not key:
            msg = f"{self.env_var} environment variable is required for {self.provider_id} scoring"
            raise ValueError(msg)
        return key

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        """Send a scoring prompt and return the raw response text.

        Args:
            prompt: The user message.
            model: Override the provider's default model.
            system: Override the system prompt. None falls back to SYSTEM_PROMPT.

        Raises:
            ValueError: On a missing API key or an empty response.
            ImportError: If the backend's SDK is not installed.
        """
        if self._client is None:
            self._client = self._build_client(self.api_key())

        use_model = model or self.default_model
        logger.debug("Scoring listing with %s (%s)", self.provider_id, use_model)
        text = self._send(
            self._client,
            prompt,
            use_model,
            system if system is not None else SYSTEM_PROMPT,
        )
        if not text:
            msg = f"{self.provider_id} returned an empty response"
            raise ValueError(msg)
        return text

    def _missing_sdk(self, package: str) -> ImportError:
        msg = (
            f"{package} is required for {self.provider_id} scoring. "
            f"Install with: pip install 'search-execution-engine[{self.install_extra}]'"
        )
        return ImportError(msg)

    @abstractmethod
    def _build_client(self, api_key: str | None) -> Any:
        """Create the SDK client. Raise ImportError if the SDK is missing."""

    @abstractmethod
    def _send(self, client: Any, prompt: str, model: str, system: str) -> str | None:
        """Issue one completion request and return its text."""
