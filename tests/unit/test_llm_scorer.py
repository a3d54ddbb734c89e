"""Tests for LLM-blended scoring and scorer selection."""

from unittest.mock import MagicMock, patch

import pytest

from src.core.config import ScoringConfig, SearchFilters, SearchSpec
from src.core.schemas import RawListing
from src.llm.base import LLMProvider
from src.pipeline.llm_scorer import LLMBlendScorer, _build_user_prompt, build_scorer
from src.pipeline.scorer import RuleBasedScorer


def _listing(**kw: object) -> RawListing:
    defaults: dict[str, object] = {
        "external_id": "1",
        "source": "linkedin",
        "title": "Senior Python Developer",
        "organization": "Acme",
        "location": "Remote",
        "url": "https://linkedin.com/jobs/1",
        "description": "Build APIs with Python and FastAPI.",
        "salary_min": 120_000,
        "salary_max": 160_000,
    }
    defaults.update(kw)
    return RawListing(**defaults)  # type: ignore[arg-type]


def _spec() -> SearchSpec:
    return SearchSpec(
        id="s1",
        job_title="Python Developer",
        filters=SearchFilters(remote_type="remote", salary_min=100_000),
    )


def _provider(response: str = '{"score": 90, "reasoning": "Strong fit"}') -> MagicMock:
    provider = MagicMock(spec=LLMProvider)
    provider.provider_id = "mock"
    provider.complete.return_value = response
    return provider


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------
class TestBuildUserPrompt:
    def test_contains_search_and_listing(self) -> None:
        prompt = _build_user_prompt(_listing(), _spec())
        assert "SEARCH CRITERIA" in prompt
        assert "Job title: Python Developer" in prompt
        assert "Minimum salary: 100,000+" in prompt
        assert "JOB LISTING" in prompt
        assert "Organization: Acme" in prompt
        assert "Compensation: 120,000 - 160,000 USD" in prompt
        assert "Build APIs with Python" in prompt

    def test_missing_values(self) -> None:
        spec = SearchSpec(id="s1", job_title="Dev")
        prompt = _build_user_prompt(_listing(salary_min=None, organization=""), spec)
        assert "Minimum salary: not specified" in prompt
        assert "Compensation: not provided" in prompt
        assert "Organization: not provided" in prompt


# ---------------------------------------------------------------------------
# Blend scorer
# ---------------------------------------------------------------------------
class TestLLMBlendScorer:
    def test_blends_scores(self) -> None:
        config = ScoringConfig(rule_weight=0.4, llm_weight=0.6)
        rule = MagicMock(return_value=50.0)
        scorer = LLMBlendScorer(config, _provider(), rule)

        assert scorer(_listing(), _spec()) == pytest.approx(0.4 * 50 + 0.6 * 90)

    def test_passes_model_override(self) -> None:
        provider = _provider()
        scorer = LLMBlendScorer(ScoringConfig(llm_model="custom-model"), provider)
        scorer(_listing(), _spec())
        assert provider.complete.call_args.kwargs["model"] == "custom-model"

    def test_no_description_keeps_rule_score(self) -> None:
        provider = _provider()
        rule = MagicMock(return_value=33.0)
        scorer = LLMBlendScorer(ScoringConfig(), provider, rule)

        assert scorer(_listing(description=""), _spec()) == 33.0
        provider.complete.assert_not_called()

    def test_provider_error_keeps_rule_score(self) -> None:
        provider = _provider()
        provider.complete.side_effect = RuntimeError("rate limited")
        scorer = LLMBlendScorer(ScoringConfig(), provider, MagicMock(return_value=41.0))
        assert scorer(_listing(), _spec()) == 41.0

    def test_malformed_response_keeps_rule_score(self) -> None:
        scorer = LLMBlendScorer(
            ScoringConfig(), _provider("I think 80"), MagicMock(return_value=12.0),
        )
        assert scorer(_listing(), _spec()) == 12.0

    def test_default_rule_scorer(self) -> None:
        config = ScoringConfig(rule_weight=1.0, llm_weight=0.0)
        scorer = LLMBlendScorer(config, _provider())
        expected = RuleBasedScorer(config)(_listing(), _spec())
        assert scorer(_listing(), _spec()) == pytest.approx(expected, abs=0.01)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------
class TestBuildScorer:
    def test_rule_based_by_default(self) -> None:
        assert isinstance(build_scorer(ScoringConfig()), RuleBasedScorer)

    def test_llm_enabled(self) -> None:
        with patch("src.pipeline.llm_scorer.get_provider", return_value=_provider()) as gp:
            scorer = build_scorer(ScoringConfig(llm_enabled=True, llm_provider="openai"))
        gp.assert_called_once_with("openai", timeout_s=30.0, max_tokens=256)
        assert isinstance(scorer, LLMBlendScorer)

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            build_scorer(ScoringConfig(llm_enabled=True, llm_provider="nope"))
