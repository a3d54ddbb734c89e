"""LLM-assisted relevance scoring, blended with the rule-based score."""

import logging

from src.core.config import ScoringConfig, SearchSpec
from src.core.schemas import RawListing
from src.llm import get_provider, parse_score_response
from src.llm.base import LLMProvider
from src.pipeline.scorer import RuleBasedScorer, Scorer

logger = logging.getLogger(__name__)


def _build_user_prompt(listing: RawListing, spec: SearchSpec) -> str:
    """Assemble the user prompt from search criteria and listing data."""
    filters = spec.filters
    salary = (
        f"{filters.salary_min:,}+" if filters.salary_min is not None else "not specified"
    )
    search_section = (
        "SEARCH CRITERIA\n"
        f"Job title: {spec.job_title}\n"
        f"Location: {spec.location or 'any'}\n"
        f"Remote type: {filters.remote_type or 'any'}\n"
        f"Experience level: {filters.experience_level or 'any'}\n"
        f"Minimum salary: {salary}\n"
    )

    if listing.salary_min is not None and listing.salary_max is not None:
        pay = f"{listing.salary_min:,} - {listing.salary_max:,} {listing.salary_currency}"
    else:
        pay = "not provided"
    listing_section = (
        "JOB LISTING\n"
        f"Title: {listing.title}\n"
        f"Organization: {listing.organization or 'not provided'}\n"
        f"Location: {listing.location or 'not provided'}\n"
        f"Compensation: {pay}\n"
        f"Description:\n{listing.description}\n"
    )
    return f"{search_section}\n{listing_section}"


class LLMBlendScorer:
    """Blends a rule-based score with an LLM score.

    Listings without a description keep the rule score. On any LLM error the
    rule score is kept and a warning is logged.
    """

    def __init__(
        self,
        config: ScoringConfig,
        provider: LLMProvider,
        rule_scorer: Scorer | None = None,
    ) -> None:
        self._config = config
        self._provider = provider
        self._rule_scorer = rule_scorer or RuleBasedScorer(config)

    def __call__(self, listing: RawListing, spec: SearchSpec) -> float:
        rule_score = self._rule_scorer(listing, spec)
        if not listing.description:
            return rule_score

        try:
            raw = self._provider.complete(
                _build_user_prompt(listing, spec), model=self._config.llm_model,
            )
            llm_score, reasoning = parse_score_response(raw)
        except Exception:
            logger.warning(
                "LLM scoring failed for '%s' (%s); keeping rule-based score",
                listing.title, listing.url, exc_info=True,
            )
            return rule_score

        logger.debug("LLM score %.0f for '%s': %s", llm_score, listing.title, reasoning)
        return round(
            self._config.rule_weight * rule_score + self._config.llm_weight * llm_score, 2,
        )


def build_scorer(config: ScoringConfig) -> Scorer:
    """Return the LLM-blended scorer if enabled, else the rule-based one."""
    rule_scorer = RuleBasedScorer(config)
    if not config.llm_enabled:
        return rule_scorer
    provider = get_provider(
        config.llm_provider, timeout_s=config.llm_timeout_s, max_tokens=config.llm_max_tokens,
    )
    logger.info("LLM scoring enabled (%s)", provider.provider_id)
    return LLMBlendScorer(config, provider, rule_scorer)
