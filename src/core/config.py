"""Configuration models and YAML loader for the search execution engine."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DelayPolicy(BaseModel):
    """Inter-item delay used to respect source-side rate limits."""

    model_config = ConfigDict(frozen=True)

    min_s: float = Field(default=0.15, ge=0.0)
    max_s: float = Field(default=0.25, ge=0.0)
    respect_rate_limit: bool = True

    @model_validator(mode="after")
    def max_not_below_min(self) -> "DelayPolicy":
        if self.max_s < self.min_s:
            msg = f"delay.max_s ({self.max_s}) must be >= delay.min_s ({self.min_s})"
            raise ValueError(msg)
        return self


class SearchFilters(BaseModel):
    """Query filters forwarded to every source."""

    model_config = ConfigDict(frozen=True)

    remote_type: str | None = None
    experience_level: str | None = None
    employment_types: list[str] = Field(default_factory=list)
    salary_min: int | None = Field(default=None, ge=0)
    require_keywords: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)

    @field_validator("remote_type")
    @classmethod
    def remote_type_allowed(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.lower().strip()
        allowed = {"onsite", "hybrid", "remote", "flexible"}
        if v not in allowed:
            msg = f"remote_type must be one of {sorted(allowed)}, got '{v}'"
            raise ValueError(msg)
        return v


class SearchSpec(BaseModel):
    """A saved search: what to look for and where. Read-only to the engine."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    job_title: str
    location: str = ""
    sources: list[str] = Field(default_factory=lambda: ["linkedin"])
    filters: SearchFilters = Field(default_factory=SearchFilters)
    max_results_per_source: int = Field(default=50, ge=1, le=500)
    delay: DelayPolicy = Field(default_factory=DelayPolicy)
    skip_duplicates: bool = False
    is_active: bool = True

    @field_validator("id", "job_title")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            msg = "must not be empty"
            raise ValueError(msg)
        return v.strip()

    @field_validator("sources")
    @classmethod
    def at_least_one_source(cls, v: list[str]) -> list[str]:
        cleaned = [s.strip().lower() for s in v if s.strip()]
        if not cleaned:
            msg = "at least one source must be configured"
            raise ValueError(msg)
        return cleaned


class SourceConfig(BaseModel):
    """How to build the adapter for one named source."""

    kind: str = "simulated"
    options: dict[str, Any] = Field(default_factory=dict)


class EngineConfig(BaseModel):
    """Tuning knobs for the execution engine."""

    log_every_n_items: int = Field(default=5, ge=1)
    connect_delay_s: float = Field(default=0.0, ge=0.0)
    processing_delay_s: float = Field(default=0.0, ge=0.0)
    terminal_write_retries: int = Field(default=2, ge=0, le=10)
    poll_interval_s: float = Field(default=2.0, gt=0.0)
    max_polls: int = Field(default=150, ge=1)
    heartbeat_interval_s: float = Field(default=10.0, gt=0.0)
    orphan_after_s: float = Field(default=60.0, gt=0.0)

    @model_validator(mode="after")
    def orphan_window_exceeds_heartbeat(self) -> "EngineConfig":
        if self.orphan_after_s <= self.heartbeat_interval_s:
            msg = (
                f"orphan_after_s ({self.orphan_after_s}) must exceed "
                f"heartbeat_interval_s ({self.heartbeat_interval_s})"
            )
            raise ValueError(msg)
        return self


class ScoringConfig(BaseModel):
    """Weights for rule-based relevance scoring, plus optional LLM blending."""

    title_match_bonus: float = 20.0
    seniority_match_bonus: float = 15.0
    remote_bonus: float = 10.0
    salary_match_bonus: float = 10.0
    recency_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    llm_enabled: bool = False
    llm_provider: str = "anthropic"
    llm_model: str | None = None
    llm_timeout_s: float = Field(default=30.0, gt=0.0)
    llm_max_tokens: int = Field(default=256, ge=16)
    rule_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    llm_weight: float = Field(default=0.6, ge=0.0, le=1.0)


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/engine.db"


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    sources: dict[str, SourceConfig] = Field(default_factory=dict)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    searches: list[SearchSpec] = Field(default_factory=list)

    @field_validator("searches")
    @classmethod
    def at_least_one_search(cls, v: list[SearchSpec]) -> list[SearchSpec]:
        if not v:
            msg = "at least one search must be configured"
            raise ValueError(msg)
        ids = [s.id for s in v]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            msg = f"duplicate search ids: {dupes}"
            raise ValueError(msg)
        return v

    @field_validator("sources")
    @classmethod
    def lowercase_source_names(cls, v: dict[str, SourceConfig]) -> dict[str, SourceConfig]:
        return {name.strip().lower(): cfg for name, cfg in v.items()}

    @model_validator(mode="after")
    def sources_are_configured(self) -> "Settings":
        # No sources section means every referenced source is simulated.
        if not self.sources:
            return self
        for search in self.searches:
            missing = [s for s in search.sources if s not in self.sources]
            if missing:
                msg = f"search '{search.id}' references unknown sources: {missing}"
                raise ValueError(msg)
        return self

    def get_search(self, search_id: str) -> SearchSpec | None:
        """Return the search with the given id, or None."""
        for search in self.searches:
            if search.id == search_id:
                return search
        return None

    def source_config(self, name: str) -> SourceConfig:
        """Return the adapter config for a source, defaulting to simulated."""
        return self.sources.get(name, SourceConfig())

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
