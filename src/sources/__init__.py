"""Source adapter registry with lazy loading.

Usage:
    from src.sources import build_adapters

    adapters = build_adapters(settings)
    adapter = adapters["linkedin"]
"""

import importlib
import logging
from typing import Any

from src.core.config import Settings
from src.sources.base import SearchQuery, SourceAdapter

__all__ = [
    "SearchQuery",
    "SourceAdapter",
    "available_kinds",
    "build_adapters",
    "get_adapter",
]

logger = logging.getLogger(__name__)

# Lazy registry: maps adapter kind → (module_path, class_name)
_REGISTRY: dict[str, tuple[str, str]] = {
    "simulated": ("src.sources.simulated", "SimulatedSourceAdapter"),
}


def get_adapter(kind: str, source_id: str, options: dict[str, Any] | None = None) -> SourceAdapter:
    """Instantiate an adapter of the given kind for one named source.

    Raises:
        ValueError: If the kind is unknown.
    """
    if kind not in _REGISTRY:
        valid = ", ".join(sorted(_REGISTRY))
        msg = f"Unknown source kind '{kind}'. Available: {valid}"
        raise ValueError(msg)

    module_path, class_name = _REGISTRY[kind]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls(source_id, **(options or {}))  # type: ignore[no-any-return]


def build_adapters(settings: Settings) -> dict[str, SourceAdapter]:
    """Build one adapter per source referenced by any configured search."""
    names: list[str] = list(settings.sources)
    for search in settings.searches:
        names.extend(s for s in search.sources if s not in names)

    adapters: dict[str, SourceAdapter] = {}
    for name in names:
        config = settings.source_config(name)
        adapters[name] = get_adapter(config.kind, name, config.options)
        logger.debug("Built %s adapter for '%s'", config.kind, name)
    return adapters


def available_kinds() -> list[str]:
    """Return sorted list of registered adapter kinds."""
    return sorted(_REGISTRY)
