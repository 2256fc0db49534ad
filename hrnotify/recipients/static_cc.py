"""Central static CC configuration keyed by context tag.

Loaded once per process and handed to the resolver by reference, so call sites
never hardcode addresses. File format::

    {"default": [{"email": "people@example.com", "name": "People & Workplace"}],
     "leave": [{"email": "payroll@example.com", "name": "Payroll"}]}
"""

import logging
from collections.abc import Mapping, Sequence
from functools import lru_cache
from pathlib import Path

from pydantic import TypeAdapter

from ..config import settings
from .schemas import Recipient

logger = logging.getLogger(__name__)

_CONFIG_ADAPTER = TypeAdapter(dict[str, list[Recipient]])


class StaticCcConfig:
    def __init__(self, contexts: Mapping[str, Sequence[Recipient]]) -> None:
        self._contexts = {name: tuple(recipients) for name, recipients in contexts.items()}

    @classmethod
    def from_mapping(cls, raw: Mapping[str, list[dict]]) -> "StaticCcConfig":
        return cls(_CONFIG_ADAPTER.validate_python(dict(raw)))

    @classmethod
    def from_file(cls, path: str | Path) -> "StaticCcConfig":
        data = Path(path).read_bytes()
        return cls(_CONFIG_ADAPTER.validate_json(data))

    @property
    def contexts(self) -> list[str]:
        return sorted(self._contexts)

    def for_context(self, context: str | None) -> list[Recipient]:
        """Static CC list for a context, falling back to ``default``."""
        if not context:
            return []
        if context in self._contexts:
            return list(self._contexts[context])
        return list(self._contexts.get("default", ()))


@lru_cache(maxsize=1)
def load_static_cc() -> StaticCcConfig:
    if not settings.static_cc_file:
        logger.info("No static CC file configured; static CC contexts are empty")
        return StaticCcConfig({})
    config = StaticCcConfig.from_file(settings.static_cc_file)
    logger.info("Static CC loaded from %s: contexts=%s", settings.static_cc_file, ", ".join(config.contexts))
    return config
