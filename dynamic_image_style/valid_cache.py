from __future__ import annotations

import logging
from typing import Iterable, Set

from dynamic_image_style.cache_backends import CacheBackend

log = logging.getLogger(__name__)

VALID_SETTINGS_KEY = "dynamic_image_style:valid_settings"


class ValidityCache:
    """
    Grow-only allow-list of settings strings minted by the application.

    Only settings that went through register() can be used to generate
    derivatives, so arbitrary parameter combinations from the outside are
    refused. A missing cache entry means nothing is valid.
    """

    def __init__(self, backend: CacheBackend, key: str = VALID_SETTINGS_KEY):
        self.backend = backend
        self.key = key

    def register(self, token: str) -> None:
        self.register_many([token])

    def register_many(self, tokens: Iterable[str]) -> None:
        entries = {t: t for t in tokens if t}
        if not entries:
            return
        self.backend.merge(self.key, entries)
        log.debug("Registered settings", extra={"extra": {"tokens": sorted(entries)}})

    def is_valid(self, token: str) -> bool:
        if not token:
            return False
        return self.backend.has_member(self.key, token)

    def __contains__(self, token: object) -> bool:
        return isinstance(token, str) and self.is_valid(token)

    def tokens(self) -> Set[str]:
        data = self.backend.get(self.key)
        return set(data) if data else set()

    def count(self) -> int:
        return self.backend.count(self.key)
