"""In-memory contract cache keyed by (doctype, preset)."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Tuple

from contract_build import Preset, UiContract, parse_preset

logger = logging.getLogger("forge.cache")

CacheKey = Tuple[str, str]


def cache_key(doctype: str, preset: Preset | str) -> CacheKey:
    return (doctype, parse_preset(preset).value)


class ContractCache:
    """Process-lifetime memo of built contracts.

    There is no TTL and no eviction; callers decide when an entry is stale and
    call ``invalidate``. Concurrent misses for the same key are not merged, so
    two builds may run and the later one wins; both produce the same value.
    """

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, UiContract] = {}

    def get(self, doctype: str, preset: Preset | str) -> UiContract | None:
        return self._entries.get(cache_key(doctype, preset))

    def put(self, contract: UiContract) -> None:
        self._entries[cache_key(contract.doctype, contract.preset)] = contract

    async def get_or_build(
        self,
        doctype: str,
        preset: Preset | str,
        build: Callable[[], Awaitable[UiContract]],
    ) -> UiContract:
        key = cache_key(doctype, preset)
        cached = self._entries.get(key)
        if cached is not None:
            logger.info("contract_cache_hit doctype=%s preset=%s", key[0], key[1])
            return cached
        logger.info("contract_cache_miss doctype=%s preset=%s", key[0], key[1])
        contract = await build()
        self._entries[key] = contract
        return contract

    def invalidate(self, doctype: str, preset: Preset | str | None = None) -> int:
        """Drop one entry, or every preset of ``doctype`` when ``preset`` is None."""
        if preset is not None:
            removed = 1 if self._entries.pop(cache_key(doctype, preset), None) is not None else 0
        else:
            keys = [key for key in self._entries if key[0] == doctype]
            for key in keys:
                del self._entries[key]
            removed = len(keys)
        logger.info("contract_cache_invalidate doctype=%s preset=%s removed=%s", doctype, preset, removed)
        return removed

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[CacheKey]:
        return sorted(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
