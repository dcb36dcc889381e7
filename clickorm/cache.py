"""Bounded LRU store of compiled query templates."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("clickorm")

DEFAULT_CAPACITY = 1000


class CompiledTemplate(BaseModel):
    """Client-independent result of compiling one query structure."""

    model_config = ConfigDict(frozen=True)

    sql: str
    param_names: tuple[str, ...] = ()
    """Parameter names in the order compilation produced them."""
    column_names: tuple[str, ...] = ()
    column_types: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()


class TemplateCache:
    """Least-recently-used mapping ``fingerprint -> CompiledTemplate``.

    Safe to share between threads. Concurrent misses on the same fingerprint
    both compile and the last ``put`` wins; both templates are identical.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"Cache capacity must be at least 1; got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[str, CompiledTemplate] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CompiledTemplate]:
        with self._lock:
            template = self._entries.get(key)
            if template is not None:
                self._entries.move_to_end(key)
        logger.debug("Template cache %s: %s", "hit" if template is not None else "miss", key[:80])
        return template

    def put(self, key: str, template: CompiledTemplate) -> None:
        with self._lock:
            self._entries[key] = template
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Template cache eviction: %s", evicted[:80])

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


__all__ = ["TemplateCache", "CompiledTemplate", "DEFAULT_CAPACITY"]
