# src/vitordo/llm/cache.py

"""
Response cache in front of a task collaborator.

Only successful parse responses are cached, keyed by the input text plus the
context tasks (id, status, window). Status updates always go to the collaborator:
they depend on the moment they are reported.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from ..core.ports import LLMCollaborator, ParseRequest, ParseResponse, UpdateRequest, UpdateResponse
from ..core.timeutil import to_iso

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600.0
DEFAULT_CACHE_MAX_ENTRIES = 100


def parse_cache_key(request: ParseRequest) -> str:
    context = [[t.id, t.status.value, to_iso(t.start_time), to_iso(t.end_time)] for t in request.context]
    raw = json.dumps({"op": "parse", "input": request.input, "context": context}, ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class CachedLLMClient:
    def __init__(
        self,
        inner: LLMCollaborator,
        *,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.inner = inner
        self._ttl = float(ttl_seconds)
        self._max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: dict[str, tuple[float, ParseResponse]] = {}  # key -> (expires_at, response)
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def invalidate(self) -> None:
        self._entries.clear()

    async def parse(self, request: ParseRequest) -> ParseResponse:
        key = parse_cache_key(request)
        now = self._clock()

        entry = self._entries.pop(key, None)
        if entry is not None:
            expires_at, cached = entry
            if expires_at > now:
                # Re-insert so eviction drops the least recently used entry first.
                self._entries[key] = entry
                self.hits += 1
                logger.debug("LLM cache hit key=%s", key[:12])
                return cached

        self.misses += 1
        response = await self.inner.parse(request)
        if response.success and response.tasks:
            self._entries[key] = (now + self._ttl, response)
            while len(self._entries) > self._max_entries:
                del self._entries[next(iter(self._entries))]
        return response

    async def update(self, request: UpdateRequest) -> UpdateResponse:
        return await self.inner.update(request)

    async def aclose(self) -> None:
        close: Any = getattr(self.inner, "aclose", None)
        if close is not None:
            await close()
