# tests/test_llm_cache.py

from __future__ import annotations

import pytest

from vitordo.core.errors import NetworkError
from vitordo.core.ports import ParseRequest, ParseResponse, UpdateRequest
from vitordo.llm.cache import CachedLLMClient, parse_cache_key
from vitordo.tasks.task_models import TaskInput

from .fakes import FakeLLMClient, at
from .test_task_store import make_task


class Ticks:
    """Monotonic clock stand-in, in seconds."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def parsed(title: str) -> ParseResponse:
    task = TaskInput(title=title, description=title, start_time=at(10), end_time=at(11))
    return ParseResponse(success=True, tasks=(task,), confidence=0.9)


@pytest.fixture()
def ticks() -> Ticks:
    return Ticks()


@pytest.mark.asyncio
async def test_repeated_input_is_served_from_cache(ticks: Ticks) -> None:
    inner = FakeLLMClient(parse_script=[parsed("Write report")])
    cache = CachedLLMClient(inner, ttl_seconds=60, clock=ticks)

    first = await cache.parse(ParseRequest(input="write report at 10"))
    second = await cache.parse(ParseRequest(input="write report at 10"))

    assert second == first
    assert len(inner.parse_calls) == 1
    assert (cache.hits, cache.misses) == (1, 1)


@pytest.mark.asyncio
async def test_entries_expire_after_ttl(ticks: Ticks) -> None:
    inner = FakeLLMClient(parse_script=[parsed("Old"), parsed("New")])
    cache = CachedLLMClient(inner, ttl_seconds=60, clock=ticks)

    await cache.parse(ParseRequest(input="write report"))
    ticks.now = 61
    response = await cache.parse(ParseRequest(input="write report"))

    assert response.tasks[0].title == "New"
    assert len(inner.parse_calls) == 2


@pytest.mark.asyncio
async def test_context_is_part_of_the_key(ticks: Ticks) -> None:
    inner = FakeLLMClient(parse_script=[parsed("A"), parsed("B")])
    cache = CachedLLMClient(inner, ttl_seconds=60, clock=ticks)

    await cache.parse(ParseRequest(input="same text"))
    await cache.parse(ParseRequest(input="same text", context=(make_task("t1"),)))

    assert len(inner.parse_calls) == 2
    assert parse_cache_key(ParseRequest(input="x")) != parse_cache_key(ParseRequest(input="y"))


@pytest.mark.asyncio
async def test_failures_are_not_cached(ticks: Ticks) -> None:
    inner = FakeLLMClient(
        parse_script=[
            NetworkError("down"),
            ParseResponse(success=False, error="could not parse"),
            ParseResponse(success=True, tasks=()),
            parsed("Finally"),
        ]
    )
    cache = CachedLLMClient(inner, ttl_seconds=60, clock=ticks)
    request = ParseRequest(input="write report")

    with pytest.raises(NetworkError):
        await cache.parse(request)
    assert (await cache.parse(request)).success is False
    assert (await cache.parse(request)).tasks == ()
    assert (await cache.parse(request)).tasks[0].title == "Finally"
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_updates_always_reach_the_collaborator(ticks: Ticks) -> None:
    inner = FakeLLMClient()
    cache = CachedLLMClient(inner, ttl_seconds=60, clock=ticks)

    await cache.update(UpdateRequest(input="done with it"))
    await cache.update(UpdateRequest(input="done with it"))

    assert len(inner.update_calls) == 2


@pytest.mark.asyncio
async def test_least_recently_used_entry_is_evicted(ticks: Ticks) -> None:
    inner = FakeLLMClient(parse_script=[parsed("A"), parsed("B"), parsed("C"), parsed("A again")])
    cache = CachedLLMClient(inner, ttl_seconds=60, max_entries=2, clock=ticks)

    await cache.parse(ParseRequest(input="aaa"))
    await cache.parse(ParseRequest(input="bbb"))
    await cache.parse(ParseRequest(input="aaa"))  # hit; "bbb" is now the oldest
    await cache.parse(ParseRequest(input="ccc"))

    assert len(cache) == 2
    assert (await cache.parse(ParseRequest(input="aaa"))).tasks[0].title == "A"
    assert len(inner.parse_calls) == 3

    cache.invalidate()
    assert (await cache.parse(ParseRequest(input="aaa"))).tasks[0].title == "A again"
