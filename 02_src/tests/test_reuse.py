"""Tests for the reusable decorator."""

import asyncio

import pytest

from fetchcore import reuse
from fetchcore.reuse import reusable


class Destination:
    def __init__(self):
        self.fetches = 0
        self.inits = 0
        self.fail_next = False

    @reusable()
    async def fetch(self, day="today"):
        self.fetches += 1
        await asyncio.sleep(0.01)
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("upstream down")
        return f"schedule:{day}:{self.fetches}"

    @reusable(forever=True)
    async def init(self):
        self.inits += 1
        await asyncio.sleep(0.01)
        return "ready"


@pytest.fixture(autouse=True)
def clean_registry():
    reuse.clear()
    yield
    reuse.clear()


class TestReusable:
    async def test_concurrent_calls_share_one_execution(self):
        dest = Destination()
        results = await asyncio.gather(dest.fetch(), dest.fetch(), dest.fetch())

        assert dest.fetches == 1
        assert len(set(results)) == 1

    async def test_sequential_calls_run_again(self):
        dest = Destination()
        first = await dest.fetch()
        second = await dest.fetch()

        assert first != second
        assert reuse.active_count() == 0

    async def test_different_args_are_separate(self):
        dest = Destination()
        await asyncio.gather(dest.fetch("mon"), dest.fetch("tue"))
        assert dest.fetches == 2

    async def test_different_instances_are_separate(self):
        a, b = Destination(), Destination()
        await asyncio.gather(a.fetch(), b.fetch())
        assert a.fetches == 1 and b.fetches == 1

    async def test_forever_keeps_result(self):
        dest = Destination()
        await asyncio.gather(dest.init(), dest.init())
        assert await dest.init() == "ready"

        assert dest.inits == 1
        assert reuse.active_count() == 1

    async def test_failure_is_shared_then_forgotten(self):
        dest = Destination()
        dest.fail_next = True

        results = await asyncio.gather(dest.fetch(), dest.fetch(), return_exceptions=True)
        assert all(isinstance(r, RuntimeError) for r in results)
        assert reuse.active_count() == 0

        assert (await dest.fetch()).startswith("schedule:today")
