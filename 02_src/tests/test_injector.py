"""Tests for the injection/broadcast bus."""

import asyncio

import pytest

from fetchcore.errors import InjectionError
from fetchcore.injection import GLOBAL, inject

REQUEST_EVENT = {"eventName": "httpRequest", "hostname": "api.example.com"}


class AuthDestination:
    hostname = "api.example.com"

    def __init__(self):
        self.seen = []

    @inject({"eventName": "httpRequest", "hostname": lambda self: self.hostname})
    async def add_auth(self, request):
        self.seen.append(("auth", request))

    @inject({"eventName": "httpResponse"})
    def on_response(self, request):
        self.seen.append(("response", request))


class ChildDestination(AuthDestination):
    @inject({"eventName": "httpRequest"}, priority=-1)
    def first(self, request):
        self.seen.append(("first", request))


class TestInjectDecorator:
    """Tests for @inject and class registrations."""

    def test_registrations_for_class(self, injector):
        regs = injector.registrations_for(AuthDestination)
        assert {r.handler.__name__ for r in regs} == {"add_auth", "on_response"}

    def test_inherited_registrations(self, injector):
        regs = injector.registrations_for(ChildDestination)
        assert {r.handler.__name__ for r in regs} == {"add_auth", "on_response", "first"}

    def test_priority_in_filter_dict(self):
        @inject({"eventName": "x", "priority": 7})
        def handler(self, request):
            pass

        (predicate, priority), = handler.__fetchcore_inject__
        assert priority == 7
        assert predicate.matches({"eventName": "x"})


class TestBroadcastScope:
    """Tests for who gets called."""

    async def test_instance_scope_only_calls_that_instance(self, injector):
        a, b = AuthDestination(), AuthDestination()
        count = await injector.broadcast(a, REQUEST_EVENT, "req")

        assert count == 1
        assert a.seen == [("auth", "req")]
        assert b.seen == []

    async def test_dynamic_filter_excludes_other_hosts(self, injector):
        dest = AuthDestination()
        await injector.broadcast(dest, {**REQUEST_EVENT, "hostname": "other.com"}, "req")
        assert dest.seen == []

    async def test_global_scope(self, injector):
        calls = []
        injector.register({"eventName": "httpRequest"}, lambda request: calls.append(request))
        dest = AuthDestination()
        injector.register_instance(dest)

        count = await injector.broadcast(GLOBAL, REQUEST_EVENT, "req")

        assert count == 2
        assert calls == ["req"]
        assert dest.seen == [("auth", "req")]

    async def test_include_global_does_not_call_instance_twice(self, injector):
        dest = AuthDestination()
        injector.register_instance(dest)

        count = await injector.broadcast(dest, REQUEST_EVENT, "req", include_global=True)

        assert count == 1
        assert dest.seen == [("auth", "req")]

    async def test_handler_decorator(self, injector):
        calls = []

        @injector.handler(eventName="httpError")
        async def on_error(request):
            calls.append(request)

        await injector.broadcast(GLOBAL, {"eventName": "httpError"}, "req")
        assert calls == ["req"]

    async def test_owner_registration_applies_to_subclasses(self, injector):
        calls = []
        injector.register(
            {"eventName": "httpResponse"},
            lambda self, request: calls.append(type(self).__name__),
            owner=AuthDestination,
        )

        await injector.broadcast(ChildDestination(), {"eventName": "httpResponse"}, "req")
        assert calls == ["ChildDestination"]


class TestBroadcastOrdering:
    """Tests for priority groups."""

    async def test_priorities_run_ascending(self, injector):
        order = []
        for priority in (10, 1, 5):
            injector.register(
                {"eventName": "e"},
                lambda p=priority: order.append(p),
                priority=priority,
            )

        await injector.broadcast(GLOBAL, {"eventName": "e"})
        assert order == [1, 5, 10]

    async def test_group_completes_before_next_group(self, injector):
        log = []

        async def slow():
            await asyncio.sleep(0.02)
            log.append("slow-0")

        async def fast():
            log.append("fast-0")

        injector.register({"eventName": "e"}, slow, priority=0)
        injector.register({"eventName": "e"}, fast, priority=0)
        injector.register({"eventName": "e"}, lambda: log.append("late-1"), priority=1)

        await injector.broadcast(GLOBAL, {"eventName": "e"})

        assert set(log[:2]) == {"slow-0", "fast-0"}
        assert log[2] == "late-1"

    async def test_scenario_priority_log(self, injector):
        log = []

        class Participant:
            @inject({"eventName": "ping"}, priority=5)
            async def late(self):
                log.append("p5")

            @inject({"eventName": "ping"}, priority=1)
            async def early(self):
                log.append("p1")

        await injector.broadcast(Participant(), {"eventName": "ping"})

        assert "p1" in log and "p5" in log
        assert log.index("p1") <= log.index("p5")


class TestBroadcastErrors:
    """Tests for handler failures."""

    async def test_failure_raises_after_group_and_skips_later_groups(self, injector):
        log = []

        def bad():
            raise ValueError("broken handler")

        async def sibling():
            await asyncio.sleep(0.01)
            log.append("sibling")

        injector.register({"eventName": "e"}, bad, priority=0)
        injector.register({"eventName": "e"}, sibling, priority=0)
        injector.register({"eventName": "e"}, lambda: log.append("later"), priority=1)

        with pytest.raises(InjectionError) as exc_info:
            await injector.broadcast(GLOBAL, {"eventName": "e"})

        assert log == ["sibling"]
        assert exc_info.value.event_name == "e"
        assert isinstance(exc_info.value.errors[0], ValueError)

    async def test_clear(self, injector):
        injector.register({}, lambda: None)
        injector.register_instance(AuthDestination())
        injector.clear()

        assert injector.instances == []
        assert await injector.broadcast(GLOBAL, {"eventName": "e"}) == 0
