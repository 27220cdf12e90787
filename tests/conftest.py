"""Shared fixtures: a fake clock and scripted httpx transports."""
from __future__ import annotations

from typing import Callable

import httpx
import pytest


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedTransport(httpx.MockTransport):
    """Plays back a list of outcomes, repeating the last one.

    Items: "timeout" (advances the clock by the request's read timeout and
    raises ReadTimeout), an int status code, or an exception instance.
    """

    def __init__(self, script: list, clock: FakeClock | None = None) -> None:
        self.script = list(script)
        self.clock = clock
        self.requests: list[httpx.Request] = []
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.script)) - 1
        item = self.script[index]
        if item == "timeout":
            if self.clock is not None:
                self.clock.advance(request.extensions["timeout"]["read"])
            raise httpx.ReadTimeout("timed out", request=request)
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item, json={"success": True})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scripted(clock: FakeClock) -> Callable[[list], tuple[httpx.Client, ScriptedTransport]]:
    clients: list[httpx.Client] = []

    def factory(script: list) -> tuple[httpx.Client, ScriptedTransport]:
        transport = ScriptedTransport(script, clock)
        client = httpx.Client(transport=transport)
        clients.append(client)
        return client, transport

    yield factory
    for client in clients:
        client.close()
