"""Shared fakes for the test suite.

No test touches the network: aiohttp sessions are replaced by the small
dummy session/response classes below, and clocks/sleeps are injected.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Awaitable stand-in for ``asyncio.sleep`` that records delays."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.calls: List[float] = []
        self.clock = clock

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)


class DummyResponse:
    def __init__(
        self,
        status: int = 200,
        json_data: Any = None,
        text: str = "",
        headers: Optional[Dict[str, str]] = None,
        hold: float = 0.0,
    ):
        self.status = status
        self._json = json_data
        self._text = text
        self.headers = dict(headers or {})
        self.hold = hold
        self.session: Optional["DummySession"] = None

    async def __aenter__(self):
        if self.session is not None:
            self.session.in_flight += 1
            self.session.peak_in_flight = max(self.session.peak_in_flight, self.session.in_flight)
        if self.hold:
            await asyncio.sleep(self.hold)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self.session is not None:
            self.session.in_flight -= 1
        return False

    async def text(self, errors: str = "strict") -> str:
        return self._text

    async def json(self, content_type: Optional[str] = "application/json") -> Any:
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


Reply = Union[DummyResponse, BaseException]


class DummySession:
    """Replays queued replies, or routes each request through ``responder``."""

    def __init__(
        self,
        responses: Sequence[Reply] = (),
        responder: Optional[Callable[[str, str], Reply]] = None,
    ):
        self._responses = list(responses)
        self._responder = responder
        self.calls: List[Dict[str, Any]] = []
        self.closed = False
        self.in_flight = 0
        self.peak_in_flight = 0

    def request(self, method: str, url: str, **kwargs: Any) -> DummyResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if self._responder is not None:
            reply = self._responder(method, url)
        else:
            reply = self._responses[min(len(self.calls) - 1, len(self._responses) - 1)]
        if isinstance(reply, BaseException):
            raise reply
        reply.session = self
        return reply

    def get(self, url: str, **kwargs: Any) -> DummyResponse:
        return self.request("GET", url, **kwargs)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> SleepRecorder:
    return SleepRecorder(clock)
