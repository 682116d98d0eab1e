"""Deterministic upstream producer for observing serializer behavior."""

import asyncio
from typing import Any


class StubExhaustedError(Exception):
    """Raised through the returned future once every prepared future was handed out."""


async def settled(rounds: int = 3) -> None:
    """Let the event loop run callbacks scheduled by already settled futures."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class UpstreamStub:
    """Upstream factory returning prepared pending futures, one per call.

    Tracks how many times it was called and how many of its futures are
    still outstanding. Must be created inside a running event loop.
    """

    def __init__(self, count: int) -> None:
        loop = asyncio.get_running_loop()
        self._futures: list[asyncio.Future[Any]] = [loop.create_future() for _ in range(count)]
        self.times_called = 0
        self.outstanding = 0
        self.max_outstanding = 0

    def __call__(self) -> asyncio.Future[Any]:
        if self.times_called >= len(self._futures):
            future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
            future.set_exception(StubExhaustedError(f"stub called {self.times_called + 1} times"))
        else:
            future = self._futures[self.times_called]
            self.outstanding += 1
            self.max_outstanding = max(self.max_outstanding, self.outstanding)
            future.add_done_callback(self._on_done)

        self.times_called += 1
        return future

    def _on_done(self, _future: asyncio.Future[Any]) -> None:
        self.outstanding -= 1

    def resolve(self, index: int, value: Any) -> None:
        self._futures[index].set_result(value)

    def reject(self, index: int, err: BaseException) -> None:
        self._futures[index].set_exception(err)

    def cancel(self, index: int) -> None:
        self._futures[index].cancel()

    def resolve_all(self) -> None:
        for i, future in enumerate(self._futures):
            if not future.done():
                future.set_result(i)
