"""Single-flight execution of an async upstream call with FIFO delivery."""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, ParamSpec, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = ParamSpec("P")


def _future_safe(err: Exception) -> Exception:
    """Replace StopIteration, which futures refuse, with a RuntimeError as asyncio tasks do."""
    if isinstance(err, StopIteration):
        replacement = RuntimeError("Upstream raised StopIteration")
        replacement.__cause__ = err
        return replacement
    return err


class AsyncSerializer(Generic[T, P]):
    """Drive an async upstream call one invocation at a time for any number of callers.

    Every call enqueues a request and returns an asyncio.Future. The upstream is
    invoked once per request, strictly in arrival order, and never while a previous
    invocation is still outstanding. Each future settles with the outcome of the
    invocation made for its own request: a value resolves it, an exception rejects
    it with that same exception. A failed turn affects only its own caller.

    Arguments given to a call are captured at enqueue time and passed to the
    upstream when that request's turn starts.

    Example:
        fetch_token = AsyncSerializer(refresh_token, name="token")
        first, second = fetch_token(), fetch_token()  # refresh_token runs once now
        token = await first  # second turn starts as soon as the first settles
    """

    @dataclass
    class Request:
        future: asyncio.Future[Any]
        args: tuple[Any, ...]
        kwargs: dict[str, Any]

    def __init__(self, upstream: Callable[P, Awaitable[T]], name: str | None = None, suppress_logging: bool = False) -> None:
        """Initialize AsyncSerializer.

        Args:
            upstream: Callable returning an awaitable; it is never invoked concurrently with itself
            name: Optional name used in log records, defaults to the upstream's qualified name
            suppress_logging: If True, suppresses logging of upstream failures

        Raises:
            TypeError: If upstream is not callable
        """
        if not callable(upstream):
            raise TypeError("Upstream must be callable")

        self.upstream = upstream
        self.name = name or getattr(upstream, "__qualname__", repr(upstream))
        self.suppress_logging = suppress_logging
        self.turns = 0  # Upstream invocations started so far
        self._queue: deque[AsyncSerializer.Request] = deque()
        self._busy = False

    @property
    def is_busy(self) -> bool:
        """True while an upstream invocation is outstanding."""
        return self._busy

    @property
    def pending(self) -> int:
        """Number of requests not yet settled, including the one being served."""
        return len(self._queue)

    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> asyncio.Future[T]:
        """Enqueue a request and return a future for its outcome.

        If the serializer is idle, the upstream is invoked before this returns.
        Must be called from a running event loop.
        """
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._queue.append(AsyncSerializer.Request(future, args, kwargs))
        self._maybe_start_another()
        return future

    def _maybe_start_another(self) -> None:
        # Loops only when the upstream fails synchronously; otherwise the next turn
        # is started from the settlement callback.
        while not self._busy and self._queue:
            request = self._queue[0]
            self.turns += 1
            logger.debug(
                "Starting upstream turn", extra={"serializer_name": self.name, "turn": self.turns, "pending": len(self._queue)}
            )
            # Busy before invoking: an upstream that calls back into this serializer only enqueues
            self._busy = True
            try:
                upstream_future = asyncio.ensure_future(self.upstream(*request.args, **request.kwargs))
            except Exception as err:
                self._busy = False
                self._queue.popleft()
                self._log_failure(err)
                if not request.future.done():
                    request.future.set_exception(_future_safe(err))
                continue

            upstream_future.add_done_callback(self._on_settled)

    def _on_settled(self, upstream_future: asyncio.Future[T]) -> None:
        self._busy = False
        request = self._queue.popleft()

        if upstream_future.cancelled():
            request.future.cancel()
        else:
            err = upstream_future.exception()
            if err is not None:
                self._log_failure(err)
                if not request.future.done():
                    request.future.set_exception(err)
            elif not request.future.done():
                request.future.set_result(upstream_future.result())

        self._maybe_start_another()

    def _log_failure(self, err: BaseException) -> None:
        if not self.suppress_logging:
            logger.error("Upstream call failed", exc_info=err, extra={"serializer_name": self.name, "turn": self.turns})
