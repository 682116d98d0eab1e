"""Asynchronous serialization decorator for async functions.

Provides decorator:
- unparallel: Calls to the async function run one at a time, in call order
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from .async_serializer import AsyncSerializer

T = TypeVar("T")
P = ParamSpec("P")


def unparallel(func: Callable[P, Awaitable[T]]) -> Callable[P, asyncio.Future[T]]:
    """Decorator that runs an async function single-flight, serving callers in FIFO order.

    Creates a single AsyncSerializer for the function. Calls are queued regardless of
    arguments, and for methods regardless of instance. The wrapped function is invoked
    for the next queued call only after the previous invocation has finished.

    The decorated function is a plain function returning an asyncio.Future, so the
    first call on an idle function starts the work before returning.

    Args:
        func: Async function to serialize

    Returns:
        Function with the same parameters returning a future of the original result

    Example:
        @unparallel
        async def refresh_session() -> Session:
            # Never more than one refresh in flight
            return await auth_client.refresh()

        session = await refresh_session()
    """
    serializer = AsyncSerializer(func)

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> asyncio.Future[T]:
        return serializer(*args, **kwargs)

    return wrapper
