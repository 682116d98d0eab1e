from .async_serialization import unparallel
from .async_serializer import AsyncSerializer

__all__ = [
    "AsyncSerializer",
    "unparallel",
]
