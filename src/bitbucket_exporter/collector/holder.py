"""Lock-guarded containers for collector state.

Ingestion runs on the asyncio loop while scrapes run on the metrics HTTP
server thread, so every holder is guarded by a ``threading.Lock``. The lock
is never held across an ``await``.
"""

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Generic, TypeVar

T = TypeVar("T")


class DataHolder(Generic[T]):
    """A value (mapping or list) guarded by a single lock."""

    def __init__(self, data: T) -> None:
        self._lock = threading.Lock()
        self._data = data

    @contextmanager
    def locked(self) -> Iterator[T]:
        """Hold the lock and give access to the guarded value.

        Use for read-modify-write during ingestion and for reads during a
        scrape. Do not await while inside the block.
        """
        with self._lock:
            yield self._data

    def snapshot(self) -> T:
        """Return a deep copy of the guarded value."""
        with self._lock:
            return copy.deepcopy(self._data)
