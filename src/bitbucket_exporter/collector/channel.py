"""Fan-out of discovered repositories to dependent collectors.

Each consumer gets its own ``RepositoryChannel``. The producer puts every
repository on all of its channels and closes them once when its walk ends.
A bounded queue makes a slow consumer throttle the producer.
"""

import asyncio
import logging

from bitbucket_exporter.bitbucket.models import Repository

logger = logging.getLogger(__name__)

_CLOSED = object()


class RepositoryChannel:
    """Single-producer, single-consumer queue with an explicit close signal.

    The consumer reads with :meth:`get` until it returns None. A consumer that
    stops early must call :meth:`abandon` so the producer never blocks on a
    queue nobody reads.
    """

    DEFAULT_MAXSIZE = 1

    def __init__(self, name: str, maxsize: int = DEFAULT_MAXSIZE) -> None:
        self.name = name
        self._maxsize = maxsize
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize)
        self._closed = False
        self._abandoned = False

    @property
    def closed(self) -> bool:
        return self._closed

    def reopen(self) -> None:
        """Reset the channel for a new collection cycle."""
        self._queue = asyncio.Queue(self._maxsize)
        self._closed = False
        self._abandoned = False

    async def put(self, repo: Repository) -> None:
        """Send a repository, waiting while the queue is full.

        Raises:
            RuntimeError: If the channel was already closed.
        """
        if self._closed:
            raise RuntimeError(f"put on closed channel {self.name}")
        if self._abandoned:
            return
        await self._queue.put(repo)

    async def close(self) -> None:
        """Signal that no more repositories will be sent. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if not self._abandoned:
            await self._queue.put(_CLOSED)

    async def get(self) -> Repository | None:
        """Receive the next repository, or None once the channel is closed."""
        if self._abandoned:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep answering None to repeated reads.
            self._abandoned = True
            return None
        return item  # type: ignore[return-value]

    def abandon(self) -> None:
        """Stop consuming: drop queued items and discard future puts."""
        if self._abandoned:
            return
        self._abandoned = True
        dropped = 0
        while not self._queue.empty():
            if self._queue.get_nowait() is not _CLOSED:
                dropped += 1
        if dropped:
            logger.debug("Channel %s abandoned, dropped %d repositories", self.name, dropped)
