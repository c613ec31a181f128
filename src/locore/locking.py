"""In-process write lock serializing read-modify-write cycles on a review directory."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from pathlib import Path


class LockTimeout(Exception):  # noqa: N818
    """Raised when the review lock cannot be acquired in time."""

    pass


class ReviewLock:
    """Mutex guarding one review directory's index/log pair.

    Every operation that reads index.json, mutates it, and writes it back
    must hold this lock for the whole cycle; otherwise two overlapping
    operations can read the same ``lastSeq`` and hand out a duplicate
    sequence number. Only coroutines within one process are coordinated.
    """

    def __init__(self, review_dir: Path, timeout: float = 5.0) -> None:
        self.review_dir = review_dir
        self.timeout = timeout
        self._lock = asyncio.Lock()

    def locked(self) -> bool:
        return self._lock.locked()

    @contextlib.asynccontextmanager
    async def hold(self, timeout: float | None = None) -> AsyncGenerator[None, None]:
        """
        Acquire the lock for the duration of the context.

        Args:
            timeout: Maximum seconds to wait (defaults to the lock's timeout)

        Raises:
            LockTimeout: If the lock is still held elsewhere after timeout

        Example:
            >>> async with lock.hold():
            ...     index = index_store.load()
            ...     index_store.save(index)
        """
        wait = self.timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=wait)
        except asyncio.TimeoutError:
            raise LockTimeout(
                f"Failed to acquire review lock for {self.review_dir} after {wait:.1f} seconds"
            ) from None

        try:
            yield
        finally:
            self._lock.release()
