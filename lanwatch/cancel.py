# lanwatch/cancel.py
import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class ScanCancelled(Exception):
    """Raised when a scan operation is abandoned through its token."""


class CancellationToken:
    """Cooperative cancellation shared by every network call of one scan.

    ``cancel()`` must be called from the event loop thread.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScanCancelled()

    async def run(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Awaits ``awaitable`` unless the token fires or ``timeout`` elapses first.

        Raises:
            ScanCancelled: If the token was cancelled before completion.
            asyncio.TimeoutError: If ``timeout`` seconds passed first.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ScanCancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if self.cancelled:
            raise ScanCancelled()
        raise asyncio.TimeoutError()
