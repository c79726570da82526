"""Cooperative cancellation shared by the dispatch loop and running simulations.

One token is created per dispatcher/consumer. It is observed at queue polls,
at capacity waits and on every simulation turn; the simulation runs in a
worker thread, hence the thread-safe event.
"""

import asyncio
import threading
import time


class RunCancelledError(Exception):
    """The run was interrupted by cancellation. It stays re-claimable."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError("cancelled")

    async def sleep(self, seconds: float, *, step: float = 0.05) -> None:
        """Sleep up to ``seconds``, raising as soon as the token is cancelled."""
        deadline = time.monotonic() + seconds
        while True:
            self.raise_if_cancelled()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            await asyncio.sleep(min(step, remaining))

    async def acquire(self, semaphore: asyncio.Semaphore, *, step: float = 0.05) -> None:
        """Acquire ``semaphore`` unless cancelled first."""
        while True:
            self.raise_if_cancelled()
            try:
                await asyncio.wait_for(semaphore.acquire(), timeout=step)
                return
            except TimeoutError:
                continue
