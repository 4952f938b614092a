"""
Cancellation tokens for slow provider calls.

Usage:
    from core.cancellation import CancellationToken

    token = CancellationToken.with_timeout(30)
    store.add_documents(chunks, cancel_token=token)

    # From another thread
    token.cancel()
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Optional, TypeVar

from .errors import EmbeddingCancelled

T = TypeVar('T')


class CancellationToken:
    """
    Cooperative cancellation signal with an optional deadline.

    The deadline is measured on the monotonic clock.
    """

    def __init__(self, deadline: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> 'CancellationToken':
        """Create a token that expires `seconds` from now."""
        return cls(deadline=time.monotonic() + seconds)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def cancel(self):
        """Signal cancellation."""
        self._event.set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        """True once cancel() was called or the deadline passed."""
        return self._event.is_set() or self.expired

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self, provider: str = 'unknown'):
        if self._event.is_set():
            raise EmbeddingCancelled("Embedding call cancelled by caller", provider)
        if self.expired:
            raise EmbeddingCancelled("Embedding call exceeded its deadline", provider)


def run_with_cancellation(
    func: Callable[[], T],
    token: Optional[CancellationToken],
    provider: str = 'unknown',
    poll_interval: float = 0.05
) -> T:
    """
    Run `func` while honouring a cancellation token.

    Without a token the call runs inline. With a token it runs on a worker
    thread and the caller stops waiting as soon as the token is cancelled
    or its deadline passes; the abandoned call's result is discarded.

    Raises:
        EmbeddingCancelled: Token cancelled before or during the call
    """
    if token is None:
        return func()

    token.raise_if_cancelled(provider)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='embed-call')
    try:
        future = executor.submit(func)
        while True:
            remaining = token.remaining()
            timeout = poll_interval if remaining is None else min(poll_interval, remaining)
            done, _ = wait([future], timeout=timeout)
            if done:
                return future.result()
            if token.cancelled:
                future.cancel()
                token.raise_if_cancelled(provider)
    finally:
        executor.shutdown(wait=False)
